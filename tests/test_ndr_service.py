import asyncio
import uuid

import pytest

from ordercore.events import EventType
from ordercore.exceptions import (
    AlreadyResolvedError, InvalidRequestError, InvalidTransitionError, NotFoundError,
)
from ordercore.models import NDRResolutionStatus, NDRSeverity, OrderStatus, TimelineEventType
from ordercore.models.notification import NotificationChannel, OrderNotification
from ordercore.services.ndr_service import AUTO_RESOLUTION_RULES, classify_severity
from ordercore.stores.sqlalchemy_store import SQLAlchemyStoreSession


@pytest.fixture
async def shipped_order(make_order):
    return await make_order(status=OrderStatus.SHIPPED, tracking_number="TRK500", courier_partner="Delhivery")


async def get_ndr(store, ndr_id):
    async with store.session() as session:
        return await session.get_ndr(ndr_id)


async def live_ndr_count(store, order_id):
    async with store.session() as session:
        return await session.count_active_ndrs(order_id)


# ==================== SEVERITY ====================

@pytest.mark.parametrize("reason,count,expected", [
    ("Rescheduled by customer", 3, NDRSeverity.CRITICAL),
    ("Customer refused delivery", 1, NDRSeverity.HIGH),
    ("Phone not reachable", 2, NDRSeverity.HIGH),
    ("Address not found", 1, NDRSeverity.MEDIUM),
    ("Courier van broke down", 1, NDRSeverity.MEDIUM),
    ("Customer refused delivery", 4, NDRSeverity.CRITICAL),
])
def test_classify_severity(reason, count, expected):
    assert classify_severity(reason, count, critical_threshold=3) is expected


async def test_severity_uses_order_ndr_count(services, shipped_order):
    for _ in range(2):
        await services.ndr.create_ndr(shipped_order.id, "Customer not available")
    third = await services.ndr.create_ndr(shipped_order.id, "Rescheduled by customer")

    severity = await services.ndr.get_severity(third.id)
    assert severity.ndr_count == 3
    assert severity.severity == "critical"


# ==================== CREATE / RESOLVE / CANCEL ====================

async def test_create_ndr_updates_order_counters(services, store, shipped_order, published):
    ndr = await services.ndr.create_ndr(shipped_order.id, "Address not found", actor="courier-webhook")

    assert ndr.resolution_status == NDRResolutionStatus.PENDING.value
    assert ndr.resolved_at is None

    order = await services.lifecycle.get_order(shipped_order.id)
    assert order.ndr_count == 1
    assert order.delivery_attempts == 1
    assert order.last_ndr_date is not None
    assert order.ndr_count == await live_ndr_count(store, order.id)

    timeline = await services.lifecycle.get_timeline(order.id)
    assert timeline[0].event_type == TimelineEventType.NDR_CREATED.value
    assert timeline[0].event_data["ndr_id"] == str(ndr.id)
    assert published[-1].event_type == EventType.NDR_CREATED


async def test_create_ndr_requires_reason(services, shipped_order):
    with pytest.raises(InvalidRequestError):
        await services.ndr.create_ndr(shipped_order.id, "   ")


async def test_resolve_twice_raises_already_resolved(services, store, shipped_order):
    ndr = await services.ndr.create_ndr(shipped_order.id, "Customer not available")

    resolved = await services.ndr.resolve_ndr(ndr.id, "Redelivered on Monday", customer_response="Home after 6pm")
    assert resolved.resolution_status == "resolved"
    assert resolved.resolved_at is not None
    assert resolved.next_action == "Redelivered on Monday"

    with pytest.raises(AlreadyResolvedError):
        await services.ndr.resolve_ndr(ndr.id, "Something else")

    after = await get_ndr(store, ndr.id)
    assert after.next_action == "Redelivered on Monday"
    assert after.customer_response == "Home after 6pm"

    order = await services.lifecycle.get_order(shipped_order.id)
    assert order.ndr_count == await live_ndr_count(store, order.id) == 1


async def test_resolve_unknown_ndr(services):
    with pytest.raises(NotFoundError):
        await services.ndr.resolve_ndr(uuid.uuid4(), "Call customer")


async def test_cancel_ndr_keeps_ndr_count_invariant(services, store, shipped_order):
    first = await services.ndr.create_ndr(shipped_order.id, "Customer not available")
    await services.ndr.create_ndr(shipped_order.id, "Incomplete address")

    cancelled = await services.ndr.cancel_ndr(first.id, "Raised against wrong AWB")
    assert cancelled.resolution_status == NDRResolutionStatus.CANCELLED.value

    order = await services.lifecycle.get_order(shipped_order.id)
    assert order.ndr_count == 1
    assert order.ndr_count == await live_ndr_count(store, order.id)

    with pytest.raises(InvalidTransitionError):
        await services.ndr.resolve_ndr(first.id, "Too late")
    with pytest.raises(InvalidTransitionError):
        await services.ndr.cancel_ndr(first.id, "Again")


# ==================== AUTO-RESOLUTION ====================

async def test_auto_resolve_address_not_found(services, store, dispatcher, shipped_order):
    ndr = await services.ndr.create_ndr(shipped_order.id, "Address not found")

    result = await services.ndr.auto_resolve_ndrs()

    assert result.processed == 1
    assert result.processed_ids == [ndr.id]
    after = await get_ndr(store, ndr.id)
    assert after.auto_resolution_attempted is True
    assert after.next_action == "Contact customer for address verification"
    assert after.resolution_status == "pending"

    assert len(dispatcher.calls) == 1
    call = dispatcher.calls[0]
    assert set(call["channels"]) == {NotificationChannel.EMAIL, NotificationChannel.SMS}
    assert call["message"] == AUTO_RESOLUTION_RULES[after.reason]["message"]
    assert call["email"] == shipped_order.customer_email

    notifications = await services.notifications.list_notifications(order_id=shipped_order.id)
    assert len(notifications) == 1
    assert notifications[0].notification_type == "ndr"
    assert notifications[0].status == "sent"


async def test_auto_resolve_phone_not_reachable(services, store, dispatcher, shipped_order):
    ndr = await services.ndr.create_ndr(shipped_order.id, "Phone not reachable")

    await services.ndr.auto_resolve_ndrs()

    after = await get_ndr(store, ndr.id)
    assert after.next_action == "Send SMS and email notifications"
    assert set(dispatcher.calls[0]["channels"]) == {NotificationChannel.EMAIL, NotificationChannel.SMS}


async def test_auto_resolve_leaves_unknown_reasons_untouched(services, store, dispatcher, shipped_order):
    ndr = await services.ndr.create_ndr(shipped_order.id, "Parcel damaged in hub")

    result = await services.ndr.auto_resolve_ndrs()

    assert result.processed == 0
    assert result.skipped == 1
    after = await get_ndr(store, ndr.id)
    assert after.auto_resolution_attempted is False
    assert after.next_action is None
    assert dispatcher.calls == []


async def test_auto_resolve_runs_each_ndr_once(services, dispatcher, shipped_order):
    await services.ndr.create_ndr(shipped_order.id, "Customer not available")

    first = await services.ndr.auto_resolve_ndrs()
    second = await services.ndr.auto_resolve_ndrs()

    assert first.processed == 1
    assert second.processed == 0
    assert len(dispatcher.calls) == 1


async def test_auto_resolve_dispatch_failure_is_attributed_to_ndr(services, store, dispatcher, shipped_order):
    dispatcher.failing = {NotificationChannel.SMS}
    failing = await services.ndr.create_ndr(shipped_order.id, "Incomplete address")

    result = await services.ndr.auto_resolve_ndrs()

    assert result.processed == 0
    assert result.failed == 1
    failure = result.failures[0]
    assert failure.ndr_id == failing.id
    assert failure.code == "dispatch_failed"
    assert "sms" in failure.reason

    after = await get_ndr(store, failing.id)
    assert after.auto_resolution_attempted is True

    notifications = await services.notifications.list_notifications(order_id=shipped_order.id)
    assert notifications[0].status == "partial"


async def test_auto_resolve_store_error_does_not_abort_batch(services, dispatcher, make_order, monkeypatch):
    broken_order = await make_order(status=OrderStatus.SHIPPED, tracking_number="T1")
    healthy_order = await make_order(status=OrderStatus.SHIPPED, tracking_number="T2")
    broken = await services.ndr.create_ndr(broken_order.id, "Address not found")
    healthy = await services.ndr.create_ndr(healthy_order.id, "Phone not reachable")

    original_add = SQLAlchemyStoreSession.add

    def add_failing_for_broken_order(self, entity):
        if isinstance(entity, OrderNotification) and entity.order_id == broken_order.id:
            raise RuntimeError("disk I/O error")
        original_add(self, entity)

    monkeypatch.setattr(SQLAlchemyStoreSession, "add", add_failing_for_broken_order)

    result = await services.ndr.auto_resolve_ndrs()

    assert result.processed_ids == [healthy.id]
    assert result.failed == 1
    failure = result.failures[0]
    assert failure.ndr_id == broken.id
    assert failure.code == "internal_error"
    assert "disk I/O error" in failure.reason
    assert len(dispatcher.calls) == 2


async def test_auto_resolve_stops_between_items(services, dispatcher, make_order):
    for _ in range(3):
        order = await make_order(status=OrderStatus.SHIPPED, tracking_number="T")
        await services.ndr.create_ndr(order.id, "Customer not available")

    stop = asyncio.Event()
    original_send = dispatcher.send

    async def send_then_stop(*args, **kwargs):
        stop.set()
        return await original_send(*args, **kwargs)

    dispatcher.send = send_then_stop

    result = await services.ndr.auto_resolve_ndrs(stop_event=stop)

    assert result.aborted is True
    assert result.processed == 1
    assert len(dispatcher.calls) == 1

    remaining = await services.ndr.list_ndrs(resolution_status="pending")
    assert sum(1 for n in remaining if not n.auto_resolution_attempted) == 2


# ==================== QUERIES ====================

async def test_list_ndrs_and_stats(services, shipped_order):
    a = await services.ndr.create_ndr(shipped_order.id, "Customer refused delivery")
    await services.ndr.create_ndr(shipped_order.id, "Address not found")
    await services.ndr.resolve_ndr(a.id, "Customer accepted on second attempt")

    pending = await services.ndr.list_ndrs(resolution_status="PENDING")
    assert [n.ndr_reason for n in pending] == ["Address not found"]
    assert pending[0].severity == "medium"

    with pytest.raises(InvalidRequestError):
        await services.ndr.list_ndrs(resolution_status="escalated")

    stats = await services.ndr.get_ndr_stats()
    assert stats.total == 2
    assert stats.pending == 1
    assert stats.resolved == 1
    assert stats.resolution_rate == 50
    assert stats.by_reason == {"Customer refused delivery": 1, "Address not found": 1}
