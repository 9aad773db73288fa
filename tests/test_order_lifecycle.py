import uuid
from decimal import Decimal

import pytest

from ordercore.events import EventType
from ordercore.exceptions import InvalidRequestError, InvalidTransitionError, NotFoundError
from ordercore.models import OrderStatus, PaymentStatus, TimelineEventType
from ordercore.schemas.order import OrderFilters


async def test_tracking_assignment_ships_pending_order(services, make_order, published):
    order = await make_order(status=OrderStatus.PENDING)

    updated = await services.lifecycle.update_tracking_info(order.id, "TRK123", "FedEx", actor="ops@seller")

    assert updated.status == OrderStatus.SHIPPED.value
    assert updated.tracking_number == "TRK123"
    assert updated.courier_partner == "FedEx"
    assert updated.shipped_at is not None

    timeline = await services.lifecycle.get_timeline(order.id)
    assert len(timeline) == 1
    entry = timeline[0]
    assert entry.event_type == TimelineEventType.TRACKING_UPDATE.value
    assert "TRK123" in entry.event_description
    assert entry.event_data["from_status"] == "pending"
    assert entry.event_data["to_status"] == "shipped"
    assert entry.created_by == "ops@seller"

    assert [e.event_type for e in published] == [
        EventType.ORDER_STATUS_CHANGED,
        EventType.TRACKING_UPDATED,
    ]


async def test_tracking_on_delivered_order_does_not_change_status(services, make_order):
    order = await make_order(status=OrderStatus.DELIVERED, tracking_number="OLD1", courier_partner="BlueDart")

    updated = await services.lifecycle.update_tracking_info(order.id, "NEW2", "Delhivery")

    assert updated.status == OrderStatus.DELIVERED.value
    assert updated.tracking_number == "NEW2"
    assert len(await services.lifecycle.get_timeline(order.id)) == 1


async def test_empty_tracking_update_is_rejected(services, make_order):
    order = await make_order()
    with pytest.raises(InvalidRequestError):
        await services.lifecycle.update_tracking_info(order.id, "  ", "")


async def test_shipping_without_tracking_is_rejected(services, make_order):
    order = await make_order(status=OrderStatus.PROCESSING)

    with pytest.raises(InvalidTransitionError, match="tracking number"):
        await services.lifecycle.update_status(order.id, "shipped", tracking_number="")

    unchanged = await services.lifecycle.get_order(order.id)
    assert unchanged.status == OrderStatus.PROCESSING.value
    assert await services.lifecycle.get_timeline(order.id) == []


async def test_update_status_appends_one_timeline_entry(services, make_order):
    order = await make_order(status=OrderStatus.PENDING)

    await services.lifecycle.update_status(order.id, "confirmed", notes="Payment verified")
    updated = await services.lifecycle.update_status(
        order.id, "shipped", tracking_number="TRK9", courier_partner="Ekart"
    )

    assert updated.status == "shipped"
    timeline = await services.lifecycle.get_timeline(order.id)
    assert len(timeline) == 2
    descriptions = {entry.event_description for entry in timeline}
    assert "Status changed from pending to confirmed: Payment verified" in descriptions
    assert "Status changed from confirmed to shipped" in descriptions


async def test_invalid_status_value_is_rejected(services, make_order):
    order = await make_order()
    with pytest.raises(InvalidTransitionError, match="not a valid order status"):
        await services.lifecycle.update_status(order.id, "teleported")


async def test_unknown_order_raises_not_found(services):
    with pytest.raises(NotFoundError):
        await services.lifecycle.update_status(uuid.uuid4(), "confirmed")


async def test_payment_status_is_independent_of_order_status(services, make_order):
    order = await make_order(status=OrderStatus.SHIPPED, tracking_number="T1")

    updated = await services.lifecycle.update_payment_status(order.id, "paid")
    assert updated.payment_status == PaymentStatus.PAID.value
    assert updated.status == OrderStatus.SHIPPED.value

    with pytest.raises(InvalidTransitionError):
        await services.lifecycle.update_payment_status(order.id, "pending")


async def test_cancelled_order_cannot_be_touched_by_same_status_update(services, make_order):
    order = await make_order(status=OrderStatus.CANCELLED, tracking_number="OLD")

    with pytest.raises(InvalidTransitionError, match="terminal state"):
        await services.lifecycle.update_status(order.id, "cancelled", tracking_number="NEW")

    current = await services.lifecycle.get_order(order.id)
    assert current.tracking_number == "OLD"
    assert await services.lifecycle.get_timeline(order.id) == []


async def test_bulk_update_reports_partial_failure(services, make_order):
    ok_1 = await make_order(status=OrderStatus.PENDING)
    ok_2 = await make_order(status=OrderStatus.CONFIRMED)
    terminal = await make_order(status=OrderStatus.CANCELLED)
    missing = uuid.uuid4()

    result = await services.lifecycle.bulk_update_status(
        [ok_1.id, ok_2.id, terminal.id, missing, ok_1.id],
        "processing",
    )

    assert result.requested == 4
    assert result.succeeded == 2
    assert result.failed == 2
    assert set(result.succeeded_ids) == {ok_1.id, ok_2.id}
    codes = {f.order_id: f.code for f in result.failures}
    assert codes == {terminal.id: "invalid_transition", missing: "not_found"}

    for order_id in (ok_1.id, ok_2.id):
        timeline = await services.lifecycle.get_timeline(order_id)
        assert [t.event_type for t in timeline] == [TimelineEventType.BULK_STATUS_UPDATE.value]


async def test_bulk_update_rejects_unknown_status_upfront(services, make_order):
    order = await make_order()
    with pytest.raises(InvalidTransitionError):
        await services.lifecycle.bulk_update_status([order.id], "misplaced")


async def test_flag_duplicate(services, make_order):
    original = await make_order()
    duplicate = await make_order()

    flagged = await services.lifecycle.flag_duplicate(duplicate.id, original.id)
    assert flagged.is_duplicate is True
    assert flagged.duplicate_of == original.id

    with pytest.raises(InvalidRequestError):
        await services.lifecycle.flag_duplicate(original.id, original.id)
    with pytest.raises(NotFoundError):
        await services.lifecycle.flag_duplicate(original.id, uuid.uuid4())


async def test_list_orders_filters_are_and_combined(services, make_order):
    await make_order(customer_name="Ravi Kumar", status=OrderStatus.PENDING, total_amount=Decimal("500.00"))
    shipped = await make_order(
        customer_name="Ravi Shankar",
        status=OrderStatus.SHIPPED,
        tracking_number="DL-7788",
        total_amount=Decimal("1500.00"),
    )
    await make_order(customer_name="Meena Iyer", status=OrderStatus.SHIPPED, tracking_number="DL-1")

    orders, total = await services.lifecycle.list_orders(OrderFilters(search="ravi", status="SHIPPED"))
    assert total == 1
    assert orders[0].id == shipped.id

    orders, total = await services.lifecycle.list_orders(OrderFilters(search="dl-77", status="all"))
    assert [o.id for o in orders] == [shipped.id]

    _, total = await services.lifecycle.list_orders(OrderFilters(amount_min=Decimal("600")))
    assert total == 2

    orders, _ = await services.lifecycle.list_orders(OrderFilters(search=str(shipped.id)))
    assert [o.id for o in orders] == [shipped.id]


async def test_order_stats(services, make_order):
    await make_order(status=OrderStatus.PENDING, total_amount=Decimal("100.00"))
    await make_order(status=OrderStatus.DELIVERED, total_amount=Decimal("200.00"))
    await make_order(status=OrderStatus.CANCELLED, total_amount=Decimal("50.50"))

    stats = await services.lifecycle.get_order_stats()
    assert stats.total_orders == 3
    assert stats.total_revenue == Decimal("350.50")
    assert stats.pending_orders == 1
    assert stats.delivered_orders == 1
    assert stats.cancelled_orders == 1
    assert stats.average_order_value == Decimal("116.83")


async def test_order_item_total_is_quantity_times_unit_price(services, make_order):
    order = await make_order(total_amount=Decimal("999.90"))
    loaded = await services.lifecycle.get_order(order.id)
    for item in loaded.items:
        assert item.total_price == item.quantity * item.unit_price
