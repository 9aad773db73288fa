import uuid
from datetime import datetime, timezone

import pytest

from ordercore.events import EventType
from ordercore.exceptions import DispatchError, InvalidRequestError, NotFoundError
from ordercore.models.notification import NotificationChannel
from ordercore.services.notification_service import NOTIFICATION_TEMPLATES, parse_channels


def test_parse_channels():
    assert parse_channels(["EMAIL", "sms", "email"]) == [NotificationChannel.EMAIL, NotificationChannel.SMS]
    with pytest.raises(InvalidRequestError, match="at least one"):
        parse_channels([])
    with pytest.raises(InvalidRequestError, match="pigeon"):
        parse_channels(["pigeon"])


async def test_empty_channel_set_is_rejected_before_dispatch(services, dispatcher, make_order):
    order = await make_order()
    with pytest.raises(InvalidRequestError):
        await services.notifications.send_notification(order.id, "Delayed", [])
    assert dispatcher.calls == []


async def test_send_notification_records_result(services, dispatcher, make_order, published):
    order = await make_order()

    record = await services.notifications.send_notification(
        order.id, "Your order will arrive tomorrow.", ["email", "whatsapp"]
    )

    assert record.status == "sent"
    assert record.sent_via == ["email", "whatsapp"]
    assert record.notification_type == "delay"
    assert dispatcher.calls[0]["phone"] == order.customer_phone
    assert published[-1].event_type == EventType.NOTIFICATION_SENT


async def test_partial_failure_records_then_raises(services, dispatcher, make_order):
    dispatcher.failing = {NotificationChannel.WHATSAPP}
    order = await make_order()

    with pytest.raises(DispatchError) as exc:
        await services.notifications.send_notification(order.id, "Delayed by rain", ["sms", "whatsapp"])

    assert exc.value.channel == "whatsapp"
    assert exc.value.code == "dispatch_failed"

    records = await services.notifications.list_notifications(order_id=order.id)
    assert len(records) == 1
    assert records[0].status == "partial"
    assert str(records[0].id) == exc.value.context["notification_id"]
    assert {r["channel"]: r["success"] for r in records[0].channel_results} == {"sms": True, "whatsapp": False}


async def test_unknown_order_or_type(services):
    with pytest.raises(NotFoundError):
        await services.notifications.send_notification(uuid.uuid4(), "Hi", ["email"])
    with pytest.raises(InvalidRequestError):
        await services.notifications.send_notification(uuid.uuid4(), "Hi", ["email"], notification_type="promo")


async def test_send_template_fills_new_date(services, dispatcher, make_order):
    order = await make_order(expected_delivery_date=datetime(2026, 11, 3, tzinfo=timezone.utc))

    record = await services.notifications.send_template(order.id, "delay_logistics")

    assert record.message.endswith("Expected delivery: 03 Nov 2026")
    assert dispatcher.calls[0]["channels"] == [
        NotificationChannel.EMAIL, NotificationChannel.SMS, NotificationChannel.WHATSAPP,
    ]

    record = await services.notifications.send_template(
        order.id, "delay_logistics", channels=["sms"], variables={"NEW_DATE": "Friday"}
    )
    assert record.message.endswith("Expected delivery: Friday")
    assert record.sent_via == ["sms"]


async def test_unknown_template(services, make_order):
    order = await make_order()
    with pytest.raises(NotFoundError):
        await services.notifications.send_template(order.id, "birthday_wishes")


async def test_customer_response_and_stats(services, make_order):
    order = await make_order()
    record = await services.notifications.send_template(order.id, "delivery_success")

    updated = await services.notifications.record_customer_response(record.id, "Received, thanks!")
    assert updated.customer_response == "Received, thanks!"
    assert updated.responded_at is not None

    stats = await services.notifications.get_notification_stats()
    assert stats.total == 1
    assert stats.today == 1
    assert stats.by_type == {"delivery": 1}
    assert stats.by_status == {"sent": 1}


async def test_templates_listed(services):
    templates = services.notifications.list_templates()
    assert [t["id"] for t in templates] == list(NOTIFICATION_TEMPLATES)
    assert all(t["channels"] for t in templates)
