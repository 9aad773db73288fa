import csv
import io

import pytest

from ordercore.exceptions import InvalidRequestError
from ordercore.models import OrderStatus
from ordercore.models.notification import NotificationChannel
from ordercore.schemas.order import OrderFilters
from ordercore.services.export_service import ExportService


def parse_csv(content: str, delimiter: str = ","):
    return list(csv.reader(io.StringIO(content), delimiter=delimiter))


async def test_customer_name_with_delimiter_and_quotes_round_trips(services, make_order):
    name = 'Smith, John "Jr"'
    await make_order(customer_name=name)

    content = await services.exports.export_orders(fields=["customer_name", "customer_email"])

    assert '"Smith, John ""Jr"""' in content
    rows = parse_csv(content)
    assert rows[0] == ["Customer Name", "Email"]
    assert rows[1] == [name, "asha@example.com"]


async def test_export_orders_uses_filters_and_all_fields(services, make_order):
    shipped = await make_order(status=OrderStatus.SHIPPED, tracking_number="TRK-1", courier_partner="Ekart")
    await make_order(status=OrderStatus.PENDING)

    content = await services.exports.export_orders(OrderFilters(status="shipped"))

    rows = parse_csv(content)
    assert rows[0][0] == "Order ID"
    assert rows[0][-1] == "Is Duplicate"
    assert len(rows) == 2
    row = dict(zip(rows[0], rows[1]))
    assert row["Order ID"] == str(shipped.id)
    assert row["Tracking Number"] == "TRK-1"
    assert row["Total Amount"] == "1000.00"
    assert row["Is Duplicate"] == "false"
    assert row["Expected Delivery"] == ""


async def test_unknown_export_field_is_rejected(services):
    with pytest.raises(InvalidRequestError, match="items"):
        await services.exports.export_orders(fields=["id", "items"])


async def test_export_ndrs_includes_severity(services, make_order):
    order = await make_order(status=OrderStatus.SHIPPED, tracking_number="T")
    await services.ndr.create_ndr(order.id, "Customer refused delivery")

    content = await services.exports.export_ndrs(fields=["order_id", "ndr_reason", "severity"])

    assert parse_csv(content) == [
        ["Order ID", "Reason", "Severity"],
        [str(order.id), "Customer refused delivery", "high"],
    ]


async def test_export_notifications_joins_sent_via(services, make_order):
    order = await make_order()
    await services.notifications.send_notification(
        order.id,
        "Your parcel is delayed, sorry!",
        [NotificationChannel.EMAIL, NotificationChannel.SMS, NotificationChannel.WHATSAPP],
    )

    content = await services.exports.export_notifications(fields=["message", "sent_via", "status"])

    assert parse_csv(content)[1] == ["Your parcel is delayed, sorry!", "email|sms|whatsapp", "sent"]


async def test_semicolon_delimiter(store, services, make_order):
    exports = ExportService(store, services.ndr, delimiter=";", multi_value_separator=",")
    await make_order(customer_name="Rao; Priya")

    content = await exports.export_orders(fields=["customer_name"])

    assert parse_csv(content, delimiter=";")[1] == ["Rao; Priya"]
    with pytest.raises(ValueError):
        ExportService(store, services.ndr, delimiter=",", multi_value_separator=",")
