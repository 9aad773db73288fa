import csv
import io
import uuid
from decimal import Decimal

import httpx
import pytest

from ordercore.main import create_app
from ordercore.models import OrderStatus
from ordercore.models.notification import NotificationChannel


@pytest.fixture
async def client(store, dispatcher):
    app = create_app(store=store, dispatcher=dispatcher)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"] == "connected"


async def test_tracking_update_records_actor(client, make_order):
    order = await make_order()

    response = await client.put(
        f"/api/v1/orders/{order.id}/tracking",
        json={"tracking_number": "TRK123", "courier_partner": "FedEx"},
        headers={"X-Actor": "priya@seller.in"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "shipped"

    timeline = (await client.get(f"/api/v1/orders/{order.id}/timeline")).json()
    assert len(timeline) == 1
    assert timeline[0]["created_by"] == "priya@seller.in"


@pytest.mark.parametrize("payload,expected_code", [
    ({"status": "teleported"}, "invalid_transition"),
    ({"status": "shipped"}, "invalid_transition"),
])
async def test_invalid_transition_maps_to_400(client, make_order, payload, expected_code):
    order = await make_order()

    response = await client.put(f"/api/v1/orders/{order.id}/status", json=payload)

    assert response.status_code == 400
    assert response.json()["code"] == expected_code
    assert response.json()["detail"]


async def test_unknown_order_maps_to_404(client):
    response = await client.get(f"/api/v1/orders/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


async def test_list_orders_with_all_filter(client, make_order):
    await make_order(status=OrderStatus.PENDING)
    await make_order(status=OrderStatus.CANCELLED)

    everything = (await client.get("/api/v1/orders", params={"status": "all"})).json()
    cancelled = (await client.get("/api/v1/orders", params={"status": "cancelled"})).json()

    assert everything["total"] == 2
    assert cancelled["total"] == 1
    assert len(everything["items"][0]["items"]) == 1


async def test_bulk_status(client, make_order):
    good = await make_order()
    terminal = await make_order(status=OrderStatus.RETURNED)

    response = await client.post(
        "/api/v1/orders/bulk-status",
        json={"order_ids": [str(good.id), str(terminal.id)], "status": "confirmed"},
    )

    body = response.json()
    assert response.status_code == 200
    assert body["succeeded"] == 1
    assert body["failures"][0]["order_id"] == str(terminal.id)


async def test_ndr_lifecycle_over_http(client, make_order):
    order = await make_order(status=OrderStatus.SHIPPED, tracking_number="T1")

    created = await client.post(
        "/api/v1/ndrs",
        json={"order_id": str(order.id), "ndr_reason": "Phone not reachable"},
    )
    assert created.status_code == 201
    ndr = created.json()
    assert ndr["severity"] == "high"

    auto = (await client.post("/api/v1/ndrs/auto-resolve")).json()
    assert auto["processed"] == 1

    resolve = {"resolution_action": "Customer called back"}
    first = await client.post(f"/api/v1/ndrs/{ndr['id']}/resolve", json=resolve)
    second = await client.post(f"/api/v1/ndrs/{ndr['id']}/resolve", json=resolve)

    assert first.status_code == 200
    assert first.json()["resolution_status"] == "resolved"
    assert second.status_code == 409
    assert second.json()["code"] == "already_resolved"


async def test_notification_channel_failure_maps_to_502(client, dispatcher, make_order):
    dispatcher.failing = {NotificationChannel.SMS}
    order = await make_order()

    response = await client.post(
        "/api/v1/notifications",
        json={"order_id": str(order.id), "message": "Delayed", "channels": ["email", "sms"]},
    )

    assert response.status_code == 502
    assert response.json()["code"] == "dispatch_failed"
    listed = (await client.get("/api/v1/notifications", params={"order_id": str(order.id)})).json()
    assert listed[0]["status"] == "partial"


async def test_empty_channels_maps_to_422(client, make_order):
    order = await make_order()
    response = await client.post(
        "/api/v1/notifications",
        json={"order_id": str(order.id), "message": "Delayed", "channels": []},
    )
    assert response.status_code == 422
    assert response.json()["code"] == "invalid_request"


async def test_return_flow_over_http(client, make_order):
    order = await make_order(
        status=OrderStatus.DELIVERED,
        total_amount=Decimal("1000.00"),
        shipping_amount=Decimal("100.00"),
        delivered_days_ago=1,
    )
    policy = (await client.post("/api/v1/returns/policies", json={
        "policy_name": "Auto 80",
        "auto_approve": True,
        "refund_percentage": "80",
    })).json()

    response = await client.post("/api/v1/returns", json={
        "order_id": str(order.id),
        "reason": "Wrong size",
        "policy_id": policy["id"],
    })

    assert response.status_code == 201
    assert Decimal(response.json()["refund_amount"]) == Decimal("800.00")
    order_body = (await client.get(f"/api/v1/orders/{order.id}")).json()
    assert order_body["status"] == "return_requested"


async def test_csv_export(client, make_order):
    await make_order(customer_name='Smith, John "Jr"')

    response = await client.get(
        "/api/v1/exports/orders",
        params=[("fields", "customer_name"), ("fields", "status")],
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "orders-export-" in response.headers["content-disposition"]
    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows == [["Customer Name", "Status"], ['Smith, John "Jr"', "pending"]]

    bad = await client.get("/api/v1/exports/orders", params={"fields": "password"})
    assert bad.status_code == 422
