import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

import pytest

from ordercore.core.datetime_utils import utc_now
from ordercore.database import build_engine, build_session_factory, init_db
from ordercore.events import ALL_EVENTS, EventBus
from ordercore.models import Order, OrderItem, OrderStatus
from ordercore.models.notification import NotificationChannel
from ordercore.services.notification_dispatcher import (
    ChannelResult, DispatchResult, NotificationDispatcher,
)
from ordercore.services.registry import build_services
from ordercore.stores.sqlalchemy_store import SQLAlchemyOrderStore


class FakeDispatcher(NotificationDispatcher):
    """Records every send; channels listed in ``failing`` report failure."""

    def __init__(self, failing: Iterable[NotificationChannel] = ()):
        self.failing = set(failing)
        self.calls: List[dict] = []

    async def send(
        self,
        order_id,
        message,
        channels,
        *,
        email=None,
        phone=None,
        subject=None,
    ) -> DispatchResult:
        channels = list(channels)
        self.calls.append({
            "order_id": order_id,
            "message": message,
            "channels": channels,
            "email": email,
            "phone": phone,
        })
        return DispatchResult(
            order_id=order_id,
            results=[
                ChannelResult(channel=c, success=False, error=f"{c.value} provider down")
                if c in self.failing else ChannelResult(channel=c, success=True)
                for c in channels
            ],
        )


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ordercore_test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine):
    return SQLAlchemyOrderStore(build_session_factory(engine))


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def published(events):
    """Every event published on the bus, in order."""
    received = []
    events.subscribe(ALL_EVENTS, received.append)
    return received


@pytest.fixture
def services(store, dispatcher, events):
    return build_services(store, dispatcher, events)


@pytest.fixture
def make_order(store):
    async def _make_order(
        status: OrderStatus = OrderStatus.PENDING,
        customer_name: str = "Asha Verma",
        customer_email: str = "asha@example.com",
        customer_phone: Optional[str] = "+91 98765 43210",
        total_amount: Decimal = Decimal("1000.00"),
        shipping_amount: Decimal = Decimal("50.00"),
        tracking_number: Optional[str] = None,
        courier_partner: Optional[str] = None,
        delivered_days_ago: Optional[int] = None,
        **fields,
    ) -> Order:
        now = utc_now()
        order = Order(
            id=uuid.uuid4(),
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            shipping_address={"street": "12 MG Road", "city": "Bengaluru", "country": "IN"},
            total_amount=total_amount,
            shipping_amount=shipping_amount,
            status=status.value,
            tracking_number=tracking_number,
            courier_partner=courier_partner,
            created_at=now,
            updated_at=now,
            **fields,
        )
        if delivered_days_ago is not None:
            order.delivered_at = now - timedelta(days=delivered_days_ago)
        order.items.append(OrderItem(
            product_id=uuid.uuid4(),
            product_name="Water Purifier",
            quantity=2,
            unit_price=total_amount / 2,
        ))
        async with store.session() as session:
            session.add(order)
        return order

    return _make_order
