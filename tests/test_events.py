import pytest

from ordercore.config import Settings
from ordercore.events import ALL_EVENTS, DomainEvent, EventBus, EventType
from ordercore.exceptions import NotFoundError


async def test_failing_subscriber_does_not_block_others():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("cache down")

    async def recorder(event):
        received.append(event.event_type)

    bus.subscribe(EventType.NDR_RESOLVED, broken)
    bus.subscribe(EventType.NDR_RESOLVED, recorder)
    bus.subscribe(ALL_EVENTS, recorder)

    await bus.publish(DomainEvent(EventType.NDR_RESOLVED, {"ndr_id": "n1"}))
    await bus.publish(DomainEvent(EventType.RETURN_APPROVED))

    assert received == [EventType.NDR_RESOLVED, EventType.NDR_RESOLVED, EventType.RETURN_APPROVED]


async def test_unsubscribe():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.TRACKING_UPDATED, received.append)
    bus.unsubscribe(EventType.TRACKING_UPDATED, received.append)

    await bus.publish(DomainEvent(EventType.TRACKING_UPDATED))

    assert received == []


def test_error_body_carries_reason_and_code():
    error = NotFoundError("Order", "o-1")
    assert error.to_dict() == {"detail": "Order o-1 not found", "code": "not_found"}


@pytest.mark.parametrize("raw,expected", [
    ('["https://a.example", "https://b.example"]', ["https://a.example", "https://b.example"]),
    ("https://a.example, https://b.example", ["https://a.example", "https://b.example"]),
])
def test_cors_origins_parsing(monkeypatch, raw, expected):
    monkeypatch.setenv("CORS_ORIGINS", raw)
    assert Settings().CORS_ORIGINS == expected


def test_export_separator_must_differ_from_delimiter():
    with pytest.raises(ValueError):
        Settings(EXPORT_DELIMITER=";", EXPORT_MULTI_VALUE_SEPARATOR=";")
