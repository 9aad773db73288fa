"""
Domain events.

Engines publish an event after each committed change so that consumers
(dashboard cache, webhook forwarders, analytics) can react without the
engine knowing about them.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Union


logger = logging.getLogger(__name__)


class EventType:
    """Event type constants."""
    ORDER_STATUS_CHANGED = "OrderStatusChanged"
    PAYMENT_STATUS_CHANGED = "PaymentStatusChanged"
    TRACKING_UPDATED = "TrackingUpdated"
    ORDER_FLAGGED_DUPLICATE = "OrderFlaggedDuplicate"
    NDR_CREATED = "NDRCreated"
    NDR_RESOLVED = "NDRResolved"
    NDR_CANCELLED = "NDRCancelled"
    NDR_AUTO_RESOLVED = "NDRAutoResolved"
    NOTIFICATION_SENT = "NotificationSent"
    RETURN_REQUESTED = "ReturnRequested"
    RETURN_APPROVED = "ReturnApproved"
    RETURN_REJECTED = "ReturnRejected"


@dataclass
class DomainEvent:
    """
    Something that happened to an order.

    Attributes:
        event_type: One of the EventType constants
        occurred_at: When the change was committed
        data: Identifiers and before/after values of the change
    """
    event_type: str
    data: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventHandler = Callable[[DomainEvent], Union[Awaitable[None], None]]

ALL_EVENTS = "*"


class EventBus:
    """In-process publish/subscribe for domain events."""

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Register a handler; use ``ALL_EVENTS`` to receive everything."""
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if handler in self._handlers.get(event_type, []):
            self._handlers[event_type].remove(handler)

    async def publish(self, event: DomainEvent) -> None:
        """
        Deliver an event to its subscribers.

        The change behind the event is already committed, so a failing
        subscriber is logged and the remaining subscribers still run.
        """
        handlers = self._handlers.get(event.event_type, []) + self._handlers.get(ALL_EVENTS, [])
        for handler in handlers:
            try:
                outcome = handler(event)
                if outcome is not None and hasattr(outcome, "__await__"):
                    await outcome
            except Exception:
                logger.exception(f"Event handler {handler!r} failed for {event.event_type}")

    async def publish_all(self, events: List[DomainEvent]) -> None:
        for event in events:
            await self.publish(event)
