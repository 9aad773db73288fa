"""
Error taxonomy for the order, NDR and returns engines.

Every error carries a machine-readable ``code`` and a human-readable
``message``. The dashboard shows ``message`` directly, so it must read as a
complete sentence without the code.
"""

from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ordercore.services.notification_dispatcher import DispatchResult


class OrderCoreError(Exception):
    """Base class for all domain errors."""

    code = "order_core_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class NotFoundError(OrderCoreError):
    """Unknown id for an order, NDR, notification, return or policy."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: Any, message: Optional[str] = None):
        super().__init__(
            message or f"{entity} {entity_id} not found",
            entity=entity,
            entity_id=str(entity_id),
        )
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(OrderCoreError):
    """Unrecognized status value, or a transition the state machine forbids."""

    code = "invalid_transition"


class AlreadyResolvedError(OrderCoreError):
    code = "already_resolved"


class ConcurrencyConflictError(OrderCoreError):
    """Optimistic-lock failure: the row changed since it was read. Retry."""

    code = "concurrency_conflict"


class DispatchError(OrderCoreError):
    """A notification channel failed. The change it accompanied stays applied."""

    code = "dispatch_failed"

    def __init__(
        self,
        message: str,
        channel: Optional[str] = None,
        result: Optional["DispatchResult"] = None,
    ):
        super().__init__(message, channel=channel)
        self.channel = channel
        self.result = result


class InvalidRequestError(OrderCoreError):
    code = "invalid_request"
