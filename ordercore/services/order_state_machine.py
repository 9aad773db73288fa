"""
Order State Machine

This module is the SINGLE SOURCE OF TRUTH for order and payment status
transitions. OrderLifecycleService (and the returns flow, through it) must
validate every change here before writing.

Order lifecycle:
    pending -> confirmed -> processing -> shipped -> delivered
    cancelled / returned reachable from any non-terminal state
    delivered -> return_requested -> returned | cancelled | delivered

Payment lifecycle (independent of the order lifecycle):
    pending -> paid | failed
    paid -> refunded | partially_refunded
    partially_refunded -> refunded
"""

from typing import Dict, List, Optional

from ordercore.core.enum_utils import to_enum, enum_values
from ordercore.exceptions import InvalidTransitionError
from ordercore.models.order import OrderStatus, PaymentStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
ORDER_TRANSITIONS: Dict[OrderStatus, List[OrderStatus]] = {
    OrderStatus.PENDING: [
        OrderStatus.CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,          # Tracking assigned straight away
        OrderStatus.CANCELLED,
        OrderStatus.RETURNED,
    ],
    OrderStatus.CONFIRMED: [
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
        OrderStatus.RETURNED,
    ],
    OrderStatus.PROCESSING: [
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
        OrderStatus.RETURNED,
    ],
    OrderStatus.SHIPPED: [
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,        # Lost in transit / RTO before delivery
        OrderStatus.RETURNED,
    ],
    OrderStatus.DELIVERED: [
        OrderStatus.RETURN_REQUESTED,
    ],
    OrderStatus.RETURN_REQUESTED: [
        OrderStatus.RETURNED,
        OrderStatus.CANCELLED,
        OrderStatus.DELIVERED,        # Return rejected
    ],
    OrderStatus.CANCELLED: [],        # Terminal state - no transitions
    OrderStatus.RETURNED: [],         # Terminal state - no transitions
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, List[PaymentStatus]] = {
    PaymentStatus.PENDING: [PaymentStatus.PAID, PaymentStatus.FAILED],
    PaymentStatus.PAID: [PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED],
    PaymentStatus.PARTIALLY_REFUNDED: [PaymentStatus.REFUNDED],
    PaymentStatus.FAILED: [],
    PaymentStatus.REFUNDED: [],
}

# Entering one of these statuses stamps the matching timestamp column
STATUS_TIMESTAMP_FIELDS: Dict[OrderStatus, str] = {
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


# =============================================================================
# PARSING
# =============================================================================

def parse_order_status(value) -> OrderStatus:
    """Convert caller input to OrderStatus. Unknown values are rejected, never coerced."""
    status = to_enum(value, OrderStatus)
    if status is None:
        raise InvalidTransitionError(
            f"'{value}' is not a valid order status. "
            f"Valid statuses: {', '.join(enum_values(OrderStatus))}",
            status=str(value),
        )
    return status


def parse_payment_status(value) -> PaymentStatus:
    status = to_enum(value, PaymentStatus)
    if status is None:
        raise InvalidTransitionError(
            f"'{value}' is not a valid payment status. "
            f"Valid statuses: {', '.join(enum_values(PaymentStatus))}",
            payment_status=str(value),
        )
    return status


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: OrderStatus, new_status: OrderStatus) -> bool:
    """Check if a transition is allowed. Re-applying the current status is, unless terminal."""
    if is_terminal(current_status):
        return False
    if current_status == new_status:
        return True
    return new_status in ORDER_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: OrderStatus) -> List[OrderStatus]:
    """Get list of statuses that can be transitioned to from current status."""
    return list(ORDER_TRANSITIONS.get(current_status, []))


def is_terminal(status: OrderStatus) -> bool:
    return not ORDER_TRANSITIONS.get(status)


def validate_transition(current_status: OrderStatus, new_status: OrderStatus) -> None:
    """
    Validate an order status transition. Raises InvalidTransitionError if invalid.
    """
    if can_transition(current_status, new_status):
        return

    allowed = get_allowed_transitions(current_status)
    if not allowed:
        raise InvalidTransitionError(
            f"Order in '{current_status.value}' status cannot be modified. "
            f"This is a terminal state.",
            from_status=current_status.value,
            to_status=new_status.value,
        )
    raise InvalidTransitionError(
        f"Cannot change order from '{current_status.value}' to '{new_status.value}'. "
        f"Allowed transitions: {', '.join(s.value for s in allowed)}",
        from_status=current_status.value,
        to_status=new_status.value,
    )


def validate_payment_transition(
    current_status: PaymentStatus,
    new_status: PaymentStatus,
) -> None:
    if current_status == new_status:
        return
    allowed = PAYMENT_TRANSITIONS.get(current_status, [])
    if new_status not in allowed:
        allowed_text = ", ".join(s.value for s in allowed) or "none"
        raise InvalidTransitionError(
            f"Cannot change payment from '{current_status.value}' to '{new_status.value}'. "
            f"Allowed transitions: {allowed_text}",
            from_status=current_status.value,
            to_status=new_status.value,
        )


def timestamp_field_for(status: OrderStatus) -> Optional[str]:
    return STATUS_TIMESTAMP_FIELDS.get(status)
