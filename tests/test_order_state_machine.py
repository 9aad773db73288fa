import pytest

from ordercore.exceptions import InvalidTransitionError
from ordercore.models.order import OrderStatus, PaymentStatus
from ordercore.services.order_state_machine import (
    ORDER_TRANSITIONS,
    can_transition,
    get_allowed_transitions,
    is_terminal,
    parse_order_status,
    parse_payment_status,
    timestamp_field_for,
    validate_payment_transition,
    validate_transition,
)


def test_every_status_has_a_transition_entry():
    assert set(ORDER_TRANSITIONS) == set(OrderStatus)


@pytest.mark.parametrize("current,target", [
    (OrderStatus.PENDING, OrderStatus.CONFIRMED),
    (OrderStatus.PENDING, OrderStatus.SHIPPED),
    (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
    (OrderStatus.DELIVERED, OrderStatus.RETURN_REQUESTED),
    (OrderStatus.RETURN_REQUESTED, OrderStatus.RETURNED),
    (OrderStatus.RETURN_REQUESTED, OrderStatus.DELIVERED),
])
def test_allowed_transitions(current, target):
    assert can_transition(current, target)
    validate_transition(current, target)


@pytest.mark.parametrize("current,target", [
    (OrderStatus.DELIVERED, OrderStatus.PENDING),
    (OrderStatus.SHIPPED, OrderStatus.PROCESSING),
    (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
])
def test_forbidden_transition_lists_allowed_targets(current, target):
    with pytest.raises(InvalidTransitionError) as exc:
        validate_transition(current, target)
    allowed = ", ".join(s.value for s in get_allowed_transitions(current))
    assert allowed in exc.value.message


def test_terminal_states_reject_everything():
    for status in (OrderStatus.CANCELLED, OrderStatus.RETURNED):
        assert is_terminal(status)
        with pytest.raises(InvalidTransitionError, match="terminal state"):
            validate_transition(status, OrderStatus.PENDING)


def test_reapplying_current_status_is_allowed():
    assert can_transition(OrderStatus.SHIPPED, OrderStatus.SHIPPED)


@pytest.mark.parametrize("status", [OrderStatus.CANCELLED, OrderStatus.RETURNED])
def test_terminal_states_reject_reapplying_current_status(status):
    assert not can_transition(status, status)
    with pytest.raises(InvalidTransitionError, match="terminal state"):
        validate_transition(status, status)


def test_parse_order_status_is_case_insensitive():
    assert parse_order_status("SHIPPED") is OrderStatus.SHIPPED
    assert parse_order_status(" delivered ") is OrderStatus.DELIVERED


def test_unknown_status_is_rejected_not_coerced():
    with pytest.raises(InvalidTransitionError) as exc:
        parse_order_status("lost")
    assert "'lost' is not a valid order status" in exc.value.message
    assert exc.value.code == "invalid_transition"


def test_payment_transitions():
    validate_payment_transition(PaymentStatus.PENDING, PaymentStatus.PAID)
    validate_payment_transition(PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED)
    validate_payment_transition(PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED)
    with pytest.raises(InvalidTransitionError, match="Allowed transitions: none"):
        validate_payment_transition(PaymentStatus.REFUNDED, PaymentStatus.PAID)
    with pytest.raises(InvalidTransitionError):
        parse_payment_status("chargeback")


def test_status_timestamp_fields():
    assert timestamp_field_for(OrderStatus.SHIPPED) == "shipped_at"
    assert timestamp_field_for(OrderStatus.DELIVERED) == "delivered_at"
    assert timestamp_field_for(OrderStatus.CANCELLED) == "cancelled_at"
    assert timestamp_field_for(OrderStatus.CONFIRMED) is None
