import itertools

import pytest

from orderflow.core.exceptions import InvalidOrderStateError
from orderflow.models.database import OrderStatus, PaymentStatus
from orderflow.services.state_machine import (
    CANCELLABLE_STATUSES, InvalidTransition, allowed_targets, ensure_payment_transition,
    ensure_transition, is_terminal, validate_transition,
)

LEGAL_TRANSITIONS = {
    (OrderStatus.PENDING, OrderStatus.PROCESSING),
    (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
    (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
}


class TestOrderTransitions:

    def test_exactly_the_legal_pairs_are_accepted(self):
        for current, target in itertools.product(OrderStatus, repeat=2):
            result = validate_transition(current, target)
            if (current, target) in LEGAL_TRANSITIONS:
                assert result is None, f"{current} -> {target} should be allowed"
            else:
                assert isinstance(result, InvalidTransition), f"{current} -> {target} should be rejected"
                assert result.current == current
                assert result.next == target
                assert result.reason

    @pytest.mark.parametrize("status", list(OrderStatus))
    def test_self_transitions_are_rejected(self, status):
        assert validate_transition(status, status) is not None

    @pytest.mark.parametrize("terminal", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
    def test_terminal_statuses_have_no_exits(self, terminal):
        assert is_terminal(terminal)
        assert allowed_targets(terminal) == frozenset()
        invalid = validate_transition(terminal, OrderStatus.PENDING)
        assert "final" in invalid.reason

    def test_skipping_a_stage_names_the_required_predecessor(self):
        invalid = validate_transition(OrderStatus.PENDING, OrderStatus.SHIPPED)
        assert "PROCESSING" in invalid.reason

    def test_statuses_given_as_strings_are_accepted(self):
        assert validate_transition("pending", "processing") is None
        assert validate_transition("SHIPPED", "DELIVERED") is None

    def test_ensure_transition_raises_invalid_order_state(self):
        with pytest.raises(InvalidOrderStateError) as exc_info:
            ensure_transition(OrderStatus.DELIVERED, OrderStatus.CANCELLED, order_id=42)

        error = exc_info.value
        assert error.order_id == 42
        assert error.current == OrderStatus.DELIVERED
        assert error.requested == OrderStatus.CANCELLED
        assert error.code == "INVALID_ORDER_STATE"

    def test_only_pending_and_processing_can_be_cancelled(self):
        assert CANCELLABLE_STATUSES == {OrderStatus.PENDING, OrderStatus.PROCESSING}


class TestPaymentTransitions:

    def test_unpaid_to_paid_to_refunded(self):
        ensure_payment_transition(PaymentStatus.UNPAID, PaymentStatus.PAID)
        ensure_payment_transition(PaymentStatus.PAID, PaymentStatus.REFUNDED)

    @pytest.mark.parametrize("current,target", [
        (PaymentStatus.UNPAID, PaymentStatus.REFUNDED),
        (PaymentStatus.REFUNDED, PaymentStatus.PAID),
        (PaymentStatus.PAID, PaymentStatus.PAID),
    ])
    def test_other_payment_moves_are_rejected(self, current, target):
        with pytest.raises(InvalidOrderStateError):
            ensure_payment_transition(current, target)
