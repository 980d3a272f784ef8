"""
Order lifecycle rules.

Legal transitions live in a single table keyed by status:

    PENDING -> PROCESSING -> SHIPPED -> DELIVERED
    PENDING | PROCESSING -> CANCELLED

Anything not listed, including self-transitions and every move out of a
terminal status, is rejected. The functions here have no side effects.
"""
from typing import Dict, FrozenSet, NamedTuple, Optional

from orderflow.core.exceptions import InvalidOrderStateError
from orderflow.models.database import OrderStatus, PaymentStatus

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.UNPAID: frozenset({PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

INITIAL_STATUS = OrderStatus.PENDING
CANCELLABLE_STATUSES = frozenset(
    status for status, targets in ORDER_TRANSITIONS.items() if OrderStatus.CANCELLED in targets
)


class InvalidTransition(NamedTuple):
    current: OrderStatus
    next: OrderStatus
    reason: str


def allowed_targets(status: OrderStatus) -> FrozenSet[OrderStatus]:
    return ORDER_TRANSITIONS[OrderStatus(status)]


def is_terminal(status: OrderStatus) -> bool:
    return not allowed_targets(status)


def validate_transition(current: OrderStatus, next_status: OrderStatus) -> Optional[InvalidTransition]:
    """Return None when current -> next_status is legal, otherwise the reason it is not"""
    current = OrderStatus(current)
    next_status = OrderStatus(next_status)

    if next_status in ORDER_TRANSITIONS[current]:
        return None

    if is_terminal(current):
        reason = f"{current} orders are final and cannot change status"
    elif current == next_status:
        reason = f"order is already {current}"
    elif next_status == INITIAL_STATUS:
        reason = f"{INITIAL_STATUS} is only valid for new orders"
    else:
        predecessors = sorted(
            str(status) for status, targets in ORDER_TRANSITIONS.items() if next_status in targets
        )
        reason = f"can only move to {next_status} from {' or '.join(predecessors)}"
    return InvalidTransition(current, next_status, reason)


def ensure_transition(current: OrderStatus, next_status: OrderStatus, order_id: Optional[int] = None) -> None:
    invalid = validate_transition(current, next_status)
    if invalid is not None:
        raise InvalidOrderStateError(order_id, invalid.current, invalid.next, invalid.reason)


def ensure_payment_transition(
    current: PaymentStatus, next_status: PaymentStatus, order_id: Optional[int] = None
) -> None:
    current = PaymentStatus(current)
    next_status = PaymentStatus(next_status)
    if next_status not in PAYMENT_TRANSITIONS[current]:
        raise InvalidOrderStateError(
            order_id, current, next_status, f"payment cannot move from {current} to {next_status}"
        )
