"""
Order status lifecycle.

    pending -> processing -> shipped -> delivered
    pending -> cancelled

``delivered`` and ``cancelled`` are terminal. Only pending -> cancelled has a
side effect (stock comes back); the engine owns that, this module only answers
whether a move is legal.
"""
from typing import Dict, FrozenSet, Union

from ..common.errors import InvalidTransition, ValidationError
from .model import OrderStatus

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def parse_status(value: Union[str, OrderStatus]) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        valid = ", ".join(s.value for s in OrderStatus)
        raise ValidationError(f"Invalid status. Must be one of: {valid}")


def is_terminal(status: OrderStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: OrderStatus, requested: OrderStatus) -> None:
    if can_transition(current, requested):
        return
    if requested is OrderStatus.CANCELLED:
        raise InvalidTransition(
            current.value,
            requested.value,
            f"Only pending orders can be cancelled (order is {current.value})",
        )
    raise InvalidTransition(current.value, requested.value)
