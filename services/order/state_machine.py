"""
services/order/state_machine.py
Order lifecycle: pending → confirmed → completed, with cancellation allowed
from pending and confirmed. Completed and cancelled are terminal.
"""

from shared.models.models import OrderStatus

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

ACTIVE_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED)


class InvalidTransition(ValueError):
    def __init__(self, current: OrderStatus, target: OrderStatus):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move order from '{OrderStatus(current).value}' to '{OrderStatus(target).value}'"
        )


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return OrderStatus(target) in ALLOWED_TRANSITIONS[OrderStatus(current)]


def is_terminal(status: OrderStatus) -> bool:
    return not ALLOWED_TRANSITIONS[OrderStatus(status)]


def transition(order, target: OrderStatus) -> OrderStatus:
    """Move `order` to `target` or raise InvalidTransition. Returns the previous status."""
    previous = OrderStatus(order.status)
    if not can_transition(previous, target):
        raise InvalidTransition(previous, target)
    order.status = target
    return previous
