"""
Order lifecycle state machine. Valid transitions enforce business rules.
"""
from enum import Enum

from marketplace.errors import InvalidTransitionError


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY = "READY"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


# Current status -> allowed next statuses
VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED, OrderStatus.REFUNDED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.REFUNDED}),  # refund after a charged cancellation
    OrderStatus.REFUNDED: frozenset(),  # terminal
}

TERMINAL_STATES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
)

# Transitions that must carry a human-readable reason on the audit event
REASON_REQUIRED: frozenset[OrderStatus] = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})

# Timestamp column stamped when an order enters the status
STATUS_TIMESTAMPS: dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PREPARING: "prepared_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.REFUNDED: "refunded_at",
}


def allowed_transitions(current: OrderStatus | str) -> list[OrderStatus]:
    """Next statuses offered for an order, in lifecycle order (drives action menus)."""
    allowed = VALID_TRANSITIONS.get(OrderStatus(current), frozenset())
    return [status for status in OrderStatus if status in allowed]


def is_valid_transition(current: OrderStatus | str | None, target: OrderStatus | str) -> bool:
    """True if target is allowed after current."""
    if current is None:
        return False
    allowed = VALID_TRANSITIONS.get(OrderStatus(current), frozenset())
    return OrderStatus(target) in allowed


def assert_transition(current: OrderStatus | str | None, target: OrderStatus | str) -> None:
    if not is_valid_transition(current, target):
        raise InvalidTransitionError(
            current_status=OrderStatus(current).value if current is not None else None,
            requested_status=OrderStatus(target).value,
        )


def is_terminal(status: OrderStatus | str) -> bool:
    return OrderStatus(status) in TERMINAL_STATES
