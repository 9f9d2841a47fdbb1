"""Order lifecycle state machine.

Defines the legal order states and the directed edges between them. The
validator is pure and total: every (current, requested) pair of OrderState
values has a defined answer, and nothing here touches storage.
"""

from orderflow.models.enums import OrderState
from orderflow.models.errors import IllegalTransitionError

# Terminal order states: once reached, the order never changes again.
TERMINAL_STATES: frozenset[OrderState] = frozenset(
    {
        OrderState.RELEASED,
        OrderState.REFUNDED,
        OrderState.CANCELLED,
    }
)

# Allowed transitions.
#
# Key   : current state
# Value : states the order may move to from there
#
# Every non-terminal state may also move to CANCELLED. Self-transitions are
# never allowed, so a replayed fact for a state the order is already in is
# rejected rather than re-applied.
ALLOWED_TRANSITIONS: dict[OrderState, frozenset[OrderState]] = {
    OrderState.PENDING_PAYMENT: frozenset(
        {
            OrderState.PAID,
            OrderState.CANCELLED,
        }
    ),
    OrderState.PAID: frozenset(
        {
            OrderState.READY_FOR_HANDOVER,
            OrderState.REFUNDED,
            OrderState.CANCELLED,
        }
    ),
    OrderState.READY_FOR_HANDOVER: frozenset(
        {
            OrderState.SHIPPED,
            OrderState.CANCELLED,
        }
    ),
    OrderState.SHIPPED: frozenset(
        {
            OrderState.DELIVERED,
            OrderState.CANCELLED,
        }
    ),
    OrderState.DELIVERED: frozenset(
        {
            OrderState.RELEASED,
            OrderState.CANCELLED,
        }
    ),
    OrderState.RELEASED: frozenset(),
    OrderState.REFUNDED: frozenset(),
    OrderState.CANCELLED: frozenset(),
}


def is_terminal(state: OrderState) -> bool:
    """Return True if the given state is terminal."""
    return state in TERMINAL_STATES


def allowed_targets(state: OrderState) -> frozenset[OrderState]:
    """Return the states reachable from ``state`` in one transition."""
    return ALLOWED_TRANSITIONS.get(state, frozenset())


def allowed(current: OrderState, requested: OrderState) -> bool:
    """Return True if the transition current -> requested is allowed."""
    return requested in allowed_targets(current)


def require_transition(current: OrderState, requested: OrderState) -> None:
    """Raise unless current -> requested is allowed.

    Raises:
        IllegalTransitionError: If the transition is not in the table.
    """
    if not allowed(current, requested):
        raise IllegalTransitionError(
            details={"current_state": current.value, "requested_state": requested.value}
        )
