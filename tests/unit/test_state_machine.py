"""Unit tests for the order state machine validator.

The validator is pure, so every (current, requested) pair is checked
against the transition table.

Test categories:
- Allowed edges along the happy path, refund and cancellation
- Every pair outside the table is denied
- Terminal states
- require_transition error details
"""

import itertools

import pytest

from orderflow.models import ErrorCode, IllegalTransitionError, OrderState
from orderflow.services.state_machine import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    allowed,
    allowed_targets,
    is_terminal,
    require_transition,
)

EXPECTED_EDGES = {
    (OrderState.PENDING_PAYMENT, OrderState.PAID),
    (OrderState.PAID, OrderState.READY_FOR_HANDOVER),
    (OrderState.READY_FOR_HANDOVER, OrderState.SHIPPED),
    (OrderState.SHIPPED, OrderState.DELIVERED),
    (OrderState.DELIVERED, OrderState.RELEASED),
    (OrderState.PAID, OrderState.REFUNDED),
    (OrderState.PENDING_PAYMENT, OrderState.CANCELLED),
    (OrderState.PAID, OrderState.CANCELLED),
    (OrderState.READY_FOR_HANDOVER, OrderState.CANCELLED),
    (OrderState.SHIPPED, OrderState.CANCELLED),
    (OrderState.DELIVERED, OrderState.CANCELLED),
}

ALL_PAIRS = list(itertools.product(OrderState, OrderState))


class TestTransitionTable:
    """The table covers every state and contains exactly the lifecycle edges."""

    def test_every_state_has_an_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(OrderState)

    def test_table_matches_lifecycle_edges(self):
        edges = {
            (current, target)
            for current, targets in ALLOWED_TRANSITIONS.items()
            for target in targets
        }
        assert edges == EXPECTED_EDGES

    @pytest.mark.parametrize("current,requested", ALL_PAIRS)
    def test_allowed_is_total(self, current: OrderState, requested: OrderState):
        assert allowed(current, requested) == ((current, requested) in EXPECTED_EDGES)

    @pytest.mark.parametrize("state", list(OrderState))
    def test_self_transition_never_allowed(self, state: OrderState):
        assert not allowed(state, state)

    def test_stale_payment_after_refund_is_denied(self):
        assert not allowed(OrderState.REFUNDED, OrderState.PAID)

    def test_refund_only_from_paid(self):
        sources = {s for s in OrderState if allowed(s, OrderState.REFUNDED)}
        assert sources == {OrderState.PAID}


class TestTerminalStates:
    @pytest.mark.parametrize("state", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_terminal_states_have_no_targets(self, state: OrderState):
        assert is_terminal(state)
        assert allowed_targets(state) == frozenset()

    @pytest.mark.parametrize(
        "state", [s for s in OrderState if s not in TERMINAL_STATES]
    )
    def test_non_terminal_states_can_cancel(self, state: OrderState):
        assert not is_terminal(state)
        assert OrderState.CANCELLED in allowed_targets(state)

    def test_terminal_set(self):
        assert TERMINAL_STATES == {
            OrderState.RELEASED,
            OrderState.REFUNDED,
            OrderState.CANCELLED,
        }


class TestRequireTransition:
    def test_allowed_transition_passes(self):
        require_transition(OrderState.PENDING_PAYMENT, OrderState.PAID)

    def test_illegal_transition_raises_with_details(self):
        with pytest.raises(IllegalTransitionError) as exc_info:
            require_transition(OrderState.PAID, OrderState.PAID)

        error = exc_info.value
        assert error.code == ErrorCode.ILLEGAL_TRANSITION
        assert not error.retryable
        assert error.details == {"current_state": "paid", "requested_state": "paid"}
