"""Tests for settlement lifecycle state machine."""

import pytest

from settlement_engine.exceptions import InvalidTransitionError
from settlement_engine.models import Settlement
from settlement_engine.services.state_machine import (
    PaymentStatus,
    SettlementLifecycle,
    SettlementStateMachine,
)


class TestSettlementStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        # draft → committed
        assert SettlementStateMachine.can_transition("draft", "committed") is True

        # committed → deleted
        assert SettlementStateMachine.can_transition("committed", "deleted") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        # A draft is never deleted, it is just discarded
        assert SettlementStateMachine.can_transition("draft", "deleted") is False

        # No way back
        assert SettlementStateMachine.can_transition("committed", "draft") is False

        # Edits keep a settlement committed; they are not transitions
        assert SettlementStateMachine.can_transition("committed", "committed") is False

        # Deleted is terminal
        assert SettlementStateMachine.can_transition("deleted", "committed") is False
        assert SettlementStateMachine.can_transition("deleted", "draft") is False

    def test_validate_transition_raises(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            SettlementStateMachine.validate_transition("deleted", "committed")

        assert exc_info.value.from_state == "deleted"
        assert exc_info.value.to_state == "committed"

    def test_terminal_and_next_states(self):
        assert SettlementStateMachine.is_terminal(SettlementLifecycle.DELETED) is True
        assert SettlementStateMachine.is_terminal(SettlementLifecycle.COMMITTED) is False
        assert SettlementStateMachine.get_next_states("draft") == [SettlementLifecycle.COMMITTED]
        assert SettlementStateMachine.get_next_states("unknown") == []


class TestDeleteValidation:
    """Paid settlements need force to be deleted."""

    def test_pending_settlement_deletable(self):
        settlement = Settlement(status=PaymentStatus.PENDING.value)
        assert SettlementStateMachine.validate_delete(settlement) == []

    def test_paid_settlement_needs_force(self):
        settlement = Settlement(status=PaymentStatus.PAID.value)
        errors = SettlementStateMachine.validate_delete(settlement)
        assert len(errors) == 1
        assert "paid" in errors[0]

    def test_paid_settlement_with_force(self):
        settlement = Settlement(status=PaymentStatus.PAID.value)
        assert SettlementStateMachine.validate_delete(settlement, force=True) == []
