"""Settlement lifecycle state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from settlement_engine.exceptions import InvalidTransitionError

if TYPE_CHECKING:
    from settlement_engine.models import Settlement


class SettlementLifecycle(str, Enum):
    """Engine states. Screens in a UI map onto calls against these."""

    DRAFT = "draft"
    COMMITTED = "committed"
    DELETED = "deleted"


class PaymentStatus(str, Enum):
    """Advisory payment status stored on a committed settlement."""

    PENDING = "pending"
    PAID = "paid"


class SettlementStateMachine:
    """State machine for settlement lifecycle transitions.

    Allowed transitions:
    - draft → committed (commit)
    - committed → deleted (delete)

    Edits, adjustments, clones and mark-paid keep a settlement committed.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        SettlementLifecycle.DRAFT: [SettlementLifecycle.COMMITTED],
        SettlementLifecycle.COMMITTED: [SettlementLifecycle.DELETED],
        SettlementLifecycle.DELETED: [],  # Terminal state
    }

    @classmethod
    def can_transition(cls, from_state: str, to_state: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_state, [])
        return to_state in allowed

    @classmethod
    def validate_transition(cls, from_state: str, to_state: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_state, to_state):
            raise InvalidTransitionError(from_state, to_state)

    @classmethod
    def is_terminal(cls, state: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(state, [])

    @classmethod
    def get_next_states(cls, current_state: str) -> list[str]:
        """Get list of valid next states from current state."""
        return cls.VALID_TRANSITIONS.get(current_state, [])

    @classmethod
    def validate_delete(cls, settlement: Settlement, force: bool = False) -> list[str]:
        """Validate that a committed settlement may be deleted.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        if settlement.status == PaymentStatus.PAID and not force:
            errors.append("Cannot delete a paid settlement without force")
        return errors
