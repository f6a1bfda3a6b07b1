"""Settlement engine exception hierarchy."""

from __future__ import annotations


class SettlementEngineError(Exception):
    """Base exception for all settlement engine errors."""


class ValidationError(SettlementEngineError):
    """Input rejected before any write (missing driver, empty selection, bad amount)."""


class NotFoundError(SettlementEngineError):
    """Referenced settlement, driver, or load does not exist."""

    def __init__(self, entity_type: str, entity_id: str | None, message: str | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(message or f"{entity_type} {entity_id} not found")


class LinkPropagationError(SettlementEngineError):
    """A per-load settlement backref write failed.

    Never aborts the settlement write; collected and returned as a warning.
    """

    def __init__(self, load_id: str, settlement_id: str | None, reason: str):
        self.load_id = load_id
        self.settlement_id = settlement_id
        self.reason = reason
        super().__init__(f"Load {load_id}: {reason}")

    def to_dict(self) -> dict[str, str | None]:
        return {
            "load_id": self.load_id,
            "settlement_id": self.settlement_id,
            "reason": self.reason,
        }


class InvalidTransitionError(SettlementEngineError):
    """Raised when an invalid lifecycle transition is attempted."""

    def __init__(self, from_state: str, to_state: str, reason: str | None = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        msg = f"Invalid transition from '{from_state}' to '{to_state}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
