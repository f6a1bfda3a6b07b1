"""ORM models."""

from settlement_engine.models.base import Base, TimestampMixin
from settlement_engine.models.driver import Driver
from settlement_engine.models.load import ELIGIBLE_LOAD_STATUSES, Load
from settlement_engine.models.settlement import AuditEvent, Settlement

__all__ = [
    "Base",
    "TimestampMixin",
    "Driver",
    "Load",
    "ELIGIBLE_LOAD_STATUSES",
    "Settlement",
    "AuditEvent",
]
