"""Settlement engine services."""

from settlement_engine.services.link_audit import LinkAuditor, LinkAuditReport, LinkIssueKind
from settlement_engine.services.load_ledger import LoadLedger
from settlement_engine.services.reconciliation_engine import CommitResult, ReconciliationEngine
from settlement_engine.services.settlement_store import (
    SettlementFilter,
    SettlementSort,
    SettlementStore,
)
from settlement_engine.services.state_machine import (
    PaymentStatus,
    SettlementLifecycle,
    SettlementStateMachine,
)

__all__ = [
    "LinkAuditor",
    "LinkAuditReport",
    "LinkIssueKind",
    "LoadLedger",
    "CommitResult",
    "ReconciliationEngine",
    "SettlementFilter",
    "SettlementSort",
    "SettlementStore",
    "PaymentStatus",
    "SettlementLifecycle",
    "SettlementStateMachine",
]
