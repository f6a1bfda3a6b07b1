"""Consistency sweep over Load.settlement_id backrefs and Settlement.load_ids."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_engine.exceptions import LinkPropagationError
from settlement_engine.models import Load, Settlement
from settlement_engine.services.load_ledger import LoadLedger
from settlement_engine.services.settlement_store import SettlementStore

logger = logging.getLogger(__name__)


class LinkIssueKind(str, Enum):
    """Kinds of backref inconsistency."""

    ORPHAN_BACKREF = "orphan_backref"  # load points at a settlement that no longer exists
    FOREIGN_BACKREF = "foreign_backref"  # load points at a settlement that does not list it
    MISSING_BACKREF = "missing_backref"  # settlement lists a load that does not point back
    CONFLICTING_CLAIM = "conflicting_claim"  # load listed by more than one settlement
    MISSING_LOAD = "missing_load"  # settlement lists a load that does not exist


REPAIRABLE_KINDS = frozenset(
    {
        LinkIssueKind.ORPHAN_BACKREF,
        LinkIssueKind.FOREIGN_BACKREF,
        LinkIssueKind.MISSING_BACKREF,
    }
)


@dataclass
class LinkIssue:
    kind: LinkIssueKind
    load_id: str
    settlement_id: str | None
    detail: str

    @property
    def repairable(self) -> bool:
        return self.kind in REPAIRABLE_KINDS

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "load_id": self.load_id,
            "settlement_id": self.settlement_id,
            "detail": self.detail,
            "repairable": self.repairable,
        }


@dataclass
class LinkAuditReport:
    """Result of a scan, and of a repair when one was run."""

    settlements_checked: int = 0
    loads_checked: int = 0
    issues: list[LinkIssue] = field(default_factory=list)
    repaired: int = 0
    errors: list[LinkPropagationError] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.issues

    def of_kind(self, kind: LinkIssueKind) -> list[LinkIssue]:
        return [issue for issue in self.issues if issue.kind == kind]

    def to_dict(self) -> dict[str, Any]:
        return {
            "settlements_checked": self.settlements_checked,
            "loads_checked": self.loads_checked,
            "consistent": self.is_consistent,
            "issues": [issue.to_dict() for issue in self.issues],
            "repaired": self.repaired,
            "errors": [error.to_dict() for error in self.errors],
        }


class LinkAuditor:
    """Detects and repairs drift between loads and the settlements that paid them.

    Settlement.load_ids is treated as the source of truth. Backrefs that
    disagree with it are cleared or rewritten; conflicting claims and
    missing loads are reported for an operator to resolve.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.ledger = LoadLedger(session)
        self.store = SettlementStore(session)

    async def scan(self) -> LinkAuditReport:
        result = await self.session.execute(select(Settlement).order_by(Settlement.id))
        settlements = {s.id: s for s in result.scalars().all()}

        claims: dict[str, list[str]] = defaultdict(list)
        for settlement in settlements.values():
            for load_id in settlement.load_ids or []:
                claims[load_id].append(settlement.id)

        loads: dict[str, Load] = {}
        if claims:
            result = await self.session.execute(select(Load).where(Load.id.in_(list(claims))))
            loads = {load.id: load for load in result.scalars().all()}
        for load in await self.ledger.linked_loads():
            loads.setdefault(load.id, load)

        report = LinkAuditReport(settlements_checked=len(settlements), loads_checked=len(loads))

        for load in sorted(loads.values(), key=lambda item: item.id):
            if load.settlement_id is None:
                continue
            owner = settlements.get(load.settlement_id)
            if owner is None:
                report.issues.append(
                    LinkIssue(
                        LinkIssueKind.ORPHAN_BACKREF,
                        load.id,
                        load.settlement_id,
                        f"Load points at missing settlement {load.settlement_id}",
                    )
                )
            elif load.id not in (owner.load_ids or []):
                report.issues.append(
                    LinkIssue(
                        LinkIssueKind.FOREIGN_BACKREF,
                        load.id,
                        load.settlement_id,
                        f"Settlement {owner.settlement_number} does not list this load",
                    )
                )

        for load_id in sorted(claims):
            claimants = claims[load_id]
            if load_id not in loads:
                for settlement_id in claimants:
                    report.issues.append(
                        LinkIssue(
                            LinkIssueKind.MISSING_LOAD,
                            load_id,
                            settlement_id,
                            "Settlement lists a load that does not exist",
                        )
                    )
                continue

            if len(claimants) > 1:
                report.issues.append(
                    LinkIssue(
                        LinkIssueKind.CONFLICTING_CLAIM,
                        load_id,
                        loads[load_id].settlement_id,
                        f"Load is listed by settlements {', '.join(claimants)}",
                    )
                )
                continue

            settlement_id = claimants[0]
            if loads[load_id].settlement_id != settlement_id:
                report.issues.append(
                    LinkIssue(
                        LinkIssueKind.MISSING_BACKREF,
                        load_id,
                        settlement_id,
                        f"Load backref is {loads[load_id].settlement_id!r}",
                    )
                )

        if report.issues:
            logger.warning("Link audit found %d issue(s)", len(report.issues))
        else:
            logger.info(
                "Link audit clean: %d settlement(s), %d load(s)",
                report.settlements_checked,
                report.loads_checked,
            )
        return report

    async def repair(self) -> LinkAuditReport:
        """Scan, then clear bad backrefs and restore missing ones.

        Clears run before links so a load moved between settlements ends up
        pointing at the settlement that lists it.
        """
        report = await self.scan()

        clears = [
            issue
            for issue in report.issues
            if issue.kind in (LinkIssueKind.ORPHAN_BACKREF, LinkIssueKind.FOREIGN_BACKREF)
        ]
        links = report.of_kind(LinkIssueKind.MISSING_BACKREF)

        for issue in clears:
            try:
                await self.ledger.unlink_load(issue.load_id, issue.settlement_id)
            except LinkPropagationError as e:
                logger.warning("Repair could not clear backref on load %s: %s", issue.load_id, e.reason)
                report.errors.append(e)
                continue
            report.repaired += 1
            await self.store.record_audit(
                issue.load_id, "backref_cleared", issue.to_dict(), entity_type="load"
            )

        for issue in links:
            try:
                await self.ledger.link_load(issue.load_id, issue.settlement_id)
            except LinkPropagationError as e:
                logger.warning("Repair could not link load %s: %s", issue.load_id, e.reason)
                report.errors.append(e)
                continue
            report.repaired += 1
            await self.store.record_audit(
                issue.load_id, "backref_restored", issue.to_dict(), entity_type="load"
            )

        await self.session.flush()
        logger.info(
            "Link repair: %d fixed, %d failed, %d left for review",
            report.repaired,
            len(report.errors),
            len([issue for issue in report.issues if not issue.repairable]),
        )
        return report
