"""Reconciliation engine - orchestrates settlement composition and load linking."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from settlement_engine.calculators.builder import SettlementBuilder, SettlementDraft
from settlement_engine.calculators.pay_policy import PayPolicy, ProfilePayPolicy
from settlement_engine.calculators.types import (
    AdditionalPayItem,
    DeductionItem,
    SettlementPeriod,
    SettlementSummary,
    SettlementTotals,
    YtdSummary,
    amounts_to_json,
    to_decimal,
)
from settlement_engine.exceptions import (
    InvalidTransitionError,
    LinkPropagationError,
    NotFoundError,
    ValidationError,
)
from settlement_engine.models import Driver, Load, Settlement
from settlement_engine.models.base import utcnow
from settlement_engine.services.load_ledger import LoadLedger
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

logger = logging.getLogger(__name__)

# Default for update arguments that leave the stored value alone
UNSET: Any = object()


@dataclass
class CommitResult:
    """A written settlement plus any per-load link failures."""

    settlement: Settlement
    link_errors: list[LinkPropagationError] = field(default_factory=list)

    @property
    def has_warnings(self) -> bool:
        return bool(self.link_errors)

    @property
    def warnings(self) -> list[dict[str, Any]]:
        return [error.to_dict() for error in self.link_errors]


class ReconciliationEngine:
    """Service for the settlement lifecycle.

    Operations:
    - start_draft / commit_draft: compose a settlement in memory, then write it
    - commit: validate a selection, write the settlement and link its loads
    - update: recompute from a new selection and reconcile load links
    - add_deduction / add_additional_pay / clone_deductions_from_previous_settlement
    - mark_paid: record the advisory payment status
    - delete: unlink loads and remove the settlement

    Settlement writes always succeed or fail as a whole. Per-load backref
    writes are best-effort: failures are logged and returned, never raised.
    """

    def __init__(self, session: AsyncSession, pay_policy: PayPolicy | None = None):
        self.session = session
        self.pay_policy = pay_policy or ProfilePayPolicy()
        self.ledger = LoadLedger(session)
        self.store = SettlementStore(session)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_settlement(self, settlement_id: str) -> Settlement:
        return await self.store.get(settlement_id)

    async def list_settlements(
        self,
        filters: SettlementFilter | None = None,
        sort: SettlementSort | None = None,
    ) -> list[Settlement]:
        return await self.store.list_settlements(filters, sort)

    async def find_eligible_loads(
        self,
        driver_id: str,
        period: SettlementPeriod,
        editing_settlement_id: str | None = None,
        descending: bool = False,
    ) -> list[Load]:
        driver = await self._resolve_driver(driver_id)
        return await self.ledger.find_eligible_loads(
            driver.id,
            period.start,
            period.end,
            editing_settlement_id=editing_settlement_id,
            descending=descending,
        )

    async def ytd_summary(self, driver_id: str, year: int) -> YtdSummary:
        driver = await self._resolve_driver(driver_id)
        return await self.store.ytd_summary(driver.id, year)

    def summarize(self, settlements: Iterable[Settlement]) -> SettlementSummary:
        return self.store.summarize(settlements)

    # ------------------------------------------------------------------
    # Draft
    # ------------------------------------------------------------------

    async def start_draft(
        self,
        driver_id: str,
        period: SettlementPeriod,
        editing_settlement_id: str | None = None,
        descending: bool = False,
    ) -> SettlementDraft:
        """Gather candidate loads for a driver and period into a new draft.

        When editing, the draft starts from the settlement's current
        selection and adjustment maps.
        """
        driver = await self._resolve_driver(driver_id)
        candidates = await self.ledger.find_eligible_loads(
            driver.id,
            period.start,
            period.end,
            editing_settlement_id=editing_settlement_id,
            descending=descending,
        )
        draft = SettlementDraft(
            driver=driver,
            period=period,
            candidates=candidates,
            policy=self.pay_policy,
            editing_settlement_id=editing_settlement_id,
        )

        if editing_settlement_id is not None:
            settlement = await self.store.get(editing_settlement_id)
            candidate_ids = {load.id for load in candidates}
            draft.selected_ids = [i for i in settlement.load_ids or [] if i in candidate_ids]
            draft.deductions = [
                DeductionItem(category=key, amount=amount)
                for key, amount in settlement.deduction_amounts.items()
            ]
            draft.additional_pay = [
                AdditionalPayItem(category=key, amount=amount)
                for key, amount in settlement.additional_pay_amounts.items()
            ]

        return draft

    async def commit_draft(
        self,
        draft: SettlementDraft,
        paid_on: date | None = UNSET,
        notes: str | None = UNSET,
    ) -> CommitResult:
        """Write a draft as a new settlement, or over the one it edits."""
        SettlementStateMachine.validate_transition(
            draft.lifecycle, SettlementLifecycle.COMMITTED.value
        )

        if draft.editing_settlement_id is not None:
            result = await self.update(
                draft.editing_settlement_id,
                draft.driver.id,
                draft.period,
                draft.selected_ids,
                draft.deductions,
                draft.additional_pay,
                paid_on=paid_on,
                notes=notes,
            )
        else:
            result = await self.commit(
                draft.driver.id,
                draft.period,
                draft.selected_ids,
                draft.deductions,
                draft.additional_pay,
                paid_on=None if paid_on is UNSET else paid_on,
                notes=None if notes is UNSET else notes,
            )

        draft.lifecycle = SettlementLifecycle.COMMITTED.value
        return result

    # ------------------------------------------------------------------
    # Commit / update
    # ------------------------------------------------------------------

    async def commit(
        self,
        driver_id: str,
        period: SettlementPeriod,
        selected_load_ids: Iterable[str],
        deductions: Iterable[DeductionItem] = (),
        additional_pay: Iterable[AdditionalPayItem] = (),
        paid_on: date | None = None,
        notes: str | None = None,
    ) -> CommitResult:
        """Create a settlement from a selection and link its loads.

        Raises:
            ValidationError: blank driver, empty or ineligible selection,
                bad adjustment
            NotFoundError: unknown driver or load
        """
        driver = await self._resolve_driver(driver_id)
        loads = await self._validate_selection(driver, selected_load_ids)
        totals = SettlementBuilder.compute_totals(
            driver, loads, deductions, additional_pay, self.pay_policy
        )

        settlement = Settlement(
            settlement_number=await self.store.next_settlement_number(utcnow().year),
            settlement_type="driver",
            driver_id=driver.id,
            driver_name=driver.display_name,
            period_start=period.start,
            period_end=period.end,
            period_display=period.display,
            paid_on=paid_on,
            notes=notes,
            status=PaymentStatus.PENDING.value,
        )
        self._apply_totals(settlement, totals)
        await self.store.add(settlement)

        link_errors = await self._link_loads(settlement.id, settlement.load_ids)

        await self.store.record_audit(
            settlement.id,
            "committed",
            {
                "settlement_number": settlement.settlement_number,
                "load_ids": list(settlement.load_ids),
                "net_pay": str(settlement.net_pay),
                "link_errors": [e.to_dict() for e in link_errors],
            },
        )
        await self.session.flush()

        logger.info(
            "Committed settlement %s for driver %s: %d load(s), net %s",
            settlement.settlement_number,
            driver.id,
            len(settlement.load_ids),
            settlement.net_pay,
        )
        return CommitResult(settlement=settlement, link_errors=link_errors)

    async def update(
        self,
        settlement_id: str,
        driver_id: str,
        period: SettlementPeriod,
        selected_load_ids: Iterable[str],
        deductions: Iterable[DeductionItem] = (),
        additional_pay: Iterable[AdditionalPayItem] = (),
        paid_on: date | None = UNSET,
        notes: str | None = UNSET,
    ) -> CommitResult:
        """Replace a settlement's composition and reconcile its load links.

        Loads dropped from the selection are unlinked first, then every
        selected load is linked. ``paid_on`` and ``notes`` keep their stored
        values unless passed; passing None clears them.
        """
        settlement = await self.store.get(settlement_id)
        driver = await self._resolve_driver(driver_id)
        loads = await self._validate_selection(
            driver, selected_load_ids, editing_settlement_id=settlement.id
        )
        totals = SettlementBuilder.compute_totals(
            driver, loads, deductions, additional_pay, self.pay_policy
        )

        old_load_ids = list(settlement.load_ids or [])

        settlement.driver_id = driver.id
        settlement.driver_name = driver.display_name
        settlement.period_start = period.start
        settlement.period_end = period.end
        settlement.period_display = period.display
        if paid_on is not UNSET:
            settlement.paid_on = paid_on
        if notes is not UNSET:
            settlement.notes = notes
        self._apply_totals(settlement, totals)
        await self.session.flush()

        kept = set(settlement.load_ids)
        removed = [load_id for load_id in old_load_ids if load_id not in kept]
        link_errors = await self._unlink_loads(settlement.id, removed)
        link_errors += await self._link_loads(settlement.id, settlement.load_ids)

        await self.store.record_audit(
            settlement.id,
            "updated",
            {
                "load_ids": list(settlement.load_ids),
                "removed_load_ids": removed,
                "net_pay": str(settlement.net_pay),
                "link_errors": [e.to_dict() for e in link_errors],
            },
        )
        await self.session.flush()

        logger.info(
            "Updated settlement %s: %d load(s), %d unlinked, net %s",
            settlement.settlement_number,
            len(settlement.load_ids),
            len(removed),
            settlement.net_pay,
        )
        return CommitResult(settlement=settlement, link_errors=link_errors)

    # ------------------------------------------------------------------
    # Incremental adjustments
    # ------------------------------------------------------------------

    async def add_deduction(
        self,
        settlement_id: str,
        category: str,
        amount: Decimal,
    ) -> Settlement:
        """Merge one deduction into a committed settlement."""
        settlement = await self.store.get(settlement_id)
        key = SettlementBuilder.validate_adjustment(category, amount, allow_zero=False)

        deductions = SettlementBuilder.merge_maps(
            settlement.deduction_amounts, {key: to_decimal(amount)}
        )
        self._rederive(settlement, deductions=deductions)

        await self.store.record_audit(
            settlement.id,
            "deduction_added",
            {"category": key, "amount": str(to_decimal(amount))},
        )
        await self.session.flush()
        return settlement

    async def add_additional_pay(
        self,
        settlement_id: str,
        category: str,
        amount: Decimal,
    ) -> Settlement:
        """Merge one additional-pay item into a committed settlement."""
        settlement = await self.store.get(settlement_id)
        key = SettlementBuilder.validate_adjustment(category, amount, allow_zero=False)

        additional_pay = SettlementBuilder.merge_maps(
            settlement.additional_pay_amounts, {key: to_decimal(amount)}
        )
        self._rederive(settlement, additional_pay=additional_pay)

        await self.store.record_audit(
            settlement.id,
            "additional_pay_added",
            {"category": key, "amount": str(to_decimal(amount))},
        )
        await self.session.flush()
        return settlement

    async def clone_deductions_from_previous_settlement(self, settlement_id: str) -> Settlement:
        """Add the driver's most recent other settlement's deductions to this one.

        Merging is additive, so cloning twice doubles the copied amounts.

        Raises:
            NotFoundError: no other settlement, or it has no deductions
        """
        settlement = await self.store.get(settlement_id)
        previous = await self.store.latest_other_settlement(settlement.driver_id, settlement.id)
        if previous is None:
            raise NotFoundError(
                "settlement",
                None,
                f"No previous settlement found for driver {settlement.driver_id}",
            )

        copied = previous.deduction_amounts
        if not copied:
            raise NotFoundError(
                "settlement",
                previous.id,
                f"Previous settlement {previous.settlement_number} has no deductions",
            )

        deductions = SettlementBuilder.merge_maps(settlement.deduction_amounts, copied)
        self._rederive(settlement, deductions=deductions)

        await self.store.record_audit(
            settlement.id,
            "deductions_cloned",
            {"source_settlement_id": previous.id, "deductions": amounts_to_json(copied)},
        )
        await self.session.flush()

        logger.info(
            "Cloned %d deduction categories from %s into %s",
            len(copied),
            previous.settlement_number,
            settlement.settlement_number,
        )
        return settlement

    async def mark_paid(self, settlement_id: str, paid_on: date | None = None) -> Settlement:
        """Record that a settlement has been paid (advisory)."""
        settlement = await self.store.get(settlement_id)
        settlement.status = PaymentStatus.PAID.value
        settlement.paid_on = paid_on or utcnow().date()

        await self.store.record_audit(
            settlement.id,
            "marked_paid",
            {"paid_on": settlement.paid_on.isoformat()},
        )
        await self.session.flush()
        return settlement

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, settlement_id: str, force: bool = False) -> list[LinkPropagationError]:
        """Unlink a settlement's loads and remove it.

        Unlinking is best-effort; failures are returned. A paid settlement
        is only deleted with ``force``.
        """
        settlement = await self.store.get(settlement_id)

        errors = SettlementStateMachine.validate_delete(settlement, force=force)
        if errors:
            raise InvalidTransitionError(
                SettlementLifecycle.COMMITTED.value,
                SettlementLifecycle.DELETED.value,
                "; ".join(errors),
            )

        load_ids = list(settlement.load_ids or [])
        # Stray backrefs not listed on the settlement are cleared too
        for load in await self.ledger.loads_linked_to(settlement.id):
            if load.id not in load_ids:
                load_ids.append(load.id)

        link_errors = await self._unlink_loads(settlement.id, load_ids)

        await self.store.record_audit(
            settlement.id,
            "deleted",
            {
                "settlement_number": settlement.settlement_number,
                "status": settlement.status,
                "force": force,
                "load_ids": load_ids,
                "link_errors": [e.to_dict() for e in link_errors],
            },
        )
        await self.store.delete(settlement)

        logger.info(
            "Deleted settlement %s (%d load(s) unlinked, %d failure(s))",
            settlement.settlement_number,
            len(load_ids) - len(link_errors),
            len(link_errors),
        )
        return link_errors

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _resolve_driver(self, driver_id: str | None) -> Driver:
        if not driver_id or not driver_id.strip():
            raise ValidationError("Driver is required")
        driver = await self.session.get(Driver, driver_id)
        if driver is None:
            raise NotFoundError("driver", driver_id)
        return driver

    async def _validate_selection(
        self,
        driver: Driver,
        selected_load_ids: Iterable[str],
        editing_settlement_id: str | None = None,
    ) -> list[Load]:
        """Load and check the selected loads, preserving selection order."""
        load_ids = list(dict.fromkeys(selected_load_ids or []))
        if not load_ids:
            raise ValidationError("At least one load must be selected")

        loads = await self.ledger.require_loads(load_ids)

        errors: list[str] = []
        for load in loads:
            if load.driver_id != driver.id:
                errors.append(f"Load {load.id} is not assigned to driver {driver.id}")
            elif not load.is_completed:
                errors.append(f"Load {load.id} has status '{load.status}' and cannot be settled")
            elif load.settlement_id and load.settlement_id != editing_settlement_id:
                errors.append(f"Load {load.id} is already settled by {load.settlement_id}")
        if errors:
            raise ValidationError("; ".join(errors))

        return loads

    def _apply_totals(self, settlement: Settlement, totals: SettlementTotals) -> None:
        settlement.pay_entries = totals.load_pay
        settlement.deduction_amounts = totals.deductions
        settlement.additional_pay_amounts = totals.additional_pay
        settlement.gross_pay = totals.gross_pay
        settlement.total_deductions = totals.total_deductions
        settlement.net_pay = totals.net_pay
        settlement.total_miles = totals.total_miles

    def _rederive(
        self,
        settlement: Settlement,
        deductions: dict[str, Decimal] | None = None,
        additional_pay: dict[str, Decimal] | None = None,
    ) -> None:
        """Recompute every aggregate from the stored snapshot and maps."""
        totals = SettlementBuilder.aggregate(
            settlement.pay_entries,
            deductions if deductions is not None else settlement.deduction_amounts,
            additional_pay if additional_pay is not None else settlement.additional_pay_amounts,
        )
        self._apply_totals(settlement, totals)

    async def _link_loads(
        self,
        settlement_id: str,
        load_ids: Iterable[str],
    ) -> list[LinkPropagationError]:
        errors: list[LinkPropagationError] = []
        for load_id in load_ids:
            try:
                await self.ledger.link_load(load_id, settlement_id)
            except LinkPropagationError as e:
                logger.warning(
                    "Could not link load %s to settlement %s: %s",
                    load_id,
                    settlement_id,
                    e.reason,
                )
                errors.append(e)
        return errors

    async def _unlink_loads(
        self,
        settlement_id: str,
        load_ids: Iterable[str],
    ) -> list[LinkPropagationError]:
        errors: list[LinkPropagationError] = []
        for load_id in load_ids:
            try:
                await self.ledger.unlink_load(load_id, settlement_id)
            except LinkPropagationError as e:
                logger.warning(
                    "Could not unlink load %s from settlement %s: %s",
                    load_id,
                    settlement_id,
                    e.reason,
                )
                errors.append(e)
        return errors
