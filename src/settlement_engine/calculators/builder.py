"""Settlement builder: category merging and totals computation.

Every aggregate is rebuilt from the full current selection and maps:
- gross_pay = sum(per-load pay) + sum(additional_pay)
- total_deductions = sum(deductions)
- net_pay = max(0, gross_pay - total_deductions)
Nothing is patched by a delta, so repeated edits cannot drift.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from settlement_engine.calculators.pay_policy import PayPolicy, ProfilePayPolicy, resolve_load_pay
from settlement_engine.calculators.types import (
    ZERO,
    AdditionalPayItem,
    AdjustmentItem,
    DeductionItem,
    LoadPayEntry,
    SettlementPeriod,
    SettlementTotals,
    round_to_cents,
    to_decimal,
)
from settlement_engine.exceptions import InvalidTransitionError, ValidationError

if TYPE_CHECKING:
    from settlement_engine.models import Driver, Load

_WHITESPACE = re.compile(r"\s+")


class SettlementBuilder:
    """Pure computation helpers for settlement composition."""

    @staticmethod
    def normalize_category(category: str | None) -> str:
        """Lowercase and strip all whitespace: 'Fuel Advance' -> 'fueladvance'."""
        return _WHITESPACE.sub("", category or "").lower()

    @staticmethod
    def validate_adjustment(category: str | None, amount: Decimal, *, allow_zero: bool) -> str:
        """Validate one adjustment and return its normalized key."""
        key = SettlementBuilder.normalize_category(category)
        if not key:
            raise ValidationError("Category is required")
        amount = to_decimal(amount)
        if amount < 0 or (amount == 0 and not allow_zero):
            raise ValidationError(f"Amount for '{category}' must be positive, got {amount}")
        return key

    @staticmethod
    def merge_items(
        items: Iterable[AdjustmentItem],
        base: dict[str, Decimal] | None = None,
    ) -> dict[str, Decimal]:
        """Fold items into a category map, summing duplicate keys.

        Returns a new map; ``base`` is not modified.
        """
        merged = dict(base or {})
        for item in items:
            key = SettlementBuilder.validate_adjustment(item.category, item.amount, allow_zero=True)
            merged[key] = merged.get(key, ZERO) + to_decimal(item.amount)
        return merged

    @staticmethod
    def merge_maps(base: dict[str, Decimal], extra: dict[str, Decimal]) -> dict[str, Decimal]:
        merged = dict(base)
        for key, amount in extra.items():
            merged[key] = merged.get(key, ZERO) + amount
        return merged

    @staticmethod
    def price_loads(
        driver: Driver,
        loads: Iterable[Load],
        policy: PayPolicy,
    ) -> list[LoadPayEntry]:
        return [resolve_load_pay(load, driver, policy) for load in loads]

    @staticmethod
    def aggregate(
        load_pay: list[LoadPayEntry],
        deductions: dict[str, Decimal],
        additional_pay: dict[str, Decimal],
    ) -> SettlementTotals:
        """Derive all aggregates from a pay snapshot and the two maps."""
        load_gross = sum((entry.total_pay for entry in load_pay), ZERO)
        extra = sum(additional_pay.values(), ZERO)
        total_deductions = round_to_cents(sum(deductions.values(), ZERO))
        gross_pay = round_to_cents(load_gross + extra)

        return SettlementTotals(
            load_pay=list(load_pay),
            deductions=dict(deductions),
            additional_pay=dict(additional_pay),
            load_gross=round_to_cents(load_gross),
            gross_pay=gross_pay,
            total_deductions=total_deductions,
            net_pay=max(ZERO, gross_pay - total_deductions),
            total_miles=sum((entry.miles for entry in load_pay), ZERO),
        )

    @staticmethod
    def compute_totals(
        driver: Driver,
        loads: Iterable[Load],
        deductions: Iterable[DeductionItem],
        additional_pay: Iterable[AdditionalPayItem],
        policy: PayPolicy | None = None,
    ) -> SettlementTotals:
        """Compute totals for a selection. No side effects."""
        load_pay = SettlementBuilder.price_loads(driver, loads, policy or ProfilePayPolicy())
        return SettlementBuilder.aggregate(
            load_pay,
            SettlementBuilder.merge_items(deductions),
            SettlementBuilder.merge_items(additional_pay),
        )


@dataclass
class SettlementDraft:
    """In-memory, uncommitted settlement composition.

    Holds the candidate loads for a driver and period, the operator's
    selection, and the raw adjustment items. ``totals`` is recomputed from
    scratch on every access.
    """

    driver: Driver
    period: SettlementPeriod
    candidates: list[Load] = field(default_factory=list)
    selected_ids: list[str] = field(default_factory=list)
    deductions: list[DeductionItem] = field(default_factory=list)
    additional_pay: list[AdditionalPayItem] = field(default_factory=list)
    policy: PayPolicy = field(default_factory=ProfilePayPolicy)
    editing_settlement_id: str | None = None
    lifecycle: str = "draft"

    def _ensure_draft(self) -> None:
        if self.lifecycle != "draft":
            raise InvalidTransitionError(self.lifecycle, "draft", "Draft has already been committed")

    def _candidate_ids(self) -> set[str]:
        return {load.id for load in self.candidates}

    def select(self, load_id: str) -> None:
        self._ensure_draft()
        if load_id not in self._candidate_ids():
            raise ValidationError(f"Load {load_id} is not eligible for this settlement")
        if load_id not in self.selected_ids:
            self.selected_ids.append(load_id)

    def deselect(self, load_id: str) -> None:
        self._ensure_draft()
        if load_id in self.selected_ids:
            self.selected_ids.remove(load_id)

    def select_all(self) -> None:
        self._ensure_draft()
        self.selected_ids = [load.id for load in self.candidates]

    def add_deduction(self, category: str, amount: Decimal, memo: str | None = None) -> None:
        self._ensure_draft()
        SettlementBuilder.validate_adjustment(category, amount, allow_zero=False)
        self.deductions.append(DeductionItem(category=category, amount=to_decimal(amount), memo=memo))

    def add_additional_pay(self, category: str, amount: Decimal, memo: str | None = None) -> None:
        self._ensure_draft()
        SettlementBuilder.validate_adjustment(category, amount, allow_zero=False)
        self.additional_pay.append(
            AdditionalPayItem(category=category, amount=to_decimal(amount), memo=memo)
        )

    def remove_deduction(self, index: int) -> None:
        self._ensure_draft()
        del self.deductions[index]

    def remove_additional_pay(self, index: int) -> None:
        self._ensure_draft()
        del self.additional_pay[index]

    @property
    def selected_loads(self) -> list[Load]:
        by_id = {load.id: load for load in self.candidates}
        return [by_id[load_id] for load_id in self.selected_ids if load_id in by_id]

    @property
    def totals(self) -> SettlementTotals:
        return SettlementBuilder.compute_totals(
            self.driver,
            self.selected_loads,
            self.deductions,
            self.additional_pay,
            self.policy,
        )
