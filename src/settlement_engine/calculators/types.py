"""Type definitions for the settlement calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from settlement_engine.exceptions import ValidationError

ZERO = Decimal("0")
CENTS = Decimal("0.01")


def round_to_cents(amount: Decimal) -> Decimal:
    """Round amount to 2 decimal places (cents)."""
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal:
    """Coerce a possibly-missing numeric value to Decimal (None -> 0)."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def amounts_to_json(amounts: dict[str, Decimal]) -> dict[str, str]:
    return {key: str(round_to_cents(value)) for key, value in amounts.items()}


def amounts_from_json(raw: dict[str, Any] | None) -> dict[str, Decimal]:
    return {key: to_decimal(value) for key, value in (raw or {}).items()}


@dataclass
class AdjustmentItem:
    """Operator-entered line: a category, optional memo, and a non-negative amount."""

    category: str
    amount: Decimal
    memo: str | None = None


class DeductionItem(AdjustmentItem):
    """Amount withheld from the driver's gross pay."""


class AdditionalPayItem(AdjustmentItem):
    """Amount paid on top of load-derived pay (bonus, reimbursement)."""


@dataclass
class LoadPayEntry:
    """Per-load pay snapshot stored on a settlement."""

    load_id: str
    base_pay: Decimal = ZERO
    detention: Decimal = ZERO
    layover: Decimal = ZERO
    tonu: Decimal = ZERO
    dispatch_fee: Decimal = ZERO
    miles: Decimal = ZERO
    load_number: str | None = None

    @property
    def total_pay(self) -> Decimal:
        return self.base_pay + self.detention + self.layover + self.tonu + self.dispatch_fee

    def to_json(self) -> dict[str, Any]:
        return {
            "load_id": self.load_id,
            "load_number": self.load_number,
            "base_pay": str(self.base_pay),
            "detention": str(self.detention),
            "layover": str(self.layover),
            "tonu": str(self.tonu),
            "dispatch_fee": str(self.dispatch_fee),
            "miles": str(self.miles),
        }

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> LoadPayEntry:
        return cls(
            load_id=raw["load_id"],
            load_number=raw.get("load_number"),
            base_pay=to_decimal(raw.get("base_pay")),
            detention=to_decimal(raw.get("detention")),
            layover=to_decimal(raw.get("layover")),
            tonu=to_decimal(raw.get("tonu")),
            dispatch_fee=to_decimal(raw.get("dispatch_fee")),
            miles=to_decimal(raw.get("miles")),
        )


@dataclass
class SettlementTotals:
    """Aggregates derived from a selection plus adjustment maps."""

    load_pay: list[LoadPayEntry] = field(default_factory=list)
    deductions: dict[str, Decimal] = field(default_factory=dict)
    additional_pay: dict[str, Decimal] = field(default_factory=dict)
    load_gross: Decimal = ZERO
    gross_pay: Decimal = ZERO
    total_deductions: Decimal = ZERO
    net_pay: Decimal = ZERO
    total_miles: Decimal = ZERO

    @property
    def effective_rate(self) -> Decimal:
        """Load-derived pay per mile (0 when no miles were driven)."""
        if self.total_miles <= 0:
            return ZERO
        return round_to_cents(self.load_gross / self.total_miles)


@dataclass(frozen=True)
class SettlementPeriod:
    """Inclusive date range over which eligible loads are gathered."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValidationError(
                f"Period start {self.start.isoformat()} must not be after end {self.end.isoformat()}"
            )

    @property
    def display(self) -> str:
        """e.g. 'Jan 1, 2024 - Jan 31, 2024'."""
        return f"{_format_day(self.start)} - {_format_day(self.end)}"

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    @classmethod
    def for_iso_week(cls, year: int, week: int) -> SettlementPeriod:
        """Monday-to-Sunday period for an ISO week number."""
        try:
            start = date.fromisocalendar(year, week, 1)
        except ValueError as e:
            raise ValidationError(f"Invalid ISO week {year}-W{week:02d}: {e}") from e
        return cls(start=start, end=start + timedelta(days=6))


def _format_day(day: date) -> str:
    return f"{day.strftime('%b')} {day.day}, {day.year}"


@dataclass
class YtdSummary:
    """Year-to-date totals for one driver."""

    driver_id: str
    year: int
    gross_ytd: Decimal = ZERO
    deductions_by_category_ytd: dict[str, Decimal] = field(default_factory=dict)
    total_deductions_ytd: Decimal = ZERO
    net_ytd: Decimal = ZERO
    settlement_count: int = 0


@dataclass
class SettlementSummary:
    """Totals across a set of settlements."""

    total_gross: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net: Decimal = ZERO
    count: int = 0

    @property
    def average_net(self) -> Decimal:
        if self.count == 0:
            return ZERO
        return round_to_cents(self.total_net / self.count)
