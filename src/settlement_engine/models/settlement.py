"""Settlement and audit models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement_engine.calculators.types import (
    LoadPayEntry,
    amounts_from_json,
    amounts_to_json,
)
from settlement_engine.models.base import Base, JSONType, TimestampMixin, new_id, utcnow


class Settlement(Base, TimestampMixin):
    """A committed driver settlement.

    ``deductions`` and ``additional_pay`` are maps of normalized category key
    to cumulative amount, stored as JSON with string amounts. ``load_pay``
    holds the per-load pay snapshot taken when loads were selected.
    """

    __tablename__ = "settlement"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    settlement_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    settlement_type: Mapped[str] = mapped_column(String, nullable=False, default="driver")

    driver_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("driver.id"),
        nullable=False,
    )
    driver_name: Mapped[str] = mapped_column(String, nullable=False, default="")

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    period_display: Mapped[str] = mapped_column(String, nullable=False, default="")

    load_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    load_pay: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    deductions: Mapped[dict[str, str]] = mapped_column(JSONType, nullable=False, default=dict)
    additional_pay: Mapped[dict[str, str]] = mapped_column(JSONType, nullable=False, default=dict)

    gross_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    net_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_miles: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'paid')", name="settlement_status_check"),
        CheckConstraint(
            "settlement_type IN ('driver', 'dispatcher')",
            name="settlement_type_check",
        ),
        CheckConstraint("period_end >= period_start", name="settlement_period_check"),
        CheckConstraint("net_pay >= 0", name="settlement_net_pay_non_negative"),
        Index("ix_settlement_driver_id", "driver_id"),
    )

    @property
    def deduction_amounts(self) -> dict[str, Decimal]:
        return amounts_from_json(self.deductions)

    @deduction_amounts.setter
    def deduction_amounts(self, value: dict[str, Decimal]) -> None:
        # Always assign a fresh dict so the JSON column is flagged dirty
        self.deductions = amounts_to_json(value)

    @property
    def additional_pay_amounts(self) -> dict[str, Decimal]:
        return amounts_from_json(self.additional_pay)

    @additional_pay_amounts.setter
    def additional_pay_amounts(self, value: dict[str, Decimal]) -> None:
        self.additional_pay = amounts_to_json(value)

    @property
    def pay_entries(self) -> list[LoadPayEntry]:
        return [LoadPayEntry.from_json(raw) for raw in self.load_pay or []]

    @pay_entries.setter
    def pay_entries(self, entries: list[LoadPayEntry]) -> None:
        self.load_pay = [entry.to_json() for entry in entries]
        self.load_ids = [entry.load_id for entry in entries]

    @property
    def settlement_date(self) -> date:
        """Paid-on date if recorded, else the creation date."""
        if self.paid_on is not None:
            return self.paid_on
        return (self.created_at or utcnow()).date()


class AuditEvent(Base):
    """Audit trail entry for settlement actions."""

    __tablename__ = "audit_event"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (Index("ix_audit_event_entity", "entity_type", "entity_id"),)
