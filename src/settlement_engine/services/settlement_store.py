"""Settlement persistence: numbering, queries, YTD aggregation and audit trail."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_engine.calculators.types import (
    ZERO,
    SettlementSummary,
    YtdSummary,
    round_to_cents,
)
from settlement_engine.config import get_settings
from settlement_engine.exceptions import NotFoundError, ValidationError
from settlement_engine.models import AuditEvent, Settlement

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "created_at": Settlement.created_at,
    "period_start": Settlement.period_start,
    "period_end": Settlement.period_end,
    "settlement_number": Settlement.settlement_number,
    "gross_pay": Settlement.gross_pay,
    "net_pay": Settlement.net_pay,
}


@dataclass
class SettlementFilter:
    """Optional constraints for listing settlements."""

    driver_id: str | None = None
    status: str | None = None
    year: int | None = None
    period_from: date | None = None
    period_to: date | None = None


@dataclass
class SettlementSort:
    field: str = "created_at"
    descending: bool = True


class SettlementStore:
    """Persistence service for committed settlements."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, settlement: Settlement) -> Settlement:
        self.session.add(settlement)
        await self.session.flush()
        return settlement

    async def find(self, settlement_id: str) -> Settlement | None:
        return await self.session.get(Settlement, settlement_id)

    async def get(self, settlement_id: str) -> Settlement:
        """Load a settlement, raising NotFoundError if it does not exist."""
        settlement = await self.find(settlement_id)
        if settlement is None:
            raise NotFoundError("settlement", settlement_id)
        return settlement

    async def delete(self, settlement: Settlement) -> None:
        await self.session.delete(settlement)
        await self.session.flush()

    async def list_settlements(
        self,
        filters: SettlementFilter | None = None,
        sort: SettlementSort | None = None,
    ) -> list[Settlement]:
        """List settlements matching ``filters`` in ``sort`` order."""
        filters = filters or SettlementFilter()
        sort = sort or SettlementSort()

        column = SORTABLE_FIELDS.get(sort.field)
        if column is None:
            raise ValidationError(
                f"Cannot sort by '{sort.field}'; expected one of {sorted(SORTABLE_FIELDS)}"
            )

        query = select(Settlement)
        if filters.driver_id:
            query = query.where(Settlement.driver_id == filters.driver_id)
        if filters.status:
            query = query.where(Settlement.status == filters.status)
        if filters.year is not None:
            query = query.where(
                Settlement.period_start <= date(filters.year, 12, 31),
                Settlement.period_end >= date(filters.year, 1, 1),
            )
        if filters.period_from is not None:
            query = query.where(Settlement.period_start >= filters.period_from)
        if filters.period_to is not None:
            query = query.where(Settlement.period_end <= filters.period_to)

        if sort.descending:
            query = query.order_by(column.desc(), Settlement.id.desc())
        else:
            query = query.order_by(column.asc(), Settlement.id.asc())

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def for_driver(self, driver_id: str) -> list[Settlement]:
        result = await self.session.execute(
            select(Settlement).where(Settlement.driver_id == driver_id)
        )
        return list(result.scalars().all())

    async def latest_other_settlement(
        self,
        driver_id: str,
        exclude_settlement_id: str,
    ) -> Settlement | None:
        """Most recent settlement of a driver other than the given one.

        Ordered by settlement date, then creation time, newest first.
        """
        candidates = [
            s for s in await self.for_driver(driver_id) if s.id != exclude_settlement_id
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda s: (s.settlement_date, s.created_at))

    async def next_settlement_number(self, year: int) -> str:
        """Next free number of the form ``{prefix}-{year}-{n}``."""
        settings = get_settings()
        prefix = f"{settings.settlement_number_prefix}-{year}-"

        result = await self.session.execute(
            select(Settlement.settlement_number).where(
                Settlement.settlement_number.like(f"{prefix}%")
            )
        )

        highest = settings.settlement_number_start
        for number in result.scalars().all():
            suffix = number[len(prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return f"{prefix}{highest + 1}"

    async def ytd_summary(self, driver_id: str, year: int) -> YtdSummary:
        """Year-to-date totals for a driver, keyed on settlement date."""
        gross = ZERO
        total_deductions = ZERO
        by_category: dict[str, Decimal] = {}
        count = 0

        for settlement in await self.for_driver(driver_id):
            if settlement.settlement_date.year != year:
                continue
            count += 1
            gross += settlement.gross_pay or ZERO
            total_deductions += settlement.total_deductions or ZERO
            for key, amount in settlement.deduction_amounts.items():
                by_category[key] = by_category.get(key, ZERO) + amount

        return YtdSummary(
            driver_id=driver_id,
            year=year,
            gross_ytd=round_to_cents(gross),
            deductions_by_category_ytd={k: round_to_cents(v) for k, v in by_category.items()},
            total_deductions_ytd=round_to_cents(total_deductions),
            net_ytd=round_to_cents(gross - total_deductions),
            settlement_count=count,
        )

    @staticmethod
    def summarize(settlements: Iterable[Settlement]) -> SettlementSummary:
        summary = SettlementSummary()
        for settlement in settlements:
            summary.total_gross += settlement.gross_pay or ZERO
            summary.total_deductions += settlement.total_deductions or ZERO
            summary.total_net += settlement.net_pay or ZERO
            summary.count += 1
        return summary

    async def record_audit(
        self,
        entity_id: str,
        action: str,
        details: dict[str, Any] | None = None,
        entity_type: str = "settlement",
    ) -> None:
        """Record an audit event for a settlement action."""
        event = AuditEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            details=details,
        )
        self.session.add(event)
        logger.info("%s %s: %s", entity_type, entity_id, action)

    async def audit_trail(self, entity_id: str) -> list[AuditEvent]:
        result = await self.session.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_id == entity_id)
            .order_by(AuditEvent.created_at, AuditEvent.id)
        )
        return list(result.scalars().all())
