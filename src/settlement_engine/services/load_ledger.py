"""Load ledger: eligible-load queries and settlement backref writes."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, time, timezone

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_engine.exceptions import LinkPropagationError, NotFoundError
from settlement_engine.models import ELIGIBLE_LOAD_STATUSES, Load, Settlement
from settlement_engine.models.base import utcnow

logger = logging.getLogger(__name__)

# Non-ISO formats seen in imported load data
_FALLBACK_DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%Y %H:%M", "%Y/%m/%d")


def parse_load_date(raw: str | None) -> datetime | None:
    """Parse a load's date string into a naive UTC datetime.

    Returns None for missing or unparsable values.
    """
    if not raw or not raw.strip():
        return None
    text = raw.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
        for fmt in _FALLBACK_DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class LoadLedger:
    """Service over completed loads and their ``settlement_id`` backrefs.

    Exclusivity: a backref is only written when the load is unlinked or
    already linked to the same settlement. The check happens inside the
    UPDATE itself, so two settlements cannot both claim one load.
    Each write runs in its own savepoint, so a failed write rolls back only
    that load and leaves the surrounding transaction usable.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_load(self, load_id: str) -> Load | None:
        return await self.session.get(Load, load_id)

    async def require_loads(self, load_ids: Iterable[str]) -> list[Load]:
        """Fetch loads in the given order, raising NotFoundError on any missing id."""
        ids = list(dict.fromkeys(load_ids))
        if not ids:
            return []
        result = await self.session.execute(select(Load).where(Load.id.in_(ids)))
        by_id = {load.id: load for load in result.scalars().all()}
        missing = [load_id for load_id in ids if load_id not in by_id]
        if missing:
            raise NotFoundError("load", missing[0], f"Load(s) not found: {', '.join(missing)}")
        return [by_id[load_id] for load_id in ids]

    async def find_eligible_loads(
        self,
        driver_id: str,
        period_start: date,
        period_end: date,
        editing_settlement_id: str | None = None,
        descending: bool = False,
    ) -> list[Load]:
        """Loads a driver can be paid for in a period.

        Loads already claimed by the settlement being edited are always
        included; loads claimed by any other settlement never are.
        """
        editing_load_ids: set[str] = set()
        if editing_settlement_id is not None:
            editing = await self.session.get(Settlement, editing_settlement_id)
            if editing is None:
                raise NotFoundError("settlement", editing_settlement_id)
            editing_load_ids = set(editing.load_ids or [])

        window_start = datetime.combine(period_start, time.min)
        window_end = datetime.combine(period_end, time.max)

        result = await self.session.execute(
            select(Load)
            .where(
                Load.driver_id == driver_id,
                func.lower(Load.status).in_(sorted(ELIGIBLE_LOAD_STATUSES)),
            )
            .order_by(Load.id)
        )

        eligible: list[tuple[datetime, Load]] = []
        for load in result.scalars().all():
            effective = parse_load_date(load.effective_date_raw)

            if load.id in editing_load_ids:
                eligible.append((effective or window_start, load))
                continue

            if load.settlement_id and load.settlement_id != editing_settlement_id:
                continue

            if effective is None or not (window_start <= effective <= window_end):
                continue

            eligible.append((effective, load))

        # Stable sort: same-date loads stay in load id order either way
        eligible.sort(key=lambda pair: pair[0], reverse=descending)
        logger.debug(
            "Eligible loads for driver %s in %s..%s: %d",
            driver_id,
            period_start,
            period_end,
            len(eligible),
        )
        return [load for _, load in eligible]

    async def link_load(self, load_id: str, settlement_id: str) -> None:
        """Point a load's backref at a settlement (idempotent).

        Raises LinkPropagationError if the load is missing, claimed by a
        different settlement, or the write fails.
        """
        try:
            async with self.session.begin_nested():
                result = await self.session.execute(
                    update(Load)
                    .where(
                        Load.id == load_id,
                        or_(Load.settlement_id.is_(None), Load.settlement_id == settlement_id),
                    )
                    .values(settlement_id=settlement_id, settled_at=utcnow())
                )
        except SQLAlchemyError as e:
            raise LinkPropagationError(load_id, settlement_id, f"write failed: {e}") from e

        if result.rowcount == 0:
            load = await self.get_load(load_id)
            if load is None:
                raise LinkPropagationError(load_id, settlement_id, "load not found")
            raise LinkPropagationError(
                load_id,
                settlement_id,
                f"already linked to settlement {load.settlement_id}",
            )

    async def unlink_load(self, load_id: str, settlement_id: str | None = None) -> None:
        """Clear a load's backref.

        With ``settlement_id``, only a backref pointing at that settlement is
        cleared; a load already unlinked is left as is.
        """
        conditions = [Load.id == load_id]
        if settlement_id is not None:
            conditions.append(
                or_(Load.settlement_id.is_(None), Load.settlement_id == settlement_id)
            )
        try:
            async with self.session.begin_nested():
                result = await self.session.execute(
                    update(Load)
                    .where(*conditions)
                    .values(settlement_id=None, settled_at=None)
                )
        except SQLAlchemyError as e:
            raise LinkPropagationError(load_id, settlement_id, f"unlink failed: {e}") from e

        if result.rowcount == 0:
            load = await self.get_load(load_id)
            if load is None:
                raise LinkPropagationError(load_id, settlement_id, "load not found")
            raise LinkPropagationError(
                load_id,
                settlement_id,
                f"linked to a different settlement {load.settlement_id}",
            )

    async def loads_linked_to(self, settlement_id: str) -> list[Load]:
        result = await self.session.execute(
            select(Load).where(Load.settlement_id == settlement_id).order_by(Load.id)
        )
        return list(result.scalars().all())

    async def linked_loads(self) -> list[Load]:
        """Every load carrying a settlement backref."""
        result = await self.session.execute(
            select(Load).where(Load.settlement_id.is_not(None)).order_by(Load.id)
        )
        return list(result.scalars().all())
