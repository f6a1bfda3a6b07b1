"""Driver-scoped settlement endpoints."""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Path, Query

from settlement_engine.api.dependencies import EngineDep
from settlement_engine.api.schemas import (
    EligibleLoadsResponse,
    ErrorResponse,
    LoadResponse,
    YtdSummaryResponse,
)
from settlement_engine.calculators.types import SettlementPeriod

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get(
    "/{driver_id}/eligible-loads",
    response_model=EligibleLoadsResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def list_eligible_loads(
    engine: EngineDep,
    driver_id: Annotated[str, Path()],
    period_start: date,
    period_end: date,
    editing_settlement_id: str | None = None,
    descending: bool = False,
) -> EligibleLoadsResponse:
    """Loads the driver can be paid for in the period, in date order."""
    loads = await engine.find_eligible_loads(
        driver_id,
        SettlementPeriod(period_start, period_end),
        editing_settlement_id=editing_settlement_id,
        descending=descending,
    )
    return EligibleLoadsResponse(
        items=[LoadResponse.model_validate(load) for load in loads],
        total=len(loads),
    )


@router.get(
    "/{driver_id}/ytd",
    response_model=YtdSummaryResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_ytd_summary(
    engine: EngineDep,
    driver_id: Annotated[str, Path()],
    year: Annotated[int, Query(ge=1900, le=9999)],
) -> YtdSummaryResponse:
    """Year-to-date gross, deductions by category, and net."""
    summary = await engine.ytd_summary(driver_id, year)
    return YtdSummaryResponse.model_validate(summary)
