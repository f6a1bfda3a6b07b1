"""Settlement API endpoints."""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Path, Query, status

from settlement_engine.api.dependencies import DbSession, EngineDep
from settlement_engine.api.schemas import (
    AdjustmentItemIn,
    AdjustmentRequest,
    AuditEventResponse,
    DeleteResponse,
    ErrorResponse,
    LinkWarning,
    MarkPaidRequest,
    SettlementListResponse,
    SettlementResponse,
    SettlementWrite,
    SettlementWriteResponse,
)
from settlement_engine.calculators.types import (
    AdditionalPayItem,
    DeductionItem,
    SettlementPeriod,
    round_to_cents,
)
from settlement_engine.services.reconciliation_engine import UNSET, CommitResult
from settlement_engine.services.settlement_store import SettlementFilter, SettlementSort

router = APIRouter(prefix="/settlements", tags=["settlements"])

SettlementId = Annotated[str, Path()]


def _deductions(items: list[AdjustmentItemIn]) -> list[DeductionItem]:
    return [DeductionItem(category=i.category, amount=i.amount, memo=i.memo) for i in items]


def _additional_pay(items: list[AdjustmentItemIn]) -> list[AdditionalPayItem]:
    return [AdditionalPayItem(category=i.category, amount=i.amount, memo=i.memo) for i in items]


def _write_response(result: CommitResult) -> SettlementWriteResponse:
    return SettlementWriteResponse(
        settlement=SettlementResponse.model_validate(result.settlement),
        warnings=[LinkWarning(**warning) for warning in result.warnings],
    )


# ============================================================================
# Queries
# ============================================================================


@router.get(
    "",
    response_model=SettlementListResponse,
    responses={400: {"model": ErrorResponse}},
)
async def list_settlements(
    engine: EngineDep,
    driver_id: str | None = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    year: int | None = None,
    period_from: date | None = None,
    period_to: date | None = None,
    sort: str = "created_at",
    descending: bool = True,
) -> SettlementListResponse:
    """List settlements with optional filters, plus totals across them."""
    settlements = await engine.list_settlements(
        SettlementFilter(
            driver_id=driver_id,
            status=status_filter,
            year=year,
            period_from=period_from,
            period_to=period_to,
        ),
        SettlementSort(field=sort, descending=descending),
    )
    summary = engine.summarize(settlements)

    return SettlementListResponse(
        items=[SettlementResponse.model_validate(s) for s in settlements],
        total=summary.count,
        total_gross=round_to_cents(summary.total_gross),
        total_deductions=round_to_cents(summary.total_deductions),
        total_net=round_to_cents(summary.total_net),
        average_net=summary.average_net,
    )


@router.get(
    "/{settlement_id}",
    response_model=SettlementResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_settlement(engine: EngineDep, settlement_id: SettlementId) -> SettlementResponse:
    """Get a specific settlement by ID."""
    settlement = await engine.get_settlement(settlement_id)
    return SettlementResponse.model_validate(settlement)


@router.get(
    "/{settlement_id}/audit",
    response_model=list[AuditEventResponse],
    responses={404: {"model": ErrorResponse}},
)
async def get_settlement_audit(
    engine: EngineDep,
    settlement_id: SettlementId,
) -> list[AuditEventResponse]:
    """Audit trail for a settlement."""
    await engine.get_settlement(settlement_id)
    events = await engine.store.audit_trail(settlement_id)
    return [AuditEventResponse.model_validate(e) for e in events]


# ============================================================================
# Commit / update
# ============================================================================


@router.post(
    "",
    response_model=SettlementWriteResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def commit_settlement(
    db: DbSession,
    engine: EngineDep,
    payload: SettlementWrite,
) -> SettlementWriteResponse:
    """Commit a new settlement and link its loads.

    Loads that could not be linked are returned in ``warnings``.
    """
    result = await engine.commit(
        payload.driver_id,
        SettlementPeriod(payload.period_start, payload.period_end),
        payload.load_ids,
        _deductions(payload.deductions),
        _additional_pay(payload.additional_pay),
        paid_on=payload.paid_on,
        notes=payload.notes,
    )
    await db.commit()
    return _write_response(result)


@router.put(
    "/{settlement_id}",
    response_model=SettlementWriteResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_settlement(
    db: DbSession,
    engine: EngineDep,
    settlement_id: SettlementId,
    payload: SettlementWrite,
) -> SettlementWriteResponse:
    """Replace a settlement's selection and adjustments.

    ``paid_on`` and ``notes`` are left as stored when omitted; an explicit
    null clears them.
    """
    result = await engine.update(
        settlement_id,
        payload.driver_id,
        SettlementPeriod(payload.period_start, payload.period_end),
        payload.load_ids,
        _deductions(payload.deductions),
        _additional_pay(payload.additional_pay),
        paid_on=payload.paid_on if "paid_on" in payload.model_fields_set else UNSET,
        notes=payload.notes if "notes" in payload.model_fields_set else UNSET,
    )
    await db.commit()
    return _write_response(result)


# ============================================================================
# Adjustments
# ============================================================================


@router.post(
    "/{settlement_id}/deductions",
    response_model=SettlementResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def add_deduction(
    db: DbSession,
    engine: EngineDep,
    settlement_id: SettlementId,
    payload: AdjustmentRequest,
) -> SettlementResponse:
    settlement = await engine.add_deduction(settlement_id, payload.category, payload.amount)
    await db.commit()
    return SettlementResponse.model_validate(settlement)


@router.post(
    "/{settlement_id}/additional-pay",
    response_model=SettlementResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def add_additional_pay(
    db: DbSession,
    engine: EngineDep,
    settlement_id: SettlementId,
    payload: AdjustmentRequest,
) -> SettlementResponse:
    settlement = await engine.add_additional_pay(settlement_id, payload.category, payload.amount)
    await db.commit()
    return SettlementResponse.model_validate(settlement)


@router.post(
    "/{settlement_id}/clone-deductions",
    response_model=SettlementResponse,
    responses={404: {"model": ErrorResponse}},
)
async def clone_deductions(
    db: DbSession,
    engine: EngineDep,
    settlement_id: SettlementId,
) -> SettlementResponse:
    """Add the driver's previous settlement's deductions to this one."""
    settlement = await engine.clone_deductions_from_previous_settlement(settlement_id)
    await db.commit()
    return SettlementResponse.model_validate(settlement)


@router.post(
    "/{settlement_id}/mark-paid",
    response_model=SettlementResponse,
    responses={404: {"model": ErrorResponse}},
)
async def mark_paid(
    db: DbSession,
    engine: EngineDep,
    settlement_id: SettlementId,
    payload: MarkPaidRequest | None = None,
) -> SettlementResponse:
    settlement = await engine.mark_paid(settlement_id, payload.paid_on if payload else None)
    await db.commit()
    return SettlementResponse.model_validate(settlement)


# ============================================================================
# Delete
# ============================================================================


@router.delete(
    "/{settlement_id}",
    response_model=DeleteResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def delete_settlement(
    db: DbSession,
    engine: EngineDep,
    settlement_id: SettlementId,
    force: bool = False,
) -> DeleteResponse:
    """Delete a settlement and clear its loads' backrefs.

    A paid settlement is only deleted with ``force=true``.
    """
    link_errors = await engine.delete(settlement_id, force=force)
    await db.commit()
    return DeleteResponse(
        settlement_id=settlement_id,
        deleted=True,
        warnings=[LinkWarning(**e.to_dict()) for e in link_errors],
    )
