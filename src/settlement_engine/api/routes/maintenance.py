"""Link audit endpoints."""

from fastapi import APIRouter

from settlement_engine.api.dependencies import DbSession
from settlement_engine.api.schemas import LinkAuditResponse
from settlement_engine.services.link_audit import LinkAuditor

router = APIRouter(prefix="/link-audit", tags=["maintenance"])


@router.get("", response_model=LinkAuditResponse)
async def scan_links(db: DbSession) -> LinkAuditResponse:
    """Report drift between load backrefs and settlement load lists."""
    report = await LinkAuditor(db).scan()
    return LinkAuditResponse.model_validate(report.to_dict())


@router.post("/repair", response_model=LinkAuditResponse)
async def repair_links(db: DbSession) -> LinkAuditResponse:
    """Clear bad backrefs and restore missing ones."""
    report = await LinkAuditor(db).repair()
    await db.commit()
    return LinkAuditResponse.model_validate(report.to_dict())
