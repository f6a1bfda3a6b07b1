"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ============================================================================
# Request schemas
# ============================================================================


class AdjustmentItemIn(BaseModel):
    """One deduction or additional-pay line."""

    category: str = Field(min_length=1)
    amount: Decimal = Field(ge=0)
    memo: str | None = None


class SettlementWrite(BaseModel):
    """Schema for committing or updating a settlement."""

    driver_id: str
    period_start: date
    period_end: date
    load_ids: list[str]
    deductions: list[AdjustmentItemIn] = []
    additional_pay: list[AdjustmentItemIn] = []
    paid_on: date | None = None
    notes: str | None = None


class AdjustmentRequest(BaseModel):
    """Schema for adding a deduction or additional pay to a settlement."""

    category: str
    amount: Decimal


class MarkPaidRequest(BaseModel):
    paid_on: date | None = None


# ============================================================================
# Settlement schemas
# ============================================================================


class LoadPayEntryResponse(BaseModel):
    """Per-load pay snapshot."""

    model_config = ConfigDict(from_attributes=True)

    load_id: str
    load_number: str | None = None
    base_pay: Decimal
    detention: Decimal
    layover: Decimal
    tonu: Decimal
    dispatch_fee: Decimal
    miles: Decimal

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_pay(self) -> Decimal:
        return self.base_pay + self.detention + self.layover + self.tonu + self.dispatch_fee


class SettlementResponse(BaseModel):
    """Settlement snapshot, as handed to PDF and email collaborators."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    settlement_number: str
    settlement_type: str
    driver_id: str
    driver_name: str
    period_start: date
    period_end: date
    period_display: str
    load_ids: list[str]
    load_pay: list[LoadPayEntryResponse]
    deductions: dict[str, Decimal]
    additional_pay: dict[str, Decimal]
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    total_miles: Decimal
    notes: str | None = None
    paid_on: date | None = None
    status: str
    created_at: datetime
    updated_at: datetime


class LinkWarning(BaseModel):
    """A load whose settlement backref could not be written."""

    load_id: str
    settlement_id: str | None = None
    reason: str


class SettlementWriteResponse(BaseModel):
    """Schema for commit/update responses."""

    settlement: SettlementResponse
    warnings: list[LinkWarning] = []


class SettlementListResponse(BaseModel):
    """Schema for listing settlements, with totals across the listed rows."""

    items: list[SettlementResponse]
    total: int
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    average_net: Decimal


class DeleteResponse(BaseModel):
    settlement_id: str
    deleted: bool
    warnings: list[LinkWarning] = []


class AuditEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    entity_type: str
    entity_id: str
    action: str
    details: dict[str, Any] | None = None
    created_at: datetime


# ============================================================================
# Driver schemas
# ============================================================================


class LoadResponse(BaseModel):
    """Schema for an eligible load."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    load_number: str | None = None
    driver_id: str | None = None
    status: str
    pickup_date: str | None = None
    delivery_date: str | None = None
    rate: Decimal
    miles: Decimal
    settlement_id: str | None = None


class EligibleLoadsResponse(BaseModel):
    items: list[LoadResponse]
    total: int


class YtdSummaryResponse(BaseModel):
    """Year-to-date totals for one driver."""

    model_config = ConfigDict(from_attributes=True)

    driver_id: str
    year: int
    gross_ytd: Decimal
    deductions_by_category_ytd: dict[str, Decimal]
    total_deductions_ytd: Decimal
    net_ytd: Decimal
    settlement_count: int


# ============================================================================
# Link audit schemas
# ============================================================================


class LinkIssueResponse(BaseModel):
    kind: str
    load_id: str
    settlement_id: str | None = None
    detail: str
    repairable: bool


class LinkAuditResponse(BaseModel):
    """Schema for link audit and repair results."""

    settlements_checked: int
    loads_checked: int
    consistent: bool
    issues: list[LinkIssueResponse]
    repaired: int
    errors: list[LinkWarning]


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
