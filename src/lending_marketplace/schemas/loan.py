"""Pydantic schemas for loans and the lender dashboard."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from lending_marketplace.schemas.common import SuccessResponse

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class LoanRequestBody(BaseModel):
    """Request body for requesting a loan against an asset."""

    asset_id: uuid.UUID
    amount_requested: Decimal = Field(..., gt=0, decimal_places=2, examples=[25000])
    term_months: int = Field(..., gt=0, le=360)
    interest_rate: Decimal | None = Field(
        default=None,
        ge=0,
        le=100,
        description="Annual rate in percent; defaults to the marketplace rate",
    )
    purpose: str | None = Field(default=None, max_length=2000)


class ApproveLoanRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=5000)
    conditions: str | None = Field(default=None, max_length=5000)


class RejectLoanRequest(BaseModel):
    reason: str = Field(..., max_length=5000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class LoanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sme_id: uuid.UUID
    asset_id: uuid.UUID
    lender_id: uuid.UUID | None
    amount_requested: Decimal
    interest_rate: Decimal
    term_months: int
    purpose: str | None
    status: str
    due_date: datetime | None
    lender_notes: str | None
    approval_conditions: str | None
    reviewed_at: datetime | None
    approved_at: datetime | None
    funded_at: datetime | None
    chain_loan_id: str | None
    chain_tx_hash: str | None
    chain_sync_status: str
    chain_error: str | None
    created_at: datetime
    updated_at: datetime


class LoanStatusHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    loan_id: uuid.UUID
    old_status: str | None
    new_status: str
    changed_by: uuid.UUID
    notes: str | None
    created_at: datetime


class LoanEnvelope(SuccessResponse):
    message: str | None = None
    loan: LoanResponse


class LoanListResponse(SuccessResponse):
    loans: list[LoanResponse]


class LoanDetailResponse(SuccessResponse):
    """Loan with its collateral summary and status history (lender view)."""

    loan: LoanResponse
    asset_type: str | None = None
    asset_name: str | None = None
    asset_value: Decimal | None = None
    verification_status: str | None = None
    verification_data: dict | None = None
    status_history: list[LoanStatusHistoryResponse] = []


class LenderStats(BaseModel):
    total_loans: int
    pending_approval: int
    approved_loans: int
    rejected_loans: int
    funded_loans: int
    active_loans: int
    total_amount_deployed: Decimal
    active_amount: Decimal


class LenderStatsResponse(SuccessResponse):
    stats: LenderStats


class LoanHistoryResponse(SuccessResponse):
    history: list[LoanStatusHistoryResponse]
