"""Lender dashboard REST API routes. Every route requires the lender or admin role.

Routes:
    GET  /api/lender/pending-loans        — Loans awaiting review, oldest first
    GET  /api/lender/stats                — Counts and totals per status
    GET  /api/lender/loan/{id}            — Loan + collateral + status history
    POST /api/lender/approve-loan/{id}    — Approve with notes/conditions
    POST /api/lender/reject-loan/{id}     — Reject with a reason
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from lending_marketplace.api.deps import get_loan_service, require_roles
from lending_marketplace.domain.enums import UserRole
from lending_marketplace.domain.identity import Principal
from lending_marketplace.schemas.loan import (
    ApproveLoanRequest,
    LenderStats,
    LenderStatsResponse,
    LoanDetailResponse,
    LoanEnvelope,
    LoanListResponse,
    LoanResponse,
    LoanStatusHistoryResponse,
    RejectLoanRequest,
)
from lending_marketplace.services.loan_service import LoanService

require_lender = require_roles(UserRole.LENDER, UserRole.ADMIN)

router = APIRouter(prefix="/api/lender", tags=["Lender"])


@router.get("/pending-loans", response_model=LoanListResponse, summary="Loans awaiting review")
async def pending_loans(
    principal: Principal = Depends(require_lender),
    svc: LoanService = Depends(get_loan_service),
) -> LoanListResponse:
    loans = await svc.list_pending_loans(principal)
    return LoanListResponse(loans=[LoanResponse.model_validate(loan) for loan in loans])


@router.get("/stats", response_model=LenderStatsResponse, summary="Lender dashboard statistics")
async def lender_stats(
    principal: Principal = Depends(require_lender),
    svc: LoanService = Depends(get_loan_service),
) -> LenderStatsResponse:
    stats = await svc.lender_stats(principal)
    return LenderStatsResponse(stats=LenderStats(**stats))


@router.get("/loan/{loan_id}", response_model=LoanDetailResponse, summary="Loan review details")
async def loan_detail(
    loan_id: uuid.UUID,
    principal: Principal = Depends(require_lender),
    svc: LoanService = Depends(get_loan_service),
) -> LoanDetailResponse:
    loan = await svc.get_loan(principal, loan_id)
    history = await svc.get_history(principal, loan_id)
    asset = loan.asset
    return LoanDetailResponse(
        loan=LoanResponse.model_validate(loan),
        asset_type=asset.type,
        asset_name=asset.asset_name,
        asset_value=asset.value,
        verification_status=asset.verification_status,
        verification_data=asset.verification_data,
        status_history=[LoanStatusHistoryResponse.model_validate(h) for h in history],
    )


@router.post("/approve-loan/{loan_id}", response_model=LoanEnvelope, summary="Approve a loan")
async def approve_loan(
    loan_id: uuid.UUID,
    body: ApproveLoanRequest | None = None,
    principal: Principal = Depends(require_lender),
    svc: LoanService = Depends(get_loan_service),
) -> LoanEnvelope:
    body = body or ApproveLoanRequest()
    loan = await svc.approve_loan(principal, loan_id, notes=body.notes, conditions=body.conditions)
    return LoanEnvelope(message="Loan approved successfully", loan=LoanResponse.model_validate(loan))


@router.post("/reject-loan/{loan_id}", response_model=LoanEnvelope, summary="Reject a loan")
async def reject_loan(
    loan_id: uuid.UUID,
    body: RejectLoanRequest,
    principal: Principal = Depends(require_lender),
    svc: LoanService = Depends(get_loan_service),
) -> LoanEnvelope:
    loan = await svc.reject_loan(principal, loan_id, body.reason)
    return LoanEnvelope(message="Loan rejected", loan=LoanResponse.model_validate(loan))
