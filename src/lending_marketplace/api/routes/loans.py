"""Loan REST API routes (borrower side, plus funding and activation).

Routes:
    POST /api/loans/request        — Request a loan against an owned asset
    GET  /api/loans/mine           — The caller's loans
    GET  /api/loans/{id}           — Loan details (borrower, lender or admin)
    GET  /api/loans/{id}/history   — Status history
    POST /api/loans/{id}/fund      — Lender funds the loan
    POST /api/loans/{id}/activate  — Funding lender activates the loan
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from lending_marketplace.api.deps import get_current_principal, get_loan_service, require_roles
from lending_marketplace.domain.enums import UserRole
from lending_marketplace.domain.identity import Principal
from lending_marketplace.schemas.loan import (
    LoanEnvelope,
    LoanHistoryResponse,
    LoanListResponse,
    LoanRequestBody,
    LoanResponse,
    LoanStatusHistoryResponse,
)
from lending_marketplace.services.loan_service import LoanService

router = APIRouter(prefix="/api/loans", tags=["Loans"])


@router.post(
    "/request",
    response_model=LoanEnvelope,
    status_code=201,
    summary="Request a loan against an asset",
)
async def request_loan(
    body: LoanRequestBody,
    principal: Principal = Depends(get_current_principal),
    svc: LoanService = Depends(get_loan_service),
) -> LoanEnvelope:
    loan = await svc.request_loan(
        principal,
        asset_id=body.asset_id,
        amount_requested=body.amount_requested,
        term_months=body.term_months,
        interest_rate=body.interest_rate,
        purpose=body.purpose,
    )
    return LoanEnvelope(
        message="Loan request created successfully",
        loan=LoanResponse.model_validate(loan),
    )


@router.get("/mine", response_model=LoanListResponse, summary="List the caller's loans")
async def list_my_loans(
    principal: Principal = Depends(get_current_principal),
    svc: LoanService = Depends(get_loan_service),
) -> LoanListResponse:
    loans = await svc.list_my_loans(principal)
    return LoanListResponse(loans=[LoanResponse.model_validate(loan) for loan in loans])


@router.get("/{loan_id}", response_model=LoanEnvelope, summary="Get loan details")
async def get_loan(
    loan_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    svc: LoanService = Depends(get_loan_service),
) -> LoanEnvelope:
    loan = await svc.get_loan(principal, loan_id)
    return LoanEnvelope(loan=LoanResponse.model_validate(loan))


@router.get("/{loan_id}/history", response_model=LoanHistoryResponse, summary="Status history")
async def get_loan_history(
    loan_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    svc: LoanService = Depends(get_loan_service),
) -> LoanHistoryResponse:
    history = await svc.get_history(principal, loan_id)
    return LoanHistoryResponse(
        history=[LoanStatusHistoryResponse.model_validate(h) for h in history]
    )


@router.post("/{loan_id}/fund", response_model=LoanEnvelope, summary="Fund a loan")
async def fund_loan(
    loan_id: uuid.UUID,
    principal: Principal = Depends(require_roles(UserRole.LENDER, UserRole.ADMIN)),
    svc: LoanService = Depends(get_loan_service),
) -> LoanEnvelope:
    loan = await svc.fund_loan(principal, loan_id)
    return LoanEnvelope(message="Loan funded successfully", loan=LoanResponse.model_validate(loan))


@router.post("/{loan_id}/activate", response_model=LoanEnvelope, summary="Activate a funded loan")
async def activate_loan(
    loan_id: uuid.UUID,
    principal: Principal = Depends(require_roles(UserRole.LENDER, UserRole.ADMIN)),
    svc: LoanService = Depends(get_loan_service),
) -> LoanEnvelope:
    loan = await svc.activate_loan(principal, loan_id)
    return LoanEnvelope(message="Loan activated", loan=LoanResponse.model_validate(loan))
