"""Escrow project REST API routes.

Routes:
    POST   /api/escrow/create           — Create an escrow with milestones
    GET    /api/escrow/invites          — Pending invites for the caller's email
    GET    /api/escrow/token/{token}    — Public lookup by invite token
    POST   /api/escrow/accept/{token}   — Customer accepts an invite
    GET    /api/escrow                  — List the caller's escrows (as SME or customer)
    GET    /api/escrow/{id}             — Escrow + milestones + recent activity
    POST   /api/escrow/{id}/invite      — SME sends the invite
    POST   /api/escrow/{id}/deposit     — Customer records the deposit
"""

from __future__ import annotations

import uuid
from typing import Literal

from fastapi import APIRouter, Depends, Query

from lending_marketplace.api.deps import get_current_principal, get_escrow_service
from lending_marketplace.domain.enums import EscrowStatus
from lending_marketplace.domain.identity import Principal
from lending_marketplace.logging_config import get_logger
from lending_marketplace.schemas.escrow import (
    ActivityResponse,
    CreateEscrowRequest,
    CreateEscrowResponse,
    DepositRequest,
    EscrowDetailResponse,
    EscrowEnvelope,
    EscrowListResponse,
    EscrowResponse,
    InviteListResponse,
    InviteResponse,
)
from lending_marketplace.services.escrow_service import EscrowService

router = APIRouter(prefix="/api/escrow", tags=["Escrow"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "/create",
    response_model=CreateEscrowResponse,
    status_code=201,
    summary="Create an escrow project with milestones",
)
async def create_escrow(
    body: CreateEscrowRequest,
    principal: Principal = Depends(get_current_principal),
    svc: EscrowService = Depends(get_escrow_service),
) -> CreateEscrowResponse:
    """Create an escrow in DRAFT; milestone percentages must total 100."""
    escrow = await svc.create_escrow(
        principal,
        project_name=body.project_name,
        project_description=body.project_description,
        customer_email=body.customer_email,
        total_amount=body.total_amount,
        milestones=[m.model_dump() for m in body.milestones],
        deposit_due_date=body.deposit_due_date,
        idempotency_key=body.idempotency_key,
    )
    return CreateEscrowResponse(
        escrow=EscrowResponse.model_validate(escrow),
        invite_token=escrow.invite_token,
    )


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


@router.get(
    "/invites",
    response_model=InviteListResponse,
    summary="List pending invites addressed to the caller",
)
async def list_invites(
    principal: Principal = Depends(get_current_principal),
    svc: EscrowService = Depends(get_escrow_service),
) -> InviteListResponse:
    escrows = await svc.list_pending_invites(principal)
    return InviteListResponse(invites=[EscrowResponse.model_validate(e) for e in escrows])


@router.get(
    "/token/{invite_token}",
    response_model=EscrowEnvelope,
    summary="Fetch an escrow by invite token (public)",
)
async def get_by_token(
    invite_token: str,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowEnvelope:
    escrow = await svc.get_by_token(invite_token)
    return EscrowEnvelope(escrow=EscrowResponse.model_validate(escrow))


@router.post(
    "/accept/{invite_token}",
    response_model=EscrowEnvelope,
    summary="Accept an escrow invite",
)
async def accept_invite(
    invite_token: str,
    principal: Principal = Depends(get_current_principal),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowEnvelope:
    escrow = await svc.accept_invite(principal, invite_token)
    return EscrowEnvelope(
        message="Invite accepted successfully! You can now make your deposit.",
        escrow=EscrowResponse.model_validate(escrow),
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=EscrowListResponse,
    summary="List the caller's escrows",
)
async def list_escrows(
    role: Literal["sme", "customer"] = Query(default="sme"),
    status: EscrowStatus | None = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowListResponse:
    escrows = await svc.list_escrows(principal, as_customer=role == "customer", status=status)
    return EscrowListResponse(escrows=[EscrowResponse.model_validate(e) for e in escrows])


@router.get(
    "/{escrow_id}",
    response_model=EscrowDetailResponse,
    summary="Escrow details with milestones and recent activity",
)
async def get_escrow(
    escrow_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowDetailResponse:
    escrow, activities = await svc.get_escrow(principal, escrow_id)
    return EscrowDetailResponse(
        escrow=EscrowResponse.model_validate(escrow),
        activities=[ActivityResponse.model_validate(a) for a in activities],
    )


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post(
    "/{escrow_id}/invite",
    response_model=InviteResponse,
    summary="Send the invite to the customer",
)
async def send_invite(
    escrow_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    svc: EscrowService = Depends(get_escrow_service),
) -> InviteResponse:
    escrow, link = await svc.send_invite(principal, escrow_id)
    return InviteResponse(invite_link=link, escrow=EscrowResponse.model_validate(escrow))


@router.post(
    "/{escrow_id}/deposit",
    response_model=EscrowEnvelope,
    summary="Record the customer's deposit",
)
async def deposit(
    escrow_id: uuid.UUID,
    body: DepositRequest | None = None,
    principal: Principal = Depends(get_current_principal),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowEnvelope:
    escrow = await svc.deposit(
        principal,
        escrow_id,
        payment_method_ref=body.payment_method_ref if body else None,
    )
    return EscrowEnvelope(
        message="Funds deposited successfully",
        escrow=EscrowResponse.model_validate(escrow),
    )
