"""Milestone REST API routes.

Routes:
    POST /api/milestones/{id}/submit   — SME submits evidence
    POST /api/milestones/{id}/approve  — Customer approves and releases funds
    POST /api/milestones/{id}/reject   — Customer rejects with a reason
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from lending_marketplace.api.deps import get_current_principal, get_escrow_service
from lending_marketplace.domain.identity import Principal
from lending_marketplace.schemas.escrow import (
    MilestoneEnvelope,
    MilestoneResponse,
    RejectMilestoneRequest,
    SubmitMilestoneRequest,
)
from lending_marketplace.services.escrow_service import EscrowService

router = APIRouter(prefix="/api/milestones", tags=["Milestones"])


@router.post(
    "/{milestone_id}/submit",
    response_model=MilestoneEnvelope,
    summary="Submit milestone evidence for approval",
)
async def submit_milestone(
    milestone_id: uuid.UUID,
    body: SubmitMilestoneRequest,
    principal: Principal = Depends(get_current_principal),
    svc: EscrowService = Depends(get_escrow_service),
) -> MilestoneEnvelope:
    milestone = await svc.submit_milestone(
        principal,
        milestone_id,
        evidence_description=body.evidence_description,
        evidence_url=body.evidence_url,
    )
    return MilestoneEnvelope(
        message="Milestone submitted for approval",
        milestone=MilestoneResponse.model_validate(milestone),
    )


@router.post(
    "/{milestone_id}/approve",
    response_model=MilestoneEnvelope,
    summary="Approve a milestone and release its funds",
)
async def approve_milestone(
    milestone_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    svc: EscrowService = Depends(get_escrow_service),
) -> MilestoneEnvelope:
    milestone = await svc.approve_milestone(principal, milestone_id)
    return MilestoneEnvelope(
        message="Milestone approved and funds released",
        milestone=MilestoneResponse.model_validate(milestone),
    )


@router.post(
    "/{milestone_id}/reject",
    response_model=MilestoneEnvelope,
    summary="Reject a milestone with a reason",
)
async def reject_milestone(
    milestone_id: uuid.UUID,
    body: RejectMilestoneRequest,
    principal: Principal = Depends(get_current_principal),
    svc: EscrowService = Depends(get_escrow_service),
) -> MilestoneEnvelope:
    milestone = await svc.reject_milestone(principal, milestone_id, body.rejection_reason)
    return MilestoneEnvelope(
        message="Milestone rejected",
        milestone=MilestoneResponse.model_validate(milestone),
    )
