"""Pydantic schemas for the escrow and milestone API.

These schemas define the request/response shapes for the REST API. They
are separate from the ORM models to maintain clean boundaries between the
API and database layers.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from lending_marketplace.schemas.common import SuccessResponse

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class MilestoneInput(BaseModel):
    """One milestone in an escrow definition."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    percentage: Decimal = Field(
        ...,
        gt=0,
        le=100,
        description="Share of the total amount released on approval",
        examples=[50],
    )


class CreateEscrowRequest(BaseModel):
    """Request body for creating an escrow project with its milestones."""

    project_name: str = Field(..., min_length=1, max_length=200, examples=["Website redesign"])
    project_description: str | None = Field(default=None, max_length=5000)
    customer_email: EmailStr = Field(..., description="Email the invite is addressed to")
    total_amount: Decimal = Field(..., gt=0, decimal_places=2, examples=[10000])
    milestones: list[MilestoneInput] = Field(
        ...,
        min_length=1,
        description="Percentages must total 100",
    )
    deposit_due_date: datetime | None = None
    idempotency_key: str | None = Field(
        default=None,
        max_length=128,
        description="Optional idempotency key to prevent duplicate escrow creation",
    )


class DepositRequest(BaseModel):
    """Request body for recording the customer's deposit."""

    payment_method_ref: str | None = Field(
        default=None,
        max_length=255,
        description="Opaque reference to the payment method used",
    )


class SubmitMilestoneRequest(BaseModel):
    evidence_description: str | None = Field(default=None, max_length=5000)
    evidence_url: str | None = Field(default=None, max_length=2048)


class RejectMilestoneRequest(BaseModel):
    rejection_reason: str = Field(..., max_length=5000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class MilestoneResponse(BaseModel):
    """Response schema for a milestone."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    escrow_id: uuid.UUID
    title: str
    description: str | None
    amount: Decimal
    percentage: Decimal
    order_index: int
    status: str
    evidence_description: str | None
    evidence_url: str | None
    submitted_at: datetime | None
    approved_at: datetime | None
    released_at: datetime | None
    rejection_reason: str | None


class EscrowResponse(BaseModel):
    """Response schema for an escrow with its ordered milestones."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sme_id: uuid.UUID
    customer_id: uuid.UUID | None
    customer_email: str
    project_name: str
    project_description: str | None
    total_amount: Decimal
    deposited_amount: Decimal
    released_amount: Decimal
    status: str
    invite_sent_at: datetime | None
    invite_accepted_at: datetime | None
    deposit_due_date: datetime | None
    deposited_at: datetime | None
    created_at: datetime
    updated_at: datetime
    milestones: list[MilestoneResponse] = []


class ActivityResponse(BaseModel):
    """Response schema for an activity log entry."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    escrow_id: uuid.UUID
    milestone_id: uuid.UUID | None
    user_id: uuid.UUID
    action_type: str
    description: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class CreateEscrowResponse(SuccessResponse):
    message: str = "Escrow project created successfully"
    escrow: EscrowResponse
    invite_token: str


class InviteResponse(SuccessResponse):
    message: str = "Invite sent successfully"
    invite_link: str
    escrow: EscrowResponse


class EscrowEnvelope(SuccessResponse):
    message: str | None = None
    escrow: EscrowResponse


class EscrowDetailResponse(SuccessResponse):
    escrow: EscrowResponse
    activities: list[ActivityResponse]


class EscrowListResponse(SuccessResponse):
    escrows: list[EscrowResponse]


class InviteListResponse(SuccessResponse):
    invites: list[EscrowResponse]


class MilestoneEnvelope(SuccessResponse):
    message: str
    milestone: MilestoneResponse
