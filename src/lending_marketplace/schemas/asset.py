"""Pydantic schemas for assets and their verification."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from lending_marketplace.domain.enums import AssetType
from lending_marketplace.schemas.common import SuccessResponse


class CreateAssetRequest(BaseModel):
    """Request body for registering an asset."""

    type: AssetType
    value: Decimal = Field(..., gt=0, decimal_places=2, examples=[50000])
    description: str = Field(..., min_length=10, max_length=5000)
    asset_name: str | None = Field(default=None, max_length=200)
    counterparty_email: EmailStr | None = None
    document_url: str | None = Field(default=None, max_length=2048)


class AssetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    type: str
    value: Decimal
    description: str
    asset_name: str | None
    counterparty_email: str | None
    document_url: str | None
    status: str
    error_message: str | None
    blockchain_asset_id: str | None
    transaction_hash: str | None
    block_number: int | None
    verification_status: str | None
    verification_method: str | None
    verification_data: dict | None
    verified_at: datetime | None
    verified_by: str | None
    created_at: datetime


class AssetEnvelope(SuccessResponse):
    message: str | None = None
    asset: AssetResponse


class AssetListResponse(SuccessResponse):
    assets: list[AssetResponse]


class VerificationSummary(BaseModel):
    """Verdict returned by the oracle for one run."""

    status: str
    confidence: float
    risk_score: str
    data: dict
    error: str | None


class VerifyAssetResponse(SuccessResponse):
    asset: AssetResponse
    verification: VerificationSummary


class VerificationLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    asset_id: uuid.UUID
    verification_method: str
    status: str
    verification_data: dict | None
    error_message: str | None
    created_at: datetime


class VerificationLogListResponse(SuccessResponse):
    logs: list[VerificationLogResponse]
