"""Asset verification REST API routes.

Routes:
    POST /api/verification/verify-asset/{id}  — Run the mock oracle on an asset
    GET  /api/verification/logs/{id}          — Verification history, newest first
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from lending_marketplace.api.deps import get_current_principal, get_verification_service
from lending_marketplace.domain.identity import Principal
from lending_marketplace.schemas.asset import (
    AssetResponse,
    VerificationLogListResponse,
    VerificationLogResponse,
    VerificationSummary,
    VerifyAssetResponse,
)
from lending_marketplace.services.verification_service import VerificationService

router = APIRouter(prefix="/api/verification", tags=["Verification"])


@router.post(
    "/verify-asset/{asset_id}",
    response_model=VerifyAssetResponse,
    summary="Verify an asset with the oracle",
)
async def verify_asset(
    asset_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    svc: VerificationService = Depends(get_verification_service),
) -> VerifyAssetResponse:
    asset, result = await svc.verify_asset(principal, asset_id)
    return VerifyAssetResponse(
        asset=AssetResponse.model_validate(asset),
        verification=VerificationSummary(
            status=result.status.value,
            confidence=result.confidence,
            risk_score=result.risk.value,
            data=result.to_dict(),
            error=result.error,
        ),
    )


@router.get(
    "/logs/{asset_id}",
    response_model=VerificationLogListResponse,
    summary="Verification history for an asset",
)
async def verification_logs(
    asset_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    svc: VerificationService = Depends(get_verification_service),
) -> VerificationLogListResponse:
    logs = await svc.get_logs(principal, asset_id)
    return VerificationLogListResponse(logs=[VerificationLogResponse.model_validate(e) for e in logs])
