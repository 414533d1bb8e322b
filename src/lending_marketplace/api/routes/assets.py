"""Asset REST API routes.

Routes:
    POST /api/assets/create   — Register an asset; tokenization runs in the background
    GET  /api/assets          — List the caller's assets
    GET  /api/assets/{id}     — Poll a single asset (tokenization outcome)
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from lending_marketplace.api.deps import get_asset_service, get_current_principal
from lending_marketplace.domain.enums import AssetStatus, AssetType
from lending_marketplace.domain.identity import Principal
from lending_marketplace.schemas.asset import (
    AssetEnvelope,
    AssetListResponse,
    AssetResponse,
    CreateAssetRequest,
)
from lending_marketplace.services.asset_service import AssetService

router = APIRouter(prefix="/api/assets", tags=["Assets"])


@router.post(
    "/create",
    response_model=AssetEnvelope,
    status_code=201,
    summary="Register an asset for tokenization",
)
async def create_asset(
    body: CreateAssetRequest,
    principal: Principal = Depends(get_current_principal),
    svc: AssetService = Depends(get_asset_service),
) -> AssetEnvelope:
    """Returns immediately with status=pending; poll GET /api/assets/{id}."""
    asset = await svc.create_asset(
        principal,
        asset_type=body.type,
        value=body.value,
        description=body.description,
        asset_name=body.asset_name,
        counterparty_email=body.counterparty_email,
        document_url=body.document_url,
    )
    return AssetEnvelope(
        message="Asset created; tokenization in progress",
        asset=AssetResponse.model_validate(asset),
    )


@router.get("", response_model=AssetListResponse, summary="List the caller's assets")
async def list_assets(
    status: AssetStatus | None = Query(default=None),
    type: AssetType | None = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    svc: AssetService = Depends(get_asset_service),
) -> AssetListResponse:
    assets = await svc.list_assets(principal, status=status, asset_type=type)
    return AssetListResponse(assets=[AssetResponse.model_validate(a) for a in assets])


@router.get("/{asset_id}", response_model=AssetEnvelope, summary="Get one of the caller's assets")
async def get_asset(
    asset_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    svc: AssetService = Depends(get_asset_service),
) -> AssetEnvelope:
    asset = await svc.get_asset(principal, asset_id)
    return AssetEnvelope(asset=AssetResponse.model_validate(asset))
