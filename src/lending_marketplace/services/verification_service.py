"""Verification Service — runs the oracle verifier against an asset.

Coordinates between:
    - A VerifierStrategy (AssetRuleVerifier by default)
    - AssetRepository (verification fields and status on the asset)
    - VerificationLogRepository (append-only history of runs)
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from lending_marketplace.domain.enums import AssetStatus, UserRole
from lending_marketplace.domain.exceptions import AccessDeniedError, NotFoundError
from lending_marketplace.domain.verifier_protocol import VerificationRequest
from lending_marketplace.infrastructure.database.repositories import (
    AssetRepository,
    VerificationLogRepository,
)
from lending_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from lending_marketplace.domain.identity import Principal
    from lending_marketplace.domain.verifier_protocol import (
        VerificationResult,
        VerifierStrategy,
    )
    from lending_marketplace.infrastructure.database.orm_models import Asset, VerificationLog

logger = get_logger(__name__)

VERIFIED_BY = "Mock Oracle Service"


class VerificationService:
    """Scores assets and records every verification attempt."""

    def __init__(self, session: AsyncSession, verifier: VerifierStrategy) -> None:
        self._session = session
        self._verifier = verifier
        self._asset_repo = AssetRepository(session)
        self._log_repo = VerificationLogRepository(session)

    async def verify_asset(
        self,
        actor: Principal,
        asset_id: uuid.UUID,
    ) -> tuple[Asset, VerificationResult]:
        """Run verification and persist the verdict on the asset and in the log."""
        asset = await self._get_accessible_asset(actor, asset_id)

        result = await self._verifier.verify(
            VerificationRequest(
                asset_id=str(asset.id),
                asset_type=asset.type,
                value=asset.value,
                description=asset.description,
            )
        )

        data = result.to_dict()
        asset.verification_status = result.status.value
        asset.verification_method = result.method
        asset.verification_data = data
        asset.verified_at = datetime.now(UTC) if result.passed else None
        asset.verified_by = VERIFIED_BY
        # A chain-side tokenization failure stays visible; verification does not clear it.
        if asset.status != AssetStatus.ERROR.value:
            asset.status = (
                AssetStatus.VERIFIED.value if result.passed else AssetStatus.VERIFICATION_FAILED.value
            )
        await self._asset_repo.update(asset)

        await self._log_repo.record(
            asset_id=asset.id,
            method=result.method,
            status="success" if result.passed else "failed",
            data=data,
            error_message=result.error,
        )

        logger.info(
            "verification.completed",
            asset_id=str(asset.id),
            status=result.status.value,
            confidence=result.confidence,
        )
        return asset, result

    async def get_logs(self, actor: Principal, asset_id: uuid.UUID) -> list[VerificationLog]:
        """Verification history for an asset, newest first."""
        await self._get_accessible_asset(actor, asset_id)
        return await self._log_repo.list_for_asset(asset_id)

    async def _get_accessible_asset(self, actor: Principal, asset_id: uuid.UUID) -> Asset:
        asset = await self._asset_repo.get_by_id(asset_id)
        if asset is None:
            raise NotFoundError("Asset", asset_id)
        if asset.user_id != actor.id and not actor.has_role(UserRole.ADMIN):
            raise AccessDeniedError("Unauthorized")
        return asset
