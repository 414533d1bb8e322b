"""Asset Service — asset registration and background tokenization.

Creating an asset commits the PENDING row first and only then hands the
tokenization to the background runner, so the job always finds the row it
updates. The job writes the chain identifiers with its own session; if
every attempt fails, the asset is marked ERROR with the failure message.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from lending_marketplace.domain.enums import AssetStatus, AssetType
from lending_marketplace.domain.exceptions import NotFoundError, ValidationError
from lending_marketplace.domain.oracle_protocol import TokenizationRequest
from lending_marketplace.infrastructure.database.engine import session_scope
from lending_marketplace.infrastructure.database.orm_models import Asset
from lending_marketplace.infrastructure.database.repositories import AssetRepository
from lending_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from lending_marketplace.domain.identity import Principal
    from lending_marketplace.domain.oracle_protocol import ChainReceipt, OracleAdapter
    from lending_marketplace.services.background import BackgroundTaskRunner

logger = get_logger(__name__)

MIN_DESCRIPTION_LENGTH = 10


class AssetService:
    """Registers SME assets and tracks their tokenization."""

    def __init__(
        self,
        session: AsyncSession,
        oracle: OracleAdapter,
        runner: BackgroundTaskRunner,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session = session
        self._oracle = oracle
        self._runner = runner
        self._session_factory = session_factory
        self._asset_repo = AssetRepository(session)

    async def create_asset(
        self,
        actor: Principal,
        asset_type: AssetType | str,
        value: Decimal,
        description: str,
        asset_name: str | None = None,
        counterparty_email: str | None = None,
        document_url: str | None = None,
    ) -> Asset:
        """Persist a PENDING asset and schedule its tokenization."""
        errors: list[str] = []
        try:
            asset_type = AssetType(asset_type)
        except ValueError:
            errors.append("Invalid asset type. Must be: deposit, purchase_order, or invoice")
        if value is None or value <= 0:
            errors.append("Value must be a positive number")
        if not description or len(description.strip()) < MIN_DESCRIPTION_LENGTH:
            errors.append(f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters")
        if errors:
            raise ValidationError("Validation failed", errors)

        asset = Asset(
            user_id=actor.id,
            type=asset_type.value,
            value=value,
            description=description.strip(),
            asset_name=asset_name,
            counterparty_email=counterparty_email.lower() if counterparty_email else None,
            document_url=document_url,
            status=AssetStatus.PENDING.value,
        )
        asset = await self._asset_repo.create(asset)
        await self._session.commit()

        request = TokenizationRequest(
            asset_type=asset.type,
            owner_email=actor.email,
            value=asset.value,
            counterparty_email=asset.counterparty_email,
        )
        asset_id = asset.id
        self._runner.submit(
            f"asset.tokenize:{asset_id}",
            lambda: self._tokenize(asset_id, request),
            on_failure=lambda err: self._mark_failed(asset_id, err),
        )

        logger.info("asset.created", asset_id=str(asset_id), type=asset.type, value=str(value))
        return asset

    async def get_asset(self, actor: Principal, asset_id: uuid.UUID) -> Asset:
        """Owner-only read; other callers see NOT_FOUND."""
        asset = await self._asset_repo.get_by_id(asset_id)
        if asset is None or asset.user_id != actor.id:
            raise NotFoundError("Asset", asset_id)
        return asset

    async def list_assets(
        self,
        actor: Principal,
        status: AssetStatus | None = None,
        asset_type: AssetType | None = None,
    ) -> list[Asset]:
        return await self._asset_repo.list_for_user(
            actor.id,
            status=status.value if status else None,
            asset_type=asset_type.value if asset_type else None,
        )

    # ------------------------------------------------------------------
    # Background jobs
    # ------------------------------------------------------------------

    async def _tokenize(self, asset_id: uuid.UUID, request: TokenizationRequest) -> None:
        receipt = await self._oracle.tokenize_asset(request)
        await self._store_receipt(asset_id, receipt)

        if receipt.chain_id:
            chain_asset_id = receipt.chain_id
            self._runner.submit(
                f"asset.notify:{asset_id}",
                lambda: self._oracle.notify_verification(chain_asset_id),
            )

    async def _store_receipt(self, asset_id: uuid.UUID, receipt: ChainReceipt) -> None:
        async with session_scope(self._session_factory) as session:
            repo = AssetRepository(session)
            asset = await repo.get_by_id(asset_id)
            if asset is None:
                logger.warning("asset.tokenized_missing_row", asset_id=str(asset_id))
                return
            asset.blockchain_asset_id = receipt.chain_id
            asset.transaction_hash = receipt.transaction_hash
            asset.block_number = receipt.block_number
            await repo.update(asset)

        logger.info(
            "asset.tokenized",
            asset_id=str(asset_id),
            chain_asset_id=receipt.chain_id,
            tx_hash=receipt.transaction_hash,
        )

    async def _mark_failed(self, asset_id: uuid.UUID, err: BaseException) -> None:
        async with session_scope(self._session_factory) as session:
            repo = AssetRepository(session)
            asset = await repo.get_by_id(asset_id)
            if asset is None:
                return
            asset.status = AssetStatus.ERROR.value
            asset.error_message = str(err) or type(err).__name__
            await repo.update(asset)

        logger.error("asset.tokenization_failed", asset_id=str(asset_id), error=str(err))
