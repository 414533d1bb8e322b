"""Tests for AssetService: registration, background tokenization, owner reads."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from lending_marketplace.domain.enums import AssetStatus, AssetType
from lending_marketplace.domain.exceptions import NotFoundError, ValidationError
from lending_marketplace.infrastructure.database.orm_models import Asset
from lending_marketplace.services.asset_service import AssetService
from lending_marketplace.services.background import BackgroundTaskRunner


def _service(session, session_factory, oracle, runner) -> AssetService:
    return AssetService(session, oracle, runner, session_factory)


async def _reload(session_factory, asset_id: uuid.UUID) -> Asset:
    async with session_factory() as session:
        return await session.get(Asset, asset_id)


class TestCreateAsset:
    @pytest.mark.asyncio
    async def test_returns_pending_before_tokenization(
        self, session, session_factory, oracle, runner, sme
    ) -> None:
        svc = _service(session, session_factory, oracle, runner)
        asset = await svc.create_asset(
            sme,
            AssetType.INVOICE,
            Decimal("50000"),
            "Invoice #1042 for consulting services",
            asset_name="INV-1042",
            counterparty_email="AP@Buyer.test",
        )

        assert asset.status == "pending"
        assert asset.user_id == sme.id
        assert asset.counterparty_email == "ap@buyer.test"
        assert asset.blockchain_asset_id is None
        await runner.drain()

    @pytest.mark.asyncio
    async def test_tokenization_fills_chain_fields(
        self, session, session_factory, oracle, runner, sme
    ) -> None:
        svc = _service(session, session_factory, oracle, runner)
        asset = await svc.create_asset(
            sme, "deposit", Decimal("25000"), "Term deposit at First Bank"
        )
        await runner.drain()

        stored = await _reload(session_factory, asset.id)
        assert stored.status == "pending"
        assert stored.blockchain_asset_id is not None
        assert stored.transaction_hash.startswith("0x")
        assert len(stored.transaction_hash) == 66
        assert stored.block_number == 12345678
        assert oracle.notified == [stored.blockchain_asset_id]

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(
        self, session, session_factory, runner, oracle_factory, sme
    ) -> None:
        oracle = oracle_factory(failures=1)
        svc = _service(session, session_factory, oracle, runner)
        asset = await svc.create_asset(
            sme, "invoice", Decimal("5000"), "Invoice for warehouse rental"
        )
        await runner.drain()

        stored = await _reload(session_factory, asset.id)
        assert oracle.calls["tokenize_asset"] == 2
        assert stored.blockchain_asset_id is not None
        assert stored.status == "pending"

    @pytest.mark.asyncio
    async def test_exhausted_retries_mark_error(
        self, session, session_factory, oracle_factory, sme
    ) -> None:
        oracle = oracle_factory(failures=99)
        runner = BackgroundTaskRunner(timeout_seconds=1, max_attempts=2, retry_wait_seconds=0)
        svc = _service(session, session_factory, oracle, runner)

        asset = await svc.create_asset(
            sme, "purchase_order", Decimal("75000"), "PO 7781 from retail chain"
        )
        assert asset.status == "pending"
        await runner.drain()

        stored = await _reload(session_factory, asset.id)
        assert oracle.calls["tokenize_asset"] == 2
        assert stored.status == AssetStatus.ERROR
        assert stored.error_message == "tokenize_asset unavailable"
        assert stored.blockchain_asset_id is None
        assert oracle.notified == []

    @pytest.mark.asyncio
    async def test_timeout_marks_error(self, session, session_factory, oracle_factory, sme) -> None:
        oracle = oracle_factory(delay=1)
        runner = BackgroundTaskRunner(timeout_seconds=0.05, max_attempts=1, retry_wait_seconds=0)
        svc = _service(session, session_factory, oracle, runner)

        asset = await svc.create_asset(sme, "invoice", Decimal("5000"), "Invoice for fleet repair")
        await runner.drain()

        stored = await _reload(session_factory, asset.id)
        assert stored.status == AssetStatus.ERROR
        assert stored.error_message == "TimeoutError"

    @pytest.mark.parametrize(
        ("asset_type", "value", "description"),
        [
            ("equipment", Decimal("5000"), "Forklift, two years old"),
            ("invoice", Decimal("0"), "Invoice for warehouse rental"),
            ("invoice", Decimal("5000"), "too short"),
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_input(
        self, session, session_factory, oracle, runner, sme, asset_type, value, description
    ) -> None:
        svc = _service(session, session_factory, oracle, runner)
        with pytest.raises(ValidationError):
            await svc.create_asset(sme, asset_type, value, description)
        assert runner.pending == 0


class TestReadAssets:
    @pytest.mark.asyncio
    async def test_owner_only(self, session, session_factory, oracle, runner, sme, lender) -> None:
        svc = _service(session, session_factory, oracle, runner)
        asset = await svc.create_asset(sme, "invoice", Decimal("5000"), "Invoice for fleet repair")
        await runner.drain()

        assert (await svc.get_asset(sme, asset.id)).id == asset.id
        with pytest.raises(NotFoundError):
            await svc.get_asset(lender, asset.id)

    @pytest.mark.asyncio
    async def test_list_with_filters(self, session, session_factory, oracle, runner, sme) -> None:
        svc = _service(session, session_factory, oracle, runner)
        await svc.create_asset(sme, "invoice", Decimal("5000"), "Invoice for fleet repair")
        await runner.drain()
        await svc.create_asset(sme, "deposit", Decimal("9000"), "Savings deposit account")
        await runner.drain()

        assert len(await svc.list_assets(sme)) == 2
        invoices = await svc.list_assets(sme, asset_type=AssetType.INVOICE)
        assert [a.type for a in invoices] == ["invoice"]
        assert await svc.list_assets(sme, status=AssetStatus.VERIFIED) == []
