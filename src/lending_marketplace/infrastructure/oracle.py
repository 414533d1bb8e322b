"""Mock tokenization / chain adapter.

Stands in for the blockchain service: every call sleeps for the configured
latency and returns a fabricated id, transaction hash and block number.
No gas, no network.
"""

from __future__ import annotations

import asyncio
import secrets
from typing import TYPE_CHECKING

from lending_marketplace.domain.oracle_protocol import ChainReceipt
from lending_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

    from lending_marketplace.domain.oracle_protocol import TokenizationRequest

logger = get_logger(__name__)

MOCK_BLOCK_NUMBER = 12345678


def _mock_tx_hash() -> str:
    return "0x" + secrets.token_hex(32)


class MockOracleAdapter:
    """OracleAdapter implementation running entirely in process."""

    def __init__(self, latency_seconds: float = 1.0) -> None:
        self._latency = latency_seconds

    async def _simulate_latency(self) -> None:
        if self._latency > 0:
            await asyncio.sleep(self._latency)

    async def tokenize_asset(self, request: TokenizationRequest) -> ChainReceipt:
        logger.info("oracle.tokenize_asset", asset_type=request.asset_type, value=str(request.value))
        await self._simulate_latency()
        receipt = ChainReceipt(
            chain_id=str(secrets.randbelow(10000)),
            transaction_hash=_mock_tx_hash(),
            block_number=MOCK_BLOCK_NUMBER,
        )
        logger.info("oracle.asset_tokenized", chain_asset_id=receipt.chain_id)
        return receipt

    async def notify_verification(self, chain_asset_id: str) -> bool:
        logger.info("oracle.verification_notified", chain_asset_id=chain_asset_id)
        return True

    async def record_loan(
        self,
        chain_asset_id: str | None,
        amount: Decimal,
        interest_rate: Decimal,
        term_months: int,
    ) -> ChainReceipt:
        logger.info(
            "oracle.record_loan",
            chain_asset_id=chain_asset_id,
            amount=str(amount),
            term_months=term_months,
        )
        await self._simulate_latency()
        return ChainReceipt(
            chain_id=str(secrets.randbelow(10000)),
            transaction_hash=_mock_tx_hash(),
            block_number=MOCK_BLOCK_NUMBER,
        )

    async def fund_loan(self, chain_loan_id: str | None) -> ChainReceipt:
        logger.info("oracle.fund_loan", chain_loan_id=chain_loan_id)
        await self._simulate_latency()
        return ChainReceipt(
            chain_id=chain_loan_id,
            transaction_hash=_mock_tx_hash(),
            block_number=MOCK_BLOCK_NUMBER,
        )
