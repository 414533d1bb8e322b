"""Oracle / tokenization adapter protocol.

The blockchain tokenization service is an external black box. Services only
depend on this Protocol; the concrete adapter is constructed once in the app
factory and injected, so tests can substitute a double.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class TokenizationRequest:
    asset_type: str
    owner_email: str | None
    value: Decimal
    counterparty_email: str | None = None
    document_hash: str | None = None


@dataclass(frozen=True)
class ChainReceipt:
    """Identifier, transaction reference and status returned by the chain.

    Attributes:
        chain_id: Identifier assigned on chain (asset or loan id).
        transaction_hash: Hash of the transaction that recorded it.
        block_number: Block the transaction landed in.
        status: Adapter-reported status, e.g. "confirmed".
    """

    chain_id: str | None
    transaction_hash: str
    block_number: int
    status: str = "confirmed"


@runtime_checkable
class OracleAdapter(Protocol):
    """Operations the backend needs from the tokenization / oracle service."""

    async def tokenize_asset(self, request: TokenizationRequest) -> ChainReceipt:
        ...

    async def notify_verification(self, chain_asset_id: str) -> bool:
        ...

    async def record_loan(
        self,
        chain_asset_id: str | None,
        amount: Decimal,
        interest_rate: Decimal,
        term_months: int,
    ) -> ChainReceipt:
        ...

    async def fund_loan(self, chain_loan_id: str | None) -> ChainReceipt:
        ...
