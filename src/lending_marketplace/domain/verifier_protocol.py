"""Asset Verifier Protocol.

Defines the interface that asset verification strategies implement. This is
a Protocol (structural subtyping), so concrete verifiers and test doubles do
not need to inherit from a base class — they only need to match the shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol, runtime_checkable

from lending_marketplace.domain.enums import RiskLevel, VerificationStatus


@dataclass(frozen=True)
class VerificationRequest:
    """Snapshot of the asset fields a verifier inspects.

    Attributes:
        asset_id: UUID string of the asset being verified.
        asset_type: AssetType value (deposit, purchase_order, invoice).
        value: Declared asset value.
        description: Free-text description supplied by the owner.
    """

    asset_id: str
    asset_type: str
    value: Decimal | None
    description: str | None


@dataclass(frozen=True)
class VerificationResult:
    """Verdict produced by a verifier.

    Attributes:
        status: verified or verification_failed.
        confidence: Oracle confidence in the verdict (0.0 - 1.0).
        risk: Risk bucket derived from the verdict.
        checks: Raw boolean checks that produced the verdict.
        method: Identifier of the verification method.
        data_source: Human-readable source label.
        verified_amount: Amount the oracle vouches for.
        error: Explanation when verification failed.
    """

    status: VerificationStatus
    confidence: float
    risk: RiskLevel
    checks: dict = field(default_factory=dict)
    method: str = "mock_oracle"
    data_source: str = ""
    verified_amount: Decimal | None = None
    error: str | None = None

    @property
    def passed(self) -> bool:
        return self.status == VerificationStatus.VERIFIED

    def to_dict(self) -> dict:
        """Serialize for storage in the verification_data JSON column."""
        return {
            "checks": self.checks,
            "verified_amount": str(self.verified_amount) if self.verified_amount is not None else None,
            "confidence": self.confidence,
            "risk_score": self.risk.value,
            "verification_method": self.method,
            "data_source": self.data_source,
        }


@runtime_checkable
class VerifierStrategy(Protocol):
    """Protocol that asset verifiers satisfy.

    Concrete implementations:
        - verifiers/asset_rules.py (type-specific range rules, mock oracle)
    """

    async def verify(self, request: VerificationRequest) -> VerificationResult:
        """Score an asset and return a verdict."""
        ...
