"""Asset verification strategies.

    - AssetRuleVerifier: mock oracle scoring an asset against a per-type
      value range (deposit, purchase_order, invoice).

Verifiers satisfy the VerifierStrategy protocol and are injected into
VerificationService, so tests can swap in a double.
"""

from lending_marketplace.domain.verifier_protocol import (
    VerificationRequest,
    VerificationResult,
    VerifierStrategy,
)
from lending_marketplace.verifiers.asset_rules import RULES, AssetRuleVerifier, ValueRule

__all__ = [
    "RULES",
    "AssetRuleVerifier",
    "ValueRule",
    "VerificationRequest",
    "VerificationResult",
    "VerifierStrategy",
]
