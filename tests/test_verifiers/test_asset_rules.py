"""Unit tests for the AssetRuleVerifier.

Tests cover:
    - Values inside each type's range with a real description -> verified
    - Values outside the range -> verification_failed, high risk
    - Short or missing descriptions -> verification_failed
    - Range boundaries are inclusive
    - Unknown asset types fall back to the deposit rule
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from lending_marketplace.domain.enums import RiskLevel, VerificationStatus
from lending_marketplace.domain.verifier_protocol import VerificationRequest, VerifierStrategy
from lending_marketplace.verifiers import RULES, AssetRuleVerifier

# --- Test fixtures ---

GOOD_DESCRIPTION = "Invoice for Q3 logistics"


def _make_request(
    asset_type: str = "invoice",
    value: Decimal | None = Decimal("50000"),
    description: str | None = GOOD_DESCRIPTION,
) -> VerificationRequest:
    return VerificationRequest(
        asset_id="asset-001",
        asset_type=asset_type,
        value=value,
        description=description,
    )


# --- Tests ---


class TestAssetRuleVerifierHappyPath:
    @pytest.mark.asyncio
    async def test_invoice_in_range_is_verified(self) -> None:
        result = await AssetRuleVerifier().verify(_make_request())

        assert result.status == VerificationStatus.VERIFIED
        assert result.passed is True
        assert result.confidence == 0.95
        assert result.risk == RiskLevel.LOW
        assert result.error is None
        assert result.verified_amount == Decimal("50000")

    @pytest.mark.asyncio
    async def test_checks_recorded(self) -> None:
        result = await AssetRuleVerifier().verify(_make_request())

        assert result.checks["has_required_fields"] is True
        assert result.checks["value_in_range"] is True
        assert result.checks["has_valid_description"] is True
        assert "timestamp" in result.checks

    @pytest.mark.asyncio
    async def test_to_dict_shape(self) -> None:
        data = (await AssetRuleVerifier().verify(_make_request())).to_dict()

        assert data["verification_method"] == "mock_oracle"
        assert data["risk_score"] == "low"
        assert data["verified_amount"] == "50000"
        assert data["data_source"] == "Mock invoice verification"

    @pytest.mark.parametrize(
        ("asset_type", "value"),
        [
            ("deposit", Decimal("1000")),
            ("deposit", Decimal("1000000")),
            ("purchase_order", Decimal("5000")),
            ("purchase_order", Decimal("5000000")),
            ("invoice", Decimal("2000000")),
        ],
    )
    @pytest.mark.asyncio
    async def test_boundaries_are_inclusive(self, asset_type: str, value: Decimal) -> None:
        result = await AssetRuleVerifier().verify(_make_request(asset_type, value))
        assert result.passed is True


class TestAssetRuleVerifierFailures:
    @pytest.mark.asyncio
    async def test_invoice_below_minimum_fails(self) -> None:
        result = await AssetRuleVerifier().verify(_make_request(value=Decimal("500")))

        assert result.status == VerificationStatus.VERIFICATION_FAILED
        assert result.confidence == 0.45
        assert result.risk == RiskLevel.HIGH
        assert result.checks["value_in_range"] is False
        assert result.error == "Asset did not meet verification criteria"

    @pytest.mark.asyncio
    async def test_purchase_order_above_maximum_fails(self) -> None:
        result = await AssetRuleVerifier().verify(
            _make_request("purchase_order", Decimal("5000000.01"))
        )
        assert result.passed is False

    @pytest.mark.asyncio
    async def test_short_description_fails(self) -> None:
        result = await AssetRuleVerifier().verify(_make_request(description="short"))

        assert result.passed is False
        assert result.checks["has_valid_description"] is False
        assert result.checks["value_in_range"] is True

    @pytest.mark.asyncio
    async def test_missing_description_fails_required_fields(self) -> None:
        result = await AssetRuleVerifier().verify(_make_request(description=None))

        assert result.passed is False
        assert result.checks["has_required_fields"] is False


class TestAssetRuleVerifierRules:
    def test_rule_table(self) -> None:
        assert RULES["invoice"].min_value == Decimal("1000")
        assert RULES["invoice"].max_value == Decimal("2000000")

    @pytest.mark.asyncio
    async def test_unknown_type_uses_deposit_rule(self) -> None:
        verifier = AssetRuleVerifier()
        inside = await verifier.verify(_make_request("equipment", Decimal("999999")))
        outside = await verifier.verify(_make_request("equipment", Decimal("1000001")))

        assert inside.passed is True
        assert outside.passed is False

    def test_satisfies_protocol(self) -> None:
        assert isinstance(AssetRuleVerifier(), VerifierStrategy)
