"""Tests for domain enumerations and exceptions."""

from __future__ import annotations

from lending_marketplace.domain.enums import (
    AssetType,
    EscrowStatus,
    LoanStatus,
    MilestoneStatus,
    UserRole,
)
from lending_marketplace.domain.exceptions import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from lending_marketplace.domain.state_machine import (
    EscrowStateMachine,
    LoanStateMachine,
    MilestoneStateMachine,
)


class TestStatusEnums:
    def test_escrow_statuses_match_machine(self) -> None:
        assert {s.value for s in EscrowStatus} == {s.value for s in EscrowStateMachine.states}

    def test_milestone_statuses_match_machine(self) -> None:
        assert {s.value for s in MilestoneStatus} == {
            s.value for s in MilestoneStateMachine.states
        }

    def test_loan_statuses_match_machine(self) -> None:
        assert {s.value for s in LoanStatus} == {s.value for s in LoanStateMachine.states}

    def test_status_is_str_enum(self) -> None:
        assert isinstance(EscrowStatus.PENDING_DEPOSIT, str)
        assert EscrowStatus.PENDING_DEPOSIT == "pending_deposit"


class TestAssetTypeAndRoles:
    def test_asset_types(self) -> None:
        assert {t.value for t in AssetType} == {"deposit", "purchase_order", "invoice"}

    def test_roles(self) -> None:
        assert UserRole("lender") is UserRole.LENDER
        assert len(UserRole) == 4


class TestExceptions:
    def test_validation_details_in_extra(self) -> None:
        err = ValidationError("Invalid escrow definition", ["percentages must total 100%"])
        assert err.code == "VALIDATION_ERROR"
        assert err.extra() == {"details": ["percentages must total 100%"]}

    def test_validation_without_details(self) -> None:
        assert ValidationError("bad").extra() == {}

    def test_not_found_code_from_entity(self) -> None:
        err = NotFoundError("Escrow", "abc")
        assert err.code == "ESCROW_NOT_FOUND"
        assert "abc" in err.message

    def test_invalid_state_carries_status(self) -> None:
        err = InvalidStateError("already accepted", "pending_deposit")
        assert err.extra() == {"current_status": "pending_deposit"}
