"""Domain layer — pure business logic with zero framework dependencies."""

from lending_marketplace.domain.enums import (
    ActivityType,
    AssetStatus,
    AssetType,
    EscrowStatus,
    LoanStatus,
    MilestoneStatus,
    UserRole,
)
from lending_marketplace.domain.exceptions import (
    AccessDeniedError,
    InvalidStateError,
    MarketplaceError,
    NotFoundError,
    ValidationError,
)
from lending_marketplace.domain.identity import Principal
from lending_marketplace.domain.state_machine import (
    EscrowStateMachine,
    LoanStateMachine,
    MilestoneStateMachine,
    fire_transition,
)

__all__ = [
    "ActivityType",
    "AssetStatus",
    "AssetType",
    "EscrowStatus",
    "LoanStatus",
    "MilestoneStatus",
    "UserRole",
    "AccessDeniedError",
    "InvalidStateError",
    "MarketplaceError",
    "NotFoundError",
    "ValidationError",
    "Principal",
    "EscrowStateMachine",
    "LoanStateMachine",
    "MilestoneStateMachine",
    "fire_transition",
]
