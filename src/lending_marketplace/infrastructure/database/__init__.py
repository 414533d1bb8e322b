"""Database infrastructure — engine, ORM models, and repositories."""

from lending_marketplace.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    close_db,
    init_db,
    session_scope,
)
from lending_marketplace.infrastructure.database.orm_models import (
    Asset,
    Base,
    Escrow,
    EscrowActivity,
    EscrowMilestone,
    Loan,
    LoanStatusHistory,
    VerificationLog,
)
from lending_marketplace.infrastructure.database.repositories import (
    ActivityRepository,
    AssetRepository,
    EscrowRepository,
    LoanRepository,
    MilestoneRepository,
    VerificationLogRepository,
)

__all__ = [
    "Base",
    "Asset",
    "Escrow",
    "EscrowActivity",
    "EscrowMilestone",
    "Loan",
    "LoanStatusHistory",
    "VerificationLog",
    "ActivityRepository",
    "AssetRepository",
    "EscrowRepository",
    "LoanRepository",
    "MilestoneRepository",
    "VerificationLogRepository",
    "build_engine",
    "build_session_factory",
    "session_scope",
    "init_db",
    "close_db",
]
