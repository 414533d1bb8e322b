"""Application services — use case orchestration."""

from lending_marketplace.services.asset_service import AssetService
from lending_marketplace.services.background import BackgroundTaskRunner
from lending_marketplace.services.escrow_service import EscrowService
from lending_marketplace.services.loan_service import LoanService
from lending_marketplace.services.verification_service import VerificationService

__all__ = [
    "AssetService",
    "BackgroundTaskRunner",
    "EscrowService",
    "LoanService",
    "VerificationService",
]
