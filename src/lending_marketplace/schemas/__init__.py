"""Pydantic API schemas."""

from lending_marketplace.schemas.asset import (
    AssetEnvelope,
    AssetListResponse,
    AssetResponse,
    CreateAssetRequest,
    VerificationLogListResponse,
    VerifyAssetResponse,
)
from lending_marketplace.schemas.common import ErrorResponse, HealthResponse, SuccessResponse
from lending_marketplace.schemas.escrow import (
    CreateEscrowRequest,
    CreateEscrowResponse,
    DepositRequest,
    EscrowDetailResponse,
    EscrowEnvelope,
    EscrowListResponse,
    EscrowResponse,
    InviteListResponse,
    InviteResponse,
    MilestoneEnvelope,
    MilestoneInput,
    RejectMilestoneRequest,
    SubmitMilestoneRequest,
)
from lending_marketplace.schemas.loan import (
    ApproveLoanRequest,
    LenderStatsResponse,
    LoanDetailResponse,
    LoanEnvelope,
    LoanListResponse,
    LoanRequestBody,
    RejectLoanRequest,
)

__all__ = [
    "AssetEnvelope",
    "AssetListResponse",
    "AssetResponse",
    "CreateAssetRequest",
    "VerificationLogListResponse",
    "VerifyAssetResponse",
    "ErrorResponse",
    "HealthResponse",
    "SuccessResponse",
    "CreateEscrowRequest",
    "CreateEscrowResponse",
    "DepositRequest",
    "EscrowDetailResponse",
    "EscrowEnvelope",
    "EscrowListResponse",
    "EscrowResponse",
    "InviteListResponse",
    "InviteResponse",
    "MilestoneEnvelope",
    "MilestoneInput",
    "RejectMilestoneRequest",
    "SubmitMilestoneRequest",
    "ApproveLoanRequest",
    "LenderStatsResponse",
    "LoanDetailResponse",
    "LoanEnvelope",
    "LoanListResponse",
    "LoanRequestBody",
    "RejectLoanRequest",
]
