"""Domain enumerations for the lending marketplace.

Canonical status and type values shared by the ORM, the services and the
API schemas. Framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of an escrow project.

    Transitions are guarded by EscrowStateMachine (domain/state_machine.py).
    """

    DRAFT = "draft"
    INVITED = "invited"
    PENDING_DEPOSIT = "pending_deposit"
    ACTIVE = "active"


class MilestoneStatus(enum.StrEnum):
    """Lifecycle states of a single escrow milestone."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class ActivityType(enum.StrEnum):
    """Types of entries in the append-only escrow_activities log.

    Every escrow state change MUST produce exactly one activity.
    """

    ESCROW_CREATED = "escrow_created"
    INVITE_SENT = "invite_sent"
    INVITE_ACCEPTED = "invite_accepted"
    FUNDS_DEPOSITED = "funds_deposited"
    MILESTONE_SUBMITTED = "milestone_submitted"
    MILESTONE_APPROVED = "milestone_approved"
    MILESTONE_REJECTED = "milestone_rejected"


class AssetType(enum.StrEnum):
    DEPOSIT = "deposit"
    PURCHASE_ORDER = "purchase_order"
    INVOICE = "invoice"


class AssetStatus(enum.StrEnum):
    """Asset record status.

    `error` is terminal for the tokenization path: the background job gave up.
    """

    PENDING = "pending"
    VERIFIED = "verified"
    VERIFICATION_FAILED = "verification_failed"
    ERROR = "error"


class VerificationStatus(enum.StrEnum):
    VERIFIED = "verified"
    VERIFICATION_FAILED = "verification_failed"


class RiskLevel(enum.StrEnum):
    LOW = "low"
    HIGH = "high"


class LoanStatus(enum.StrEnum):
    """Lifecycle states of a loan. Guarded by LoanStateMachine."""

    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    FUNDED = "funded"
    ACTIVE = "active"


class ChainSyncStatus(enum.StrEnum):
    """Outcome of the background chain-record call attached to a loan."""

    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"


class UserRole(enum.StrEnum):
    SME = "sme"
    CUSTOMER = "customer"
    LENDER = "lender"
    ADMIN = "admin"
