"""SQLAlchemy 2.0 ORM models for the lending marketplace.

Tables:
    1. escrows               — milestone-funded project agreements (SME <-> customer).
    2. escrow_milestones     — percentage tranches of an escrow's total amount.
    3. escrow_activities     — append-only audit log of escrow actions.
    4. assets                — tokenizable SME assets backing loans.
    5. verification_logs     — append-only log of oracle verification runs.
    6. loans                 — loan requests against assets.
    7. loan_status_history   — append-only log of loan status changes.

Design decisions:
    - UUIDs as primary keys; user ids are the identity provider's UUIDs.
    - Decimal (Numeric) for money, never floats.
    - JSON columns (JSONB on PostgreSQL) for activity metadata and oracle output.
    - escrows, escrow_milestones and loans carry a `version` column used as
      version_id_col: every UPDATE checks the version it read, so concurrent
      read-modify-write sequences fail with StaleDataError instead of
      silently overwriting each other.
    - CHECK constraints mirror the money invariants
      (released_amount <= deposited_amount <= total_amount).
    - Log tables are append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(18, 2)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. escrows
# ---------------------------------------------------------------------------
class Escrow(Base):
    """A milestone-funded project agreement between an SME and a customer."""

    __tablename__ = "escrows"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Participants ---
    sme_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        comment="Identity-provider id of the SME that owns the project",
    )
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
        default=None,
        comment="Set once when the customer accepts the invite; immutable after",
    )
    customer_email: Mapped[str] = mapped_column(String(320), nullable=False)

    # --- Project ---
    project_name: Mapped[str] = mapped_column(String(200), nullable=False)
    project_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Financials ---
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    deposited_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    released_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    # --- Status (guarded by EscrowStateMachine) ---
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    # --- Invitation ---
    invite_token: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
        comment="Unguessable capability string granting read/accept access",
    )
    invite_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    invite_accepted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # --- Deposit ---
    deposit_due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deposited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    # --- Optimistic concurrency ---
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # --- Relationships ---
    milestones: Mapped[list[EscrowMilestone]] = relationship(
        "EscrowMilestone",
        back_populates="escrow",
        cascade="all, delete-orphan",
        order_by="EscrowMilestone.order_index.asc()",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'invited', 'pending_deposit', 'active')",
            name="ck_escrow_valid_status",
        ),
        CheckConstraint("total_amount > 0", name="ck_escrow_positive_total"),
        CheckConstraint(
            "released_amount >= 0 AND released_amount <= deposited_amount",
            name="ck_escrow_released_within_deposit",
        ),
        CheckConstraint(
            "deposited_amount >= 0 AND deposited_amount <= total_amount",
            name="ck_escrow_deposit_within_total",
        ),
        Index("idx_escrow_sme", "sme_id"),
        Index("idx_escrow_customer", "customer_id"),
        Index("idx_escrow_customer_email", "customer_email"),
        Index("idx_escrow_status", "status"),
        Index("idx_escrow_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Escrow id={self.id} status={self.status} "
            f"released={self.released_amount}/{self.total_amount}>"
        )


# ---------------------------------------------------------------------------
# 2. escrow_milestones
# ---------------------------------------------------------------------------
class EscrowMilestone(Base):
    """An independently approvable tranche of an escrow's total amount."""

    __tablename__ = "escrow_milestones"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escrows.id", ondelete="CASCADE"),
        nullable=False,
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # --- Evidence ---
    evidence_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # --- Review ---
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    escrow: Mapped[Escrow] = relationship("Escrow", back_populates="milestones", lazy="joined")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'submitted', 'approved', 'rejected')",
            name="ck_milestone_valid_status",
        ),
        CheckConstraint("percentage > 0 AND percentage <= 100", name="ck_milestone_percentage"),
        CheckConstraint("order_index >= 1", name="ck_milestone_order_positive"),
        UniqueConstraint("escrow_id", "order_index", name="uq_milestone_escrow_order"),
        Index("idx_milestone_escrow", "escrow_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowMilestone id={self.id} #{self.order_index} "
            f"status={self.status} amount={self.amount}>"
        )


# ---------------------------------------------------------------------------
# 3. escrow_activities (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EscrowActivity(Base):
    """Immutable record of an action taken on an escrow or one of its milestones."""

    __tablename__ = "escrow_activities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escrows.id", ondelete="CASCADE"),
        nullable=False,
    )
    milestone_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("escrow_milestones.id", ondelete="CASCADE"),
        nullable=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    action_type: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_activity_escrow", "escrow_id"),
        Index("idx_activity_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<EscrowActivity id={self.id} type={self.action_type} escrow={self.escrow_id}>"


# ---------------------------------------------------------------------------
# 4. assets
# ---------------------------------------------------------------------------
class Asset(Base):
    """An SME asset that is tokenized on chain and scored by the oracle."""

    __tablename__ = "assets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    type: Mapped[str] = mapped_column(String(20), nullable=False)
    value: Mapped[Decimal] = mapped_column(Money, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    asset_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    counterparty_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    document_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    status: Mapped[str] = mapped_column(String(24), nullable=False, default="pending")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Tokenization (written by the background job) ---
    blockchain_asset_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    transaction_hash: Mapped[str | None] = mapped_column(String(80), nullable=True)
    block_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # --- Verification (written by VerificationService) ---
    verification_status: Mapped[str | None] = mapped_column(String(24), nullable=True)
    verification_method: Mapped[str | None] = mapped_column(String(40), nullable=True)
    verification_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[str | None] = mapped_column(String(80), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "type IN ('deposit', 'purchase_order', 'invoice')",
            name="ck_asset_valid_type",
        ),
        CheckConstraint(
            "status IN ('pending', 'verified', 'verification_failed', 'error')",
            name="ck_asset_valid_status",
        ),
        CheckConstraint("value > 0", name="ck_asset_positive_value"),
        Index("idx_asset_user", "user_id"),
        Index("idx_asset_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Asset id={self.id} type={self.type} status={self.status} value={self.value}>"


# ---------------------------------------------------------------------------
# 5. verification_logs (Append-Only)
# ---------------------------------------------------------------------------
class VerificationLog(Base):
    """One oracle verification run against an asset."""

    __tablename__ = "verification_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    asset_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("assets.id", ondelete="CASCADE"),
        nullable=False,
    )
    verification_method: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    verification_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_verification_log_asset", "asset_id"),)


# ---------------------------------------------------------------------------
# 6. loans
# ---------------------------------------------------------------------------
class Loan(Base):
    """A loan requested by an SME against one of its assets."""

    __tablename__ = "loans"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sme_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    asset_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("assets.id", ondelete="RESTRICT"),
        nullable=False,
    )
    lender_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    amount_requested: Mapped[Decimal] = mapped_column(Money, nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    term_months: Mapped[int] = mapped_column(Integer, nullable=False)
    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="requested")
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # --- Lender review ---
    lender_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approval_conditions: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # --- Chain record (written by background jobs) ---
    chain_loan_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    chain_tx_hash: Mapped[str | None] = mapped_column(String(80), nullable=True)
    chain_sync_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    chain_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    asset: Mapped[Asset] = relationship("Asset", lazy="joined")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('requested', 'approved', 'rejected', 'funded', 'active')",
            name="ck_loan_valid_status",
        ),
        CheckConstraint("amount_requested > 0", name="ck_loan_positive_amount"),
        CheckConstraint("term_months > 0", name="ck_loan_positive_term"),
        Index("idx_loan_sme", "sme_id"),
        Index("idx_loan_status", "status"),
        Index("idx_loan_asset", "asset_id"),
    )

    def __repr__(self) -> str:
        return f"<Loan id={self.id} status={self.status} amount={self.amount_requested}>"


# ---------------------------------------------------------------------------
# 7. loan_status_history (Append-Only)
# ---------------------------------------------------------------------------
class LoanStatusHistory(Base):
    """A single status change of a loan, with who made it and why."""

    __tablename__ = "loan_status_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    loan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("loans.id", ondelete="CASCADE"),
        nullable=False,
    )
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_loan_history_loan", "loan_id"),)
