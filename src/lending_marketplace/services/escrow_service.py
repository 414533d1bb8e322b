"""Escrow Service — milestone escrow lifecycle and fund release.

This is the application layer that coordinates between:
    - Domain state machines (transition guards for escrows and milestones)
    - Repositories (data access)
    - Activity log (append-only audit trail)

Money rules enforced here:
    - Milestone percentages sum to 100% (within 0.01).
    - Milestone amounts are rounded to cents; the last milestone absorbs
      the rounding residual so amounts sum to the escrow total exactly.
    - released_amount only grows by an approved milestone's amount, and
      never beyond deposited_amount. Concurrent approvals are serialized by
      the version column on the escrow row.
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from lending_marketplace.domain.enums import ActivityType, EscrowStatus, MilestoneStatus
from lending_marketplace.domain.exceptions import (
    AccessDeniedError,
    DuplicateOperationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from lending_marketplace.domain.state_machine import (
    EscrowStateMachine,
    MilestoneStateMachine,
    fire_transition,
)
from lending_marketplace.infrastructure.database.orm_models import Escrow, EscrowMilestone
from lending_marketplace.infrastructure.database.repositories import (
    ActivityRepository,
    EscrowRepository,
    MilestoneRepository,
)
from lending_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from lending_marketplace.domain.identity import Principal
    from lending_marketplace.infrastructure.database.orm_models import EscrowActivity
    from lending_marketplace.infrastructure.redis_client import IdempotencyStore

logger = get_logger(__name__)

CENT = Decimal("0.01")
PERCENT_TOLERANCE = Decimal("0.01")
HUNDRED = Decimal("100")


def split_amounts(total: Decimal, percentages: list[Decimal]) -> list[Decimal]:
    """Split `total` by percentages, rounding to cents, residual on the last item."""
    amounts = [(total * pct / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP) for pct in percentages]
    amounts[-1] = total - sum(amounts[:-1], Decimal("0"))
    return amounts


def _validate_milestones(total_amount: Decimal, milestones: list[dict]) -> list[Decimal]:
    errors: list[str] = []
    if total_amount <= 0:
        errors.append("total_amount must be greater than 0")
    if not milestones:
        raise ValidationError("At least one milestone is required", ["milestones must not be empty"])

    percentages: list[Decimal] = []
    for index, milestone in enumerate(milestones, start=1):
        if not str(milestone.get("title") or "").strip():
            errors.append(f"milestone {index}: title is required")
        pct = Decimal(str(milestone.get("percentage", 0)))
        if pct <= 0 or pct > HUNDRED:
            errors.append(f"milestone {index}: percentage must be in (0, 100]")
        percentages.append(pct)

    total_pct = sum(percentages, Decimal("0"))
    if abs(total_pct - HUNDRED) > PERCENT_TOLERANCE:
        errors.append(f"Milestone percentages must total 100% (got {total_pct}%)")

    if errors:
        raise ValidationError("Invalid escrow definition", errors)
    return percentages


class EscrowService:
    """Manages escrow projects and their milestones."""

    def __init__(
        self,
        session: AsyncSession,
        idempotency: IdempotencyStore | None = None,
        frontend_url: str = "http://localhost:8080",
        recent_activity_limit: int = 10,
    ) -> None:
        self._session = session
        self._idempotency = idempotency
        self._frontend_url = frontend_url.rstrip("/")
        self._recent_activity_limit = recent_activity_limit
        self._escrow_repo = EscrowRepository(session)
        self._milestone_repo = MilestoneRepository(session)
        self._activity_repo = ActivityRepository(session)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_escrow(
        self,
        actor: Principal,
        project_name: str,
        customer_email: str,
        total_amount: Decimal,
        milestones: list[dict],
        project_description: str | None = None,
        deposit_due_date: datetime | None = None,
        idempotency_key: str | None = None,
    ) -> Escrow:
        """Create an escrow in DRAFT with its milestones in PENDING.

        `milestones` items carry `title`, `percentage` and optional
        `description`. Nothing is written unless the whole definition is valid.
        """
        if not project_name or not project_name.strip():
            raise ValidationError("project_name is required")
        if not customer_email or not customer_email.strip():
            raise ValidationError("customer_email is required")
        percentages = _validate_milestones(total_amount, milestones)

        claim_key = None
        if idempotency_key and self._idempotency is not None:
            claim_key = f"escrow-create:{actor.id}:{idempotency_key}"
            if not await self._idempotency.claim(claim_key):
                raise DuplicateOperationError(idempotency_key)

        amounts = split_amounts(total_amount, percentages)
        escrow = Escrow(
            sme_id=actor.id,
            customer_email=customer_email.strip().lower(),
            project_name=project_name.strip(),
            project_description=project_description,
            total_amount=total_amount,
            deposited_amount=Decimal("0"),
            released_amount=Decimal("0"),
            status=EscrowStatus.DRAFT.value,
            invite_token=secrets.token_hex(32),
            deposit_due_date=deposit_due_date,
        )
        rows = [
            EscrowMilestone(
                title=str(m["title"]).strip(),
                description=m.get("description"),
                percentage=pct,
                amount=amount,
                order_index=index,
                status=MilestoneStatus.PENDING.value,
            )
            for index, (m, pct, amount) in enumerate(
                zip(milestones, percentages, amounts, strict=True), start=1
            )
        ]
        # The key stays claimed only if the escrow is durably written.
        try:
            escrow = await self._escrow_repo.create(escrow, rows)
            await self._activity_repo.record(
                escrow_id=escrow.id,
                user_id=actor.id,
                action_type=ActivityType.ESCROW_CREATED,
                description=f'Escrow project "{escrow.project_name}" created',
                metadata={"milestone_count": len(rows), "total_amount": str(total_amount)},
            )
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            if claim_key is not None:
                await self._idempotency.release(claim_key)
                logger.warning("escrow.idempotency_released", idempotency_key=idempotency_key)
            raise

        logger.info(
            "escrow.created",
            escrow_id=str(escrow.id),
            total_amount=str(total_amount),
            milestones=len(rows),
        )
        return escrow

    # ------------------------------------------------------------------
    # Invitation
    # ------------------------------------------------------------------

    def invite_link(self, escrow: Escrow) -> str:
        return f"{self._frontend_url}/escrow/accept/{escrow.invite_token}"

    async def send_invite(self, actor: Principal, escrow_id: uuid.UUID) -> tuple[Escrow, str]:
        """Mark the escrow INVITED and return it with the invite link."""
        escrow = await self._get_escrow_or_raise(escrow_id)
        if escrow.sme_id != actor.id:
            raise AccessDeniedError("Only the project owner can send the invite")

        escrow.status = fire_transition(
            EscrowStateMachine,
            "escrow",
            escrow.status,
            "send_invite",
            message=f"Invite cannot be sent for an escrow in status {escrow.status}",
        )
        escrow.invite_sent_at = datetime.now(UTC)
        await self._escrow_repo.update(escrow)

        await self._activity_repo.record(
            escrow_id=escrow.id,
            user_id=actor.id,
            action_type=ActivityType.INVITE_SENT,
            description=f"Invite sent to {escrow.customer_email}",
        )

        logger.info("escrow.invite_sent", escrow_id=str(escrow.id))
        return escrow, self.invite_link(escrow)

    async def get_by_token(self, invite_token: str) -> Escrow:
        """Public lookup by capability token."""
        escrow = await self._escrow_repo.get_by_token(invite_token)
        if escrow is None:
            raise NotFoundError("Escrow", "invite token")
        return escrow

    async def list_pending_invites(self, actor: Principal) -> list[Escrow]:
        return await self._escrow_repo.list_pending_invites(actor.email)

    async def accept_invite(self, actor: Principal, invite_token: str) -> Escrow:
        """Bind the caller as customer and move the escrow to PENDING_DEPOSIT."""
        escrow = await self.get_by_token(invite_token)

        if escrow.customer_email.lower() != actor.email.lower():
            raise AccessDeniedError("This invite was sent to a different email address")
        if escrow.customer_id is not None or escrow.status in (
            EscrowStatus.PENDING_DEPOSIT.value,
            EscrowStatus.ACTIVE.value,
        ):
            raise InvalidStateError("This invite has already been accepted", escrow.status)

        escrow.status = fire_transition(
            EscrowStateMachine, "escrow", escrow.status, "accept_invite"
        )
        escrow.customer_id = actor.id
        escrow.invite_accepted_at = datetime.now(UTC)
        await self._escrow_repo.update(escrow)

        await self._activity_repo.record(
            escrow_id=escrow.id,
            user_id=actor.id,
            action_type=ActivityType.INVITE_ACCEPTED,
            description="Customer accepted escrow invite",
        )

        logger.info("escrow.invite_accepted", escrow_id=str(escrow.id), customer=str(actor.id))
        return escrow

    # ------------------------------------------------------------------
    # Deposit
    # ------------------------------------------------------------------

    async def deposit(
        self,
        actor: Principal,
        escrow_id: uuid.UUID,
        payment_method_ref: str | None = None,
    ) -> Escrow:
        """Record the customer's full deposit and activate the escrow."""
        escrow = await self._escrow_repo.get_by_id(escrow_id)
        if escrow is None or escrow.customer_id != actor.id:
            raise NotFoundError("Escrow", escrow_id)

        escrow.status = fire_transition(
            EscrowStateMachine,
            "escrow",
            escrow.status,
            "confirm_deposit",
            message="Escrow is not awaiting a deposit",
        )
        escrow.deposited_amount = escrow.total_amount
        escrow.deposited_at = datetime.now(UTC)
        await self._escrow_repo.update(escrow)

        await self._activity_repo.record(
            escrow_id=escrow.id,
            user_id=actor.id,
            action_type=ActivityType.FUNDS_DEPOSITED,
            description=f"${escrow.total_amount} deposited",
            metadata={
                "amount": str(escrow.total_amount),
                "payment_method_ref": payment_method_ref,
            },
        )

        logger.info("escrow.deposited", escrow_id=str(escrow.id), amount=str(escrow.total_amount))
        return escrow

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    async def submit_milestone(
        self,
        actor: Principal,
        milestone_id: uuid.UUID,
        evidence_description: str | None = None,
        evidence_url: str | None = None,
    ) -> EscrowMilestone:
        """SME submits (or resubmits after rejection) evidence for a milestone."""
        milestone = await self._get_milestone_or_raise(milestone_id)
        if milestone.escrow.sme_id != actor.id:
            raise AccessDeniedError("Only the SME can submit milestones")

        milestone.status = fire_transition(
            MilestoneStateMachine,
            "milestone",
            milestone.status,
            "submit",
            message="Milestone already submitted or approved",
        )
        milestone.evidence_description = evidence_description
        milestone.evidence_url = evidence_url
        milestone.submitted_at = datetime.now(UTC)
        milestone.submitted_by = actor.id
        await self._milestone_repo.update(milestone)

        await self._activity_repo.record(
            escrow_id=milestone.escrow_id,
            milestone_id=milestone.id,
            user_id=actor.id,
            action_type=ActivityType.MILESTONE_SUBMITTED,
            description=f'Milestone "{milestone.title}" submitted for approval',
        )

        logger.info("milestone.submitted", milestone_id=str(milestone.id))
        return milestone

    async def approve_milestone(
        self,
        actor: Principal,
        milestone_id: uuid.UUID,
    ) -> EscrowMilestone:
        """Customer approves a submitted milestone, releasing its amount."""
        milestone = await self._get_milestone_or_raise(milestone_id)
        escrow = milestone.escrow
        if escrow.customer_id != actor.id:
            raise AccessDeniedError("Only the customer can approve milestones")

        new_status = fire_transition(
            MilestoneStateMachine,
            "milestone",
            milestone.status,
            "approve",
            message="Milestone must be submitted before approval",
        )
        if escrow.released_amount + milestone.amount > escrow.deposited_amount:
            raise InvalidStateError(
                "Insufficient deposited funds to release this milestone",
                escrow.status,
                code="INSUFFICIENT_FUNDS",
            )

        now = datetime.now(UTC)
        milestone.status = new_status
        milestone.approved_at = now
        milestone.approved_by = actor.id
        milestone.released_at = now
        escrow.released_amount = escrow.released_amount + milestone.amount
        # One flush writes both rows; a stale escrow version aborts the release.
        await self._escrow_repo.update(escrow)

        await self._activity_repo.record(
            escrow_id=escrow.id,
            milestone_id=milestone.id,
            user_id=actor.id,
            action_type=ActivityType.MILESTONE_APPROVED,
            description=f'Milestone "{milestone.title}" approved - ${milestone.amount} released',
            metadata={"amount_released": str(milestone.amount)},
        )

        logger.info(
            "milestone.approved",
            milestone_id=str(milestone.id),
            released=str(milestone.amount),
            escrow_released=str(escrow.released_amount),
        )
        return milestone

    async def reject_milestone(
        self,
        actor: Principal,
        milestone_id: uuid.UUID,
        rejection_reason: str,
    ) -> EscrowMilestone:
        """Customer rejects a milestone with a reason; the SME may resubmit."""
        if not rejection_reason or not rejection_reason.strip():
            raise ValidationError("Rejection reason is required")

        milestone = await self._get_milestone_or_raise(milestone_id)
        if milestone.escrow.customer_id != actor.id:
            raise AccessDeniedError("Only the customer can reject milestones")

        milestone.status = fire_transition(
            MilestoneStateMachine,
            "milestone",
            milestone.status,
            "reject",
            message=f"A milestone in status {milestone.status} cannot be rejected",
        )
        milestone.rejection_reason = rejection_reason.strip()
        await self._milestone_repo.update(milestone)

        await self._activity_repo.record(
            escrow_id=milestone.escrow_id,
            milestone_id=milestone.id,
            user_id=actor.id,
            action_type=ActivityType.MILESTONE_REJECTED,
            description=f'Milestone "{milestone.title}" rejected',
            metadata={"reason": milestone.rejection_reason},
        )

        logger.info("milestone.rejected", milestone_id=str(milestone.id))
        return milestone

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_escrow(
        self,
        actor: Principal,
        escrow_id: uuid.UUID,
    ) -> tuple[Escrow, list[EscrowActivity]]:
        """Escrow with milestones and its most recent activities (participants only)."""
        escrow = await self._get_escrow_or_raise(escrow_id)
        if actor.id not in (escrow.sme_id, escrow.customer_id):
            raise AccessDeniedError()
        activities = await self._activity_repo.list_for_escrow(
            escrow.id, limit=self._recent_activity_limit
        )
        return escrow, activities

    async def list_escrows(
        self,
        actor: Principal,
        as_customer: bool = False,
        status: EscrowStatus | None = None,
    ) -> list[Escrow]:
        return await self._escrow_repo.list_for_participant(
            actor.id, as_customer=as_customer, status=status
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_escrow_or_raise(self, escrow_id: uuid.UUID) -> Escrow:
        escrow = await self._escrow_repo.get_by_id(escrow_id)
        if escrow is None:
            raise NotFoundError("Escrow", escrow_id)
        return escrow

    async def _get_milestone_or_raise(self, milestone_id: uuid.UUID) -> EscrowMilestone:
        milestone = await self._milestone_repo.get_by_id(milestone_id)
        if milestone is None:
            raise NotFoundError("Milestone", milestone_id)
        return milestone
