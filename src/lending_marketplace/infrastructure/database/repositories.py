"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Every flush goes through `_flush`, which translates SQLAlchemy failures
into domain errors: a stale `version` becomes ConcurrentUpdateError and
anything else the database rejects becomes StorageError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from lending_marketplace.domain.enums import EscrowStatus, LoanStatus
from lending_marketplace.domain.exceptions import ConcurrentUpdateError, StorageError
from lending_marketplace.infrastructure.database.orm_models import (
    Asset,
    Escrow,
    EscrowActivity,
    EscrowMilestone,
    Loan,
    LoanStatusHistory,
    VerificationLog,
)
from lending_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from lending_marketplace.domain.enums import ActivityType

logger = get_logger(__name__)


class _Repository:
    """Shared session handling and error translation."""

    entity = "Record"

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _flush(self) -> None:
        try:
            await self._session.flush()
        except StaleDataError as err:
            logger.warning("database.stale_update", entity=self.entity, error=str(err))
            raise ConcurrentUpdateError(self.entity) from err
        except SQLAlchemyError as err:
            logger.error("database.flush_failed", entity=self.entity, error=str(err))
            raise StorageError(f"Failed to persist {self.entity.lower()}") from err

    async def save(self, *objects: object) -> None:
        """Add (if new) and flush the given objects."""
        self._session.add_all(objects)
        await self._flush()


class EscrowRepository(_Repository):
    """Data access for escrows and their milestones."""

    entity = "Escrow"

    async def create(self, escrow: Escrow, milestones: list[EscrowMilestone]) -> Escrow:
        """Insert an escrow together with its milestones."""
        escrow.milestones = milestones
        await self.save(escrow)
        return escrow

    async def get_by_id(self, escrow_id: uuid.UUID) -> Escrow | None:
        result = await self._session.execute(select(Escrow).where(Escrow.id == escrow_id))
        return result.unique().scalar_one_or_none()

    async def get_by_token(self, invite_token: str) -> Escrow | None:
        result = await self._session.execute(
            select(Escrow).where(Escrow.invite_token == invite_token)
        )
        return result.unique().scalar_one_or_none()

    async def list_pending_invites(self, customer_email: str) -> list[Escrow]:
        """Unaccepted escrows addressed to an email, newest first."""
        result = await self._session.execute(
            select(Escrow)
            .where(
                func.lower(Escrow.customer_email) == customer_email.lower(),
                Escrow.customer_id.is_(None),
                Escrow.status.in_([EscrowStatus.DRAFT.value, EscrowStatus.INVITED.value]),
            )
            .order_by(Escrow.created_at.desc())
        )
        return list(result.unique().scalars().all())

    async def list_for_participant(
        self,
        user_id: uuid.UUID,
        as_customer: bool = False,
        status: EscrowStatus | None = None,
    ) -> list[Escrow]:
        """Escrows where the user is the SME (default) or the customer."""
        column = Escrow.customer_id if as_customer else Escrow.sme_id
        stmt = select(Escrow).where(column == user_id)
        if status is not None:
            stmt = stmt.where(Escrow.status == status.value)
        result = await self._session.execute(stmt.order_by(Escrow.created_at.desc()))
        return list(result.unique().scalars().all())

    async def update(self, escrow: Escrow) -> Escrow:
        """Flush pending changes (call AFTER state machine validation)."""
        await self._flush()
        return escrow


class MilestoneRepository(_Repository):
    """Data access for escrow milestones."""

    entity = "Milestone"

    async def get_by_id(self, milestone_id: uuid.UUID) -> EscrowMilestone | None:
        result = await self._session.execute(
            select(EscrowMilestone).where(EscrowMilestone.id == milestone_id)
        )
        return result.unique().scalar_one_or_none()

    async def update(self, milestone: EscrowMilestone) -> EscrowMilestone:
        await self._flush()
        return milestone


class ActivityRepository(_Repository):
    """Data access for the append-only escrow activity log."""

    entity = "Activity"

    async def record(
        self,
        escrow_id: uuid.UUID,
        user_id: uuid.UUID,
        action_type: ActivityType,
        description: str,
        milestone_id: uuid.UUID | None = None,
        metadata: dict | None = None,
    ) -> EscrowActivity:
        """Append a new activity. This is the ONLY write operation allowed."""
        activity = EscrowActivity(
            escrow_id=escrow_id,
            milestone_id=milestone_id,
            user_id=user_id,
            action_type=action_type.value,
            description=description,
            metadata_json=metadata,
        )
        await self.save(activity)
        return activity

    async def list_for_escrow(
        self,
        escrow_id: uuid.UUID,
        limit: int | None = None,
    ) -> list[EscrowActivity]:
        """Activities for an escrow, newest first."""
        stmt = (
            select(EscrowActivity)
            .where(EscrowActivity.escrow_id == escrow_id)
            .order_by(EscrowActivity.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class AssetRepository(_Repository):
    """Data access for tokenizable assets."""

    entity = "Asset"

    async def create(self, asset: Asset) -> Asset:
        await self.save(asset)
        return asset

    async def get_by_id(self, asset_id: uuid.UUID) -> Asset | None:
        result = await self._session.execute(select(Asset).where(Asset.id == asset_id))
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        status: str | None = None,
        asset_type: str | None = None,
    ) -> list[Asset]:
        stmt = select(Asset).where(Asset.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Asset.status == status)
        if asset_type is not None:
            stmt = stmt.where(Asset.type == asset_type)
        result = await self._session.execute(stmt.order_by(Asset.created_at.desc()))
        return list(result.scalars().all())

    async def update(self, asset: Asset) -> Asset:
        await self._flush()
        return asset


class VerificationLogRepository(_Repository):
    """Data access for the append-only verification log."""

    entity = "Verification log"

    async def record(
        self,
        asset_id: uuid.UUID,
        method: str,
        status: str,
        data: dict | None,
        error_message: str | None = None,
    ) -> VerificationLog:
        entry = VerificationLog(
            asset_id=asset_id,
            verification_method=method,
            status=status,
            verification_data=data,
            error_message=error_message,
        )
        await self.save(entry)
        return entry

    async def list_for_asset(self, asset_id: uuid.UUID) -> list[VerificationLog]:
        result = await self._session.execute(
            select(VerificationLog)
            .where(VerificationLog.asset_id == asset_id)
            .order_by(VerificationLog.created_at.desc())
        )
        return list(result.scalars().all())


class LoanRepository(_Repository):
    """Data access for loans and their status history."""

    entity = "Loan"

    async def create(self, loan: Loan) -> Loan:
        await self.save(loan)
        return loan

    async def get_by_id(self, loan_id: uuid.UUID) -> Loan | None:
        result = await self._session.execute(select(Loan).where(Loan.id == loan_id))
        return result.unique().scalar_one_or_none()

    async def list_for_sme(self, sme_id: uuid.UUID) -> list[Loan]:
        result = await self._session.execute(
            select(Loan).where(Loan.sme_id == sme_id).order_by(Loan.created_at.desc())
        )
        return list(result.unique().scalars().all())

    async def list_by_status(self, *statuses: LoanStatus) -> list[Loan]:
        """Loans in any of the given statuses, oldest first (review queue order)."""
        result = await self._session.execute(
            select(Loan)
            .where(Loan.status.in_([s.value for s in statuses]))
            .order_by(Loan.created_at.asc())
        )
        return list(result.unique().scalars().all())

    async def count_and_sum_by_status(self) -> dict[str, tuple[int, object]]:
        """Map each loan status to (count, total amount requested)."""
        result = await self._session.execute(
            select(Loan.status, func.count(Loan.id), func.sum(Loan.amount_requested)).group_by(
                Loan.status
            )
        )
        return {status: (count, total) for status, count, total in result.all()}

    async def update(self, loan: Loan) -> Loan:
        await self._flush()
        return loan

    async def update_chain_sync(self, loan_id: uuid.UUID, **values: object) -> bool:
        """Write chain bookkeeping columns without bumping the loan version.

        Returns False if no row matched.
        """
        try:
            result = await self._session.execute(
                update(Loan)
                .where(Loan.id == loan_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as err:
            logger.error("database.chain_sync_failed", entity=self.entity, error=str(err))
            raise StorageError("Failed to persist loan chain state") from err
        return result.rowcount > 0

    async def record_status_change(
        self,
        loan_id: uuid.UUID,
        old_status: LoanStatus | None,
        new_status: LoanStatus,
        changed_by: uuid.UUID,
        notes: str | None = None,
    ) -> LoanStatusHistory:
        """Append a status history row for a loan."""
        entry = LoanStatusHistory(
            loan_id=loan_id,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            changed_by=changed_by,
            notes=notes,
        )
        await self.save(entry)
        return entry

    async def get_history(self, loan_id: uuid.UUID) -> list[LoanStatusHistory]:
        """Status history for a loan in chronological order."""
        result = await self._session.execute(
            select(LoanStatusHistory)
            .where(LoanStatusHistory.loan_id == loan_id)
            .order_by(LoanStatusHistory.created_at.asc())
        )
        return list(result.scalars().all())
