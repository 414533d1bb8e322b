"""Loan Service — loan requests, lender review, funding and activation.

Coordinates between:
    - LoanStateMachine (transition guard)
    - Repositories (loans, assets, status history)
    - The oracle adapter, called from background jobs that record the loan
      and its funding on chain

Every status change appends a loan_status_history row. Chain calls never
block or fail the HTTP request: their outcome lands in chain_sync_status.
A loan's chain jobs run in submission order, so funding always sees the
chain id the record job stored.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from dateutil.relativedelta import relativedelta

from lending_marketplace.domain.enums import ChainSyncStatus, LoanStatus, UserRole
from lending_marketplace.domain.exceptions import (
    AccessDeniedError,
    NotFoundError,
    ValidationError,
)
from lending_marketplace.domain.state_machine import LoanStateMachine, fire_transition
from lending_marketplace.infrastructure.database.engine import session_scope
from lending_marketplace.infrastructure.database.orm_models import Loan
from lending_marketplace.infrastructure.database.repositories import (
    AssetRepository,
    LoanRepository,
)
from lending_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from lending_marketplace.domain.identity import Principal
    from lending_marketplace.domain.oracle_protocol import ChainReceipt, OracleAdapter
    from lending_marketplace.infrastructure.database.orm_models import LoanStatusHistory
    from lending_marketplace.services.background import BackgroundTaskRunner

logger = get_logger(__name__)

REVIEWER_ROLES = (UserRole.LENDER, UserRole.ADMIN)


def _chain_sequence(loan_id: uuid.UUID) -> str:
    return f"loan-chain:{loan_id}"


class LoanService:
    """Manages the loan lifecycle from request to activation."""

    def __init__(
        self,
        session: AsyncSession,
        oracle: OracleAdapter,
        runner: BackgroundTaskRunner,
        session_factory: async_sessionmaker[AsyncSession],
        default_interest_rate: Decimal = Decimal("10"),
    ) -> None:
        self._session = session
        self._oracle = oracle
        self._runner = runner
        self._session_factory = session_factory
        self._default_interest_rate = default_interest_rate
        self._loan_repo = LoanRepository(session)
        self._asset_repo = AssetRepository(session)

    # ------------------------------------------------------------------
    # Borrower side
    # ------------------------------------------------------------------

    async def request_loan(
        self,
        actor: Principal,
        asset_id: uuid.UUID,
        amount_requested: Decimal,
        term_months: int,
        interest_rate: Decimal | None = None,
        purpose: str | None = None,
    ) -> Loan:
        """Create a REQUESTED loan against one of the caller's assets."""
        errors: list[str] = []
        if amount_requested is None or amount_requested <= 0:
            errors.append("amount_requested must be greater than 0")
        if term_months is None or term_months <= 0:
            errors.append("term_months must be greater than 0")
        if interest_rate is not None and interest_rate < 0:
            errors.append("interest_rate must not be negative")
        if errors:
            raise ValidationError("Validation failed", errors)

        asset = await self._asset_repo.get_by_id(asset_id)
        if asset is None or asset.user_id != actor.id:
            raise NotFoundError("Asset", asset_id)

        loan = Loan(
            sme_id=actor.id,
            asset_id=asset.id,
            amount_requested=amount_requested,
            interest_rate=interest_rate if interest_rate is not None else self._default_interest_rate,
            term_months=term_months,
            purpose=purpose,
            status=LoanStatus.REQUESTED.value,
            due_date=datetime.now(UTC) + relativedelta(months=term_months),
            chain_sync_status=ChainSyncStatus.PENDING.value,
        )
        loan = await self._loan_repo.create(loan)
        await self._loan_repo.record_status_change(
            loan.id, None, LoanStatus.REQUESTED, actor.id, notes=purpose
        )
        await self._session.commit()

        loan_id = loan.id
        chain_asset_id = asset.blockchain_asset_id
        rate = loan.interest_rate
        self._runner.submit(
            f"loan.record:{loan_id}",
            lambda: self._record_on_chain(loan_id, chain_asset_id, amount_requested, rate, term_months),
            on_failure=lambda err: self._mark_chain_error(loan_id, err),
            sequence=_chain_sequence(loan_id),
        )

        logger.info(
            "loan.requested",
            loan_id=str(loan_id),
            asset_id=str(asset_id),
            amount=str(amount_requested),
            term_months=term_months,
        )
        return loan

    async def get_loan(self, actor: Principal, loan_id: uuid.UUID) -> Loan:
        """Borrower, lender or admin view of a single loan."""
        loan = await self._get_loan_or_raise(loan_id)
        if loan.sme_id != actor.id and not actor.has_role(*REVIEWER_ROLES):
            raise AccessDeniedError()
        return loan

    async def list_my_loans(self, actor: Principal) -> list[Loan]:
        return await self._loan_repo.list_for_sme(actor.id)

    # ------------------------------------------------------------------
    # Lender review
    # ------------------------------------------------------------------

    async def approve_loan(
        self,
        actor: Principal,
        loan_id: uuid.UUID,
        notes: str | None = None,
        conditions: str | None = None,
    ) -> Loan:
        self._require_reviewer(actor)
        loan = await self._get_loan_or_raise(loan_id)

        loan.status = fire_transition(
            LoanStateMachine,
            "loan",
            loan.status,
            "approve",
            message="Loan is not pending approval",
        )
        now = datetime.now(UTC)
        loan.lender_id = actor.id
        loan.reviewed_at = now
        loan.approved_at = now
        loan.lender_notes = notes
        loan.approval_conditions = conditions
        await self._loan_repo.update(loan)
        await self._loan_repo.record_status_change(
            loan.id, LoanStatus.REQUESTED, LoanStatus.APPROVED, actor.id, notes=notes
        )

        logger.info("loan.approved", loan_id=str(loan.id), lender=str(actor.id))
        return loan

    async def reject_loan(self, actor: Principal, loan_id: uuid.UUID, reason: str) -> Loan:
        self._require_reviewer(actor)
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")
        loan = await self._get_loan_or_raise(loan_id)

        loan.status = fire_transition(
            LoanStateMachine,
            "loan",
            loan.status,
            "reject",
            message="Loan is not pending approval",
        )
        loan.lender_id = actor.id
        loan.reviewed_at = datetime.now(UTC)
        loan.lender_notes = reason.strip()
        await self._loan_repo.update(loan)
        await self._loan_repo.record_status_change(
            loan.id, LoanStatus.REQUESTED, LoanStatus.REJECTED, actor.id, notes=loan.lender_notes
        )

        logger.info("loan.rejected", loan_id=str(loan.id), lender=str(actor.id))
        return loan

    async def list_pending_loans(self, actor: Principal) -> list[Loan]:
        self._require_reviewer(actor)
        return await self._loan_repo.list_by_status(LoanStatus.REQUESTED)

    async def lender_stats(self, actor: Principal) -> dict:
        """Loan counts per status plus requested and active totals."""
        self._require_reviewer(actor)
        grouped = await self._loan_repo.count_and_sum_by_status()

        def count(status: LoanStatus) -> int:
            return grouped.get(status.value, (0, None))[0]

        def amount(status: LoanStatus) -> Decimal:
            return Decimal(str(grouped.get(status.value, (0, None))[1] or 0))

        return {
            "total_loans": sum(c for c, _ in grouped.values()),
            "pending_approval": count(LoanStatus.REQUESTED),
            "approved_loans": count(LoanStatus.APPROVED),
            "rejected_loans": count(LoanStatus.REJECTED),
            "funded_loans": count(LoanStatus.FUNDED),
            "active_loans": count(LoanStatus.ACTIVE),
            "total_amount_deployed": sum((amount(s) for s in LoanStatus), Decimal("0")),
            "active_amount": amount(LoanStatus.ACTIVE),
        }

    async def get_history(self, actor: Principal, loan_id: uuid.UUID) -> list[LoanStatusHistory]:
        await self.get_loan(actor, loan_id)
        return await self._loan_repo.get_history(loan_id)

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    async def fund_loan(self, actor: Principal, loan_id: uuid.UUID) -> Loan:
        """Lender funds a REQUESTED or APPROVED loan."""
        self._require_reviewer(actor)
        loan = await self._get_loan_or_raise(loan_id)
        if loan.sme_id == actor.id:
            raise AccessDeniedError("Borrowers cannot fund their own loan")

        old_status = LoanStatus(loan.status)
        loan.status = fire_transition(
            LoanStateMachine,
            "loan",
            loan.status,
            "fund",
            message="Loan is not available for funding",
        )
        loan.lender_id = actor.id
        loan.funded_at = datetime.now(UTC)
        await self._loan_repo.update(loan)
        await self._loan_repo.record_status_change(
            loan.id, old_status, LoanStatus.FUNDED, actor.id
        )
        await self._session.commit()

        self._runner.submit(
            f"loan.fund:{loan_id}",
            lambda: self._fund_on_chain(loan_id),
            on_failure=lambda err: self._mark_chain_error(loan_id, err),
            sequence=_chain_sequence(loan_id),
        )

        logger.info("loan.funded", loan_id=str(loan_id), lender=str(actor.id))
        return loan

    async def activate_loan(self, actor: Principal, loan_id: uuid.UUID) -> Loan:
        """Move a FUNDED loan to ACTIVE (funding lender or admin)."""
        loan = await self._get_loan_or_raise(loan_id)
        if not (actor.has_role(UserRole.ADMIN) or loan.lender_id == actor.id):
            raise AccessDeniedError("Only the funding lender can activate this loan")

        loan.status = fire_transition(
            LoanStateMachine,
            "loan",
            loan.status,
            "activate",
            message="Only funded loans can be activated",
        )
        await self._loan_repo.update(loan)
        await self._loan_repo.record_status_change(
            loan.id, LoanStatus.FUNDED, LoanStatus.ACTIVE, actor.id
        )

        logger.info("loan.activated", loan_id=str(loan.id))
        return loan

    # ------------------------------------------------------------------
    # Background jobs
    # ------------------------------------------------------------------

    async def _record_on_chain(
        self,
        loan_id: uuid.UUID,
        chain_asset_id: str | None,
        amount: Decimal,
        interest_rate: Decimal,
        term_months: int,
    ) -> None:
        receipt = await self._oracle.record_loan(chain_asset_id, amount, interest_rate, term_months)
        await self._apply_receipt(loan_id, receipt)

    async def _fund_on_chain(self, loan_id: uuid.UUID) -> None:
        # Runs after the record job, so the chain id it stored is visible here.
        async with session_scope(self._session_factory) as session:
            loan = await LoanRepository(session).get_by_id(loan_id)
            chain_loan_id = loan.chain_loan_id if loan is not None else None
        receipt = await self._oracle.fund_loan(chain_loan_id)
        await self._apply_receipt(loan_id, receipt)

    async def _apply_receipt(self, loan_id: uuid.UUID, receipt: ChainReceipt) -> None:
        values: dict = {
            "chain_tx_hash": receipt.transaction_hash,
            "chain_sync_status": ChainSyncStatus.SYNCED.value,
            "chain_error": None,
        }
        if receipt.chain_id:
            values["chain_loan_id"] = receipt.chain_id
        async with session_scope(self._session_factory) as session:
            found = await LoanRepository(session).update_chain_sync(loan_id, **values)
        if not found:
            logger.warning("loan.chain_missing_row", loan_id=str(loan_id))
            return

        logger.info("loan.chain_synced", loan_id=str(loan_id), tx_hash=receipt.transaction_hash)

    async def _mark_chain_error(self, loan_id: uuid.UUID, err: BaseException) -> None:
        async with session_scope(self._session_factory) as session:
            await LoanRepository(session).update_chain_sync(
                loan_id,
                chain_sync_status=ChainSyncStatus.ERROR.value,
                chain_error=str(err) or type(err).__name__,
            )

        logger.error("loan.chain_sync_failed", loan_id=str(loan_id), error=str(err))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_reviewer(actor: Principal) -> None:
        if not actor.has_role(*REVIEWER_ROLES):
            raise AccessDeniedError("Lender access required")

    async def _get_loan_or_raise(self, loan_id: uuid.UUID) -> Loan:
        loan = await self._loan_repo.get_by_id(loan_id)
        if loan is None:
            raise NotFoundError("Loan", loan_id)
        return loan
