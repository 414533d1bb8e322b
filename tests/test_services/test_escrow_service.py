"""Tests for EscrowService against an in-memory SQLite database.

Covers:
    - Milestone validation (percent totals, empty lists) writes nothing
    - Amount splitting: cents rounding with the residual on the last milestone
    - Invite flow: owner-only sends, email-bound single acceptance
    - Deposit and the release accounting on milestone approval
    - Rejection / resubmission and the activity trail
    - Idempotency keys and stale-version detection
"""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from lending_marketplace.domain.exceptions import (
    AccessDeniedError,
    ConcurrentUpdateError,
    DuplicateOperationError,
    InvalidStateError,
    InvalidStateTransitionError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from lending_marketplace.infrastructure.database.orm_models import (
    Escrow,
    EscrowActivity,
    EscrowMilestone,
)
from lending_marketplace.infrastructure.database.repositories import ActivityRepository
from lending_marketplace.services.escrow_service import EscrowService, split_amounts

THREE_MILESTONES = [
    {"title": "Design", "percentage": 50},
    {"title": "Build", "percentage": 30},
    {"title": "Launch", "percentage": 20},
]


async def _count(session, model) -> int:
    return await session.scalar(select(func.count()).select_from(model))


async def _create(svc: EscrowService, sme, customer, total="10000", milestones=None, **kwargs):
    return await svc.create_escrow(
        sme,
        project_name="Website rebuild",
        customer_email=customer.email,
        total_amount=Decimal(total),
        milestones=milestones or THREE_MILESTONES,
        **kwargs,
    )


async def _active_escrow(svc: EscrowService, sme, customer) -> Escrow:
    escrow = await _create(svc, sme, customer)
    await svc.send_invite(sme, escrow.id)
    await svc.accept_invite(customer, escrow.invite_token)
    return await svc.deposit(customer, escrow.id)


class TestSplitAmounts:
    def test_even_split(self) -> None:
        amounts = split_amounts(Decimal("10000"), [Decimal(50), Decimal(30), Decimal(20)])
        assert amounts == [Decimal("5000.00"), Decimal("3000.00"), Decimal("2000.00")]

    def test_residual_lands_on_last(self) -> None:
        amounts = split_amounts(Decimal("0.05"), [Decimal(50), Decimal(50)])
        assert amounts == [Decimal("0.03"), Decimal("0.02")]

    def test_thirds_sum_to_total(self) -> None:
        amounts = split_amounts(Decimal("100.00"), [Decimal("33.33")] * 3)
        assert amounts == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        assert sum(amounts) == Decimal("100.00")


class TestCreateEscrow:
    @pytest.mark.asyncio
    async def test_creates_draft_with_pending_milestones(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _create(svc, sme, customer)

        assert escrow.status == "draft"
        assert escrow.sme_id == sme.id
        assert escrow.customer_id is None
        assert escrow.deposited_amount == 0
        assert escrow.released_amount == 0
        assert len(escrow.invite_token) == 64
        assert [m.status for m in escrow.milestones] == ["pending"] * 3
        assert [m.order_index for m in escrow.milestones] == [1, 2, 3]
        assert [m.amount for m in escrow.milestones] == [
            Decimal("5000.00"),
            Decimal("3000.00"),
            Decimal("2000.00"),
        ]
        assert await _count(session, EscrowActivity) == 1

    @pytest.mark.asyncio
    async def test_milestone_amounts_sum_to_total(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _create(
            svc,
            sme,
            customer,
            total="1000",
            milestones=[{"title": t, "percentage": "33.33"} for t in ("A", "B", "C")],
        )

        assert sum(m.amount for m in escrow.milestones) == escrow.total_amount

    @pytest.mark.asyncio
    async def test_email_is_normalized(self, session, sme) -> None:
        svc = EscrowService(session)
        escrow = await svc.create_escrow(
            sme,
            project_name="Fit-out",
            customer_email="  Buyer@Example.COM ",
            total_amount=Decimal("500"),
            milestones=[{"title": "All", "percentage": 100}],
        )
        assert escrow.customer_email == "buyer@example.com"

    @pytest.mark.parametrize(
        "milestones",
        [
            [{"title": "A", "percentage": 50}, {"title": "B", "percentage": 49}],
            [{"title": "A", "percentage": 60}, {"title": "B", "percentage": "40.02"}],
            [{"title": "", "percentage": 100}],
            [{"title": "A", "percentage": 0}, {"title": "B", "percentage": 100}],
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_milestones_write_nothing(self, session, sme, customer, milestones) -> None:
        svc = EscrowService(session)
        with pytest.raises(ValidationError) as exc_info:
            await _create(svc, sme, customer, milestones=milestones)

        assert exc_info.value.details
        assert await _count(session, Escrow) == 0
        assert await _count(session, EscrowMilestone) == 0
        assert await _count(session, EscrowActivity) == 0

    @pytest.mark.asyncio
    async def test_empty_milestones_rejected(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        with pytest.raises(ValidationError, match="At least one milestone"):
            await svc.create_escrow(
                sme,
                project_name="Nothing",
                customer_email=customer.email,
                total_amount=Decimal("100"),
                milestones=[],
            )

    @pytest.mark.asyncio
    async def test_percentages_within_tolerance_accepted(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _create(
            svc,
            sme,
            customer,
            milestones=[{"title": "A", "percentage": "50"}, {"title": "B", "percentage": "49.995"}],
        )
        assert len(escrow.milestones) == 2

    @pytest.mark.asyncio
    async def test_non_positive_total_rejected(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        with pytest.raises(ValidationError):
            await _create(svc, sme, customer, total="0")


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_duplicate_key_rejected(self, session, sme, customer, idempotency_store) -> None:
        svc = EscrowService(session, idempotency=idempotency_store)
        await _create(svc, sme, customer, idempotency_key="req-1")

        with pytest.raises(DuplicateOperationError):
            await _create(svc, sme, customer, idempotency_key="req-1")
        assert await _count(session, Escrow) == 1

    @pytest.mark.asyncio
    async def test_keys_are_scoped_per_caller(
        self, session, sme, admin, customer, idempotency_store
    ) -> None:
        svc = EscrowService(session, idempotency=idempotency_store)
        await _create(svc, sme, customer, idempotency_key="req-1")
        await _create(svc, admin, customer, idempotency_key="req-1")
        assert await _count(session, Escrow) == 2

    @pytest.mark.asyncio
    async def test_failed_activity_write_releases_key(
        self, session, sme, customer, idempotency_store, monkeypatch
    ) -> None:
        svc = EscrowService(session, idempotency=idempotency_store)

        async def broken_record(*args, **kwargs):
            raise StorageError("Failed to persist activity")

        with monkeypatch.context() as patch:
            patch.setattr(ActivityRepository, "record", broken_record)
            with pytest.raises(StorageError):
                await _create(svc, sme, customer, idempotency_key="req-1")

        assert idempotency_store.keys == set()
        assert await _count(session, Escrow) == 0

        await _create(svc, sme, customer, idempotency_key="req-1")
        assert await _count(session, Escrow) == 1

    @pytest.mark.asyncio
    async def test_failed_commit_releases_key(
        self, session, sme, customer, idempotency_store, monkeypatch
    ) -> None:
        svc = EscrowService(session, idempotency=idempotency_store)

        async def broken_commit() -> None:
            raise OperationalError("COMMIT", None, Exception("disk I/O error"))

        with monkeypatch.context() as patch:
            patch.setattr(session, "commit", broken_commit)
            with pytest.raises(OperationalError):
                await _create(svc, sme, customer, idempotency_key="req-1")

        assert idempotency_store.keys == set()
        await _create(svc, sme, customer, idempotency_key="req-1")
        assert await _count(session, Escrow) == 1

    @pytest.mark.asyncio
    async def test_without_store_key_is_ignored(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        await _create(svc, sme, customer, idempotency_key="req-1")
        await _create(svc, sme, customer, idempotency_key="req-1")
        assert await _count(session, Escrow) == 2


class TestInvites:
    @pytest.mark.asyncio
    async def test_send_invite_returns_link(self, session, sme, customer) -> None:
        svc = EscrowService(session, frontend_url="http://frontend.test/")
        escrow = await _create(svc, sme, customer)

        escrow, link = await svc.send_invite(sme, escrow.id)

        assert escrow.status == "invited"
        assert escrow.invite_sent_at is not None
        assert link == f"http://frontend.test/escrow/accept/{escrow.invite_token}"

    @pytest.mark.asyncio
    async def test_invite_can_be_resent(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _create(svc, sme, customer)
        await svc.send_invite(sme, escrow.id)
        escrow, _ = await svc.send_invite(sme, escrow.id)
        assert escrow.status == "invited"

    @pytest.mark.asyncio
    async def test_only_owner_sends_invite(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _create(svc, sme, customer)
        with pytest.raises(AccessDeniedError):
            await svc.send_invite(customer, escrow.id)

    @pytest.mark.asyncio
    async def test_invite_after_acceptance_blocked(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _create(svc, sme, customer)
        await svc.accept_invite(customer, escrow.invite_token)

        with pytest.raises(InvalidStateTransitionError):
            await svc.send_invite(sme, escrow.id)

    @pytest.mark.asyncio
    async def test_accept_binds_customer(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _create(svc, sme, customer)
        await svc.send_invite(sme, escrow.id)

        escrow = await svc.accept_invite(customer, escrow.invite_token)

        assert escrow.status == "pending_deposit"
        assert escrow.customer_id == customer.id
        assert escrow.invite_accepted_at is not None

    @pytest.mark.asyncio
    async def test_accept_twice_rejected(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _create(svc, sme, customer)
        await svc.accept_invite(customer, escrow.invite_token)

        with pytest.raises(InvalidStateError) as exc_info:
            await svc.accept_invite(customer, escrow.invite_token)

        assert exc_info.value.current_status == "pending_deposit"
        assert escrow.customer_id == customer.id

    @pytest.mark.asyncio
    async def test_accept_with_other_email_denied(self, session, sme, customer, stranger) -> None:
        svc = EscrowService(session)
        escrow = await _create(svc, sme, customer)

        with pytest.raises(AccessDeniedError):
            await svc.accept_invite(stranger, escrow.invite_token)
        assert escrow.customer_id is None
        assert escrow.status == "draft"

    @pytest.mark.asyncio
    async def test_unknown_token(self, session) -> None:
        svc = EscrowService(session)
        with pytest.raises(NotFoundError):
            await svc.get_by_token("0" * 64)

    @pytest.mark.asyncio
    async def test_pending_invites_by_email(self, session, sme, customer, stranger) -> None:
        svc = EscrowService(session)
        mine = await _create(svc, sme, customer)
        await svc.create_escrow(
            sme,
            project_name="Other",
            customer_email=stranger.email,
            total_amount=Decimal("100"),
            milestones=[{"title": "All", "percentage": 100}],
        )

        invites = await svc.list_pending_invites(customer)
        assert [e.id for e in invites] == [mine.id]

        await svc.accept_invite(customer, mine.invite_token)
        assert await svc.list_pending_invites(customer) == []


class TestDeposit:
    @pytest.mark.asyncio
    async def test_deposit_activates_escrow(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _active_escrow(svc, sme, customer)

        assert escrow.status == "active"
        assert escrow.deposited_amount == escrow.total_amount
        assert escrow.deposited_at is not None

    @pytest.mark.asyncio
    async def test_only_bound_customer_deposits(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _create(svc, sme, customer)
        await svc.accept_invite(customer, escrow.invite_token)

        with pytest.raises(NotFoundError):
            await svc.deposit(sme, escrow.id)

    @pytest.mark.asyncio
    async def test_deposit_twice_rejected(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _active_escrow(svc, sme, customer)

        with pytest.raises(InvalidStateError):
            await svc.deposit(customer, escrow.id)
        assert escrow.deposited_amount == escrow.total_amount


class TestMilestones:
    @pytest.mark.asyncio
    async def test_full_release_scenario(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _active_escrow(svc, sme, customer)
        released = []

        for milestone in escrow.milestones:
            before = escrow.released_amount
            await svc.submit_milestone(sme, milestone.id, "Work delivered", "https://evidence.test")
            approved = await svc.approve_milestone(customer, milestone.id)

            assert approved.status == "approved"
            assert escrow.released_amount - before == milestone.amount
            released.append(escrow.released_amount)

        assert released == [Decimal("5000.00"), Decimal("8000.00"), Decimal("10000.00")]
        assert escrow.released_amount == escrow.total_amount

    @pytest.mark.asyncio
    async def test_approve_requires_submission(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _active_escrow(svc, sme, customer)

        with pytest.raises(InvalidStateTransitionError):
            await svc.approve_milestone(customer, escrow.milestones[0].id)
        assert escrow.released_amount == 0

    @pytest.mark.asyncio
    async def test_approve_without_deposit_is_refused(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _create(svc, sme, customer)
        await svc.accept_invite(customer, escrow.invite_token)
        milestone = escrow.milestones[0]
        await svc.submit_milestone(sme, milestone.id)

        with pytest.raises(InvalidStateError) as exc_info:
            await svc.approve_milestone(customer, milestone.id)

        assert exc_info.value.code == "INSUFFICIENT_FUNDS"
        assert milestone.status == "submitted"
        assert escrow.released_amount == 0

    @pytest.mark.asyncio
    async def test_roles_are_enforced(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _active_escrow(svc, sme, customer)
        milestone = escrow.milestones[0]

        with pytest.raises(AccessDeniedError):
            await svc.submit_milestone(customer, milestone.id)
        await svc.submit_milestone(sme, milestone.id)
        with pytest.raises(AccessDeniedError):
            await svc.approve_milestone(sme, milestone.id)
        with pytest.raises(AccessDeniedError):
            await svc.reject_milestone(sme, milestone.id, "self-reject")

    @pytest.mark.asyncio
    async def test_reject_then_resubmit(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _active_escrow(svc, sme, customer)
        milestone = escrow.milestones[0]
        await svc.submit_milestone(sme, milestone.id)

        rejected = await svc.reject_milestone(customer, milestone.id, "  Missing invoices  ")
        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Missing invoices"

        resubmitted = await svc.submit_milestone(sme, milestone.id, "Invoices attached")
        assert resubmitted.status == "submitted"

    @pytest.mark.asyncio
    async def test_reject_requires_reason(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _active_escrow(svc, sme, customer)
        with pytest.raises(ValidationError):
            await svc.reject_milestone(customer, escrow.milestones[0].id, "   ")

    @pytest.mark.asyncio
    async def test_approved_cannot_be_rejected(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _active_escrow(svc, sme, customer)
        milestone = escrow.milestones[0]
        await svc.submit_milestone(sme, milestone.id)
        await svc.approve_milestone(customer, milestone.id)

        with pytest.raises(InvalidStateTransitionError):
            await svc.reject_milestone(customer, milestone.id, "Changed my mind")
        assert escrow.released_amount == milestone.amount

    @pytest.mark.asyncio
    async def test_unknown_milestone(self, session, sme) -> None:
        svc = EscrowService(session)
        with pytest.raises(NotFoundError):
            await svc.submit_milestone(sme, uuid.uuid4())


class TestReads:
    @pytest.mark.asyncio
    async def test_activity_trail(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        escrow = await _active_escrow(svc, sme, customer)
        milestone = escrow.milestones[0]
        await svc.submit_milestone(sme, milestone.id)
        await svc.approve_milestone(customer, milestone.id)

        _, activities = await svc.get_escrow(sme, escrow.id)

        assert {a.action_type for a in activities} == {
            "escrow_created",
            "invite_sent",
            "invite_accepted",
            "funds_deposited",
            "milestone_submitted",
            "milestone_approved",
        }
        approved = next(a for a in activities if a.action_type == "milestone_approved")
        assert approved.description == 'Milestone "Design" approved - $5000.00 released'
        assert approved.metadata_json == {"amount_released": "5000.00"}

    @pytest.mark.asyncio
    async def test_recent_activity_limit(self, session, sme, customer) -> None:
        svc = EscrowService(session, recent_activity_limit=2)
        escrow = await _active_escrow(svc, sme, customer)
        _, activities = await svc.get_escrow(customer, escrow.id)
        assert len(activities) == 2

    @pytest.mark.asyncio
    async def test_outsiders_cannot_read(self, session, sme, customer, stranger) -> None:
        svc = EscrowService(session)
        escrow = await _create(svc, sme, customer)
        with pytest.raises(AccessDeniedError):
            await svc.get_escrow(stranger, escrow.id)

    @pytest.mark.asyncio
    async def test_list_by_role(self, session, sme, customer) -> None:
        svc = EscrowService(session)
        active = await _active_escrow(svc, sme, customer)
        await _create(svc, sme, customer)

        assert len(await svc.list_escrows(sme)) == 2
        assert [e.id for e in await svc.list_escrows(customer, as_customer=True)] == [active.id]
        assert await svc.list_escrows(customer) == []


class TestConcurrentApproval:
    @pytest.mark.asyncio
    async def test_stale_escrow_version_aborts_release(
        self, session_factory, sme, customer
    ) -> None:
        async with session_factory() as setup:
            svc = EscrowService(setup)
            escrow = await _active_escrow(svc, sme, customer)
            first, second = escrow.milestones[0], escrow.milestones[1]
            await svc.submit_milestone(sme, first.id)
            await svc.submit_milestone(sme, second.id)
            await setup.commit()
            escrow_id, first_id, second_id = escrow.id, first.id, second.id

        async with session_factory() as slow, session_factory() as fast:
            # Load the escrow into the slow session before the other approval lands.
            await slow.get(Escrow, escrow_id)

            await EscrowService(fast).approve_milestone(customer, first_id)
            await fast.commit()

            with pytest.raises(ConcurrentUpdateError):
                await EscrowService(slow).approve_milestone(customer, second_id)

        async with session_factory() as check:
            escrow = await check.get(Escrow, escrow_id)
            assert escrow.released_amount == Decimal("5000.00")
