"""State machine guards for escrows, milestones and loans.

Uses python-statemachine to enforce legal status transitions at the domain
level. A machine is instantiated per entity at its persisted status, the
event is fired, and only then does the service write the new status.

Escrow transition table:
    draft           -> invited          (send_invite)
    invited         -> invited          (send_invite, re-send)
    draft           -> pending_deposit  (accept_invite)
    invited         -> pending_deposit  (accept_invite)
    pending_deposit -> active           (confirm_deposit)

Milestone transition table:
    pending   -> submitted  (submit)
    rejected  -> submitted  (submit, resubmission)
    submitted -> approved   (approve)
    pending   -> rejected   (reject)
    submitted -> rejected   (reject)

Loan transition table:
    requested -> approved  (approve)
    requested -> rejected  (reject)
    requested -> funded    (fund)
    approved  -> funded    (fund)
    funded    -> active    (activate)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from lending_marketplace.domain.exceptions import InvalidStateTransitionError


class _StatusGuardMixin:
    """Shared construction and introspection for the status guards."""

    def __init__(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value (matches the domain enum value)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return the event names that can fire from the current state."""
        return [getattr(event, "id", None) or event.name for event in self.allowed_events]


class EscrowStateMachine(_StatusGuardMixin, StateMachine):
    """Guards the escrow project lifecycle."""

    DRAFT = State("Draft", value="draft", initial=True)
    INVITED = State("Invited", value="invited")
    PENDING_DEPOSIT = State("Pending deposit", value="pending_deposit")
    ACTIVE = State("Active", value="active", final=True)

    send_invite = DRAFT.to(INVITED) | INVITED.to.itself()
    accept_invite = DRAFT.to(PENDING_DEPOSIT) | INVITED.to(PENDING_DEPOSIT)
    confirm_deposit = PENDING_DEPOSIT.to(ACTIVE)


class MilestoneStateMachine(_StatusGuardMixin, StateMachine):
    """Guards a milestone's submit / approve / reject loop."""

    PENDING = State("Pending", value="pending", initial=True)
    SUBMITTED = State("Submitted", value="submitted")
    APPROVED = State("Approved", value="approved", final=True)
    REJECTED = State("Rejected", value="rejected")

    submit = PENDING.to(SUBMITTED) | REJECTED.to(SUBMITTED)
    approve = SUBMITTED.to(APPROVED)
    reject = PENDING.to(REJECTED) | SUBMITTED.to(REJECTED)


class LoanStateMachine(_StatusGuardMixin, StateMachine):
    """Guards the loan review and funding lifecycle."""

    REQUESTED = State("Requested", value="requested", initial=True)
    APPROVED = State("Approved", value="approved")
    REJECTED = State("Rejected", value="rejected", final=True)
    FUNDED = State("Funded", value="funded")
    ACTIVE = State("Active", value="active", final=True)

    approve = REQUESTED.to(APPROVED)
    reject = REQUESTED.to(REJECTED)
    fund = REQUESTED.to(FUNDED) | APPROVED.to(FUNDED)
    activate = FUNDED.to(ACTIVE)


def validate_transition(
    machine_cls: type[_StatusGuardMixin],
    current_status: str,
    event_name: str,
) -> str:
    """Fire `event_name` on a throwaway machine and return the resulting status.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is unknown.
    """
    sm = machine_cls(current_status=current_status)
    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )
    event_method()
    return sm.status


def fire_transition(
    machine_cls: type[_StatusGuardMixin],
    entity: str,
    current_status: str,
    event_name: str,
    message: str | None = None,
) -> str:
    """Like validate_transition, but raises the domain error on refusal."""
    try:
        return validate_transition(machine_cls, current_status, event_name)
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(entity, current_status, event_name, message) from err
