"""
Explicit transition tables for every state machine in the core.

Each table maps (state, action) to the next state. An illegal transition is a
single failed lookup, and the set of states an action may start from doubles
as the expected-status guard of the compare-and-set update that applies it.
"""

from enum import Enum
from typing import Generic, Mapping, TypeVar

from nhis_claims.domain.enums import (
    AdvancePaymentAction,
    AdvancePaymentStatus,
    BatchAction,
    BatchStatus,
    ClaimAction,
    ClaimStatus,
    ReimbursementAction,
    ReimbursementStatus,
)
from nhis_claims.domain.errors import (
    ClaimsCoreError,
    InvalidStateError,
    InvalidTransitionError,
)

S = TypeVar("S", bound=Enum)
A = TypeVar("A", bound=Enum)


class TransitionTable(Generic[S, A]):
    """
    State x action -> next state lookup.

    Usage:
        table = TransitionTable("batch", {(BatchStatus.DRAFT, BatchAction.SUBMIT): BatchStatus.SUBMITTED})
        table.next_state(BatchStatus.DRAFT, BatchAction.SUBMIT)  # BatchStatus.SUBMITTED
        table.next_state(BatchStatus.CLOSED, BatchAction.SUBMIT)  # raises InvalidTransitionError
    """

    def __init__(
        self,
        name: str,
        transitions: Mapping[tuple[S, A], S],
        error: type[ClaimsCoreError] = InvalidTransitionError,
    ):
        self.name = name
        self._transitions = dict(transitions)
        self._error = error

    def can(self, state: S, action: A) -> bool:
        return (state, action) in self._transitions

    def next_state(self, state: S, action: A) -> S:
        """
        Look up the state an action leads to.

        Raises:
            InvalidTransitionError (or the table's configured error) if the
            action is not permitted from the state
        """
        try:
            return self._transitions[(state, action)]
        except KeyError:
            allowed = sorted(s.value for s in self.sources(action))
            raise self._error(
                f"Cannot {action.value} {self.name} in status {state.value}"
                + (f" (allowed from: {', '.join(allowed)})" if allowed else ""),
                state=state.value,
                action=action.value,
            ) from None

    def sources(self, action: A) -> frozenset[S]:
        """States from which the action is permitted."""
        return frozenset(s for (s, a) in self._transitions if a == action)

    def actions_from(self, state: S) -> frozenset[A]:
        """Actions permitted from a state."""
        return frozenset(a for (s, a) in self._transitions if s == state)


_REVIEWABLE = (
    ClaimStatus.SUBMITTED,
    ClaimStatus.AWAITING_VERIFICATION,
    ClaimStatus.VERIFIED,
)

CLAIM_TRANSITIONS: TransitionTable[ClaimStatus, ClaimAction] = TransitionTable(
    "claim",
    {
        (ClaimStatus.DRAFT, ClaimAction.SUBMIT): ClaimStatus.SUBMITTED,
        (ClaimStatus.SUBMITTED, ClaimAction.BEGIN_REVIEW): ClaimStatus.AWAITING_VERIFICATION,
        (ClaimStatus.AWAITING_VERIFICATION, ClaimAction.VERIFY): ClaimStatus.VERIFIED,
        **{(s, ClaimAction.APPROVE): ClaimStatus.VERIFIED_AWAITING_PAYMENT for s in _REVIEWABLE},
        **{(s, ClaimAction.REJECT): ClaimStatus.NOT_VERIFIED for s in _REVIEWABLE},
        (ClaimStatus.VERIFIED_AWAITING_PAYMENT, ClaimAction.MARK_PAID): ClaimStatus.VERIFIED_PAID,
        # Resubmission leaves the rejected claim untouched and creates a new one
        (ClaimStatus.NOT_VERIFIED, ClaimAction.RESUBMIT): ClaimStatus.NOT_VERIFIED,
    },
)


BATCH_TRANSITIONS: TransitionTable[BatchStatus, BatchAction] = TransitionTable(
    "batch",
    {
        (BatchStatus.DRAFT, BatchAction.EDIT_MEMBERSHIP): BatchStatus.DRAFT,
        (BatchStatus.DRAFT, BatchAction.DELETE): BatchStatus.DRAFT,
        (BatchStatus.DRAFT, BatchAction.SUBMIT): BatchStatus.SUBMITTED,
        (BatchStatus.SUBMITTED, BatchAction.VERIFY): BatchStatus.VERIFIED,
        (BatchStatus.SUBMITTED, BatchAction.APPROVE): BatchStatus.APPROVED,
        (BatchStatus.VERIFIED, BatchAction.APPROVE): BatchStatus.APPROVED,
        (BatchStatus.SUBMITTED, BatchAction.CLOSE): BatchStatus.CLOSED,
        (BatchStatus.VERIFIED, BatchAction.CLOSE): BatchStatus.CLOSED,
        (BatchStatus.CLOSED, BatchAction.REIMBURSE): BatchStatus.REIMBURSED,
        (BatchStatus.VERIFIED, BatchAction.REIMBURSE): BatchStatus.REIMBURSED,
        (BatchStatus.APPROVED, BatchAction.REIMBURSE): BatchStatus.REIMBURSED,
    },
)

# Batches a reimbursement may cover
ELIGIBLE_BATCH_STATUSES: frozenset[BatchStatus] = BATCH_TRANSITIONS.sources(BatchAction.REIMBURSE)


ADVANCE_PAYMENT_TRANSITIONS: TransitionTable[AdvancePaymentStatus, AdvancePaymentAction] = TransitionTable(
    "advance payment",
    {
        (AdvancePaymentStatus.PENDING, AdvancePaymentAction.APPROVE): AdvancePaymentStatus.APPROVED,
        (AdvancePaymentStatus.APPROVED, AdvancePaymentAction.DISBURSE): AdvancePaymentStatus.DISBURSED,
        (AdvancePaymentStatus.DISBURSED, AdvancePaymentAction.RECONCILE): AdvancePaymentStatus.RECONCILED,
        (AdvancePaymentStatus.PENDING, AdvancePaymentAction.CANCEL): AdvancePaymentStatus.CANCELLED,
        (AdvancePaymentStatus.APPROVED, AdvancePaymentAction.CANCEL): AdvancePaymentStatus.CANCELLED,
        **{
            (s, AdvancePaymentAction.ATTACH_RECEIPT): s
            for s in AdvancePaymentStatus
            if s != AdvancePaymentStatus.CANCELLED
        },
    },
    error=InvalidStateError,
)


REIMBURSEMENT_TRANSITIONS: TransitionTable[ReimbursementStatus, ReimbursementAction] = TransitionTable(
    "reimbursement",
    {
        (ReimbursementStatus.PENDING, ReimbursementAction.COMPLETE): ReimbursementStatus.COMPLETED,
        (ReimbursementStatus.PENDING, ReimbursementAction.CANCEL): ReimbursementStatus.CANCELLED,
    },
    error=InvalidStateError,
)
