"""
Batch aggregator.

Groups claims from one facility/TPA pair into batches, keeps the batch totals
derived from current membership, and drives the batch status machine. Batch
membership can only change while the batch is in draft and is frozen on
submission.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Any, Iterable, Optional

import structlog
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from nhis_claims.core.access import require
from nhis_claims.core.base import BaseService, parse_payload
from nhis_claims.core.transitions import BATCH_TRANSITIONS
from nhis_claims.db import repository as repo
from nhis_claims.db.connection import transaction
from nhis_claims.domain.batches import (
    Batch,
    BatchClosureReport,
    BatchCreate,
    BatchTotals,
    RejectionReasonSummary,
)
from nhis_claims.domain.claims import Claim
from nhis_claims.domain.enums import (
    ActorRole,
    BatchAction,
    BatchStatus,
    ClaimDecision,
    ClaimStatus,
    Permission,
)
from nhis_claims.domain.errors import (
    DuplicateBatchNumberError,
    EmptyBatchError,
    InvalidTransitionError,
    ValidationError,
)
from nhis_claims.domain.principal import Principal
from nhis_claims.utils.money import ZERO, round_money, sum_money

logger = structlog.get_logger()


def compute_totals(members: Iterable[Claim], places: int = 2) -> BatchTotals:
    """
    Derive batch aggregates from member claims.

    The approved total only counts claims whose decision is approved.
    """
    members = list(members)
    return BatchTotals(
        total_claims=len(members),
        total_amount=sum_money((c.total_cost_of_care for c in members), places),
        total_approved_amount=sum_money(
            (
                c.approved_cost_of_care
                for c in members
                if c.decision == ClaimDecision.APPROVED and c.approved_cost_of_care is not None
            ),
            places,
        ),
    )


def recalculate_totals(conn: Connection, batch_id: int, places: int = 2) -> Batch:
    """
    Recompute and store a batch's totals inside an open transaction.

    A pure function of current membership, so calling it repeatedly leaves
    the batch unchanged.
    """
    members = repo.list_batch_claims(conn, batch_id)
    totals = compute_totals(members, places)
    repo.update_batch(conn, batch_id, totals.model_dump())
    return repo.get_batch(conn, batch_id)


def _dedupe(ids: Iterable[int]) -> list[int]:
    return list(dict.fromkeys(ids))


class BatchAggregator(BaseService):
    """
    Batch lifecycle and derived totals.

    Usage:
        aggregator = BatchAggregator(engine, config)
        batch = aggregator.create_batch(actor, tpa_id=7, batch_number="B-2024-01")
        aggregator.add_claims(actor, batch.id, [claim.id])
        aggregator.submit(actor, batch.id)
    """

    # =========================================================================
    # Creation and membership
    # =========================================================================

    def create_batch(
        self,
        actor: Principal,
        tpa_id: int,
        batch_number: str,
        facility_id: Optional[int] = None,
    ) -> Batch:
        """
        Create an empty draft batch.

        Facility principals create batches for their own facility, so the
        facility id defaults to theirs when not given.

        Raises:
            DuplicateBatchNumberError: If the TPA already has this batch number
        """
        if facility_id is None and actor.role == ActorRole.FACILITY:
            facility_id = actor.facility_id
        payload = parse_payload(
            BatchCreate,
            {"batch_number": batch_number, "tpa_id": tpa_id, "facility_id": facility_id},
        )
        require(actor, payload, Permission.CREATE_BATCH)

        values: dict[str, Any] = {
            **payload.model_dump(),
            "status": BatchStatus.DRAFT,
            "total_claims": 0,
            "total_amount": ZERO,
            "total_approved_amount": ZERO,
            "created_at": self.now(),
            "created_by": actor.label,
        }

        with transaction(self.engine, "create_batch") as conn:
            if repo.batch_number_exists(conn, payload.tpa_id, payload.batch_number):
                raise DuplicateBatchNumberError(
                    f"Batch number {payload.batch_number} already exists for TPA {payload.tpa_id}",
                    tpa_id=payload.tpa_id,
                    batch_number=payload.batch_number,
                )
            try:
                batch_id = repo.insert_batch(conn, values)
            except IntegrityError as e:
                raise DuplicateBatchNumberError(
                    f"Batch number {payload.batch_number} already exists for TPA {payload.tpa_id}",
                    tpa_id=payload.tpa_id,
                    batch_number=payload.batch_number,
                ) from e
            batch = repo.get_batch(conn, batch_id)

        logger.info(
            "batch_created",
            batch_id=batch.id,
            batch_number=batch.batch_number,
            tpa_id=batch.tpa_id,
            facility_id=batch.facility_id,
            actor=actor.label,
        )
        return batch

    def _open_for_membership(self, conn: Connection, actor: Principal, batch_id: int) -> Batch:
        batch = repo.get_batch(conn, batch_id, for_update=True)
        require(actor, batch, Permission.EDIT_BATCH_MEMBERSHIP)
        BATCH_TRANSITIONS.next_state(batch.status, BatchAction.EDIT_MEMBERSHIP)
        # Re-assert draft at write time so a concurrent submit cannot interleave
        if not repo.update_batch(
            conn,
            batch_id,
            {"updated_at": self.now(), "updated_by": actor.label},
            expected_statuses=[BatchStatus.DRAFT],
        ):
            raise InvalidTransitionError(
                f"Batch {batch_id} is no longer in draft",
                batch_id=batch_id,
            )
        return batch

    def add_claims(self, actor: Principal, batch_id: int, claim_ids: Iterable[int]) -> Batch:
        """
        Add draft claims to a draft batch and recalculate its totals.

        Claims already in this batch are left as they are.

        Raises:
            InvalidTransitionError: If the batch is not in draft
            ValidationError: If a claim belongs to another TPA, facility or
                batch, or is no longer in draft
        """
        ids = _dedupe(claim_ids)
        if not ids:
            raise ValidationError("No claims given", batch_id=batch_id)

        with transaction(self.engine, "add_claims") as conn:
            batch = self._open_for_membership(conn, actor, batch_id)
            members = repo.get_claims(conn, ids, for_update=True)

            to_add = []
            for claim in members:
                if claim.batch_id == batch_id:
                    continue
                if claim.tpa_id != batch.tpa_id:
                    raise ValidationError(
                        f"Claim {claim.id} belongs to TPA {claim.tpa_id}, batch {batch_id} to TPA {batch.tpa_id}",
                        claim_id=claim.id,
                    )
                if batch.facility_id is not None and claim.facility_id != batch.facility_id:
                    raise ValidationError(
                        f"Claim {claim.id} belongs to another facility",
                        claim_id=claim.id,
                    )
                if claim.batch_id is not None:
                    raise ValidationError(
                        f"Claim {claim.id} is already in batch {claim.batch_id}",
                        claim_id=claim.id,
                        other_batch_id=claim.batch_id,
                    )
                if claim.status != ClaimStatus.DRAFT:
                    raise ValidationError(
                        f"Claim {claim.id} is {claim.status.value}; only draft claims can be batched",
                        claim_id=claim.id,
                    )
                to_add.append(claim.id)

            if to_add:
                assigned = repo.assign_claims(
                    conn,
                    to_add,
                    batch_id,
                    {"updated_at": self.now(), "updated_by": actor.label},
                    expected_batch_id=None,
                )
                if assigned != len(to_add):
                    raise ValidationError(
                        "Claims were assigned to another batch concurrently",
                        batch_id=batch_id,
                    )
            batch = recalculate_totals(conn, batch_id, self.places)

        logger.info(
            "batch_claims_added",
            batch_id=batch_id,
            added=len(to_add),
            total_claims=batch.total_claims,
            total_amount=str(batch.total_amount),
            actor=actor.label,
        )
        return batch

    def remove_claims(self, actor: Principal, batch_id: int, claim_ids: Iterable[int]) -> Batch:
        """
        Remove claims from a draft batch and recalculate its totals.

        Raises:
            InvalidTransitionError: If the batch is not in draft
            ValidationError: If a claim is not a member of the batch
        """
        ids = _dedupe(claim_ids)
        if not ids:
            raise ValidationError("No claims given", batch_id=batch_id)

        with transaction(self.engine, "remove_claims") as conn:
            self._open_for_membership(conn, actor, batch_id)
            members = repo.get_claims(conn, ids, for_update=True)
            strangers = [c.id for c in members if c.batch_id != batch_id]
            if strangers:
                raise ValidationError(
                    f"Claims not in batch {batch_id}: {', '.join(str(i) for i in strangers)}",
                    batch_id=batch_id,
                    claim_ids=strangers,
                )
            removed = repo.assign_claims(
                conn,
                ids,
                None,
                {"updated_at": self.now(), "updated_by": actor.label},
                expected_batch_id=batch_id,
            )
            if removed != len(ids):
                raise ValidationError(
                    "Batch membership changed concurrently",
                    batch_id=batch_id,
                )
            batch = recalculate_totals(conn, batch_id, self.places)

        logger.info(
            "batch_claims_removed",
            batch_id=batch_id,
            removed=removed,
            total_claims=batch.total_claims,
            total_amount=str(batch.total_amount),
            actor=actor.label,
        )
        return batch

    def recalculate(self, batch_id: int, actor: Optional[Principal] = None) -> Batch:
        """
        Recompute a batch's totals from its current members.

        Allowed in any status. Idempotent.
        """
        with transaction(self.engine, "recalculate_batch") as conn:
            batch = repo.get_batch(conn, batch_id, for_update=True)
            if actor is not None:
                require(actor, batch, Permission.VIEW_BATCH)
            batch = recalculate_totals(conn, batch_id, self.places)

        logger.debug(
            "batch_recalculated",
            batch_id=batch_id,
            total_claims=batch.total_claims,
            total_amount=str(batch.total_amount),
        )
        return batch

    # =========================================================================
    # Status transitions
    # =========================================================================

    def submit(self, actor: Principal, batch_id: int) -> Batch:
        """
        Submit a draft batch for review.

        Runs a final recalculation, freezes membership and moves draft member
        claims to submitted.

        Raises:
            EmptyBatchError: If the batch has no member claims
        """
        with transaction(self.engine, "submit_batch") as conn:
            batch = repo.get_batch(conn, batch_id, for_update=True)
            require(actor, batch, Permission.SUBMIT_BATCH)
            next_status = BATCH_TRANSITIONS.next_state(batch.status, BatchAction.SUBMIT)

            members = repo.list_batch_claims(conn, batch_id)
            if not members:
                raise EmptyBatchError(
                    f"Batch {batch.batch_number} has no claims",
                    batch_id=batch_id,
                )

            now = self.now()
            for claim in members:
                if claim.status == ClaimStatus.DRAFT:
                    repo.update_claim(
                        conn,
                        claim.id,
                        {"status": ClaimStatus.SUBMITTED, "updated_at": now, "updated_by": actor.label},
                        expected_statuses=[ClaimStatus.DRAFT],
                    )

            totals = compute_totals(members, self.places)
            applied = repo.update_batch(
                conn,
                batch_id,
                {
                    **totals.model_dump(),
                    "status": next_status,
                    "submitted_at": now,
                    "updated_at": now,
                    "updated_by": actor.label,
                },
                expected_statuses=BATCH_TRANSITIONS.sources(BatchAction.SUBMIT),
            )
            if not applied:
                raise InvalidTransitionError(
                    f"Batch {batch_id} changed status concurrently",
                    batch_id=batch_id,
                )
            batch = repo.get_batch(conn, batch_id)

        logger.info(
            "batch_submitted",
            batch_id=batch_id,
            batch_number=batch.batch_number,
            total_claims=batch.total_claims,
            total_amount=str(batch.total_amount),
            actor=actor.label,
        )
        return batch

    def _transition(
        self,
        actor: Principal,
        batch_id: int,
        action: BatchAction,
        permission: Permission,
        stamp_field: str,
        operation: str,
        extra: Optional[dict[str, Any]] = None,
    ) -> Batch:
        with transaction(self.engine, operation) as conn:
            batch = repo.get_batch(conn, batch_id, for_update=True)
            require(actor, batch, permission)
            next_status = BATCH_TRANSITIONS.next_state(batch.status, action)
            now = self.now()
            values = {
                "status": next_status,
                stamp_field: now,
                "updated_at": now,
                "updated_by": actor.label,
                **(extra or {}),
            }
            if not repo.update_batch(conn, batch_id, values, expected_statuses=[batch.status]):
                raise InvalidTransitionError(
                    f"Batch {batch_id} changed status concurrently",
                    batch_id=batch_id,
                )
            updated = repo.get_batch(conn, batch_id)

        logger.info(
            f"batch_{next_status.value}",
            batch_id=batch_id,
            batch_number=updated.batch_number,
            from_status=batch.status.value,
            to_status=updated.status.value,
            actor=actor.label,
        )
        return updated

    def close(self, actor: Principal, batch_id: int, remarks: Optional[str] = None) -> Batch:
        """
        Close a submitted or verified batch after review.

        Claims may still be undecided; see batch_closure_report for the
        breakdown.
        """
        extra = {"closure_remarks": remarks} if remarks is not None else None
        return self._transition(
            actor, batch_id, BatchAction.CLOSE, Permission.CLOSE_BATCH, "closed_at", "close_batch", extra
        )

    def verify_batch(self, actor: Principal, batch_id: int) -> Batch:
        """Insurer verification of a submitted batch."""
        return self._transition(
            actor, batch_id, BatchAction.VERIFY, Permission.VERIFY_BATCH, "verified_at", "verify_batch"
        )

    def approve_batch(self, actor: Principal, batch_id: int, remarks: Optional[str] = None) -> Batch:
        """Insurer approval of a submitted or verified batch."""
        extra = {"closure_remarks": remarks} if remarks is not None else None
        return self._transition(
            actor, batch_id, BatchAction.APPROVE, Permission.APPROVE_BATCH, "approved_at", "approve_batch", extra
        )

    def delete_batch(self, actor: Principal, batch_id: int) -> None:
        """Delete a draft batch, releasing its member claims."""
        with transaction(self.engine, "delete_batch") as conn:
            batch = repo.get_batch(conn, batch_id, for_update=True)
            require(actor, batch, Permission.DELETE_BATCH)
            BATCH_TRANSITIONS.next_state(batch.status, BatchAction.DELETE)
            member_ids = [c.id for c in repo.list_batch_claims(conn, batch_id)]
            if member_ids:
                repo.assign_claims(
                    conn,
                    member_ids,
                    None,
                    {"updated_at": self.now(), "updated_by": actor.label},
                    expected_batch_id=batch_id,
                )
            if not repo.delete_batch(conn, batch_id, BatchStatus.DRAFT):
                raise InvalidTransitionError(
                    f"Batch {batch_id} is no longer in draft",
                    batch_id=batch_id,
                )

        logger.info(
            "batch_deleted",
            batch_id=batch_id,
            batch_number=batch.batch_number,
            released_claims=len(member_ids),
            actor=actor.label,
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def get_batch(self, actor: Principal, batch_id: int) -> Batch:
        with transaction(self.engine, "get_batch") as conn:
            batch = repo.get_batch(conn, batch_id)
        require(actor, batch, Permission.VIEW_BATCH)
        return batch

    def list_batches(self, actor: Principal, status: Optional[BatchStatus] = None) -> list[Batch]:
        """Batches visible to the principal, optionally filtered by status."""
        require(actor, None, Permission.VIEW_BATCH)
        with transaction(self.engine, "list_batches") as conn:
            return repo.list_batches(
                conn,
                statuses=[status] if status is not None else None,
                tpa_id=actor.tpa_id if actor.role == ActorRole.TPA else None,
                facility_id=actor.facility_id if actor.role == ActorRole.FACILITY else None,
            )

    def list_batch_claims(self, actor: Principal, batch_id: int) -> list[Claim]:
        with transaction(self.engine, "list_batch_claims") as conn:
            batch = repo.get_batch(conn, batch_id)
            require(actor, batch, Permission.VIEW_BATCH)
            return repo.list_batch_claims(conn, batch_id)

    def batch_closure_report(self, actor: Principal, batch_id: int) -> BatchClosureReport:
        """
        Summarize a batch's review outcome.

        Counts and amounts are split into approved, rejected and pending
        (undecided) claims, with rejected claims grouped by reason.
        """
        with transaction(self.engine, "batch_closure_report") as conn:
            batch = repo.get_batch(conn, batch_id)
            require(actor, batch, Permission.VIEW_BATCH)
            members = repo.list_batch_claims(conn, batch_id)

        approved = [c for c in members if c.decision == ClaimDecision.APPROVED]
        rejected = [c for c in members if c.decision == ClaimDecision.REJECTED]
        pending = [c for c in members if c.decision == ClaimDecision.UNSET]

        by_reason: dict[str, list[Decimal]] = defaultdict(list)
        for claim in rejected:
            by_reason[claim.reason_for_rejection or ""].append(claim.total_cost_of_care)

        return BatchClosureReport(
            batch_id=batch.id,
            batch_number=batch.batch_number,
            tpa_id=batch.tpa_id,
            facility_id=batch.facility_id,
            status=batch.status,
            total_claims=len(members),
            total_amount=sum_money((c.total_cost_of_care for c in members), self.places),
            approved_claims=len(approved),
            approved_amount=sum_money((c.approved_cost_of_care for c in approved), self.places),
            rejected_claims=len(rejected),
            rejected_amount=sum_money((c.total_cost_of_care for c in rejected), self.places),
            pending_claims=len(pending),
            pending_amount=sum_money((c.total_cost_of_care for c in pending), self.places),
            rejection_reasons=sorted(
                (
                    RejectionReasonSummary(
                        reason=reason,
                        count=len(amounts),
                        amount=round_money(sum(amounts, ZERO), self.places),
                    )
                    for reason, amounts in by_reason.items()
                ),
                key=lambda r: (-r.count, r.reason),
            ),
            closure_remarks=batch.closure_remarks,
            closed_at=batch.closed_at,
        )
