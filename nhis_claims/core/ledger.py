"""
Claim ledger.

Owns the lifecycle of individual claims: creation, field edits under the
field-group ownership policy, the TPA decision, payment marking and
resubmission of rejected claims.
"""

from decimal import Decimal
from typing import Any, Optional

import structlog
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from nhis_claims.core.access import require
from nhis_claims.core.base import BaseService, parse_payload
from nhis_claims.core.batches import recalculate_totals
from nhis_claims.core.transitions import CLAIM_TRANSITIONS
from nhis_claims.db import repository as repo
from nhis_claims.db.connection import transaction
from nhis_claims.domain.claims import (
    CLAIM_FIELD_GROUPS,
    COST_FIELDS,
    DECIDED_STATUSES,
    Claim,
    ClaimCreate,
    ClaimUpdate,
    field_group_of,
    total_cost,
)
from nhis_claims.domain.enums import (
    ActorRole,
    BatchStatus,
    ClaimAction,
    ClaimDecision,
    ClaimFieldGroup,
    ClaimStatus,
    Permission,
)
from nhis_claims.domain.errors import (
    DuplicateReferenceError,
    InvalidTransitionError,
    MissingFieldError,
    ValidationError,
)
from nhis_claims.domain.principal import Principal
from nhis_claims.utils.money import ZERO, round_money, to_decimal

logger = structlog.get_logger()


_REVIEW_STATUSES = frozenset({
    ClaimStatus.SUBMITTED,
    ClaimStatus.AWAITING_VERIFICATION,
    ClaimStatus.VERIFIED,
})

# (field group, role) -> claim statuses in which that role may edit the group
CLAIM_EDIT_POLICY: dict[tuple[ClaimFieldGroup, ActorRole], frozenset[ClaimStatus]] = {
    (ClaimFieldGroup.FACILITY, ActorRole.FACILITY): frozenset({ClaimStatus.DRAFT, ClaimStatus.SUBMITTED}),
    (ClaimFieldGroup.FACILITY, ActorRole.TPA): frozenset({ClaimStatus.DRAFT}),
    (ClaimFieldGroup.REVIEW, ActorRole.TPA): _REVIEW_STATUSES,
    (ClaimFieldGroup.REVIEW, ActorRole.INSURER): _REVIEW_STATUSES,
    (ClaimFieldGroup.PAYMENT, ActorRole.INSURER): DECIDED_STATUSES,
}

# Fields that may not be cleared once set
_REQUIRED_FIELDS = ("unique_beneficiary_id", "beneficiary_name")


def _check_edit_policy(actor: Principal, claim: Claim, fields: set[str]) -> None:
    """
    Raise InvalidTransitionError unless the actor may edit every field in
    the claim's current status.
    """
    for field in sorted(fields):
        group = field_group_of(field)
        if group is None:
            raise ValidationError(f"Field {field} cannot be edited", field=field)
        allowed = CLAIM_EDIT_POLICY.get((group, actor.role), frozenset())
        if claim.status not in allowed:
            raise InvalidTransitionError(
                f"Role {actor.role.value} cannot edit {group.value} fields "
                f"of a claim in status {claim.status.value}",
                claim_id=claim.id,
                field=field,
                status=claim.status.value,
            )
        if group == ClaimFieldGroup.PAYMENT and claim.decision != ClaimDecision.APPROVED:
            raise InvalidTransitionError(
                "Payment fields can only be edited on approved claims",
                claim_id=claim.id,
                field=field,
            )


class ClaimLedger(BaseService):
    """
    Claim lifecycle.

    Every change that alters a claim's amounts also recalculates the owning
    batch in the same transaction, so batch totals never drift from their
    members.

    Usage:
        ledger = ClaimLedger(engine, config)
        claim = ledger.create_claim(facility, {...})
        ledger.decide(tpa, claim.id, "approved", approved_amount=Decimal("1200.00"))
        ledger.mark_paid(insurer, claim.id, payment_reference="PAY-001")
    """

    def _cost_values(self, values: dict[str, Any]) -> dict[str, Decimal]:
        costs = {f: round_money(values.get(f) or ZERO, self.places) for f in COST_FIELDS}
        costs["total_cost_of_care"] = round_money(total_cost(costs), self.places)
        return costs

    def _recalculate_owner(self, conn: Connection, claim: Claim) -> None:
        if claim.batch_id is not None:
            recalculate_totals(conn, claim.batch_id, self.places)

    def _require_open_batch(self, conn: Connection, claim: Claim) -> None:
        """Reject changes to the amounts of a claim whose batch has left draft."""
        if claim.batch_id is None:
            return
        batch = repo.get_batch(conn, claim.batch_id, for_update=True)
        if batch.status != BatchStatus.DRAFT:
            raise InvalidTransitionError(
                f"Claim {claim.id} belongs to batch {batch.batch_number}, "
                f"which is {batch.status.value}; its amounts are frozen",
                claim_id=claim.id,
                batch_id=batch.id,
                status=batch.status.value,
            )

    # =========================================================================
    # Creation and edits
    # =========================================================================

    def create_claim(self, actor: Principal, fields: ClaimCreate | dict[str, Any]) -> Claim:
        """
        Create a draft claim.

        Args:
            actor: Acting principal
            fields: ClaimCreate or a mapping of its fields

        Returns:
            The stored claim with its derived total cost of care

        Raises:
            ValidationError: If identity or cost fields are missing or invalid
            DuplicateReferenceError: If the unique claim id is taken
        """
        payload = parse_payload(ClaimCreate, fields)
        require(actor, payload, Permission.CREATE_CLAIM)

        values: dict[str, Any] = {
            **payload.model_dump(),
            **self._cost_values(payload.model_dump()),
            "status": ClaimStatus.DRAFT,
            "decision": ClaimDecision.UNSET,
            "created_at": self.now(),
            "created_by": actor.label,
        }

        with transaction(self.engine, "create_claim") as conn:
            claim_id = self._insert_claim(conn, values)
            claim = repo.get_claim(conn, claim_id)

        logger.info(
            "claim_created",
            claim_id=claim.id,
            unique_claim_id=claim.unique_claim_id,
            facility_id=claim.facility_id,
            tpa_id=claim.tpa_id,
            total_cost_of_care=str(claim.total_cost_of_care),
            actor=actor.label,
        )
        return claim

    def _insert_claim(self, conn: Connection, values: dict[str, Any]) -> int:
        unique_claim_id = values["unique_claim_id"]
        if repo.claim_exists(conn, unique_claim_id):
            raise DuplicateReferenceError(
                f"Claim {unique_claim_id} already exists",
                unique_claim_id=unique_claim_id,
            )
        try:
            return repo.insert_claim(conn, values)
        except IntegrityError as e:
            raise DuplicateReferenceError(
                f"Claim {unique_claim_id} already exists",
                unique_claim_id=unique_claim_id,
            ) from e

    def update_claim(
        self,
        actor: Principal,
        claim_id: int,
        patch: ClaimUpdate | dict[str, Any],
    ) -> Claim:
        """
        Apply a partial update under the field-group policy.

        Facility fields are editable by the facility while the claim is in
        draft or submitted; review fields by the TPA during review; payment
        fields by the insurer once the claim is approved. Cost edits re-derive
        the total and recalculate the owning batch, and are refused once
        that batch has left draft.

        Raises:
            ValidationError: For unknown fields or invalid values
            InvalidTransitionError: If the role cannot edit the requested
                fields in the claim's current status, or the claim's
                batch has left draft and the patch touches costs
            AccessDeniedError: If the claim is outside the actor's scope
        """
        changes = parse_payload(ClaimUpdate, patch).changes()
        if not changes:
            raise ValidationError("No fields to update", claim_id=claim_id)
        for field in _REQUIRED_FIELDS:
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be cleared", field=field)
        for field in COST_FIELDS:
            if field in changes and changes[field] is None:
                changes[field] = ZERO

        with transaction(self.engine, "update_claim") as conn:
            claim = repo.get_claim(conn, claim_id, for_update=True)
            _check_edit_policy(actor, claim, set(changes))
            require(actor, claim, Permission.EDIT_CLAIM)

            admission = changes.get("date_of_admission", claim.date_of_admission)
            discharge = changes.get("date_of_discharge", claim.date_of_discharge)
            if admission is not None and discharge is not None and discharge < admission:
                raise ValidationError(
                    "date_of_discharge must not precede date_of_admission",
                    claim_id=claim_id,
                )

            values = dict(changes)
            costs_changed = any(f in changes for f in COST_FIELDS)
            if costs_changed:
                self._require_open_batch(conn, claim)
                merged = {f: changes.get(f, getattr(claim, f)) for f in COST_FIELDS}
                values.update(self._cost_values(merged))
            values["updated_at"] = self.now()
            values["updated_by"] = actor.label

            if not repo.update_claim(conn, claim_id, values, expected_statuses=[claim.status]):
                raise InvalidTransitionError(
                    f"Claim {claim_id} changed status concurrently",
                    claim_id=claim_id,
                )
            if costs_changed:
                self._recalculate_owner(conn, claim)
            updated = repo.get_claim(conn, claim_id)

        logger.info(
            "claim_updated",
            claim_id=claim_id,
            fields=sorted(changes),
            total_cost_of_care=str(updated.total_cost_of_care),
            actor=actor.label,
        )
        return updated

    def delete_claim(self, actor: Principal, claim_id: int) -> None:
        """Hard-delete a draft claim. Claims that left draft are never deleted."""
        with transaction(self.engine, "delete_claim") as conn:
            claim = repo.get_claim(conn, claim_id, for_update=True)
            require(actor, claim, Permission.DELETE_CLAIM)
            self._require_open_batch(conn, claim)
            if claim.status != ClaimStatus.DRAFT or not repo.delete_claim(conn, claim_id, ClaimStatus.DRAFT):
                raise InvalidTransitionError(
                    f"Only draft claims can be deleted (claim {claim_id} is {claim.status.value})",
                    claim_id=claim_id,
                    status=claim.status.value,
                )
            self._recalculate_owner(conn, claim)

        logger.info("claim_deleted", claim_id=claim_id, batch_id=claim.batch_id, actor=actor.label)

    # =========================================================================
    # Status transitions
    # =========================================================================

    def _transition(
        self,
        actor: Principal,
        claim_id: int,
        action: ClaimAction,
        permission: Permission,
        operation: str,
    ) -> Claim:
        with transaction(self.engine, operation) as conn:
            claim = repo.get_claim(conn, claim_id, for_update=True)
            require(actor, claim, permission)
            next_status = CLAIM_TRANSITIONS.next_state(claim.status, action)
            values = {"status": next_status, "updated_at": self.now(), "updated_by": actor.label}
            if not repo.update_claim(conn, claim_id, values, expected_statuses=[claim.status]):
                raise InvalidTransitionError(
                    f"Claim {claim_id} changed status concurrently",
                    claim_id=claim_id,
                )
            updated = repo.get_claim(conn, claim_id)

        logger.info(
            "claim_transitioned",
            claim_id=claim_id,
            action=action.value,
            from_status=claim.status.value,
            to_status=updated.status.value,
            actor=actor.label,
        )
        return updated

    def submit_claim(self, actor: Principal, claim_id: int) -> Claim:
        return self._transition(actor, claim_id, ClaimAction.SUBMIT, Permission.SUBMIT_CLAIM, "submit_claim")

    def begin_review(self, actor: Principal, claim_id: int) -> Claim:
        """TPA picks up a submitted claim."""
        return self._transition(actor, claim_id, ClaimAction.BEGIN_REVIEW, Permission.REVIEW_CLAIM, "begin_review")

    def verify_claim(self, actor: Principal, claim_id: int) -> Claim:
        """Mark a claim's data as verified, ahead of the approve/reject decision."""
        return self._transition(actor, claim_id, ClaimAction.VERIFY, Permission.REVIEW_CLAIM, "verify_claim")

    def decide(
        self,
        actor: Principal,
        claim_id: int,
        decision: ClaimDecision | str,
        approved_amount: Optional[Any] = None,
        reason: Optional[str] = None,
    ) -> Claim:
        """
        Record the TPA's decision on a claim.

        An approval requires the approved amount and moves the claim to
        verified_awaiting_payment. A rejection requires a reason and moves it
        to not_verified. The owning batch is recalculated in the same
        transaction.

        Raises:
            AccessDeniedError: If the actor may not decide this claim
            MissingFieldError: If the amount or reason is missing
            InvalidTransitionError: If the claim is not under review
        """
        try:
            decision = ClaimDecision(decision)
        except ValueError as e:
            raise ValidationError(f"Unknown decision: {decision!r}", decision=str(decision)) from e
        if decision == ClaimDecision.UNSET:
            raise ValidationError("A decision must be approved or rejected", claim_id=claim_id)

        with transaction(self.engine, "decide_claim") as conn:
            claim = repo.get_claim(conn, claim_id, for_update=True)
            require(actor, claim, Permission.DECIDE_CLAIM)

            values: dict[str, Any]
            if decision == ClaimDecision.APPROVED:
                if approved_amount is None:
                    raise MissingFieldError("approved_amount", "An approved amount is required to approve a claim")
                try:
                    amount = round_money(to_decimal(approved_amount), self.places)
                except ValueError as e:
                    raise ValidationError(str(e), field="approved_amount") from e
                if amount < 0:
                    raise ValidationError("approved_amount must not be negative", field="approved_amount")
                action = ClaimAction.APPROVE
                values = {"approved_cost_of_care": amount, "reason_for_rejection": None}
            else:
                if reason is None or not reason.strip():
                    raise MissingFieldError("reason", "A reason is required to reject a claim")
                action = ClaimAction.REJECT
                values = {"approved_cost_of_care": None, "reason_for_rejection": reason.strip()}

            next_status = CLAIM_TRANSITIONS.next_state(claim.status, action)
            now = self.now()
            values.update(
                status=next_status,
                decision=decision,
                decided_at=now,
                decided_by=actor.label,
                updated_at=now,
                updated_by=actor.label,
            )
            if not repo.update_claim(conn, claim_id, values, expected_statuses=[claim.status]):
                raise InvalidTransitionError(
                    f"Claim {claim_id} changed status concurrently",
                    claim_id=claim_id,
                )
            self._recalculate_owner(conn, claim)
            updated = repo.get_claim(conn, claim_id)

        logger.info(
            "claim_decided",
            claim_id=claim_id,
            decision=decision.value,
            approved_amount=str(updated.approved_cost_of_care) if updated.approved_cost_of_care is not None else None,
            batch_id=updated.batch_id,
            actor=actor.label,
        )
        return updated

    def mark_paid(
        self,
        actor: Principal,
        claim_id: int,
        payment_reference: Optional[str] = None,
    ) -> Claim:
        """
        Mark an approved claim as paid.

        Calling it again on a paid claim returns the claim unchanged.
        """
        with transaction(self.engine, "mark_claim_paid") as conn:
            claim = repo.get_claim(conn, claim_id, for_update=True)
            require(actor, claim, Permission.MARK_CLAIM_PAID)
            if claim.status == ClaimStatus.VERIFIED_PAID:
                logger.debug("claim_already_paid", claim_id=claim_id, actor=actor.label)
                return claim

            next_status = CLAIM_TRANSITIONS.next_state(claim.status, ClaimAction.MARK_PAID)
            now = self.now()
            values: dict[str, Any] = {
                "status": next_status,
                "paid_at": now,
                "updated_at": now,
                "updated_by": actor.label,
            }
            if payment_reference is not None:
                values["payment_reference"] = payment_reference
            if not repo.update_claim(conn, claim_id, values, expected_statuses=[claim.status]):
                raise InvalidTransitionError(
                    f"Claim {claim_id} changed status concurrently",
                    claim_id=claim_id,
                )
            updated = repo.get_claim(conn, claim_id)

        logger.info(
            "claim_paid",
            claim_id=claim_id,
            approved_amount=str(updated.approved_cost_of_care),
            payment_reference=updated.payment_reference,
            actor=actor.label,
        )
        return updated

    def resubmit_claim(
        self,
        actor: Principal,
        claim_id: int,
        new_unique_claim_id: str,
        patch: Optional[ClaimUpdate | dict[str, Any]] = None,
    ) -> Claim:
        """
        Create a new draft claim from a rejected one.

        The rejected claim stays untouched; the new claim copies its facility
        fields, applies the optional facility-field patch and links back
        through resubmitted_from_id.

        Raises:
            InvalidTransitionError: If the source claim was not rejected
            DuplicateReferenceError: If the new unique claim id is taken
        """
        if not new_unique_claim_id or not new_unique_claim_id.strip():
            raise MissingFieldError("new_unique_claim_id")
        changes = parse_payload(ClaimUpdate, patch or {}).changes()
        foreign = sorted(f for f in changes if f not in CLAIM_FIELD_GROUPS[ClaimFieldGroup.FACILITY])
        if foreign:
            raise ValidationError(
                f"Only facility fields can change on resubmission: {', '.join(foreign)}",
                fields=foreign,
            )

        with transaction(self.engine, "resubmit_claim") as conn:
            source = repo.get_claim(conn, claim_id)
            require(actor, source, Permission.RESUBMIT_CLAIM)
            CLAIM_TRANSITIONS.next_state(source.status, ClaimAction.RESUBMIT)

            carried = {
                f: getattr(source, f)
                for f in CLAIM_FIELD_GROUPS[ClaimFieldGroup.FACILITY]
            }
            carried.update(changes)
            for field in _REQUIRED_FIELDS:
                if carried.get(field) is None:
                    raise ValidationError(f"{field} cannot be cleared", field=field)

            values: dict[str, Any] = {
                **carried,
                **self._cost_values(carried),
                "unique_claim_id": new_unique_claim_id.strip(),
                "facility_id": source.facility_id,
                "tpa_id": source.tpa_id,
                "status": ClaimStatus.DRAFT,
                "decision": ClaimDecision.UNSET,
                "resubmitted_from_id": source.id,
                "created_at": self.now(),
                "created_by": actor.label,
            }
            new_id = self._insert_claim(conn, values)
            claim = repo.get_claim(conn, new_id)

        logger.info(
            "claim_resubmitted",
            claim_id=claim.id,
            resubmitted_from_id=source.id,
            unique_claim_id=claim.unique_claim_id,
            actor=actor.label,
        )
        return claim

    # =========================================================================
    # Reads
    # =========================================================================

    def get_claim(self, actor: Principal, claim_id: int) -> Claim:
        with transaction(self.engine, "get_claim") as conn:
            claim = repo.get_claim(conn, claim_id)
        require(actor, claim, Permission.VIEW_CLAIM)
        return claim
