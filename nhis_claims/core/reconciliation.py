"""
Financial reconciliation engine.

Handles advance payments to TPAs and reimbursement of closed batches. The
reimbursement computation claims each batch through a conditional write on
batches.reimbursement_id, so two concurrent runs over the same batch cannot
both succeed.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

import structlog
from sqlalchemy.exc import IntegrityError

from nhis_claims.core.access import require
from nhis_claims.core.base import BaseService, parse_payload
from nhis_claims.core.transitions import (
    ADVANCE_PAYMENT_TRANSITIONS,
    ELIGIBLE_BATCH_STATUSES,
    REIMBURSEMENT_TRANSITIONS,
)
from nhis_claims.db import repository as repo
from nhis_claims.db.connection import transaction
from nhis_claims.domain.batches import Batch
from nhis_claims.domain.enums import (
    ActorRole,
    AdvancePaymentAction,
    AdvancePaymentStatus,
    BatchStatus,
    Permission,
    ReimbursementAction,
    ReimbursementStatus,
    TransactionType,
)
from nhis_claims.domain.errors import (
    AccessDeniedError,
    BatchAlreadyReimbursedError,
    ClaimsCoreError,
    DuplicateReferenceError,
    InvalidStateError,
    MissingFieldError,
    ValidationError,
)
from nhis_claims.domain.finance import (
    AdvancePayment,
    AdvancePaymentCreate,
    BulkReimbursementOutcome,
    BulkReimbursementResult,
    FinancialSummary,
    FinancialTransaction,
    Reimbursement,
    ReimbursementRequest,
    StatusTotals,
    TpaEligibleSummary,
)
from nhis_claims.domain.principal import Principal
from nhis_claims.utils.logging import ReconciliationLogger
from nhis_claims.utils.money import percentage_of, round_money, sum_money

logger = structlog.get_logger()


class ReconciliationEngine(BaseService):
    """
    Advance payments and batch reimbursements.

    Usage:
        engine = ReconciliationEngine(db_engine, config)
        reimbursement = engine.compute_reimbursement(
            insurer, tpa_id=7, batch_ids=[1, 2], admin_fee_percentage=Decimal("5"), reference="RMB-001"
        )
        engine.complete_reimbursement(insurer, reimbursement.id)
    """

    def _log(self, actor: Principal) -> ReconciliationLogger:
        return ReconciliationLogger(actor.label)

    def _scope_tpa(self, actor: Principal, tpa_id: Optional[int]) -> Optional[int]:
        """Restrict TPA principals to their own records."""
        require(actor, None, Permission.VIEW_FINANCE)
        if actor.role != ActorRole.TPA:
            return tpa_id
        if tpa_id is not None and tpa_id != actor.tpa_id:
            raise AccessDeniedError(
                f"TPA {actor.tpa_id} cannot view finance records of TPA {tpa_id}",
                actor=actor.label,
                tpa_id=tpa_id,
            )
        return actor.tpa_id

    # =========================================================================
    # Advance payments
    # =========================================================================

    def record_advance_payment(
        self,
        actor: Principal,
        tpa_id: int,
        amount: Any,
        payment_reference: str,
        purpose: str,
        payment_method: str = "bank_transfer",
        payment_date: Optional[date] = None,
        description: Optional[str] = None,
    ) -> AdvancePayment:
        """
        Record a pending advance payment to a TPA.

        Raises:
            DuplicateReferenceError: If the payment reference is taken
        """
        data: dict[str, Any] = {
            "tpa_id": tpa_id,
            "amount": amount,
            "payment_reference": payment_reference,
            "purpose": purpose,
            "payment_method": payment_method,
            "description": description,
        }
        if payment_date is not None:
            data["payment_date"] = payment_date
        payload = parse_payload(AdvancePaymentCreate, data)
        require(actor, payload, Permission.MANAGE_ADVANCE_PAYMENT)

        values: dict[str, Any] = {
            **payload.model_dump(),
            "amount": round_money(payload.amount, self.places),
            "status": AdvancePaymentStatus.PENDING,
            "created_at": self.now(),
            "created_by": actor.label,
        }

        with transaction(self.engine, "record_advance_payment") as conn:
            if repo.advance_payment_reference_exists(conn, payload.payment_reference):
                raise DuplicateReferenceError(
                    f"Payment reference {payload.payment_reference} already exists",
                    payment_reference=payload.payment_reference,
                )
            try:
                payment_id = repo.insert_advance_payment(conn, values)
            except IntegrityError as e:
                raise DuplicateReferenceError(
                    f"Payment reference {payload.payment_reference} already exists",
                    payment_reference=payload.payment_reference,
                ) from e
            payment = repo.get_advance_payment(conn, payment_id)

        self._log(actor).advance_payment_recorded(
            payment.id, payment.tpa_id, payment.amount, reference=payment.payment_reference
        )
        return payment

    def _advance_transition(
        self,
        actor: Principal,
        payment_id: int,
        action: AdvancePaymentAction,
        operation: str,
        changes: dict[str, Any],
        after: Optional[Callable[[Any, AdvancePayment], None]] = None,
    ) -> AdvancePayment:
        with transaction(self.engine, operation) as conn:
            payment = repo.get_advance_payment(conn, payment_id, for_update=True)
            require(actor, payment, Permission.MANAGE_ADVANCE_PAYMENT)
            next_status = ADVANCE_PAYMENT_TRANSITIONS.next_state(payment.status, action)
            values = {"status": next_status, "updated_at": self.now(), **changes}
            if not repo.update_advance_payment(conn, payment_id, values, expected_statuses=[payment.status]):
                raise InvalidStateError(
                    f"Advance payment {payment_id} changed status concurrently",
                    payment_id=payment_id,
                )
            if after is not None:
                after(conn, payment)
            updated = repo.get_advance_payment(conn, payment_id)

        if payment.status != updated.status:
            self._log(actor).advance_payment_transitioned(
                payment_id, payment.status.value, updated.status.value
            )
        return updated

    def approve_advance_payment(self, actor: Principal, payment_id: int) -> AdvancePayment:
        now = self.now()
        return self._advance_transition(
            actor,
            payment_id,
            AdvancePaymentAction.APPROVE,
            "approve_advance_payment",
            {"approved_at": now, "approved_by": actor.label},
        )

    def disburse_advance_payment(self, actor: Principal, payment_id: int) -> AdvancePayment:
        """
        Disburse an approved advance payment.

        The status change and its FinancialTransaction commit together.
        """
        now = self.now()

        def record_transaction(conn, payment: AdvancePayment) -> None:
            repo.insert_transaction(
                conn,
                {
                    "transaction_type": TransactionType.ADVANCE_PAYMENT,
                    "reference_type": "advance_payment",
                    "reference_id": payment.id,
                    "tpa_id": payment.tpa_id,
                    "amount": payment.amount,
                    "description": f"Advance payment {payment.payment_reference}: {payment.purpose}",
                    "created_at": now,
                    "created_by": actor.label,
                },
            )

        payment = self._advance_transition(
            actor,
            payment_id,
            AdvancePaymentAction.DISBURSE,
            "disburse_advance_payment",
            {"disbursed_at": now, "disbursed_by": actor.label},
            after=record_transaction,
        )
        self._log(actor).advance_payment_disbursed(payment.id, payment.tpa_id, payment.amount)
        return payment

    def reconcile_advance_payment(self, actor: Principal, payment_id: int) -> AdvancePayment:
        now = self.now()
        return self._advance_transition(
            actor,
            payment_id,
            AdvancePaymentAction.RECONCILE,
            "reconcile_advance_payment",
            {"reconciled_at": now, "reconciled_by": actor.label},
        )

    def cancel_advance_payment(self, actor: Principal, payment_id: int) -> AdvancePayment:
        now = self.now()
        return self._advance_transition(
            actor,
            payment_id,
            AdvancePaymentAction.CANCEL,
            "cancel_advance_payment",
            {"cancelled_at": now, "cancelled_by": actor.label},
        )

    def attach_advance_payment_receipt(
        self,
        actor: Principal,
        payment_id: int,
        receipt_url: str,
        receipt_file_name: Optional[str] = None,
    ) -> AdvancePayment:
        """Store the receipt location. The file itself lives in the document store."""
        if not receipt_url or not receipt_url.strip():
            raise MissingFieldError("receipt_url")
        return self._advance_transition(
            actor,
            payment_id,
            AdvancePaymentAction.ATTACH_RECEIPT,
            "attach_advance_payment_receipt",
            {"receipt_url": receipt_url.strip(), "receipt_file_name": receipt_file_name},
        )

    def get_advance_payment(self, actor: Principal, payment_id: int) -> AdvancePayment:
        with transaction(self.engine, "get_advance_payment") as conn:
            payment = repo.get_advance_payment(conn, payment_id)
        self._scope_tpa(actor, payment.tpa_id)
        return payment

    def list_advance_payments(
        self,
        actor: Principal,
        status: Optional[AdvancePaymentStatus] = None,
        tpa_id: Optional[int] = None,
    ) -> list[AdvancePayment]:
        tpa_id = self._scope_tpa(actor, tpa_id)
        with transaction(self.engine, "list_advance_payments") as conn:
            return repo.list_advance_payments(conn, status=status, tpa_id=tpa_id)

    # =========================================================================
    # Eligibility
    # =========================================================================

    def list_eligible_batches(self, actor: Principal, tpa_id: Optional[int] = None) -> list[Batch]:
        """
        Batches that can still be reimbursed.

        A batch is eligible when it is closed, verified or approved and no
        pending or completed reimbursement has claimed it. Computed fresh on
        every call.
        """
        tpa_id = self._scope_tpa(actor, tpa_id)
        with transaction(self.engine, "list_eligible_batches") as conn:
            return repo.list_batches(
                conn,
                statuses=ELIGIBLE_BATCH_STATUSES,
                tpa_id=tpa_id,
                unclaimed_only=True,
            )

    def eligible_batches_by_tpa(self, actor: Principal) -> list[TpaEligibleSummary]:
        """Eligible batches grouped per TPA for reimbursement planning."""
        grouped: dict[int, list[Batch]] = defaultdict(list)
        for batch in self.list_eligible_batches(actor):
            grouped[batch.tpa_id].append(batch)
        return [
            TpaEligibleSummary(
                tpa_id=tpa_id,
                batch_ids=[b.id for b in batches],
                total_batches=len(batches),
                total_claims=sum(b.total_claims for b in batches),
                total_amount=sum_money((b.total_amount for b in batches), self.places),
            )
            for tpa_id, batches in sorted(grouped.items())
        ]

    # =========================================================================
    # Reimbursements
    # =========================================================================

    def compute_reimbursement(
        self,
        actor: Principal,
        tpa_id: int,
        batch_ids: Iterable[int],
        admin_fee_percentage: Optional[Any] = None,
        reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Reimbursement:
        """
        Create a pending reimbursement over eligible batches of one TPA.

        Ownership and eligibility are re-validated at call time. The total is
        the sum of the batch totals; the admin fee is rounded to minor units
        with banker's rounding and the net is the total less the fee.

        Raises:
            ValidationError: If a batch belongs to another TPA or the fee is
                out of range
            InvalidStateError: If a batch is not closed, verified or approved
            BatchAlreadyReimbursedError: If a batch is already claimed by a
                pending or completed reimbursement
            DuplicateReferenceError: If the reference is taken
        """
        require(actor, None, Permission.RUN_RECONCILIATION)
        if admin_fee_percentage is None:
            admin_fee_percentage = self.config.finance.default_admin_fee_percentage
        request = parse_payload(
            ReimbursementRequest,
            {"tpa_id": tpa_id, "batch_ids": list(batch_ids), "admin_fee_percentage": admin_fee_percentage},
        )

        max_fee = self.config.finance.max_admin_fee_percentage
        if request.admin_fee_percentage > max_fee:
            raise ValidationError(
                f"Admin fee {request.admin_fee_percentage}% exceeds the maximum of {max_fee}%",
                admin_fee_percentage=str(request.admin_fee_percentage),
            )

        now = self.now()
        if reference is None:
            reference = f"RMB-{request.tpa_id}-{now:%Y%m%d%H%M%S%f}"
        elif not reference.strip():
            raise MissingFieldError("reference")
        reference = reference.strip()

        log = self._log(actor).bind(tpa_id=request.tpa_id, reference=reference)

        with transaction(self.engine, "compute_reimbursement") as conn:
            if repo.reimbursement_reference_exists(conn, reference):
                raise DuplicateReferenceError(
                    f"Reimbursement reference {reference} already exists",
                    reference=reference,
                )

            batches = repo.get_batches(conn, request.batch_ids)
            foreign = [b.id for b in batches if b.tpa_id != request.tpa_id]
            if foreign:
                raise ValidationError(
                    f"Batches do not belong to TPA {request.tpa_id}: {', '.join(str(b) for b in foreign)}",
                    batch_ids=foreign,
                )
            taken = [
                b.id for b in batches
                if b.reimbursement_id is not None or b.status == BatchStatus.REIMBURSED
            ]
            if taken:
                log.race_lost(taken)
                raise BatchAlreadyReimbursedError(taken)
            ineligible = [b.id for b in batches if b.status not in ELIGIBLE_BATCH_STATUSES]
            if ineligible:
                raise InvalidStateError(
                    f"Batches are not closed, verified or approved: {', '.join(str(b) for b in ineligible)}",
                    batch_ids=ineligible,
                )

            total = sum_money((b.total_amount for b in batches), self.places)
            fee = percentage_of(total, request.admin_fee_percentage, self.places)
            net = total - fee

            values = {
                "tpa_id": request.tpa_id,
                "reference": reference,
                "batch_ids": request.batch_ids,
                "total_claims_amount": total,
                "admin_fee_percentage": request.admin_fee_percentage,
                "admin_fee_amount": fee,
                "net_reimbursement_amount": net,
                "status": ReimbursementStatus.PENDING,
                "description": description,
                "created_at": now,
                "created_by": actor.label,
            }
            try:
                reimbursement_id = repo.insert_reimbursement(conn, values)
            except IntegrityError as e:
                raise DuplicateReferenceError(
                    f"Reimbursement reference {reference} already exists",
                    reference=reference,
                ) from e

            lost = [
                b.id for b in batches
                if not repo.claim_batch(conn, b.id, request.tpa_id, reimbursement_id, ELIGIBLE_BATCH_STATUSES)
            ]
            if lost:
                log.race_lost(lost)
                raise BatchAlreadyReimbursedError(lost)

            reimbursement = repo.get_reimbursement(conn, reimbursement_id)

        log.reimbursement_computed(
            reimbursement.id,
            reimbursement.tpa_id,
            reimbursement.net_reimbursement_amount,
            batch_ids=reimbursement.batch_ids,
            total=str(total),
            admin_fee=str(fee),
        )
        return reimbursement

    def complete_reimbursement(self, actor: Principal, reimbursement_id: int) -> Reimbursement:
        """
        Settle a pending reimbursement.

        The reimbursement moves to completed, its batches to reimbursed and
        one FinancialTransaction is written, all in one commit.
        """
        require(actor, None, Permission.RUN_RECONCILIATION)
        with transaction(self.engine, "complete_reimbursement") as conn:
            reimbursement = repo.get_reimbursement(conn, reimbursement_id, for_update=True)
            next_status = REIMBURSEMENT_TRANSITIONS.next_state(
                reimbursement.status, ReimbursementAction.COMPLETE
            )
            now = self.now()
            applied = repo.update_reimbursement(
                conn,
                reimbursement_id,
                {
                    "status": next_status,
                    "completed_at": now,
                    "completed_by": actor.label,
                    "updated_at": now,
                },
                expected_statuses=[ReimbursementStatus.PENDING],
            )
            if not applied:
                raise InvalidStateError(
                    f"Reimbursement {reimbursement_id} changed status concurrently",
                    reimbursement_id=reimbursement_id,
                )

            marked = repo.mark_batches_reimbursed(
                conn,
                reimbursement_id,
                {
                    "status": BatchStatus.REIMBURSED,
                    "reimbursed_at": now,
                    "updated_at": now,
                    "updated_by": actor.label,
                },
            )
            if marked != len(reimbursement.batch_ids):
                raise InvalidStateError(
                    f"Reimbursement {reimbursement_id} claims {marked} of "
                    f"{len(reimbursement.batch_ids)} batches",
                    reimbursement_id=reimbursement_id,
                )

            repo.insert_transaction(
                conn,
                {
                    "transaction_type": TransactionType.REIMBURSEMENT,
                    "reference_type": "reimbursement",
                    "reference_id": reimbursement_id,
                    "tpa_id": reimbursement.tpa_id,
                    "amount": reimbursement.net_reimbursement_amount,
                    "description": f"Reimbursement {reimbursement.reference}",
                    "created_at": now,
                    "created_by": actor.label,
                },
            )
            updated = repo.get_reimbursement(conn, reimbursement_id)

        self._log(actor).reimbursement_completed(
            updated.id,
            updated.tpa_id,
            updated.net_reimbursement_amount,
            reference=updated.reference,
            batch_ids=updated.batch_ids,
        )
        return updated

    def cancel_reimbursement(self, actor: Principal, reimbursement_id: int) -> Reimbursement:
        """Cancel a pending reimbursement and release its batches."""
        require(actor, None, Permission.RUN_RECONCILIATION)
        with transaction(self.engine, "cancel_reimbursement") as conn:
            reimbursement = repo.get_reimbursement(conn, reimbursement_id, for_update=True)
            next_status = REIMBURSEMENT_TRANSITIONS.next_state(
                reimbursement.status, ReimbursementAction.CANCEL
            )
            now = self.now()
            applied = repo.update_reimbursement(
                conn,
                reimbursement_id,
                {
                    "status": next_status,
                    "cancelled_at": now,
                    "cancelled_by": actor.label,
                    "updated_at": now,
                },
                expected_statuses=[ReimbursementStatus.PENDING],
            )
            if not applied:
                raise InvalidStateError(
                    f"Reimbursement {reimbursement_id} changed status concurrently",
                    reimbursement_id=reimbursement_id,
                )
            released = repo.release_batches(conn, reimbursement_id)
            updated = repo.get_reimbursement(conn, reimbursement_id)

        logger.info(
            "reimbursement_cancelled",
            reimbursement_id=reimbursement_id,
            reference=updated.reference,
            released_batches=released,
            actor=actor.label,
        )
        return updated

    def bulk_reimburse(
        self,
        actor: Principal,
        requests: Iterable[ReimbursementRequest | dict[str, Any]],
        base_reference: str,
        description: Optional[str] = None,
    ) -> BulkReimbursementResult:
        """
        Run one reimbursement computation per TPA.

        Each request's batch ids are narrowed to the currently eligible ones.
        A TPA left with none is skipped. References are base_reference
        suffixed with a zero-padded sequence that advances per attempted TPA.
        A failure for one TPA is reported in its outcome and does not stop
        the others.
        """
        require(actor, None, Permission.RUN_RECONCILIATION)
        if not base_reference or not base_reference.strip():
            raise MissingFieldError("base_reference")
        base_reference = base_reference.strip()

        parsed = [parse_payload(ReimbursementRequest, r) for r in requests]
        tpa_ids = [r.tpa_id for r in parsed]
        duplicates = sorted({t for t in tpa_ids if tpa_ids.count(t) > 1})
        if duplicates:
            raise ValidationError(
                f"TPAs listed more than once: {', '.join(str(t) for t in duplicates)}",
                tpa_ids=duplicates,
            )

        eligible: dict[int, set[int]] = defaultdict(set)
        for batch in self.list_eligible_batches(actor):
            eligible[batch.tpa_id].add(batch.id)

        width = self.config.finance.bulk_reference_width
        result = BulkReimbursementResult()
        seq = 0
        for request in parsed:
            batch_ids = [b for b in request.batch_ids if b in eligible[request.tpa_id]]
            if not batch_ids:
                logger.info("bulk_reimbursement_tpa_skipped", tpa_id=request.tpa_id, reason="no_eligible_batches")
                result.skipped_tpa_ids.append(request.tpa_id)
                continue

            seq += 1
            reference = f"{base_reference}-{seq:0{width}d}"
            try:
                reimbursement = self.compute_reimbursement(
                    actor,
                    request.tpa_id,
                    batch_ids,
                    admin_fee_percentage=request.admin_fee_percentage,
                    reference=reference,
                    description=description,
                )
            except ClaimsCoreError as e:
                logger.warning(
                    "bulk_reimbursement_tpa_failed",
                    tpa_id=request.tpa_id,
                    reference=reference,
                    error_type=type(e).__name__,
                    error=e.message,
                )
                result.outcomes.append(
                    BulkReimbursementOutcome(
                        tpa_id=request.tpa_id,
                        reference=reference,
                        succeeded=False,
                        error_type=type(e).__name__,
                        error=e.message,
                    )
                )
                continue
            result.outcomes.append(
                BulkReimbursementOutcome(
                    tpa_id=request.tpa_id,
                    reference=reference,
                    succeeded=True,
                    reimbursement=reimbursement,
                )
            )

        logger.info(
            "bulk_reimbursement_finished",
            base_reference=base_reference,
            created=len(result.created),
            failed=len(result.outcomes) - len(result.created),
            skipped=len(result.skipped_tpa_ids),
            total_net_amount=str(result.total_net_amount),
        )
        return result

    def get_reimbursement(self, actor: Principal, reimbursement_id: int) -> Reimbursement:
        with transaction(self.engine, "get_reimbursement") as conn:
            reimbursement = repo.get_reimbursement(conn, reimbursement_id)
        self._scope_tpa(actor, reimbursement.tpa_id)
        return reimbursement

    def list_reimbursements(
        self,
        actor: Principal,
        status: Optional[ReimbursementStatus] = None,
        tpa_id: Optional[int] = None,
    ) -> list[Reimbursement]:
        tpa_id = self._scope_tpa(actor, tpa_id)
        with transaction(self.engine, "list_reimbursements") as conn:
            return repo.list_reimbursements(conn, status=status, tpa_id=tpa_id)

    def list_transactions(
        self,
        actor: Principal,
        tpa_id: Optional[int] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
    ) -> list[FinancialTransaction]:
        tpa_id = self._scope_tpa(actor, tpa_id)
        with transaction(self.engine, "list_transactions") as conn:
            return repo.list_transactions(
                conn, tpa_id=tpa_id, reference_type=reference_type, reference_id=reference_id
            )

    # =========================================================================
    # Reporting
    # =========================================================================

    def financial_summary(self, actor: Principal, tpa_id: Optional[int] = None) -> FinancialSummary:
        """Counts and amounts by status, ledger totals and open eligibility."""
        tpa_id = self._scope_tpa(actor, tpa_id)
        with transaction(self.engine, "financial_summary") as conn:
            payments = repo.list_advance_payments(conn, tpa_id=tpa_id)
            reimbursements = repo.list_reimbursements(conn, tpa_id=tpa_id)
            transactions = repo.list_transactions(conn, tpa_id=tpa_id)
            eligible = repo.list_batches(
                conn, statuses=ELIGIBLE_BATCH_STATUSES, tpa_id=tpa_id, unclaimed_only=True
            )

        payment_totals: dict[str, list[Decimal]] = defaultdict(list)
        for p in payments:
            payment_totals[p.status.value].append(p.amount)
        reimbursement_totals: dict[str, list[Decimal]] = defaultdict(list)
        for r in reimbursements:
            reimbursement_totals[r.status.value].append(r.net_reimbursement_amount)

        def by_status(grouped: dict[str, list[Decimal]]) -> dict[str, StatusTotals]:
            return {
                status: StatusTotals(count=len(amounts), amount=sum_money(amounts, self.places))
                for status, amounts in sorted(grouped.items())
            }

        return FinancialSummary(
            advance_payments=by_status(payment_totals),
            reimbursements=by_status(reimbursement_totals),
            transactions_count=len(transactions),
            transactions_amount=sum_money((t.amount for t in transactions), self.places),
            eligible_batches=len(eligible),
            eligible_amount=sum_money((b.total_amount for b in eligible), self.places),
        )
