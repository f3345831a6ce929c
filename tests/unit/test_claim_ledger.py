"""
Unit tests for the claim ledger.
"""

from decimal import Decimal

import pytest

from nhis_claims.domain.enums import ClaimDecision, ClaimStatus
from nhis_claims.domain.errors import (
    AccessDeniedError,
    DuplicateReferenceError,
    InvalidTransitionError,
    MissingFieldError,
    NotFoundError,
    ValidationError,
)


OTHER_TPA_ID = 8


class TestCreateClaim:
    """Tests for claim creation."""

    def test_creates_draft_with_total(self, make_claim):
        claim = make_claim()

        assert claim.status == ClaimStatus.DRAFT
        assert claim.decision == ClaimDecision.UNSET
        assert claim.total_cost_of_care == Decimal("4250.50")
        assert claim.created_by == "facility:4"

    def test_duplicate_unique_claim_id(self, make_claim):
        make_claim(unique_claim_id="CLM-DUP")

        with pytest.raises(DuplicateReferenceError):
            make_claim(unique_claim_id="CLM-DUP")

    def test_missing_identity_field(self, ledger, facility, claim_fields):
        fields = claim_fields()
        del fields["beneficiary_name"]

        with pytest.raises(MissingFieldError) as exc_info:
            ledger.create_claim(facility, fields)

        assert exc_info.value.field == "beneficiary_name"

    def test_facility_cannot_file_with_other_tpa(self, make_claim):
        with pytest.raises(AccessDeniedError):
            make_claim(tpa_id=OTHER_TPA_ID)

    def test_costs_rounded_to_currency(self, make_claim):
        claim = make_claim(cost_of_procedure=Decimal("10.005"), cost_of_investigation=None,
                           cost_of_medication=None, cost_of_other_services=None)

        assert claim.cost_of_procedure == Decimal("10.00")
        assert claim.total_cost_of_care == Decimal("10.00")


class TestUpdateClaim:
    """Tests for field-group edits."""

    def test_facility_edits_costs_in_draft(self, ledger, facility, make_claim):
        claim = make_claim()

        updated = ledger.update_claim(facility, claim.id, {"cost_of_medication": Decimal("249.50")})

        assert updated.total_cost_of_care == Decimal("3749.50")
        assert updated.updated_by == "facility:4"

    def test_clearing_a_cost_zeroes_it(self, ledger, facility, make_claim):
        claim = make_claim()

        updated = ledger.update_claim(facility, claim.id, {"cost_of_procedure": None})

        assert updated.cost_of_procedure == Decimal("0")
        assert updated.total_cost_of_care == Decimal("1750.50")

    def test_cost_edit_recalculates_batch(self, ledger, aggregator, facility, make_batch):
        batch = make_batch([Decimal("100"), Decimal("200")])
        member = aggregator.list_batch_claims(facility, batch.id)[0]

        ledger.update_claim(facility, member.id, {"cost_of_procedure": Decimal("150")})

        assert aggregator.get_batch(facility, batch.id).total_amount == Decimal("350.00")

    def test_costs_frozen_once_batch_submitted(self, ledger, aggregator, facility, make_batch):
        """Should refuse cost edits on a submitted claim whose batch left draft."""
        batch = make_batch([Decimal("100"), Decimal("200")])
        aggregator.submit(facility, batch.id)
        member = aggregator.list_batch_claims(facility, batch.id)[0]

        with pytest.raises(InvalidTransitionError):
            ledger.update_claim(facility, member.id, {"cost_of_procedure": Decimal("150")})

        assert aggregator.get_batch(facility, batch.id).total_amount == Decimal("300.00")
        assert ledger.get_claim(facility, member.id).total_cost_of_care == Decimal("100.00")

    def test_costs_frozen_after_reimbursement(
        self, ledger, aggregator, reconciliation, facility, insurer, closed_batch
    ):
        """Should keep a reimbursed batch's total matching what was settled."""
        batch = closed_batch([Decimal("500000")])
        reimbursement = reconciliation.compute_reimbursement(
            insurer, 7, [batch.id], admin_fee_percentage=Decimal("5"), reference="RMB-FROZEN"
        )
        reconciliation.complete_reimbursement(insurer, reimbursement.id)
        (member,) = aggregator.list_batch_claims(facility, batch.id)

        with pytest.raises(InvalidTransitionError):
            ledger.update_claim(facility, member.id, {"cost_of_procedure": Decimal("900000")})

        assert aggregator.get_batch(insurer, batch.id).total_amount == Decimal("500000.00")
        assert reimbursement.total_claims_amount == Decimal("500000.00")

    def test_non_cost_fields_editable_in_submitted_batch(self, ledger, aggregator, facility, make_batch):
        batch = make_batch([Decimal("100")])
        aggregator.submit(facility, batch.id)
        (member,) = aggregator.list_batch_claims(facility, batch.id)

        updated = ledger.update_claim(facility, member.id, {"hospital_number": "HN-77"})

        assert updated.hospital_number == "HN-77"

    def test_tpa_cannot_write_review_fields_in_draft(self, ledger, tpa, make_claim):
        claim = make_claim()

        with pytest.raises(InvalidTransitionError):
            ledger.update_claim(tpa, claim.id, {"tpa_remarks": "Looks fine"})

    def test_tpa_writes_review_fields_during_review(self, ledger, facility, tpa, make_claim):
        claim = make_claim()
        ledger.submit_claim(facility, claim.id)

        updated = ledger.update_claim(tpa, claim.id, {"tpa_remarks": "Looks fine"})

        assert updated.tpa_remarks == "Looks fine"

    def test_facility_fields_frozen_after_review_starts(self, ledger, facility, tpa, make_claim):
        claim = make_claim()
        ledger.submit_claim(facility, claim.id)
        ledger.begin_review(tpa, claim.id)

        with pytest.raises(InvalidTransitionError):
            ledger.update_claim(facility, claim.id, {"beneficiary_name": "Renamed"})

    def test_payment_fields_need_approval(self, ledger, facility, insurer, make_claim):
        claim = make_claim()
        ledger.submit_claim(facility, claim.id)

        with pytest.raises(InvalidTransitionError):
            ledger.update_claim(insurer, claim.id, {"payment_reference": "PAY-1"})

    def test_empty_patch(self, ledger, facility, make_claim):
        claim = make_claim()

        with pytest.raises(ValidationError):
            ledger.update_claim(facility, claim.id, {})

    def test_required_field_cannot_be_cleared(self, ledger, facility, make_claim):
        claim = make_claim()

        with pytest.raises(ValidationError):
            ledger.update_claim(facility, claim.id, {"beneficiary_name": None})

    def test_other_facility_denied(self, ledger, other_facility, make_claim):
        claim = make_claim()

        with pytest.raises(AccessDeniedError):
            ledger.update_claim(other_facility, claim.id, {"hospital_number": "X"})


class TestDeleteClaim:
    """Tests for claim deletion."""

    def test_delete_draft(self, ledger, facility, make_claim):
        claim = make_claim()

        ledger.delete_claim(facility, claim.id)

        with pytest.raises(NotFoundError):
            ledger.get_claim(facility, claim.id)

    def test_submitted_claim_cannot_be_deleted(self, ledger, facility, make_claim):
        claim = make_claim()
        ledger.submit_claim(facility, claim.id)

        with pytest.raises(InvalidTransitionError):
            ledger.delete_claim(facility, claim.id)


class TestDecide:
    """Tests for the TPA decision."""

    @pytest.fixture
    def submitted(self, ledger, facility, make_claim):
        claim = make_claim()
        return ledger.submit_claim(facility, claim.id)

    def test_approve(self, ledger, tpa, submitted):
        claim = ledger.decide(tpa, submitted.id, "approved", approved_amount=Decimal("4000.00"))

        assert claim.status == ClaimStatus.VERIFIED_AWAITING_PAYMENT
        assert claim.decision == ClaimDecision.APPROVED
        assert claim.approved_cost_of_care == Decimal("4000.00")
        assert claim.decided_by == "tpa:2"

    def test_approve_without_amount(self, ledger, tpa, submitted):
        with pytest.raises(MissingFieldError) as exc_info:
            ledger.decide(tpa, submitted.id, ClaimDecision.APPROVED)

        assert exc_info.value.field == "approved_amount"

    def test_negative_amount(self, ledger, tpa, submitted):
        with pytest.raises(ValidationError):
            ledger.decide(tpa, submitted.id, ClaimDecision.APPROVED, approved_amount=Decimal("-1"))

    def test_reject_requires_reason(self, ledger, tpa, submitted):
        with pytest.raises(MissingFieldError) as exc_info:
            ledger.decide(tpa, submitted.id, ClaimDecision.REJECTED, reason="  ")

        assert exc_info.value.field == "reason"

    def test_reject(self, ledger, tpa, submitted):
        claim = ledger.decide(tpa, submitted.id, ClaimDecision.REJECTED, reason="Duplicate claim")

        assert claim.status == ClaimStatus.NOT_VERIFIED
        assert claim.reason_for_rejection == "Duplicate claim"
        assert claim.approved_cost_of_care is None

    def test_unknown_decision(self, ledger, tpa, submitted):
        with pytest.raises(ValidationError):
            ledger.decide(tpa, submitted.id, "maybe")

    def test_unset_is_not_a_decision(self, ledger, tpa, submitted):
        with pytest.raises(ValidationError):
            ledger.decide(tpa, submitted.id, ClaimDecision.UNSET)

    def test_facility_cannot_decide(self, ledger, facility, submitted):
        with pytest.raises(AccessDeniedError):
            ledger.decide(facility, submitted.id, ClaimDecision.APPROVED, approved_amount=Decimal("1"))

    def test_other_tpa_cannot_decide(self, ledger, other_tpa, submitted):
        with pytest.raises(AccessDeniedError):
            ledger.decide(other_tpa, submitted.id, ClaimDecision.APPROVED, approved_amount=Decimal("1"))

    def test_draft_cannot_be_decided(self, ledger, tpa, make_claim):
        claim = make_claim()

        with pytest.raises(InvalidTransitionError):
            ledger.decide(tpa, claim.id, ClaimDecision.APPROVED, approved_amount=Decimal("1"))

    def test_rejected_claim_cannot_be_redecided(self, ledger, tpa, submitted):
        ledger.decide(tpa, submitted.id, ClaimDecision.REJECTED, reason="Duplicate claim")

        with pytest.raises(InvalidTransitionError):
            ledger.decide(tpa, submitted.id, ClaimDecision.APPROVED, approved_amount=Decimal("1"))

    def test_decision_recalculates_batch(self, ledger, aggregator, facility, tpa, make_batch):
        batch = make_batch([Decimal("500"), Decimal("300")])
        aggregator.submit(facility, batch.id)
        first, second = aggregator.list_batch_claims(tpa, batch.id)

        ledger.decide(tpa, first.id, ClaimDecision.APPROVED, approved_amount=Decimal("450"))
        ledger.decide(tpa, second.id, ClaimDecision.REJECTED, reason="Not covered")

        batch = aggregator.get_batch(tpa, batch.id)
        assert batch.total_amount == Decimal("800.00")
        assert batch.total_approved_amount == Decimal("450.00")


class TestMarkPaid:
    """Tests for payment marking."""

    @pytest.fixture
    def approved(self, ledger, facility, tpa, make_claim):
        claim = make_claim()
        ledger.submit_claim(facility, claim.id)
        return ledger.decide(tpa, claim.id, ClaimDecision.APPROVED, approved_amount=Decimal("4000"))

    def test_mark_paid(self, ledger, insurer, approved):
        claim = ledger.mark_paid(insurer, approved.id, payment_reference="PAY-001")

        assert claim.status == ClaimStatus.VERIFIED_PAID
        assert claim.payment_reference == "PAY-001"
        assert claim.paid_at is not None

    def test_idempotent(self, ledger, insurer, approved):
        first = ledger.mark_paid(insurer, approved.id, payment_reference="PAY-001")
        second = ledger.mark_paid(insurer, approved.id, payment_reference="PAY-002")

        assert second.paid_at == first.paid_at
        assert second.payment_reference == "PAY-001"

    def test_not_approved(self, ledger, facility, insurer, make_claim):
        claim = make_claim()
        ledger.submit_claim(facility, claim.id)

        with pytest.raises(InvalidTransitionError):
            ledger.mark_paid(insurer, claim.id)

    def test_facility_cannot_mark_paid(self, ledger, facility, approved):
        with pytest.raises(AccessDeniedError):
            ledger.mark_paid(facility, approved.id)

    def test_payment_fields_editable_after_approval(self, ledger, insurer, approved):
        claim = ledger.update_claim(insurer, approved.id, {"payment_remarks": "Batch transfer"})

        assert claim.payment_remarks == "Batch transfer"


class TestResubmit:
    """Tests for resubmission of rejected claims."""

    @pytest.fixture
    def rejected(self, ledger, facility, tpa, make_claim):
        claim = make_claim()
        ledger.submit_claim(facility, claim.id)
        return ledger.decide(tpa, claim.id, ClaimDecision.REJECTED, reason="Missing invoice")

    def test_creates_linked_draft(self, ledger, facility, rejected):
        claim = ledger.resubmit_claim(
            facility, rejected.id, "CLM-R1", {"cost_of_medication": Decimal("700.50")}
        )

        assert claim.id != rejected.id
        assert claim.status == ClaimStatus.DRAFT
        assert claim.resubmitted_from_id == rejected.id
        assert claim.unique_beneficiary_id == rejected.unique_beneficiary_id
        assert claim.total_cost_of_care == Decimal("4200.50")
        assert claim.batch_id is None

    def test_source_left_untouched(self, ledger, facility, rejected):
        ledger.resubmit_claim(facility, rejected.id, "CLM-R1")

        source = ledger.get_claim(facility, rejected.id)
        assert source.status == ClaimStatus.NOT_VERIFIED
        assert source.reason_for_rejection == "Missing invoice"

    def test_only_rejected_claims(self, ledger, facility, make_claim):
        claim = make_claim()

        with pytest.raises(InvalidTransitionError):
            ledger.resubmit_claim(facility, claim.id, "CLM-R1")

    def test_review_fields_not_carried(self, ledger, facility, rejected):
        with pytest.raises(ValidationError):
            ledger.resubmit_claim(facility, rejected.id, "CLM-R1", {"tpa_remarks": "x"})

    def test_new_id_must_be_unique(self, ledger, facility, rejected):
        with pytest.raises(DuplicateReferenceError):
            ledger.resubmit_claim(facility, rejected.id, rejected.unique_claim_id)

    def test_new_id_required(self, ledger, facility, rejected):
        with pytest.raises(MissingFieldError):
            ledger.resubmit_claim(facility, rejected.id, " ")
