"""
Unit tests for the batch aggregator.
"""

from decimal import Decimal

import pytest

from nhis_claims.domain.enums import BatchStatus, ClaimDecision, ClaimStatus
from nhis_claims.domain.errors import (
    AccessDeniedError,
    DuplicateBatchNumberError,
    EmptyBatchError,
    InvalidTransitionError,
    ValidationError,
)


TPA_ID = 7
OTHER_TPA_ID = 8
FACILITY_ID = 100


class TestCreateBatch:
    """Tests for batch creation."""

    def test_facility_defaults_to_own_facility(self, aggregator, facility):
        batch = aggregator.create_batch(facility, tpa_id=TPA_ID, batch_number="B-2024-01")

        assert batch.facility_id == FACILITY_ID
        assert batch.status == BatchStatus.DRAFT
        assert batch.total_claims == 0
        assert batch.total_amount == Decimal("0")

    def test_duplicate_number_per_tpa(self, aggregator, facility, insurer):
        aggregator.create_batch(facility, tpa_id=TPA_ID, batch_number="B-1")

        with pytest.raises(DuplicateBatchNumberError):
            aggregator.create_batch(facility, tpa_id=TPA_ID, batch_number="B-1")

        # The same number under another TPA is fine
        other = aggregator.create_batch(insurer, tpa_id=OTHER_TPA_ID, batch_number="B-1")
        assert other.tpa_id == OTHER_TPA_ID

    def test_facility_cannot_batch_for_other_tpa(self, aggregator, facility):
        with pytest.raises(AccessDeniedError):
            aggregator.create_batch(facility, tpa_id=OTHER_TPA_ID, batch_number="B-1")


class TestMembership:
    """Tests for adding and removing claims."""

    def test_totals_follow_membership(self, aggregator, facility, make_claim):
        batch = aggregator.create_batch(facility, tpa_id=TPA_ID, batch_number="B-1")
        first, second = make_claim(), make_claim()

        batch = aggregator.add_claims(facility, batch.id, [first.id, second.id])
        assert batch.total_claims == 2
        assert batch.total_amount == Decimal("8501.00")

        batch = aggregator.remove_claims(facility, batch.id, [first.id])
        assert batch.total_claims == 1
        assert batch.total_amount == Decimal("4250.50")

    def test_re_adding_a_member_is_a_no_op(self, aggregator, facility, make_batch):
        batch = make_batch([Decimal("100")])
        member = aggregator.list_batch_claims(facility, batch.id)[0]

        again = aggregator.add_claims(facility, batch.id, [member.id, member.id])

        assert again.total_claims == 1
        assert again.total_amount == Decimal("100.00")

    def test_claim_in_another_batch(self, aggregator, facility, make_batch):
        first = make_batch([Decimal("100")])
        member = aggregator.list_batch_claims(facility, first.id)[0]
        second = aggregator.create_batch(facility, tpa_id=TPA_ID, batch_number="B-OTHER")

        with pytest.raises(ValidationError, match="already in batch"):
            aggregator.add_claims(facility, second.id, [member.id])

    def test_claim_from_other_facility(self, aggregator, tpa, other_facility, make_claim):
        batch = aggregator.create_batch(tpa, tpa_id=TPA_ID, batch_number="B-1", facility_id=FACILITY_ID)
        stranger = make_claim(actor=other_facility, facility_id=101)

        with pytest.raises(ValidationError, match="another facility"):
            aggregator.add_claims(tpa, batch.id, [stranger.id])

    def test_only_draft_claims(self, aggregator, ledger, facility, make_claim):
        batch = aggregator.create_batch(facility, tpa_id=TPA_ID, batch_number="B-1")
        claim = make_claim()
        ledger.submit_claim(facility, claim.id)

        with pytest.raises(ValidationError, match="only draft claims"):
            aggregator.add_claims(facility, batch.id, [claim.id])

    def test_remove_non_member(self, aggregator, facility, make_batch, make_claim):
        batch = make_batch([Decimal("100")])
        loose = make_claim()

        with pytest.raises(ValidationError):
            aggregator.remove_claims(facility, batch.id, [loose.id])

    def test_empty_claim_list(self, aggregator, facility, make_batch):
        batch = make_batch([])

        with pytest.raises(ValidationError):
            aggregator.add_claims(facility, batch.id, [])

    def test_membership_frozen_after_submit(self, aggregator, facility, tpa, make_batch, make_claim):
        batch = make_batch([Decimal("100"), Decimal("250")])
        aggregator.submit(facility, batch.id)
        extra = make_claim()

        with pytest.raises(InvalidTransitionError):
            aggregator.add_claims(tpa, batch.id, [extra.id])

        unchanged = aggregator.get_batch(tpa, batch.id)
        assert unchanged.total_claims == 2
        assert unchanged.total_amount == Decimal("350.00")

    def test_facility_loses_batch_after_submit(self, aggregator, facility, make_batch, make_claim):
        batch = make_batch([Decimal("100")])
        aggregator.submit(facility, batch.id)

        with pytest.raises(AccessDeniedError):
            aggregator.add_claims(facility, batch.id, [make_claim().id])

    def test_recalculate_is_idempotent(self, aggregator, facility, make_batch):
        batch = make_batch([Decimal("10.10"), Decimal("20.20")])

        first = aggregator.recalculate(batch.id)
        second = aggregator.recalculate(batch.id, actor=facility)

        assert first.total_amount == second.total_amount == Decimal("30.30")
        assert first.total_claims == second.total_claims == 2


class TestBatchTransitions:
    """Tests for submit, close, verify and approve."""

    def test_submit_moves_draft_claims(self, aggregator, facility, make_batch):
        batch = make_batch([Decimal("100"), Decimal("200")])

        submitted = aggregator.submit(facility, batch.id)

        assert submitted.status == BatchStatus.SUBMITTED
        assert submitted.submitted_at is not None
        assert submitted.total_amount == Decimal("300.00")
        assert all(c.status == ClaimStatus.SUBMITTED for c in aggregator.list_batch_claims(facility, batch.id))

    def test_empty_batch_cannot_be_submitted(self, aggregator, facility, make_batch):
        batch = make_batch([])

        with pytest.raises(EmptyBatchError):
            aggregator.submit(facility, batch.id)

    def test_close_with_remarks(self, closed_batch):
        batch = closed_batch([Decimal("100")])

        assert batch.status == BatchStatus.CLOSED
        assert batch.closure_remarks == "Reviewed"
        assert batch.closed_at is not None

    def test_draft_cannot_be_closed(self, aggregator, tpa, make_batch):
        batch = make_batch([Decimal("100")])

        with pytest.raises(InvalidTransitionError):
            aggregator.close(tpa, batch.id)

    def test_insurer_verifies_then_approves(self, aggregator, facility, insurer, make_batch):
        batch = make_batch([Decimal("100")])
        aggregator.submit(facility, batch.id)

        verified = aggregator.verify_batch(insurer, batch.id)
        approved = aggregator.approve_batch(insurer, batch.id, remarks="OK")

        assert verified.status == BatchStatus.VERIFIED
        assert approved.status == BatchStatus.APPROVED
        assert approved.approved_at is not None

    def test_tpa_cannot_verify(self, aggregator, facility, tpa, make_batch):
        batch = make_batch([Decimal("100")])
        aggregator.submit(facility, batch.id)

        with pytest.raises(AccessDeniedError):
            aggregator.verify_batch(tpa, batch.id)

    def test_other_tpa_cannot_close(self, aggregator, facility, other_tpa, make_batch):
        batch = make_batch([Decimal("100")])
        aggregator.submit(facility, batch.id)

        with pytest.raises(AccessDeniedError):
            aggregator.close(other_tpa, batch.id)


class TestDeleteBatch:
    """Tests for batch deletion."""

    def test_delete_releases_claims(self, aggregator, ledger, facility, make_batch):
        batch = make_batch([Decimal("100"), Decimal("200")])
        member_ids = [c.id for c in aggregator.list_batch_claims(facility, batch.id)]

        aggregator.delete_batch(facility, batch.id)

        for claim_id in member_ids:
            claim = ledger.get_claim(facility, claim_id)
            assert claim.batch_id is None
            assert claim.status == ClaimStatus.DRAFT

    def test_submitted_batch_cannot_be_deleted(self, aggregator, facility, tpa, make_batch):
        batch = make_batch([Decimal("100")])
        aggregator.submit(facility, batch.id)

        with pytest.raises(InvalidTransitionError):
            aggregator.delete_batch(tpa, batch.id)


class TestReads:
    """Tests for scoped reads and the closure report."""

    def test_list_batches_scoped_to_tpa(self, aggregator, tpa, other_tpa, insurer, make_batch):
        make_batch([Decimal("100")])
        make_batch([Decimal("100")], tpa_id=OTHER_TPA_ID, actor=insurer)

        assert {b.tpa_id for b in aggregator.list_batches(tpa)} == {TPA_ID}
        assert {b.tpa_id for b in aggregator.list_batches(other_tpa)} == {OTHER_TPA_ID}
        assert len(aggregator.list_batches(insurer)) == 2

    def test_list_batches_by_status(self, aggregator, facility, insurer, make_batch):
        submitted = make_batch([Decimal("100")])
        aggregator.submit(facility, submitted.id)
        make_batch([Decimal("200")])

        assert [b.id for b in aggregator.list_batches(insurer, BatchStatus.SUBMITTED)] == [submitted.id]

    def test_other_tpa_cannot_read(self, aggregator, other_tpa, make_batch):
        batch = make_batch([Decimal("100")])

        with pytest.raises(AccessDeniedError):
            aggregator.get_batch(other_tpa, batch.id)

    def test_closure_report(self, aggregator, ledger, facility, tpa, make_batch):
        batch = make_batch([Decimal("100"), Decimal("200"), Decimal("300"), Decimal("400")])
        aggregator.submit(facility, batch.id)
        a, b, c, _ = aggregator.list_batch_claims(tpa, batch.id)
        ledger.decide(tpa, a.id, ClaimDecision.APPROVED, approved_amount=Decimal("90"))
        ledger.decide(tpa, b.id, ClaimDecision.REJECTED, reason="Not covered")
        ledger.decide(tpa, c.id, ClaimDecision.REJECTED, reason="Not covered")
        aggregator.close(tpa, batch.id, remarks="Partially reviewed")

        report = aggregator.batch_closure_report(tpa, batch.id)

        assert report.total_claims == 4
        assert report.total_amount == Decimal("1000.00")
        assert report.approved_claims == 1
        assert report.approved_amount == Decimal("90.00")
        assert report.rejected_claims == 2
        assert report.rejected_amount == Decimal("500.00")
        assert report.pending_claims == 1
        assert report.pending_amount == Decimal("400.00")
        assert not report.fully_decided
        assert [(r.reason, r.count) for r in report.rejection_reasons] == [("Not covered", 2)]
        assert report.closure_remarks == "Partially reviewed"
