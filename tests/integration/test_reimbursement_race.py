"""
Integration tests for concurrent reimbursement runs.

Each worker uses its own pooled connection against the same SQLite file, so
the conditional batch claim is exercised across real transactions.
"""

import threading
from decimal import Decimal

import pytest

from nhis_claims.domain.enums import BatchStatus, ReimbursementStatus
from nhis_claims.domain.errors import (
    BatchAlreadyReimbursedError,
    ClaimsCoreError,
    InvalidStateError,
)


TPA_ID = 7


def _run_concurrently(*calls):
    """Start all calls behind a barrier and collect (result, error) per call."""
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(index, call):
        barrier.wait()
        try:
            outcomes[index] = (call(), None)
        except ClaimsCoreError as e:
            outcomes[index] = (None, e)

    threads = [threading.Thread(target=worker, args=(i, c)) for i, c in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


class TestReimbursementRace:
    """Two runs racing for the same batch."""

    @pytest.mark.parametrize("attempt", range(3))
    def test_exactly_one_reimbursement_wins(self, reconciliation, insurer, closed_batch, attempt):
        """Should let one run claim the batch and fail the other."""
        batch = closed_batch([Decimal("1200"), Decimal("800")])

        outcomes = _run_concurrently(
            lambda: reconciliation.compute_reimbursement(insurer, TPA_ID, [batch.id], reference=f"RACE-{attempt}-A"),
            lambda: reconciliation.compute_reimbursement(insurer, TPA_ID, [batch.id], reference=f"RACE-{attempt}-B"),
        )

        winners = [result for result, error in outcomes if error is None]
        losers = [error for result, error in outcomes if error is not None]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], BatchAlreadyReimbursedError)
        assert losers[0].batch_ids == [batch.id]

        stored = reconciliation.list_reimbursements(insurer)
        assert [r.id for r in stored] == [winners[0].id]
        assert winners[0].total_claims_amount == Decimal("2000.00")

    def test_overlapping_batch_sets(self, reconciliation, insurer, closed_batch):
        """Should fail the whole losing run when only one of its batches overlaps."""
        shared = closed_batch([Decimal("100")])
        left = closed_batch([Decimal("200")])
        right = closed_batch([Decimal("300")])

        outcomes = _run_concurrently(
            lambda: reconciliation.compute_reimbursement(insurer, TPA_ID, [left.id, shared.id], reference="L"),
            lambda: reconciliation.compute_reimbursement(insurer, TPA_ID, [right.id, shared.id], reference="R"),
        )

        winners = [result for result, error in outcomes if error is None]
        assert len(winners) == 1
        assert sum(isinstance(error, BatchAlreadyReimbursedError) for _, error in outcomes) == 1

        # The loser's other batch stays eligible
        loser_batch = right.id if winners[0].reference == "L" else left.id
        assert loser_batch in {b.id for b in reconciliation.list_eligible_batches(insurer)}

    def test_concurrent_completion(self, reconciliation, aggregator, insurer, closed_batch):
        """Should settle a reimbursement once and write one transaction."""
        batch = closed_batch([Decimal("500")])
        pending = reconciliation.compute_reimbursement(insurer, TPA_ID, [batch.id], reference="RMB-C")

        outcomes = _run_concurrently(
            lambda: reconciliation.complete_reimbursement(insurer, pending.id),
            lambda: reconciliation.complete_reimbursement(insurer, pending.id),
        )

        errors = [error for _, error in outcomes if error is not None]
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidStateError)

        assert reconciliation.get_reimbursement(insurer, pending.id).status == ReimbursementStatus.COMPLETED
        assert aggregator.get_batch(insurer, batch.id).status == BatchStatus.REIMBURSED
        assert len(reconciliation.list_transactions(insurer, reference_type="reimbursement")) == 1
