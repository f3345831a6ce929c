"""
Core components of the NHIS claims core.

Provides:
- Claim ledger (claim lifecycle and decisions)
- Batch aggregator (batch membership, totals and status)
- Financial reconciliation engine (advance payments and reimbursements)
- Access policy guard and transition tables
"""

from nhis_claims.core.access import AccessDecision, can_transition, require
from nhis_claims.core.batches import BatchAggregator
from nhis_claims.core.ledger import ClaimLedger
from nhis_claims.core.reconciliation import ReconciliationEngine
from nhis_claims.core.transitions import (
    ADVANCE_PAYMENT_TRANSITIONS,
    BATCH_TRANSITIONS,
    CLAIM_TRANSITIONS,
    ELIGIBLE_BATCH_STATUSES,
    REIMBURSEMENT_TRANSITIONS,
    TransitionTable,
)

__all__ = [
    "AccessDecision",
    "can_transition",
    "require",
    "BatchAggregator",
    "ClaimLedger",
    "ReconciliationEngine",
    "ADVANCE_PAYMENT_TRANSITIONS",
    "BATCH_TRANSITIONS",
    "CLAIM_TRANSITIONS",
    "ELIGIBLE_BATCH_STATUSES",
    "REIMBURSEMENT_TRANSITIONS",
    "TransitionTable",
]
