"""
Domain models for the NHIS claims core.

Pydantic models and enums representing claims, batches, payments and the
acting principal, plus the error taxonomy.
"""

from nhis_claims.domain.enums import (
    ActorRole,
    ClaimStatus,
    ClaimDecision,
    ClaimAction,
    ClaimFieldGroup,
    BatchStatus,
    BatchAction,
    AdvancePaymentStatus,
    AdvancePaymentAction,
    ReimbursementStatus,
    ReimbursementAction,
    TransactionType,
    Permission,
)
from nhis_claims.domain.principal import Principal
from nhis_claims.domain.claims import ClaimCreate, ClaimUpdate, Claim
from nhis_claims.domain.batches import (
    BatchCreate,
    Batch,
    BatchTotals,
    BatchClosureReport,
    RejectionReasonSummary,
)
from nhis_claims.domain.finance import (
    AdvancePaymentCreate,
    AdvancePayment,
    ReimbursementRequest,
    Reimbursement,
    FinancialTransaction,
    BulkReimbursementOutcome,
    BulkReimbursementResult,
    TpaEligibleSummary,
    StatusTotals,
    FinancialSummary,
)
from nhis_claims.domain.errors import (
    ClaimsCoreError,
    ValidationError,
    MissingFieldError,
    NotFoundError,
    InvalidTransitionError,
    InvalidStateError,
    AccessDeniedError,
    DuplicateReferenceError,
    DuplicateBatchNumberError,
    BatchAlreadyReimbursedError,
    EmptyBatchError,
    InternalError,
)

__all__ = [
    # Enums
    "ActorRole",
    "ClaimStatus",
    "ClaimDecision",
    "ClaimAction",
    "ClaimFieldGroup",
    "BatchStatus",
    "BatchAction",
    "AdvancePaymentStatus",
    "AdvancePaymentAction",
    "ReimbursementStatus",
    "ReimbursementAction",
    "TransactionType",
    "Permission",
    # Principal
    "Principal",
    # Claims
    "ClaimCreate",
    "ClaimUpdate",
    "Claim",
    # Batches
    "BatchCreate",
    "Batch",
    "BatchTotals",
    "BatchClosureReport",
    "RejectionReasonSummary",
    # Finance
    "AdvancePaymentCreate",
    "AdvancePayment",
    "ReimbursementRequest",
    "Reimbursement",
    "FinancialTransaction",
    "BulkReimbursementOutcome",
    "BulkReimbursementResult",
    "TpaEligibleSummary",
    "StatusTotals",
    "FinancialSummary",
    # Errors
    "ClaimsCoreError",
    "ValidationError",
    "MissingFieldError",
    "NotFoundError",
    "InvalidTransitionError",
    "InvalidStateError",
    "AccessDeniedError",
    "DuplicateReferenceError",
    "DuplicateBatchNumberError",
    "BatchAlreadyReimbursedError",
    "EmptyBatchError",
    "InternalError",
]
