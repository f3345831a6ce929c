"""
Enumeration types for NHIS claims core domain models.
"""

from enum import Enum


class ActorRole(str, Enum):
    """Role of the acting principal."""
    FACILITY = "facility"
    TPA = "tpa"
    INSURER = "nhis_admin"


class ClaimStatus(str, Enum):
    """
    Claim processing status.

    draft -> submitted -> awaiting_verification -> verified
    -> verified_awaiting_payment -> verified_paid, with not_verified as the
    terminal rejection branch.
    """
    DRAFT = "draft"
    SUBMITTED = "submitted"
    AWAITING_VERIFICATION = "awaiting_verification"
    VERIFIED = "verified"
    VERIFIED_AWAITING_PAYMENT = "verified_awaiting_payment"
    VERIFIED_PAID = "verified_paid"
    NOT_VERIFIED = "not_verified"


class ClaimDecision(str, Enum):
    """TPA judgment on a claim, separate from the data-quality status."""
    UNSET = "unset"
    APPROVED = "approved"
    REJECTED = "rejected"


class ClaimAction(str, Enum):
    """Actions that move a claim through its status machine."""
    SUBMIT = "submit"
    BEGIN_REVIEW = "begin_review"
    VERIFY = "verify"
    APPROVE = "approve"
    REJECT = "reject"
    MARK_PAID = "mark_paid"
    RESUBMIT = "resubmit"


class BatchStatus(str, Enum):
    """Batch processing status."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    CLOSED = "closed"
    APPROVED = "approved"
    REIMBURSED = "reimbursed"


class BatchAction(str, Enum):
    """Actions that move a batch through its status machine."""
    EDIT_MEMBERSHIP = "edit_membership"
    SUBMIT = "submit"
    VERIFY = "verify"
    APPROVE = "approve"
    CLOSE = "close"
    REIMBURSE = "reimburse"
    DELETE = "delete"


class AdvancePaymentStatus(str, Enum):
    """Advance payment status."""
    PENDING = "pending"
    APPROVED = "approved"
    DISBURSED = "disbursed"
    RECONCILED = "reconciled"
    CANCELLED = "cancelled"


class AdvancePaymentAction(str, Enum):
    """Actions on an advance payment."""
    APPROVE = "approve"
    DISBURSE = "disburse"
    RECONCILE = "reconcile"
    CANCEL = "cancel"
    ATTACH_RECEIPT = "attach_receipt"


class ReimbursementStatus(str, Enum):
    """Reimbursement status."""
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReimbursementAction(str, Enum):
    """Actions on a reimbursement."""
    COMPLETE = "complete"
    CANCEL = "cancel"


class TransactionType(str, Enum):
    """Kind of money movement recorded in the financial ledger."""
    ADVANCE_PAYMENT = "advance_payment"
    REIMBURSEMENT = "reimbursement"


class ClaimFieldGroup(str, Enum):
    """Groups of claim fields, each owned by one role at a time."""
    FACILITY = "facility"
    REVIEW = "review"
    PAYMENT = "payment"


class Permission(str, Enum):
    """Operations checked by the access policy guard."""
    # Claims
    CREATE_CLAIM = "create_claim"
    EDIT_CLAIM = "edit_claim"
    DELETE_CLAIM = "delete_claim"
    SUBMIT_CLAIM = "submit_claim"
    REVIEW_CLAIM = "review_claim"
    DECIDE_CLAIM = "decide_claim"
    MARK_CLAIM_PAID = "mark_claim_paid"
    RESUBMIT_CLAIM = "resubmit_claim"
    VIEW_CLAIM = "view_claim"

    # Batches
    CREATE_BATCH = "create_batch"
    EDIT_BATCH_MEMBERSHIP = "edit_batch_membership"
    SUBMIT_BATCH = "submit_batch"
    DELETE_BATCH = "delete_batch"
    VERIFY_BATCH = "verify_batch"
    APPROVE_BATCH = "approve_batch"
    CLOSE_BATCH = "close_batch"
    VIEW_BATCH = "view_batch"

    # Finance
    MANAGE_ADVANCE_PAYMENT = "manage_advance_payment"
    RUN_RECONCILIATION = "run_reconciliation"
    VIEW_FINANCE = "view_finance"
