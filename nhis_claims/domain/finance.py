"""
Financial domain models: advance payments, reimbursements and the
append-only transaction ledger.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from nhis_claims.domain.enums import (
    AdvancePaymentStatus,
    ReimbursementStatus,
    TransactionType,
)


class AdvancePaymentCreate(BaseModel):
    """Model for recording an advance payment to a TPA."""

    model_config = ConfigDict(extra="forbid")

    tpa_id: int
    amount: Decimal = Field(..., gt=0)
    payment_reference: str = Field(..., min_length=1, max_length=100)
    purpose: str = Field(..., min_length=1, max_length=255)
    payment_method: str = Field(default="bank_transfer", max_length=50)
    payment_date: date = Field(default_factory=date.today)
    description: Optional[str] = None


class AdvancePayment(AdvancePaymentCreate):
    """Full advance payment record with lifecycle stamps."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: int
    status: AdvancePaymentStatus = AdvancePaymentStatus.PENDING

    receipt_url: Optional[str] = None
    receipt_file_name: Optional[str] = None

    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    disbursed_at: Optional[datetime] = None
    disbursed_by: Optional[str] = None
    reconciled_at: Optional[datetime] = None
    reconciled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None

    created_at: datetime
    created_by: str
    updated_at: Optional[datetime] = None


class ReimbursementRequest(BaseModel):
    """One TPA's share of a reimbursement run."""

    model_config = ConfigDict(extra="forbid")

    tpa_id: int
    batch_ids: list[int] = Field(..., min_length=1)
    admin_fee_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100)

    @field_validator("batch_ids")
    @classmethod
    def unique_batch_ids(cls, v: list[int]) -> list[int]:
        """Drop repeated ids, keeping first-seen order."""
        return list(dict.fromkeys(v))


class Reimbursement(BaseModel):
    """Settlement of a set of closed batches for one TPA."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    tpa_id: int
    reference: str
    batch_ids: list[int]

    total_claims_amount: Decimal
    admin_fee_percentage: Decimal
    admin_fee_amount: Decimal
    net_reimbursement_amount: Decimal

    status: ReimbursementStatus = ReimbursementStatus.PENDING
    description: Optional[str] = None

    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None

    created_at: datetime
    created_by: str
    updated_at: Optional[datetime] = None


class FinancialTransaction(BaseModel):
    """Immutable record of a money movement."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    transaction_type: TransactionType
    reference_type: str
    reference_id: int
    tpa_id: int
    amount: Decimal
    description: Optional[str] = None
    created_at: datetime
    created_by: str


class BulkReimbursementOutcome(BaseModel):
    """Result of one TPA's share of a bulk reimbursement run."""

    tpa_id: int
    reference: str
    succeeded: bool
    reimbursement: Optional[Reimbursement] = None
    error_type: Optional[str] = None
    error: Optional[str] = None


class BulkReimbursementResult(BaseModel):
    """Per-TPA outcomes of bulk_reimburse. Skipped TPAs are listed separately."""

    outcomes: list[BulkReimbursementOutcome] = Field(default_factory=list)
    skipped_tpa_ids: list[int] = Field(default_factory=list)

    @property
    def created(self) -> list[Reimbursement]:
        return [o.reimbursement for o in self.outcomes if o.succeeded and o.reimbursement]

    @property
    def total_net_amount(self) -> Decimal:
        return sum((r.net_reimbursement_amount for r in self.created), Decimal("0"))


class TpaEligibleSummary(BaseModel):
    """Eligible batches for one TPA, grouped for reimbursement planning."""

    tpa_id: int
    batch_ids: list[int]
    total_batches: int
    total_claims: int
    total_amount: Decimal


class StatusTotals(BaseModel):
    """Count and amount of records in one status."""

    count: int = 0
    amount: Decimal = Decimal("0")


class FinancialSummary(BaseModel):
    """Headline figures for the insurer's financial overview."""

    advance_payments: dict[str, StatusTotals] = Field(default_factory=dict)
    reimbursements: dict[str, StatusTotals] = Field(default_factory=dict)
    transactions_count: int = 0
    transactions_amount: Decimal = Decimal("0")
    eligible_batches: int = 0
    eligible_amount: Decimal = Decimal("0")
