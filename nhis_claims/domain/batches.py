"""
Batch domain models for the NHIS claims core.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from nhis_claims.domain.enums import BatchStatus


class BatchCreate(BaseModel):
    """Model for creating a batch."""

    model_config = ConfigDict(extra="forbid")

    batch_number: str = Field(..., min_length=1, max_length=100)
    tpa_id: int
    facility_id: Optional[int] = None


class Batch(BatchCreate):
    """Full batch record. Totals are derived from member claims."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: int

    total_claims: int = 0
    total_amount: Decimal = Decimal("0")
    total_approved_amount: Decimal = Decimal("0")

    status: BatchStatus = BatchStatus.DRAFT
    submitted_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    reimbursed_at: Optional[datetime] = None
    closure_remarks: Optional[str] = None

    reimbursement_id: Optional[int] = None

    created_at: datetime
    created_by: str
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


class BatchTotals(BaseModel):
    """Aggregates recomputed from a batch's current members."""

    total_claims: int
    total_amount: Decimal
    total_approved_amount: Decimal


class RejectionReasonSummary(BaseModel):
    """Count and amount of rejected claims sharing one reason."""

    reason: str
    count: int
    amount: Decimal


class BatchClosureReport(BaseModel):
    """
    Review summary for a batch, used when closing it and when notifying
    the insurer and TPA.
    """

    batch_id: int
    batch_number: str
    tpa_id: int
    facility_id: Optional[int] = None
    status: BatchStatus

    total_claims: int
    total_amount: Decimal
    approved_claims: int
    approved_amount: Decimal
    rejected_claims: int
    rejected_amount: Decimal
    pending_claims: int
    pending_amount: Decimal

    rejection_reasons: list[RejectionReasonSummary] = Field(default_factory=list)
    closure_remarks: Optional[str] = None
    closed_at: Optional[datetime] = None
    report_generated_at: datetime = Field(default_factory=datetime.now)

    @property
    def fully_decided(self) -> bool:
        """True when no member claim is still waiting for a decision."""
        return self.pending_claims == 0
