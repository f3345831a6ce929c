"""
Claim domain models for the NHIS claims core.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from nhis_claims.domain.enums import ClaimDecision, ClaimFieldGroup, ClaimStatus


COST_FIELDS = (
    "cost_of_investigation",
    "cost_of_procedure",
    "cost_of_medication",
    "cost_of_other_services",
)

# Editable fields per owning role. Decision fields are only set through decide().
CLAIM_FIELD_GROUPS: dict[ClaimFieldGroup, frozenset[str]] = {
    ClaimFieldGroup.FACILITY: frozenset({
        "unique_beneficiary_id",
        "beneficiary_name",
        "hospital_number",
        "date_of_admission",
        "date_of_discharge",
        "primary_diagnosis",
        "secondary_diagnosis",
        "treatment_procedure",
        *COST_FIELDS,
    }),
    ClaimFieldGroup.REVIEW: frozenset({"tpa_remarks"}),
    ClaimFieldGroup.PAYMENT: frozenset({"payment_reference", "payment_remarks"}),
}

DECIDED_STATUSES = frozenset({
    ClaimStatus.VERIFIED_AWAITING_PAYMENT,
    ClaimStatus.VERIFIED_PAID,
})


def field_group_of(field: str) -> ClaimFieldGroup | None:
    """Return the group that owns a claim field, or None if it is not editable."""
    for group, fields in CLAIM_FIELD_GROUPS.items():
        if field in fields:
            return group
    return None


def total_cost(values: dict) -> Decimal:
    """Sum the itemized cost components of a claim."""
    return sum((Decimal(values.get(f) or 0) for f in COST_FIELDS), Decimal("0"))


class ClaimCreate(BaseModel):
    """Model for creating a claim. Cost components must be numeric and non-negative."""

    model_config = ConfigDict(extra="forbid")

    unique_claim_id: str = Field(..., min_length=1, max_length=100)
    unique_beneficiary_id: str = Field(..., min_length=1, max_length=100)
    beneficiary_name: str = Field(..., min_length=1, max_length=255)

    facility_id: int
    tpa_id: int

    hospital_number: Optional[str] = Field(None, max_length=100)
    date_of_admission: Optional[date] = None
    date_of_discharge: Optional[date] = None
    primary_diagnosis: Optional[str] = None
    secondary_diagnosis: Optional[str] = None
    treatment_procedure: Optional[str] = None

    cost_of_investigation: Optional[Decimal] = Field(None, ge=0)
    cost_of_procedure: Optional[Decimal] = Field(None, ge=0)
    cost_of_medication: Optional[Decimal] = Field(None, ge=0)
    cost_of_other_services: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode="after")
    def has_cost_and_valid_dates(self) -> "ClaimCreate":
        """Require at least one cost component and a sane admission window."""
        if all(getattr(self, f) is None for f in COST_FIELDS):
            raise ValueError("at least one cost component is required")
        if (
            self.date_of_admission is not None
            and self.date_of_discharge is not None
            and self.date_of_discharge < self.date_of_admission
        ):
            raise ValueError("date_of_discharge must not precede date_of_admission")
        return self

    @property
    def total_cost_of_care(self) -> Decimal:
        return total_cost(self.model_dump())


class ClaimUpdate(BaseModel):
    """Patch for an existing claim. Only fields that were set are applied."""

    model_config = ConfigDict(extra="forbid")

    unique_beneficiary_id: Optional[str] = Field(None, min_length=1, max_length=100)
    beneficiary_name: Optional[str] = Field(None, min_length=1, max_length=255)
    hospital_number: Optional[str] = Field(None, max_length=100)
    date_of_admission: Optional[date] = None
    date_of_discharge: Optional[date] = None
    primary_diagnosis: Optional[str] = None
    secondary_diagnosis: Optional[str] = None
    treatment_procedure: Optional[str] = None

    cost_of_investigation: Optional[Decimal] = Field(None, ge=0)
    cost_of_procedure: Optional[Decimal] = Field(None, ge=0)
    cost_of_medication: Optional[Decimal] = Field(None, ge=0)
    cost_of_other_services: Optional[Decimal] = Field(None, ge=0)

    tpa_remarks: Optional[str] = None

    payment_reference: Optional[str] = Field(None, max_length=100)
    payment_remarks: Optional[str] = None

    def changes(self) -> dict:
        """Fields explicitly supplied by the caller."""
        return self.model_dump(exclude_unset=True)


class Claim(BaseModel):
    """
    Full claim record.

    The status/decision pair is kept in one canonical composite state:
    an approved decision lives only in the payment statuses with an approved
    amount, a rejected decision lives only in not_verified with a reason, and
    an unset decision never carries either.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    unique_claim_id: str
    unique_beneficiary_id: str
    beneficiary_name: str

    facility_id: int
    tpa_id: int
    batch_id: Optional[int] = None

    hospital_number: Optional[str] = None
    date_of_admission: Optional[date] = None
    date_of_discharge: Optional[date] = None
    primary_diagnosis: Optional[str] = None
    secondary_diagnosis: Optional[str] = None
    treatment_procedure: Optional[str] = None

    cost_of_investigation: Decimal = Decimal("0")
    cost_of_procedure: Decimal = Decimal("0")
    cost_of_medication: Decimal = Decimal("0")
    cost_of_other_services: Decimal = Decimal("0")
    total_cost_of_care: Decimal = Decimal("0")
    approved_cost_of_care: Optional[Decimal] = None

    status: ClaimStatus = ClaimStatus.DRAFT
    decision: ClaimDecision = ClaimDecision.UNSET
    reason_for_rejection: Optional[str] = None
    tpa_remarks: Optional[str] = None
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None

    payment_reference: Optional[str] = None
    payment_remarks: Optional[str] = None
    paid_at: Optional[datetime] = None

    resubmitted_from_id: Optional[int] = None

    created_at: datetime
    created_by: str
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    @field_validator("decision", mode="before")
    @classmethod
    def normalize_decision(cls, v):
        """Legacy rows store an undecided claim as NULL, '' or 'pending'."""
        if v is None or v == "" or v == "pending":
            return ClaimDecision.UNSET
        return v

    @model_validator(mode="after")
    def canonical_state(self) -> "Claim":
        """Reject ambiguous status/decision combinations."""
        if self.decision == ClaimDecision.APPROVED:
            if self.approved_cost_of_care is None:
                raise ValueError("approved claims require approved_cost_of_care")
            if self.status not in DECIDED_STATUSES:
                raise ValueError(f"approved claim cannot be in status {self.status.value}")
            if self.reason_for_rejection:
                raise ValueError("approved claims cannot carry a rejection reason")
        elif self.decision == ClaimDecision.REJECTED:
            if not self.reason_for_rejection:
                raise ValueError("rejected claims require reason_for_rejection")
            if self.status != ClaimStatus.NOT_VERIFIED:
                raise ValueError(f"rejected claim cannot be in status {self.status.value}")
            if self.approved_cost_of_care is not None:
                raise ValueError("rejected claims cannot carry an approved amount")
        else:
            if self.status in DECIDED_STATUSES or self.status == ClaimStatus.NOT_VERIFIED:
                raise ValueError(f"status {self.status.value} requires a decision")
            if self.approved_cost_of_care is not None or self.reason_for_rejection:
                raise ValueError("undecided claims cannot carry decision fields")
        if self.status == ClaimStatus.VERIFIED_PAID and self.paid_at is None:
            raise ValueError("paid claims require paid_at")
        return self
