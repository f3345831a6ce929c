"""
Table definitions for the NHIS claims core.

Five logical tables: claims, batches, advance_payments, reimbursements and
financial_transactions. Monetary columns are stored as fixed-point decimal
text, never binary floating point. Each batch carries a claimed-by pointer
(reimbursement_id) so that claiming a batch into a reimbursement is a single
conditional write.
"""

from decimal import Decimal

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.types import TypeDecorator

from nhis_claims.utils.money import to_decimal


class DecimalText(TypeDecorator):
    """Decimal stored as its fixed-point text form, e.g. '1250.50'."""

    impl = String(40)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return format(to_decimal(value), "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


metadata = MetaData()


claims = Table(
    "claims",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("unique_claim_id", String(100), nullable=False, unique=True),
    Column("unique_beneficiary_id", String(100), nullable=False, index=True),
    Column("beneficiary_name", String(255), nullable=False),
    Column("facility_id", Integer, nullable=False, index=True),
    Column("tpa_id", Integer, nullable=False, index=True),
    Column("batch_id", Integer, ForeignKey("batches.id"), nullable=True, index=True),
    Column("hospital_number", String(100)),
    Column("date_of_admission", Date),
    Column("date_of_discharge", Date),
    Column("primary_diagnosis", Text),
    Column("secondary_diagnosis", Text),
    Column("treatment_procedure", Text),
    Column("cost_of_investigation", DecimalText, nullable=False, default=Decimal("0")),
    Column("cost_of_procedure", DecimalText, nullable=False, default=Decimal("0")),
    Column("cost_of_medication", DecimalText, nullable=False, default=Decimal("0")),
    Column("cost_of_other_services", DecimalText, nullable=False, default=Decimal("0")),
    Column("total_cost_of_care", DecimalText, nullable=False, default=Decimal("0")),
    Column("approved_cost_of_care", DecimalText),
    Column("status", String(50), nullable=False, index=True),
    Column("decision", String(20), nullable=False),
    Column("reason_for_rejection", Text),
    Column("tpa_remarks", Text),
    Column("decided_at", DateTime),
    Column("decided_by", String(50)),
    Column("payment_reference", String(100)),
    Column("payment_remarks", Text),
    Column("paid_at", DateTime),
    Column("resubmitted_from_id", Integer, ForeignKey("claims.id"), nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("created_by", String(50), nullable=False),
    Column("updated_at", DateTime),
    Column("updated_by", String(50)),
)


batches = Table(
    "batches",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("batch_number", String(100), nullable=False),
    Column("tpa_id", Integer, nullable=False, index=True),
    Column("facility_id", Integer, nullable=True, index=True),
    Column("total_claims", Integer, nullable=False, default=0),
    Column("total_amount", DecimalText, nullable=False, default=Decimal("0")),
    Column("total_approved_amount", DecimalText, nullable=False, default=Decimal("0")),
    Column("status", String(50), nullable=False, index=True),
    Column("submitted_at", DateTime),
    Column("verified_at", DateTime),
    Column("approved_at", DateTime),
    Column("closed_at", DateTime),
    Column("reimbursed_at", DateTime),
    Column("closure_remarks", Text),
    # Claimed-by pointer: set by compare-and-set when a reimbursement takes the batch
    Column("reimbursement_id", Integer, ForeignKey("reimbursements.id"), nullable=True, index=True),
    Column("created_at", DateTime, nullable=False),
    Column("created_by", String(50), nullable=False),
    Column("updated_at", DateTime),
    Column("updated_by", String(50)),
    UniqueConstraint("tpa_id", "batch_number", name="uq_batches_tpa_batch_number"),
)


advance_payments = Table(
    "advance_payments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tpa_id", Integer, nullable=False, index=True),
    Column("amount", DecimalText, nullable=False),
    Column("payment_reference", String(100), nullable=False, unique=True),
    Column("purpose", String(255), nullable=False),
    Column("payment_method", String(50), nullable=False),
    Column("payment_date", Date, nullable=False),
    Column("description", Text),
    Column("status", String(20), nullable=False, index=True),
    Column("receipt_url", Text),
    Column("receipt_file_name", String(255)),
    Column("approved_at", DateTime),
    Column("approved_by", String(50)),
    Column("disbursed_at", DateTime),
    Column("disbursed_by", String(50)),
    Column("reconciled_at", DateTime),
    Column("reconciled_by", String(50)),
    Column("cancelled_at", DateTime),
    Column("cancelled_by", String(50)),
    Column("created_at", DateTime, nullable=False),
    Column("created_by", String(50), nullable=False),
    Column("updated_at", DateTime),
)


reimbursements = Table(
    "reimbursements",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tpa_id", Integer, nullable=False, index=True),
    Column("reference", String(100), nullable=False, unique=True),
    # JSON-encoded ordered list of batch ids
    Column("batch_ids", Text, nullable=False),
    Column("total_claims_amount", DecimalText, nullable=False),
    Column("admin_fee_percentage", DecimalText, nullable=False),
    Column("admin_fee_amount", DecimalText, nullable=False),
    Column("net_reimbursement_amount", DecimalText, nullable=False),
    Column("status", String(20), nullable=False, index=True),
    Column("description", Text),
    Column("completed_at", DateTime),
    Column("completed_by", String(50)),
    Column("cancelled_at", DateTime),
    Column("cancelled_by", String(50)),
    Column("created_at", DateTime, nullable=False),
    Column("created_by", String(50), nullable=False),
    Column("updated_at", DateTime),
)


financial_transactions = Table(
    "financial_transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("transaction_type", String(30), nullable=False),
    Column("reference_type", String(30), nullable=False),
    Column("reference_id", Integer, nullable=False),
    Column("tpa_id", Integer, nullable=False, index=True),
    Column("amount", DecimalText, nullable=False),
    Column("description", Text),
    Column("created_at", DateTime, nullable=False),
    Column("created_by", String(50), nullable=False),
    # One ledger entry per money movement of a given record
    UniqueConstraint("transaction_type", "reference_id", name="uq_financial_transactions_reference"),
)


# Tables in dependency order - parent tables first
TABLE_CREATE_ORDER = [
    "reimbursements",
    "batches",
    "claims",
    "advance_payments",
    "financial_transactions",
]
