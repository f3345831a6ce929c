"""
Row access for the NHIS claims core.

Thin functions over SQLAlchemy Core that translate rows to domain models.
Every function takes an open Connection so callers control the transaction.
Status updates are compare-and-set: they only apply when the row is still in
one of the expected statuses, and report whether they applied.
"""

import json
from typing import Any, Iterable, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import Table, func, insert, select, update
from sqlalchemy.engine import Connection

from nhis_claims.db.schema import (
    advance_payments,
    batches,
    claims,
    financial_transactions,
    reimbursements,
)
from nhis_claims.domain.batches import Batch
from nhis_claims.domain.claims import Claim
from nhis_claims.domain.errors import NotFoundError, ValidationError
from nhis_claims.domain.finance import AdvancePayment, FinancialTransaction, Reimbursement


def _value(v: Any) -> Any:
    """Unwrap enums so they bind as plain strings."""
    return getattr(v, "value", v)


def _values(values: dict[str, Any]) -> dict[str, Any]:
    return {k: _value(v) for k, v in values.items()}


def _to_model(model, row, label: str):
    try:
        return model.model_validate(dict(row._mapping))
    except PydanticValidationError as e:
        raise ValidationError(
            f"Stored {label} {row._mapping.get('id')} is in an inconsistent state: {e}",
            record_id=row._mapping.get("id"),
        ) from e


def _get(conn: Connection, table: Table, record_id: int, for_update: bool):
    stmt = select(table).where(table.c.id == record_id)
    if for_update:
        stmt = stmt.with_for_update()
    return conn.execute(stmt).first()


def _insert(conn: Connection, table: Table, values: dict[str, Any]) -> int:
    result = conn.execute(insert(table).values(**_values(values)))
    return result.inserted_primary_key[0]


def _compare_and_set(
    conn: Connection,
    table: Table,
    record_id: int,
    values: dict[str, Any],
    expected_statuses: Optional[Iterable[Any]] = None,
) -> bool:
    stmt = update(table).where(table.c.id == record_id)
    if expected_statuses is not None:
        stmt = stmt.where(table.c.status.in_([_value(s) for s in expected_statuses]))
    result = conn.execute(stmt.values(**_values(values)))
    return result.rowcount == 1


# =============================================================================
# Claims
# =============================================================================


def get_claim(conn: Connection, claim_id: int, for_update: bool = False) -> Claim:
    row = _get(conn, claims, claim_id, for_update)
    if row is None:
        raise NotFoundError(f"Claim {claim_id} not found", claim_id=claim_id)
    return _to_model(Claim, row, "claim")


def get_claims(conn: Connection, claim_ids: Sequence[int], for_update: bool = False) -> list[Claim]:
    """Load claims by id, raising NotFoundError for any missing id."""
    if not claim_ids:
        return []
    stmt = select(claims).where(claims.c.id.in_(list(claim_ids))).order_by(claims.c.id)
    if for_update:
        stmt = stmt.with_for_update()
    found = [_to_model(Claim, row, "claim") for row in conn.execute(stmt)]
    missing = set(claim_ids) - {c.id for c in found}
    if missing:
        raise NotFoundError(
            f"Claims not found: {', '.join(str(i) for i in sorted(missing))}",
            claim_ids=sorted(missing),
        )
    return found


def claim_exists(conn: Connection, unique_claim_id: str) -> bool:
    stmt = select(claims.c.id).where(claims.c.unique_claim_id == unique_claim_id)
    return conn.execute(stmt).first() is not None


def list_batch_claims(conn: Connection, batch_id: int) -> list[Claim]:
    stmt = select(claims).where(claims.c.batch_id == batch_id).order_by(claims.c.id)
    return [_to_model(Claim, row, "claim") for row in conn.execute(stmt)]


def insert_claim(conn: Connection, values: dict[str, Any]) -> int:
    return _insert(conn, claims, values)


def update_claim(
    conn: Connection,
    claim_id: int,
    values: dict[str, Any],
    expected_statuses: Optional[Iterable[Any]] = None,
) -> bool:
    return _compare_and_set(conn, claims, claim_id, values, expected_statuses)


def assign_claims(
    conn: Connection,
    claim_ids: Sequence[int],
    batch_id: Optional[int],
    values: dict[str, Any],
    expected_batch_id: Optional[int] = None,
) -> int:
    """Set (or clear) the batch reference of several claims; returns rows changed."""
    stmt = update(claims).where(claims.c.id.in_(list(claim_ids)))
    if expected_batch_id is None:
        stmt = stmt.where(claims.c.batch_id.is_(None))
    else:
        stmt = stmt.where(claims.c.batch_id == expected_batch_id)
    result = conn.execute(stmt.values(batch_id=batch_id, **_values(values)))
    return result.rowcount


def delete_claim(conn: Connection, claim_id: int, expected_status: Any) -> bool:
    stmt = claims.delete().where(claims.c.id == claim_id).where(claims.c.status == _value(expected_status))
    return conn.execute(stmt).rowcount == 1


# =============================================================================
# Batches
# =============================================================================


def get_batch(conn: Connection, batch_id: int, for_update: bool = False) -> Batch:
    row = _get(conn, batches, batch_id, for_update)
    if row is None:
        raise NotFoundError(f"Batch {batch_id} not found", batch_id=batch_id)
    return _to_model(Batch, row, "batch")


def get_batches(conn: Connection, batch_ids: Sequence[int]) -> list[Batch]:
    """Load batches in the order requested, raising NotFoundError for any missing id."""
    if not batch_ids:
        return []
    stmt = select(batches).where(batches.c.id.in_(list(batch_ids)))
    by_id = {row.id: _to_model(Batch, row, "batch") for row in conn.execute(stmt)}
    missing = [b for b in batch_ids if b not in by_id]
    if missing:
        raise NotFoundError(
            f"Batches not found: {', '.join(str(i) for i in missing)}",
            batch_ids=missing,
        )
    return [by_id[b] for b in batch_ids]


def batch_number_exists(conn: Connection, tpa_id: int, batch_number: str) -> bool:
    stmt = select(batches.c.id).where(
        batches.c.tpa_id == tpa_id,
        batches.c.batch_number == batch_number,
    )
    return conn.execute(stmt).first() is not None


def insert_batch(conn: Connection, values: dict[str, Any]) -> int:
    return _insert(conn, batches, values)


def update_batch(
    conn: Connection,
    batch_id: int,
    values: dict[str, Any],
    expected_statuses: Optional[Iterable[Any]] = None,
) -> bool:
    return _compare_and_set(conn, batches, batch_id, values, expected_statuses)


def delete_batch(conn: Connection, batch_id: int, expected_status: Any) -> bool:
    stmt = batches.delete().where(batches.c.id == batch_id).where(batches.c.status == _value(expected_status))
    return conn.execute(stmt).rowcount == 1


def list_batches(
    conn: Connection,
    statuses: Optional[Iterable[Any]] = None,
    tpa_id: Optional[int] = None,
    facility_id: Optional[int] = None,
    unclaimed_only: bool = False,
) -> list[Batch]:
    stmt = select(batches)
    if statuses is not None:
        stmt = stmt.where(batches.c.status.in_([_value(s) for s in statuses]))
    if tpa_id is not None:
        stmt = stmt.where(batches.c.tpa_id == tpa_id)
    if facility_id is not None:
        stmt = stmt.where(batches.c.facility_id == facility_id)
    if unclaimed_only:
        stmt = stmt.where(batches.c.reimbursement_id.is_(None))
    stmt = stmt.order_by(batches.c.tpa_id, batches.c.id)
    return [_to_model(Batch, row, "batch") for row in conn.execute(stmt)]


def claim_batch(
    conn: Connection,
    batch_id: int,
    tpa_id: int,
    reimbursement_id: int,
    eligible_statuses: Iterable[Any],
) -> bool:
    """
    Conditionally point a batch at a reimbursement.

    Applies only if the batch still belongs to the TPA, is in an eligible
    status, and is not claimed by any reimbursement. Exactly one concurrent
    caller can succeed.
    """
    stmt = (
        update(batches)
        .where(batches.c.id == batch_id)
        .where(batches.c.tpa_id == tpa_id)
        .where(batches.c.status.in_([_value(s) for s in eligible_statuses]))
        .where(batches.c.reimbursement_id.is_(None))
        .values(reimbursement_id=reimbursement_id)
    )
    return conn.execute(stmt).rowcount == 1


def release_batches(conn: Connection, reimbursement_id: int) -> int:
    stmt = (
        update(batches)
        .where(batches.c.reimbursement_id == reimbursement_id)
        .values(reimbursement_id=None)
    )
    return conn.execute(stmt).rowcount


def mark_batches_reimbursed(conn: Connection, reimbursement_id: int, values: dict[str, Any]) -> int:
    stmt = (
        update(batches)
        .where(batches.c.reimbursement_id == reimbursement_id)
        .values(**_values(values))
    )
    return conn.execute(stmt).rowcount


# =============================================================================
# Advance payments
# =============================================================================


def get_advance_payment(conn: Connection, payment_id: int, for_update: bool = False) -> AdvancePayment:
    row = _get(conn, advance_payments, payment_id, for_update)
    if row is None:
        raise NotFoundError(f"Advance payment {payment_id} not found", payment_id=payment_id)
    return _to_model(AdvancePayment, row, "advance payment")


def advance_payment_reference_exists(conn: Connection, reference: str) -> bool:
    stmt = select(advance_payments.c.id).where(advance_payments.c.payment_reference == reference)
    return conn.execute(stmt).first() is not None


def insert_advance_payment(conn: Connection, values: dict[str, Any]) -> int:
    return _insert(conn, advance_payments, values)


def update_advance_payment(
    conn: Connection,
    payment_id: int,
    values: dict[str, Any],
    expected_statuses: Optional[Iterable[Any]] = None,
) -> bool:
    return _compare_and_set(conn, advance_payments, payment_id, values, expected_statuses)


def list_advance_payments(
    conn: Connection,
    status: Optional[Any] = None,
    tpa_id: Optional[int] = None,
) -> list[AdvancePayment]:
    stmt = select(advance_payments)
    if status is not None:
        stmt = stmt.where(advance_payments.c.status == _value(status))
    if tpa_id is not None:
        stmt = stmt.where(advance_payments.c.tpa_id == tpa_id)
    stmt = stmt.order_by(advance_payments.c.id.desc())
    return [_to_model(AdvancePayment, row, "advance payment") for row in conn.execute(stmt)]


# =============================================================================
# Reimbursements
# =============================================================================


def _reimbursement(row) -> Reimbursement:
    data = dict(row._mapping)
    data["batch_ids"] = json.loads(data.get("batch_ids") or "[]")
    try:
        return Reimbursement.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Stored reimbursement {data.get('id')} is in an inconsistent state: {e}",
            record_id=data.get("id"),
        ) from e


def get_reimbursement(conn: Connection, reimbursement_id: int, for_update: bool = False) -> Reimbursement:
    row = _get(conn, reimbursements, reimbursement_id, for_update)
    if row is None:
        raise NotFoundError(
            f"Reimbursement {reimbursement_id} not found",
            reimbursement_id=reimbursement_id,
        )
    return _reimbursement(row)


def reimbursement_reference_exists(conn: Connection, reference: str) -> bool:
    stmt = select(reimbursements.c.id).where(reimbursements.c.reference == reference)
    return conn.execute(stmt).first() is not None


def insert_reimbursement(conn: Connection, values: dict[str, Any]) -> int:
    values = dict(values)
    values["batch_ids"] = json.dumps(list(values["batch_ids"]))
    return _insert(conn, reimbursements, values)


def update_reimbursement(
    conn: Connection,
    reimbursement_id: int,
    values: dict[str, Any],
    expected_statuses: Optional[Iterable[Any]] = None,
) -> bool:
    return _compare_and_set(conn, reimbursements, reimbursement_id, values, expected_statuses)


def list_reimbursements(
    conn: Connection,
    status: Optional[Any] = None,
    tpa_id: Optional[int] = None,
) -> list[Reimbursement]:
    stmt = select(reimbursements)
    if status is not None:
        stmt = stmt.where(reimbursements.c.status == _value(status))
    if tpa_id is not None:
        stmt = stmt.where(reimbursements.c.tpa_id == tpa_id)
    stmt = stmt.order_by(reimbursements.c.id.desc())
    return [_reimbursement(row) for row in conn.execute(stmt)]


# =============================================================================
# Financial transactions (append-only: insert and read, never update)
# =============================================================================


def insert_transaction(conn: Connection, values: dict[str, Any]) -> int:
    return _insert(conn, financial_transactions, values)


def list_transactions(
    conn: Connection,
    tpa_id: Optional[int] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[int] = None,
) -> list[FinancialTransaction]:
    stmt = select(financial_transactions)
    if tpa_id is not None:
        stmt = stmt.where(financial_transactions.c.tpa_id == tpa_id)
    if reference_type is not None:
        stmt = stmt.where(financial_transactions.c.reference_type == reference_type)
    if reference_id is not None:
        stmt = stmt.where(financial_transactions.c.reference_id == reference_id)
    stmt = stmt.order_by(financial_transactions.c.id)
    return [_to_model(FinancialTransaction, row, "transaction") for row in conn.execute(stmt)]


def count_rows(conn: Connection, table: Table) -> int:
    return conn.execute(select(func.count()).select_from(table)).scalar_one()
