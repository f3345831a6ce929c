"""
Shared test fixtures for NHIS claims core tests.
"""

from decimal import Decimal
from itertools import count
from pathlib import Path
from typing import Callable

import pytest

from nhis_claims.config.models import CoreConfig, DatabaseConfig, FinanceConfig
from nhis_claims.core.batches import BatchAggregator
from nhis_claims.core.ledger import ClaimLedger
from nhis_claims.core.reconciliation import ReconciliationEngine
from nhis_claims.db.connection import create_engine_from_config
from nhis_claims.db.initialize import create_tables
from nhis_claims.domain.batches import Batch
from nhis_claims.domain.claims import Claim
from nhis_claims.domain.enums import ActorRole
from nhis_claims.domain.principal import Principal


TPA_ID = 7
OTHER_TPA_ID = 8
FACILITY_ID = 100
OTHER_FACILITY_ID = 101


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """SQLite database file for one test."""
    return tmp_path / "claims.db"


@pytest.fixture
def test_config(db_path: Path) -> CoreConfig:
    """Minimal test configuration backed by a temporary SQLite file."""
    return CoreConfig(
        database=DatabaseConfig(url=f"sqlite:///{db_path}"),
        finance=FinanceConfig(
            currency_code="NGN",
            currency_places=2,
            default_admin_fee_percentage=Decimal("0"),
            max_admin_fee_percentage=Decimal("20"),
        ),
    )


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def engine(test_config: CoreConfig):
    """Engine with all tables created."""
    engine = create_engine_from_config(test_config.database)
    create_tables(engine)
    yield engine
    engine.dispose()


# =============================================================================
# Principal Fixtures
# =============================================================================


@pytest.fixture
def insurer() -> Principal:
    return Principal(user_id=1, role=ActorRole.INSURER)


@pytest.fixture
def tpa() -> Principal:
    return Principal(user_id=2, role=ActorRole.TPA, tpa_id=TPA_ID)


@pytest.fixture
def other_tpa() -> Principal:
    return Principal(user_id=3, role=ActorRole.TPA, tpa_id=OTHER_TPA_ID)


@pytest.fixture
def facility() -> Principal:
    return Principal(user_id=4, role=ActorRole.FACILITY, facility_id=FACILITY_ID, tpa_id=TPA_ID)


@pytest.fixture
def other_facility() -> Principal:
    return Principal(user_id=5, role=ActorRole.FACILITY, facility_id=OTHER_FACILITY_ID, tpa_id=TPA_ID)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def ledger(engine, test_config: CoreConfig) -> ClaimLedger:
    return ClaimLedger(engine, test_config)


@pytest.fixture
def aggregator(engine, test_config: CoreConfig) -> BatchAggregator:
    return BatchAggregator(engine, test_config)


@pytest.fixture
def reconciliation(engine, test_config: CoreConfig) -> ReconciliationEngine:
    return ReconciliationEngine(engine, test_config)


# =============================================================================
# Data Builders
# =============================================================================


@pytest.fixture
def claim_fields() -> Callable[..., dict]:
    """Build valid claim creation fields with a fresh unique claim id."""
    seq = count(1)

    def build(**overrides) -> dict:
        n = next(seq)
        fields = {
            "unique_claim_id": f"CLM-{n:05d}",
            "unique_beneficiary_id": f"BEN-{n:05d}",
            "beneficiary_name": f"Beneficiary {n}",
            "facility_id": FACILITY_ID,
            "tpa_id": TPA_ID,
            "hospital_number": f"H-{n}",
            "primary_diagnosis": "Malaria",
            "cost_of_investigation": Decimal("1000.00"),
            "cost_of_procedure": Decimal("2500.00"),
            "cost_of_medication": Decimal("750.50"),
            "cost_of_other_services": Decimal("0"),
        }
        fields.update(overrides)
        return fields

    return build


@pytest.fixture
def make_claim(ledger: ClaimLedger, facility: Principal, claim_fields) -> Callable[..., Claim]:
    """Create a draft claim as the facility."""

    def build(actor: Principal | None = None, **overrides) -> Claim:
        return ledger.create_claim(actor or facility, claim_fields(**overrides))

    return build


@pytest.fixture
def make_batch(
    aggregator: BatchAggregator,
    facility: Principal,
    make_claim,
) -> Callable[..., Batch]:
    """Create a draft batch holding one claim per amount (as cost of procedure)."""
    seq = count(1)

    def build(
        amounts: list[Decimal],
        tpa_id: int = TPA_ID,
        facility_id: int = FACILITY_ID,
        actor: Principal | None = None,
    ) -> Batch:
        actor = actor or facility
        n = next(seq)
        batch = aggregator.create_batch(actor, tpa_id=tpa_id, batch_number=f"B-{n:04d}", facility_id=facility_id)
        claims = [
            make_claim(
                actor=actor,
                tpa_id=tpa_id,
                facility_id=facility_id,
                cost_of_investigation=None,
                cost_of_procedure=Decimal(amount),
                cost_of_medication=None,
                cost_of_other_services=None,
            )
            for amount in amounts
        ]
        if claims:
            batch = aggregator.add_claims(actor, batch.id, [c.id for c in claims])
        return batch

    return build


@pytest.fixture
def closed_batch(
    aggregator: BatchAggregator,
    facility: Principal,
    tpa: Principal,
    make_batch,
) -> Callable[..., Batch]:
    """Create, submit and close a batch for TPA 7 at facility 100."""

    def build(amounts: list[Decimal]) -> Batch:
        batch = make_batch(amounts)
        aggregator.submit(facility, batch.id)
        return aggregator.close(tpa, batch.id, remarks="Reviewed")

    return build
