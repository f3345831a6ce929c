"""Utility modules for the NHIS claims core."""

from nhis_claims.utils.logging import configure_logging, ReconciliationLogger
from nhis_claims.utils.money import (
    round_money,
    percentage_of,
    sum_money,
    to_decimal,
    format_money,
)

__all__ = [
    "configure_logging",
    "ReconciliationLogger",
    "round_money",
    "percentage_of",
    "sum_money",
    "to_decimal",
    "format_money",
]
