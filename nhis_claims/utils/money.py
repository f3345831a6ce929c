"""
Fixed-point money helpers.

All amounts are Decimal and rounded to the currency's minor unit with
banker's rounding (ROUND_HALF_EVEN).
"""

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any, Iterable


ZERO = Decimal("0")
HUNDRED = Decimal("100")


def minor_unit(places: int = 2) -> Decimal:
    """Quantum for the given number of decimal places (2 -> Decimal('0.01'))."""
    return Decimal(1).scaleb(-places)


def to_decimal(value: Any) -> Decimal:
    """
    Convert a stored or supplied amount to Decimal.

    Floats go through str() so binary representation noise is not carried over.

    Raises:
        ValueError: If the value is not numeric
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return result


def round_money(value: Any, places: int = 2) -> Decimal:
    """Round to minor units using banker's rounding."""
    return to_decimal(value).quantize(minor_unit(places), rounding=ROUND_HALF_EVEN)


def percentage_of(amount: Any, percentage: Any, places: int = 2) -> Decimal:
    """amount x percentage / 100, rounded to minor units."""
    return round_money(to_decimal(amount) * to_decimal(percentage) / HUNDRED, places)


def sum_money(values: Iterable[Any], places: int = 2) -> Decimal:
    """Sum amounts exactly, then round once."""
    return round_money(sum((to_decimal(v) for v in values), ZERO), places)


def format_money(value: Any, places: int = 2) -> str:
    """Fixed-point text used for storage and display, e.g. '1250.50'."""
    return f"{round_money(value, places):.{places}f}"
