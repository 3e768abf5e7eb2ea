"""Canonical money arithmetic.

Every amount, quantity, price and rate in the engine is a ``Decimal``.
Floats from providers are converted through ``str`` so that ``0.1``
becomes ``Decimal("0.1")`` rather than its binary expansion.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

ZERO = Decimal("0")
CENT = Decimal("0.01")

Numeric = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Numeric]) -> Decimal:
    """Convert a number (or None) to Decimal; None becomes zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def optional_decimal(value: Optional[Numeric]) -> Optional[Decimal]:
    """Like ``to_decimal`` but keeps None as None."""
    if value is None:
        return None
    return to_decimal(value)


def quantize_money(value: Decimal) -> Decimal:
    """Round to cents, half up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
