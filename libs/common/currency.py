"""Money helpers for bestowal amounts.

Amounts are ``decimal.Decimal`` with two places; rounding is half-up on
cents. Crypto stablecoin amounts (USDC/USDT) are treated the same way.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")

Number = Union[Decimal, float, int, str]


def to_decimal(value: Number) -> Decimal:
    """Convert ``value`` to Decimal without float artefacts (via ``str``)."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e


def round_money(value: Number) -> Decimal:
    """Round to cents, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value: Number) -> str:
    """Provider wire format: fixed two decimals, e.g. ``"150.00"``."""
    return f"{round_money(value):.2f}"


def has_at_most_two_decimals(value: Number) -> bool:
    d = to_decimal(value)
    return d == d.quantize(CENT)


def clamp_percentage(value: Number) -> Decimal:
    """Clamp a fraction into [0, 1]; NaN becomes 0."""
    if isinstance(value, float) and math.isnan(value):
        return Decimal("0")
    d = to_decimal(value)
    if d.is_nan():
        return Decimal("0")
    return min(max(d, Decimal("0")), Decimal("1"))


def amounts_match(expected: Number, reported: Number, tolerance: Number) -> bool:
    """True when ``reported`` is within ``tolerance`` of ``expected``.

    NaN and infinite amounts never match.
    """
    expected_d, reported_d = to_decimal(expected), to_decimal(reported)
    if not (expected_d.is_finite() and reported_d.is_finite()):
        return False
    diff = abs(expected_d - reported_d)
    return diff <= to_decimal(tolerance)
