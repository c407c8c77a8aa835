# FILE: dentlink/services/money.py
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def D(x) -> Decimal:
    """Safe Decimal conversion (never Decimal -= float)."""
    if x is None:
        return Decimal("0")
    if isinstance(x, Decimal):
        return x
    if isinstance(x, bool):
        raise TypeError("bool is not an amount")
    try:
        return Decimal(str(x))  # IMPORTANT: str() avoids float binary issues
    except InvalidOperation:
        raise ValueError(f"Not a number: {x!r}")


def money(x) -> Decimal:
    """Money rounding to 2 decimals, half-up."""
    return D(x).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def money_sum(values) -> Decimal:
    return money(sum((money(v) for v in values), Decimal("0")))
