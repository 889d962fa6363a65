"""
Money handling for the stock ledger.

All amounts are ``decimal.Decimal`` at full precision from input to storage.
Rounding to two places happens once, in ``to_display``, when a value leaves
the service through JSON. Never round before arithmetic.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from .errors import ValidationError


ZERO = Decimal("0")

# Storage precision of every money column: Numeric(18, 6)
MONEY_PRECISION = 18
MONEY_SCALE = 6

DISPLAY_PLACES = Decimal("0.01")


def to_money(value: Any, field: str = "amount") -> Decimal:
    """
    Parse an incoming amount into a Decimal.

    Floats are routed through ``str`` so that 0.1 becomes Decimal("0.1")
    rather than its binary expansion. Booleans and non-finite values are
    rejected.
    """
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    else:
        raw = str(value).strip() if isinstance(value, str) else str(value)
        if raw == "":
            raise ValidationError(f"{field} is required")
        try:
            result = Decimal(raw)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def money_sum(values: Iterable[Decimal | None]) -> Decimal:
    total = ZERO
    for value in values:
        if value is not None:
            total += value
    return total


def to_display(value: Decimal | None) -> str | None:
    """Two-place, half-up string for presentation. The only rounding point."""
    if value is None:
        return None
    return str(value.quantize(DISPLAY_PLACES, rounding=ROUND_HALF_UP))
