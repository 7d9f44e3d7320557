"""Decimal helpers for rupee amounts (2 fractional digits, half-up)."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from billing.validation import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Largest value a Numeric(12, 2) column holds.
MAX_AMOUNT = Decimal("9999999999.99")


def to_decimal(value: Any, field: str, max_value: Decimal | None = MAX_AMOUNT) -> Decimal:
    """
    Strict Decimal coercion for request and model values.

    Magnitudes above max_value are rejected so later quantize() calls and
    Numeric column writes cannot overflow. Pass max_value=None to skip.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, (float, str)):
        try:
            # str() keeps floats like 0.1 from dragging binary noise in
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if max_value is not None and abs(result) > max_value:
        raise ValidationError(f"{field} is too large (max {max_value})")
    return result


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return str(round_money(Decimal(value)))
