"""
Money helpers.

Amounts are stored as integer cents everywhere. API payloads carry both the
integer and a two-decimal string so clients never do float arithmetic.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP

from .errors import ValidationError

CENT = Decimal("0.01")


def format_cents(cents: int | None) -> str | None:
    """1234 -> "12.34"."""
    if cents is None:
        return None
    return str((Decimal(int(cents)) * CENT).quantize(CENT))


def parse_amount_to_cents(value, field: str = "amount") -> int:
    """
    Parse a client-supplied amount ("48.50", 48.5, 48) into cents.

    Rejects booleans, non-numeric strings, NaN/inf and more than two decimals.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")
    if amount != amount.quantize(CENT):
        raise ValidationError(f"{field} cannot have more than two decimals")
    return int((amount * 100).to_integral_value())


def cents_times_rate_floor(cents: int, rate: Decimal) -> int:
    """floor((cents / 100) * rate) as an integer, used for points accrual."""
    return int((Decimal(int(cents)) * CENT * rate).to_integral_value(rounding=ROUND_DOWN))


def points_value_cents(points: int, point_value: Decimal) -> int:
    """Monetary value of `points` at `point_value` per point, rounded half-up to cents."""
    return int((Decimal(int(points)) * point_value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
