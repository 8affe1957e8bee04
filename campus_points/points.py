"""
Money and points arithmetic.

Currency amounts arrive as decimals (dollars) and are converted to integer
cents before any accrual math, so point totals never depend on binary
floating point. Every conversion to an integer rounds half away from zero:

    to_cents(10.005)  -> 1001
    base_earned(1050) -> 42      (1050 / 25 = 42.0)
    base_earned(1062) -> 42      (42.48)
    base_earned(1063) -> 43      (42.52)
    rate_bonus(150, 0.01) -> 2   (1.5 rounds up)

Base accrual is one point per 25 cents spent.
"""

import math
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

CENTS_PER_POINT = 25


def _to_decimal(value) -> Decimal:
    # str() keeps floats at their shortest repr (0.1 -> "0.1", not 0.1000000000000000055...)
    if isinstance(value, bool):
        raise ValueError("Boolean is not a numeric amount")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"Amount must be finite, got {value!r}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Amount is not a number: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Amount must be finite, got {value!r}")
    return result


def round_half_away(value: Decimal) -> int:
    """Round a decimal to the nearest integer, ties away from zero."""
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def to_cents(amount) -> int:
    """Convert a currency amount (e.g. 10.5 dollars) to integer cents."""
    return round_half_away(_to_decimal(amount) * 100)


def cents_to_amount(cents: int) -> Decimal:
    """Inverse of to_cents, as a two-place Decimal suitable for storage."""
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def base_earned(spent_cents: int) -> int:
    """Points a purchase earns before promotions."""
    return round_half_away(Decimal(spent_cents) / CENTS_PER_POINT)


def rate_bonus(spent_cents: int, rate) -> int:
    """Bonus points from a rate promotion (rate points per cent spent)."""
    return round_half_away(Decimal(spent_cents) * _to_decimal(rate))
