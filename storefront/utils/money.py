"""
storefront/utils/money.py
-------------------------
Integer-cents coercion helpers. All storefront money is kept in integer
minor units; these are the only places loose input becomes cents.
"""
import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


def to_int(value, default=0) -> int:
    """Truncate a number-ish value to int; non-finite or junk → default."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        n = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(n):
        return default
    return math.trunc(n)


def clamp_int(value, minimum=0) -> int:
    """to_int() clamped from below; junk collapses to `minimum`."""
    return max(minimum, to_int(value, minimum))


def dollars_to_cents(value) -> int:
    """'12.345' / 12.345 / Decimal → 1235 (half-up). Junk or negative → 0."""
    try:
        d = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return 0
    if not d.is_finite() or d <= 0:
        return 0
    return int((d * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
