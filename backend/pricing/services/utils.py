from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_HALF_UP

TWOPLACES = Decimal("0.01")
ONEPLACE = Decimal("0.1")
ZERO = Decimal("0")


def d(val) -> Decimal:
    """Coerce incoming values to Decimal safely."""
    if isinstance(val, Decimal):
        return val
    if isinstance(val, bool):
        raise InvalidOperation(f"Boolean is not a measurement: {val!r}")
    return Decimal(str(val))


def d_or_none(val):
    """Like ``d`` but keeps missing values (None / empty string) as None."""
    if val is None or (isinstance(val, str) and not val.strip()):
        return None
    return d(val)


def round_up_to_next_whole(amount: Decimal) -> Decimal:
    """Round a Decimal amount up to the next whole number."""
    return d(amount).to_integral_value(rounding=ROUND_CEILING)


def round_up_one_place(amount: Decimal) -> Decimal:
    """Round upward to one decimal place (e.g., 10.01 -> 10.1)."""
    return d(amount).quantize(ONEPLACE, rounding=ROUND_CEILING)


def to_minor_units(amount: Decimal) -> int:
    """Round a currency amount half-up to a whole number of the smallest currency unit."""
    return int(d(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def is_positive(val) -> bool:
    return val is not None and val > ZERO
