"""
Integer-cent arithmetic.

All stored amounts are integer minor units. Fractions only exist in
intermediate Decimal values (interest, blended rates, exchange rates) and are
rounded half-up back to cents, matching the nearest-cent rule used for
weighted average cost.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

BPS_PER_UNIT = Decimal(10000)
CENTS_PER_UNIT = Decimal(100)


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_cents(value) -> int:
    """Round a Decimal-compatible amount of cents half-up to an int."""
    return int(to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_to_units(cents: int) -> int:
    """Round cents to whole currency units (used when comparing tendered splits)."""
    return round_cents(to_decimal(cents) / CENTS_PER_UNIT)


def bps_to_fraction(bps) -> Decimal:
    return to_decimal(bps) / BPS_PER_UNIT


def percent_of(amount_cents: int, percentage) -> int:
    """`percentage` is on a 0-100 scale."""
    return round_cents(to_decimal(amount_cents) * to_decimal(percentage) / Decimal(100))
