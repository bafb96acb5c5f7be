"""Conversions between Decimal currency amounts and integer minor units."""

from decimal import ROUND_HALF_UP, Decimal

MINOR_UNITS_PER_MAJOR = 100
CENT = Decimal("0.01")


def to_minor_units(amount: Decimal) -> int:
    """Decimal amount -> integer minor units, rounding half up."""
    return int((Decimal(amount) * MINOR_UNITS_PER_MAJOR).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(units: int) -> Decimal:
    """Integer minor units -> two-decimal Decimal amount."""
    return (Decimal(units) / MINOR_UNITS_PER_MAJOR).quantize(CENT)


def to_wire_amount(amount: Decimal) -> str:
    """Two-decimal string sent to the backend, never a binary float."""
    return str(Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP))
