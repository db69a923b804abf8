"""
Money helpers — gateway amounts travel in minor units (kobo), the store keeps naira.
"""
from decimal import Decimal, ROUND_HALF_UP

MINOR_UNITS_PER_MAJOR = 100


def to_minor_units(amount: float | int | None) -> int:
    """Convert a major-unit amount (e.g. 5000.0 naira) to integer minor units."""
    if amount is None:
        return 0
    scaled = Decimal(str(amount)) * MINOR_UNITS_PER_MAJOR
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int | float | None) -> float:
    """Convert gateway minor units back to major units."""
    if not amount:
        return 0.0
    return float(Decimal(str(amount)) / MINOR_UNITS_PER_MAJOR)


def format_naira(amount: float) -> str:
    """Render an amount the way customer-facing messages show it: ₦5,000."""
    if float(amount).is_integer():
        return f"₦{int(amount):,}"
    return f"₦{amount:,.2f}"
