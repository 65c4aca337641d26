"""Money helpers shared by models and services."""

from decimal import Decimal


def to_decimal(val) -> Decimal:
    """Coerce a Numeric column value (or None) to Decimal; None counts as 0."""
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))
