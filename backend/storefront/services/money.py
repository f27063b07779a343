"""
Amount conversion

Order totals are stored as ``Decimal`` major units with two decimal places;
card providers want integer minor units (cents). All conversion goes
through this module.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from storefront.api.errors import InvalidInputError

CENT = Decimal("0.01")


def parse_total(value: Any) -> Decimal:
    """
    Validate an order total

    Args:
        value: Decimal, int, float or numeric string

    Returns:
        positive Decimal quantized to two places

    Raises:
        InvalidInputError: missing, non-numeric, non-finite or not positive
    """
    if value is None or isinstance(value, bool):
        raise InvalidInputError("Order total is missing")
    try:
        # str() first so floats keep their printed value (129.99, not 129.98999...)
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidInputError(f"Order total is not a number: {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidInputError(f"Order total must be positive: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(total: Any) -> int:
    """Major units to integer cents, rounding half up (``round(total * 100)``)."""
    amount = parse_total(total)
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(minor: Any) -> Decimal:
    """Integer cents back to a two-place Decimal."""
    return (Decimal(int(minor)) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def format_major(total: Any) -> str:
    """Two-place string, the form PayFast expects (``"800.00"``)."""
    return f"{parse_total(total):.2f}"
