"""
Decimal helpers for monetary and quantity values.

Internal computation keeps INTERNAL_PRECISION (4 places); values are rounded
to CURRENCY_PRECISION only at presentation boundaries.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from .constants import CURRENCY_PRECISION, CURRENCY_SYMBOL, INTERNAL_PRECISION

ZERO = Decimal("0")


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Decimal:
    """
    Convert a number or numeric string to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not its binary
    expansion.

    Args:
        value: int, float, str or Decimal
        default: Returned for None/blank input; if None, a blank raises

    Returns:
        Decimal value

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, Decimal):
        return value
    if value is None or (isinstance(value, str) and value.strip() == ""):
        if default is not None:
            return default
        raise ValueError("A numeric value is required")
    if isinstance(value, bool):
        raise ValueError(f"Not a numeric value: {value!r}")
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Not a numeric value: {value!r}") from e


def round_currency(value: Decimal) -> Decimal:
    """Round to 2 decimal places (half up)."""
    return value.quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)


def round_internal(value: Decimal) -> Decimal:
    """Round to the 4-place internal precision (half up)."""
    return value.quantize(INTERNAL_PRECISION, rounding=ROUND_HALF_UP)


def format_currency(amount: Optional[Decimal], show_symbol: bool = True) -> str:
    """
    Format an amount with Indian digit grouping.

    Examples:
        >>> format_currency(Decimal("1234567.891"))
        '₹12,34,567.89'
        >>> format_currency(None, show_symbol=False)
        '0.00'
    """
    if amount is None:
        amount = ZERO
    rounded = round_currency(to_decimal(amount))
    sign = "-" if rounded < 0 else ""
    integer_part, decimal_part = f"{abs(rounded):.2f}".split(".")

    last_three = integer_part[-3:]
    other = integer_part[:-3]
    if other:
        groups = []
        while len(other) > 2:
            groups.insert(0, other[-2:])
            other = other[:-2]
        if other:
            groups.insert(0, other)
        integer_part = ",".join(groups) + "," + last_three
    else:
        integer_part = last_three

    body = f"{integer_part}.{decimal_part}"
    prefix = CURRENCY_SYMBOL if show_symbol else ""
    return f"{sign}{prefix}{body}"
