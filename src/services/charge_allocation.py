"""
Charge allocation for purchase invoices.

Splits a shared invoice charge (transport, handling) across line items:

    group_charge = total_charge x group_share_percent / 100
    item_charge  = group_charge x item_quantity / group_total_quantity

Line items are grouped by unit-of-measure class (mass, volume, count)
because their quantities are not comparable across groups. A group whose
total quantity is 0 allocates nothing; its share is not redistributed.

Each item's charge is rounded to currency precision on its own, so a group's
allocated sum may differ from its group charge by up to one paisa per
group. That drift is accepted, not corrected.

Transaction boundary: Pure computation (no database access).
"""

from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Hashable, Iterable, Mapping

from ..utils.constants import (
    ERROR_SHARES_NOT_100,
    ERROR_SHARES_OVER_100,
    MASS_UNITS,
    UOM_GROUP_COUNT,
    UOM_GROUP_MASS,
    UOM_GROUP_VOLUME,
    VOLUME_UNITS,
)
from ..utils.money import ZERO, round_currency, to_decimal
from .exceptions import ValidationError

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ChargeLine:
    """A line item taking part in a charge allocation.

    Attributes:
        key: Caller's identifier for the line (index, material id, ...)
        group: UOM group name
        quantity: Quantity within the group, in the group's unit
    """

    key: Hashable
    group: str
    quantity: Decimal


def classify_unit(unit: str) -> str:
    """
    Map an invoice unit of measure to its allocation group.

    Examples:
        >>> classify_unit("kg")
        'mass'
        >>> classify_unit("Liters")
        'volume'
        >>> classify_unit("Nos")
        'count'
    """
    if unit in MASS_UNITS:
        return UOM_GROUP_MASS
    if unit in VOLUME_UNITS:
        return UOM_GROUP_VOLUME
    return UOM_GROUP_COUNT


def validate_group_shares(shares: Mapping[str, Decimal], require_complete: bool = True) -> Decimal:
    """
    Validate UOM group share percentages.

    Shares may total less than 100 while being edited; allocation itself
    requires exactly 100.

    Args:
        shares: Group name -> percent
        require_complete: Require the total to equal 100 (else only <= 100)

    Returns:
        Total of the shares

    Raises:
        ValidationError: If any share is negative, the total exceeds 100, or
            require_complete and the total is not 100
    """
    errors = []
    total = ZERO
    for group, share in shares.items():
        share = to_decimal(share)
        if share < 0:
            errors.append(f"share for group '{group}' must not be negative")
        total += share

    if total > HUNDRED:
        errors.append(f"{ERROR_SHARES_OVER_100} (got {total})")
    elif require_complete and total != HUNDRED:
        errors.append(f"{ERROR_SHARES_NOT_100} (got {total})")

    if errors:
        raise ValidationError(errors)
    return total


def allocate_charge(
    total_charge: Decimal,
    shares: Mapping[str, Decimal],
    lines: Iterable[ChargeLine],
    round_to_currency: bool = True,
) -> Dict[Hashable, Decimal]:
    """
    Allocate a shared charge across line items by UOM group and quantity.

    All validation happens before any value is computed; a rejected call
    allocates nothing.

    Args:
        total_charge: Charge to split (>= 0)
        shares: Group name -> percent of the charge; must total exactly 100
        lines: Line items with their group and quantity
        round_to_currency: Round each item's charge to 2 places (default).
            Pass False to keep full precision for further aggregation.

    Returns:
        OrderedDict of line key -> allocated charge, in input order

    Raises:
        ValidationError: Negative charge or quantity, a line in a group with
            no configured share, duplicate keys, or shares not totalling 100

    Example:
        >>> lines = [ChargeLine(0, "mass", Decimal("100")),
        ...          ChargeLine(1, "mass", Decimal("300")),
        ...          ChargeLine(2, "count", Decimal("10"))]
        >>> allocate_charge(Decimal("1000"), {"mass": 60, "volume": 20, "count": 20}, lines)
        OrderedDict([(0, Decimal('150.00')), (1, Decimal('450.00')), (2, Decimal('200.00'))])
    """
    lines = list(lines)
    total_charge = to_decimal(total_charge)
    normalized_shares = {group: to_decimal(share) for group, share in shares.items()}

    errors = []
    if total_charge < 0:
        errors.append("total charge must not be negative")

    seen_keys = set()
    for line in lines:
        if line.key in seen_keys:
            errors.append(f"duplicate line key {line.key!r}")
        seen_keys.add(line.key)
        if to_decimal(line.quantity) < 0:
            errors.append(f"quantity for line {line.key!r} must not be negative")
        if line.group not in normalized_shares:
            errors.append(f"no share configured for group '{line.group}'")

    if errors:
        raise ValidationError(errors)
    validate_group_shares(normalized_shares, require_complete=True)

    group_totals: Dict[str, Decimal] = {}
    for line in lines:
        group_totals[line.group] = group_totals.get(line.group, ZERO) + to_decimal(line.quantity)

    allocations: Dict[Hashable, Decimal] = OrderedDict()
    for line in lines:
        group_total = group_totals[line.group]
        if group_total == 0:
            charge = ZERO
        else:
            group_charge = total_charge * normalized_shares[line.group] / HUNDRED
            charge = group_charge * to_decimal(line.quantity) / group_total
        allocations[line.key] = round_currency(charge) if round_to_currency else charge

    return allocations
