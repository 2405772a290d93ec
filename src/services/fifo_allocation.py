"""
FIFO allocation of byproduct sale quantities across inventory lots.

Algorithm:
    1. Order candidate lots oldest first (created_at ascending, ties by lot id)
    2. Take min(remaining request, lot remaining) from each lot
    3. Stop when the request is satisfied or the lots are exhausted
    4. Whatever is left of the request is the shortfall

allocate() only plans. It never touches lot quantities; committing a plan
is byproduct_sales_service.commit_sale(), which re-validates every planned
allocation against the lots as they are at commit time.

Transaction boundary: Pure computation (no database access).
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from ..utils.datetime_utils import as_utc
from ..utils.money import ZERO, to_decimal
from .exceptions import ValidationError


@dataclass(frozen=True)
class LotSnapshot:
    """Read-only view of an inventory lot at preview time."""

    lot_id: int
    batch_id: int
    byproduct_type: str
    created_at: datetime
    quantity_remaining: Decimal
    estimated_rate: Decimal


@dataclass(frozen=True)
class PlannedAllocation:
    """Quantity to take from one lot."""

    lot_id: int
    batch_id: int
    quantity: Decimal
    estimated_rate: Decimal
    lot_created_at: Optional[datetime] = None


@dataclass(frozen=True)
class AllocationPlan:
    """
    Result of a FIFO preview.

    Attributes:
        byproduct_type: Byproduct the plan is for (None for ad-hoc lot lists)
        requested: Quantity asked for
        allocations: Per-lot allocations, oldest lot first
        shortfall: Part of the request no lot could cover (0 when satisfied)
    """

    requested: Decimal
    allocations: List[PlannedAllocation] = field(default_factory=list)
    shortfall: Decimal = ZERO
    byproduct_type: Optional[str] = None

    @property
    def allocated(self) -> Decimal:
        return sum((a.quantity for a in self.allocations), ZERO)

    @property
    def satisfied(self) -> bool:
        return self.shortfall == 0


def order_lots(lots: Iterable[LotSnapshot]) -> List[LotSnapshot]:
    """Oldest first; lots of identical age by lot id ascending."""
    return sorted(lots, key=lambda lot: (as_utc(lot.created_at), lot.lot_id))


def allocate(
    requested_quantity: Decimal,
    lots: Iterable[LotSnapshot],
    byproduct_type: Optional[str] = None,
) -> AllocationPlan:
    """
    Plan a FIFO allocation of requested_quantity across lots.

    Lots are re-ordered oldest first regardless of the order given. Empty
    lots are skipped. A positive shortfall is reported, never raised; the
    caller decides whether to reject the sale or accept it partially.

    Args:
        requested_quantity: Quantity to allocate (> 0)
        lots: Candidate lots
        byproduct_type: Recorded on the plan

    Returns:
        AllocationPlan

    Raises:
        ValidationError: Non-positive request

    Example:
        >>> plan = allocate(Decimal("60"), [lot_30kg, lot_20kg])
        >>> [a.quantity for a in plan.allocations], plan.shortfall
        ([Decimal('30'), Decimal('20')], Decimal('10'))
    """
    requested = to_decimal(requested_quantity)
    if requested <= 0:
        raise ValidationError(["requested quantity must be positive"])

    remaining = requested
    allocations = []
    for lot in order_lots(lots):
        if remaining <= 0:
            break
        available = to_decimal(lot.quantity_remaining)
        take = min(remaining, available)
        if take <= 0:
            continue
        allocations.append(
            PlannedAllocation(
                lot_id=lot.lot_id,
                batch_id=lot.batch_id,
                quantity=take,
                estimated_rate=to_decimal(lot.estimated_rate),
                lot_created_at=lot.created_at,
            )
        )
        remaining -= take

    return AllocationPlan(
        requested=requested,
        allocations=allocations,
        shortfall=remaining,
        byproduct_type=byproduct_type,
    )
