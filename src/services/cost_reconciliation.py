"""
Cost reconciliation between estimated and realized byproduct rates.

Each lot carries the rate its byproduct was valued at when the batch was
finalized. When the byproduct is actually sold:

    adjustment = (estimated_rate - realized_rate) x allocated_quantity

A positive adjustment raises the originating batch's net cost (sold below
estimate); a negative one lowers it. Adjustments are additive: a batch may
receive any number of them over time, one per sale that draws on its lots,
and applying +50 then -30 ends where a single +20 would.

Packing cost recorded with a sale is charged back to the source batches,
spread across the allocated lots in proportion to allocated quantity.

Transaction boundary: Pure computation (no database access).
"""

from collections import OrderedDict
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, List

from ..utils.money import ZERO, round_internal, to_decimal
from .exceptions import ValidationError
from .fifo_allocation import AllocationPlan
from .net_cost import BatchCostSummary, calculate_cost_per_unit, calculate_net_cost


@dataclass(frozen=True)
class ReconciledAllocation:
    """
    One lot's share of a sale with its reconciliation figures.

    Attributes:
        lot_id: Lot drawn from
        batch_id: Originating batch
        allocated_quantity: Quantity taken from the lot
        estimated_rate: Rate copied from the lot
        realized_rate: Sale rate
        adjustment: (estimated - realized) x allocated_quantity
        packing_cost_share: Share of the sale's packing cost
    """

    lot_id: int
    batch_id: int
    allocated_quantity: Decimal
    estimated_rate: Decimal
    realized_rate: Decimal
    adjustment: Decimal = ZERO
    packing_cost_share: Decimal = ZERO

    @property
    def batch_impact(self) -> Decimal:
        """Total posted to the batch: adjustment plus packing share."""
        return self.adjustment + self.packing_cost_share


@dataclass
class SaleImpact:
    """Preview of what committing a sale would post."""

    quantity: Decimal
    sale_rate: Decimal
    allocations: List[ReconciledAllocation]
    total_adjustment: Decimal
    per_unit_impact: Decimal
    gross_revenue: Decimal
    packing_cost: Decimal
    transport_cost: Decimal
    net_revenue: Decimal
    adjustments_by_batch: Dict[int, Decimal]


def reconcile(allocation) -> Decimal:
    """
    Signed adjustment for one allocation.

    Args:
        allocation: Object with estimated_rate, realized_rate and
            allocated_quantity (ReconciledAllocation)

    Example:
        >>> reconcile(ReconciledAllocation(1, 7, Decimal("100"), Decimal("30"), Decimal("25")))
        Decimal('500')
    """
    return (
        to_decimal(allocation.estimated_rate) - to_decimal(allocation.realized_rate)
    ) * to_decimal(allocation.allocated_quantity)


def apply_adjustment(summary: BatchCostSummary, adjustment: Decimal) -> BatchCostSummary:
    """
    Add an adjustment to a batch summary.

    Net cost and cost per unit are recomputed from the components; the
    input summary is left unchanged.
    """
    adjustments_total = summary.adjustments_total + to_decimal(adjustment)
    net_cost = calculate_net_cost(
        summary.base_material_cost,
        summary.stage_cost_total,
        summary.byproduct_revenue,
        adjustments_total,
    )
    return replace(
        summary,
        adjustments_total=adjustments_total,
        net_cost=net_cost,
        cost_per_unit=calculate_cost_per_unit(net_cost, summary.output_quantity),
    )


def spread_packing_cost(plan: AllocationPlan, packing_cost: Decimal) -> List[Decimal]:
    """
    Split packing cost across a plan's allocations by quantity.

    Shares are kept at internal precision; the last allocation takes the
    remainder so the shares always sum to packing_cost exactly.
    """
    packing_cost = to_decimal(packing_cost)
    allocated = plan.allocated
    if not plan.allocations or packing_cost == 0 or allocated == 0:
        return [ZERO for _ in plan.allocations]

    shares = []
    for allocation in plan.allocations[:-1]:
        shares.append(round_internal(packing_cost * allocation.quantity / allocated))
    shares.append(packing_cost - sum(shares, ZERO))
    return shares


def reconcile_plan(
    plan: AllocationPlan,
    sale_rate: Decimal,
    packing_cost: Decimal = ZERO,
) -> List[ReconciledAllocation]:
    """Reconcile every allocation of a plan at the sale rate."""
    sale_rate = to_decimal(sale_rate)
    packing_shares = spread_packing_cost(plan, packing_cost)
    reconciled = []
    for planned, packing_share in zip(plan.allocations, packing_shares):
        allocation = ReconciledAllocation(
            lot_id=planned.lot_id,
            batch_id=planned.batch_id,
            allocated_quantity=planned.quantity,
            estimated_rate=planned.estimated_rate,
            realized_rate=sale_rate,
            packing_cost_share=packing_share,
        )
        reconciled.append(replace(allocation, adjustment=reconcile(allocation)))
    return reconciled


def group_by_batch(allocations: List[ReconciledAllocation]) -> Dict[int, Decimal]:
    """Batch id -> total impact (adjustment plus packing), first-seen order."""
    totals: Dict[int, Decimal] = OrderedDict()
    for allocation in allocations:
        totals[allocation.batch_id] = totals.get(allocation.batch_id, ZERO) + allocation.batch_impact
    return totals


def calculate_sale_impact(
    plan: AllocationPlan,
    sale_rate: Decimal,
    packing_cost: Decimal = ZERO,
    transport_cost: Decimal = ZERO,
) -> SaleImpact:
    """
    Preview the cost impact of selling a plan's quantity at sale_rate.

    net_revenue = sale_rate x quantity - packing_cost - transport_cost.
    Transport affects revenue only; packing is also posted to the batches.

    Raises:
        ValidationError: Non-positive sale rate or negative costs
    """
    sale_rate = to_decimal(sale_rate)
    packing_cost = to_decimal(packing_cost, default=ZERO)
    transport_cost = to_decimal(transport_cost, default=ZERO)

    errors = []
    if sale_rate <= 0:
        errors.append("rate must be positive")
    if packing_cost < 0:
        errors.append("packing cost must not be negative")
    if transport_cost < 0:
        errors.append("transport cost must not be negative")
    if errors:
        raise ValidationError(errors)

    allocations = reconcile_plan(plan, sale_rate, packing_cost)
    quantity = plan.allocated
    total_adjustment = sum((a.batch_impact for a in allocations), ZERO)
    gross_revenue = sale_rate * quantity

    return SaleImpact(
        quantity=quantity,
        sale_rate=sale_rate,
        allocations=allocations,
        total_adjustment=total_adjustment,
        per_unit_impact=total_adjustment / quantity if quantity > 0 else ZERO,
        gross_revenue=gross_revenue,
        packing_cost=packing_cost,
        transport_cost=transport_cost,
        net_revenue=gross_revenue - packing_cost - transport_cost,
        adjustments_by_batch=group_by_batch(allocations),
    )
