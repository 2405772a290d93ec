"""
Net cost aggregation for production batches.

    net_cost      = base_material_cost + sum(applied stage line totals)
                    - byproduct_revenue + adjustments_total
    cost_per_unit = net_cost / output_quantity   (0 when output is 0)

Values keep full Decimal precision; rounding to currency happens only
when presenting (see BatchCostSummary.to_dict()).

Transaction boundary: Pure computation (no database access).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from ..utils.money import ZERO, round_currency, to_decimal
from .exceptions import ValidationError


@dataclass(frozen=True)
class ByproductYield:
    """Byproduct produced by a batch, valued at its estimated rate."""

    byproduct_type: str
    quantity: Decimal
    estimated_rate: Decimal

    @property
    def revenue(self) -> Decimal:
        return self.quantity * self.estimated_rate


@dataclass(frozen=True)
class BatchCostSummary:
    """
    Cost breakdown of a batch.

    Attributes:
        batch_ref: Batch id or code (None before persistence)
        base_material_cost: Input materials at weighted-average cost
        stage_totals: Total of each applied stage line, in order
        stage_cost_total: Sum of stage_totals
        byproduct_revenue: Estimated byproduct revenue at production time
        adjustments_total: Cumulative reconciliation adjustments
        output_quantity: Main product output
        net_cost: Derived, see module docstring
        cost_per_unit: Derived, 0 when output_quantity is 0
    """

    base_material_cost: Decimal
    stage_totals: List[Decimal] = field(default_factory=list)
    stage_cost_total: Decimal = ZERO
    byproduct_revenue: Decimal = ZERO
    adjustments_total: Decimal = ZERO
    output_quantity: Decimal = ZERO
    net_cost: Decimal = ZERO
    cost_per_unit: Decimal = ZERO
    batch_ref: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Presentation view rounded to currency precision."""
        return {
            "batch_ref": self.batch_ref,
            "base_material_cost": round_currency(self.base_material_cost),
            "stage_cost_total": round_currency(self.stage_cost_total),
            "byproduct_revenue": round_currency(self.byproduct_revenue),
            "adjustments_total": round_currency(self.adjustments_total),
            "output_quantity": self.output_quantity,
            "net_cost": round_currency(self.net_cost),
            "cost_per_unit": round_currency(self.cost_per_unit),
        }


def calculate_net_cost(
    base_material_cost: Decimal,
    stage_cost_total: Decimal,
    byproduct_revenue: Decimal,
    adjustments_total: Decimal = ZERO,
) -> Decimal:
    return base_material_cost + stage_cost_total - byproduct_revenue + adjustments_total


def calculate_cost_per_unit(net_cost: Decimal, output_quantity: Decimal) -> Decimal:
    """net_cost / output_quantity, or 0 when there is no output."""
    if output_quantity <= 0:
        return ZERO
    return net_cost / output_quantity


def calculate_byproduct_revenue(yields: Iterable[ByproductYield]) -> Decimal:
    """Sum of yield x estimated rate over all byproducts."""
    return sum((y.revenue for y in yields), ZERO)


def aggregate(
    base_material_cost: Decimal,
    stage_lines: Iterable,
    byproduct_revenue: Decimal,
    output_quantity: Decimal = ZERO,
    adjustments_total: Decimal = ZERO,
    batch_ref: Optional[Any] = None,
) -> BatchCostSummary:
    """
    Combine material, stage and byproduct figures into a BatchCostSummary.

    Args:
        base_material_cost: Input materials at weighted-average cost
        stage_lines: Objects with is_applied and total_cost (StageCostLine,
            BatchStageCost); unapplied lines are ignored
        byproduct_revenue: Estimated byproduct revenue
        output_quantity: Main product output (0 is valid)
        adjustments_total: Reconciliation adjustments already posted
        batch_ref: Batch id or code

    Raises:
        ValidationError: Negative cost, revenue or output

    Example:
        >>> aggregate(Decimal("1000"), [], Decimal("0")).cost_per_unit
        Decimal('0')
    """
    base_material_cost = to_decimal(base_material_cost)
    byproduct_revenue = to_decimal(byproduct_revenue)
    output_quantity = to_decimal(output_quantity)
    adjustments_total = to_decimal(adjustments_total)

    errors = []
    if base_material_cost < 0:
        errors.append("base material cost must not be negative")
    if byproduct_revenue < 0:
        errors.append("byproduct revenue must not be negative")
    if output_quantity < 0:
        errors.append("output quantity must not be negative")
    if errors:
        raise ValidationError(errors, batch_ref=batch_ref)

    stage_totals = [Decimal(line.total_cost) for line in stage_lines if line.is_applied]
    stage_cost_total = sum(stage_totals, ZERO)
    net_cost = calculate_net_cost(
        base_material_cost, stage_cost_total, byproduct_revenue, adjustments_total
    )

    return BatchCostSummary(
        base_material_cost=base_material_cost,
        stage_totals=stage_totals,
        stage_cost_total=stage_cost_total,
        byproduct_revenue=byproduct_revenue,
        adjustments_total=adjustments_total,
        output_quantity=output_quantity,
        net_cost=net_cost,
        cost_per_unit=calculate_cost_per_unit(net_cost, output_quantity),
        batch_ref=batch_ref,
    )
