"""Tests for estimated vs realized byproduct rate reconciliation."""

from decimal import Decimal

import pytest

from src.services.cost_reconciliation import (
    ReconciledAllocation,
    apply_adjustment,
    calculate_sale_impact,
    group_by_batch,
    reconcile,
    reconcile_plan,
    spread_packing_cost,
)
from src.services.exceptions import ValidationError
from src.services.fifo_allocation import AllocationPlan, PlannedAllocation
from src.services.net_cost import aggregate


def plan_of(*parts):
    """AllocationPlan from (lot_id, batch_id, quantity, estimated_rate) tuples."""
    allocations = [
        PlannedAllocation(lot_id=l, batch_id=b, quantity=Decimal(q), estimated_rate=Decimal(r))
        for l, b, q, r in parts
    ]
    requested = sum((a.quantity for a in allocations), Decimal("0"))
    return AllocationPlan(requested=requested, allocations=allocations)


class TestReconcile:
    """Tests for reconcile() sign convention."""

    def test_sold_below_estimate_raises_cost(self):
        allocation = ReconciledAllocation(1, 7, Decimal("100"), Decimal("30"), Decimal("25"))
        assert reconcile(allocation) == Decimal("500")

    def test_sold_above_estimate_lowers_cost(self):
        allocation = ReconciledAllocation(1, 7, Decimal("100"), Decimal("30"), Decimal("32"))
        assert reconcile(allocation) == Decimal("-200")

    def test_sold_at_estimate_is_zero(self):
        allocation = ReconciledAllocation(1, 7, Decimal("100"), Decimal("30"), Decimal("30"))
        assert reconcile(allocation) == Decimal("0")


class TestApplyAdjustment:
    """Tests for apply_adjustment()."""

    def test_adjustments_are_additive(self):
        summary = aggregate(Decimal("10000"), [], Decimal("1000"), output_quantity=Decimal("100"))
        twice = apply_adjustment(apply_adjustment(summary, Decimal("50")), Decimal("-30"))
        once = apply_adjustment(summary, Decimal("20"))
        assert twice.adjustments_total == once.adjustments_total == Decimal("20")
        assert twice.net_cost == once.net_cost == Decimal("9020")
        assert twice.cost_per_unit == Decimal("90.2")

    def test_input_summary_unchanged(self):
        summary = aggregate(Decimal("10000"), [], Decimal("1000"), output_quantity=Decimal("100"))
        apply_adjustment(summary, Decimal("500"))
        assert summary.net_cost == Decimal("9000")
        assert summary.adjustments_total == Decimal("0")


class TestSpreadPackingCost:
    """Tests for spread_packing_cost()."""

    def test_shares_by_quantity(self):
        plan = plan_of((1, 10, "30", "30"), (2, 20, "10", "30"))
        assert spread_packing_cost(plan, Decimal("100")) == [Decimal("75.0000"), Decimal("25.0000")]

    def test_shares_sum_exactly(self):
        plan = plan_of((1, 10, "1", "30"), (2, 20, "1", "30"), (3, 30, "1", "30"))
        shares = spread_packing_cost(plan, Decimal("100"))
        assert sum(shares) == Decimal("100")
        assert shares[0] == Decimal("33.3333")

    def test_no_packing_cost(self):
        plan = plan_of((1, 10, "30", "30"))
        assert spread_packing_cost(plan, Decimal("0")) == [Decimal("0")]


class TestReconcilePlan:
    """Tests for reconcile_plan() and group_by_batch()."""

    def test_each_allocation_reconciled_at_sale_rate(self):
        plan = plan_of((1, 10, "30", "30"), (2, 20, "20", "28"))
        allocations = reconcile_plan(plan, Decimal("25"))
        assert [a.adjustment for a in allocations] == [Decimal("150"), Decimal("60")]
        assert all(a.realized_rate == Decimal("25") for a in allocations)

    def test_group_by_batch_merges_lots_of_one_batch(self):
        plan = plan_of((1, 10, "30", "30"), (2, 10, "20", "30"), (3, 20, "10", "30"))
        totals = group_by_batch(reconcile_plan(plan, Decimal("29")))
        assert list(totals.keys()) == [10, 20]
        assert totals[10] == Decimal("50")
        assert totals[20] == Decimal("10")


class TestCalculateSaleImpact:
    """Tests for calculate_sale_impact()."""

    def test_revenue_and_impact(self):
        plan = plan_of((1, 10, "30", "30"), (2, 20, "20", "28"))
        impact = calculate_sale_impact(
            plan, Decimal("25"), packing_cost=Decimal("100"), transport_cost=Decimal("50")
        )
        assert impact.quantity == Decimal("50")
        assert impact.gross_revenue == Decimal("1250")
        assert impact.net_revenue == Decimal("1100")
        # 150 + 60 rate adjustments plus 100 packing
        assert impact.total_adjustment == Decimal("310")
        assert impact.per_unit_impact == Decimal("6.2")
        assert impact.adjustments_by_batch == {10: Decimal("210.0000"), 20: Decimal("100.0000")}

    def test_transport_is_not_posted_to_batches(self):
        plan = plan_of((1, 10, "10", "30"))
        impact = calculate_sale_impact(plan, Decimal("30"), transport_cost=Decimal("75"))
        assert impact.total_adjustment == Decimal("0")
        assert impact.net_revenue == Decimal("225")

    def test_invalid_inputs_rejected(self):
        plan = plan_of((1, 10, "10", "30"))
        with pytest.raises(ValidationError) as exc_info:
            calculate_sale_impact(plan, Decimal("0"), packing_cost=Decimal("-1"))
        assert exc_info.value.errors == [
            "rate must be positive",
            "packing cost must not be negative",
        ]
