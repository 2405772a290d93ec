"""Tests for FIFO allocation planning (preview phase)."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.services.exceptions import ValidationError
from src.services.fifo_allocation import LotSnapshot, allocate, order_lots

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def lot(lot_id, quantity, age_days, batch_id=None, rate="30", created_at=None):
    return LotSnapshot(
        lot_id=lot_id,
        batch_id=batch_id if batch_id is not None else lot_id * 10,
        byproduct_type="oil_cake",
        created_at=created_at or NOW - timedelta(days=age_days),
        quantity_remaining=Decimal(quantity),
        estimated_rate=Decimal(rate),
    )


class TestOrderLots:
    """Tests for order_lots()."""

    def test_oldest_first(self):
        lots = [lot(1, "10", 10), lot(2, "10", 5), lot(3, "10", 20)]
        assert [l.lot_id for l in order_lots(lots)] == [3, 1, 2]

    def test_same_age_breaks_tie_by_id(self):
        lots = [lot(9, "10", 3), lot(4, "10", 3)]
        assert [l.lot_id for l in order_lots(lots)] == [4, 9]

    def test_naive_and_aware_timestamps_compare(self):
        naive = lot(1, "10", 0, created_at=datetime(2024, 5, 1, 12, 0))
        aware = lot(2, "10", 0, created_at=datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc))
        assert [l.lot_id for l in order_lots([naive, aware])] == [2, 1]


class TestAllocate:
    """Tests for allocate()."""

    def test_small_request_comes_from_oldest_lot(self):
        lots = [lot(1, "100", 10), lot(2, "100", 5), lot(3, "100", 20)]
        plan = allocate(Decimal("40"), lots)
        assert [(a.lot_id, a.quantity) for a in plan.allocations] == [(3, Decimal("40"))]
        assert plan.satisfied is True

    def test_spills_into_next_oldest(self):
        lots = [lot(1, "30", 10), lot(2, "30", 5)]
        plan = allocate(Decimal("45"), lots)
        assert [(a.lot_id, a.quantity) for a in plan.allocations] == [
            (1, Decimal("30")),
            (2, Decimal("15")),
        ]
        assert plan.allocated == Decimal("45")

    def test_shortfall_reported_not_raised(self):
        lots = [lot(1, "30", 10), lot(2, "20", 5)]
        plan = allocate(Decimal("60"), lots)
        assert [a.quantity for a in plan.allocations] == [Decimal("30"), Decimal("20")]
        assert plan.shortfall == Decimal("10")
        assert plan.satisfied is False

    def test_no_lots_is_full_shortfall(self):
        plan = allocate(Decimal("5"), [])
        assert plan.allocations == []
        assert plan.shortfall == Decimal("5")

    def test_empty_lots_skipped(self):
        lots = [lot(1, "0", 10), lot(2, "50", 5)]
        plan = allocate(Decimal("10"), lots)
        assert [a.lot_id for a in plan.allocations] == [2]

    def test_allocation_carries_lot_rate_and_batch(self):
        plan = allocate(Decimal("10"), [lot(1, "50", 1, batch_id=77, rate="28.50")])
        allocation = plan.allocations[0]
        assert allocation.batch_id == 77
        assert allocation.estimated_rate == Decimal("28.50")

    def test_lots_are_not_mutated(self):
        lots = [lot(1, "30", 10)]
        allocate(Decimal("20"), lots)
        assert lots[0].quantity_remaining == Decimal("30")

    def test_non_positive_request_rejected(self):
        with pytest.raises(ValidationError):
            allocate(Decimal("0"), [lot(1, "30", 10)])

    def test_byproduct_type_recorded(self):
        plan = allocate(Decimal("1"), [lot(1, "30", 10)], byproduct_type="oil_cake")
        assert plan.byproduct_type == "oil_cake"
        assert plan.requested == Decimal("1")
