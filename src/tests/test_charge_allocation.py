"""Tests for purchase charge allocation across UOM groups."""

from decimal import Decimal

import pytest

from src.services.charge_allocation import (
    ChargeLine,
    allocate_charge,
    classify_unit,
    validate_group_shares,
)
from src.services.exceptions import ValidationError

DEFAULT_SHARES = {"mass": Decimal("60"), "volume": Decimal("20"), "count": Decimal("20")}


class TestClassifyUnit:
    """Tests for classify_unit()."""

    def test_kg_is_mass(self):
        assert classify_unit("kg") == "mass"

    def test_litres_are_volume(self):
        assert classify_unit("L") == "volume"
        assert classify_unit("Liters") == "volume"

    def test_anything_else_is_count(self):
        assert classify_unit("Nos") == "count"
        assert classify_unit("bags") == "count"


class TestValidateGroupShares:
    """Tests for validate_group_shares()."""

    def test_exactly_100_is_accepted(self):
        assert validate_group_shares(DEFAULT_SHARES) == Decimal("100")

    def test_under_100_rejected_when_complete_required(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_group_shares({"mass": 60, "volume": 20})
        assert "must total 100" in str(exc_info.value)

    def test_under_100_allowed_while_editing(self):
        assert validate_group_shares({"mass": 60, "volume": 20}, require_complete=False) == Decimal("80")

    def test_over_100_always_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_group_shares({"mass": 70, "volume": 40}, require_complete=False)
        assert "must not exceed 100" in str(exc_info.value)

    def test_negative_share_rejected(self):
        with pytest.raises(ValidationError):
            validate_group_shares({"mass": 120, "volume": -20})


class TestAllocateCharge:
    """Tests for allocate_charge()."""

    def test_proportional_within_group(self):
        """Items share their group's charge by quantity."""
        lines = [
            ChargeLine("seed-a", "mass", Decimal("100")),
            ChargeLine("seed-b", "mass", Decimal("300")),
            ChargeLine("bags", "count", Decimal("10")),
        ]
        result = allocate_charge(Decimal("1000"), DEFAULT_SHARES, lines)
        assert result["seed-a"] == Decimal("150.00")
        assert result["seed-b"] == Decimal("450.00")
        assert result["bags"] == Decimal("200.00")

    def test_result_keeps_input_order(self):
        lines = [ChargeLine(key, "mass", Decimal("1")) for key in (3, 1, 2)]
        result = allocate_charge(Decimal("90"), {"mass": 100}, lines)
        assert list(result.keys()) == [3, 1, 2]

    def test_conservation_within_rounding_per_group(self):
        """Each group's allocated sum is within 0.01 of its group charge."""
        lines = [
            ChargeLine(0, "mass", Decimal("137")),
            ChargeLine(1, "mass", Decimal("411")),
            ChargeLine(2, "mass", Decimal("29")),
            ChargeLine(3, "volume", Decimal("17.5")),
            ChargeLine(4, "volume", Decimal("3")),
            ChargeLine(5, "count", Decimal("7")),
            ChargeLine(6, "count", Decimal("11")),
        ]
        total = Decimal("2347.83")
        result = allocate_charge(total, DEFAULT_SHARES, lines)

        for group, share in DEFAULT_SHARES.items():
            group_charge = total * share / 100
            allocated = sum(result[line.key] for line in lines if line.group == group)
            assert abs(allocated - group_charge) <= Decimal("0.01")

    def test_per_item_rounding_drift_is_kept(self):
        """Independent rounding may leave a paisa unallocated."""
        lines = [ChargeLine(i, "mass", Decimal("1")) for i in range(3)]
        result = allocate_charge(Decimal("100"), {"mass": 100}, lines)
        assert list(result.values()) == [Decimal("33.33")] * 3
        assert sum(result.values()) == Decimal("99.99")

    def test_unrounded_mode_keeps_precision(self):
        lines = [ChargeLine(i, "mass", Decimal("1")) for i in range(3)]
        result = allocate_charge(Decimal("100"), {"mass": 100}, lines, round_to_currency=False)
        assert result[0] > Decimal("33.333")

    def test_empty_group_gets_nothing_and_is_not_redistributed(self):
        """A group with zero total quantity allocates 0 to each of its items."""
        lines = [
            ChargeLine("seed", "mass", Decimal("500")),
            ChargeLine("drum", "volume", Decimal("0")),
        ]
        result = allocate_charge(Decimal("1000"), DEFAULT_SHARES, lines)
        assert result["drum"] == Decimal("0")
        assert result["seed"] == Decimal("600.00")

    def test_zero_charge_allocates_zero(self):
        lines = [ChargeLine("seed", "mass", Decimal("500"))]
        assert allocate_charge(Decimal("0"), DEFAULT_SHARES, lines)["seed"] == Decimal("0")

    def test_shares_not_100_rejected(self):
        lines = [ChargeLine("seed", "mass", Decimal("500"))]
        with pytest.raises(ValidationError):
            allocate_charge(Decimal("1000"), {"mass": 60, "volume": 20, "count": 10}, lines)

    def test_negative_charge_rejected(self):
        lines = [ChargeLine("seed", "mass", Decimal("500"))]
        with pytest.raises(ValidationError) as exc_info:
            allocate_charge(Decimal("-1"), DEFAULT_SHARES, lines)
        assert "total charge must not be negative" in exc_info.value.errors

    def test_negative_quantity_rejected(self):
        lines = [ChargeLine("seed", "mass", Decimal("-5"))]
        with pytest.raises(ValidationError):
            allocate_charge(Decimal("100"), DEFAULT_SHARES, lines)

    def test_group_without_share_rejected(self):
        lines = [ChargeLine("crate", "pallet", Decimal("2"))]
        with pytest.raises(ValidationError) as exc_info:
            allocate_charge(Decimal("100"), DEFAULT_SHARES, lines)
        assert "no share configured for group 'pallet'" in exc_info.value.errors

    def test_duplicate_keys_rejected(self):
        lines = [ChargeLine(1, "mass", Decimal("2")), ChargeLine(1, "mass", Decimal("3"))]
        with pytest.raises(ValidationError):
            allocate_charge(Decimal("100"), DEFAULT_SHARES, lines)

    def test_accepts_plain_numbers(self):
        lines = [ChargeLine("seed", "mass", 250)]
        result = allocate_charge(500, {"mass": 100}, lines)
        assert result["seed"] == Decimal("500.00")
