"""Tests for purchase invoices with landed cost."""

from datetime import date
from decimal import Decimal

import pytest

from src.models import Purchase, RateOverrideAudit
from src.services import cost_element_service, cost_ledger_service, purchase_service
from src.services.exceptions import MaterialNotFound, ValidationError
from src.services.purchase_service import (
    PurchaseLineInput,
    calculate_invoice_totals,
    calculate_landed_cost,
    price_invoice_lines,
    price_purchase_elements,
)
from src.services.rate_catalog import RateCatalog
from src.services.stage_costing import Override
from src.tests.factories import make_info


@pytest.fixture
def materials(test_db):
    """Seed, oil and sack materials; returns name -> id."""
    return {
        "seed": cost_ledger_service.create_material("Groundnut Seed", unit="kg", gst_rate=5).material_id,
        "oil": cost_ledger_service.create_material("Blending Oil", unit="L", gst_rate=5).material_id,
        "sacks": cost_ledger_service.create_material("Jute Sacks", unit="Nos", gst_rate=12).material_id,
    }


class TestCalculateLandedCost:
    """Tests for calculate_landed_cost()."""

    def test_gst_on_amount_plus_charges(self):
        cost = calculate_landed_cost(Decimal("100"), Decimal("50"), Decimal("5"), Decimal("100"))
        assert cost["amount"] == Decimal("5000")
        assert cost["taxable_amount"] == Decimal("5100")
        assert cost["gst_amount"] == Decimal("255")
        assert cost["total_cost"] == Decimal("5355")
        assert cost["landed_unit_cost"] == Decimal("53.55")

    def test_no_charges_no_gst(self):
        cost = calculate_landed_cost(Decimal("10"), Decimal("7"), Decimal("0"))
        assert cost["landed_unit_cost"] == Decimal("7")


class TestPriceInvoiceLines:
    """Tests for price_invoice_lines()."""

    def _lines(self):
        return [
            PurchaseLineInput(1, Decimal("1000"), Decimal("80"), gst_rate=Decimal("5"), unit="kg"),
            PurchaseLineInput(2, Decimal("200"), Decimal("120"), gst_rate=Decimal("5"), unit="L"),
            PurchaseLineInput(3, Decimal("100"), Decimal("10"), gst_rate=Decimal("12"), unit="Nos"),
        ]

    def test_charges_allocated_by_group(self):
        priced = price_invoice_lines(self._lines(), transport_cost=Decimal("1000"))
        assert [line.transport_charge for line in priced] == [
            Decimal("600.00"),
            Decimal("200.00"),
            Decimal("200.00"),
        ]
        assert all(line.handling_charge == Decimal("0") for line in priced)

    def test_landed_unit_cost(self):
        priced = price_invoice_lines(
            self._lines(), transport_cost=Decimal("1000"), handling_charges=Decimal("500")
        )
        seed = priced[0]
        # 80000 + 600 transport + 300 handling, then 5% GST
        assert seed.taxable_amount == Decimal("80900.00")
        assert seed.gst_amount == Decimal("4045.0000")
        assert seed.total_cost == Decimal("84945.0000")
        assert seed.landed_unit_cost == Decimal("84.9450")

    def test_invoice_totals(self):
        priced = price_invoice_lines(
            self._lines(), transport_cost=Decimal("1000"), handling_charges=Decimal("500")
        )
        totals = calculate_invoice_totals(priced)
        assert totals.subtotal == Decimal("105000")
        assert totals.transport_allocated == Decimal("1000.00")
        assert totals.handling_allocated == Decimal("500.00")

    def test_custom_shares(self):
        shares = {"mass": Decimal("100"), "volume": Decimal("0"), "count": Decimal("0")}
        priced = price_invoice_lines(self._lines(), transport_cost=Decimal("1000"), shares=shares)
        assert priced[0].transport_charge == Decimal("1000.00")
        assert priced[1].transport_charge == Decimal("0")

    def test_shares_must_total_100(self):
        shares = {"mass": Decimal("50"), "volume": Decimal("20"), "count": Decimal("20")}
        with pytest.raises(ValidationError):
            price_invoice_lines(self._lines(), transport_cost=Decimal("1000"), shares=shares)

    def test_line_errors_collected(self):
        lines = [PurchaseLineInput(1, Decimal("0"), Decimal("-1"), gst_rate=Decimal("150"))]
        with pytest.raises(ValidationError) as exc_info:
            price_invoice_lines(lines, transport_cost=Decimal("-5"))
        assert exc_info.value.errors == [
            "transport cost must not be negative",
            "line 1: quantity must be positive",
            "line 1: rate must be positive",
            "line 1: GST rate must be between 0 and 100",
            "line 1: unit of measure is required",
        ]


class TestPricePurchaseElements:
    """Tests for price_purchase_elements()."""

    def _elements(self):
        return [
            make_info(7, "Seed Unloading", method="per_bag", rate="0.12", stages=("purchase",), is_optional=True),
            make_info(8, "Transport - Seed Inward", rate="1.0", stages=("purchase",), is_optional=True),
            make_info(9, "Drying Labour", rate="0.90", stages=("drying",)),
        ]

    def _lines(self):
        return [
            PurchaseLineInput(1, Decimal("2040"), Decimal("80"), unit="kg"),
            PurchaseLineInput(3, Decimal("100"), Decimal("10"), unit="Nos"),
        ]

    def test_bags_and_kg_from_mass_lines(self):
        result = price_purchase_elements(self._lines(), self._elements(), enabled={7: True, 8: True})

        assert [(line.element_name, line.quantity) for line in result.applied_lines] == [
            ("Seed Unloading", Decimal("41")),
            ("Transport - Seed Inward", Decimal("2040")),
        ]
        assert result.total == Decimal("2044.92")

    def test_optional_elements_off_by_default(self):
        result = price_purchase_elements(self._lines(), self._elements())
        assert result.total == Decimal("0")

    def test_override_rate(self):
        result = price_purchase_elements(
            self._lines(),
            self._elements(),
            overrides={7: Override(rate=Decimal("0.20"), reason="new crew")},
            enabled={7: True},
        )
        assert result.total == Decimal("8.20")


class TestRecordInvoice:
    """Tests for record_invoice()."""

    def test_records_invoice_and_updates_ledger(self, test_db, materials):
        result = purchase_service.record_invoice(
            invoice_ref="INV-0042",
            purchase_date=date(2024, 3, 1),
            lines=[
                PurchaseLineInput(materials["seed"], Decimal("1000"), Decimal("80")),
                PurchaseLineInput(materials["sacks"], Decimal("100"), Decimal("10")),
            ],
            transport_cost=Decimal("1000"),
            supplier_name="Salem Traders",
        )

        assert result["invoice_ref"] == "INV-0042"
        assert len(result["items"]) == 2
        # Unit and GST come from the material: 80000 + 600, then 5% GST
        seed_item = result["items"][0]
        assert Decimal(seed_item["landed_unit_cost"]) == Decimal("84.63")
        assert Decimal(seed_item["gst_rate"]) == Decimal("5")

        seed = cost_ledger_service.get_material_cost(materials["seed"])
        assert seed.available_quantity == Decimal("1000")
        assert seed.weighted_avg_cost == Decimal("84.63")

        entries = cost_ledger_service.get_ledger_entries(materials["seed"])
        assert entries[0]["reference"] == "INV-0042"

    def test_invalid_invoice_writes_nothing(self, test_db, materials):
        with pytest.raises(ValidationError):
            purchase_service.record_invoice(
                invoice_ref="INV-0043",
                purchase_date=date(2024, 3, 2),
                lines=[PurchaseLineInput(materials["seed"], Decimal("1000"), Decimal("0"))],
            )

        assert test_db().query(Purchase).count() == 0
        assert cost_ledger_service.get_material_cost(materials["seed"]).available_quantity == Decimal("0")

    def test_unknown_material(self, test_db):
        with pytest.raises(MaterialNotFound):
            purchase_service.record_invoice(
                invoice_ref="INV-0044",
                purchase_date=date(2024, 3, 2),
                lines=[PurchaseLineInput(999, Decimal("10"), Decimal("10"))],
            )

    def test_blank_reference_rejected(self, test_db, materials):
        with pytest.raises(ValidationError):
            purchase_service.record_invoice(
                invoice_ref=" ",
                purchase_date=date(2024, 3, 2),
                lines=[PurchaseLineInput(materials["seed"], Decimal("10"), Decimal("10"))],
            )


class TestRecordInvoiceWithElements:
    """Tests for record_invoice() with purchase-stage cost elements."""

    @pytest.fixture
    def purchase_elements(self, test_db):
        ids = {}
        for name, method, rate in [
            ("Seed Unloading", "per_bag", Decimal("0.12")),
            ("Transport - Seed Inward", "per_quantity", Decimal("1.0")),
        ]:
            element = cost_element_service.create_cost_element(
                name=name,
                category="Transport",
                calculation_method=method,
                default_rate=rate,
                stages=["purchase"],
                is_optional=True,
            )
            ids[name] = element["id"]
        return ids

    def _record(self, materials, purchase_elements, **kwargs):
        return purchase_service.record_invoice(
            invoice_ref="INV-0100",
            purchase_date=date(2024, 3, 5),
            lines=[PurchaseLineInput(materials["seed"], Decimal("1000"), Decimal("80"))],
            catalog=RateCatalog(),
            enabled={element_id: True for element_id in purchase_elements.values()},
            **kwargs,
        )

    def test_element_costs_added_to_grand_total(self, test_db, materials, purchase_elements):
        result = self._record(materials, purchase_elements)

        # 20 bags x 0.12 + 1000 kg x 1.0
        assert Decimal(result["additional_costs"]) == Decimal("1002.40")
        assert Decimal(result["grand_total"]) == Decimal("85002.40")
        assert [line["element_name"] for line in result["cost_lines"]] == [
            "Seed Unloading",
            "Transport - Seed Inward",
        ]
        assert Decimal(result["cost_lines"][0]["quantity"]) == Decimal("20")
        # Element costs stay out of the landed unit cost
        assert cost_ledger_service.get_material_cost(materials["seed"]).weighted_avg_cost == Decimal("84")

    def test_override_without_reason_writes_nothing(self, test_db, materials, purchase_elements):
        unloading = purchase_elements["Seed Unloading"]

        with pytest.raises(ValidationError) as exc_info:
            self._record(materials, purchase_elements, overrides={unloading: Override(rate=Decimal("0.20"))})

        assert exc_info.value.errors == ["Seed Unloading: reason required"]
        session = test_db()
        assert session.query(Purchase).count() == 0
        assert session.query(RateOverrideAudit).count() == 0
        assert cost_ledger_service.get_material_cost(materials["seed"]).available_quantity == Decimal("0")

    def test_override_audited_against_purchase(self, test_db, materials, purchase_elements):
        unloading = purchase_elements["Seed Unloading"]

        result = self._record(
            materials,
            purchase_elements,
            overrides={unloading: Override(rate=Decimal("0.20"), reason="Festival wage rate")},
            actor="accounts",
        )

        assert len(result["audit_records"]) == 1
        assert Decimal(result["cost_lines"][0]["total_cost"]) == Decimal("4.00")
        assert result["cost_lines"][0]["is_overridden"] is True
        audit = test_db().query(RateOverrideAudit).one()
        assert audit.purchase_id == result["id"]
        assert audit.batch_id is None
        assert audit.reason == "Festival wage rate"
