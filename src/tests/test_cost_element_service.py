"""Tests for cost element master data."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from src.services import cost_element_service
from src.services.exceptions import CostElementNotFound, ValidationError
from src.services.override_audit import validate_override_submission
from src.services.rate_catalog import RateCatalog


class TestCreateCostElement:
    """Tests for create_cost_element()."""

    def test_create_with_stages(self, test_db):
        element = cost_element_service.create_cost_element(
            name="Drying Labour",
            category="Labor",
            calculation_method="per_quantity",
            default_rate=Decimal("0.90"),
            stages=["drying"],
        )
        assert element["id"] is not None
        assert element["stages"] == ["drying"]
        assert Decimal(element["default_rate"]) == Decimal("0.90")

    def test_invalid_fields_reported_together(self, test_db):
        with pytest.raises(ValidationError) as exc_info:
            cost_element_service.create_cost_element(
                name=" ",
                category="Snacks",
                calculation_method="per_moon",
                default_rate=Decimal("-1"),
                stages=["roasting"],
            )
        assert len(exc_info.value.errors) == 5


class TestQueries:
    """Tests for get_cost_element() and list_cost_elements()."""

    def test_get_missing_raises(self, test_db):
        with pytest.raises(CostElementNotFound):
            cost_element_service.get_cost_element(999)

    def test_list_by_stage_uses_name_rule_for_untagged(self, standard_elements):
        names = [e["name"] for e in cost_element_service.list_cost_elements(stage="drying")]
        assert names == ["Drying Labour", "Loading After Drying"]

    def test_list_batch_stage(self, standard_elements):
        names = [e["name"] for e in cost_element_service.list_cost_elements(stage="batch")]
        assert names == ["Filter Cloth", "Oil Filtering Labour", "Quality Testing"]


class TestUpdateDefaultRate:
    """Tests for update_default_rate()."""

    def test_update_invalidates_catalog(self, standard_elements):
        catalog = RateCatalog()
        assert catalog.rate_of("Drying Labour") == Decimal("0.90")

        cost_element_service.update_default_rate(
            standard_elements["Drying Labour"], Decimal("1.10"), catalog=catalog
        )

        assert catalog.is_fresh() is False
        assert catalog.rate_of("Drying Labour") == Decimal("1.10")

    def test_negative_rate_rejected(self, standard_elements):
        with pytest.raises(ValidationError):
            cost_element_service.update_default_rate(standard_elements["Drying Labour"], -1)


class TestApplyOverrideToCatalog:
    """Tests for apply_override_to_catalog()."""

    def _record(self, element_id, apply_to_future):
        return validate_override_submission(
            original_rate=Decimal("150"),
            proposed_rate=Decimal("200"),
            reason="New wage agreement",
            requires_reason=True,
            apply_to_future=apply_to_future,
            element_id=element_id,
            element_name="Crushing Labour",
            timestamp=datetime(2024, 3, 1, tzinfo=timezone.utc),
        )

    def test_record_without_future_intent_is_ignored(self, standard_elements):
        element_id = standard_elements["Crushing Labour"]
        assert cost_element_service.apply_override_to_catalog(self._record(element_id, False)) is None
        element = cost_element_service.get_cost_element(element_id)
        assert Decimal(element["default_rate"]) == Decimal("150")

    def test_future_intent_updates_master_rate(self, standard_elements):
        element_id = standard_elements["Crushing Labour"]
        result = cost_element_service.apply_override_to_catalog(self._record(element_id, True))
        assert Decimal(result["default_rate"]) == Decimal("200")

    def test_record_without_element_rejected(self, test_db):
        with pytest.raises(ValidationError):
            cost_element_service.apply_override_to_catalog(self._record(None, True))


class TestMigrateLegacyStageTags:
    """Tests for migrate_legacy_stage_tags()."""

    def test_tags_untagged_elements_from_names(self, standard_elements):
        cost_element_service.create_cost_element(
            name="Generator Diesel - Crushing",
            category="Utilities",
            calculation_method="per_hour",
            default_rate=Decimal("60"),
        )
        cost_element_service.create_cost_element(
            name="Sacks",
            category="Consumables",
            calculation_method="per_quantity",
            default_rate=Decimal("2"),
        )

        migrated = cost_element_service.migrate_legacy_stage_tags()

        assert migrated == {
            "Loading After Drying": ["drying"],
            "Generator Diesel - Crushing": ["crushing"],
        }
        element = cost_element_service.get_cost_element(standard_elements["Loading After Drying"])
        assert element["stages"] == ["drying"]

    def test_second_run_is_a_no_op(self, standard_elements):
        cost_element_service.migrate_legacy_stage_tags()
        assert cost_element_service.migrate_legacy_stage_tags() == {}

    def test_set_element_stages_replaces_tags(self, standard_elements):
        element_id = standard_elements["Filter Cloth"]
        element = cost_element_service.set_element_stages(element_id, ["drying", "crushing"])
        assert element["stages"] == ["crushing", "drying"]
