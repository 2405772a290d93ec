"""Tests for rate override auditing."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from src.models import RateOverrideAudit
from src.services.exceptions import ValidationError
from src.services.override_audit import (
    OverrideAuditRecord,
    audit_override,
    calculate_deviation,
    evaluate_override,
    save_audit_record,
    validate_override_submission,
)


class TestEvaluateOverride:
    """Tests for evaluate_override()."""

    def test_exactly_20_percent_needs_no_reason(self):
        evaluation = evaluate_override(Decimal("100"), Decimal("120"))
        assert evaluation.deviation_percent == Decimal("20")
        assert evaluation.requires_reason is False

    def test_just_over_20_percent_needs_reason(self):
        evaluation = evaluate_override(Decimal("100"), Decimal("120.01"))
        assert evaluation.requires_reason is True

    def test_decrease_is_measured_by_magnitude(self):
        evaluation = evaluate_override(Decimal("100"), Decimal("75"))
        assert evaluation.deviation_percent == Decimal("-25")
        assert evaluation.requires_reason is True

    def test_zero_default_has_no_deviation(self):
        evaluation = evaluate_override(Decimal("0"), Decimal("50"))
        assert evaluation.deviation_percent == Decimal("0")
        assert evaluation.requires_reason is False

    def test_calculate_deviation_accepts_strings(self):
        assert calculate_deviation("150", "180") == Decimal("20")


class TestValidateOverrideSubmission:
    """Tests for validate_override_submission()."""

    def test_non_positive_rate_rejected(self):
        for rate in (Decimal("0"), Decimal("-5")):
            with pytest.raises(ValidationError) as exc_info:
                validate_override_submission(Decimal("100"), rate, "typo", requires_reason=False)
            assert exc_info.value.errors == ["rate must be positive"]

    def test_blank_reason_rejected_when_required(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_override_submission(Decimal("100"), Decimal("130"), "   ", requires_reason=True)
        assert exc_info.value.errors == ["reason required"]

    def test_default_reason_when_not_required(self):
        record = validate_override_submission(
            Decimal("100"), Decimal("110"), None, requires_reason=False
        )
        assert record.reason == "Rate changed from ₹100.00 to ₹110.00"

    def test_record_carries_submission(self):
        timestamp = datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)
        record = validate_override_submission(
            original_rate=Decimal("100"),
            proposed_rate=Decimal("130"),
            reason="  Diesel price increase ",
            requires_reason=True,
            actor="supervisor",
            apply_to_future=True,
            element_id=7,
            element_name="Crushing Labour",
            timestamp=timestamp,
        )
        assert record.reason == "Diesel price increase"
        assert record.deviation_percent == Decimal("30")
        assert record.timestamp == timestamp
        assert record.actor == "supervisor"
        assert record.apply_to_future is True
        assert record.element_id == 7

    def test_record_is_immutable(self):
        record = validate_override_submission(Decimal("1"), Decimal("1.1"), None, False)
        with pytest.raises(AttributeError):
            record.new_rate = Decimal("2")


class TestAuditOverride:
    """Tests for audit_override()."""

    def test_accepts_small_change_without_reason(self):
        record = audit_override(Decimal("150"), Decimal("160"))
        assert record.new_rate == Decimal("160")

    def test_rejects_large_change_without_reason(self):
        with pytest.raises(ValidationError):
            audit_override(Decimal("150"), Decimal("200"), element_name="Crushing Labour")


class TestSaveAuditRecord:
    """Tests for save_audit_record()."""

    def test_persists_record(self, test_db, standard_elements):
        record = OverrideAuditRecord(
            original_rate=Decimal("150"),
            new_rate=Decimal("200"),
            deviation_percent=Decimal("33.33333333"),
            reason="Overtime",
            timestamp=datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc),
            actor="supervisor",
            element_id=standard_elements["Crushing Labour"],
            element_name="Crushing Labour",
        )
        audit_id = save_audit_record(record).id

        stored = test_db().get(RateOverrideAudit, audit_id)
        assert stored.element_name == "Crushing Labour"
        assert stored.deviation_percent == Decimal("33.33")
        assert stored.new_rate == Decimal("200")
        assert stored.reason == "Overtime"
        assert stored.apply_to_future is False
