"""Unit tests for exception hierarchy.

Validates that all service exceptions inherit from ServiceError and carry
the attributes callers rely on.
"""

import inspect
from decimal import Decimal

import pytest

from src.services import exceptions as exc_module
from src.services.exceptions import (
    BatchNotFound,
    CostElementNotFound,
    InsufficientInventoryError,
    LotNotFound,
    PersistenceError,
    ServiceError,
    StaleCacheWarning,
    ValidationError,
)


def get_all_exception_classes():
    """Discover exception classes defined in the exceptions module.

    Warning categories are not errors and are skipped.
    """
    return [
        (name, obj)
        for name, obj in inspect.getmembers(exc_module, inspect.isclass)
        if issubclass(obj, Exception)
        and not issubclass(obj, Warning)
        and obj.__module__ == exc_module.__name__
    ]


class TestExceptionHierarchy:
    """Verify all exceptions inherit from ServiceError."""

    @pytest.fixture
    def all_exceptions(self):
        return get_all_exception_classes()

    def test_all_domain_exceptions_inherit_from_service_error(self, all_exceptions):
        """All domain exceptions must inherit from ServiceError."""
        failures = [
            f"{name} does not inherit from ServiceError"
            for name, exc_class in all_exceptions
            if not issubclass(exc_class, ServiceError)
        ]
        assert not failures, "\n".join(failures)

    def test_http_status_codes_are_valid(self, all_exceptions):
        """HTTP status codes must be valid (4xx or 5xx)."""
        valid_codes = [400, 404, 409, 422, 500]
        failures = [
            f"{name} has invalid http_status_code: {exc_class.http_status_code}"
            for name, exc_class in all_exceptions
            if exc_class.http_status_code not in valid_codes
        ]
        assert not failures, "\n".join(failures)

    def test_stale_cache_warning_is_a_user_warning(self):
        assert issubclass(StaleCacheWarning, UserWarning)
        assert not issubclass(StaleCacheWarning, ServiceError)


class TestServiceErrorBase:
    """Test ServiceError base class functionality."""

    def test_correlation_id_support(self):
        error = ServiceError("test", correlation_id="abc-123")
        assert error.correlation_id == "abc-123"

    def test_context_support(self):
        error = ServiceError("test", batch_id=123, stage="drying")
        assert error.context == {"batch_id": 123, "stage": "drying"}

    def test_to_dict(self):
        """ServiceError serializes to a dict with Decimal context as strings."""
        error = ServiceError("test message", correlation_id="abc", amount=Decimal("12.50"))
        d = error.to_dict()
        assert d["type"] == "ServiceError"
        assert d["message"] == "test message"
        assert d["correlation_id"] == "abc"
        assert d["http_status_code"] == 500
        assert d["context"] == {"amount": "12.50"}

    def test_str_representation(self):
        assert str(ServiceError("error occurred")) == "error occurred"


class TestSpecificExceptions:
    """Test specific exception classes."""

    def test_validation_error_keeps_all_messages(self):
        error = ValidationError(["rate must be positive", "reason required"])
        assert error.errors == ["rate must be positive", "reason required"]
        assert str(error) == "Validation failed: rate must be positive; reason required"
        assert error.http_status_code == 400

    def test_insufficient_inventory_shortfall(self):
        error = InsufficientInventoryError("oil_cake", Decimal("60"), Decimal("50"), lot_id=3)
        assert error.shortfall == Decimal("10")
        assert error.context["lot_id"] == 3
        assert "shortfall 10" in str(error)
        assert error.http_status_code == 409

    def test_insufficient_inventory_never_negative(self):
        error = InsufficientInventoryError("sludge", Decimal("5"), Decimal("8"))
        assert error.shortfall == Decimal("0")

    def test_persistence_error_keeps_original(self):
        original = RuntimeError("disk full")
        error = PersistenceError("Failed to commit byproduct sale", original_error=original)
        assert error.original_error is original
        assert str(error) == "Persistence error: Failed to commit byproduct sale"

    @pytest.mark.parametrize(
        "exc_class, attribute",
        [
            (CostElementNotFound, "identifier"),
            (BatchNotFound, "batch_id"),
            (LotNotFound, "lot_id"),
        ],
    )
    def test_not_found_errors(self, exc_class, attribute):
        error = exc_class(42)
        assert getattr(error, attribute) == 42
        assert "42" in str(error)
        assert error.http_status_code == 404
