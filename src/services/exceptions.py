"""Service layer exception classes for the production costing engine.

This module defines all custom exceptions used by the service layer to provide
consistent error handling across the engine.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError              (bad input, raised before any mutation)
    ├── InsufficientInventoryError   (FIFO shortfall at commit / over-consumption)
    ├── PersistenceError             (store write failed, never retried here)
    ├── CostElementNotFound
    ├── MaterialNotFound
    ├── BatchNotFound
    └── LotNotFound

    StaleCacheWarning (UserWarning) - catalog refresh failed, stale data served
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions should inherit from this class.

    Args:
        message: Human readable error message
        correlation_id: Optional id tying the error to a request/operation
        **context: Extra structured context (entity ids, amounts)
    """

    http_status_code = 500

    def __init__(self, message: str, correlation_id: Optional[str] = None, **context: Any):
        self.message = message
        self.correlation_id = correlation_id
        self.context = context
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for API/presentation layers."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "correlation_id": self.correlation_id,
            "http_status_code": self.http_status_code,
            "context": {
                key: str(value) if isinstance(value, Decimal) else value
                for key, value in self.context.items()
            },
        }


class ValidationError(ServiceError):
    """Raised when data validation fails.

    Args:
        errors: List of validation messages

    Example:
        >>> raise ValidationError(["rate must be positive"])
        ValidationError: Validation failed: rate must be positive
    """

    http_status_code = 400

    def __init__(self, errors: List[str], **context: Any):
        self.errors = list(errors)
        error_msg = "; ".join(self.errors)
        super().__init__(f"Validation failed: {error_msg}", **context)


class InsufficientInventoryError(ServiceError):
    """Raised when requested quantity exceeds what the lots/material can supply.

    Args:
        item: What was short (byproduct type or material name)
        requested: Quantity requested
        available: Quantity actually available
    """

    http_status_code = 409

    def __init__(self, item: str, requested: Decimal, available: Decimal, **context: Any):
        self.item = item
        self.requested = requested
        self.available = available
        self.shortfall = max(requested - available, Decimal("0"))
        super().__init__(
            f"Insufficient inventory for {item}: requested {requested}, "
            f"available {available}, shortfall {self.shortfall}",
            requested=requested,
            available=available,
            shortfall=self.shortfall,
            **context,
        )


class PersistenceError(ServiceError):
    """Raised when a write to the store fails.

    Args:
        message: Description of the failed operation
        original_error: The underlying exception
    """

    http_status_code = 500

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(f"Persistence error: {message}")


class CostElementNotFound(ServiceError):
    """Raised when a cost element cannot be found by ID or name."""

    http_status_code = 404

    def __init__(self, identifier):
        self.identifier = identifier
        super().__init__(f"Cost element '{identifier}' not found", identifier=identifier)


class MaterialNotFound(ServiceError):
    """Raised when a material cannot be found by ID."""

    http_status_code = 404

    def __init__(self, material_id: int):
        self.material_id = material_id
        super().__init__(f"Material with ID {material_id} not found", material_id=material_id)


class BatchNotFound(ServiceError):
    """Raised when a batch cannot be found by ID."""

    http_status_code = 404

    def __init__(self, batch_id: int):
        self.batch_id = batch_id
        super().__init__(f"Batch with ID {batch_id} not found", batch_id=batch_id)


class LotNotFound(ServiceError):
    """Raised when a byproduct lot referenced by an allocation plan no longer exists."""

    http_status_code = 404

    def __init__(self, lot_id: int):
        self.lot_id = lot_id
        super().__init__(f"Byproduct lot with ID {lot_id} not found", lot_id=lot_id)


class StaleCacheWarning(UserWarning):
    """Emitted when the rate catalog could not refresh and served stale data."""
