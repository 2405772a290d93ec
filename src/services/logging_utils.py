"""Service layer logging utilities.

Provides structured logging functions for service operations, enabling
consistent log format and context across costing, purchase and sales
operations.

Usage:
    from src.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="commit_sale",
        outcome="success",
        sale_id=12,
        total_adjustment="150.0000",
    )

    log_operation(
        logger,
        operation="commit_sale",
        outcome="insufficient_inventory",
        level=logging.WARNING,
        lot_id=4,
    )
"""

import logging
from typing import Any

LOGGER_PREFIX = "production_costing.services"


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger named '<LOGGER_PREFIX>.<module>'.

    Example:
        >>> get_service_logger("src.services.rate_catalog").name
        'production_costing.services.rate_catalog'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The message is "<operation>: <outcome>"; the context is attached to the
    record through 'extra' so handlers can emit it as structured fields.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "finalize_batch", "fetch_catalog")
        outcome: Outcome description (e.g., "success", "validation_failed")
        level: Log level (default: INFO)
        **context: Additional context fields (entity IDs, amounts, errors)
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)
