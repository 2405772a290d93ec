"""
Override auditing for cost element rates.

An override is evaluated against the catalog rate; deviating strictly more
than 20% from it requires a written justification. Accepted overrides yield
an immutable audit record.

The auditor never mutates the catalog. When the user asks for the new rate
to apply to future batches, the record carries apply_to_future=True and the
caller decides whether to call
cost_element_service.apply_override_to_catalog().

Example Usage:
    >>> evaluation = evaluate_override(Decimal("100"), Decimal("130"))
    >>> evaluation.requires_reason
    True
    >>> record = validate_override_submission(
    ...     original_rate=Decimal("100"),
    ...     proposed_rate=Decimal("130"),
    ...     reason="Diesel price increase",
    ...     requires_reason=evaluation.requires_reason,
    ...     actor="supervisor",
    ... )
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import RateOverrideAudit
from ..utils.constants import (
    ERROR_RATE_NOT_POSITIVE,
    ERROR_REASON_REQUIRED,
    OVERRIDE_DEVIATION_THRESHOLD_PERCENT,
)
from ..utils.datetime_utils import utc_now
from ..utils.money import ZERO, format_currency, to_decimal
from .database import session_scope
from .exceptions import PersistenceError, ValidationError
from .logging_utils import get_service_logger, log_operation
from .rate_catalog import CostElementInfo
from .stage_costing import Override, StageContext, is_line_applied

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class OverrideEvaluation:
    """Deviation of a proposed rate from the catalog rate."""

    deviation_percent: Decimal
    requires_reason: bool


@dataclass(frozen=True)
class OverrideAuditRecord:
    """An accepted rate override.

    Attributes:
        original_rate: Catalog rate
        new_rate: Accepted override rate
        deviation_percent: Signed deviation in percent
        reason: Justification (defaulted when not required and left blank)
        timestamp: When the override was accepted
        actor: Who submitted it
        apply_to_future: Caller should update the master rate
        element_id: Cost element id, when known
        element_name: Cost element name, when known
    """

    original_rate: Decimal
    new_rate: Decimal
    deviation_percent: Decimal
    reason: str
    timestamp: datetime
    actor: Optional[str] = None
    apply_to_future: bool = False
    element_id: Optional[int] = None
    element_name: Optional[str] = None


def calculate_deviation(original_rate: Decimal, proposed_rate: Decimal) -> Decimal:
    """
    Signed deviation of proposed_rate from original_rate, in percent.

    A zero original rate has no meaningful deviation and yields 0.

    Examples:
        >>> calculate_deviation(Decimal("100"), Decimal("120"))
        Decimal('20')
        >>> calculate_deviation(Decimal("0"), Decimal("50"))
        Decimal('0')
    """
    original_rate = to_decimal(original_rate)
    proposed_rate = to_decimal(proposed_rate)
    if original_rate == 0:
        return ZERO
    return (proposed_rate - original_rate) / original_rate * Decimal("100")


def evaluate_override(default_rate: Decimal, proposed_rate: Decimal) -> OverrideEvaluation:
    """
    Evaluate a proposed rate against the catalog rate.

    requires_reason is set when |deviation| is strictly greater than 20%.
    """
    deviation = calculate_deviation(default_rate, proposed_rate)
    return OverrideEvaluation(
        deviation_percent=deviation,
        requires_reason=abs(deviation) > OVERRIDE_DEVIATION_THRESHOLD_PERCENT,
    )


def validate_override_submission(
    original_rate: Decimal,
    proposed_rate: Decimal,
    reason: Optional[str],
    requires_reason: bool,
    actor: Optional[str] = None,
    apply_to_future: bool = False,
    element_id: Optional[int] = None,
    element_name: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> OverrideAuditRecord:
    """
    Validate an override submission and build its audit record.

    Args:
        original_rate: Catalog rate
        proposed_rate: Override rate
        reason: Justification entered by the user
        requires_reason: Result of evaluate_override()
        actor: Submitting user
        apply_to_future: Surface intent to update the master rate
        element_id: Cost element id for the record
        element_name: Cost element name for the record
        timestamp: Override time (default: now)

    Returns:
        OverrideAuditRecord

    Raises:
        ValidationError: "rate must be positive" when proposed_rate <= 0;
            "reason required" when requires_reason and reason is blank
    """
    proposed_rate = to_decimal(proposed_rate)
    original_rate = to_decimal(original_rate)

    if proposed_rate <= 0:
        raise ValidationError([ERROR_RATE_NOT_POSITIVE], element_name=element_name)

    reason_text = (reason or "").strip()
    if requires_reason and not reason_text:
        raise ValidationError([ERROR_REASON_REQUIRED], element_name=element_name)

    if not reason_text:
        reason_text = (
            f"Rate changed from {format_currency(original_rate)} to {format_currency(proposed_rate)}"
        )

    return OverrideAuditRecord(
        original_rate=original_rate,
        new_rate=proposed_rate,
        deviation_percent=calculate_deviation(original_rate, proposed_rate),
        reason=reason_text,
        timestamp=timestamp or utc_now(),
        actor=actor,
        apply_to_future=apply_to_future,
        element_id=element_id,
        element_name=element_name,
    )


def audit_override(
    original_rate: Decimal,
    proposed_rate: Decimal,
    reason: Optional[str] = None,
    actor: Optional[str] = None,
    apply_to_future: bool = False,
    element_id: Optional[int] = None,
    element_name: Optional[str] = None,
) -> OverrideAuditRecord:
    """Evaluate and validate an override in one step."""
    evaluation = evaluate_override(original_rate, proposed_rate)
    try:
        return validate_override_submission(
            original_rate=original_rate,
            proposed_rate=proposed_rate,
            reason=reason,
            requires_reason=evaluation.requires_reason,
            actor=actor,
            apply_to_future=apply_to_future,
            element_id=element_id,
            element_name=element_name,
        )
    except ValidationError as e:
        log_operation(
            logger,
            operation="audit_override",
            outcome="validation_failed",
            level=logging.WARNING,
            element_name=element_name,
            deviation_percent=str(evaluation.deviation_percent),
            errors=e.errors,
        )
        raise


def audit_stage_overrides(
    elements: Iterable[CostElementInfo],
    stages: Sequence[str],
    context: StageContext,
    overrides: Mapping[int, Override],
    enabled: Optional[Mapping[int, bool]] = None,
    actor: Optional[str] = None,
    apply_to_future: Optional[Mapping[int, bool]] = None,
) -> List[OverrideAuditRecord]:
    """
    Audit every rate override that changes an applied cost line.

    Overrides for elements outside the stages, for lines that will not be
    applied (optional and not enabled, per_hour without hours) and overrides
    equal to the catalog rate produce no record. All failures are collected
    into one ValidationError.

    Args:
        elements: Catalog snapshot
        stages: Stage values being costed
        context: Quantity/hours context of the stages
        overrides: Element id -> Override
        enabled: Element id -> toggle for optional elements
        actor: Submitting user
        apply_to_future: Element id -> surface the override as a master rate update

    Returns:
        Audit records of accepted overrides

    Raises:
        ValidationError: Any override with a non-positive rate or missing
            required reason, messages prefixed with the element name
    """
    apply_to_future = apply_to_future or {}
    records = []
    errors = []
    for element in elements:
        override = overrides.get(element.element_id)
        if override is None or override.rate is None:
            continue
        if not any(element.applies_to(stage) for stage in stages):
            continue
        if not is_line_applied(element, context, enabled):
            continue
        if to_decimal(override.rate) == element.default_rate:
            continue
        try:
            records.append(
                audit_override(
                    original_rate=element.default_rate,
                    proposed_rate=override.rate,
                    reason=override.reason,
                    actor=actor,
                    apply_to_future=apply_to_future.get(element.element_id, False),
                    element_id=element.element_id,
                    element_name=element.name,
                )
            )
        except ValidationError as e:
            errors.extend(f"{element.name}: {message}" for message in e.errors)
    if errors:
        raise ValidationError(errors)
    return records


def save_audit_record(
    record: OverrideAuditRecord,
    batch_id: Optional[int] = None,
    purchase_id: Optional[int] = None,
    session: Optional[Session] = None,
) -> RateOverrideAudit:
    """
    Persist an audit record.

    Args:
        record: Accepted override
        batch_id: Batch the override was captured for
        purchase_id: Purchase invoice the override was captured for
        session: Optional database session

    Returns:
        Created RateOverrideAudit

    Raises:
        PersistenceError: If the write fails
    """

    def _impl(sess: Session) -> RateOverrideAudit:
        audit = RateOverrideAudit(
            cost_element_id=record.element_id,
            batch_id=batch_id,
            purchase_id=purchase_id,
            element_name=record.element_name or "",
            original_rate=record.original_rate,
            new_rate=record.new_rate,
            deviation_percent=record.deviation_percent.quantize(Decimal("0.01")),
            reason=record.reason,
            actor=record.actor,
            apply_to_future=record.apply_to_future,
            overridden_at=record.timestamp,
        )
        sess.add(audit)
        sess.flush()
        return audit

    try:
        if session is not None:
            audit = _impl(session)
        else:
            with session_scope() as sess:
                audit = _impl(sess)
    except SQLAlchemyError as e:
        log_operation(
            logger,
            operation="save_audit_record",
            outcome="persistence_error",
            level=logging.ERROR,
            error=str(e),
        )
        raise PersistenceError("Failed to save rate override audit", original_error=e)

    log_operation(
        logger,
        operation="save_audit_record",
        outcome="success",
        audit_id=audit.id,
        element_name=record.element_name,
        apply_to_future=record.apply_to_future,
    )
    return audit
