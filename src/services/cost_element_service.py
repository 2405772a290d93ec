"""Cost Element Service - master data maintenance for the rate catalog.

This module provides business logic for managing cost elements including
creation with explicit stage tags, rate updates, applying an audited
override to the master rate, and the one-time legacy stage migration.

All functions follow the optional-session pattern: pass a session to join
the caller's transaction, otherwise a session_scope() is opened.

Example Usage:
    >>> from src.services.cost_element_service import create_cost_element
    >>> element = create_cost_element(
    ...     name="Drying Labour",
    ...     category="Labor",
    ...     calculation_method="per_quantity",
    ...     default_rate=Decimal("0.90"),
    ...     stages=["drying"],
    ... )
    >>> element["stages"]
    ['drying']
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..models import CostElement, CostElementStage
from ..models.enums import CalculationMethod, CostCategory, ProductionStage
from ..utils.money import to_decimal
from .database import session_scope
from .exceptions import CostElementNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation
from .override_audit import OverrideAuditRecord
from .rate_catalog import RateCatalog, infer_stages_from_name

logger = get_service_logger(__name__)

_VALID_CATEGORIES = {c.value for c in CostCategory}
_VALID_METHODS = {m.value for m in CalculationMethod}
_VALID_STAGES = {s.value for s in ProductionStage}


def _normalize_stages(stages: Optional[Iterable]) -> List[str]:
    result = []
    for stage in stages or []:
        value = stage.value if isinstance(stage, ProductionStage) else str(stage)
        if value not in result:
            result.append(value)
    return result


def _validate_element_fields(
    name: str,
    category: str,
    calculation_method: str,
    default_rate: Decimal,
    stages: List[str],
) -> None:
    errors = []
    if not name or not name.strip():
        errors.append("name is required")
    if category not in _VALID_CATEGORIES:
        errors.append(f"unknown category '{category}'")
    if calculation_method not in _VALID_METHODS:
        errors.append(f"unknown calculation method '{calculation_method}'")
    if default_rate < 0:
        errors.append("default rate must not be negative")
    for stage in stages:
        if stage not in _VALID_STAGES:
            errors.append(f"unknown stage '{stage}'")
    if errors:
        raise ValidationError(errors)


def create_cost_element(
    name: str,
    category: str,
    calculation_method: str,
    default_rate: Decimal,
    stages: Optional[Iterable] = None,
    unit_type: Optional[str] = None,
    is_optional: bool = False,
    computed_from_output: bool = False,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """Create a cost element with explicit stage tags.

    Args:
        name: Unique display name
        category: CostCategory value
        calculation_method: CalculationMethod value
        default_rate: Master rate (>= 0)
        stages: ProductionStage values the element applies to
        unit_type: Descriptive unit
        is_optional: Element can be toggled off during capture
        computed_from_output: per_quantity priced on output quantity
        session: Optional database session

    Returns:
        Created element as dictionary

    Raises:
        ValidationError: Invalid category, method, stage, name or rate
    """
    category = category.value if isinstance(category, CostCategory) else category
    if isinstance(calculation_method, CalculationMethod):
        calculation_method = calculation_method.value
    default_rate = to_decimal(default_rate)
    stage_values = _normalize_stages(stages)
    _validate_element_fields(name, category, calculation_method, default_rate, stage_values)

    def _impl(sess: Session) -> Dict[str, Any]:
        element = CostElement(
            name=name.strip(),
            category=category,
            unit_type=unit_type,
            calculation_method=calculation_method,
            default_rate=default_rate,
            is_optional=is_optional,
            computed_from_output=computed_from_output,
        )
        element.stages = [CostElementStage(stage=stage) for stage in stage_values]
        sess.add(element)
        sess.flush()
        return element.to_dict()

    if session is not None:
        result = _impl(session)
    else:
        with session_scope() as sess:
            result = _impl(sess)

    log_operation(
        logger,
        operation="create_cost_element",
        outcome="success",
        element_id=result["id"],
        element_name=result["name"],
    )
    return result


def _get_element_or_raise(element_id: int, session: Session) -> CostElement:
    element = session.get(CostElement, element_id)
    if element is None:
        raise CostElementNotFound(element_id)
    return element


def get_cost_element(element_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """Get a cost element by id.

    Raises:
        CostElementNotFound: If no element has this id
    """
    if session is not None:
        return _get_element_or_raise(element_id, session).to_dict()
    with session_scope() as sess:
        return _get_element_or_raise(element_id, sess).to_dict()


def list_cost_elements(
    stage: Optional[str] = None,
    include_inactive: bool = False,
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """List cost elements ordered by name, optionally for one stage.

    Stage filtering uses explicit tags, falling back to the legacy name
    rule for elements that have none.
    """
    stage_value = stage.value if isinstance(stage, ProductionStage) else stage

    def _impl(sess: Session) -> List[Dict[str, Any]]:
        query = sess.query(CostElement)
        if not include_inactive:
            query = query.filter(CostElement.is_active.is_(True))
        results = []
        for element in query.order_by(CostElement.name.asc()).all():
            if stage_value is not None:
                tags = set(element.stage_names) or infer_stages_from_name(element.name)
                if stage_value not in tags:
                    continue
            results.append(element.to_dict())
        return results

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def update_default_rate(
    element_id: int,
    new_rate: Decimal,
    catalog: Optional[RateCatalog] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """Update an element's master rate.

    Args:
        element_id: CostElement id
        new_rate: New default rate (>= 0)
        catalog: RateCatalog to invalidate after the update
        session: Optional database session

    Raises:
        ValidationError: Negative rate
        CostElementNotFound: Unknown element
    """
    new_rate = to_decimal(new_rate)
    if new_rate < 0:
        raise ValidationError(["default rate must not be negative"], element_id=element_id)

    def _impl(sess: Session) -> Dict[str, Any]:
        element = _get_element_or_raise(element_id, sess)
        old_rate = element.default_rate
        element.default_rate = new_rate
        sess.flush()
        log_operation(
            logger,
            operation="update_default_rate",
            outcome="success",
            element_id=element_id,
            old_rate=str(old_rate),
            new_rate=str(new_rate),
        )
        return element.to_dict()

    if session is not None:
        result = _impl(session)
    else:
        with session_scope() as sess:
            result = _impl(sess)

    if catalog is not None:
        catalog.invalidate()
    return result


def set_element_stages(
    element_id: int,
    stages: Iterable,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """Replace the explicit stage tags of an element."""
    stage_values = _normalize_stages(stages)
    errors = [f"unknown stage '{s}'" for s in stage_values if s not in _VALID_STAGES]
    if errors:
        raise ValidationError(errors, element_id=element_id)

    def _impl(sess: Session) -> Dict[str, Any]:
        element = _get_element_or_raise(element_id, sess)
        element.stages = [CostElementStage(stage=stage) for stage in stage_values]
        sess.flush()
        return element.to_dict()

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def apply_override_to_catalog(
    record: OverrideAuditRecord,
    catalog: Optional[RateCatalog] = None,
    session: Optional[Session] = None,
) -> Optional[Dict[str, Any]]:
    """
    Make an audited override the element's new master rate.

    Only records carrying apply_to_future are applied; others are ignored
    and None is returned.

    Args:
        record: Accepted override from the OverrideAuditor
        catalog: RateCatalog to invalidate
        session: Optional database session

    Raises:
        ValidationError: The record has no element id
        CostElementNotFound: Unknown element
    """
    if not record.apply_to_future:
        log_operation(
            logger,
            operation="apply_override_to_catalog",
            outcome="skipped",
            level=logging.DEBUG,
            element_name=record.element_name,
        )
        return None
    if record.element_id is None:
        raise ValidationError(["override record has no cost element id"])

    return update_default_rate(record.element_id, record.new_rate, catalog=catalog, session=session)


def migrate_legacy_stage_tags(session: Optional[Session] = None) -> Dict[str, List[str]]:
    """
    One-time migration: tag untagged elements from their display names.

    "Drying" and "Loading After Drying" map to drying; "Crushing" maps to
    crushing. Elements that already carry tags, or whose names match no
    pattern, are left untouched.

    Returns:
        Element name -> stages assigned, for the elements migrated
    """

    def _impl(sess: Session) -> Dict[str, List[str]]:
        migrated: Dict[str, List[str]] = {}
        for element in sess.query(CostElement).order_by(CostElement.id.asc()).all():
            if element.stages:
                continue
            inferred = sorted(infer_stages_from_name(element.name))
            if not inferred:
                continue
            element.stages = [CostElementStage(stage=stage) for stage in inferred]
            migrated[element.name] = inferred
        sess.flush()
        return migrated

    if session is not None:
        migrated = _impl(session)
    else:
        with session_scope() as sess:
            migrated = _impl(sess)

    log_operation(
        logger,
        operation="migrate_legacy_stage_tags",
        outcome="success",
        migrated_count=len(migrated),
    )
    return migrated
