"""
Stage cost calculation for production batches.

This module provides functions for:
- Computing per-element cost lines for a production stage (drying, crushing,
  complete batch) from catalog elements, a quantity/hours context and
  typed per-element overrides
- Billable crushing hours (always rounded UP)
- Cost-capture warnings (warn, never block)
- Grouping cost lines by category for reporting

Quantity basis and cost by calculation method:

    per_quantity  context.quantity (output_quantity when the element is
                  computed from output) x rate
    per_hour      context.hours x rate; not applied when hours == 0
    fixed         1 x rate
    actual_entry  the entered monetary amount
    per_bag       ceil(context.quantity / 50) x rate

Transaction boundary: Pure computation (no database access).
"""

import math
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_CEILING
from typing import Dict, Iterable, List, Mapping, Optional

from ..models.enums import CalculationMethod, CostCategory, ProductionStage
from ..utils.constants import BAG_SIZE_KG
from ..utils.money import ZERO, to_decimal
from .exceptions import ValidationError
from .rate_catalog import CostElementInfo


@dataclass(frozen=True)
class StageContext:
    """Quantities a stage is costed against.

    Attributes:
        quantity: Input quantity (e.g., seed kg before drying)
        output_quantity: Output quantity (e.g., oil kg)
        hours: Billable hours for per_hour elements
    """

    quantity: Decimal = ZERO
    output_quantity: Decimal = ZERO
    hours: Decimal = ZERO


@dataclass(frozen=True)
class Override:
    """Per-element capture input.

    Attributes:
        rate: Rate replacing the default (ignored unless > 0)
        actual_amount: Monetary value for actual_entry elements
        reason: Justification captured with a rate override
    """

    rate: Optional[Decimal] = None
    actual_amount: Optional[Decimal] = None
    reason: Optional[str] = None


@dataclass
class StageCostLine:
    """One element's cost for one stage."""

    element_id: int
    element_name: str
    category: str
    stage: str
    calculation_method: str
    is_optional: bool
    is_applied: bool
    quantity: Decimal
    default_rate: Decimal
    rate: Decimal
    total_cost: Decimal
    is_overridden: bool = False
    override_reason: Optional[str] = None


@dataclass
class StageCostResult:
    """Cost lines of a stage plus the total of applied lines."""

    stage: str
    lines: List[StageCostLine] = field(default_factory=list)
    total: Decimal = ZERO

    @property
    def applied_lines(self) -> List[StageCostLine]:
        return [line for line in self.lines if line.is_applied]


@dataclass
class CostWarning:
    """A non-blocking cost capture warning."""

    type: str
    message: str
    severity: str
    element_name: Optional[str] = None
    amount: Optional[Decimal] = None


def billable_hours(start: datetime, end: datetime) -> int:
    """Elapsed hours between start and end. Always rounds UP.

    Examples:
        >>> billable_hours(datetime(2024, 1, 1, 8, 0), datetime(2024, 1, 1, 10, 20))
        3
        >>> billable_hours(datetime(2024, 1, 1, 8, 0), datetime(2024, 1, 1, 8, 0))
        0
    """
    seconds = (end - start).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 3600)


def bag_count(quantity: Decimal) -> Decimal:
    """Number of 50 kg bags needed for quantity (partial bags count as one)."""
    if quantity <= 0:
        return ZERO
    return (quantity / BAG_SIZE_KG).to_integral_value(rounding=ROUND_CEILING)


def effective_rate(element: CostElementInfo, override: Optional[Override]) -> Decimal:
    """Override rate when present and > 0, else the element's default rate."""
    if override is not None and override.rate is not None:
        rate = to_decimal(override.rate)
        if rate > 0:
            return rate
    return element.default_rate


def is_line_applied(
    element: CostElementInfo,
    context: StageContext,
    enabled: Optional[Mapping[int, bool]] = None,
) -> bool:
    """Whether the element's line counts toward the stage total."""
    enabled = enabled or {}
    if element.calculation_method == CalculationMethod.PER_HOUR.value and context.hours == 0:
        return False
    if not element.is_optional:
        # Required elements cannot be toggled off
        return True
    return bool(enabled.get(element.element_id, False))


def calculate_line(
    element: CostElementInfo,
    stage: str,
    context: StageContext,
    override: Optional[Override] = None,
    enabled: Optional[Mapping[int, bool]] = None,
) -> StageCostLine:
    """
    Compute one element's cost line.

    Args:
        element: Catalog entry
        stage: Stage the line is computed for
        context: Quantity/hours context
        override: Optional typed override for this element
        enabled: Element id -> toggle for optional elements (default off)

    Returns:
        StageCostLine; unapplied lines carry a total of 0

    Raises:
        ValidationError: Unknown calculation method
    """
    enabled = enabled or {}
    method = element.calculation_method
    rate = effective_rate(element, override)
    applied = is_line_applied(element, context, enabled)

    if method == CalculationMethod.PER_QUANTITY.value:
        quantity = context.output_quantity if element.computed_from_output else context.quantity
        cost = quantity * rate
    elif method == CalculationMethod.PER_HOUR.value:
        quantity = context.hours
        cost = quantity * rate
    elif method == CalculationMethod.FIXED.value:
        quantity = Decimal("1")
        cost = rate
    elif method == CalculationMethod.ACTUAL_ENTRY.value:
        quantity = Decimal("1")
        amount = None if override is None else override.actual_amount
        cost = to_decimal(amount) if amount is not None else ZERO
        rate = cost
    elif method == CalculationMethod.PER_BAG.value:
        quantity = bag_count(context.quantity)
        cost = quantity * rate
    else:
        raise ValidationError([f"unknown calculation method '{method}' for {element.name}"])

    is_overridden = (
        method != CalculationMethod.ACTUAL_ENTRY.value and rate != element.default_rate
    )

    return StageCostLine(
        element_id=element.element_id,
        element_name=element.name,
        category=element.category,
        stage=stage,
        calculation_method=method,
        is_optional=element.is_optional,
        is_applied=applied,
        quantity=quantity,
        default_rate=element.default_rate,
        rate=rate,
        total_cost=cost if applied else ZERO,
        is_overridden=is_overridden,
        override_reason=override.reason if override is not None and is_overridden else None,
    )


def _validate_context(context: StageContext) -> None:
    errors = []
    if context.quantity < 0:
        errors.append("quantity must not be negative")
    if context.output_quantity < 0:
        errors.append("output quantity must not be negative")
    if context.hours < 0:
        errors.append("hours must not be negative")
    if errors:
        raise ValidationError(errors)


def calculate_stage_costs(
    stage,
    elements: Iterable[CostElementInfo],
    context: StageContext,
    overrides: Optional[Mapping[int, Override]] = None,
    enabled: Optional[Mapping[int, bool]] = None,
) -> StageCostResult:
    """
    Compute cost lines for every element applicable to a stage.

    Elements outside the stage are skipped; overrides/toggles for them are
    ignored so one map can serve several stages.

    Args:
        stage: ProductionStage (or its value)
        elements: Full catalog (e.g., RateCatalog.fetch())
        context: Quantity/hours context
        overrides: Element id -> Override
        enabled: Element id -> toggle for optional elements

    Returns:
        StageCostResult with all lines and the total of applied lines

    Raises:
        ValidationError: Negative context values or unknown method; nothing
            is returned partially computed
    """
    stage_value = stage.value if isinstance(stage, ProductionStage) else str(stage)
    _validate_context(context)
    overrides = overrides or {}

    lines = [
        calculate_line(element, stage_value, context, overrides.get(element.element_id), enabled)
        for element in elements
        if element.applies_to(stage_value)
    ]
    total = sum((line.total_cost for line in lines if line.is_applied), ZERO)
    return StageCostResult(stage=stage_value, lines=lines, total=total)


def validate_stage_costs(lines: Iterable[StageCostLine]) -> List[CostWarning]:
    """
    Check captured costs for completeness. Never raises.

    Warns about required elements that are not applied or cost nothing, and
    per_hour elements without tracked hours.
    """
    warnings = []
    for line in lines:
        if line.calculation_method == CalculationMethod.PER_HOUR.value and line.quantity == 0:
            warnings.append(
                CostWarning(
                    type="missing_time",
                    message=f"Time tracking missing for: {line.element_name}",
                    severity="warning",
                    element_name=line.element_name,
                )
            )
        elif not line.is_optional and (not line.is_applied or line.total_cost == 0):
            warnings.append(
                CostWarning(
                    type="missing_required",
                    message=f"Required cost not applied: {line.element_name}",
                    severity="warning",
                    element_name=line.element_name,
                    amount=line.default_rate,
                )
            )
    return warnings


def group_costs_by_category(lines: Iterable[StageCostLine]) -> Dict[str, Dict]:
    """
    Group cost lines by category.

    Returns:
        OrderedDict category -> {"items": [...], "subtotal": Decimal}; the
        subtotal counts applied lines only
    """
    grouped: Dict[str, Dict] = OrderedDict()
    for line in lines:
        category = line.category or CostCategory.OTHER.value
        bucket = grouped.setdefault(category, {"items": [], "subtotal": ZERO})
        bucket["items"].append(line)
        if line.is_applied:
            bucket["subtotal"] += line.total_cost
    return grouped
