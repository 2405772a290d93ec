"""
Blend cost: weighted cost per kg of oil mixed from several batches.

    quantity_used  = total_quantity * percentage / 100
    cost_per_kg    = sum(quantity_used * component cost_per_kg) / total_quantity
    total_cost     = total_quantity * cost_per_kg

Percentages must sum to exactly 100 and a blend needs at least two
components.

Transaction boundary: calculate_blend_cost() is pure;
blend_components_from_batches() reads only.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from ..models import Batch
from ..utils.money import ZERO, round_internal, to_decimal
from .database import session_scope
from .exceptions import BatchNotFound, InsufficientInventoryError, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

HUNDRED = Decimal("100")
MIN_COMPONENTS = 2


@dataclass(frozen=True)
class BlendComponent:
    """
    One source in a blend.

    Attributes:
        source: Batch id or code the oil is drawn from
        percentage: Share of the blend (0-100]
        cost_per_kg: Cost per kg of the source oil
        available_quantity: Quantity on hand; None skips the check
    """

    source: Any
    percentage: Decimal
    cost_per_kg: Decimal
    available_quantity: Optional[Decimal] = None


@dataclass(frozen=True)
class BlendLine:
    source: Any
    percentage: Decimal
    quantity_used: Decimal
    cost: Decimal


@dataclass(frozen=True)
class BlendCost:
    total_quantity: Decimal
    cost_per_kg: Decimal
    total_cost: Decimal
    lines: List[BlendLine] = field(default_factory=list)


def calculate_blend_cost(total_quantity: Decimal, components: Sequence[BlendComponent]) -> BlendCost:
    """
    Weighted cost of a blend.

    Args:
        total_quantity: Blend size (> 0)
        components: At least two sources whose percentages sum to 100

    Returns:
        BlendCost with per-component quantities and the weighted cost per kg

    Raises:
        ValidationError: Too few components, non-positive quantity,
            a percentage outside (0, 100] or percentages not summing to 100
        InsufficientInventoryError: A component needs more than it has available

    Example:
        >>> calculate_blend_cost(Decimal("100"), [
        ...     BlendComponent("B-1", Decimal("60"), Decimal("150")),
        ...     BlendComponent("B-2", Decimal("40"), Decimal("200")),
        ... ]).cost_per_kg
        Decimal('170.0000')
    """
    total_quantity = to_decimal(total_quantity)
    errors = []
    if len(components) < MIN_COMPONENTS:
        errors.append(f"a blend needs at least {MIN_COMPONENTS} components")
    if total_quantity <= 0:
        errors.append("total quantity must be positive")
    for component in components:
        pct = to_decimal(component.percentage)
        if pct <= 0 or pct > HUNDRED:
            errors.append(f"percentage for {component.source} must be between 0 and 100")
    total_pct = sum((to_decimal(c.percentage) for c in components), ZERO)
    if total_pct != HUNDRED:
        errors.append(f"percentages must sum to exactly 100, got {total_pct}")
    if errors:
        raise ValidationError(errors)

    lines = []
    weighted = ZERO
    for component in components:
        used = total_quantity * to_decimal(component.percentage) / HUNDRED
        if component.available_quantity is not None and used > component.available_quantity:
            raise InsufficientInventoryError(
                item=str(component.source),
                requested=used,
                available=to_decimal(component.available_quantity),
            )
        cost = used * to_decimal(component.cost_per_kg)
        weighted += cost
        lines.append(
            BlendLine(
                source=component.source,
                percentage=to_decimal(component.percentage),
                quantity_used=used,
                cost=cost,
            )
        )

    cost_per_kg = round_internal(weighted / total_quantity)
    return BlendCost(
        total_quantity=total_quantity,
        cost_per_kg=cost_per_kg,
        total_cost=total_quantity * cost_per_kg,
        lines=lines,
    )


def blend_components_from_batches(
    percentages: Mapping[int, Decimal],
    session: Optional[Session] = None,
) -> List[BlendComponent]:
    """
    Build blend components from finalized batches.

    Each batch contributes its cost_per_unit as the cost per kg and its
    output_quantity as the available quantity.

    Args:
        percentages: batch_id -> percentage of the blend
        session: Optional database session

    Raises:
        BatchNotFound: Unknown batch id
    """

    def _impl(sess: Session) -> List[BlendComponent]:
        components = []
        for batch_id, pct in percentages.items():
            batch = sess.query(Batch).filter(Batch.id == batch_id).first()
            if batch is None:
                raise BatchNotFound(batch_id)
            components.append(
                BlendComponent(
                    source=batch.batch_code,
                    percentage=to_decimal(pct),
                    cost_per_kg=Decimal(batch.cost_per_unit or 0),
                    available_quantity=Decimal(batch.output_quantity or 0),
                )
            )
        return components

    if session is not None:
        components = _impl(session)
    else:
        with session_scope() as sess:
            components = _impl(sess)

    log_operation(
        logger,
        operation="blend_components_from_batches",
        outcome="success",
        batch_count=len(components),
    )
    return components
