"""
Batch Costing Service for finalizing production batches.

This module provides functions for:
- Finalizing a batch: material cost basis, stage costs, override audit,
  net cost aggregation and byproduct lot creation in one transaction
- Posting reconciliation adjustments to a finalized batch
- Rebuilding a batch's BatchCostSummary from the store
- Batch warnings (missing time tracking, yield anomaly)
- Batch cost reporting and variance against an estimate

The service integrates with:
- RateCatalog (injected) for the cost element snapshot
- stage_costing.calculate_stage_costs() for per-stage lines
- override_audit for rate override validation and audit records
- cost_ledger_service.record_consumption() for the material cost basis
- net_cost.aggregate() for the summary
"""

import logging
from collections import OrderedDict
from contextlib import nullcontext
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Batch, BatchStageCost, ByproductLot
from ..models.enums import ByproductType, ProductionStage
from ..utils.constants import (
    LEDGER_REASON_BATCH_INPUT,
    VARIANCE_ON_TARGET_PERCENT,
    YIELD_ANOMALY_THRESHOLD_PERCENT,
)
from ..utils.money import ZERO, round_internal, to_decimal
from .cost_ledger_service import record_consumption
from .cost_reconciliation import apply_adjustment
from .database import session_scope
from .exceptions import (
    BatchNotFound,
    InsufficientInventoryError,
    PersistenceError,
    ServiceError,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation
from .net_cost import BatchCostSummary, ByproductYield, aggregate, calculate_byproduct_revenue
from .override_audit import OverrideAuditRecord, audit_stage_overrides, save_audit_record
from .rate_catalog import RateCatalog
from .stage_costing import (
    CostWarning,
    Override,
    StageContext,
    StageCostResult,
    calculate_stage_costs,
    validate_stage_costs,
)

logger = get_service_logger(__name__)

DEFAULT_BATCH_STAGES = (ProductionStage.DRYING, ProductionStage.CRUSHING, ProductionStage.BATCH)


@dataclass(frozen=True)
class MaterialInput:
    """Quantity of a material fed into a batch."""

    material_id: int
    quantity: Decimal


@dataclass
class FinalizedBatch:
    """Result of finalize_batch()."""

    batch_id: int
    batch_code: str
    summary: BatchCostSummary
    stage_results: List[StageCostResult] = field(default_factory=list)
    audit_records: List[OverrideAuditRecord] = field(default_factory=list)
    lot_ids: List[int] = field(default_factory=list)
    warnings: List[CostWarning] = field(default_factory=list)


def _stage_value(stage) -> str:
    return stage.value if isinstance(stage, ProductionStage) else str(stage)


def generate_batch_warnings(
    input_quantity: Decimal,
    output_quantity: Decimal,
    byproduct_quantities: Iterable[Decimal] = (),
    crushing_hours: Decimal = ZERO,
) -> List[CostWarning]:
    """
    Non-blocking warnings for a batch.

    - missing_time: no crushing hours were tracked
    - yield_anomaly: output plus byproducts exceed 110% of input
    """
    warnings = []
    if to_decimal(crushing_hours) == 0:
        warnings.append(
            CostWarning(
                type="missing_time",
                message="Crushing time not tracked - time-based costs not applied",
                severity="warning",
            )
        )

    input_quantity = to_decimal(input_quantity)
    if input_quantity > 0:
        total_yield = to_decimal(output_quantity) + sum(
            (to_decimal(q) for q in byproduct_quantities), ZERO
        )
        yield_percent = total_yield / input_quantity * Decimal("100")
        if yield_percent > YIELD_ANOMALY_THRESHOLD_PERCENT:
            warnings.append(
                CostWarning(
                    type="yield_anomaly",
                    message=(
                        f"Total yield ({yield_percent.quantize(Decimal('0.1'))}%) "
                        f"exceeds {YIELD_ANOMALY_THRESHOLD_PERCENT}% of input"
                    ),
                    severity="warning",
                )
            )
    return warnings


def _validate_batch_inputs(
    batch_code: str,
    material_inputs: Sequence[MaterialInput],
    output_quantity: Decimal,
    crushing_hours: Decimal,
    byproducts: Sequence[ByproductYield],
) -> None:
    errors = []
    if not batch_code or not batch_code.strip():
        errors.append("batch code is required")
    if not material_inputs:
        errors.append("a batch needs at least one material input")
    for item in material_inputs:
        if to_decimal(item.quantity) <= 0:
            errors.append(f"material {item.material_id}: quantity must be positive")
    if output_quantity < 0:
        errors.append("output quantity must not be negative")
    if crushing_hours < 0:
        errors.append("hours must not be negative")
    valid_types = {t.value for t in ByproductType}
    for byproduct in byproducts:
        if byproduct.byproduct_type not in valid_types:
            errors.append(f"unknown byproduct type '{byproduct.byproduct_type}'")
        if to_decimal(byproduct.quantity) < 0:
            errors.append(f"{byproduct.byproduct_type}: yield must not be negative")
        if to_decimal(byproduct.estimated_rate) < 0:
            errors.append(f"{byproduct.byproduct_type}: estimated rate must not be negative")
    if errors:
        raise ValidationError(errors, batch_code=batch_code)


def finalize_batch(
    batch_code: str,
    production_date: date,
    material_inputs: Sequence[MaterialInput],
    output_quantity: Decimal,
    catalog: RateCatalog,
    crushing_hours: Decimal = ZERO,
    byproducts: Sequence[ByproductYield] = (),
    stages: Sequence = DEFAULT_BATCH_STAGES,
    overrides: Optional[Mapping[int, Override]] = None,
    enabled: Optional[Mapping[int, bool]] = None,
    apply_to_future: Optional[Mapping[int, bool]] = None,
    actor: Optional[str] = None,
    product_type: Optional[str] = None,
    notes: Optional[str] = None,
    session: Optional[Session] = None,
) -> FinalizedBatch:
    """
    Finalize a production batch.

    Validation (inputs, overrides, stage contexts) runs before anything is
    written. The write phase consumes the input materials at their
    weighted-average cost, persists the batch with its stage lines and
    audit records, and opens one byproduct lot per non-zero yield.

    Args:
        batch_code: Unique batch code
        production_date: Date of production
        material_inputs: Materials fed into the batch
        output_quantity: Main product output
        catalog: Injected RateCatalog
        crushing_hours: Billable hours for per_hour elements
        byproducts: Byproduct yields with their estimated rates
        stages: Stages to cost (default drying, crushing, batch)
        overrides: Element id -> Override
        enabled: Element id -> toggle for optional elements
        apply_to_future: Element id -> surface the override as a master
            rate update (see cost_element_service.apply_override_to_catalog)
        actor: User finalizing the batch, recorded on audit records
        product_type: Product produced, for reporting
        notes: Free-form notes
        session: Optional database session (caller owns transaction if provided)

    Returns:
        FinalizedBatch

    Raises:
        ValidationError: Bad input or an override lacking a required reason
        InsufficientInventoryError: A material input exceeds availability
        MaterialNotFound: Unknown input material
        PersistenceError: Store write failed
    """
    output_quantity = to_decimal(output_quantity)
    crushing_hours = to_decimal(crushing_hours, default=ZERO)
    overrides = overrides or {}
    stage_values = [_stage_value(stage) for stage in stages]

    try:
        _validate_batch_inputs(batch_code, material_inputs, output_quantity, crushing_hours, byproducts)

        input_quantity = sum((to_decimal(item.quantity) for item in material_inputs), ZERO)
        context = StageContext(
            quantity=input_quantity, output_quantity=output_quantity, hours=crushing_hours
        )
        elements = catalog.fetch()
        audit_records = audit_stage_overrides(
            elements, stage_values, context, overrides, enabled, actor, apply_to_future
        )
        stage_results = [
            calculate_stage_costs(stage, elements, context, overrides, enabled)
            for stage in stage_values
        ]
    except ValidationError as e:
        log_operation(
            logger,
            operation="finalize_batch",
            outcome="validation_failed",
            level=logging.WARNING,
            batch_code=batch_code,
            errors=e.errors,
        )
        raise

    all_lines = [line for result in stage_results for line in result.lines]
    warnings = validate_stage_costs(all_lines) + generate_batch_warnings(
        input_quantity, output_quantity, [b.quantity for b in byproducts], crushing_hours
    )
    byproduct_revenue = calculate_byproduct_revenue(byproducts)

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as sess:
            base_material_cost = ZERO
            for item in material_inputs:
                base_material_cost += record_consumption(
                    item.material_id,
                    item.quantity,
                    LEDGER_REASON_BATCH_INPUT,
                    reference=batch_code,
                    session=sess,
                )

            summary = aggregate(
                base_material_cost, all_lines, byproduct_revenue, output_quantity, batch_ref=batch_code
            )

            batch = Batch(
                batch_code=batch_code.strip(),
                product_type=product_type,
                production_date=production_date,
                input_quantity=input_quantity,
                output_quantity=output_quantity,
                crushing_hours=crushing_hours,
                base_material_cost=round_internal(summary.base_material_cost),
                stage_cost_total=round_internal(summary.stage_cost_total),
                byproduct_revenue=round_internal(summary.byproduct_revenue),
                adjustments_total=ZERO,
                net_cost=round_internal(summary.net_cost),
                cost_per_unit=round_internal(summary.cost_per_unit),
                notes=notes,
            )
            for line in all_lines:
                batch.stage_costs.append(
                    BatchStageCost(
                        cost_element_id=line.element_id,
                        element_name=line.element_name,
                        category=line.category,
                        stage=line.stage,
                        calculation_method=line.calculation_method,
                        quantity=line.quantity,
                        rate=line.rate,
                        total_cost=round_internal(line.total_cost),
                        is_applied=line.is_applied,
                        is_overridden=line.is_overridden,
                        override_reason=line.override_reason,
                    )
                )
            sess.add(batch)
            sess.flush()

            for record in audit_records:
                save_audit_record(record, batch_id=batch.id, session=sess)

            lots = []
            for byproduct in byproducts:
                if to_decimal(byproduct.quantity) <= 0:
                    continue
                lot = ByproductLot(
                    batch_id=batch.id,
                    byproduct_type=byproduct.byproduct_type,
                    quantity_produced=byproduct.quantity,
                    quantity_remaining=byproduct.quantity,
                    estimated_rate=byproduct.estimated_rate,
                )
                sess.add(lot)
                lots.append(lot)
            sess.flush()

            result = FinalizedBatch(
                batch_id=batch.id,
                batch_code=batch.batch_code,
                summary=replace(summary, batch_ref=batch.id),
                stage_results=stage_results,
                audit_records=audit_records,
                lot_ids=[lot.id for lot in lots],
                warnings=warnings,
            )
    except InsufficientInventoryError as e:
        log_operation(
            logger,
            operation="finalize_batch",
            outcome="insufficient_inventory",
            level=logging.WARNING,
            batch_code=batch_code,
            shortfall=str(e.shortfall),
        )
        raise
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        log_operation(
            logger,
            operation="finalize_batch",
            outcome="persistence_error",
            level=logging.ERROR,
            batch_code=batch_code,
            error=str(e),
        )
        raise PersistenceError(f"Failed to finalize batch {batch_code}", original_error=e)

    log_operation(
        logger,
        operation="finalize_batch",
        outcome="success",
        batch_id=result.batch_id,
        batch_code=result.batch_code,
        net_cost=str(result.summary.net_cost),
        warning_count=len(warnings),
        override_count=len(audit_records),
    )
    return result


def _summary_from_batch(batch: Batch) -> BatchCostSummary:
    stage_totals = [line.applied_total for line in batch.stage_costs if line.is_applied]
    return BatchCostSummary(
        base_material_cost=Decimal(batch.base_material_cost),
        stage_totals=stage_totals,
        stage_cost_total=Decimal(batch.stage_cost_total),
        byproduct_revenue=Decimal(batch.byproduct_revenue),
        adjustments_total=Decimal(batch.adjustments_total),
        output_quantity=Decimal(batch.output_quantity),
        net_cost=Decimal(batch.net_cost),
        cost_per_unit=Decimal(batch.cost_per_unit),
        batch_ref=batch.id,
    )


def _get_batch_or_raise(batch_id: int, session: Session, for_update: bool = False) -> Batch:
    query = session.query(Batch).filter(Batch.id == batch_id)
    if for_update:
        query = query.with_for_update()
    batch = query.first()
    if batch is None:
        raise BatchNotFound(batch_id)
    return batch


def get_batch_cost_summary(batch_id: int, session: Optional[Session] = None) -> BatchCostSummary:
    """Rebuild the BatchCostSummary of a persisted batch.

    Raises:
        BatchNotFound: Unknown batch
    """
    if session is not None:
        return _summary_from_batch(_get_batch_or_raise(batch_id, session))
    with session_scope() as sess:
        return _summary_from_batch(_get_batch_or_raise(batch_id, sess))


def post_adjustment(
    batch_id: int,
    adjustment: Decimal,
    session: Optional[Session] = None,
) -> BatchCostSummary:
    """
    Post a reconciliation adjustment to a finalized batch.

    Adjustments accumulate; net cost and cost per unit are recomputed from
    the stored components each time.

    Args:
        batch_id: Batch to adjust
        adjustment: Signed amount (positive raises the batch's net cost)
        session: Optional database session

    Returns:
        Updated BatchCostSummary

    Raises:
        BatchNotFound: Unknown batch
    """
    adjustment = to_decimal(adjustment)

    def _impl(sess: Session) -> BatchCostSummary:
        batch = _get_batch_or_raise(batch_id, sess, for_update=True)
        updated = apply_adjustment(_summary_from_batch(batch), adjustment)
        batch.adjustments_total = round_internal(updated.adjustments_total)
        batch.net_cost = round_internal(updated.net_cost)
        batch.cost_per_unit = round_internal(updated.cost_per_unit)
        sess.flush()
        return updated

    if session is not None:
        updated = _impl(session)
    else:
        with session_scope() as sess:
            updated = _impl(sess)

    log_operation(
        logger,
        operation="post_adjustment",
        outcome="success",
        batch_id=batch_id,
        adjustment=str(adjustment),
        net_cost=str(updated.net_cost),
    )
    return updated


def list_batches(
    product_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    session: Optional[Session] = None,
) -> List[Batch]:
    """Finalized batches, newest production date first."""

    def _impl(sess: Session) -> List[Batch]:
        query = sess.query(Batch)
        if product_type is not None:
            query = query.filter(Batch.product_type == product_type)
        if start_date is not None:
            query = query.filter(Batch.production_date >= start_date)
        if end_date is not None:
            query = query.filter(Batch.production_date <= end_date)
        return query.order_by(Batch.production_date.desc(), Batch.id.desc()).all()

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def summarize_batches(batches: Iterable) -> Dict[str, Any]:
    """
    Cost report over a set of batches.

    Args:
        batches: Objects with product_type, output_quantity and net_cost

    Returns:
        Dict with batch_count, total_production, total_cost,
        average_cost_per_unit and by_product_type (same figures per type)
    """

    def _empty() -> Dict[str, Any]:
        return {"batch_count": 0, "total_production": ZERO, "total_cost": ZERO}

    totals = _empty()
    by_type: Dict[str, Dict[str, Any]] = OrderedDict()
    for batch in batches:
        product_type = batch.product_type or "Unspecified"
        bucket = by_type.setdefault(product_type, _empty())
        for target in (totals, bucket):
            target["batch_count"] += 1
            target["total_production"] += Decimal(batch.output_quantity)
            target["total_cost"] += Decimal(batch.net_cost)

    for target in [totals, *by_type.values()]:
        production = target["total_production"]
        target["average_cost_per_unit"] = target["total_cost"] / production if production > 0 else ZERO

    totals["by_product_type"] = by_type
    return totals


def calculate_variance(actual: Decimal, estimated: Decimal) -> Dict[str, Any]:
    """
    Variance of an actual cost against its estimate.

    Status is "on-target" when |variance %| < 5, else "over-budget" or
    "under-budget". A zero estimate has no percentage variance.

    Example:
        >>> calculate_variance(Decimal("110"), Decimal("100"))["status"]
        'over-budget'
    """
    actual = to_decimal(actual)
    estimated = to_decimal(estimated)
    variance = actual - estimated
    variance_percent = variance / estimated * Decimal("100") if estimated != 0 else ZERO

    if abs(variance_percent) < VARIANCE_ON_TARGET_PERCENT:
        status = "on-target"
    elif variance_percent > 0:
        status = "over-budget"
    else:
        status = "under-budget"

    return {"variance": variance, "variance_percent": variance_percent, "status": status}
