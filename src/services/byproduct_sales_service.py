"""
Byproduct Sales Service - two-phase FIFO sales with cost reconciliation.

This module provides functions for:
- Reading byproduct lots oldest first
- Previewing a sale (FIFO allocation plan, no side effects)
- Committing a previewed sale: re-validate every allocation against the
  lots as they are now, decrement them, persist the sale and its
  allocations, and post reconciliation adjustments to the source batches
- Inventory summary and per-batch reconciliation report

Two sales previewed from the same lots may both look satisfiable; only
commits that still fit the lots succeed. commit_sale() reads each lot with
SELECT ... FOR UPDATE (a no-op on SQLite, a row lock elsewhere) and fails
the whole sale if any planned allocation no longer fits. Nothing is
written in that case.

Example Usage:
    >>> plan = preview_sale("oil_cake", Decimal("600"))
    >>> plan.satisfied
    True
    >>> sale = commit_sale(plan, sale_rate=Decimal("28"), buyer_name="Sri Dairy Farm")
    >>> sale["total_adjustment"]
    '1200.0000'
"""

import logging
from collections import OrderedDict
from contextlib import nullcontext
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Batch, ByproductLot, ByproductSale, SaleAllocation
from ..models.enums import ByproductType
from ..utils.datetime_utils import age_in_days, as_utc, utc_now
from ..utils.money import ZERO, round_internal
from .batch_costing_service import post_adjustment
from .cost_reconciliation import calculate_sale_impact
from .database import session_scope
from .exceptions import (
    InsufficientInventoryError,
    LotNotFound,
    PersistenceError,
    ServiceError,
    ValidationError,
)
from .fifo_allocation import AllocationPlan, LotSnapshot, allocate
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

_VALID_TYPES = {t.value for t in ByproductType}


def _type_value(byproduct_type) -> str:
    value = byproduct_type.value if isinstance(byproduct_type, ByproductType) else str(byproduct_type)
    if value not in _VALID_TYPES:
        raise ValidationError([f"unknown byproduct type '{value}'"])
    return value


def _to_snapshot(lot: ByproductLot) -> LotSnapshot:
    return LotSnapshot(
        lot_id=lot.id,
        batch_id=lot.batch_id,
        byproduct_type=lot.byproduct_type,
        created_at=as_utc(lot.created_at),
        quantity_remaining=Decimal(lot.quantity_remaining),
        estimated_rate=Decimal(lot.estimated_rate),
    )


def get_fifo_lots(byproduct_type, session: Optional[Session] = None) -> List[LotSnapshot]:
    """
    Lots of a byproduct with stock remaining, oldest first.

    Args:
        byproduct_type: ByproductType (or its value)
        session: Optional database session

    Returns:
        List of LotSnapshot ordered by created_at, then lot id
    """
    type_value = _type_value(byproduct_type)

    def _impl(sess: Session) -> List[LotSnapshot]:
        lots = (
            sess.query(ByproductLot)
            .filter(
                ByproductLot.byproduct_type == type_value,
                ByproductLot.quantity_remaining > 0,
            )
            .order_by(ByproductLot.created_at.asc(), ByproductLot.id.asc())
            .all()
        )
        return [_to_snapshot(lot) for lot in lots]

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def preview_sale(byproduct_type, quantity: Decimal, session: Optional[Session] = None) -> AllocationPlan:
    """
    Plan a sale without touching inventory.

    Args:
        byproduct_type: ByproductType (or its value)
        quantity: Quantity the buyer asks for
        session: Optional database session

    Returns:
        AllocationPlan; a positive shortfall means the lots cannot cover
        the request

    Raises:
        ValidationError: Unknown type or non-positive quantity
    """
    type_value = _type_value(byproduct_type)
    plan = allocate(quantity, get_fifo_lots(type_value, session=session), byproduct_type=type_value)
    log_operation(
        logger,
        operation="preview_sale",
        outcome="satisfied" if plan.satisfied else "shortfall",
        byproduct_type=type_value,
        requested=str(plan.requested),
        shortfall=str(plan.shortfall),
        lot_count=len(plan.allocations),
    )
    return plan


def _lock_and_validate_lots(plan: AllocationPlan, session: Session) -> Dict[int, ByproductLot]:
    """
    Re-read every planned lot under lock; raise before any change.

    A lot may appear in more than one allocation, so each lot is checked
    against the total the plan draws from it.
    """
    drawn: Dict[int, Decimal] = OrderedDict()
    for planned in plan.allocations:
        drawn[planned.lot_id] = drawn.get(planned.lot_id, ZERO) + planned.quantity

    lots: Dict[int, ByproductLot] = {}
    for lot_id, quantity in drawn.items():
        lot = (
            session.query(ByproductLot)
            .filter(ByproductLot.id == lot_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if lot is None:
            raise LotNotFound(lot_id)
        if plan.byproduct_type is not None and lot.byproduct_type != plan.byproduct_type:
            raise ValidationError(
                [f"lot {lot.id} holds {lot.byproduct_type}, not {plan.byproduct_type}"]
            )
        available = Decimal(lot.quantity_remaining)
        if available < quantity:
            raise InsufficientInventoryError(
                item=f"{lot.byproduct_type} lot {lot.id}",
                requested=quantity,
                available=available,
                lot_id=lot.id,
            )
        lots[lot.id] = lot
    return lots


def commit_sale(
    plan: AllocationPlan,
    sale_rate: Decimal,
    buyer_name: str,
    sale_date: Optional[date] = None,
    packing_cost: Decimal = ZERO,
    transport_cost: Decimal = ZERO,
    invoice_ref: Optional[str] = None,
    accept_shortfall: bool = False,
    notes: Optional[str] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Commit a previewed sale, all or nothing.

    Args:
        plan: Plan from preview_sale()
        sale_rate: Realized rate per unit (> 0)
        buyer_name: Buyer
        sale_date: Sale date (default: today, UTC)
        packing_cost: Charged back to the source batches by quantity
        transport_cost: Outward transport, reduces net revenue only
        invoice_ref: Sale invoice number
        accept_shortfall: Record a plan with a shortfall as a partial sale
        notes: Free-form notes
        session: Optional database session (caller owns transaction if provided)

    Returns:
        Sale as dictionary with its allocations, net_revenue and
        adjustments_by_batch

    Raises:
        ValidationError: Bad rate/costs, blank buyer or empty plan
        InsufficientInventoryError: Plan has an unacknowledged shortfall, or a
            lot no longer holds its planned quantity
        LotNotFound: A planned lot no longer exists
        PersistenceError: Store write failed
    """
    type_value = plan.byproduct_type

    try:
        errors = []
        if not buyer_name or not buyer_name.strip():
            errors.append("buyer name is required")
        if not plan.allocations:
            errors.append("nothing to sell: the plan has no allocations")
        errors.extend(
            f"planned quantity for lot {a.lot_id} must be positive"
            for a in plan.allocations
            if a.quantity <= 0
        )
        if errors:
            raise ValidationError(errors)
        if not plan.satisfied and not accept_shortfall:
            raise InsufficientInventoryError(
                item=type_value or "byproduct",
                requested=plan.requested,
                available=plan.allocated,
            )
        impact = calculate_sale_impact(plan, sale_rate, packing_cost, transport_cost)

        cm = nullcontext(session) if session is not None else session_scope()
        with cm as sess:
            lots = _lock_and_validate_lots(plan, sess)

            sale = ByproductSale(
                byproduct_type=type_value or next(iter(lots.values())).byproduct_type,
                sale_date=sale_date or utc_now().date(),
                buyer_name=buyer_name.strip(),
                invoice_ref=invoice_ref,
                quantity_requested=plan.requested,
                quantity_sold=impact.quantity,
                sale_rate=impact.sale_rate,
                packing_cost=impact.packing_cost,
                transport_cost=impact.transport_cost,
                total_adjustment=round_internal(impact.total_adjustment),
                shortfall_acknowledged=not plan.satisfied,
                notes=notes,
            )
            for allocation in impact.allocations:
                lot = lots[allocation.lot_id]
                lot.quantity_remaining = Decimal(lot.quantity_remaining) - allocation.allocated_quantity
                sale.allocations.append(
                    SaleAllocation(
                        lot_id=allocation.lot_id,
                        batch_id=allocation.batch_id,
                        quantity_allocated=allocation.allocated_quantity,
                        estimated_rate=allocation.estimated_rate,
                        realized_rate=allocation.realized_rate,
                        adjustment=round_internal(allocation.adjustment),
                        packing_cost_share=round_internal(allocation.packing_cost_share),
                    )
                )
            sess.add(sale)
            sess.flush()

            for batch_id, amount in impact.adjustments_by_batch.items():
                post_adjustment(batch_id, amount, session=sess)

            result = sale.to_dict()
            result["allocations"] = [a.to_dict() for a in sale.allocations]
            result["net_revenue"] = str(impact.net_revenue)
            result["adjustments_by_batch"] = {
                batch_id: str(amount) for batch_id, amount in impact.adjustments_by_batch.items()
            }
    except InsufficientInventoryError as e:
        log_operation(
            logger,
            operation="commit_sale",
            outcome="insufficient_inventory",
            level=logging.WARNING,
            byproduct_type=type_value,
            requested=str(e.requested),
            available=str(e.available),
            shortfall=str(e.shortfall),
        )
        raise
    except ValidationError as e:
        log_operation(
            logger,
            operation="commit_sale",
            outcome="validation_failed",
            level=logging.WARNING,
            byproduct_type=type_value,
            errors=e.errors,
        )
        raise
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        log_operation(
            logger,
            operation="commit_sale",
            outcome="persistence_error",
            level=logging.ERROR,
            byproduct_type=type_value,
            error=str(e),
        )
        raise PersistenceError("Failed to commit byproduct sale", original_error=e)

    log_operation(
        logger,
        operation="commit_sale",
        outcome="success",
        sale_id=result["id"],
        byproduct_type=result["byproduct_type"],
        quantity_sold=result["quantity_sold"],
        total_adjustment=result["total_adjustment"],
    )
    return result


def _empty_inventory_bucket() -> Dict[str, Any]:
    return {"lot_count": 0, "total_available": ZERO, "estimated_value": ZERO, "oldest_stock_days": 0}


def get_inventory_summary(session: Optional[Session] = None) -> Dict[str, Dict[str, Any]]:
    """
    Stock position per byproduct type.

    Returns:
        Dict type -> {lot_count, total_available, estimated_value,
        oldest_stock_days}; every ByproductType is present
    """

    def _impl(sess: Session) -> Dict[str, Dict[str, Any]]:
        summary: Dict[str, Dict[str, Any]] = OrderedDict(
            (t.value, _empty_inventory_bucket()) for t in ByproductType
        )
        now = utc_now()
        lots = (
            sess.query(ByproductLot)
            .filter(ByproductLot.quantity_remaining > 0)
            .order_by(ByproductLot.created_at.asc(), ByproductLot.id.asc())
            .all()
        )
        for lot in lots:
            bucket = summary.setdefault(lot.byproduct_type, _empty_inventory_bucket())
            bucket["lot_count"] += 1
            bucket["total_available"] += Decimal(lot.quantity_remaining)
            bucket["estimated_value"] += lot.remaining_value
            bucket["oldest_stock_days"] = max(
                bucket["oldest_stock_days"], age_in_days(lot.created_at, now)
            )
        return summary

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def get_reconciliation_report(
    batch_id: Optional[int] = None,
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """
    Per-batch view of estimated byproduct revenue against posted adjustments.

    Args:
        batch_id: Limit to one batch
        session: Optional database session

    Returns:
        List of dicts: batch_id, batch_code, estimated_byproduct_revenue,
        adjustments_total, net_cost, cost_per_unit, quantity_sold,
        allocation_count
    """

    def _impl(sess: Session) -> List[Dict[str, Any]]:
        query = sess.query(Batch)
        if batch_id is not None:
            query = query.filter(Batch.id == batch_id)
        report = []
        for batch in query.order_by(Batch.id.asc()).all():
            allocations = (
                sess.query(SaleAllocation).filter(SaleAllocation.batch_id == batch.id).all()
            )
            report.append(
                {
                    "batch_id": batch.id,
                    "batch_code": batch.batch_code,
                    "estimated_byproduct_revenue": Decimal(batch.byproduct_revenue),
                    "adjustments_total": Decimal(batch.adjustments_total),
                    "net_cost": Decimal(batch.net_cost),
                    "cost_per_unit": Decimal(batch.cost_per_unit),
                    "quantity_sold": sum(
                        (Decimal(a.quantity_allocated) for a in allocations), ZERO
                    ),
                    "allocation_count": len(allocations),
                }
            )
        return report

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)
