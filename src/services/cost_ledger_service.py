"""
Weighted-average cost ledger for raw materials.

This module provides functions for:
- Creating materials
- Recording purchases (updates the running weighted-average cost)
- Recording consumption (batch input, write-off)
- Write-offs valued at the weighted average, net of scrap recovered
- Reading a material's current cost basis

available_quantity only increases through record_purchase() and only
decreases through record_consumption(); it is never recomputed from
scratch. Every movement writes a MaterialLedgerEntry with the resulting
quantity and average, so the head can be traced back event by event.

Landed unit cost passed to record_purchase() must already include the
item's allocated transport, handling and GST (see purchase_service).
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Material, MaterialLedgerEntry
from ..utils.constants import CONSUMPTION_REASONS, LEDGER_REASON_PURCHASE, LEDGER_REASON_WRITEOFF
from ..utils.money import ZERO, round_internal, to_decimal
from .database import session_scope
from .exceptions import (
    InsufficientInventoryError,
    MaterialNotFound,
    PersistenceError,
    ServiceError,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class MaterialCost:
    """Current cost basis of a material."""

    material_id: int
    name: str
    unit: str
    available_quantity: Decimal
    weighted_avg_cost: Decimal

    @property
    def stock_value(self) -> Decimal:
        return self.available_quantity * self.weighted_avg_cost


def calculate_weighted_average(
    current_quantity: Decimal,
    current_avg_cost: Decimal,
    added_quantity: Decimal,
    added_unit_cost: Decimal,
) -> Decimal:
    """Calculate new weighted average cost after adding inventory.

    Formula: (current_qty * current_avg + added_qty * added_cost) / (current_qty + added_qty)

    Args:
        current_quantity: Current available quantity
        current_avg_cost: Current weighted average cost
        added_quantity: Quantity being added
        added_unit_cost: Landed unit cost of added inventory

    Returns:
        New weighted average cost as Decimal

    Special Cases:
        - If current_quantity == 0: Returns added_unit_cost (first purchase)
        - If added_quantity == 0: Returns current_avg_cost (unchanged)

    Examples:
        >>> calculate_weighted_average(Decimal("100"), Decimal("50"), Decimal("50"), Decimal("80"))
        Decimal('60.0000')
        >>> calculate_weighted_average(Decimal("0"), Decimal("0"), Decimal("100"), Decimal("50"))
        Decimal('50')
    """
    current_qty = to_decimal(current_quantity)
    added_qty = to_decimal(added_quantity)
    current_avg_cost = to_decimal(current_avg_cost)
    added_unit_cost = to_decimal(added_unit_cost)

    # First purchase: no existing inventory
    if current_qty == 0:
        return added_unit_cost

    if added_qty == 0:
        return current_avg_cost

    total_value = (current_qty * current_avg_cost) + (added_qty * added_unit_cost)
    total_quantity = current_qty + added_qty
    return round_internal(total_value / total_quantity)


def _get_material_or_raise(material_id: int, session: Session, for_update: bool = False) -> Material:
    query = session.query(Material).filter(Material.id == material_id)
    if for_update:
        query = query.with_for_update()
    material = query.first()
    if material is None:
        raise MaterialNotFound(material_id)
    return material


def _to_material_cost(material: Material) -> MaterialCost:
    return MaterialCost(
        material_id=material.id,
        name=material.name,
        unit=material.unit,
        available_quantity=Decimal(material.available_quantity or 0),
        weighted_avg_cost=Decimal(material.weighted_avg_cost or 0),
    )


def create_material(
    name: str,
    unit: str = "kg",
    gst_rate: Decimal = ZERO,
    session: Optional[Session] = None,
) -> MaterialCost:
    """Create a material with an empty ledger.

    Raises:
        ValidationError: Blank name or GST rate outside 0-100
    """
    gst_rate = to_decimal(gst_rate)
    errors = []
    if not name or not name.strip():
        errors.append("name is required")
    if gst_rate < 0 or gst_rate > 100:
        errors.append("GST rate must be between 0 and 100")
    if errors:
        raise ValidationError(errors)

    def _impl(sess: Session) -> MaterialCost:
        material = Material(name=name.strip(), unit=unit, gst_rate=gst_rate)
        sess.add(material)
        sess.flush()
        return _to_material_cost(material)

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def get_material_cost(material_id: int, session: Optional[Session] = None) -> MaterialCost:
    """
    Current weighted-average cost and available quantity of a material.

    Raises:
        MaterialNotFound: Unknown material
    """
    if session is not None:
        return _to_material_cost(_get_material_or_raise(material_id, session))
    with session_scope() as sess:
        return _to_material_cost(_get_material_or_raise(material_id, sess))


def record_purchase(
    material_id: int,
    quantity: Decimal,
    landed_unit_cost: Decimal,
    reference: Optional[str] = None,
    session: Optional[Session] = None,
) -> Decimal:
    """
    Record a purchased quantity and update the weighted-average cost.

    Args:
        material_id: Material purchased
        quantity: Quantity received (> 0)
        landed_unit_cost: Unit cost including transport, handling and GST (>= 0)
        reference: Invoice reference for the ledger entry
        session: Optional database session (caller owns transaction if provided)

    Returns:
        New weighted-average unit cost

    Raises:
        ValidationError: Non-positive quantity or negative cost
        MaterialNotFound: Unknown material
        PersistenceError: Store write failed
    """
    quantity = to_decimal(quantity)
    landed_unit_cost = to_decimal(landed_unit_cost)
    errors = []
    if quantity <= 0:
        errors.append("quantity must be positive")
    if landed_unit_cost < 0:
        errors.append("landed unit cost must not be negative")
    if errors:
        raise ValidationError(errors, material_id=material_id)

    def _impl(sess: Session) -> Decimal:
        material = _get_material_or_raise(material_id, sess, for_update=True)
        current_qty = Decimal(material.available_quantity or 0)
        current_avg = Decimal(material.weighted_avg_cost or 0)

        new_avg = calculate_weighted_average(current_qty, current_avg, quantity, landed_unit_cost)
        new_qty = current_qty + quantity

        material.available_quantity = new_qty
        material.weighted_avg_cost = new_avg
        sess.add(
            MaterialLedgerEntry(
                material_id=material.id,
                reason=LEDGER_REASON_PURCHASE,
                quantity_change=quantity,
                unit_cost=landed_unit_cost,
                resulting_quantity=new_qty,
                resulting_avg_cost=new_avg,
                reference=reference,
            )
        )
        sess.flush()
        return new_avg

    try:
        if session is not None:
            new_avg = _impl(session)
        else:
            with session_scope() as sess:
                new_avg = _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        log_operation(
            logger,
            operation="record_purchase",
            outcome="persistence_error",
            level=logging.ERROR,
            material_id=material_id,
            error=str(e),
        )
        raise PersistenceError("Failed to record material purchase", original_error=e)

    log_operation(
        logger,
        operation="record_purchase",
        outcome="success",
        material_id=material_id,
        quantity=str(quantity),
        landed_unit_cost=str(landed_unit_cost),
        weighted_avg_cost=str(new_avg),
    )
    return new_avg


def record_consumption(
    material_id: int,
    quantity: Decimal,
    reason: str,
    reference: Optional[str] = None,
    scrap_value: Decimal = ZERO,
    session: Optional[Session] = None,
) -> Decimal:
    """
    Record a consumption event (batch input or write-off).

    The weighted average is unchanged by consumption; the ledger entry
    carries the average at the time of consumption as its unit cost.

    Args:
        material_id: Material consumed
        quantity: Quantity consumed (> 0)
        reason: "batch_input" or "writeoff"
        reference: Batch code or write-off note
        scrap_value: Amount recovered, recorded on write-offs only (>= 0)
        session: Optional database session

    Returns:
        Cost of the consumed quantity (quantity x weighted average)

    Raises:
        ValidationError: Non-positive quantity, unknown reason, or scrap
            value that is negative or given for a batch input
        InsufficientInventoryError: quantity exceeds available quantity
        MaterialNotFound: Unknown material
        PersistenceError: Store write failed
    """
    quantity = to_decimal(quantity)
    scrap_value = to_decimal(scrap_value, default=ZERO)
    errors = []
    if quantity <= 0:
        errors.append("quantity must be positive")
    if reason not in CONSUMPTION_REASONS:
        errors.append(f"unknown consumption reason '{reason}'")
    if scrap_value < 0:
        errors.append("scrap value must not be negative")
    elif scrap_value > 0 and reason != LEDGER_REASON_WRITEOFF:
        errors.append("scrap value applies to write-offs only")
    if errors:
        raise ValidationError(errors, material_id=material_id)

    def _impl(sess: Session) -> Decimal:
        material = _get_material_or_raise(material_id, sess, for_update=True)
        available = Decimal(material.available_quantity or 0)
        if quantity > available:
            raise InsufficientInventoryError(
                item=material.name,
                requested=quantity,
                available=available,
                material_id=material_id,
            )

        avg = Decimal(material.weighted_avg_cost or 0)
        new_qty = available - quantity
        material.available_quantity = new_qty
        sess.add(
            MaterialLedgerEntry(
                material_id=material.id,
                reason=reason,
                quantity_change=-quantity,
                unit_cost=avg,
                resulting_quantity=new_qty,
                resulting_avg_cost=avg,
                reference=reference,
                scrap_value=scrap_value,
            )
        )
        sess.flush()
        return quantity * avg

    try:
        if session is not None:
            cost = _impl(session)
        else:
            with session_scope() as sess:
                cost = _impl(sess)
    except InsufficientInventoryError as e:
        log_operation(
            logger,
            operation="record_consumption",
            outcome="insufficient_inventory",
            level=logging.WARNING,
            material_id=material_id,
            requested=str(e.requested),
            available=str(e.available),
        )
        raise
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        log_operation(
            logger,
            operation="record_consumption",
            outcome="persistence_error",
            level=logging.ERROR,
            material_id=material_id,
            error=str(e),
        )
        raise PersistenceError("Failed to record material consumption", original_error=e)

    log_operation(
        logger,
        operation="record_consumption",
        outcome="success",
        material_id=material_id,
        reason=reason,
        quantity=str(quantity),
        cost=str(cost),
    )
    return cost


@dataclass(frozen=True)
class WriteoffValue:
    """Book cost of written-off stock against what was recovered."""

    total_cost: Decimal
    scrap_value: Decimal
    net_loss: Decimal


def calculate_writeoff_value(quantity: Decimal, avg_cost: Decimal, scrap_value: Decimal = ZERO) -> WriteoffValue:
    """
    Value a write-off at the weighted-average cost.

    net_loss = quantity x avg_cost - scrap_value. A scrap value above the
    book cost yields a negative net loss (a recovery).

    Example:
        >>> calculate_writeoff_value(Decimal("15"), Decimal("80"), Decimal("200")).net_loss
        Decimal('1000')
    """
    total = to_decimal(quantity) * to_decimal(avg_cost)
    scrap = to_decimal(scrap_value, default=ZERO)
    return WriteoffValue(total_cost=total, scrap_value=scrap, net_loss=total - scrap)


def record_writeoff(
    material_id: int,
    quantity: Decimal,
    scrap_value: Decimal = ZERO,
    reference: Optional[str] = None,
    session: Optional[Session] = None,
) -> WriteoffValue:
    """
    Write off damaged or lost stock.

    The quantity leaves the ledger at the current weighted average, which
    is itself unchanged.

    Args:
        material_id: Material written off
        quantity: Quantity written off (> 0, <= available)
        scrap_value: Amount recovered by selling the scrap (>= 0)
        reference: Reason or note for the ledger entry
        session: Optional database session

    Returns:
        WriteoffValue with the book cost, scrap value and net loss

    Raises:
        ValidationError: Non-positive quantity or negative scrap value
        InsufficientInventoryError: quantity exceeds available quantity
        MaterialNotFound: Unknown material
        PersistenceError: Store write failed
    """
    scrap_value = to_decimal(scrap_value, default=ZERO)
    cost = record_consumption(
        material_id,
        quantity,
        LEDGER_REASON_WRITEOFF,
        reference=reference,
        scrap_value=scrap_value,
        session=session,
    )
    value = WriteoffValue(total_cost=cost, scrap_value=scrap_value, net_loss=cost - scrap_value)
    log_operation(
        logger,
        operation="record_writeoff",
        outcome="success",
        material_id=material_id,
        quantity=str(to_decimal(quantity)),
        net_loss=str(value.net_loss),
    )
    return value


def get_ledger_entries(material_id: int, session: Optional[Session] = None) -> List[dict]:
    """Ledger entries of a material, oldest first."""

    def _impl(sess: Session) -> List[dict]:
        _get_material_or_raise(material_id, sess)
        entries = (
            sess.query(MaterialLedgerEntry)
            .filter(MaterialLedgerEntry.material_id == material_id)
            .order_by(MaterialLedgerEntry.id.asc())
            .all()
        )
        return [entry.to_dict() for entry in entries]

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)
