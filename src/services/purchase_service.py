"""Purchase Service - supplier invoices with landed cost.

This module provides business logic for recording purchase invoices:
- Allocating the invoice's transport and handling across its line items by
  UOM group (ChargeAllocator)
- GST on the taxable amount (quantity x rate + transport + handling)
- Landed unit cost per line, fed into the weighted-average ledger
- Purchase-stage cost elements (seed unloading per 50 kg bag, inward
  transport per kg) costed on the invoice's kg quantity, with audited rate
  overrides, added to the invoice grand total
- Persisting the invoice, its lines and the ledger updates in one
  transaction

Key Features:
- Pure pricing (price_invoice_lines, price_purchase_elements) usable for an
  on-screen preview
- Allocation precondition: group shares must total exactly 100
- Validation happens before anything is written

Example Usage:
    >>> from src.services.purchase_service import PurchaseLineInput, record_invoice
    >>> purchase = record_invoice(
    ...     invoice_ref="INV-0042",
    ...     purchase_date=date(2024, 3, 1),
    ...     lines=[PurchaseLineInput(material_id=1, quantity=Decimal("1000"),
    ...                              unit_rate=Decimal("80"))],
    ...     transport_cost=Decimal("1500"),
    ... )
    >>> purchase["items"][0]["landed_unit_cost"]
    '80.9000'
"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Material, Purchase, PurchaseCostLine, PurchaseLineItem
from ..models.enums import ProductionStage
from ..utils.constants import DEFAULT_UOM_GROUP_SHARES, UOM_GROUP_MASS
from ..utils.money import ZERO, round_internal, to_decimal
from .charge_allocation import HUNDRED, ChargeLine, allocate_charge, classify_unit
from .cost_ledger_service import record_purchase
from .database import session_scope
from .exceptions import MaterialNotFound, PersistenceError, ServiceError, ValidationError
from .logging_utils import get_service_logger, log_operation
from .override_audit import OverrideAuditRecord, audit_stage_overrides, save_audit_record
from .rate_catalog import CostElementInfo, RateCatalog
from .stage_costing import Override, StageContext, StageCostResult, calculate_stage_costs

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class PurchaseLineInput:
    """One invoice line as entered.

    unit and gst_rate default to the material's own values when omitted.
    """

    material_id: int
    quantity: Decimal
    unit_rate: Decimal
    gst_rate: Optional[Decimal] = None
    unit: Optional[str] = None


@dataclass
class LandedLine:
    """A priced invoice line."""

    index: int
    material_id: int
    unit: str
    quantity: Decimal
    unit_rate: Decimal
    gst_rate: Decimal
    amount: Decimal
    transport_charge: Decimal
    handling_charge: Decimal
    taxable_amount: Decimal
    gst_amount: Decimal
    total_cost: Decimal
    landed_unit_cost: Decimal


@dataclass
class InvoiceTotals:
    subtotal: Decimal
    transport_allocated: Decimal
    handling_allocated: Decimal
    total_gst: Decimal
    grand_total: Decimal
    additional_costs: Decimal = ZERO


def calculate_landed_cost(
    quantity: Decimal,
    unit_rate: Decimal,
    gst_rate: Decimal,
    transport_charge: Decimal = ZERO,
    handling_charge: Decimal = ZERO,
) -> Dict[str, Decimal]:
    """
    Landed cost of one line.

    GST applies to the amount plus the line's allocated transport and
    handling.

    Returns:
        Dict with amount, taxable_amount, gst_amount, total_cost and
        landed_unit_cost

    Example:
        >>> calculate_landed_cost(Decimal("100"), Decimal("50"), Decimal("5"), Decimal("100"))
        {'amount': Decimal('5000'), 'taxable_amount': Decimal('5100'), ...}
    """
    amount = quantity * unit_rate
    taxable = amount + transport_charge + handling_charge
    gst_amount = taxable * gst_rate / HUNDRED
    total = taxable + gst_amount
    return {
        "amount": amount,
        "taxable_amount": taxable,
        "gst_amount": gst_amount,
        "total_cost": total,
        "landed_unit_cost": total / quantity,
    }


def _validate_lines(lines: Sequence[PurchaseLineInput], transport_cost: Decimal, handling_charges: Decimal) -> None:
    errors = []
    if not lines:
        errors.append("an invoice needs at least one line item")
    if transport_cost < 0:
        errors.append("transport cost must not be negative")
    if handling_charges < 0:
        errors.append("handling charges must not be negative")
    for index, line in enumerate(lines):
        if to_decimal(line.quantity) <= 0:
            errors.append(f"line {index + 1}: quantity must be positive")
        if to_decimal(line.unit_rate) <= 0:
            errors.append(f"line {index + 1}: rate must be positive")
        if line.gst_rate is not None:
            gst = to_decimal(line.gst_rate)
            if gst < 0 or gst > 100:
                errors.append(f"line {index + 1}: GST rate must be between 0 and 100")
        if line.unit is None:
            errors.append(f"line {index + 1}: unit of measure is required")
    if errors:
        raise ValidationError(errors)


def price_invoice_lines(
    lines: Sequence[PurchaseLineInput],
    transport_cost: Decimal = ZERO,
    handling_charges: Decimal = ZERO,
    shares: Optional[Mapping[str, Decimal]] = None,
) -> List[LandedLine]:
    """
    Price every line of an invoice.

    Transport and handling are allocated separately with the same UOM group
    shares; each line's allocated charge is rounded to currency precision.

    Args:
        lines: Invoice lines with unit set (gst_rate None means 0)
        transport_cost: Declared invoice transport total
        handling_charges: Declared invoice handling total
        shares: UOM group -> percent (default mass 60 / volume 20 / count 20)

    Returns:
        List of LandedLine in input order

    Raises:
        ValidationError: Bad quantities/rates/GST, missing unit, or group
            shares not totalling 100
    """
    transport_cost = to_decimal(transport_cost, default=ZERO)
    handling_charges = to_decimal(handling_charges, default=ZERO)
    _validate_lines(lines, transport_cost, handling_charges)
    shares = dict(shares if shares is not None else DEFAULT_UOM_GROUP_SHARES)

    charge_lines = [
        ChargeLine(key=index, group=classify_unit(line.unit), quantity=to_decimal(line.quantity))
        for index, line in enumerate(lines)
    ]
    transport = allocate_charge(transport_cost, shares, charge_lines)
    handling = allocate_charge(handling_charges, shares, charge_lines)

    priced = []
    for index, line in enumerate(lines):
        quantity = to_decimal(line.quantity)
        unit_rate = to_decimal(line.unit_rate)
        gst_rate = to_decimal(line.gst_rate, default=ZERO)
        cost = calculate_landed_cost(quantity, unit_rate, gst_rate, transport[index], handling[index])
        priced.append(
            LandedLine(
                index=index,
                material_id=line.material_id,
                unit=line.unit,
                quantity=quantity,
                unit_rate=unit_rate,
                gst_rate=gst_rate,
                amount=cost["amount"],
                transport_charge=transport[index],
                handling_charge=handling[index],
                taxable_amount=cost["taxable_amount"],
                gst_amount=round_internal(cost["gst_amount"]),
                total_cost=round_internal(cost["total_cost"]),
                landed_unit_cost=round_internal(cost["landed_unit_cost"]),
            )
        )
    return priced


def calculate_invoice_totals(lines: Sequence[LandedLine], additional_costs: Decimal = ZERO) -> InvoiceTotals:
    """Sum priced lines into invoice totals; additional_costs go on top of the lines."""
    return InvoiceTotals(
        subtotal=sum((line.amount for line in lines), ZERO),
        transport_allocated=sum((line.transport_charge for line in lines), ZERO),
        handling_allocated=sum((line.handling_charge for line in lines), ZERO),
        total_gst=sum((line.gst_amount for line in lines), ZERO),
        grand_total=sum((line.total_cost for line in lines), ZERO) + additional_costs,
        additional_costs=additional_costs,
    )


def purchase_context(lines: Sequence[PurchaseLineInput]) -> StageContext:
    """Purchase-stage context: the invoice's total kg (mass group) quantity."""
    kg_total = sum(
        (
            to_decimal(line.quantity)
            for line in lines
            if line.unit is not None and classify_unit(line.unit) == UOM_GROUP_MASS
        ),
        ZERO,
    )
    return StageContext(quantity=kg_total)


def price_purchase_elements(
    lines: Sequence[PurchaseLineInput],
    elements: Sequence[CostElementInfo],
    overrides: Optional[Mapping[int, Override]] = None,
    enabled: Optional[Mapping[int, bool]] = None,
) -> StageCostResult:
    """
    Cost the purchase-stage elements of an invoice.

    Per-bag elements use ceil(kg / 50) bags, per-quantity elements the kg
    total. Optional elements count only when enabled.

    Args:
        lines: Invoice lines with unit set
        elements: Catalog snapshot (only elements tagged for purchase apply)
        overrides: Element id -> Override
        enabled: Element id -> toggle for optional elements

    Returns:
        StageCostResult; its total is the invoice's additional cost

    Example:
        >>> result = price_purchase_elements(lines_with_2040_kg, catalog.fetch(), enabled={7: True})
        >>> [(line.element_name, line.quantity) for line in result.applied_lines]
        [('Seed Unloading', Decimal('41'))]
    """
    return calculate_stage_costs(
        ProductionStage.PURCHASE, elements, purchase_context(lines), overrides, enabled
    )


def _resolve_line_defaults(lines: Sequence[PurchaseLineInput], session: Session) -> List[PurchaseLineInput]:
    resolved = []
    for line in lines:
        material = session.get(Material, line.material_id)
        if material is None:
            raise MaterialNotFound(line.material_id)
        resolved.append(
            replace(
                line,
                unit=line.unit or material.unit,
                gst_rate=line.gst_rate if line.gst_rate is not None else material.gst_rate,
            )
        )
    return resolved


def record_invoice(
    invoice_ref: str,
    purchase_date: date,
    lines: Sequence[PurchaseLineInput],
    transport_cost: Decimal = ZERO,
    handling_charges: Decimal = ZERO,
    supplier_name: Optional[str] = None,
    shares: Optional[Mapping[str, Decimal]] = None,
    notes: Optional[str] = None,
    catalog: Optional[RateCatalog] = None,
    overrides: Optional[Mapping[int, Override]] = None,
    enabled: Optional[Mapping[int, bool]] = None,
    apply_to_future: Optional[Mapping[int, bool]] = None,
    actor: Optional[str] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Record a supplier invoice and update the weighted-average ledger.

    When a catalog is given, its purchase-stage elements are costed on the
    invoice and added to the grand total. Rate overrides on applied elements
    go through the override auditor before anything is written.

    Args:
        invoice_ref: Supplier invoice number
        purchase_date: Invoice date
        lines: Line items
        transport_cost: Declared invoice transport total
        handling_charges: Declared invoice handling total
        supplier_name: Supplier display name
        shares: UOM group shares (default mass 60 / volume 20 / count 20)
        notes: Free-form notes
        catalog: Injected RateCatalog for purchase-stage elements
        overrides: Element id -> Override for purchase-stage elements
        enabled: Element id -> toggle for optional purchase-stage elements
        apply_to_future: Element id -> surface the override as a master rate update
        actor: User recording the invoice, recorded on audit records
        session: Optional database session (caller owns transaction if provided)

    Returns:
        Purchase as dictionary, with its items, cost_lines and audit_records

    Raises:
        ValidationError: Invalid lines or shares, or an override lacking a
            required reason; nothing is written
        MaterialNotFound: A line references an unknown material
        PersistenceError: Store write failed
    """
    if not invoice_ref or not invoice_ref.strip():
        raise ValidationError(["invoice reference is required"])

    elements = catalog.fetch() if catalog is not None else ()
    overrides = overrides or {}

    def _impl(sess: Session) -> Dict[str, Any]:
        resolved = _resolve_line_defaults(lines, sess)
        priced = price_invoice_lines(resolved, transport_cost, handling_charges, shares)
        context = purchase_context(resolved)
        audit_records: List[OverrideAuditRecord] = audit_stage_overrides(
            elements,
            [ProductionStage.PURCHASE.value],
            context,
            overrides,
            enabled,
            actor,
            apply_to_future,
        )
        element_costs = price_purchase_elements(resolved, elements, overrides, enabled)
        totals = calculate_invoice_totals(priced, element_costs.total)

        purchase = Purchase(
            invoice_ref=invoice_ref.strip(),
            supplier_name=supplier_name,
            purchase_date=purchase_date,
            transport_cost=to_decimal(transport_cost, default=ZERO),
            handling_charges=to_decimal(handling_charges, default=ZERO),
            subtotal=totals.subtotal,
            total_gst=totals.total_gst,
            additional_costs=round_internal(totals.additional_costs),
            grand_total=round_internal(totals.grand_total),
            notes=notes,
        )
        for line in priced:
            purchase.items.append(
                PurchaseLineItem(
                    material_id=line.material_id,
                    quantity=line.quantity,
                    unit_rate=line.unit_rate,
                    gst_rate=line.gst_rate,
                    transport_charge=line.transport_charge,
                    handling_charge=line.handling_charge,
                    gst_amount=line.gst_amount,
                    total_cost=line.total_cost,
                    landed_unit_cost=line.landed_unit_cost,
                )
            )
        for cost_line in element_costs.applied_lines:
            purchase.cost_lines.append(
                PurchaseCostLine(
                    cost_element_id=cost_line.element_id,
                    element_name=cost_line.element_name,
                    calculation_method=cost_line.calculation_method,
                    quantity=cost_line.quantity,
                    rate=cost_line.rate,
                    total_cost=round_internal(cost_line.total_cost),
                    is_overridden=cost_line.is_overridden,
                )
            )
        sess.add(purchase)
        sess.flush()

        for record in audit_records:
            save_audit_record(record, purchase_id=purchase.id, session=sess)

        for line in priced:
            record_purchase(
                line.material_id,
                line.quantity,
                line.landed_unit_cost,
                reference=purchase.invoice_ref,
                session=sess,
            )

        result = purchase.to_dict()
        result["items"] = [item.to_dict() for item in purchase.items]
        result["cost_lines"] = [cost_line.to_dict() for cost_line in purchase.cost_lines]
        result["audit_records"] = audit_records
        return result

    try:
        if session is not None:
            result = _impl(session)
        else:
            with session_scope() as sess:
                result = _impl(sess)
    except ValidationError as e:
        log_operation(
            logger,
            operation="record_invoice",
            outcome="validation_failed",
            level=logging.WARNING,
            invoice_ref=invoice_ref,
            errors=e.errors,
        )
        raise
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        log_operation(
            logger,
            operation="record_invoice",
            outcome="persistence_error",
            level=logging.ERROR,
            invoice_ref=invoice_ref,
            error=str(e),
        )
        raise PersistenceError("Failed to record purchase invoice", original_error=e)

    log_operation(
        logger,
        operation="record_invoice",
        outcome="success",
        purchase_id=result["id"],
        invoice_ref=invoice_ref,
        line_count=len(result["items"]),
        grand_total=result["grand_total"],
    )
    return result
