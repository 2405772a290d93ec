"""
Purchase, PurchaseLineItem and PurchaseCostLine models - supplier invoices with landed cost.

An invoice declares a total transport cost and handling charge; both are
allocated across the line items by UOM group (see charge_allocation).
"""

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class Purchase(BaseModel):
    """
    Purchase model representing a supplier invoice.

    This model is IMMUTABLE after creation - no updated_at field.

    Attributes:
        invoice_ref: Supplier invoice number
        supplier_name: Supplier display name
        purchase_date: Invoice date
        transport_cost: Declared invoice transport total
        handling_charges: Declared invoice handling total
        subtotal: Sum of quantity x rate
        total_gst: Sum of line GST
        additional_costs: Applied purchase-stage cost elements (unloading, inward transport)
        grand_total: Sum of line totals plus additional_costs
        notes: Free-form notes

    Relationships:
        items: One-to-Many with PurchaseLineItem
        cost_lines: One-to-Many with PurchaseCostLine
    """

    __tablename__ = "purchases"

    updated_at = None

    invoice_ref = Column(String(100), nullable=False, index=True)
    supplier_name = Column(String(200), nullable=True)
    purchase_date = Column(Date, nullable=False, index=True)
    transport_cost = Column(Numeric(12, 4), nullable=False, default=0)
    handling_charges = Column(Numeric(12, 4), nullable=False, default=0)
    subtotal = Column(Numeric(14, 4), nullable=False, default=0)
    total_gst = Column(Numeric(14, 4), nullable=False, default=0)
    additional_costs = Column(Numeric(14, 4), nullable=False, default=0)
    grand_total = Column(Numeric(14, 4), nullable=False, default=0)
    notes = Column(Text, nullable=True)

    items = relationship(
        "PurchaseLineItem",
        back_populates="purchase",
        cascade="all, delete-orphan",
        order_by="PurchaseLineItem.id",
    )
    cost_lines = relationship(
        "PurchaseCostLine",
        back_populates="purchase",
        cascade="all, delete-orphan",
        order_by="PurchaseCostLine.id",
    )

    __table_args__ = (
        CheckConstraint("transport_cost >= 0", name="ck_purchase_transport_non_negative"),
        CheckConstraint("handling_charges >= 0", name="ck_purchase_handling_non_negative"),
        CheckConstraint("additional_costs >= 0", name="ck_purchase_additional_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"Purchase(id={self.id}, invoice='{self.invoice_ref}', "
            f"date={self.purchase_date}, items={len(self.items)})"
        )


class PurchaseLineItem(BaseModel):
    """
    One material line on an invoice.

    Attributes:
        purchase_id: Foreign key to Purchase
        material_id: Foreign key to Material
        quantity: Quantity purchased (> 0)
        unit_rate: Price per unit before charges and tax (> 0)
        gst_rate: GST percentage (0-100)
        transport_charge: Allocated share of invoice transport
        handling_charge: Allocated share of invoice handling
        gst_amount: GST on (amount + transport + handling)
        total_cost: amount + transport + handling + GST
        landed_unit_cost: total_cost / quantity
    """

    __tablename__ = "purchase_line_items"

    updated_at = None

    purchase_id = Column(
        Integer,
        ForeignKey("purchases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    material_id = Column(
        Integer,
        ForeignKey("materials.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    quantity = Column(Numeric(14, 4), nullable=False)
    unit_rate = Column(Numeric(12, 4), nullable=False)
    gst_rate = Column(Numeric(5, 2), nullable=False, default=0)
    transport_charge = Column(Numeric(12, 4), nullable=False, default=0)
    handling_charge = Column(Numeric(12, 4), nullable=False, default=0)
    gst_amount = Column(Numeric(12, 4), nullable=False, default=0)
    total_cost = Column(Numeric(14, 4), nullable=False)
    landed_unit_cost = Column(Numeric(12, 4), nullable=False)

    purchase = relationship("Purchase", back_populates="items")
    material = relationship("Material")

    __table_args__ = (
        Index("idx_purchase_line_material", "material_id"),
        CheckConstraint("quantity > 0", name="ck_purchase_line_qty_positive"),
        CheckConstraint("unit_rate > 0", name="ck_purchase_line_rate_positive"),
        CheckConstraint("gst_rate >= 0 AND gst_rate <= 100", name="ck_purchase_line_gst_range"),
    )

    @property
    def amount(self) -> Decimal:
        """quantity * unit_rate"""
        return Decimal(self.quantity) * Decimal(self.unit_rate)


class PurchaseCostLine(BaseModel):
    """
    A purchase-stage cost element captured on an invoice.

    Seed unloading (per bag) and inward transport (per kg) are costed on the
    invoice's kg quantity and added to its grand total.

    This model is IMMUTABLE after creation - no updated_at field.
    """

    __tablename__ = "purchase_cost_lines"

    updated_at = None

    purchase_id = Column(
        Integer,
        ForeignKey("purchases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    cost_element_id = Column(
        Integer,
        ForeignKey("cost_elements.id", ondelete="SET NULL"),
        nullable=True,
    )
    element_name = Column(String(200), nullable=False)
    calculation_method = Column(String(20), nullable=False)
    quantity = Column(Numeric(14, 4), nullable=False)
    rate = Column(Numeric(12, 4), nullable=False)
    total_cost = Column(Numeric(14, 4), nullable=False)
    is_overridden = Column(Boolean, nullable=False, default=False)

    purchase = relationship("Purchase", back_populates="cost_lines")

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_purchase_cost_line_qty_non_negative"),
        CheckConstraint("total_cost >= 0", name="ck_purchase_cost_line_total_non_negative"),
    )
