"""
ByproductSale and SaleAllocation models.

A committed sale owns one SaleAllocation per lot it drew from. Allocations
are immutable and record the estimated rate copied from the lot together
with the realized sale rate and the signed adjustment posted to the batch.
"""

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


class ByproductSale(BaseModel):
    """
    ByproductSale model representing a committed byproduct sale.

    This model is IMMUTABLE after creation - no updated_at field.

    Attributes:
        byproduct_type: ByproductType value
        sale_date: Date of sale
        buyer_name: Buyer
        invoice_ref: Optional sale invoice number
        quantity_requested: Quantity the buyer asked for
        quantity_sold: Quantity actually allocated (equals requested unless a
            shortfall was acknowledged)
        sale_rate: Realized sale rate per unit
        packing_cost: Packing cost charged back to the source batches
        transport_cost: Outward transport (affects net revenue only)
        total_adjustment: Sum of allocation adjustments plus packing cost
        shortfall_acknowledged: Sale accepted with a partial allocation
    """

    __tablename__ = "byproduct_sales"

    updated_at = None

    byproduct_type = Column(String(30), nullable=False, index=True)
    sale_date = Column(Date, nullable=False, index=True)
    buyer_name = Column(String(200), nullable=False)
    invoice_ref = Column(String(100), nullable=True)
    quantity_requested = Column(Numeric(14, 4), nullable=False)
    quantity_sold = Column(Numeric(14, 4), nullable=False)
    sale_rate = Column(Numeric(12, 4), nullable=False)
    packing_cost = Column(Numeric(12, 4), nullable=False, default=0)
    transport_cost = Column(Numeric(12, 4), nullable=False, default=0)
    total_adjustment = Column(Numeric(14, 4), nullable=False, default=0)
    shortfall_acknowledged = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    allocations = relationship(
        "SaleAllocation",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleAllocation.id",
    )

    __table_args__ = (
        CheckConstraint("quantity_sold > 0", name="ck_sale_qty_positive"),
        CheckConstraint("sale_rate > 0", name="ck_sale_rate_positive"),
        CheckConstraint("packing_cost >= 0", name="ck_sale_packing_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"ByproductSale(id={self.id}, type='{self.byproduct_type}', "
            f"qty={self.quantity_sold}, rate={self.sale_rate})"
        )


class SaleAllocation(BaseModel):
    """
    One lot's share of a sale.

    This model is IMMUTABLE after creation - no updated_at field.

    Attributes:
        sale_id: Foreign key to ByproductSale
        lot_id: Foreign key to ByproductLot
        batch_id: Originating batch (denormalized from the lot)
        quantity_allocated: Quantity taken from the lot (> 0)
        estimated_rate: Copied from the lot
        realized_rate: Sale rate
        adjustment: (estimated - realized) x quantity
        packing_cost_share: Share of the sale packing cost
    """

    __tablename__ = "sale_allocations"

    updated_at = None

    sale_id = Column(
        Integer,
        ForeignKey("byproduct_sales.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    lot_id = Column(
        Integer,
        ForeignKey("byproduct_lots.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    batch_id = Column(
        Integer,
        ForeignKey("batches.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    quantity_allocated = Column(Numeric(14, 4), nullable=False)
    estimated_rate = Column(Numeric(12, 4), nullable=False)
    realized_rate = Column(Numeric(12, 4), nullable=False)
    adjustment = Column(Numeric(14, 4), nullable=False)
    packing_cost_share = Column(Numeric(12, 4), nullable=False, default=0)

    sale = relationship("ByproductSale", back_populates="allocations")
    lot = relationship("ByproductLot", back_populates="allocations")

    __table_args__ = (
        CheckConstraint("quantity_allocated > 0", name="ck_allocation_qty_positive"),
        Index("idx_sale_allocation_batch", "batch_id"),
    )
