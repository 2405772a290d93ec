"""
ByproductLot model for FIFO byproduct inventory tracking.

Each lot is created when a batch is finalized (quantity = byproduct yield)
and decremented by sale allocations. Lots are never resurrected.
"""

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class ByproductLot(BaseModel):
    """
    ByproductLot model for FIFO byproduct inventory tracking.

    Age is derived from created_at; lots are consumed oldest first, ties
    broken by id.

    Attributes:
        batch_id: Foreign key to the originating Batch
        byproduct_type: ByproductType value (e.g., "oil_cake")
        quantity_produced: Yield at batch finalization (IMMUTABLE)
        quantity_remaining: Current remaining quantity (MUTABLE, non-increasing)
        estimated_rate: Estimated unit rate set at production time (IMMUTABLE)

    Relationships:
        batch: Many-to-One with Batch
        allocations: One-to-Many with SaleAllocation
    """

    __tablename__ = "byproduct_lots"

    batch_id = Column(
        Integer,
        ForeignKey("batches.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    byproduct_type = Column(String(30), nullable=False)
    quantity_produced = Column(Numeric(14, 4), nullable=False)
    quantity_remaining = Column(Numeric(14, 4), nullable=False)
    estimated_rate = Column(Numeric(12, 4), nullable=False)

    batch = relationship("Batch", back_populates="lots")
    allocations = relationship("SaleAllocation", back_populates="lot")

    __table_args__ = (
        CheckConstraint("quantity_produced > 0", name="ck_lot_qty_produced_positive"),
        CheckConstraint("quantity_remaining >= 0", name="ck_lot_qty_remaining_non_negative"),
        CheckConstraint("estimated_rate >= 0", name="ck_lot_rate_non_negative"),
        Index("idx_byproduct_lot_type_created", "byproduct_type", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"ByproductLot(id={self.id}, batch_id={self.batch_id}, "
            f"type='{self.byproduct_type}', remaining={self.quantity_remaining})"
        )

    @property
    def remaining_value(self) -> Decimal:
        """quantity_remaining * estimated_rate"""
        return Decimal(self.quantity_remaining) * Decimal(self.estimated_rate)
