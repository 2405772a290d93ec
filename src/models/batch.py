"""
Batch and BatchStageCost models - finalized production batch costs.

A Batch row is the persisted BatchCostSummary. Its net cost and cost per
unit are NOT fixed at creation: every reconciling adjustment posted by a
byproduct sale is added to adjustments_total and the two figures are
recomputed.
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


class Batch(BaseModel):
    """
    Batch model representing a finalized production batch.

    Attributes:
        batch_code: Unique human-readable code
        product_type: Product produced (e.g., "Groundnut")
        production_date: Date of production
        input_quantity: Seed quantity fed into the batch
        output_quantity: Main product output (e.g., oil kg)
        crushing_hours: Billable crushing hours
        base_material_cost: Weighted-average cost of input materials
        stage_cost_total: Sum of applied stage cost lines
        byproduct_revenue: Estimated byproduct revenue at production time
        adjustments_total: Cumulative reconciliation adjustments
        net_cost: base + stage costs - byproduct revenue + adjustments
        cost_per_unit: net_cost / output_quantity (0 when no output)

    Relationships:
        stage_costs: One-to-Many with BatchStageCost
        lots: One-to-Many with ByproductLot
    """

    __tablename__ = "batches"

    batch_code = Column(String(50), nullable=False, unique=True)
    product_type = Column(String(100), nullable=True, index=True)
    production_date = Column(Date, nullable=False, index=True)
    input_quantity = Column(Numeric(14, 4), nullable=False, default=0)
    output_quantity = Column(Numeric(14, 4), nullable=False, default=0)
    crushing_hours = Column(Numeric(8, 2), nullable=False, default=0)
    base_material_cost = Column(Numeric(14, 4), nullable=False, default=0)
    stage_cost_total = Column(Numeric(14, 4), nullable=False, default=0)
    byproduct_revenue = Column(Numeric(14, 4), nullable=False, default=0)
    adjustments_total = Column(Numeric(14, 4), nullable=False, default=0)
    net_cost = Column(Numeric(14, 4), nullable=False, default=0)
    cost_per_unit = Column(Numeric(12, 4), nullable=False, default=0)
    notes = Column(Text, nullable=True)

    stage_costs = relationship(
        "BatchStageCost",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchStageCost.id",
    )
    lots = relationship(
        "ByproductLot",
        back_populates="batch",
        order_by="ByproductLot.id",
    )

    __table_args__ = (
        CheckConstraint("input_quantity >= 0", name="ck_batch_input_non_negative"),
        CheckConstraint("output_quantity >= 0", name="ck_batch_output_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"Batch(id={self.id}, code='{self.batch_code}', "
            f"net_cost={self.net_cost}, cost_per_unit={self.cost_per_unit})"
        )


class BatchStageCost(BaseModel):
    """
    A finalized StageCostLine.

    This model is IMMUTABLE after creation - no updated_at field.

    Attributes:
        batch_id: Foreign key to Batch
        cost_element_id: Foreign key to CostElement (nullable for removed elements)
        element_name: Element name snapshot
        category: Category snapshot
        stage: Stage the line was computed for
        calculation_method: Method snapshot
        quantity: Derived quantity basis
        rate: Effective rate
        total_cost: Line total
        is_applied: Whether the line counts toward totals
        is_overridden: Rate (or amount) was overridden
        override_reason: Reason captured for the override
    """

    __tablename__ = "batch_stage_costs"

    updated_at = None

    batch_id = Column(
        Integer,
        ForeignKey("batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    cost_element_id = Column(
        Integer,
        ForeignKey("cost_elements.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    element_name = Column(String(200), nullable=False)
    category = Column(String(50), nullable=False)
    stage = Column(String(30), nullable=False)
    calculation_method = Column(String(30), nullable=False)
    quantity = Column(Numeric(14, 4), nullable=False, default=0)
    rate = Column(Numeric(12, 4), nullable=False, default=0)
    total_cost = Column(Numeric(14, 4), nullable=False, default=0)
    is_applied = Column(Boolean, nullable=False, default=True)
    is_overridden = Column(Boolean, nullable=False, default=False)
    override_reason = Column(Text, nullable=True)

    batch = relationship("Batch", back_populates="stage_costs")

    __table_args__ = (Index("idx_batch_stage_cost_stage", "batch_id", "stage"),)

    @property
    def applied_total(self) -> Decimal:
        return Decimal(self.total_cost) if self.is_applied else Decimal("0")
