"""
Material model - raw material with its running weighted-average cost.

Parallels the ledger head: available_quantity only moves through
MaterialLedgerEntry events (purchase up, batch input / write-off down).
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
    Text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class Material(BaseModel):
    """
    Material model representing a purchasable raw material.

    Attributes:
        name: Material name (unique)
        unit: Unit of measure as entered on invoices ("kg", "L", "Nos")
        gst_rate: Default GST percentage for purchases (0-100)
        available_quantity: Running available quantity (MUTABLE via ledger only)
        weighted_avg_cost: Running weighted-average landed unit cost

    Relationships:
        ledger_entries: One-to-Many with MaterialLedgerEntry
    """

    __tablename__ = "materials"

    name = Column(String(200), nullable=False, unique=True)
    unit = Column(String(20), nullable=False, default="kg")
    gst_rate = Column(Numeric(5, 2), nullable=False, default=0)
    available_quantity = Column(Numeric(14, 4), nullable=False, default=0)
    weighted_avg_cost = Column(Numeric(12, 4), nullable=False, default=0)

    ledger_entries = relationship(
        "MaterialLedgerEntry",
        back_populates="material",
        order_by="MaterialLedgerEntry.id",
    )

    __table_args__ = (
        CheckConstraint("available_quantity >= 0", name="ck_material_qty_non_negative"),
        CheckConstraint("weighted_avg_cost >= 0", name="ck_material_avg_non_negative"),
        CheckConstraint("gst_rate >= 0 AND gst_rate <= 100", name="ck_material_gst_range"),
    )

    @property
    def stock_value(self) -> Decimal:
        """available_quantity * weighted_avg_cost"""
        return Decimal(self.available_quantity or 0) * Decimal(self.weighted_avg_cost or 0)


class MaterialLedgerEntry(BaseModel):
    """
    Append-only record of a material quantity movement.

    This model is IMMUTABLE after creation - no updated_at field.

    Attributes:
        material_id: Foreign key to Material
        reason: "purchase", "batch_input" or "writeoff"
        quantity_change: Signed quantity (+ purchase, - consumption)
        unit_cost: Landed unit cost (purchase) or average at consumption time
        resulting_quantity: available_quantity after the movement
        resulting_avg_cost: weighted_avg_cost after the movement
        reference: Free-form reference (invoice, batch code, write-off note)
        scrap_value: Amount recovered from written-off stock (write-offs only)
    """

    __tablename__ = "material_ledger_entries"

    updated_at = None

    material_id = Column(
        Integer,
        ForeignKey("materials.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    reason = Column(String(20), nullable=False)
    quantity_change = Column(Numeric(14, 4), nullable=False)
    unit_cost = Column(Numeric(12, 4), nullable=False)
    resulting_quantity = Column(Numeric(14, 4), nullable=False)
    resulting_avg_cost = Column(Numeric(12, 4), nullable=False)
    reference = Column(Text, nullable=True)
    scrap_value = Column(Numeric(12, 4), nullable=False, default=0)

    material = relationship("Material", back_populates="ledger_entries")

    __table_args__ = (
        Index("idx_material_ledger_material", "material_id"),
        CheckConstraint("quantity_change != 0", name="ck_material_ledger_nonzero"),
        CheckConstraint("scrap_value >= 0", name="ck_material_ledger_scrap_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"MaterialLedgerEntry(id={self.id}, material_id={self.material_id}, "
            f"reason='{self.reason}', change={self.quantity_change})"
        )
