"""
RateOverrideAudit model - audit trail of cost element rate overrides.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)

from .base import BaseModel


class RateOverrideAudit(BaseModel):
    """
    One accepted rate override.

    This model is IMMUTABLE after creation - no updated_at field.

    Attributes:
        cost_element_id: Element whose rate was overridden
        batch_id: Batch the override was captured for (optional)
        purchase_id: Purchase invoice the override was captured for (optional)
        original_rate: Catalog rate at the time
        new_rate: Override rate
        deviation_percent: (new - original) / original x 100
        reason: Justification (required above the deviation threshold)
        actor: Who made the change
        apply_to_future: Caller asked for the master rate to change too
        overridden_at: When the override was made
    """

    __tablename__ = "rate_override_audits"

    updated_at = None

    cost_element_id = Column(
        Integer,
        ForeignKey("cost_elements.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    batch_id = Column(
        Integer,
        ForeignKey("batches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    purchase_id = Column(
        Integer,
        ForeignKey("purchases.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    element_name = Column(String(200), nullable=False)
    original_rate = Column(Numeric(12, 4), nullable=False)
    new_rate = Column(Numeric(12, 4), nullable=False)
    deviation_percent = Column(Numeric(10, 2), nullable=False)
    reason = Column(Text, nullable=True)
    actor = Column(String(100), nullable=True)
    apply_to_future = Column(Boolean, nullable=False, default=False)
    overridden_at = Column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return (
            f"RateOverrideAudit(id={self.id}, element='{self.element_name}', "
            f"{self.original_rate} -> {self.new_rate})"
        )
