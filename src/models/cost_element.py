"""
CostElement model - master data for the rate catalog.

Each element describes one cost that can be captured during production:
its category, calculation method, default rate and the explicit set of
stages it applies to (CostElementStage rows).
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class CostElement(BaseModel):
    """
    CostElement model representing a cost element definition.

    Attributes:
        name: Display name, unique (e.g., "Drying Labour")
        category: CostCategory value
        unit_type: Descriptive unit (e.g., "Per Kg", "Per Hour")
        calculation_method: CalculationMethod value
        default_rate: Master rate (non-negative)
        is_optional: Optional elements can be toggled off during capture
        computed_from_output: per_quantity elements priced on output quantity
        is_active: Inactive elements are excluded from the catalog

    Relationships:
        stages: One-to-Many with CostElementStage
    """

    __tablename__ = "cost_elements"

    name = Column(String(200), nullable=False, unique=True)
    category = Column(String(50), nullable=False, default="Other")
    unit_type = Column(String(50), nullable=True)
    calculation_method = Column(String(30), nullable=False)
    default_rate = Column(Numeric(12, 4), nullable=False, default=0)
    is_optional = Column(Boolean, nullable=False, default=False)
    computed_from_output = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    stages = relationship(
        "CostElementStage",
        back_populates="element",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("default_rate >= 0", name="ck_cost_element_rate_non_negative"),
        Index("idx_cost_element_active", "is_active"),
    )

    @property
    def stage_names(self) -> list:
        """Sorted stage identifiers this element is tagged with."""
        return sorted(stage.stage for stage in self.stages)

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(include_relationships)
        result["stages"] = self.stage_names
        return result


class CostElementStage(BaseModel):
    """
    Explicit stage membership of a cost element.

    Attributes:
        cost_element_id: Foreign key to CostElement
        stage: ProductionStage value
    """

    __tablename__ = "cost_element_stages"

    cost_element_id = Column(
        Integer,
        ForeignKey("cost_elements.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage = Column(String(30), nullable=False)

    element = relationship("CostElement", back_populates="stages")

    __table_args__ = (
        UniqueConstraint("cost_element_id", "stage", name="uq_cost_element_stage"),
    )

    def __repr__(self) -> str:
        return f"CostElementStage(element_id={self.cost_element_id}, stage='{self.stage}')"
