"""
Database models package.

This package contains all SQLAlchemy ORM models for the costing engine.
"""

from .base import Base, BaseModel
from .enums import ByproductType, CalculationMethod, CostCategory, ProductionStage
from .cost_element import CostElement, CostElementStage
from .material import Material, MaterialLedgerEntry
from .purchase import Purchase, PurchaseCostLine, PurchaseLineItem
from .batch import Batch, BatchStageCost
from .byproduct_lot import ByproductLot
from .byproduct_sale import ByproductSale, SaleAllocation
from .rate_override_audit import RateOverrideAudit

__all__ = [
    "Base",
    "BaseModel",
    # Enums
    "ByproductType",
    "CalculationMethod",
    "CostCategory",
    "ProductionStage",
    # Master data
    "CostElement",
    "CostElementStage",
    "Material",
    "MaterialLedgerEntry",
    # Purchasing
    "Purchase",
    "PurchaseLineItem",
    "PurchaseCostLine",
    # Production
    "Batch",
    "BatchStageCost",
    "ByproductLot",
    # Sales
    "ByproductSale",
    "SaleAllocation",
    # Audit
    "RateOverrideAudit",
]
