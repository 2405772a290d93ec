"""
Enumerations for production costing.

This module contains enums used across costing models and services:
- CostCategory: Reporting category of a cost element
- CalculationMethod: How an element's quantity and cost are derived
- ProductionStage: Stages a cost element can apply to
- ByproductType: Saleable byproducts produced by a batch
"""

from enum import Enum


class CostCategory(str, Enum):
    """
    Reporting category of a cost element.

    Values:
        LABOR: Drying, crushing, filtering labour
        UTILITIES: Electricity and similar
        CONSUMABLES: Filter cloth, cleaning materials
        TRANSPORT: Inward/outsourced transport
        QUALITY: Quality testing
        MAINTENANCE: Machine maintenance
        OTHER: Catch-all
    """

    LABOR = "Labor"
    UTILITIES = "Utilities"
    CONSUMABLES = "Consumables"
    TRANSPORT = "Transport"
    QUALITY = "Quality"
    MAINTENANCE = "Maintenance"
    OTHER = "Other"


class CalculationMethod(str, Enum):
    """
    Cost calculation method of an element.

    Values:
        PER_QUANTITY: quantity x rate (input quantity, or output when flagged)
        PER_HOUR: billable hours x rate
        FIXED: flat rate once per batch
        ACTUAL_ENTRY: user-entered monetary amount
        PER_BAG: ceil(quantity / 50) x rate
    """

    PER_QUANTITY = "per_quantity"
    PER_HOUR = "per_hour"
    FIXED = "fixed"
    ACTUAL_ENTRY = "actual_entry"
    PER_BAG = "per_bag"


class ProductionStage(str, Enum):
    """
    Production stages cost elements attach to.

    Values:
        PURCHASE: Inward costs at purchase entry
        DRYING: Seed drying before crushing
        CRUSHING: Time-based crushing costs
        BATCH: Complete-batch costs (filtering, testing, common costs)
        SALES: Byproduct sale costs (packing)
    """

    PURCHASE = "purchase"
    DRYING = "drying"
    CRUSHING = "crushing"
    BATCH = "batch"
    SALES = "sales"


class ByproductType(str, Enum):
    """Saleable byproducts of a production batch."""

    OIL_CAKE = "oil_cake"
    SLUDGE = "sludge"
