"""Services package - Business logic layer for the production costing engine.

This package contains the service modules that price production, purchases
and byproduct sales, and persist the results.

Architecture:
- Calculators: Pure functions over immutable inputs (charge_allocation,
  stage_costing, override_audit, fifo_allocation, cost_reconciliation,
  net_cost, blend_costing)
- Services: Stateless functions that read and write the store
- Transactions: Managed via session_scope() context manager
- Exceptions: Consistent error handling via ServiceError hierarchy
- Validation: Input validation before database operations

Service Modules:
- rate_catalog: Time-bounded cost element cache (RateCatalog)
- cost_element_service: Cost element master data and legacy stage migration
- cost_ledger_service: Weighted-average material cost ledger
- purchase_service: Invoices with allocated transport/handling, GST and
  purchase-stage elements
- blend_costing: Weighted cost of oil blended from several batches
- batch_costing_service: Batch finalization, adjustments, reporting
- byproduct_sales_service: Two-phase FIFO byproduct sales

Infrastructure:
- exceptions: Custom exception classes for service layer errors
- database: Session management and database utilities
- logging_utils: Structured operation logging
"""

from . import (
    database,
    rate_catalog,
    charge_allocation,
    stage_costing,
    override_audit,
    fifo_allocation,
    cost_reconciliation,
    net_cost,
    blend_costing,
    cost_element_service,
    cost_ledger_service,
    purchase_service,
    batch_costing_service,
    byproduct_sales_service,
)

from .exceptions import (
    ServiceError,
    ValidationError,
    InsufficientInventoryError,
    PersistenceError,
    CostElementNotFound,
    MaterialNotFound,
    BatchNotFound,
    LotNotFound,
    StaleCacheWarning,
)

from .rate_catalog import RateCatalog, CostElementInfo
from .charge_allocation import ChargeLine, allocate_charge, classify_unit, validate_group_shares
from .stage_costing import (
    StageContext,
    Override,
    StageCostLine,
    StageCostResult,
    billable_hours,
    calculate_stage_costs,
    validate_stage_costs,
    group_costs_by_category,
)
from .override_audit import (
    OverrideEvaluation,
    OverrideAuditRecord,
    evaluate_override,
    validate_override_submission,
)
from .fifo_allocation import LotSnapshot, PlannedAllocation, AllocationPlan, allocate
from .cost_reconciliation import (
    ReconciledAllocation,
    SaleImpact,
    reconcile,
    apply_adjustment,
    calculate_sale_impact,
)
from .net_cost import BatchCostSummary, ByproductYield, aggregate
from .batch_costing_service import (
    MaterialInput,
    FinalizedBatch,
    finalize_batch,
    get_batch_cost_summary,
    post_adjustment,
)
from .byproduct_sales_service import preview_sale, commit_sale

__all__ = [
    # Modules
    "database",
    "rate_catalog",
    "charge_allocation",
    "stage_costing",
    "override_audit",
    "fifo_allocation",
    "cost_reconciliation",
    "net_cost",
    "cost_element_service",
    "cost_ledger_service",
    "purchase_service",
    "batch_costing_service",
    "byproduct_sales_service",
    # Exceptions
    "ServiceError",
    "ValidationError",
    "InsufficientInventoryError",
    "PersistenceError",
    "CostElementNotFound",
    "MaterialNotFound",
    "BatchNotFound",
    "LotNotFound",
    "StaleCacheWarning",
    # Rate catalog
    "RateCatalog",
    "CostElementInfo",
    # Charge allocation
    "ChargeLine",
    "allocate_charge",
    "classify_unit",
    "validate_group_shares",
    # Stage costing
    "StageContext",
    "Override",
    "StageCostLine",
    "StageCostResult",
    "billable_hours",
    "calculate_stage_costs",
    "validate_stage_costs",
    "group_costs_by_category",
    # Override audit
    "OverrideEvaluation",
    "OverrideAuditRecord",
    "evaluate_override",
    "validate_override_submission",
    # FIFO and reconciliation
    "LotSnapshot",
    "PlannedAllocation",
    "AllocationPlan",
    "allocate",
    "ReconciledAllocation",
    "SaleImpact",
    "reconcile",
    "apply_adjustment",
    "calculate_sale_impact",
    # Net cost
    "BatchCostSummary",
    "ByproductYield",
    "aggregate",
    # Orchestration
    "MaterialInput",
    "FinalizedBatch",
    "finalize_batch",
    "get_batch_cost_summary",
    "post_adjustment",
    "preview_sale",
    "commit_sale",
]
