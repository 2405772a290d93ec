"""
Constants and enumerations for the production costing engine.

This module defines all system-wide constants including:
- Application metadata
- Monetary precision
- Cost capture thresholds (override deviation, bag size)
- Purchase charge allocation defaults (UOM groups)
- Batch warning thresholds
"""

from decimal import Decimal
from typing import Dict, List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Production Costing Engine"
APP_VERSION = "0.1.0"
DATABASE_VERSION = "1.0"
DATABASE_FILENAME = "production_costing.db"

# ============================================================================
# Monetary Precision
# ============================================================================

# Presentation boundary: rupees and paise
CURRENCY_PRECISION = Decimal("0.01")

# Internal precision retained through multi-step aggregation
INTERNAL_PRECISION = Decimal("0.0001")

CURRENCY_SYMBOL = "₹"

# ============================================================================
# Cost Capture
# ============================================================================

# Seed is bagged in 50 kg bags for per_bag elements
BAG_SIZE_KG = Decimal("50")

# Overrides deviating strictly more than this from the master rate need a reason
OVERRIDE_DEVIATION_THRESHOLD_PERCENT = Decimal("20")

# Catalog snapshot freshness window
DEFAULT_CATALOG_FRESHNESS_SECONDS = 300

# Legacy name patterns used to infer stage membership for untagged elements
LEGACY_STAGE_NAME_PATTERNS: Dict[str, List[str]] = {
    "drying": ["Drying", "Loading After Drying"],
    "crushing": ["Crushing"],
}

# ============================================================================
# Purchase Charge Allocation
# ============================================================================

UOM_GROUP_MASS = "mass"
UOM_GROUP_VOLUME = "volume"
UOM_GROUP_COUNT = "count"

# Default share of invoice transport/handling per UOM group (percent)
DEFAULT_UOM_GROUP_SHARES: Dict[str, Decimal] = {
    UOM_GROUP_MASS: Decimal("60"),
    UOM_GROUP_VOLUME: Decimal("20"),
    UOM_GROUP_COUNT: Decimal("20"),
}

MASS_UNITS: List[str] = ["kg"]
VOLUME_UNITS: List[str] = ["L", "Liters"]

# ============================================================================
# Batch Warnings and Reporting
# ============================================================================

# Combined yield above this percentage of input is flagged as an anomaly
YIELD_ANOMALY_THRESHOLD_PERCENT = Decimal("110")

# Variance within this band (percent) is reported as on-target
VARIANCE_ON_TARGET_PERCENT = Decimal("5")

# Material ledger movement reasons
LEDGER_REASON_PURCHASE = "purchase"
LEDGER_REASON_BATCH_INPUT = "batch_input"
LEDGER_REASON_WRITEOFF = "writeoff"

CONSUMPTION_REASONS: List[str] = [LEDGER_REASON_BATCH_INPUT, LEDGER_REASON_WRITEOFF]

# ============================================================================
# Validation Messages
# ============================================================================

ERROR_RATE_NOT_POSITIVE = "rate must be positive"
ERROR_REASON_REQUIRED = "reason required"
ERROR_SHARES_NOT_100 = "group share percentages must total 100"
ERROR_SHARES_OVER_100 = "group share percentages must not exceed 100"
