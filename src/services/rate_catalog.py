"""Rate Catalog - time-bounded cache of cost element master data.

The catalog is an explicit object injected into the components that need
rates (stage costing, override auditing, batch finalization). There is no
process-wide cache: each RateCatalog owns one immutable snapshot, replaced
wholesale on refresh and dropped by invalidate().

Refresh failures never reach the caller of fetch(): the stale snapshot is
served (or an empty one if nothing was ever loaded), a StaleCacheWarning is
issued and the event is logged.

Concurrent fetch(force_refresh=True) calls may race; the last completed
refresh wins. The store stays the source of truth.

Example Usage:
    >>> catalog = RateCatalog()
    >>> catalog.rate_of("Drying Labour")
    Decimal('0.9000')
    >>> [e.name for e in catalog.for_stage("crushing")]
    ['Crushing Labour', 'Electricity - Crushing']
"""

import logging
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, FrozenSet, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..models import CostElement
from ..models.enums import ProductionStage
from ..utils.config import get_config
from ..utils.constants import LEGACY_STAGE_NAME_PATTERNS
from ..utils.datetime_utils import utc_now
from .database import session_scope
from .exceptions import StaleCacheWarning
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class CostElementInfo:
    """Immutable catalog entry.

    Attributes:
        element_id: CostElement id
        name: Display name
        category: CostCategory value
        calculation_method: CalculationMethod value
        default_rate: Master rate
        is_optional: Can be toggled off during capture
        stages: Explicit stage tags (empty for legacy untagged elements)
        unit_type: Descriptive unit
        computed_from_output: per_quantity priced on output quantity
    """

    element_id: int
    name: str
    category: str
    calculation_method: str
    default_rate: Decimal
    is_optional: bool = False
    stages: FrozenSet[str] = field(default_factory=frozenset)
    unit_type: Optional[str] = None
    computed_from_output: bool = False

    def applies_to(self, stage: str) -> bool:
        """Check stage membership.

        Explicit tags win. Elements that were never tagged fall back to the
        legacy name-pattern rule.
        """
        stage = _stage_value(stage)
        if self.stages:
            return stage in self.stages
        return stage in infer_stages_from_name(self.name)


def _stage_value(stage) -> str:
    return stage.value if isinstance(stage, ProductionStage) else str(stage)


def infer_stages_from_name(name: str) -> FrozenSet[str]:
    """
    Legacy rule: infer stage membership from an element's display name.

    Args:
        name: Cost element display name

    Returns:
        Set of stage identifiers whose patterns occur in the name

    Example:
        >>> infer_stages_from_name("Loading After Drying")
        frozenset({'drying'})
    """
    return frozenset(
        stage
        for stage, patterns in LEGACY_STAGE_NAME_PATTERNS.items()
        if any(pattern in name for pattern in patterns)
    )


def element_to_info(element: CostElement) -> CostElementInfo:
    """Snapshot a CostElement row into an immutable CostElementInfo."""
    return CostElementInfo(
        element_id=element.id,
        name=element.name,
        category=element.category,
        calculation_method=element.calculation_method,
        default_rate=Decimal(element.default_rate or 0),
        is_optional=bool(element.is_optional),
        stages=frozenset(element.stage_names),
        unit_type=element.unit_type,
        computed_from_output=bool(element.computed_from_output),
    )


def load_catalog_snapshot(
    stage: Optional[str] = None,
    session: Optional[Session] = None,
) -> List[CostElementInfo]:
    """
    Read the active cost element catalog from the store.

    Args:
        stage: Optional stage filter (explicit tags or legacy name rule)
        session: Optional database session

    Returns:
        List of CostElementInfo ordered by name
    """

    def _impl(sess: Session) -> List[CostElementInfo]:
        rows = (
            sess.query(CostElement)
            .filter(CostElement.is_active.is_(True))
            .order_by(CostElement.name.asc())
            .all()
        )
        infos = [element_to_info(row) for row in rows]
        if stage is not None:
            infos = [info for info in infos if info.applies_to(stage)]
        return infos

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


class RateCatalog:
    """
    Time-bounded cache of the cost element catalog.

    Attributes:
        _loader: Callable returning the current catalog from the store
        _freshness: How long a snapshot is served before refreshing
        _clock: Time source (injectable for tests)
        _state: (snapshot, fetched_at) replaced as one object on refresh
    """

    def __init__(
        self,
        loader: Optional[Callable[[], Iterable[CostElementInfo]]] = None,
        freshness_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the catalog.

        Args:
            loader: Store reader (default: load_catalog_snapshot)
            freshness_seconds: Snapshot lifetime (default: config value, 300s)
            clock: Returns the current time
        """
        if freshness_seconds is None:
            freshness_seconds = get_config().catalog_freshness_seconds
        self._loader = loader or load_catalog_snapshot
        self._freshness = timedelta(seconds=freshness_seconds)
        self._clock = clock
        self._state: Optional[Tuple[Tuple[CostElementInfo, ...], datetime]] = None

    def is_fresh(self) -> bool:
        """True when a snapshot exists and is within the freshness window."""
        state = self._state
        if state is None:
            return False
        return self._clock() - state[1] < self._freshness

    def fetch(self, force_refresh: bool = False) -> Tuple[CostElementInfo, ...]:
        """
        Return the catalog snapshot, refreshing it when stale or forced.

        Never raises: on loader failure the stale snapshot (or an empty
        tuple) is returned and a StaleCacheWarning is issued.

        Args:
            force_refresh: Bypass the freshness window

        Returns:
            Tuple of CostElementInfo
        """
        state = self._state
        if not force_refresh and state is not None:
            if self._clock() - state[1] < self._freshness:
                return state[0]

        try:
            snapshot = tuple(self._loader())
        except Exception as e:
            stale = state[0] if state is not None else ()
            log_operation(
                logger,
                operation="fetch_catalog",
                outcome="stale_cache" if state is not None else "unavailable",
                level=logging.WARNING,
                error=str(e),
                served_elements=len(stale),
            )
            warnings.warn(
                StaleCacheWarning(
                    f"Rate catalog refresh failed ({e}); serving {len(stale)} cached elements"
                ),
                stacklevel=2,
            )
            return stale

        self._state = (snapshot, self._clock())
        log_operation(
            logger,
            operation="fetch_catalog",
            outcome="refreshed",
            level=logging.DEBUG,
            element_count=len(snapshot),
        )
        return snapshot

    def invalidate(self) -> None:
        """Drop the snapshot; the next fetch() reloads from the store."""
        self._state = None

    def get(self, element_name: str) -> Optional[CostElementInfo]:
        """Look up an element by display name."""
        for info in self.fetch():
            if info.name == element_name:
                return info
        return None

    def get_by_id(self, element_id: int) -> Optional[CostElementInfo]:
        """Look up an element by id."""
        for info in self.fetch():
            if info.element_id == element_id:
                return info
        return None

    def rate_of(self, element_name: str) -> Decimal:
        """
        Default rate of an element, or 0 when the element does not exist.

        Absence means "no such cost applies", not an error.
        """
        info = self.get(element_name)
        return info.default_rate if info is not None else Decimal("0")

    def for_stage(self, stage) -> List[CostElementInfo]:
        """Elements applicable to a production stage."""
        return [info for info in self.fetch() if info.applies_to(stage)]
