"""Bounded recency cache for inbound observation references.

Prevents the same trade from being counted twice before it ever reaches
storage. The unique constraint on ``observations.external_ref`` remains the
source of truth; this cache only short-circuits the common case cheaply.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from decimal import Decimal
from enum import Enum

from memecoin_lifecycle_tracker.ingestor.models import ObservationEvent

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 10_000
DEFAULT_MIN_TRADE_NOTIONAL = Decimal("0.5")


class AdmitResult(str, Enum):
    """Outcome of offering an event to the dedup cache."""

    ADMITTED = "admitted"
    DUPLICATE = "duplicate"
    BELOW_THRESHOLD = "below_threshold"


class DedupCache:
    """Bounded, insertion-ordered set of seen external references.

    When the cache grows past ``capacity`` the oldest entries are evicted in a
    single batch, keeping the newest ``capacity // 2``. Access is guarded by a
    lock so concurrent ``observe`` calls from worker threads are safe.

    Example:
        ```python
        cache = DedupCache(capacity=10_000, min_trade_notional=Decimal("0.5"))
        if cache.admit(event) is AdmitResult.ADMITTED:
            ...
        ```
    """

    def __init__(
        self,
        *,
        capacity: int = DEFAULT_CAPACITY,
        min_trade_notional: Decimal = DEFAULT_MIN_TRADE_NOTIONAL,
    ) -> None:
        if capacity < 2:
            raise ValueError("capacity must be >= 2")
        self._capacity = capacity
        self._min_trade_notional = min_trade_notional
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()
        self._evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def evictions(self) -> int:
        """Number of batch evictions performed so far."""
        return self._evictions

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def __contains__(self, external_ref: object) -> bool:
        with self._lock:
            return external_ref in self._seen

    def is_material(self, event: ObservationEvent) -> bool:
        """Return True if the event clears the materiality threshold.

        Price snapshots carry no trade notional and are always material.
        """
        if not event.is_trade:
            return True
        return event.amount >= self._min_trade_notional

    def admit(self, event: ObservationEvent) -> AdmitResult:
        """Offer an event to the cache.

        Immaterial trades are rejected before touching the set. A previously
        seen reference is reported as a duplicate without any state change.
        """
        if not self.is_material(event):
            return AdmitResult.BELOW_THRESHOLD

        with self._lock:
            if event.external_ref in self._seen:
                return AdmitResult.DUPLICATE
            self._seen[event.external_ref] = None
            if len(self._seen) > self._capacity:
                self._evict_oldest()
        return AdmitResult.ADMITTED

    def discard(self, external_ref: str) -> None:
        """Forget a reference so that a failed ingestion can be retried."""
        with self._lock:
            self._seen.pop(external_ref, None)

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()

    def _evict_oldest(self) -> None:
        keep = self._capacity // 2
        drop = len(self._seen) - keep
        for _ in range(drop):
            self._seen.popitem(last=False)
        self._evictions += 1
        logger.debug("Dedup cache evicted %d oldest refs (kept %d)", drop, keep)
