"""Ingestion layer - inbound observations, dedup and price lookup."""

from memecoin_lifecycle_tracker.ingestor.dedup import AdmitResult, DedupCache
from memecoin_lifecycle_tracker.ingestor.models import (
    ObservationEvent,
    ObservationType,
    ObserveResult,
    ObserveStatus,
    PriceQuote,
    RecordSignalResult,
    SignalEntrySnapshot,
)
from memecoin_lifecycle_tracker.ingestor.prices import (
    CachedPriceProvider,
    DexScreenerPriceProvider,
    PriceProvider,
)

__all__ = [
    "AdmitResult",
    "CachedPriceProvider",
    "DedupCache",
    "DexScreenerPriceProvider",
    "ObservationEvent",
    "ObservationType",
    "ObserveResult",
    "ObserveStatus",
    "PriceProvider",
    "PriceQuote",
    "RecordSignalResult",
    "SignalEntrySnapshot",
]
