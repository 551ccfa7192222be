"""Entity profiling - registry, FIFO matching and rolling metrics."""

from memecoin_lifecycle_tracker.profiler.matcher import FifoMatcher, MatchReport, compute_roi_percent
from memecoin_lifecycle_tracker.profiler.metrics import (
    GroupStats,
    MetricsAggregator,
    SignalPerformanceStats,
)
from memecoin_lifecycle_tracker.profiler.registry import EntityRegistry, RegistryResult

__all__ = [
    "EntityRegistry",
    "FifoMatcher",
    "GroupStats",
    "MatchReport",
    "MetricsAggregator",
    "RegistryResult",
    "SignalPerformanceStats",
    "compute_roi_percent",
]
