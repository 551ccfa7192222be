"""Signal outcome tracking."""

from memecoin_lifecycle_tracker.tracker.snapshots import (
    SignalSnapshotTracker,
    hour_bucket,
    price_change_percent,
)

__all__ = ["SignalSnapshotTracker", "hour_bucket", "price_change_percent"]
