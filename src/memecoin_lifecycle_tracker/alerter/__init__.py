"""Alerting layer - transition message formatting and dispatch."""

from memecoin_lifecycle_tracker.alerter.dispatcher import (
    DispatchResult,
    TransitionCallback,
    TransitionDispatcher,
)
from memecoin_lifecycle_tracker.alerter.formatter import TransitionFormatter, truncate_address

__all__ = [
    "DispatchResult",
    "TransitionCallback",
    "TransitionDispatcher",
    "TransitionFormatter",
    "truncate_address",
]
