"""Lifecycle evaluation - generic state machine and kind-specific transition tables."""

from memecoin_lifecycle_tracker.evaluator.candidate import CandidateThresholds, CandidateTransitionTable
from memecoin_lifecycle_tracker.evaluator.lifecycle import LifecycleEvaluator, TransitionTable
from memecoin_lifecycle_tracker.evaluator.models import (
    CandidateStatus,
    CycleReport,
    Decision,
    DiscoverySource,
    EntityKind,
    EvaluationOutcome,
    SignalStatus,
)

__all__ = [
    "CandidateStatus",
    "CandidateThresholds",
    "CandidateTransitionTable",
    "CycleReport",
    "Decision",
    "DiscoverySource",
    "EntityKind",
    "EvaluationOutcome",
    "LifecycleEvaluator",
    "SignalStatus",
    "TransitionTable",
]
