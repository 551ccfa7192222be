"""Data models for the evaluator module."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class EntityKind(str, Enum):
    """Kinds of tracked entities."""

    SIGNAL = "SIGNAL"
    CANDIDATE = "CANDIDATE"


class CandidateStatus(str, Enum):
    """Candidate wallet lifecycle: MONITORING -> {PROMOTED, REJECTED, INACTIVE}."""

    MONITORING = "MONITORING"
    PROMOTED = "PROMOTED"
    REJECTED = "REJECTED"
    INACTIVE = "INACTIVE"


class SignalStatus(str, Enum):
    """Signal lifecycle: PENDING -> {WIN, LOSS}."""

    PENDING = "PENDING"
    WIN = "WIN"
    LOSS = "LOSS"


INITIAL_STATUS: dict[EntityKind, str] = {
    EntityKind.CANDIDATE: CandidateStatus.MONITORING.value,
    EntityKind.SIGNAL: SignalStatus.PENDING.value,
}

TERMINAL_STATUSES: dict[EntityKind, frozenset[str]] = {
    EntityKind.CANDIDATE: frozenset(
        {CandidateStatus.PROMOTED.value, CandidateStatus.REJECTED.value, CandidateStatus.INACTIVE.value}
    ),
    EntityKind.SIGNAL: frozenset({SignalStatus.WIN.value, SignalStatus.LOSS.value}),
}

# Terminal statuses that fire an outbound notification. INACTIVE is silent.
NOTIFY_STATUSES: frozenset[str] = frozenset(
    {
        CandidateStatus.PROMOTED.value,
        CandidateStatus.REJECTED.value,
        SignalStatus.WIN.value,
        SignalStatus.LOSS.value,
    }
)


def is_terminal(kind: EntityKind | str, status: str) -> bool:
    return status in TERMINAL_STATUSES[EntityKind(kind)]


class Decision(str, Enum):
    """Evaluator decisions recorded in the audit trail."""

    CONTINUE = "CONTINUE"
    PROMOTE = "PROMOTE"
    REJECT = "REJECT"
    DEACTIVATE = "DEACTIVATE"
    WIN = "WIN"
    LOSS = "LOSS"


class DiscoverySource(str, Enum):
    """How a candidate wallet first came to our attention."""

    DEX_TRADER = "DEX_TRADER"
    EARLY_BUYER = "EARLY_BUYER"
    WHALE_TRACKER = "WHALE_TRACKER"
    HIGH_WIN_RATE = "HIGH_WIN_RATE"
    REFERRAL = "REFERRAL"
    SIGNAL_EMITTER = "SIGNAL_EMITTER"


@dataclass(frozen=True)
class EvaluationOutcome:
    """Result of evaluating one entity against its transition table.

    Attributes:
        decision: What the table decided.
        new_status: Target status (equal to the current one for CONTINUE).
        score: Diagnostic 0-100 score, used for ranking only.
        reason: Human-readable rationale persisted with the decision.
        context: Extra values for notification formatting.
    """

    decision: Decision
    new_status: str
    score: int
    reason: str
    context: dict[str, object] = field(default_factory=dict)

    @property
    def is_transition(self) -> bool:
        return self.decision is not Decision.CONTINUE


@dataclass
class CycleReport:
    """Summary of one evaluator cycle."""

    kind: EntityKind
    due: int = 0
    evaluated: int = 0
    skipped: int = 0
    transitions: int = 0
    notifications_sent: int = 0
    failures: int = 0
    decisions: dict[str, int] = field(default_factory=dict)

    def count(self, decision: Decision) -> None:
        self.decisions[decision.value] = self.decisions.get(decision.value, 0) + 1
