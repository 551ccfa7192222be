"""Rolling metrics aggregation.

Metrics are always recomputed from stored matched rounds and observations,
never mutated incrementally, so they are safe to regenerate after a backfill
and to compute concurrently for different entities.
"""

from __future__ import annotations

import json
import logging
import statistics
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from memecoin_lifecycle_tracker.storage.repos import (
    MatchedRoundRepository,
    ObservationRepository,
    RollingMetricsDTO,
    RollingMetricsRepository,
    SignalOutcomeDTO,
    SignalOutcomeRepository,
    TrackedEntityDTO,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

QUANTUM = Decimal("0.000001")
ZERO = Decimal("0")

# Entry score buckets used for signal performance breakdowns.
HIGH_SCORE_MIN = 70.0
MEDIUM_SCORE_MIN = 50.0


def _q(value: Decimal | float) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(QUANTUM)


def _mean(values: list[Decimal]) -> Decimal:
    if not values:
        return ZERO
    return sum(values, ZERO) / Decimal(len(values))


class MetricsAggregator:
    """Computes windowed statistics for tracked entities."""

    async def compute(
        self,
        session: AsyncSession,
        entity_id: int,
        window_days: int,
        *,
        as_of: datetime,
    ) -> RollingMetricsDTO:
        """Compute metrics for rounds exiting within ``[as_of - window_days, as_of]``.

        This is a pure function of stored state and ``as_of``: calling it twice
        without new data yields identical output.
        """
        since = as_of - timedelta(days=window_days)
        rounds = await MatchedRoundRepository(session).list_for_entity(entity_id, since=since, until=as_of)
        trades = await ObservationRepository(session).list_trades_in_window(entity_id, since=since, until=as_of)

        total = len(rounds)
        wins = sum(1 for r in rounds if r.is_win)
        rois = [r.roi_percent for r in rounds]

        tokens = {t.counterparty_token for t in trades}
        tokens.update(r.counterparty_token for r in rounds)

        consistency = statistics.pstdev(float(roi) for roi in rois) if total > 1 else 0.0
        hold_hours = [Decimal(r.hold_duration_seconds) / Decimal(3600) for r in rounds]
        entry_sizes = [t.amount for t in trades if t.type == "BUY"]

        return RollingMetricsDTO(
            entity_id=entity_id,
            window_days=window_days,
            total_rounds=total,
            wins=wins,
            losses=total - wins,
            win_rate=_q(Decimal(wins) / Decimal(total)) if total else ZERO,
            avg_roi=_q(_mean(rois)),
            total_profit=sum((r.profit for r in rounds), ZERO),
            unique_counterparties=len(tokens),
            consistency_score=_q(consistency),
            avg_hold_hours=_q(_mean(hold_hours)),
            largest_win_roi=max((roi for roi in rois if roi > 0), default=ZERO),
            largest_loss_roi=min((roi for roi in rois if roi < 0), default=ZERO),
            avg_entry_size=_q(_mean(entry_sizes)),
            computed_at=as_of,
        )

    async def refresh(
        self,
        session: AsyncSession,
        entity_id: int,
        window_days: int,
        *,
        as_of: datetime,
    ) -> RollingMetricsDTO:
        """Recompute and persist metrics (whole-row upsert)."""
        metrics = await self.compute(session, entity_id, window_days, as_of=as_of)
        await RollingMetricsRepository(session).upsert(metrics)
        return metrics

    async def top_entities(
        self,
        session: AsyncSession,
        *,
        kind: str,
        window_days: int,
        min_rounds: int,
        limit: int,
    ) -> list[tuple[TrackedEntityDTO, RollingMetricsDTO]]:
        """Entities ranked by diagnostic score from their last persisted metrics."""
        return await RollingMetricsRepository(session).list_ranked(
            kind=kind,
            window_days=window_days,
            min_rounds=min_rounds,
            limit=limit,
        )

    async def signal_performance(self, session: AsyncSession, *, since: datetime) -> SignalPerformanceStats:
        """Aggregate outcomes of signals emitted since ``since``."""
        signals = await SignalOutcomeRepository(session).list_since(since)
        return SignalPerformanceStats.from_signals(signals, since=since)


@dataclass
class GroupStats:
    """Completed-signal stats for one group (signal type, strength, score range)."""

    count: int = 0
    wins: int = 0
    win_rate_percent: float = 0.0
    avg_return: float = 0.0

    @classmethod
    def from_signals(cls, signals: list[SignalOutcomeDTO]) -> GroupStats:
        if not signals:
            return cls()
        wins = sum(1 for s in signals if s.final_outcome == "WIN")
        returns = [float(s.final_return or 0) for s in signals]
        return cls(
            count=len(signals),
            wins=wins,
            win_rate_percent=wins / len(signals) * 100,
            avg_return=sum(returns) / len(returns),
        )


def _entry_score(signal: SignalOutcomeDTO) -> float:
    """Entry score from the stored metrics; missing or malformed counts as zero."""
    try:
        value = json.loads(signal.entry_metrics_json or "{}").get("score", 0)
        return float(value or 0)
    except (ValueError, TypeError, AttributeError):
        return 0.0


@dataclass
class SignalPerformanceStats:
    """Outcome statistics over a set of signals.

    ``wins + losses + pending == total`` always holds.
    """

    since: datetime
    total: int = 0
    completed: int = 0
    pending: int = 0
    wins: int = 0
    losses: int = 0
    win_rate_percent: float = 0.0
    avg_return: float = 0.0
    avg_win_return: float = 0.0
    avg_loss_return: float = 0.0
    best_return: float = 0.0
    worst_return: float = 0.0
    by_signal_type: dict[str, GroupStats] = field(default_factory=dict)
    by_strength: dict[str, GroupStats] = field(default_factory=dict)
    by_score_range: dict[str, GroupStats] = field(default_factory=dict)

    @classmethod
    def from_signals(cls, signals: list[SignalOutcomeDTO], *, since: datetime) -> SignalPerformanceStats:
        completed = [s for s in signals if s.final_outcome != "PENDING"]
        wins = [s for s in completed if s.final_outcome == "WIN"]
        losses = [s for s in completed if s.final_outcome == "LOSS"]
        returns = [float(s.final_return or 0) for s in completed]
        win_returns = [float(s.final_return or 0) for s in wins]
        loss_returns = [float(s.final_return or 0) for s in losses]

        def avg(values: list[float]) -> float:
            return sum(values) / len(values) if values else 0.0

        by_type: dict[str, list[SignalOutcomeDTO]] = {}
        by_strength: dict[str, list[SignalOutcomeDTO]] = {}
        for s in completed:
            by_type.setdefault(s.signal_type, []).append(s)
            by_strength.setdefault(s.signal_strength, []).append(s)

        scores = {s.signal_id: _entry_score(s) for s in completed}
        by_score = {
            "high": [s for s in completed if scores[s.signal_id] >= HIGH_SCORE_MIN],
            "medium": [s for s in completed if MEDIUM_SCORE_MIN <= scores[s.signal_id] < HIGH_SCORE_MIN],
            "low": [s for s in completed if scores[s.signal_id] < MEDIUM_SCORE_MIN],
        }

        return cls(
            since=since,
            total=len(signals),
            completed=len(completed),
            pending=len(signals) - len(completed),
            wins=len(wins),
            losses=len(losses),
            win_rate_percent=len(wins) / len(completed) * 100 if completed else 0.0,
            avg_return=avg(returns),
            avg_win_return=avg(win_returns),
            avg_loss_return=avg(loss_returns),
            best_return=max(returns, default=0.0),
            worst_return=min(returns, default=0.0),
            by_signal_type={k: GroupStats.from_signals(v) for k, v in sorted(by_type.items())},
            by_strength={k: GroupStats.from_signals(v) for k, v in sorted(by_strength.items())},
            by_score_range={k: GroupStats.from_signals(v) for k, v in by_score.items()},
        )
