"""Candidate wallet transition table.

MONITORING candidates are either promoted to smart money, rejected for
poor results, or retired as INACTIVE when they stop trading.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from memecoin_lifecycle_tracker.evaluator.lifecycle import TransitionTable
from memecoin_lifecycle_tracker.evaluator.models import (
    CandidateStatus,
    Decision,
    EntityKind,
    EvaluationOutcome,
)
from memecoin_lifecycle_tracker.profiler.matcher import FifoMatcher
from memecoin_lifecycle_tracker.profiler.metrics import MetricsAggregator
from memecoin_lifecycle_tracker.storage.repos import (
    RollingMetricsDTO,
    TrackedEntityDTO,
    TrackedEntityRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from memecoin_lifecycle_tracker.config import CandidateSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateThresholds:
    """Decision thresholds for candidate wallets."""

    min_trades: int = 3
    min_unique_tokens: int = 2
    promote_win_rate: Decimal = Decimal("0.35")
    promote_min_profit: Decimal = Decimal("1")
    reject_win_rate: Decimal = Decimal("0.15")
    reject_min_trades: int = 15
    reject_max_loss: Decimal = Decimal("-25")
    inactivity_days: int = 14
    evaluation_window_days: int = 30
    match_settle_seconds: int = 300

    @classmethod
    def from_settings(cls, settings: CandidateSettings) -> CandidateThresholds:
        return cls(
            min_trades=settings.min_trades,
            min_unique_tokens=settings.min_unique_tokens,
            promote_win_rate=Decimal(str(settings.promote_win_rate)),
            promote_min_profit=settings.promote_min_profit,
            reject_win_rate=Decimal(str(settings.reject_win_rate)),
            reject_min_trades=settings.reject_min_trades,
            reject_max_loss=settings.reject_max_loss,
            inactivity_days=settings.inactivity_days,
            evaluation_window_days=settings.evaluation_window_days,
            match_settle_seconds=settings.match_settle_seconds,
        )


def candidate_score(metrics: RollingMetricsDTO) -> int:
    """Diagnostic 0-100 score used for ranking. Never gates a decision.

    Weighted from win rate (40), profit (20, saturating at 10 SOL),
    token diversity (20, saturating at 5 tokens) and steadiness (20,
    falling with the ROI standard deviation).
    """
    win_rate = float(metrics.win_rate)
    profit = float(metrics.total_profit)
    consistency = float(metrics.consistency_score)

    score = win_rate * 40
    score += min(20.0, profit / 10 * 20)
    score += min(20.0, metrics.unique_counterparties * 4)
    score += max(0.0, 20 - consistency / 10)
    return max(0, min(100, round(score)))


class CandidateTransitionTable(TransitionTable):
    """Promote/reject/deactivate rules for candidate wallets."""

    kind = EntityKind.CANDIDATE
    audit_continue = True

    def __init__(
        self,
        thresholds: CandidateThresholds | None = None,
        *,
        matcher: FifoMatcher | None = None,
        aggregator: MetricsAggregator | None = None,
    ) -> None:
        self.thresholds = thresholds or CandidateThresholds()
        self._matcher = matcher or FifoMatcher()
        self._aggregator = aggregator or MetricsAggregator()

    async def list_due(self, session: AsyncSession, now: datetime) -> list[TrackedEntityDTO]:
        return await TrackedEntityRepository(session).list_by_status(
            self.kind.value, [CandidateStatus.MONITORING.value]
        )

    async def evaluate(
        self,
        session: AsyncSession,
        entity: TrackedEntityDTO,
        now: datetime,
    ) -> EvaluationOutcome:
        idle = now - entity.last_observed_at
        if idle > timedelta(days=self.thresholds.inactivity_days):
            return EvaluationOutcome(
                decision=Decision.DEACTIVATE,
                new_status=CandidateStatus.INACTIVE.value,
                score=entity.score or 0,
                reason=f"No activity for {idle.days} days",
            )

        settled_before = now - timedelta(seconds=self.thresholds.match_settle_seconds)
        await self._matcher.reconcile(session, entity.id, settled_before=settled_before)
        metrics = await self._aggregator.refresh(
            session,
            entity.id,
            self.thresholds.evaluation_window_days,
            as_of=now,
        )
        return self.decide(metrics)

    def decide(self, metrics: RollingMetricsDTO) -> EvaluationOutcome:
        """Apply the decision rules to a metrics snapshot."""
        t = self.thresholds
        score = candidate_score(metrics)
        context: dict[str, object] = {
            "win_rate_percent": float(metrics.win_rate) * 100,
            "total_profit": metrics.total_profit,
            "total_rounds": metrics.total_rounds,
            "unique_counterparties": metrics.unique_counterparties,
            "avg_roi": metrics.avg_roi,
        }

        def outcome(decision: Decision, status: CandidateStatus, reason: str) -> EvaluationOutcome:
            return EvaluationOutcome(
                decision=decision,
                new_status=status.value,
                score=score,
                reason=reason,
                context=context,
            )

        win_pct = float(metrics.win_rate) * 100
        # The minimums gate promotion only; rejection rules carry their own.
        enough_data = metrics.total_rounds >= t.min_trades and metrics.unique_counterparties >= t.min_unique_tokens

        if enough_data and metrics.win_rate >= t.promote_win_rate and metrics.total_profit >= t.promote_min_profit:
            return outcome(
                Decision.PROMOTE,
                CandidateStatus.PROMOTED,
                f"Win rate {win_pct:.1f}%, profit {metrics.total_profit:.2f} SOL "
                f"over {metrics.total_rounds} rounds",
            )

        if metrics.win_rate < t.reject_win_rate and metrics.total_rounds >= t.reject_min_trades:
            return outcome(
                Decision.REJECT,
                CandidateStatus.REJECTED,
                f"Low win rate: {win_pct:.1f}% over {metrics.total_rounds} rounds",
            )

        if metrics.total_profit <= t.reject_max_loss:
            return outcome(
                Decision.REJECT,
                CandidateStatus.REJECTED,
                f"Heavy losses: {metrics.total_profit:.2f} SOL",
            )

        if not enough_data:
            return outcome(
                Decision.CONTINUE,
                CandidateStatus.MONITORING,
                f"Insufficient data: {metrics.total_rounds}/{t.min_trades} rounds, "
                f"{metrics.unique_counterparties}/{t.min_unique_tokens} tokens",
            )

        return outcome(
            Decision.CONTINUE,
            CandidateStatus.MONITORING,
            f"Monitoring: win rate {win_pct:.1f}%, profit {metrics.total_profit:.2f} SOL",
        )
