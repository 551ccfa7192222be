"""Tests for the candidate wallet transition table."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from memecoin_lifecycle_tracker.config import CandidateSettings
from memecoin_lifecycle_tracker.evaluator.candidate import (
    CandidateThresholds,
    CandidateTransitionTable,
    candidate_score,
)
from memecoin_lifecycle_tracker.evaluator.models import Decision, EntityKind
from memecoin_lifecycle_tracker.profiler.registry import EntityRegistry
from memecoin_lifecycle_tracker.storage.repos import (
    ObservationDTO,
    ObservationRepository,
    RollingMetricsDTO,
    RollingMetricsRepository,
    TrackedEntityDTO,
)

WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
TOKENS = [
    "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263",
    "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm",
    "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN",
]
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def _metrics(
    *,
    total: int,
    wins: int,
    profit: str,
    tokens: int = 3,
    consistency: str = "0",
) -> RollingMetricsDTO:
    return RollingMetricsDTO(
        entity_id=1,
        window_days=30,
        total_rounds=total,
        wins=wins,
        losses=total - wins,
        win_rate=Decimal(wins) / Decimal(total) if total else Decimal("0"),
        avg_roi=Decimal("0"),
        total_profit=Decimal(profit),
        unique_counterparties=tokens,
        consistency_score=Decimal(consistency),
        avg_hold_hours=Decimal("1"),
        largest_win_roi=Decimal("0"),
        largest_loss_roi=Decimal("0"),
        avg_entry_size=Decimal("1"),
        computed_at=NOW,
    )


@pytest.fixture
def table() -> CandidateTransitionTable:
    return CandidateTransitionTable()


# ============================================================================
# Decision rules
# ============================================================================


class TestDecide:
    def test_insufficient_rounds_keeps_monitoring(self, table: CandidateTransitionTable) -> None:
        outcome = table.decide(_metrics(total=2, wins=2, profit="10"))

        assert outcome.decision is Decision.CONTINUE
        assert outcome.new_status == "MONITORING"
        assert outcome.reason.startswith("Insufficient data: 2/3 rounds")

    def test_insufficient_token_diversity_keeps_monitoring(self, table: CandidateTransitionTable) -> None:
        outcome = table.decide(_metrics(total=10, wins=8, profit="10", tokens=1))

        assert outcome.decision is Decision.CONTINUE
        assert "1/2 tokens" in outcome.reason

    def test_promote(self, table: CandidateTransitionTable) -> None:
        outcome = table.decide(_metrics(total=4, wins=2, profit="5"))

        assert outcome.decision is Decision.PROMOTE
        assert outcome.new_status == "PROMOTED"
        assert outcome.context["total_rounds"] == 4
        assert outcome.context["win_rate_percent"] == pytest.approx(50.0)
        assert outcome.is_transition

    def test_promote_needs_profit(self, table: CandidateTransitionTable) -> None:
        outcome = table.decide(_metrics(total=4, wins=2, profit="0.5"))

        assert outcome.decision is Decision.CONTINUE

    def test_reject_low_win_rate(self, table: CandidateTransitionTable) -> None:
        outcome = table.decide(_metrics(total=20, wins=2, profit="-3"))

        assert outcome.decision is Decision.REJECT
        assert outcome.new_status == "REJECTED"
        assert outcome.reason == "Low win rate: 10.0% over 20 rounds"

    def test_low_win_rate_needs_enough_rounds(self, table: CandidateTransitionTable) -> None:
        outcome = table.decide(_metrics(total=10, wins=1, profit="-3"))

        assert outcome.decision is Decision.CONTINUE

    def test_reject_heavy_losses(self, table: CandidateTransitionTable) -> None:
        outcome = table.decide(_metrics(total=5, wins=1, profit="-30"))

        assert outcome.decision is Decision.REJECT
        assert outcome.reason == "Heavy losses: -30.00 SOL"

    def test_single_token_loser_is_rejected_without_minimums(self, table: CandidateTransitionTable) -> None:
        outcome = table.decide(_metrics(total=20, wins=0, profit="-40", tokens=1))

        assert outcome.decision is Decision.REJECT
        assert outcome.new_status == "REJECTED"
        assert outcome.reason == "Low win rate: 0.0% over 20 rounds"

    def test_heavy_losses_rejected_below_min_trades(self, table: CandidateTransitionTable) -> None:
        outcome = table.decide(_metrics(total=2, wins=0, profit="-30", tokens=1))

        assert outcome.decision is Decision.REJECT
        assert outcome.reason == "Heavy losses: -30.00 SOL"

    def test_promotion_checked_before_rejection(self) -> None:
        # A threshold set where both rules match: promotion wins.
        table = CandidateTransitionTable(
            CandidateThresholds(promote_win_rate=Decimal("0.1"), promote_min_profit=Decimal("-100"))
        )

        outcome = table.decide(_metrics(total=5, wins=1, profit="-30"))

        assert outcome.decision is Decision.PROMOTE

    def test_thresholds_from_settings(self) -> None:
        thresholds = CandidateThresholds.from_settings(CandidateSettings())

        assert thresholds.promote_win_rate == Decimal("0.35")
        assert thresholds.reject_win_rate == Decimal("0.15")
        assert thresholds.min_trades == 3
        assert thresholds.match_settle_seconds == 300


class TestCandidateScore:
    def test_weighted_score(self) -> None:
        # 0.5 * 40 + 5/10 * 20 + 3 * 4 + (20 - 50/10)
        assert candidate_score(_metrics(total=4, wins=2, profit="5", consistency="50")) == 57

    def test_score_saturates_at_100(self) -> None:
        assert candidate_score(_metrics(total=10, wins=10, profit="100", tokens=10)) == 100

    def test_score_floors_at_zero(self) -> None:
        assert candidate_score(_metrics(total=10, wins=0, profit="-100", consistency="500")) == 0


# ============================================================================
# Evaluation against stored data
# ============================================================================


async def _candidate(session: AsyncSession, observed_at: datetime) -> TrackedEntityDTO:
    result = await EntityRegistry().get_or_create(session, WALLET, EntityKind.CANDIDATE, observed_at=observed_at)
    return result.entity


async def _trade(
    session: AsyncSession, entity_id: int, ref: str, type: str, token: str, amount: str, at: datetime
) -> None:
    await ObservationRepository(session).insert_if_absent(
        ObservationDTO(
            entity_id=entity_id,
            type=type,
            counterparty_token=token,
            amount=Decimal(amount),
            timestamp=at,
            external_ref=ref,
        )
    )


class TestEvaluate:
    async def test_idle_candidate_is_deactivated(
        self, async_session: AsyncSession, table: CandidateTransitionTable
    ) -> None:
        entity = await _candidate(async_session, NOW - timedelta(days=15))

        outcome = await table.evaluate(async_session, entity, NOW)

        assert outcome.decision is Decision.DEACTIVATE
        assert outcome.new_status == "INACTIVE"
        assert outcome.reason == "No activity for 15 days"

    async def test_two_perfect_rounds_stay_monitoring(
        self, async_session: AsyncSession, table: CandidateTransitionTable
    ) -> None:
        start = NOW - timedelta(days=2)
        entity = await _candidate(async_session, start)
        for i, token in enumerate(TOKENS[:2]):
            await _trade(async_session, entity.id, f"b{i}", "BUY", token, "1", start + timedelta(hours=i))
            await _trade(async_session, entity.id, f"s{i}", "SELL", token, "3", start + timedelta(hours=i, minutes=30))

        outcome = await table.evaluate(async_session, entity, NOW)

        assert outcome.decision is Decision.CONTINUE
        assert outcome.new_status == "MONITORING"
        stored = await RollingMetricsRepository(async_session).get(entity.id, 30)
        assert stored is not None
        assert stored.total_rounds == 2
        assert stored.wins == 2

    async def test_reconciles_and_promotes(self, async_session: AsyncSession, table: CandidateTransitionTable) -> None:
        start = NOW - timedelta(days=3)
        entity = await _candidate(async_session, start)
        # Exits stored first, entries arrive later with earlier timestamps.
        for i, token in enumerate(TOKENS):
            await _trade(async_session, entity.id, f"s{i}", "SELL", token, "2.5", start + timedelta(hours=i + 1))
        for i, token in enumerate(TOKENS):
            await _trade(async_session, entity.id, f"b{i}", "BUY", token, "1", start + timedelta(hours=i))

        outcome = await table.evaluate(async_session, entity, NOW)

        assert outcome.decision is Decision.PROMOTE
        assert outcome.context["total_rounds"] == 3
        assert outcome.context["unique_counterparties"] == 3
        assert outcome.context["total_profit"] == Decimal("4.5")

    async def test_list_due_returns_monitoring_only(
        self, async_session: AsyncSession, table: CandidateTransitionTable
    ) -> None:
        registry = EntityRegistry()
        active = await _candidate(async_session, NOW)
        other = await registry.get_or_create(async_session, "other-wallet", EntityKind.CANDIDATE, observed_at=NOW)
        await registry.transition(async_session, other.entity, "REJECTED", reason="bad", at=NOW)

        due = await table.list_due(async_session, NOW)

        assert [e.id for e in due] == [active.id]

    async def test_recent_exits_wait_for_settle_window(
        self, async_session: AsyncSession, table: CandidateTransitionTable
    ) -> None:
        entity = await _candidate(async_session, NOW - timedelta(minutes=10))
        await _trade(async_session, entity.id, "b-old", "BUY", TOKENS[0], "1", NOW - timedelta(minutes=10))
        await _trade(async_session, entity.id, "s-old", "SELL", TOKENS[0], "2", NOW - timedelta(minutes=6))
        await _trade(async_session, entity.id, "b-new", "BUY", TOKENS[1], "1", NOW - timedelta(minutes=3))
        await _trade(async_session, entity.id, "s-new", "SELL", TOKENS[1], "2", NOW - timedelta(minutes=1))

        outcome = await table.evaluate(async_session, entity, NOW)

        assert outcome.context["total_rounds"] == 1
        assert await ObservationRepository(async_session).count_unmatched_exits(entity.id) == 1
