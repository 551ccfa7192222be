"""Tests for the generic lifecycle evaluator."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from memecoin_lifecycle_tracker.alerter.dispatcher import TransitionDispatcher
from memecoin_lifecycle_tracker.alerter.formatter import TransitionFormatter
from memecoin_lifecycle_tracker.errors import TransientUpstreamError
from memecoin_lifecycle_tracker.evaluator.lifecycle import LifecycleEvaluator, TransitionTable
from memecoin_lifecycle_tracker.evaluator.models import (
    CandidateStatus,
    Decision,
    EntityKind,
    EvaluationOutcome,
)
from memecoin_lifecycle_tracker.profiler.registry import EntityRegistry
from memecoin_lifecycle_tracker.storage.database import DatabaseManager
from memecoin_lifecycle_tracker.storage.repos import (
    EvaluationResultRepository,
    TrackedEntityDTO,
    TrackedEntityRepository,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

PROMOTE = EvaluationOutcome(
    decision=Decision.PROMOTE,
    new_status=CandidateStatus.PROMOTED.value,
    score=80,
    reason="Win rate 60.0%",
    context={"win_rate_percent": 60.0, "total_rounds": 5},
)
CONTINUE = EvaluationOutcome(
    decision=Decision.CONTINUE,
    new_status=CandidateStatus.MONITORING.value,
    score=42,
    reason="Monitoring",
)
DEACTIVATE = EvaluationOutcome(
    decision=Decision.DEACTIVATE,
    new_status=CandidateStatus.INACTIVE.value,
    score=0,
    reason="No activity for 20 days",
)


class ScriptedTable(TransitionTable):
    """Returns a fixed outcome (or raises) per entity key."""

    kind = EntityKind.CANDIDATE

    def __init__(
        self,
        script: dict[str, EvaluationOutcome | Exception | None],
        *,
        audit_continue: bool = True,
    ) -> None:
        self.script = script
        self.audit_continue = audit_continue
        self.on_evaluate = None

    async def list_due(self, session: AsyncSession, now: datetime) -> list[TrackedEntityDTO]:
        return await TrackedEntityRepository(session).list_by_status(self.kind.value, ["MONITORING"])

    async def evaluate(
        self, session: AsyncSession, entity: TrackedEntityDTO, now: datetime
    ) -> EvaluationOutcome | None:
        if self.on_evaluate is not None:
            await self.on_evaluate(entity)
        result = self.script[entity.key]
        if isinstance(result, Exception):
            raise result
        return result


async def _seed(db_manager: DatabaseManager, *keys: str) -> dict[str, int]:
    ids: dict[str, int] = {}
    async with db_manager.get_async_session() as session:
        registry = EntityRegistry()
        for key in keys:
            result = await registry.get_or_create(session, key, EntityKind.CANDIDATE, observed_at=NOW)
            ids[key] = result.entity.id
    return ids


async def _status(db_manager: DatabaseManager, entity_id: int) -> str:
    async with db_manager.get_async_session() as session:
        entity = await TrackedEntityRepository(session).get(entity_id)
    assert entity is not None
    return entity.status


def _evaluator(
    table: TransitionTable,
    db_manager: DatabaseManager,
    dispatcher: TransitionDispatcher | None = None,
    batch_size: int = 1,
) -> LifecycleEvaluator:
    return LifecycleEvaluator(
        table,
        db_manager,
        EntityRegistry(),
        formatter=TransitionFormatter(),
        dispatcher=dispatcher or TransitionDispatcher(),
        batch_size=batch_size,
        batch_pause_seconds=0,
    )


class TestRunCycle:
    async def test_empty_cycle(self, db_manager: DatabaseManager) -> None:
        report = await _evaluator(ScriptedTable({}), db_manager).run_cycle(NOW)

        assert report.due == 0
        assert report.evaluated == 0

    async def test_transitions_and_continues(self, db_manager: DatabaseManager) -> None:
        ids = await _seed(db_manager, "good", "meh", "idle")
        table = ScriptedTable({"good": PROMOTE, "meh": CONTINUE, "idle": DEACTIVATE})

        report = await _evaluator(table, db_manager).run_cycle(NOW)

        assert report.due == 3
        assert report.evaluated == 3
        assert report.transitions == 2
        assert report.decisions == {"PROMOTE": 1, "CONTINUE": 1, "DEACTIVATE": 1}
        assert await _status(db_manager, ids["good"]) == "PROMOTED"
        assert await _status(db_manager, ids["meh"]) == "MONITORING"
        assert await _status(db_manager, ids["idle"]) == "INACTIVE"

    async def test_one_failure_does_not_abort_cycle(self, db_manager: DatabaseManager) -> None:
        ids = await _seed(db_manager, "a", "broken", "c")
        table = ScriptedTable({"a": PROMOTE, "broken": RuntimeError("boom"), "c": PROMOTE})

        report = await _evaluator(table, db_manager).run_cycle(NOW)

        assert report.failures == 1
        assert report.transitions == 2
        assert await _status(db_manager, ids["a"]) == "PROMOTED"
        assert await _status(db_manager, ids["broken"]) == "MONITORING"
        assert await _status(db_manager, ids["c"]) == "PROMOTED"

    async def test_transient_error_skips_entity(self, db_manager: DatabaseManager) -> None:
        ids = await _seed(db_manager, "flaky")
        table = ScriptedTable({"flaky": TransientUpstreamError("dexscreener", "HTTP 503")})

        report = await _evaluator(table, db_manager).run_cycle(NOW)

        assert report.skipped == 1
        assert report.failures == 0
        assert await _status(db_manager, ids["flaky"]) == "MONITORING"

    async def test_none_outcome_skips_entity(self, db_manager: DatabaseManager) -> None:
        await _seed(db_manager, "no-price")

        report = await _evaluator(ScriptedTable({"no-price": None}), db_manager).run_cycle(NOW)

        assert report.skipped == 1
        assert report.evaluated == 0

    def test_rejects_zero_batch_size(self) -> None:
        with pytest.raises(ValueError):
            _evaluator(ScriptedTable({}), MagicMock(), batch_size=0)


class TestAuditTrail:
    async def test_every_decision_is_journaled(self, db_manager: DatabaseManager) -> None:
        ids = await _seed(db_manager, "good", "meh")
        table = ScriptedTable({"good": PROMOTE, "meh": CONTINUE})

        await _evaluator(table, db_manager).run_cycle(NOW)

        async with db_manager.get_async_session() as session:
            repo = EvaluationResultRepository(session)
            promoted = await repo.list_for_entity(ids["good"])
            monitored = await repo.list_for_entity(ids["meh"])
            entity = await TrackedEntityRepository(session).get(ids["meh"])

        assert len(promoted) == 1
        assert promoted[0].previous_status == "MONITORING"
        assert promoted[0].new_status == "PROMOTED"
        assert promoted[0].decision == "PROMOTE"
        assert promoted[0].score == 80
        assert promoted[0].timestamp == NOW
        assert len(monitored) == 1
        assert monitored[0].new_status == "MONITORING"
        assert entity is not None
        assert entity.score == 42

    async def test_continue_not_journaled_when_disabled(self, db_manager: DatabaseManager) -> None:
        ids = await _seed(db_manager, "meh")
        table = ScriptedTable({"meh": CONTINUE}, audit_continue=False)

        await _evaluator(table, db_manager).run_cycle(NOW)

        async with db_manager.get_async_session() as session:
            history = await EvaluationResultRepository(session).list_for_entity(ids["meh"])
        assert history == []


class TestConcurrentTransition:
    async def test_lost_race_is_skipped(self, db_manager: DatabaseManager) -> None:
        ids = await _seed(db_manager, "contested")
        table = ScriptedTable({"contested": PROMOTE})

        async def concurrent_writer(entity: TrackedEntityDTO) -> None:
            async with db_manager.get_async_session() as other:
                await TrackedEntityRepository(other).compare_and_set_status(
                    entity.id,
                    from_status="MONITORING",
                    to_status="INACTIVE",
                    reason="moved elsewhere",
                    at=NOW,
                )

        table.on_evaluate = concurrent_writer
        messages: list[str] = []

        async def capture(message: str) -> None:
            messages.append(message)

        dispatcher = TransitionDispatcher()
        dispatcher.register(capture)
        report = await _evaluator(table, db_manager, dispatcher).run_cycle(NOW)

        assert report.skipped == 1
        assert report.transitions == 0
        assert messages == []
        assert await _status(db_manager, ids["contested"]) == "INACTIVE"
        async with db_manager.get_async_session() as session:
            assert await EvaluationResultRepository(session).list_for_entity(ids["contested"]) == []


class TestNotifications:
    async def test_notified_after_commit(self, db_manager: DatabaseManager) -> None:
        ids = await _seed(db_manager, "good")
        seen_status: list[str] = []

        async def callback(message: str) -> None:
            seen_status.append(await _status(db_manager, ids["good"]))

        dispatcher = TransitionDispatcher()
        dispatcher.register(callback)

        report = await _evaluator(ScriptedTable({"good": PROMOTE}), db_manager, dispatcher).run_cycle(NOW)

        assert report.notifications_sent == 1
        assert seen_status == ["PROMOTED"]

    async def test_inactive_is_silent(self, db_manager: DatabaseManager) -> None:
        await _seed(db_manager, "idle")
        messages: list[str] = []

        async def callback(message: str) -> None:
            messages.append(message)

        dispatcher = TransitionDispatcher()
        dispatcher.register(callback)

        report = await _evaluator(ScriptedTable({"idle": DEACTIVATE}), db_manager, dispatcher).run_cycle(NOW)

        assert report.transitions == 1
        assert report.notifications_sent == 0
        assert messages == []

    async def test_failing_callback_keeps_transition(self, db_manager: DatabaseManager) -> None:
        ids = await _seed(db_manager, "good")

        async def broken(message: str) -> None:
            raise ConnectionError("telegram down")

        dispatcher = TransitionDispatcher()
        dispatcher.register(broken)

        report = await _evaluator(ScriptedTable({"good": PROMOTE}), db_manager, dispatcher).run_cycle(NOW)

        assert report.transitions == 1
        assert report.notifications_sent == 0
        assert report.failures == 0
        assert await _status(db_manager, ids["good"]) == "PROMOTED"
