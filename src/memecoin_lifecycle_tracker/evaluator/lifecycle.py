"""Generic lifecycle evaluator.

One state machine drives both signals and candidate wallets. The
kind-specific rules live in a ``TransitionTable`` strategy; the evaluator
only owns batching, per-entity transactions, the audit trail and
post-commit notification.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from memecoin_lifecycle_tracker.errors import PersistenceError, TransientUpstreamError
from memecoin_lifecycle_tracker.evaluator.models import (
    NOTIFY_STATUSES,
    TERMINAL_STATUSES,
    CycleReport,
    EntityKind,
    EvaluationOutcome,
)
from memecoin_lifecycle_tracker.storage.repos import (
    EvaluationResultDTO,
    EvaluationResultRepository,
    TrackedEntityDTO,
    TrackedEntityRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from memecoin_lifecycle_tracker.alerter.dispatcher import TransitionDispatcher
    from memecoin_lifecycle_tracker.alerter.formatter import TransitionFormatter
    from memecoin_lifecycle_tracker.profiler.registry import EntityRegistry
    from memecoin_lifecycle_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_PAUSE_SECONDS = 1.0


class TransitionTable(ABC):
    """Kind-specific lifecycle rules."""

    kind: EntityKind
    # Whether CONTINUE decisions are written to the audit trail.
    audit_continue: bool = True

    @property
    def terminal_statuses(self) -> frozenset[str]:
        return TERMINAL_STATUSES[self.kind]

    @abstractmethod
    async def list_due(self, session: AsyncSession, now: datetime) -> list[TrackedEntityDTO]:
        """Entities to evaluate this cycle."""

    @abstractmethod
    async def evaluate(
        self,
        session: AsyncSession,
        entity: TrackedEntityDTO,
        now: datetime,
    ) -> EvaluationOutcome | None:
        """Decide what happens to ``entity``. ``None`` skips it this cycle."""


class LifecycleEvaluator:
    """Runs a transition table over all due entities in bounded batches.

    Each entity is an independent unit of work with its own transaction:
    one entity's failure is logged and counted, and the cycle continues.
    Notifications are sent only after the transition has been committed.

    Example:
        ```python
        evaluator = LifecycleEvaluator(
            CandidateTransitionTable(CandidateThresholds()),
            db_manager,
            registry,
            formatter=TransitionFormatter(),
            dispatcher=dispatcher,
        )
        report = await evaluator.run_cycle()
        ```
    """

    def __init__(
        self,
        table: TransitionTable,
        db_manager: DatabaseManager,
        registry: EntityRegistry,
        *,
        formatter: TransitionFormatter,
        dispatcher: TransitionDispatcher,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_pause_seconds: float = DEFAULT_BATCH_PAUSE_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._table = table
        self._db = db_manager
        self._registry = registry
        self._formatter = formatter
        self._dispatcher = dispatcher
        self._batch_size = batch_size
        self._batch_pause = batch_pause_seconds
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def kind(self) -> EntityKind:
        return self._table.kind

    async def run_cycle(self, now: datetime | None = None) -> CycleReport:
        """Evaluate every due entity once."""
        now = now or self._clock()
        report = CycleReport(kind=self._table.kind)

        async with self._db.get_async_session() as session:
            due = await self._table.list_due(session, now)
        report.due = len(due)
        if not due:
            logger.debug("No %s entities due for evaluation", self._table.kind.value.lower())
            return report

        logger.info("Running %s evaluation cycle over %d entities", self._table.kind.value.lower(), len(due))
        for start in range(0, len(due), self._batch_size):
            batch = due[start : start + self._batch_size]
            await asyncio.gather(*(self._evaluate_one(entity, now, report) for entity in batch))
            if start + self._batch_size < len(due) and self._batch_pause > 0:
                await asyncio.sleep(self._batch_pause)

        logger.info(
            "%s cycle done: evaluated=%d transitions=%d skipped=%d failures=%d",
            self._table.kind.value.title(),
            report.evaluated,
            report.transitions,
            report.skipped,
            report.failures,
        )
        return report

    async def _evaluate_one(self, entity: TrackedEntityDTO, now: datetime, report: CycleReport) -> None:
        try:
            result = await self._evaluate_and_commit(entity, now)
        except TransientUpstreamError as e:
            report.skipped += 1
            logger.info("Skipping %s this cycle: %s", entity.key, e)
            return
        except SQLAlchemyError as e:
            report.failures += 1
            logger.warning("%s", PersistenceError(entity.key, e))
            return
        except Exception as e:
            report.failures += 1
            logger.warning("Evaluation of %s failed: %s", entity.key, e, exc_info=True)
            return

        if result is None:
            report.skipped += 1
            return
        outcome, transitioned = result
        report.evaluated += 1
        report.count(outcome.decision)
        if not transitioned:
            return

        report.transitions += 1
        logger.info(
            "%s %s: %s -> %s (%s)",
            entity.kind.title(),
            entity.key,
            entity.status,
            outcome.new_status,
            outcome.reason,
        )
        if outcome.new_status in NOTIFY_STATUSES:
            report.notifications_sent += await self._notify(entity, outcome)

    async def _evaluate_and_commit(
        self,
        entity: TrackedEntityDTO,
        now: datetime,
    ) -> tuple[EvaluationOutcome, bool] | None:
        async with self._db.get_async_session() as session:
            outcome = await self._table.evaluate(session, entity, now)
            if outcome is None:
                return None

            transitioned = False
            if outcome.is_transition:
                transitioned = await self._registry.transition(
                    session,
                    entity,
                    outcome.new_status,
                    reason=outcome.reason,
                    at=now,
                    score=outcome.score,
                )
                if not transitioned:
                    # Another worker moved the entity first; discard this attempt.
                    await session.rollback()
                    return None
            else:
                await TrackedEntityRepository(session).update_score(entity.id, outcome.score)

            if transitioned or self._table.audit_continue:
                await EvaluationResultRepository(session).append(
                    EvaluationResultDTO(
                        entity_id=entity.id,
                        timestamp=now,
                        score=outcome.score,
                        decision=outcome.decision.value,
                        previous_status=entity.status,
                        new_status=outcome.new_status if transitioned else entity.status,
                        reason=outcome.reason,
                    )
                )
        return outcome, transitioned

    async def _notify(self, entity: TrackedEntityDTO, outcome: EvaluationOutcome) -> int:
        try:
            message = self._formatter.format(entity, outcome)
            result = await self._dispatcher.dispatch(message)
        except Exception as e:
            logger.warning("Failed to notify transition of %s: %s", entity.key, e)
            return 0
        return result.success_count
