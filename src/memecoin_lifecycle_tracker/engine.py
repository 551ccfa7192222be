"""Lifecycle engine orchestrator.

This module provides the LifecycleEngine class that wires together the
dedup cache, entity registry, FIFO matcher, metrics aggregator, lifecycle
evaluators and notification dispatch behind a small public API.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError

from memecoin_lifecycle_tracker.alerter.dispatcher import TransitionCallback, TransitionDispatcher
from memecoin_lifecycle_tracker.alerter.formatter import TransitionFormatter
from memecoin_lifecycle_tracker.config import Settings, get_settings
from memecoin_lifecycle_tracker.errors import PersistenceError
from memecoin_lifecycle_tracker.evaluator.candidate import CandidateThresholds, CandidateTransitionTable
from memecoin_lifecycle_tracker.evaluator.lifecycle import LifecycleEvaluator
from memecoin_lifecycle_tracker.evaluator.models import CycleReport, DiscoverySource, EntityKind
from memecoin_lifecycle_tracker.ingestor.dedup import AdmitResult, DedupCache
from memecoin_lifecycle_tracker.ingestor.models import (
    ObservationEvent,
    ObserveResult,
    ObserveStatus,
    RecordSignalResult,
    SignalEntrySnapshot,
)
from memecoin_lifecycle_tracker.ingestor.prices import CachedPriceProvider, DexScreenerPriceProvider
from memecoin_lifecycle_tracker.profiler.matcher import FifoMatcher
from memecoin_lifecycle_tracker.profiler.metrics import MetricsAggregator, SignalPerformanceStats
from memecoin_lifecycle_tracker.profiler.registry import EntityRegistry
from memecoin_lifecycle_tracker.scheduler import PeriodicTask
from memecoin_lifecycle_tracker.storage.database import DatabaseManager
from memecoin_lifecycle_tracker.storage.repos import (
    EvaluationResultDTO,
    EvaluationResultRepository,
    MatchedRoundRepository,
    ObservationDTO,
    ObservationRepository,
    RollingMetricsDTO,
    SignalOutcomeDTO,
    SignalOutcomeRepository,
    TrackedEntityDTO,
    TrackedEntityRepository,
)
from memecoin_lifecycle_tracker.tracker.snapshots import SignalSnapshotTracker

if TYPE_CHECKING:
    from memecoin_lifecycle_tracker.ingestor.prices import PriceProvider

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    """Engine lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class EngineStats:
    """Counters for the engine since construction."""

    started_at: datetime | None = None
    observations_received: int = 0
    observations_accepted: int = 0
    duplicates: int = 0
    below_threshold: int = 0
    frozen: int = 0
    signals_recorded: int = 0
    signal_cycles: int = 0
    candidate_cycles: int = 0
    transitions: int = 0
    notifications_sent: int = 0
    errors: int = 0
    last_error: str | None = None


class LifecycleEngine:
    """Lifecycle tracking engine for signals and smart-money candidates.

    Inbound observations and signal emissions are handled as they arrive;
    the signal tracker and candidate evaluator run as independent periodic
    tasks once the engine is started.

    Example:
        ```python
        from memecoin_lifecycle_tracker.config import get_settings
        from memecoin_lifecycle_tracker.engine import LifecycleEngine

        engine = LifecycleEngine(get_settings())
        engine.on_transition(send_to_telegram)

        async with engine:
            await engine.observe(wallet, EntityKind.CANDIDATE, event)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        db_manager: DatabaseManager | None = None,
        price_provider: PriceProvider | None = None,
        clock: Callable[[], datetime] | None = None,
        dry_run: bool | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            db_manager: Database manager. Built from settings if not provided.
            price_provider: Price lookup collaborator. Defaults to DexScreener,
                behind a Redis cache when REDIS_URL is set.
            clock: Source of "now" for cycles and queries (UTC).
            dry_run: If True, log notifications instead of sending them.
                Overrides settings.dry_run.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        self._clock = clock or (lambda: datetime.now(UTC))

        self._state = EngineState.STOPPED
        self._stats = EngineStats()

        settings = self._settings
        self._owns_db = db_manager is None
        self._db_manager = db_manager or DatabaseManager(
            settings.database.url,
            echo=settings.database.echo,
        )

        self._redis: Redis | None = None
        self._owns_price_provider = price_provider is None
        self._price_provider = price_provider or self._build_price_provider()

        self._dedup = DedupCache(
            capacity=settings.dedup.capacity,
            min_trade_notional=settings.dedup.min_trade_notional,
        )
        self._registry = EntityRegistry(
            high_volume_threshold=settings.candidate.high_volume_threshold,
            early_buyer_max_token_age_minutes=settings.candidate.early_buyer_max_token_age_minutes,
        )
        self._matcher = FifoMatcher(win_threshold_roi=settings.candidate.win_threshold_roi)
        self._aggregator = MetricsAggregator()
        self._formatter = TransitionFormatter()
        self._dispatcher = TransitionDispatcher(dry_run=self._dry_run)

        self._candidate_table = CandidateTransitionTable(
            CandidateThresholds.from_settings(settings.candidate),
            matcher=self._matcher,
            aggregator=self._aggregator,
        )
        self._signal_table = SignalSnapshotTracker.from_settings(self._price_provider, settings.signal)
        self._candidate_evaluator = self._build_evaluator(self._candidate_table)
        self._signal_evaluator = self._build_evaluator(self._signal_table)

        self._stop_event: asyncio.Event | None = None
        self._tasks: list[PeriodicTask] = []

    def _build_price_provider(self) -> PriceProvider:
        settings = self._settings
        provider: PriceProvider = DexScreenerPriceProvider(
            base_url=settings.price.dexscreener_url,
            chain_id=settings.price.chain_id,
            timeout_seconds=settings.price.timeout_seconds,
            max_requests_per_second=settings.price.max_requests_per_second,
        )
        if settings.redis.url:
            logger.debug("Caching price lookups in Redis")
            self._redis = Redis.from_url(settings.redis.url)
            provider = CachedPriceProvider(
                provider,
                self._redis,
                ttl_seconds=settings.price.cache_ttl_seconds,
            )
        return provider

    def _build_evaluator(self, table: CandidateTransitionTable | SignalSnapshotTracker) -> LifecycleEvaluator:
        return LifecycleEvaluator(
            table,
            self._db_manager,
            self._registry,
            formatter=self._formatter,
            dispatcher=self._dispatcher,
            batch_size=self._settings.evaluation_batch_size,
            batch_pause_seconds=self._settings.evaluation_batch_pause_seconds,
            clock=self._clock,
        )

    @property
    def state(self) -> EngineState:
        """Current engine state."""
        return self._state

    @property
    def stats(self) -> EngineStats:
        """Current engine statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._state == EngineState.RUNNING

    @property
    def dedup(self) -> DedupCache:
        return self._dedup

    # ------------------------------------------------------------------
    # Inbound API
    # ------------------------------------------------------------------

    async def observe(
        self,
        entity_key: str,
        kind: EntityKind | str,
        observation: ObservationEvent,
    ) -> ObserveResult:
        """Ingest a trade or price observation for an entity.

        Duplicates and immaterial trades are absorbed and reported through the
        result status. Observations for terminal entities are ignored.

        Raises:
            PersistenceError: If the observation could not be stored. The
                dedup reference is released so a retry is accepted.
        """
        kind = EntityKind(kind)
        self._stats.observations_received += 1

        admitted = self._dedup.admit(observation)
        if admitted is AdmitResult.BELOW_THRESHOLD:
            self._stats.below_threshold += 1
            return ObserveResult(
                status=ObserveStatus.BELOW_THRESHOLD,
                reason=f"Trade of {observation.amount} below materiality threshold",
            )
        if admitted is AdmitResult.DUPLICATE:
            self._stats.duplicates += 1
            return ObserveResult(status=ObserveStatus.DUPLICATE, reason="Already seen")

        try:
            result = await self._store_observation(entity_key, kind, observation)
        except SQLAlchemyError as e:
            self._dedup.discard(observation.external_ref)
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.error("Failed to store observation %s for %s: %s", observation.external_ref, entity_key, e)
            raise PersistenceError(entity_key, e) from e

        if result.status is ObserveStatus.DUPLICATE:
            self._stats.duplicates += 1
        elif result.status is ObserveStatus.FROZEN:
            self._stats.frozen += 1
        else:
            self._stats.observations_accepted += 1
        return result

    async def _store_observation(
        self,
        entity_key: str,
        kind: EntityKind,
        observation: ObservationEvent,
    ) -> ObserveResult:
        source: DiscoverySource | None = None
        reason: str | None = None
        if kind is EntityKind.CANDIDATE and observation.is_trade:
            source, reason = self._registry.classify_discovery_source(observation)

        async with self._db_manager.get_async_session() as session:
            registered = await self._registry.get_or_create(
                session,
                entity_key,
                kind,
                source,
                reason=reason,
                observed_at=observation.timestamp,
            )
            entity = registered.entity
            if registered.frozen:
                logger.debug("Ignoring observation for %s %s in status %s", kind.value.lower(), entity.key, entity.status)
                return ObserveResult(
                    status=ObserveStatus.FROZEN,
                    entity_id=entity.id,
                    reason=f"Entity is {entity.status}",
                )

            observation_id, inserted = await ObservationRepository(session).insert_if_absent(
                ObservationDTO(
                    entity_id=entity.id,
                    type=observation.type.value,
                    counterparty_token=observation.counterparty_token,
                    amount=observation.amount,
                    price=observation.price,
                    timestamp=observation.timestamp,
                    external_ref=observation.external_ref,
                )
            )
            if not inserted:
                return ObserveResult(
                    status=ObserveStatus.DUPLICATE,
                    entity_id=entity.id,
                    observation_id=observation_id,
                    reason="Already stored",
                )

            # Trades are paired by the candidate cycle once their exits settle.
            return ObserveResult(
                status=ObserveStatus.ACCEPTED,
                entity_id=entity.id,
                observation_id=observation_id,
            )

    async def record_signal(self, signal_id: str, entry_snapshot: SignalEntrySnapshot) -> RecordSignalResult:
        """Start tracking an emitted signal as PENDING.

        Recording the same ``signal_id`` again is a no-op.

        Raises:
            PersistenceError: If the signal could not be stored.
        """
        snapshot = entry_snapshot
        ticker = snapshot.token_ticker or snapshot.token_address[:8]
        try:
            async with self._db_manager.get_async_session() as session:
                registered = await self._registry.get_or_create(
                    session,
                    signal_id,
                    EntityKind.SIGNAL,
                    DiscoverySource.SIGNAL_EMITTER,
                    reason=f"{snapshot.signal_type} {snapshot.signal_strength} signal on ${ticker}",
                    observed_at=snapshot.entry_time,
                )
                entity = registered.entity
                await SignalOutcomeRepository(session).insert_if_absent(
                    SignalOutcomeDTO(
                        signal_id=entity.key,
                        entity_id=entity.id,
                        token_address=snapshot.token_address,
                        token_ticker=snapshot.token_ticker,
                        signal_type=snapshot.signal_type,
                        signal_strength=snapshot.signal_strength,
                        entry_price=snapshot.entry_price,
                        entry_market_cap=snapshot.entry_market_cap,
                        entry_metrics_json=json.dumps(snapshot.metrics, sort_keys=True),
                        entry_time=snapshot.entry_time,
                    )
                )
                if registered.created and "score" in snapshot.metrics:
                    score = max(0, min(100, round(snapshot.metric("score"))))
                    await TrackedEntityRepository(session).update_score(entity.id, score)
        except SQLAlchemyError as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.error("Failed to record signal %s: %s", signal_id, e)
            raise PersistenceError(signal_id, e) from e

        if registered.created:
            self._stats.signals_recorded += 1
            logger.info(
                "Tracking %s signal %s on $%s at %s",
                snapshot.signal_type,
                signal_id,
                ticker,
                snapshot.entry_price,
            )
        return RecordSignalResult(signal_id=entity.key, entity_id=entity.id, created=registered.created)

    def on_transition(self, callback: TransitionCallback) -> None:
        """Register an async callback receiving terminal transition messages."""
        self._dispatcher.register(callback)

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def run_signal_cycle(self, now: datetime | None = None) -> CycleReport:
        """Sample prices for pending signals and finalize those that are done."""
        report = await self._signal_evaluator.run_cycle(now)
        self._record_cycle(report)
        self._stats.signal_cycles += 1
        return report

    async def run_candidate_cycle(self, now: datetime | None = None) -> CycleReport:
        """Evaluate every monitoring candidate once."""
        report = await self._candidate_evaluator.run_cycle(now)
        self._record_cycle(report)
        self._stats.candidate_cycles += 1
        return report

    def _record_cycle(self, report: CycleReport) -> None:
        self._stats.transitions += report.transitions
        self._stats.notifications_sent += report.notifications_sent
        self._stats.errors += report.failures

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_stats(self) -> dict[str, Any]:
        """Engine counters plus persisted entity and observation totals."""
        async with self._db_manager.get_async_session() as session:
            by_status = await TrackedEntityRepository(session).count_by_status()
            observations = await ObservationRepository(session).count()
            unmatched = await ObservationRepository(session).count_unmatched_exits()
            rounds = await MatchedRoundRepository(session).count()
            evaluations = await EvaluationResultRepository(session).count()

        stats = self._stats
        return {
            "state": self._state.value,
            "started_at": stats.started_at.isoformat() if stats.started_at else None,
            "entities": by_status,
            "observations": observations,
            "unmatched_exits": unmatched,
            "matched_rounds": rounds,
            "evaluations": evaluations,
            "dedup_cache_size": len(self._dedup),
            "dedup_evictions": self._dedup.evictions,
            "session": {
                "observations_received": stats.observations_received,
                "observations_accepted": stats.observations_accepted,
                "duplicates": stats.duplicates,
                "below_threshold": stats.below_threshold,
                "frozen": stats.frozen,
                "signals_recorded": stats.signals_recorded,
                "signal_cycles": stats.signal_cycles,
                "candidate_cycles": stats.candidate_cycles,
                "transitions": stats.transitions,
                "notifications_sent": stats.notifications_sent,
                "errors": stats.errors,
            },
        }

    async def get_metrics(self, entity_id: int, window_days: int | None = None) -> RollingMetricsDTO:
        """Compute current rolling metrics for an entity without persisting them."""
        window = window_days or self._settings.candidate.evaluation_window_days
        async with self._db_manager.get_async_session() as session:
            return await self._aggregator.compute(session, entity_id, window, as_of=self._clock())

    async def get_evaluation_history(self, entity_id: int, limit: int = 50) -> list[EvaluationResultDTO]:
        """Most recent evaluation results for an entity, newest first."""
        async with self._db_manager.get_async_session() as session:
            return await EvaluationResultRepository(session).list_for_entity(entity_id, limit=limit)

    async def get_signal_performance(self, hours: int = 168) -> SignalPerformanceStats:
        """Outcome statistics for signals emitted in the last ``hours``."""
        since = self._clock() - timedelta(hours=hours)
        async with self._db_manager.get_async_session() as session:
            return await self._aggregator.signal_performance(session, since=since)

    async def get_top_candidates(self, limit: int = 10) -> list[tuple[TrackedEntityDTO, RollingMetricsDTO]]:
        """Candidates ranked by diagnostic score."""
        async with self._db_manager.get_async_session() as session:
            return await self._aggregator.top_entities(
                session,
                kind=EntityKind.CANDIDATE.value,
                window_days=self._settings.candidate.evaluation_window_days,
                min_rounds=self._settings.candidate.top_candidates_min_trades,
                limit=limit,
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init_schema(self) -> None:
        """Create all tables that do not exist yet."""
        await self._db_manager.init_schema_async()

    async def start(self) -> None:
        """Start the periodic signal and candidate cycles.

        Raises:
            RuntimeError: If the engine is already running.
        """
        if self._state != EngineState.STOPPED:
            raise RuntimeError(f"Cannot start engine in state {self._state}")

        self._state = EngineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting lifecycle engine...")

        try:
            self._tasks = [
                PeriodicTask(
                    "signal-tracker",
                    self._settings.signal.interval_seconds,
                    self.run_signal_cycle,
                ),
                PeriodicTask(
                    "candidate-evaluator",
                    self._settings.candidate.interval_seconds,
                    self.run_candidate_cycle,
                ),
            ]
            for task in self._tasks:
                await task.start()
            self._stats.started_at = datetime.now(UTC)
            self._state = EngineState.RUNNING
            logger.info(
                "Lifecycle engine started (signals every %ds, candidates every %ds%s)",
                self._settings.signal.interval_seconds,
                self._settings.candidate.interval_seconds,
                ", dry run" if self._dry_run else "",
            )
        except Exception as e:
            self._state = EngineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start lifecycle engine: %s", e)
            await self._stop_tasks()
            raise

    async def stop(self) -> None:
        """Stop the periodic cycles and release connections."""
        if self._state == EngineState.STOPPED:
            return

        self._state = EngineState.STOPPING
        logger.info("Stopping lifecycle engine...")
        if self._stop_event:
            self._stop_event.set()

        await self._stop_tasks()
        await self.close()

        self._state = EngineState.STOPPED
        logger.info("Lifecycle engine stopped")

    async def _stop_tasks(self) -> None:
        for task in self._tasks:
            await task.stop()
        self._tasks = []

    async def close(self) -> None:
        """Release resources owned by the engine."""
        if self._owns_price_provider:
            close = getattr(self._price_provider, "close", None)
            if close is not None:
                await close()
        if self._redis:
            await self._redis.aclose()
            self._redis = None
        if self._owns_db:
            await self._db_manager.dispose_async()
        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start the engine and run until interrupted."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> LifecycleEngine:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()
