"""Repository pattern implementations for data access.

This module provides data access abstractions for tracked entities,
observations, matched rounds, rolling metrics, evaluation results and
signal outcomes. Every mutation is a single statement so that a cancelled
cycle never leaves a partial write behind.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from memecoin_lifecycle_tracker.storage.models import (
    EvaluationResultModel,
    MatchedRoundModel,
    ObservationModel,
    RollingMetricsModel,
    SignalOutcomeModel,
    TrackedEntityModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

SIGNAL_RETURN_COLUMNS = {1: "return_1h", 4: "return_4h", 24: "return_24h"}

# UPDATEs use synchronize_session=False: in-session objects are refreshed from
# the database instead of evaluating WHERE clauses in Python, where SQLite's
# naive datetimes would not compare against aware ones.
_NO_SYNC = {"synchronize_session": False}
_FRESH = {"populate_existing": True}


def _insert_for(session: AsyncSession, model: type[Any]) -> Any:
    """Return a dialect-specific INSERT supporting ON CONFLICT."""
    bind = session.get_bind()
    if bind.dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


def _utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on round-trip; stored values are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _dec(value: Decimal | float | int | None) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ============================================================================
# Tracked entities
# ============================================================================


@dataclass
class TrackedEntityDTO:
    """Data transfer object for tracked entities."""

    id: int
    kind: str
    key: str
    status: str
    last_observed_at: datetime
    created_at: datetime
    discovery_source: str | None = None
    discovery_reason: str | None = None
    score: int | None = None
    status_reason: str | None = None
    status_changed_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TrackedEntityModel) -> TrackedEntityDTO:
        return cls(
            id=model.id,
            kind=model.kind,
            key=model.key,
            status=model.status,
            last_observed_at=_utc(model.last_observed_at),  # type: ignore[arg-type]
            created_at=_utc(model.created_at),  # type: ignore[arg-type]
            discovery_source=model.discovery_source,
            discovery_reason=model.discovery_reason,
            score=model.score,
            status_reason=model.status_reason,
            status_changed_at=_utc(model.status_changed_at),
        )


class TrackedEntityRepository:
    """Repository for tracked entities."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, entity_id: int) -> TrackedEntityDTO | None:
        result = await self.session.execute(
            select(TrackedEntityModel).execution_options(**_FRESH).where(TrackedEntityModel.id == entity_id)
        )
        model = result.scalar_one_or_none()
        return TrackedEntityDTO.from_model(model) if model else None

    async def get_by_key(self, kind: str, key: str) -> TrackedEntityDTO | None:
        result = await self.session.execute(
            select(TrackedEntityModel).execution_options(**_FRESH).where(
                (TrackedEntityModel.kind == kind) & (TrackedEntityModel.key == key)
            )
        )
        model = result.scalar_one_or_none()
        return TrackedEntityDTO.from_model(model) if model else None

    async def insert_if_absent(
        self,
        *,
        kind: str,
        key: str,
        status: str,
        observed_at: datetime,
        discovery_source: str | None = None,
        discovery_reason: str | None = None,
    ) -> bool:
        """Insert a new entity unless (kind, key) exists. Returns True if inserted."""
        now = datetime.now(UTC)
        stmt = _insert_for(self.session, TrackedEntityModel).values(
            kind=kind,
            key=key,
            status=status,
            discovery_source=discovery_source,
            discovery_reason=discovery_reason,
            created_at=now,
            last_observed_at=observed_at,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["kind", "key"])
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def touch(
        self,
        *,
        kind: str,
        key: str,
        observed_at: datetime,
        frozen_statuses: Iterable[str],
    ) -> bool:
        """Advance last_observed_at unless the entity is frozen or already newer."""
        stmt = (
            update(TrackedEntityModel)
            .execution_options(**_NO_SYNC)
            .where(
                (TrackedEntityModel.kind == kind)
                & (TrackedEntityModel.key == key)
                & (TrackedEntityModel.status.not_in(list(frozen_statuses)))
                & (TrackedEntityModel.last_observed_at < observed_at)
            )
            .values(last_observed_at=observed_at)
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def compare_and_set_status(
        self,
        entity_id: int,
        *,
        from_status: str,
        to_status: str,
        reason: str,
        at: datetime,
        score: int | None = None,
    ) -> bool:
        """Move an entity between statuses only if it is still in ``from_status``."""
        values: dict[str, Any] = {
            "status": to_status,
            "status_reason": reason,
            "status_changed_at": at,
        }
        if score is not None:
            values["score"] = score
        stmt = (
            update(TrackedEntityModel)
            .execution_options(**_NO_SYNC)
            .where((TrackedEntityModel.id == entity_id) & (TrackedEntityModel.status == from_status))
            .values(**values)
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def update_score(self, entity_id: int, score: int) -> None:
        await self.session.execute(
            update(TrackedEntityModel)
            .execution_options(**_NO_SYNC)
            .where(TrackedEntityModel.id == entity_id)
            .values(score=score)
        )

    async def list_by_status(self, kind: str, statuses: Iterable[str]) -> list[TrackedEntityDTO]:
        result = await self.session.execute(
            select(TrackedEntityModel).execution_options(**_FRESH)
            .where((TrackedEntityModel.kind == kind) & (TrackedEntityModel.status.in_(list(statuses))))
            .order_by(TrackedEntityModel.id.asc())
        )
        return [TrackedEntityDTO.from_model(m) for m in result.scalars().all()]

    async def count_by_status(self) -> dict[str, dict[str, int]]:
        """Return {kind: {status: count}}."""
        result = await self.session.execute(
            select(TrackedEntityModel.kind, TrackedEntityModel.status, func.count())
            .group_by(TrackedEntityModel.kind, TrackedEntityModel.status)
        )
        counts: dict[str, dict[str, int]] = {}
        for kind, status, count in result.all():
            counts.setdefault(kind, {})[status] = int(count)
        return counts


# ============================================================================
# Observations
# ============================================================================


@dataclass
class ObservationDTO:
    """Data transfer object for observations."""

    entity_id: int
    type: str
    counterparty_token: str
    amount: Decimal
    timestamp: datetime
    external_ref: str
    price: Decimal | None = None
    id: int | None = None

    @classmethod
    def from_model(cls, model: ObservationModel) -> ObservationDTO:
        return cls(
            id=model.id,
            entity_id=model.entity_id,
            type=model.type,
            counterparty_token=model.counterparty_token,
            amount=_dec(model.amount),  # type: ignore[arg-type]
            price=_dec(model.price),
            timestamp=_utc(model.timestamp),  # type: ignore[arg-type]
            external_ref=model.external_ref,
        )


class ObservationRepository:
    """Repository for observations (idempotent by external_ref)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(self, dto: ObservationDTO) -> tuple[int, bool]:
        """Insert unless external_ref exists.

        Returns:
            (observation id, True if this call inserted the row).
        """
        stmt = _insert_for(self.session, ObservationModel).values(
            entity_id=dto.entity_id,
            type=dto.type,
            counterparty_token=dto.counterparty_token,
            amount=dto.amount,
            price=dto.price,
            timestamp=dto.timestamp,
            external_ref=dto.external_ref,
            created_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["external_ref"])
        result = await self.session.execute(stmt)
        inserted = bool(result.rowcount)
        id_result = await self.session.execute(
            select(ObservationModel.id).where(ObservationModel.external_ref == dto.external_ref)
        )
        return int(id_result.scalar_one()), inserted

    async def get_by_external_ref(self, external_ref: str) -> ObservationDTO | None:
        result = await self.session.execute(
            select(ObservationModel).where(ObservationModel.external_ref == external_ref)
        )
        model = result.scalar_one_or_none()
        return ObservationDTO.from_model(model) if model else None

    async def list_unconsumed_entries(self, entity_id: int, counterparty_token: str) -> list[ObservationDTO]:
        """BUY observations not yet consumed by a matched round, oldest first."""
        consumed = select(MatchedRoundModel.entry_observation_id)
        result = await self.session.execute(
            select(ObservationModel)
            .where(
                (ObservationModel.entity_id == entity_id)
                & (ObservationModel.counterparty_token == counterparty_token)
                & (ObservationModel.type == "BUY")
                & (ObservationModel.id.not_in(consumed))
            )
            .order_by(ObservationModel.timestamp.asc(), ObservationModel.id.asc())
        )
        return [ObservationDTO.from_model(m) for m in result.scalars().all()]

    async def list_unmatched_exits(self, entity_id: int, counterparty_token: str) -> list[ObservationDTO]:
        """SELL observations without a matched round, oldest first."""
        matched = select(MatchedRoundModel.exit_observation_id)
        result = await self.session.execute(
            select(ObservationModel)
            .where(
                (ObservationModel.entity_id == entity_id)
                & (ObservationModel.counterparty_token == counterparty_token)
                & (ObservationModel.type == "SELL")
                & (ObservationModel.id.not_in(matched))
            )
            .order_by(ObservationModel.timestamp.asc(), ObservationModel.id.asc())
        )
        return [ObservationDTO.from_model(m) for m in result.scalars().all()]

    async def list_tokens_with_unmatched_exits(self, entity_id: int) -> list[str]:
        matched = select(MatchedRoundModel.exit_observation_id)
        result = await self.session.execute(
            select(ObservationModel.counterparty_token)
            .where(
                (ObservationModel.entity_id == entity_id)
                & (ObservationModel.type == "SELL")
                & (ObservationModel.id.not_in(matched))
            )
            .distinct()
            .order_by(ObservationModel.counterparty_token.asc())
        )
        return [row[0] for row in result.all()]

    async def count_unmatched_exits(self, entity_id: int | None = None) -> int:
        matched = select(MatchedRoundModel.exit_observation_id)
        stmt = (
            select(func.count())
            .select_from(ObservationModel)
            .where((ObservationModel.type == "SELL") & (ObservationModel.id.not_in(matched)))
        )
        if entity_id is not None:
            stmt = stmt.where(ObservationModel.entity_id == entity_id)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def list_trades_in_window(
        self,
        entity_id: int,
        *,
        since: datetime,
        until: datetime,
    ) -> list[ObservationDTO]:
        """BUY/SELL observations within [since, until], oldest first."""
        result = await self.session.execute(
            select(ObservationModel)
            .where(
                (ObservationModel.entity_id == entity_id)
                & (ObservationModel.type.in_(("BUY", "SELL")))
                & (ObservationModel.timestamp >= since)
                & (ObservationModel.timestamp <= until)
            )
            .order_by(ObservationModel.timestamp.asc(), ObservationModel.id.asc())
        )
        return [ObservationDTO.from_model(m) for m in result.scalars().all()]

    async def count(self, *, entity_id: int | None = None, type: str | None = None) -> int:
        stmt = select(func.count()).select_from(ObservationModel)
        if entity_id is not None:
            stmt = stmt.where(ObservationModel.entity_id == entity_id)
        if type is not None:
            stmt = stmt.where(ObservationModel.type == type)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())


# ============================================================================
# Matched rounds
# ============================================================================


@dataclass
class MatchedRoundDTO:
    """Data transfer object for matched rounds."""

    entity_id: int
    counterparty_token: str
    entry_observation_id: int
    exit_observation_id: int
    entry_value: Decimal
    exit_value: Decimal
    entry_time: datetime
    exit_time: datetime
    roi_percent: Decimal
    hold_duration_seconds: int
    is_win: bool
    id: int | None = None

    @property
    def profit(self) -> Decimal:
        return self.exit_value - self.entry_value

    @classmethod
    def from_model(cls, model: MatchedRoundModel) -> MatchedRoundDTO:
        return cls(
            id=model.id,
            entity_id=model.entity_id,
            counterparty_token=model.counterparty_token,
            entry_observation_id=model.entry_observation_id,
            exit_observation_id=model.exit_observation_id,
            entry_value=_dec(model.entry_value),  # type: ignore[arg-type]
            exit_value=_dec(model.exit_value),  # type: ignore[arg-type]
            entry_time=_utc(model.entry_time),  # type: ignore[arg-type]
            exit_time=_utc(model.exit_time),  # type: ignore[arg-type]
            roi_percent=_dec(model.roi_percent),  # type: ignore[arg-type]
            hold_duration_seconds=model.hold_duration_seconds,
            is_win=bool(model.is_win),
        )


class MatchedRoundRepository:
    """Repository for matched rounds (insert-only)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(self, dto: MatchedRoundDTO) -> bool:
        """Insert a round unless its entry or exit is already paired.

        Returns True if the round was inserted.
        """
        stmt = _insert_for(self.session, MatchedRoundModel).values(
            entity_id=dto.entity_id,
            counterparty_token=dto.counterparty_token,
            entry_observation_id=dto.entry_observation_id,
            exit_observation_id=dto.exit_observation_id,
            entry_value=dto.entry_value,
            exit_value=dto.exit_value,
            entry_time=dto.entry_time,
            exit_time=dto.exit_time,
            roi_percent=dto.roi_percent,
            hold_duration_seconds=dto.hold_duration_seconds,
            is_win=dto.is_win,
            created_at=datetime.now(UTC),
        )
        # No conflict target: either unique constraint (entry or exit) absorbs the race.
        stmt = stmt.on_conflict_do_nothing()
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def list_for_entity(
        self,
        entity_id: int,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[MatchedRoundDTO]:
        stmt = select(MatchedRoundModel).where(MatchedRoundModel.entity_id == entity_id)
        if since is not None:
            stmt = stmt.where(MatchedRoundModel.exit_time >= since)
        if until is not None:
            stmt = stmt.where(MatchedRoundModel.exit_time <= until)
        stmt = stmt.order_by(MatchedRoundModel.exit_time.asc(), MatchedRoundModel.id.asc())
        result = await self.session.execute(stmt)
        return [MatchedRoundDTO.from_model(m) for m in result.scalars().all()]

    async def count(self, *, entity_id: int | None = None) -> int:
        stmt = select(func.count()).select_from(MatchedRoundModel)
        if entity_id is not None:
            stmt = stmt.where(MatchedRoundModel.entity_id == entity_id)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())


# ============================================================================
# Rolling metrics
# ============================================================================


@dataclass
class RollingMetricsDTO:
    """Data transfer object for rolling metrics."""

    entity_id: int
    window_days: int
    total_rounds: int
    wins: int
    losses: int
    win_rate: Decimal
    avg_roi: Decimal
    total_profit: Decimal
    unique_counterparties: int
    consistency_score: Decimal
    avg_hold_hours: Decimal
    largest_win_roi: Decimal
    largest_loss_roi: Decimal
    avg_entry_size: Decimal
    computed_at: datetime

    @classmethod
    def from_model(cls, model: RollingMetricsModel) -> RollingMetricsDTO:
        return cls(
            entity_id=model.entity_id,
            window_days=model.window_days,
            total_rounds=model.total_rounds,
            wins=model.wins,
            losses=model.losses,
            win_rate=_dec(model.win_rate),  # type: ignore[arg-type]
            avg_roi=_dec(model.avg_roi),  # type: ignore[arg-type]
            total_profit=_dec(model.total_profit),  # type: ignore[arg-type]
            unique_counterparties=model.unique_counterparties,
            consistency_score=_dec(model.consistency_score),  # type: ignore[arg-type]
            avg_hold_hours=_dec(model.avg_hold_hours),  # type: ignore[arg-type]
            largest_win_roi=_dec(model.largest_win_roi),  # type: ignore[arg-type]
            largest_loss_roi=_dec(model.largest_loss_roi),  # type: ignore[arg-type]
            avg_entry_size=_dec(model.avg_entry_size),  # type: ignore[arg-type]
            computed_at=_utc(model.computed_at),  # type: ignore[arg-type]
        )


_METRIC_COLUMNS = (
    "total_rounds",
    "wins",
    "losses",
    "win_rate",
    "avg_roi",
    "total_profit",
    "unique_counterparties",
    "consistency_score",
    "avg_hold_hours",
    "largest_win_roi",
    "largest_loss_roi",
    "avg_entry_size",
    "computed_at",
)


class RollingMetricsRepository:
    """Repository for rolling metrics (whole-row upsert only)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, dto: RollingMetricsDTO) -> RollingMetricsDTO:
        values = {"entity_id": dto.entity_id, "window_days": dto.window_days}
        values.update({name: getattr(dto, name) for name in _METRIC_COLUMNS})
        stmt = _insert_for(self.session, RollingMetricsModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["entity_id", "window_days"],
            set_={name: getattr(stmt.excluded, name) for name in _METRIC_COLUMNS},
        )
        await self.session.execute(stmt)
        return dto

    async def get(self, entity_id: int, window_days: int) -> RollingMetricsDTO | None:
        result = await self.session.execute(
            select(RollingMetricsModel).execution_options(**_FRESH).where(
                (RollingMetricsModel.entity_id == entity_id) & (RollingMetricsModel.window_days == window_days)
            )
        )
        model = result.scalar_one_or_none()
        return RollingMetricsDTO.from_model(model) if model else None

    async def list_ranked(
        self,
        *,
        kind: str,
        window_days: int,
        min_rounds: int,
        limit: int,
    ) -> list[tuple[TrackedEntityDTO, RollingMetricsDTO]]:
        """Entities of ``kind`` with enough rounds, best score first."""
        result = await self.session.execute(
            select(TrackedEntityModel, RollingMetricsModel).execution_options(**_FRESH)
            .join(RollingMetricsModel, RollingMetricsModel.entity_id == TrackedEntityModel.id)
            .where(
                (TrackedEntityModel.kind == kind)
                & (RollingMetricsModel.window_days == window_days)
                & (RollingMetricsModel.total_rounds >= min_rounds)
            )
            .order_by(
                sa.func.coalesce(TrackedEntityModel.score, -1).desc(),
                RollingMetricsModel.total_profit.desc(),
                TrackedEntityModel.id.asc(),
            )
            .limit(limit)
        )
        return [
            (TrackedEntityDTO.from_model(entity), RollingMetricsDTO.from_model(metrics))
            for entity, metrics in result.all()
        ]


# ============================================================================
# Evaluation results
# ============================================================================


@dataclass
class EvaluationResultDTO:
    """Data transfer object for the evaluation audit trail."""

    entity_id: int
    timestamp: datetime
    score: int
    decision: str
    previous_status: str
    new_status: str
    reason: str
    id: int | None = None

    @classmethod
    def from_model(cls, model: EvaluationResultModel) -> EvaluationResultDTO:
        return cls(
            id=model.id,
            entity_id=model.entity_id,
            timestamp=_utc(model.timestamp),  # type: ignore[arg-type]
            score=model.score,
            decision=model.decision,
            previous_status=model.previous_status,
            new_status=model.new_status,
            reason=model.reason,
        )


class EvaluationResultRepository:
    """Repository for the append-only evaluation audit trail."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(self, dto: EvaluationResultDTO) -> EvaluationResultDTO:
        model = EvaluationResultModel(
            entity_id=dto.entity_id,
            timestamp=dto.timestamp,
            score=dto.score,
            decision=dto.decision,
            previous_status=dto.previous_status,
            new_status=dto.new_status,
            reason=dto.reason,
        )
        self.session.add(model)
        await self.session.flush()
        dto.id = model.id
        return dto

    async def list_for_entity(self, entity_id: int, *, limit: int = 50) -> list[EvaluationResultDTO]:
        """Most recent evaluations first."""
        result = await self.session.execute(
            select(EvaluationResultModel)
            .where(EvaluationResultModel.entity_id == entity_id)
            .order_by(EvaluationResultModel.timestamp.desc(), EvaluationResultModel.id.desc())
            .limit(limit)
        )
        return [EvaluationResultDTO.from_model(m) for m in result.scalars().all()]

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(EvaluationResultModel))
        return int(result.scalar_one())


# ============================================================================
# Signal outcomes
# ============================================================================


@dataclass
class SignalOutcomeDTO:
    """Data transfer object for signal outcomes."""

    signal_id: str
    entity_id: int
    token_address: str
    entry_price: Decimal
    entry_time: datetime
    signal_type: str = "BUY"
    signal_strength: str = "MEDIUM"
    token_ticker: str | None = None
    entry_market_cap: Decimal = Decimal("0")
    entry_metrics_json: str = "{}"
    return_1h: Decimal | None = None
    return_4h: Decimal | None = None
    return_24h: Decimal | None = None
    max_return: Decimal | None = None
    min_return: Decimal | None = None
    last_return: Decimal | None = None
    final_return: Decimal | None = None
    hit_stop_loss: bool = False
    hit_take_profit: bool = False
    final_outcome: str = "PENDING"
    finalized_at: datetime | None = None

    def interval_return(self, hours: int) -> Decimal | None:
        return getattr(self, SIGNAL_RETURN_COLUMNS[hours])

    @classmethod
    def from_model(cls, model: SignalOutcomeModel) -> SignalOutcomeDTO:
        return cls(
            signal_id=model.signal_id,
            entity_id=model.entity_id,
            token_address=model.token_address,
            token_ticker=model.token_ticker,
            signal_type=model.signal_type,
            signal_strength=model.signal_strength,
            entry_price=_dec(model.entry_price),  # type: ignore[arg-type]
            entry_market_cap=_dec(model.entry_market_cap),  # type: ignore[arg-type]
            entry_metrics_json=model.entry_metrics_json,
            entry_time=_utc(model.entry_time),  # type: ignore[arg-type]
            return_1h=_dec(model.return_1h),
            return_4h=_dec(model.return_4h),
            return_24h=_dec(model.return_24h),
            max_return=_dec(model.max_return),
            min_return=_dec(model.min_return),
            last_return=_dec(model.last_return),
            final_return=_dec(model.final_return),
            hit_stop_loss=bool(model.hit_stop_loss),
            hit_take_profit=bool(model.hit_take_profit),
            final_outcome=model.final_outcome,
            finalized_at=_utc(model.finalized_at),
        )


class SignalOutcomeRepository:
    """Repository for signal outcomes."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(self, dto: SignalOutcomeDTO) -> bool:
        now = datetime.now(UTC)
        stmt = _insert_for(self.session, SignalOutcomeModel).values(
            signal_id=dto.signal_id,
            entity_id=dto.entity_id,
            token_address=dto.token_address,
            token_ticker=dto.token_ticker,
            signal_type=dto.signal_type,
            signal_strength=dto.signal_strength,
            entry_price=dto.entry_price,
            entry_market_cap=dto.entry_market_cap,
            entry_metrics_json=dto.entry_metrics_json,
            entry_time=dto.entry_time,
            hit_stop_loss=False,
            hit_take_profit=False,
            final_outcome="PENDING",
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["signal_id"])
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def get(self, signal_id: str) -> SignalOutcomeDTO | None:
        result = await self.session.execute(
            select(SignalOutcomeModel)
            .execution_options(**_FRESH)
            .where(SignalOutcomeModel.signal_id == signal_id)
        )
        model = result.scalar_one_or_none()
        return SignalOutcomeDTO.from_model(model) if model else None

    async def get_by_entity(self, entity_id: int) -> SignalOutcomeDTO | None:
        result = await self.session.execute(
            select(SignalOutcomeModel)
            .execution_options(**_FRESH)
            .where(SignalOutcomeModel.entity_id == entity_id)
        )
        model = result.scalar_one_or_none()
        return SignalOutcomeDTO.from_model(model) if model else None

    async def record_interval_return(self, signal_id: str, hours: int, value: Decimal) -> bool:
        """Write return_<hours>h once. Returns True if this call wrote it."""
        column = getattr(SignalOutcomeModel, SIGNAL_RETURN_COLUMNS[hours])
        stmt = (
            update(SignalOutcomeModel)
            .execution_options(**_NO_SYNC)
            .where((SignalOutcomeModel.signal_id == signal_id) & (column.is_(None)))
            .values({column: value, SignalOutcomeModel.updated_at: datetime.now(UTC)})
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def record_sample(self, signal_id: str, value: Decimal) -> None:
        """Update last/max/min return in one statement."""
        max_col = SignalOutcomeModel.max_return
        min_col = SignalOutcomeModel.min_return
        stmt = (
            update(SignalOutcomeModel)
            .execution_options(**_NO_SYNC)
            .where(SignalOutcomeModel.signal_id == signal_id)
            .values(
                last_return=value,
                max_return=sa.case((max_col.is_(None) | (max_col < value), value), else_=max_col),
                min_return=sa.case((min_col.is_(None) | (min_col > value), value), else_=min_col),
                updated_at=datetime.now(UTC),
            )
        )
        await self.session.execute(stmt)

    async def finalize(
        self,
        signal_id: str,
        *,
        outcome: str,
        final_return: Decimal | None,
        hit_stop_loss: bool,
        hit_take_profit: bool,
        at: datetime,
    ) -> bool:
        """Finalize a pending signal. Returns False if it was already final."""
        stmt = (
            update(SignalOutcomeModel)
            .execution_options(**_NO_SYNC)
            .where((SignalOutcomeModel.signal_id == signal_id) & (SignalOutcomeModel.final_outcome == "PENDING"))
            .values(
                final_outcome=outcome,
                final_return=final_return,
                hit_stop_loss=hit_stop_loss,
                hit_take_profit=hit_take_profit,
                finalized_at=at,
                updated_at=datetime.now(UTC),
            )
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def list_since(self, since: datetime) -> list[SignalOutcomeDTO]:
        result = await self.session.execute(
            select(SignalOutcomeModel).execution_options(**_FRESH)
            .where(SignalOutcomeModel.entry_time >= since)
            .order_by(SignalOutcomeModel.entry_time.asc())
        )
        return [SignalOutcomeDTO.from_model(m) for m in result.scalars().all()]
