"""SQLAlchemy models for persistent storage.

This module defines the database schema for tracked entities (signals and
candidate wallets), their observations, matched trade rounds, rolling
metrics, the evaluation audit trail and signal outcomes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TrackedEntityModel(Base):
    """A tracked signal or candidate wallet. One row per (kind, key)."""

    __tablename__ = "tracked_entities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # SIGNAL | CANDIDATE
    key: Mapped[str] = mapped_column(String(128), nullable=False)  # wallet address or signal id
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    discovery_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    discovery_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    last_observed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("kind", "key", name="uq_tracked_entities_kind_key"),
        Index("idx_tracked_entities_kind_status", "kind", "status"),
        Index("idx_tracked_entities_last_observed", "last_observed_at"),
    )


class ObservationModel(Base):
    """A single timestamped trade or price event for an entity."""

    __tablename__ = "observations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # BUY | SELL | PRICE_SNAPSHOT
    counterparty_token: Mapped[str] = mapped_column(String(64), nullable=False)

    # Trade notional in quote units; market cap for price snapshots.
    amount: Mapped[Decimal] = mapped_column(Numeric(30, 9), nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    external_ref: Mapped[str] = mapped_column(String(160), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("external_ref", name="uq_observations_external_ref"),
        Index("idx_observations_entity_token_type", "entity_id", "counterparty_token", "type"),
        Index("idx_observations_entity_ts", "entity_id", "timestamp"),
    )


class MatchedRoundModel(Base):
    """A FIFO-paired entry/exit with its realized return. Immutable."""

    __tablename__ = "matched_rounds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    counterparty_token: Mapped[str] = mapped_column(String(64), nullable=False)

    entry_observation_id: Mapped[int] = mapped_column(Integer, nullable=False)
    exit_observation_id: Mapped[int] = mapped_column(Integer, nullable=False)
    entry_value: Mapped[Decimal] = mapped_column(Numeric(30, 9), nullable=False)
    exit_value: Mapped[Decimal] = mapped_column(Numeric(30, 9), nullable=False)
    entry_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    exit_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    roi_percent: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    hold_duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    is_win: Mapped[bool] = mapped_column(Boolean, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("entry_observation_id", name="uq_matched_rounds_entry"),
        UniqueConstraint("exit_observation_id", name="uq_matched_rounds_exit"),
        Index("idx_matched_rounds_entity_exit_time", "entity_id", "exit_time"),
    )


class RollingMetricsModel(Base):
    """Windowed statistics for an entity, always a full recomputation."""

    __tablename__ = "rolling_metrics"

    entity_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    window_days: Mapped[int] = mapped_column(Integer, primary_key=True)

    total_rounds: Mapped[int] = mapped_column(Integer, nullable=False)
    wins: Mapped[int] = mapped_column(Integer, nullable=False)
    losses: Mapped[int] = mapped_column(Integer, nullable=False)
    win_rate: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    avg_roi: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    total_profit: Mapped[Decimal] = mapped_column(Numeric(30, 9), nullable=False)
    unique_counterparties: Mapped[int] = mapped_column(Integer, nullable=False)
    consistency_score: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)

    avg_hold_hours: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    largest_win_roi: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    largest_loss_roi: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    avg_entry_size: Mapped[Decimal] = mapped_column(Numeric(30, 9), nullable=False)

    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class EvaluationResultModel(Base):
    """Append-only audit trail of lifecycle decisions."""

    __tablename__ = "evaluation_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    decision: Mapped[str] = mapped_column(String(16), nullable=False)
    previous_status: Mapped[str] = mapped_column(String(16), nullable=False)
    new_status: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("idx_evaluation_results_entity_ts", "entity_id", "timestamp"),
        Index("idx_evaluation_results_decision", "decision"),
    )


class SignalOutcomeModel(Base):
    """Tracked outcome of an emitted trade signal."""

    __tablename__ = "signal_outcomes"

    signal_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    token_address: Mapped[str] = mapped_column(String(64), nullable=False)
    token_ticker: Mapped[str | None] = mapped_column(String(32), nullable=True)
    signal_type: Mapped[str] = mapped_column(String(32), nullable=False)
    signal_strength: Mapped[str] = mapped_column(String(16), nullable=False)

    entry_price: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    entry_market_cap: Mapped[Decimal] = mapped_column(Numeric(30, 2), nullable=False)
    entry_metrics_json: Mapped[str] = mapped_column(Text, nullable=False)
    entry_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Each written at most once (first writer wins).
    return_1h: Mapped[Decimal | None] = mapped_column(Numeric(20, 6), nullable=True)
    return_4h: Mapped[Decimal | None] = mapped_column(Numeric(20, 6), nullable=True)
    return_24h: Mapped[Decimal | None] = mapped_column(Numeric(20, 6), nullable=True)

    max_return: Mapped[Decimal | None] = mapped_column(Numeric(20, 6), nullable=True)
    min_return: Mapped[Decimal | None] = mapped_column(Numeric(20, 6), nullable=True)
    last_return: Mapped[Decimal | None] = mapped_column(Numeric(20, 6), nullable=True)
    final_return: Mapped[Decimal | None] = mapped_column(Numeric(20, 6), nullable=True)

    hit_stop_loss: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hit_take_profit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    final_outcome: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        UniqueConstraint("entity_id", name="uq_signal_outcomes_entity"),
        Index("idx_signal_outcomes_outcome", "final_outcome"),
        Index("idx_signal_outcomes_entry_time", "entry_time"),
    )
