"""Initial schema for tracked entities, observations, rounds, metrics and outcomes.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tracked entities (signals and candidate wallets)
    op.create_table(
        "tracked_entities",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("discovery_source", sa.String(32), nullable=True),
        sa.Column("discovery_reason", sa.Text(), nullable=True),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("status_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_observed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("kind", "key", name="uq_tracked_entities_kind_key"),
    )
    op.create_index("idx_tracked_entities_kind_status", "tracked_entities", ["kind", "status"])
    op.create_index("idx_tracked_entities_last_observed", "tracked_entities", ["last_observed_at"])

    # Observations
    op.create_table(
        "observations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("counterparty_token", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(30, 9), nullable=False),
        sa.Column("price", sa.Numeric(38, 18), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("external_ref", sa.String(160), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_ref", name="uq_observations_external_ref"),
    )
    op.create_index(
        "idx_observations_entity_token_type",
        "observations",
        ["entity_id", "counterparty_token", "type"],
    )
    op.create_index("idx_observations_entity_ts", "observations", ["entity_id", "timestamp"])

    # Matched rounds
    op.create_table(
        "matched_rounds",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("counterparty_token", sa.String(64), nullable=False),
        sa.Column("entry_observation_id", sa.Integer(), nullable=False),
        sa.Column("exit_observation_id", sa.Integer(), nullable=False),
        sa.Column("entry_value", sa.Numeric(30, 9), nullable=False),
        sa.Column("exit_value", sa.Numeric(30, 9), nullable=False),
        sa.Column("entry_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("exit_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("roi_percent", sa.Numeric(20, 6), nullable=False),
        sa.Column("hold_duration_seconds", sa.Integer(), nullable=False),
        sa.Column("is_win", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entry_observation_id", name="uq_matched_rounds_entry"),
        sa.UniqueConstraint("exit_observation_id", name="uq_matched_rounds_exit"),
    )
    op.create_index(
        "idx_matched_rounds_entity_exit_time",
        "matched_rounds",
        ["entity_id", "exit_time"],
    )

    # Rolling metrics
    op.create_table(
        "rolling_metrics",
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("window_days", sa.Integer(), nullable=False),
        sa.Column("total_rounds", sa.Integer(), nullable=False),
        sa.Column("wins", sa.Integer(), nullable=False),
        sa.Column("losses", sa.Integer(), nullable=False),
        sa.Column("win_rate", sa.Numeric(8, 6), nullable=False),
        sa.Column("avg_roi", sa.Numeric(20, 6), nullable=False),
        sa.Column("total_profit", sa.Numeric(30, 9), nullable=False),
        sa.Column("unique_counterparties", sa.Integer(), nullable=False),
        sa.Column("consistency_score", sa.Numeric(20, 6), nullable=False),
        sa.Column("avg_hold_hours", sa.Numeric(20, 6), nullable=False),
        sa.Column("largest_win_roi", sa.Numeric(20, 6), nullable=False),
        sa.Column("largest_loss_roi", sa.Numeric(20, 6), nullable=False),
        sa.Column("avg_entry_size", sa.Numeric(30, 9), nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("entity_id", "window_days"),
    )

    # Evaluation audit trail
    op.create_table(
        "evaluation_results",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("decision", sa.String(16), nullable=False),
        sa.Column("previous_status", sa.String(16), nullable=False),
        sa.Column("new_status", sa.String(16), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_evaluation_results_entity_ts",
        "evaluation_results",
        ["entity_id", "timestamp"],
    )
    op.create_index("idx_evaluation_results_decision", "evaluation_results", ["decision"])

    # Signal outcomes
    op.create_table(
        "signal_outcomes",
        sa.Column("signal_id", sa.String(128), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("token_address", sa.String(64), nullable=False),
        sa.Column("token_ticker", sa.String(32), nullable=True),
        sa.Column("signal_type", sa.String(32), nullable=False),
        sa.Column("signal_strength", sa.String(16), nullable=False),
        sa.Column("entry_price", sa.Numeric(38, 18), nullable=False),
        sa.Column("entry_market_cap", sa.Numeric(30, 2), nullable=False),
        sa.Column("entry_metrics_json", sa.Text(), nullable=False),
        sa.Column("entry_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("return_1h", sa.Numeric(20, 6), nullable=True),
        sa.Column("return_4h", sa.Numeric(20, 6), nullable=True),
        sa.Column("return_24h", sa.Numeric(20, 6), nullable=True),
        sa.Column("max_return", sa.Numeric(20, 6), nullable=True),
        sa.Column("min_return", sa.Numeric(20, 6), nullable=True),
        sa.Column("last_return", sa.Numeric(20, 6), nullable=True),
        sa.Column("final_return", sa.Numeric(20, 6), nullable=True),
        sa.Column("hit_stop_loss", sa.Boolean(), nullable=False),
        sa.Column("hit_take_profit", sa.Boolean(), nullable=False),
        sa.Column("final_outcome", sa.String(16), nullable=False),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("signal_id"),
        sa.UniqueConstraint("entity_id", name="uq_signal_outcomes_entity"),
    )
    op.create_index("idx_signal_outcomes_outcome", "signal_outcomes", ["final_outcome"])
    op.create_index("idx_signal_outcomes_entry_time", "signal_outcomes", ["entry_time"])


def downgrade() -> None:
    op.drop_index("idx_signal_outcomes_entry_time", table_name="signal_outcomes")
    op.drop_index("idx_signal_outcomes_outcome", table_name="signal_outcomes")
    op.drop_table("signal_outcomes")

    op.drop_index("idx_evaluation_results_decision", table_name="evaluation_results")
    op.drop_index("idx_evaluation_results_entity_ts", table_name="evaluation_results")
    op.drop_table("evaluation_results")

    op.drop_table("rolling_metrics")

    op.drop_index("idx_matched_rounds_entity_exit_time", table_name="matched_rounds")
    op.drop_table("matched_rounds")

    op.drop_index("idx_observations_entity_ts", table_name="observations")
    op.drop_index("idx_observations_entity_token_type", table_name="observations")
    op.drop_table("observations")

    op.drop_index("idx_tracked_entities_last_observed", table_name="tracked_entities")
    op.drop_index("idx_tracked_entities_kind_status", table_name="tracked_entities")
    op.drop_table("tracked_entities")
