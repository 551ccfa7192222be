"""Tests for the transition message formatter."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from memecoin_lifecycle_tracker.alerter.formatter import (
    TransitionFormatter,
    format_percent,
    format_price,
    truncate_address,
)
from memecoin_lifecycle_tracker.evaluator.models import Decision, EvaluationOutcome
from memecoin_lifecycle_tracker.storage.repos import TrackedEntityDTO

WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
TOKEN = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _entity(kind: str = "CANDIDATE", key: str = WALLET, status: str = "MONITORING") -> TrackedEntityDTO:
    return TrackedEntityDTO(
        id=1,
        kind=kind,
        key=key,
        status=status,
        last_observed_at=NOW,
        created_at=NOW,
        discovery_source="WHALE_TRACKER" if kind == "CANDIDATE" else "SIGNAL_EMITTER",
    )


@pytest.fixture
def promoted() -> EvaluationOutcome:
    return EvaluationOutcome(
        decision=Decision.PROMOTE,
        new_status="PROMOTED",
        score=74,
        reason="Win rate 60.0%, profit 12.50 SOL over 10 rounds",
        context={
            "win_rate_percent": 60.0,
            "total_profit": Decimal("12.5"),
            "total_rounds": 10,
            "unique_counterparties": 6,
        },
    )


@pytest.fixture
def signal_win() -> EvaluationOutcome:
    return EvaluationOutcome(
        decision=Decision.WIN,
        new_status="WIN",
        score=81,
        reason="Take profit hit: +105.00%",
        context={
            "token_address": TOKEN,
            "token_ticker": "BONK",
            "signal_type": "BUY",
            "signal_strength": "STRONG",
            "entry_price": Decimal("0.00002145"),
            "final_return": Decimal("105"),
            "max_return": Decimal("105"),
            "min_return": Decimal("-3.5"),
            "hours_elapsed": 5.0,
        },
    )


class TestHelpers:
    def test_truncate_address(self) -> None:
        assert truncate_address(WALLET) == "7xKXtg2C...osgAsU"
        assert truncate_address("short") == "short"

    def test_format_percent(self) -> None:
        assert format_percent(Decimal("105")) == "+105.0%"
        assert format_percent(-40) == "-40.0%"
        assert format_percent(60.0, signed=False) == "60.0%"
        assert format_percent(None) == "n/a"

    def test_format_price(self) -> None:
        assert format_price(Decimal("1234.5")) == "$1,234.5000"
        assert format_price(Decimal("0.00002145")) == "$0.00002145"


class TestCandidateMessages:
    def test_promoted_detailed(self, promoted: EvaluationOutcome) -> None:
        message = TransitionFormatter().format(_entity(), promoted)

        assert message.startswith("🧠 *Smart Money Discovered*")
        assert f"Address: `{truncate_address(WALLET)}`" in message
        assert "Source: WHALE_TRACKER" in message
        assert "Win Rate: 60.0%" in message
        assert "Profit: 12.5 SOL" in message
        assert "Trades: 10" in message
        assert "Unique Tokens: 6" in message
        assert "Score: 74/100" in message
        assert f"https://solscan.io/account/{WALLET}" in message

    def test_promoted_compact(self, promoted: EvaluationOutcome) -> None:
        message = TransitionFormatter(verbosity="compact").format(_entity(), promoted)

        assert "\n" not in message
        assert "60.0% win rate" in message

    def test_rejected(self) -> None:
        outcome = EvaluationOutcome(
            decision=Decision.REJECT,
            new_status="REJECTED",
            score=12,
            reason="Low win rate: 10.0% over 20 rounds",
            context={"total_rounds": 20, "total_profit": Decimal("-3")},
        )

        message = TransitionFormatter().format(_entity(), outcome)

        assert message.startswith("🚫 *Smart Money Candidate Rejected*")
        assert "Reason: Low win rate: 10.0% over 20 rounds" in message
        assert "Profit: -3.0 SOL" in message

    def test_inactive_has_no_format(self) -> None:
        outcome = EvaluationOutcome(
            decision=Decision.DEACTIVATE,
            new_status="INACTIVE",
            score=0,
            reason="No activity for 20 days",
        )

        with pytest.raises(ValueError):
            TransitionFormatter().format(_entity(), outcome)


class TestSignalMessages:
    def test_win_detailed(self, signal_win: EvaluationOutcome) -> None:
        message = TransitionFormatter().format(_entity("SIGNAL", "sig-42", "PENDING"), signal_win)

        assert message.startswith("✅ *Signal WIN*")
        assert "Token: $BONK" in message
        assert "Signal: BUY / STRONG" in message
        assert "Entry: $0.00002145" in message
        assert "Final Return: +105.0%" in message
        assert "Peak: +105.0% | Trough: -3.5%" in message
        assert "Held: 5.0h" in message
        assert f"https://dexscreener.com/solana/{TOKEN}" in message
        assert message.endswith("_Signal sig-42_")

    def test_loss_compact(self, signal_win: EvaluationOutcome) -> None:
        loss = EvaluationOutcome(
            decision=Decision.LOSS,
            new_status="LOSS",
            score=30,
            reason="Stop loss hit: -40.00%",
            context={**signal_win.context, "final_return": Decimal("-40")},
        )

        message = TransitionFormatter(verbosity="compact").format(_entity("SIGNAL", "sig-42"), loss)

        assert message == "❌ Signal LOSS: $BONK -40.0% (Stop loss hit: -40.00%)"

    def test_missing_ticker_falls_back_to_address(self) -> None:
        outcome = EvaluationOutcome(
            decision=Decision.WIN,
            new_status="WIN",
            score=0,
            reason="Tracking expired",
            context={"token_address": TOKEN, "final_return": None},
        )

        message = TransitionFormatter().format(_entity("SIGNAL", "sig-7"), outcome)

        assert f"Token: ${truncate_address(TOKEN)}" in message
        assert "Final Return: n/a" in message
        assert "Entry:" not in message
