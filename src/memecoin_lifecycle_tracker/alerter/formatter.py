"""Transition message formatter.

This module turns terminal lifecycle transitions (PROMOTED, REJECTED, WIN,
LOSS) into pre-formatted Telegram-style markdown messages. The engine is
agnostic to the delivery channel; callbacks receive the finished string.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from memecoin_lifecycle_tracker.evaluator.models import (
    CandidateStatus,
    EvaluationOutcome,
    SignalStatus,
)
from memecoin_lifecycle_tracker.storage.repos import TrackedEntityDTO

SOLSCAN_ACCOUNT_URL = "https://solscan.io/account/{address}"
DEXSCREENER_TOKEN_URL = "https://dexscreener.com/solana/{address}"


def truncate_address(address: str, head: int = 8, tail: int = 6) -> str:
    """Truncate a base58 address to abcd1234...wxyz56 format."""
    if len(address) <= head + tail + 3:
        return address
    return f"{address[:head]}...{address[-tail:]}"


def format_sol(amount: Decimal | float) -> str:
    """Format a SOL amount with one decimal place."""
    return f"{float(amount):.1f} SOL"


def format_percent(value: Decimal | float | None, *, signed: bool = True) -> str:
    """Format a percentage; missing values render as n/a."""
    if value is None:
        return "n/a"
    if signed:
        return f"{float(value):+.1f}%"
    return f"{float(value):.1f}%"


def format_price(price: Decimal | float) -> str:
    """Format a token price, keeping precision for sub-cent tokens."""
    value = float(price)
    if value >= 1:
        return f"${value:,.4f}"
    return f"${value:.10f}".rstrip("0").rstrip(".")


class TransitionFormatter:
    """Builds human-readable messages for terminal transitions.

    Supports two verbosity levels:
    - compact: a single line per transition
    - detailed: full context with metrics and links
    """

    def __init__(self, verbosity: Literal["compact", "detailed"] = "detailed") -> None:
        self.verbosity = verbosity

    def format(self, entity: TrackedEntityDTO, outcome: EvaluationOutcome) -> str:
        """Format a transition of ``entity`` described by ``outcome``.

        Raises:
            ValueError: If the target status does not produce a notification.
        """
        status = outcome.new_status
        if status == CandidateStatus.PROMOTED.value:
            return self._format_promoted(entity, outcome)
        if status == CandidateStatus.REJECTED.value:
            return self._format_rejected(entity, outcome)
        if status in (SignalStatus.WIN.value, SignalStatus.LOSS.value):
            return self._format_signal(entity, outcome)
        raise ValueError(f"No notification format for status {status}")

    def _format_promoted(self, entity: TrackedEntityDTO, outcome: EvaluationOutcome) -> str:
        ctx = outcome.context
        address = truncate_address(entity.key)
        if self.verbosity == "compact":
            return (
                f"🧠 Smart money promoted: {address} "
                f"({format_percent(ctx.get('win_rate_percent'), signed=False)} win rate, "
                f"{format_sol(ctx.get('total_profit', 0))})"
            )
        lines = [
            "🧠 *Smart Money Discovered*",
            "",
            "A high-performing trader has been auto-promoted to tracking!",
            "",
            f"Address: `{address}`",
            f"Source: {entity.discovery_source or 'UNKNOWN'}",
            f"Win Rate: {format_percent(ctx.get('win_rate_percent'), signed=False)}",
            f"Profit: {format_sol(ctx.get('total_profit', 0))}",
            f"Trades: {ctx.get('total_rounds', 0)}",
            f"Unique Tokens: {ctx.get('unique_counterparties', 0)}",
            f"Score: {outcome.score}/100",
            "",
            f"[Solscan]({SOLSCAN_ACCOUNT_URL.format(address=entity.key)})",
            "",
            "_Now tracking this wallet for buy signals_",
        ]
        return "\n".join(lines)

    def _format_rejected(self, entity: TrackedEntityDTO, outcome: EvaluationOutcome) -> str:
        address = truncate_address(entity.key)
        if self.verbosity == "compact":
            return f"🚫 Candidate rejected: {address} ({outcome.reason})"
        ctx = outcome.context
        lines = [
            "🚫 *Smart Money Candidate Rejected*",
            "",
            f"Address: `{address}`",
            f"Source: {entity.discovery_source or 'UNKNOWN'}",
            f"Reason: {outcome.reason}",
            f"Trades: {ctx.get('total_rounds', 0)}",
            f"Profit: {format_sol(ctx.get('total_profit', 0))}",
            f"Score: {outcome.score}/100",
        ]
        return "\n".join(lines)

    def _format_signal(self, entity: TrackedEntityDTO, outcome: EvaluationOutcome) -> str:
        ctx = outcome.context
        won = outcome.new_status == SignalStatus.WIN.value
        icon = "✅" if won else "❌"
        token_address = str(ctx.get("token_address") or "")
        ticker = ctx.get("token_ticker") or truncate_address(token_address)
        final_return = ctx.get("final_return")

        if self.verbosity == "compact":
            return f"{icon} Signal {outcome.new_status}: ${ticker} {format_percent(final_return)} ({outcome.reason})"

        lines = [
            f"{icon} *Signal {outcome.new_status}*",
            "",
            f"Token: ${ticker} (`{truncate_address(token_address)}`)",
            f"Signal: {ctx.get('signal_type', 'BUY')} / {ctx.get('signal_strength', 'MEDIUM')}",
        ]
        entry_price = ctx.get("entry_price")
        if entry_price is not None:
            lines.append(f"Entry: {format_price(entry_price)}")  # type: ignore[arg-type]
        lines.extend(
            [
                f"Final Return: {format_percent(final_return)}",
                f"Peak: {format_percent(ctx.get('max_return'))} | Trough: {format_percent(ctx.get('min_return'))}",
                f"Held: {float(ctx.get('hours_elapsed', 0)):.1f}h",  # type: ignore[arg-type]
                f"Reason: {outcome.reason}",
            ]
        )
        if token_address:
            lines.extend(["", f"[DexScreener]({DEXSCREENER_TOKEN_URL.format(address=token_address)})"])
        lines.append(f"_Signal {entity.key}_")
        return "\n".join(lines)
