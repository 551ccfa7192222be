"""Data models for the ingestor module."""

from __future__ import annotations

import contextlib
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


class ObservationType(str, Enum):
    """Kinds of inbound observations."""

    BUY = "BUY"
    SELL = "SELL"
    PRICE_SNAPSHOT = "PRICE_SNAPSHOT"


class ObserveStatus(str, Enum):
    """Outcome of a single ``observe`` call."""

    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    BELOW_THRESHOLD = "below_threshold"
    FROZEN = "frozen"


def _to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Coerce an optional upstream number to Decimal; missing or NaN becomes ``default``."""
    if value is None or value == "":
        return default
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return default
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default
    if not result.is_finite():
        return default
    return result


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        # Millisecond epochs are common in DEX feeds.
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=UTC)
    if isinstance(value, str):
        with contextlib.suppress(ValueError):
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    raise ValueError(f"Unparseable timestamp: {value!r}")


@dataclass(frozen=True)
class ObservationEvent:
    """A timestamped trade or price event reported by a collaborator.

    Attributes:
        external_ref: Globally unique reference (transaction signature or feed id).
        type: BUY, SELL or PRICE_SNAPSHOT.
        counterparty_token: Token mint address the trade was made in.
        amount: Trade notional in quote units (SOL). Market cap for price snapshots.
        price: Token price at the event, if known.
        timestamp: When the event happened (UTC).
        token_age_minutes: Age of the token at the time of the trade, if known.
        token_ticker: Token symbol, if known.
    """

    external_ref: str
    type: ObservationType
    counterparty_token: str
    amount: Decimal
    timestamp: datetime
    price: Decimal | None = None
    token_age_minutes: float | None = None
    token_ticker: str | None = None

    @property
    def is_trade(self) -> bool:
        """Return True for BUY/SELL events."""
        return self.type in (ObservationType.BUY, ObservationType.SELL)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ObservationEvent:
        """Create an event from a loosely-typed collaborator payload.

        Missing numeric fields default to zero rather than NaN.
        """
        age = data.get("token_age_minutes")
        return cls(
            external_ref=str(data["external_ref"]),
            type=ObservationType(str(data["type"]).upper()),
            counterparty_token=str(data["counterparty_token"]),
            amount=_to_decimal(data.get("amount")),
            timestamp=_parse_timestamp(data["timestamp"]),
            price=_to_decimal(data["price"]) if data.get("price") is not None else None,
            token_age_minutes=float(age) if age is not None else None,
            token_ticker=data.get("token_ticker"),
        )


@dataclass(frozen=True)
class SignalEntrySnapshot:
    """Initial state of an emitted trade signal.

    Attributes:
        token_address: Token mint address the signal refers to.
        entry_price: Price at signal emission. Must be positive.
        entry_time: Signal emission time (UTC).
        token_ticker: Token symbol, if known.
        signal_type: Signal flavour (e.g. BUY, WATCH).
        signal_strength: Strength bucket (e.g. STRONG, MEDIUM, WEAK).
        entry_market_cap: Market cap at emission; zero when unknown.
        metrics: Scoring metrics captured at emission; missing values are zero.
    """

    token_address: str
    entry_price: Decimal
    entry_time: datetime
    token_ticker: str | None = None
    signal_type: str = "BUY"
    signal_strength: str = "MEDIUM"
    entry_market_cap: Decimal = Decimal("0")
    metrics: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.entry_price <= 0:
            raise ValueError("entry_price must be positive")

    def metric(self, name: str) -> float:
        """Return a scoring metric, treating missing values as zero."""
        value = self.metrics.get(name)
        if value is None or (isinstance(value, float) and math.isnan(value)):
            return 0.0
        return float(value)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SignalEntrySnapshot:
        """Create a snapshot from a collaborator payload."""
        raw_metrics = data.get("metrics") or {}
        metrics: dict[str, float] = {}
        for name, value in raw_metrics.items():
            metrics[str(name)] = float(_to_decimal(value))
        return cls(
            token_address=str(data["token_address"]),
            entry_price=_to_decimal(data["entry_price"]),
            entry_time=_parse_timestamp(data["entry_time"]),
            token_ticker=data.get("token_ticker"),
            signal_type=str(data.get("signal_type") or "BUY"),
            signal_strength=str(data.get("signal_strength") or "MEDIUM"),
            entry_market_cap=_to_decimal(data.get("entry_market_cap")),
            metrics=metrics,
        )


@dataclass(frozen=True)
class PriceQuote:
    """Current price of a token from the price lookup collaborator."""

    price: Decimal
    market_cap: Decimal = Decimal("0")
    source: str = "unknown"
    fetched_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, str]:
        """Serialize for caching."""
        return {
            "price": str(self.price),
            "market_cap": str(self.market_cap),
            "source": self.source,
            "fetched_at": self.fetched_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PriceQuote:
        return cls(
            price=_to_decimal(data["price"]),
            market_cap=_to_decimal(data.get("market_cap")),
            source=str(data.get("source") or "unknown"),
            fetched_at=_parse_timestamp(data["fetched_at"]),
        )


@dataclass(frozen=True)
class ObserveResult:
    """Result of an ``observe`` call."""

    status: ObserveStatus
    entity_id: int | None = None
    observation_id: int | None = None
    reason: str = ""


@dataclass(frozen=True)
class RecordSignalResult:
    """Result of a ``record_signal`` call."""

    signal_id: str
    entity_id: int
    created: bool
