"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
lifecycle engine, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./lifecycle.db",
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite (aiosqlite) connection string",
    )
    echo: bool = Field(
        default=False,
        alias="DATABASE_ECHO",
        description="Echo SQL statements for debugging",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings (optional price cache)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; enables the price quote cache when set",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class DedupSettings(BaseSettings):
    """Observation dedup cache settings."""

    model_config = SettingsConfigDict(env_prefix="DEDUP_", extra="ignore")

    capacity: int = Field(
        default=10_000,
        alias="DEDUP_CAPACITY",
        ge=2,
        le=10_000_000,
        description="Maximum remembered external refs before the oldest half is evicted",
    )
    min_trade_notional: Decimal = Field(
        default=Decimal("0.5"),
        alias="DEDUP_MIN_TRADE_NOTIONAL",
        description="Trades below this notional (quote units) are discarded",
    )

    @field_validator("min_trade_notional")
    @classmethod
    def validate_min_trade_notional(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("DEDUP_MIN_TRADE_NOTIONAL must be >= 0")
        return v


class CandidateSettings(BaseSettings):
    """Smart-money candidate evaluation thresholds."""

    model_config = SettingsConfigDict(env_prefix="CANDIDATE_", extra="ignore")

    min_trades: int = Field(
        default=3,
        alias="CANDIDATE_MIN_TRADES",
        ge=1,
        description="Minimum matched rounds before a candidate can be promoted",
    )
    min_unique_tokens: int = Field(
        default=2,
        alias="CANDIDATE_MIN_UNIQUE_TOKENS",
        ge=1,
        description="Minimum distinct tokens traded before a candidate can be promoted",
    )
    promote_win_rate: float = Field(
        default=0.35,
        alias="CANDIDATE_PROMOTE_WIN_RATE",
        ge=0.0,
        le=1.0,
        description="Win rate at or above which a candidate may be promoted",
    )
    promote_min_profit: Decimal = Field(
        default=Decimal("1"),
        alias="CANDIDATE_PROMOTE_MIN_PROFIT",
        description="Total realized profit required for promotion",
    )
    reject_win_rate: float = Field(
        default=0.15,
        alias="CANDIDATE_REJECT_WIN_RATE",
        ge=0.0,
        le=1.0,
        description="Win rate below which a candidate with enough rounds is rejected",
    )
    reject_min_trades: int = Field(
        default=15,
        alias="CANDIDATE_REJECT_MIN_TRADES",
        ge=1,
        description="Rounds required before the low win rate rejection applies",
    )
    reject_max_loss: Decimal = Field(
        default=Decimal("-25"),
        alias="CANDIDATE_REJECT_MAX_LOSS",
        description="Total profit at or below which a candidate is rejected",
    )
    win_threshold_roi: Decimal = Field(
        default=Decimal("100"),
        alias="CANDIDATE_WIN_THRESHOLD_ROI",
        description="ROI percent at or above which a matched round counts as a win",
    )
    match_settle_seconds: int = Field(
        default=300,
        alias="CANDIDATE_MATCH_SETTLE_SECONDS",
        ge=0,
        description="Age an exit must reach before it is paired, so late earlier trades can arrive",
    )
    inactivity_days: int = Field(
        default=14,
        alias="CANDIDATE_INACTIVITY_DAYS",
        ge=1,
        le=365,
        description="Days without observations before a candidate is retired",
    )
    evaluation_window_days: int = Field(
        default=30,
        alias="CANDIDATE_EVALUATION_WINDOW_DAYS",
        ge=1,
        le=365,
        description="Rolling metrics window used for evaluation",
    )
    high_volume_threshold: Decimal = Field(
        default=Decimal("10"),
        alias="CANDIDATE_HIGH_VOLUME_THRESHOLD",
        description="Trade notional classifying a new candidate as a whale",
    )
    early_buyer_max_token_age_minutes: int = Field(
        default=10,
        alias="CANDIDATE_EARLY_BUYER_MAX_TOKEN_AGE_MINUTES",
        ge=0,
        description="Token age (minutes) under which a buyer counts as an early buyer",
    )
    top_candidates_min_trades: int = Field(
        default=5,
        alias="CANDIDATE_TOP_MIN_TRADES",
        ge=0,
        description="Minimum rounds for a candidate to appear in the top candidate ranking",
    )
    interval_seconds: int = Field(
        default=30 * 60,
        alias="CANDIDATE_INTERVAL_SECONDS",
        ge=1,
        le=86_400,
        description="Candidate evaluation cycle interval",
    )

    @model_validator(mode="after")
    def validate_thresholds(self) -> CandidateSettings:
        if self.reject_win_rate > self.promote_win_rate:
            raise ValueError("CANDIDATE_REJECT_WIN_RATE must not exceed CANDIDATE_PROMOTE_WIN_RATE")
        if self.reject_max_loss >= self.promote_min_profit:
            raise ValueError("CANDIDATE_REJECT_MAX_LOSS must be below CANDIDATE_PROMOTE_MIN_PROFIT")
        return self


class SignalSettings(BaseSettings):
    """Signal outcome tracking thresholds."""

    model_config = SettingsConfigDict(env_prefix="SIGNAL_", extra="ignore")

    stop_loss_percent: Decimal = Field(
        default=Decimal("-40"),
        alias="SIGNAL_STOP_LOSS_PERCENT",
        description="Price change percent at or below which a signal finalizes as LOSS",
    )
    take_profit_percent: Decimal = Field(
        default=Decimal("100"),
        alias="SIGNAL_TAKE_PROFIT_PERCENT",
        description="Price change percent at or above which a signal finalizes as WIN",
    )
    max_tracking_hours: float = Field(
        default=48.0,
        alias="SIGNAL_MAX_TRACKING_HOURS",
        gt=0.0,
        le=24 * 30,
        description="Hours after which a pending signal is finalized",
    )
    return_intervals_hours: Annotated[tuple[int, ...], NoDecode] = Field(
        default=(1, 4, 24),
        alias="SIGNAL_RETURN_INTERVALS_HOURS",
        description="Elapsed hours at which interval returns are captured (comma-separated)",
    )
    interval_seconds: int = Field(
        default=15 * 60,
        alias="SIGNAL_INTERVAL_SECONDS",
        ge=1,
        le=86_400,
        description="Signal tracking cycle interval",
    )

    @field_validator("return_intervals_hours", mode="before")
    @classmethod
    def _parse_intervals(cls, v: object) -> tuple[int, ...]:
        if isinstance(v, str):
            parts = [p.strip() for p in v.split(",") if p.strip()]
            return tuple(int(p) for p in parts)
        if isinstance(v, (list, tuple)):
            return tuple(int(x) for x in v)
        raise TypeError("Invalid SIGNAL_RETURN_INTERVALS_HOURS type")

    @field_validator("return_intervals_hours")
    @classmethod
    def validate_intervals(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        unsupported = set(v) - {1, 4, 24}
        if unsupported:
            raise ValueError(f"Unsupported return intervals: {sorted(unsupported)}")
        return tuple(sorted(v))

    @model_validator(mode="after")
    def validate_thresholds(self) -> SignalSettings:
        if self.stop_loss_percent >= 0:
            raise ValueError("SIGNAL_STOP_LOSS_PERCENT must be negative")
        if self.take_profit_percent <= 0:
            raise ValueError("SIGNAL_TAKE_PROFIT_PERCENT must be positive")
        return self


class PriceSettings(BaseSettings):
    """Price lookup (DexScreener) settings."""

    model_config = SettingsConfigDict(env_prefix="PRICE_", extra="ignore")

    dexscreener_url: str = Field(
        default="https://api.dexscreener.com",
        alias="PRICE_DEXSCREENER_URL",
        description="DexScreener API base URL",
    )
    chain_id: str = Field(
        default="solana",
        alias="PRICE_CHAIN_ID",
        description="Only pairs on this chain are considered",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="PRICE_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
        description="HTTP request timeout",
    )
    max_requests_per_second: float = Field(
        default=5.0,
        alias="PRICE_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        le=100.0,
        description="Token bucket rate limit for price requests",
    )
    cache_ttl_seconds: int = Field(
        default=60,
        alias="PRICE_CACHE_TTL_SECONDS",
        ge=1,
        le=3600,
        description="Redis TTL for cached price quotes",
    )

    @field_validator("dexscreener_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("PRICE_DEXSCREENER_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from memecoin_lifecycle_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.signal.take_profit_percent)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    dedup: DedupSettings = Field(
        default_factory=lambda: DedupSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    candidate: CandidateSettings = Field(
        default_factory=lambda: CandidateSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    signal: SignalSettings = Field(
        default_factory=lambda: SignalSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    price: PriceSettings = Field(
        default_factory=lambda: PriceSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Log transition notifications instead of sending them",
    )
    evaluation_batch_size: int = Field(
        default=5,
        alias="EVALUATION_BATCH_SIZE",
        ge=1,
        le=100,
        description="Entities evaluated concurrently per batch",
    )
    evaluation_batch_pause_seconds: float = Field(
        default=1.0,
        alias="EVALUATION_BATCH_PAUSE_SECONDS",
        ge=0.0,
        le=60.0,
        description="Pause between evaluation batches (upstream rate limits)",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "dedup": {
                "capacity": str(self.dedup.capacity),
                "min_trade_notional": str(self.dedup.min_trade_notional),
            },
            "candidate": {
                "min_trades": str(self.candidate.min_trades),
                "min_unique_tokens": str(self.candidate.min_unique_tokens),
                "promote_win_rate": str(self.candidate.promote_win_rate),
                "inactivity_days": str(self.candidate.inactivity_days),
                "interval_seconds": str(self.candidate.interval_seconds),
            },
            "signal": {
                "stop_loss_percent": str(self.signal.stop_loss_percent),
                "take_profit_percent": str(self.signal.take_profit_percent),
                "max_tracking_hours": str(self.signal.max_tracking_hours),
                "interval_seconds": str(self.signal.interval_seconds),
            },
            "price": {
                "dexscreener_url": self.price.dexscreener_url,
                "chain_id": self.price.chain_id,
            },
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
