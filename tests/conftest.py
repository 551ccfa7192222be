"""Pytest configuration and fixtures."""

from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from memecoin_lifecycle_tracker.ingestor.models import ObservationEvent, ObservationType
from memecoin_lifecycle_tracker.storage.database import DatabaseManager
from memecoin_lifecycle_tracker.storage.models import Base


@pytest.fixture
def sample_wallet() -> str:
    """Sample Solana wallet address for testing."""
    return "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


@pytest.fixture
def sample_token() -> str:
    """Sample token mint address for testing."""
    return "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


@pytest.fixture
def base_time() -> datetime:
    """Fixed reference time for deterministic tests."""
    return datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
async def async_engine():
    """Create an async in-memory SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def db_manager(tmp_path: Path):
    """Database manager backed by a temporary SQLite file with the schema created."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'lifecycle.db'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
def make_trade() -> Callable[..., ObservationEvent]:
    """Factory for trade observations."""

    def _make(
        ref: str,
        type: ObservationType | str,
        token: str,
        amount: str | Decimal,
        timestamp: datetime,
        **kwargs: object,
    ) -> ObservationEvent:
        return ObservationEvent(
            external_ref=ref,
            type=ObservationType(type),
            counterparty_token=token,
            amount=Decimal(amount),
            timestamp=timestamp,
            **kwargs,  # type: ignore[arg-type]
        )

    return _make
