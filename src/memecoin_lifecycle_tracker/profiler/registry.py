"""Entity registry: one row per tracked (kind, key).

Creation is a unique-constraint-backed insert, never read-then-write, so
concurrent callers racing on the same key converge on a single row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from memecoin_lifecycle_tracker.errors import InvalidTransitionError
from memecoin_lifecycle_tracker.evaluator.models import (
    INITIAL_STATUS,
    TERMINAL_STATUSES,
    DiscoverySource,
    EntityKind,
    is_terminal,
)
from memecoin_lifecycle_tracker.ingestor.models import ObservationEvent, ObservationType
from memecoin_lifecycle_tracker.storage.repos import TrackedEntityDTO, TrackedEntityRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_HIGH_VOLUME_THRESHOLD = Decimal("10")
DEFAULT_EARLY_BUYER_MAX_TOKEN_AGE_MINUTES = 10


@dataclass(frozen=True)
class RegistryResult:
    """Outcome of ``EntityRegistry.get_or_create``."""

    entity: TrackedEntityDTO
    created: bool

    @property
    def frozen(self) -> bool:
        """True if the entity is terminal and ignores new observations."""
        return is_terminal(self.entity.kind, self.entity.status)


class EntityRegistry:
    """Get-or-create and status transitions for tracked entities."""

    def __init__(
        self,
        *,
        high_volume_threshold: Decimal = DEFAULT_HIGH_VOLUME_THRESHOLD,
        early_buyer_max_token_age_minutes: int = DEFAULT_EARLY_BUYER_MAX_TOKEN_AGE_MINUTES,
    ) -> None:
        self._high_volume_threshold = high_volume_threshold
        self._early_buyer_max_age = early_buyer_max_token_age_minutes

    async def get_or_create(
        self,
        session: AsyncSession,
        key: str,
        kind: EntityKind,
        discovery_source: DiscoverySource | None = None,
        *,
        reason: str | None = None,
        observed_at: datetime | None = None,
    ) -> RegistryResult:
        """Return the entity for ``(kind, key)``, creating it if needed.

        An existing entity is left unchanged apart from ``last_observed_at``,
        which only moves forward. Terminal entities are not touched at all.
        """
        kind = EntityKind(kind)
        key = key.strip()
        if not key:
            raise ValueError("Entity key must not be empty")
        observed_at = observed_at or datetime.now(UTC)

        repo = TrackedEntityRepository(session)
        created = await repo.insert_if_absent(
            kind=kind.value,
            key=key,
            status=INITIAL_STATUS[kind],
            observed_at=observed_at,
            discovery_source=discovery_source.value if discovery_source else None,
            discovery_reason=reason,
        )
        if not created:
            await repo.touch(
                kind=kind.value,
                key=key,
                observed_at=observed_at,
                frozen_statuses=TERMINAL_STATUSES[kind],
            )

        entity = await repo.get_by_key(kind.value, key)
        if entity is None:
            # Only possible if the row was removed mid-transaction.
            raise RuntimeError(f"Entity {kind.value}:{key} vanished after upsert")

        if created:
            logger.info(
                "Tracking new %s %s (source=%s)",
                kind.value.lower(),
                key,
                entity.discovery_source or "-",
            )
        return RegistryResult(entity=entity, created=created)

    async def transition(
        self,
        session: AsyncSession,
        entity: TrackedEntityDTO,
        to_status: str,
        *,
        reason: str,
        at: datetime,
        score: int | None = None,
    ) -> bool:
        """Move ``entity`` to ``to_status`` if nobody else has moved it first.

        Raises:
            InvalidTransitionError: If the entity is already terminal.
        """
        if is_terminal(entity.kind, entity.status):
            raise InvalidTransitionError(entity.id, entity.status, to_status)
        repo = TrackedEntityRepository(session)
        moved = await repo.compare_and_set_status(
            entity.id,
            from_status=entity.status,
            to_status=to_status,
            reason=reason,
            at=at,
            score=score,
        )
        if not moved:
            logger.info("Entity %s changed status concurrently; skipping %s", entity.key, to_status)
        return moved

    def classify_discovery_source(self, event: ObservationEvent) -> tuple[DiscoverySource, str]:
        """Describe why a wallet seen in ``event`` is worth tracking."""
        if event.amount >= self._high_volume_threshold:
            return DiscoverySource.WHALE_TRACKER, f"Large trade: {event.amount:.2f} SOL"
        if (
            event.type is ObservationType.BUY
            and event.token_age_minutes is not None
            and event.token_age_minutes < self._early_buyer_max_age
        ):
            ticker = event.token_ticker or event.counterparty_token[:8]
            return (
                DiscoverySource.EARLY_BUYER,
                f"Early buyer of {ticker} ({event.token_age_minutes:.0f}m after launch)",
            )
        return DiscoverySource.DEX_TRADER, f"{event.type.value.title()} of {event.amount:.2f} SOL"
