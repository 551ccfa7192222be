"""FIFO matcher: pairs entry (BUY) and exit (SELL) observations into rounds.

Pairing always re-reads and sorts the stored observations by
``(timestamp, id)``, so the result depends only on what is stored, not on the
order it arrived in. Exits newer than ``settled_before`` are left pending so
that earlier-timestamped trades still in flight can arrive first. Each BUY is consumed whole by exactly one SELL; partial
exits are not modelled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from memecoin_lifecycle_tracker.storage.repos import (
    MatchedRoundDTO,
    MatchedRoundRepository,
    ObservationDTO,
    ObservationRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_WIN_THRESHOLD_ROI = Decimal("100")
ROI_QUANTUM = Decimal("0.000001")


def compute_roi_percent(entry_value: Decimal, exit_value: Decimal) -> Decimal:
    """Return (exit - entry) / entry * 100."""
    if entry_value <= 0:
        raise ValueError("entry_value must be positive")
    return (exit_value - entry_value) / entry_value * Decimal(100)


@dataclass
class MatchReport:
    """Result of matching one (entity, token) pair."""

    entity_id: int
    counterparty_token: str
    rounds: list[MatchedRoundDTO] = field(default_factory=list)
    unmatched_exit_ids: list[int] = field(default_factory=list)
    deferred_exit_ids: list[int] = field(default_factory=list)
    skipped_entry_ids: list[int] = field(default_factory=list)

    @property
    def matched(self) -> int:
        return len(self.rounds)


class FifoMatcher:
    """Pairs each SELL with the earliest unconsumed BUY at or before it."""

    def __init__(self, *, win_threshold_roi: Decimal = DEFAULT_WIN_THRESHOLD_ROI) -> None:
        self._win_threshold = win_threshold_roi

    def is_win(self, roi_percent: Decimal) -> bool:
        return roi_percent >= self._win_threshold

    def build_round(self, entry: ObservationDTO, exit_: ObservationDTO) -> MatchedRoundDTO:
        roi = compute_roi_percent(entry.amount, exit_.amount)
        return MatchedRoundDTO(
            entity_id=exit_.entity_id,
            counterparty_token=exit_.counterparty_token,
            entry_observation_id=entry.id,  # type: ignore[arg-type]
            exit_observation_id=exit_.id,  # type: ignore[arg-type]
            entry_value=entry.amount,
            exit_value=exit_.amount,
            entry_time=entry.timestamp,
            exit_time=exit_.timestamp,
            roi_percent=roi.quantize(ROI_QUANTUM),
            hold_duration_seconds=int((exit_.timestamp - entry.timestamp).total_seconds()),
            is_win=self.is_win(roi),
        )

    async def match(
        self,
        session: AsyncSession,
        entity_id: int,
        counterparty_token: str,
        *,
        settled_before: datetime | None = None,
    ) -> MatchReport:
        """Pair every settled unmatched SELL for the pair with the earliest eligible BUY.

        Exits timestamped after ``settled_before`` are reported as deferred and
        left for a later pass. ``None`` treats every exit as settled.
        """
        observations = ObservationRepository(session)
        rounds_repo = MatchedRoundRepository(session)
        report = MatchReport(entity_id=entity_id, counterparty_token=counterparty_token)

        exits = await observations.list_unmatched_exits(entity_id, counterparty_token)
        if settled_before is not None:
            report.deferred_exit_ids = [e.id for e in exits if e.timestamp > settled_before]  # type: ignore[misc]
            exits = [e for e in exits if e.timestamp <= settled_before]
        if not exits:
            return report
        entries: list[ObservationDTO] = []
        for entry in await observations.list_unconsumed_entries(entity_id, counterparty_token):
            if entry.amount <= 0:
                report.skipped_entry_ids.append(entry.id)  # type: ignore[arg-type]
                continue
            entries.append(entry)

        for exit_ in exits:
            if not entries or entries[0].timestamp > exit_.timestamp:
                report.unmatched_exit_ids.append(exit_.id)  # type: ignore[arg-type]
                continue
            entry = entries.pop(0)
            matched_round = self.build_round(entry, exit_)
            if await rounds_repo.insert_if_absent(matched_round):
                report.rounds.append(matched_round)
            else:
                logger.debug(
                    "Round for entry %s / exit %s already recorded by a concurrent matcher",
                    entry.id,
                    exit_.id,
                )

        if report.skipped_entry_ids:
            logger.warning(
                "Skipped %d zero-value entries for entity %s token %s",
                len(report.skipped_entry_ids),
                entity_id,
                counterparty_token,
            )
        if report.unmatched_exit_ids:
            logger.debug(
                "Entity %s token %s: %d exits without a prior entry",
                entity_id,
                counterparty_token,
                len(report.unmatched_exit_ids),
            )
        return report

    async def reconcile(
        self,
        session: AsyncSession,
        entity_id: int,
        *,
        settled_before: datetime | None = None,
    ) -> list[MatchReport]:
        """Run matching for every token of the entity with pending exits."""
        tokens = await ObservationRepository(session).list_tokens_with_unmatched_exits(entity_id)
        return [
            await self.match(session, entity_id, token, settled_before=settled_before)
            for token in tokens
        ]
