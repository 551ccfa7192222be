"""Signal snapshot tracker.

Samples the current price of every pending signal, records interval
returns and finalizes the signal on stop-loss, take-profit or expiry.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from memecoin_lifecycle_tracker.errors import TransientUpstreamError
from memecoin_lifecycle_tracker.evaluator.lifecycle import TransitionTable
from memecoin_lifecycle_tracker.evaluator.models import (
    Decision,
    EntityKind,
    EvaluationOutcome,
    SignalStatus,
)
from memecoin_lifecycle_tracker.ingestor.models import ObservationType
from memecoin_lifecycle_tracker.storage.repos import (
    SIGNAL_RETURN_COLUMNS,
    ObservationDTO,
    ObservationRepository,
    SignalOutcomeDTO,
    SignalOutcomeRepository,
    TrackedEntityDTO,
    TrackedEntityRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from memecoin_lifecycle_tracker.config import SignalSettings
    from memecoin_lifecycle_tracker.ingestor.models import PriceQuote
    from memecoin_lifecycle_tracker.ingestor.prices import PriceProvider

logger = logging.getLogger(__name__)

DEFAULT_STOP_LOSS_PERCENT = Decimal("-40")
DEFAULT_TAKE_PROFIT_PERCENT = Decimal("100")
DEFAULT_MAX_TRACKING_HOURS = 48.0
DEFAULT_RETURN_INTERVALS_HOURS = (1, 4, 24)
RETURN_QUANTUM = Decimal("0.0001")


def price_change_percent(entry_price: Decimal, current_price: Decimal) -> Decimal:
    """Percentage change from ``entry_price`` to ``current_price``."""
    if entry_price <= 0:
        raise ValueError("entry_price must be positive")
    return ((current_price - entry_price) / entry_price * 100).quantize(RETURN_QUANTUM)


def hour_bucket(at: datetime) -> int:
    """Epoch seconds of the start of the hour containing ``at``."""
    epoch = int(at.timestamp())
    return epoch - epoch % 3600


class SignalSnapshotTracker(TransitionTable):
    """Transition table for signals: PENDING -> WIN | LOSS."""

    kind = EntityKind.SIGNAL
    audit_continue = False

    def __init__(
        self,
        price_provider: PriceProvider,
        *,
        stop_loss_percent: Decimal = DEFAULT_STOP_LOSS_PERCENT,
        take_profit_percent: Decimal = DEFAULT_TAKE_PROFIT_PERCENT,
        max_tracking_hours: float = DEFAULT_MAX_TRACKING_HOURS,
        return_intervals_hours: tuple[int, ...] = DEFAULT_RETURN_INTERVALS_HOURS,
    ) -> None:
        unknown = set(return_intervals_hours) - set(SIGNAL_RETURN_COLUMNS)
        if unknown:
            raise ValueError(f"Unsupported return intervals: {sorted(unknown)}")
        self._prices = price_provider
        self.stop_loss_percent = stop_loss_percent
        self.take_profit_percent = take_profit_percent
        self.max_tracking_hours = max_tracking_hours
        self.return_intervals_hours = tuple(sorted(return_intervals_hours))

    @classmethod
    def from_settings(cls, price_provider: PriceProvider, settings: SignalSettings) -> SignalSnapshotTracker:
        return cls(
            price_provider,
            stop_loss_percent=settings.stop_loss_percent,
            take_profit_percent=settings.take_profit_percent,
            max_tracking_hours=settings.max_tracking_hours,
            return_intervals_hours=settings.return_intervals_hours,
        )

    async def list_due(self, session: AsyncSession, now: datetime) -> list[TrackedEntityDTO]:
        return await TrackedEntityRepository(session).list_by_status(self.kind.value, [SignalStatus.PENDING.value])

    async def evaluate(
        self,
        session: AsyncSession,
        entity: TrackedEntityDTO,
        now: datetime,
    ) -> EvaluationOutcome | None:
        signals = SignalOutcomeRepository(session)
        signal = await signals.get_by_entity(entity.id)
        if signal is None:
            logger.warning("Signal entity %s has no outcome row", entity.key)
            return None
        if signal.final_outcome != SignalStatus.PENDING.value:
            logger.info("Signal %s was already finalized", signal.signal_id)
            return None

        hours_elapsed = (now - signal.entry_time).total_seconds() / 3600
        expired = hours_elapsed >= self.max_tracking_hours

        try:
            quote = await self._prices.get_current_price(signal.token_address)
        except TransientUpstreamError as e:
            logger.debug("Price lookup failed for %s: %s", signal.token_address, e)
            quote = None

        if quote is None:
            if not expired:
                logger.debug("No price for %s, retrying next cycle", signal.token_address)
                return None
            return await self._finalize_without_price(signals, entity, signal, hours_elapsed, now)

        change = price_change_percent(signal.entry_price, quote.price)
        await self._record_snapshot(session, entity, signal, quote, now)
        await self._record_returns(signals, signal, change, hours_elapsed)

        hit_stop_loss = change <= self.stop_loss_percent
        hit_take_profit = change >= self.take_profit_percent
        if not (hit_stop_loss or hit_take_profit or expired):
            return EvaluationOutcome(
                decision=Decision.CONTINUE,
                new_status=SignalStatus.PENDING.value,
                score=entity.score or 0,
                reason=f"{change:+.2f}% after {hours_elapsed:.1f}h",
            )

        if hit_take_profit:
            reason = f"Take profit hit: {change:+.2f}%"
        elif hit_stop_loss:
            reason = f"Stop loss hit: {change:+.2f}%"
        else:
            reason = f"Tracking expired after {hours_elapsed:.1f}h at {change:+.2f}%"
        return await self._finalize(
            signals,
            signal,
            won=hit_take_profit,
            final_return=change,
            hit_stop_loss=hit_stop_loss,
            hit_take_profit=hit_take_profit,
            hours_elapsed=hours_elapsed,
            reason=reason,
            now=now,
            score=entity.score or 0,
        )

    async def _record_snapshot(
        self,
        session: AsyncSession,
        entity: TrackedEntityDTO,
        signal: SignalOutcomeDTO,
        quote: PriceQuote,
        now: datetime,
    ) -> None:
        await ObservationRepository(session).insert_if_absent(
            ObservationDTO(
                entity_id=entity.id,
                type=ObservationType.PRICE_SNAPSHOT.value,
                counterparty_token=signal.token_address,
                amount=quote.market_cap,
                price=quote.price,
                timestamp=now,
                external_ref=f"snapshot:{signal.signal_id}:{hour_bucket(now)}",
            )
        )

    async def _record_returns(
        self,
        signals: SignalOutcomeRepository,
        signal: SignalOutcomeDTO,
        change: Decimal,
        hours_elapsed: float,
    ) -> None:
        for hours in self.return_intervals_hours:
            if hours_elapsed < hours or signal.interval_return(hours) is not None:
                continue
            if await signals.record_interval_return(signal.signal_id, hours, change):
                logger.debug("Signal %s %dh return: %s%%", signal.signal_id, hours, change)
        await signals.record_sample(signal.signal_id, change)

    async def _finalize_without_price(
        self,
        signals: SignalOutcomeRepository,
        entity: TrackedEntityDTO,
        signal: SignalOutcomeDTO,
        hours_elapsed: float,
        now: datetime,
    ) -> EvaluationOutcome:
        last = signal.last_return
        won = last is not None and last >= self.take_profit_percent
        return await self._finalize(
            signals,
            signal,
            won=won,
            final_return=last,
            hit_stop_loss=False,
            hit_take_profit=won,
            hours_elapsed=hours_elapsed,
            reason=f"Tracking expired after {hours_elapsed:.1f}h without a current price",
            now=now,
            score=entity.score or 0,
        )

    async def _finalize(
        self,
        signals: SignalOutcomeRepository,
        signal: SignalOutcomeDTO,
        *,
        won: bool,
        final_return: Decimal | None,
        hit_stop_loss: bool,
        hit_take_profit: bool,
        hours_elapsed: float,
        reason: str,
        now: datetime,
        score: int,
    ) -> EvaluationOutcome | None:
        status = SignalStatus.WIN if won else SignalStatus.LOSS
        finalized = await signals.finalize(
            signal.signal_id,
            outcome=status.value,
            final_return=final_return,
            hit_stop_loss=hit_stop_loss,
            hit_take_profit=hit_take_profit,
            at=now,
        )
        if not finalized:
            logger.info("Signal %s was already finalized", signal.signal_id)
            return None

        refreshed = await signals.get(signal.signal_id) or signal
        return EvaluationOutcome(
            decision=Decision.WIN if won else Decision.LOSS,
            new_status=status.value,
            score=score,
            reason=reason,
            context={
                "token_address": signal.token_address,
                "token_ticker": signal.token_ticker,
                "signal_type": signal.signal_type,
                "signal_strength": signal.signal_strength,
                "entry_price": signal.entry_price,
                "final_return": final_return,
                "max_return": refreshed.max_return,
                "min_return": refreshed.min_return,
                "hours_elapsed": hours_elapsed,
            },
        )
