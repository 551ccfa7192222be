"""Tests for the observation dedup cache."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from memecoin_lifecycle_tracker.ingestor.dedup import AdmitResult, DedupCache
from memecoin_lifecycle_tracker.ingestor.models import ObservationEvent, ObservationType

TOKEN = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


def _event(ref: str, amount: str = "1", type: ObservationType = ObservationType.BUY) -> ObservationEvent:
    return ObservationEvent(
        external_ref=ref,
        type=type,
        counterparty_token=TOKEN,
        amount=Decimal(amount),
        timestamp=datetime(2026, 3, 1, tzinfo=UTC),
    )


class TestAdmit:
    """Tests for DedupCache.admit."""

    def test_first_sighting_admitted(self) -> None:
        cache = DedupCache()
        assert cache.admit(_event("tx1")) is AdmitResult.ADMITTED
        assert "tx1" in cache
        assert len(cache) == 1

    def test_repeat_is_duplicate_without_state_change(self) -> None:
        cache = DedupCache()
        cache.admit(_event("tx1"))
        cache.admit(_event("tx2"))

        assert cache.admit(_event("tx1")) is AdmitResult.DUPLICATE
        assert len(cache) == 2

    def test_below_threshold_not_remembered(self) -> None:
        cache = DedupCache(min_trade_notional=Decimal("0.5"))

        assert cache.admit(_event("dust", amount="0.49")) is AdmitResult.BELOW_THRESHOLD
        assert "dust" not in cache
        assert len(cache) == 0

    def test_threshold_is_inclusive(self) -> None:
        cache = DedupCache(min_trade_notional=Decimal("0.5"))
        assert cache.admit(_event("tx", amount="0.5")) is AdmitResult.ADMITTED

    def test_price_snapshots_exempt_from_threshold(self) -> None:
        cache = DedupCache(min_trade_notional=Decimal("0.5"))
        snapshot = _event("snap", amount="0", type=ObservationType.PRICE_SNAPSHOT)
        assert cache.admit(snapshot) is AdmitResult.ADMITTED


class TestEviction:
    """Tests for bounded capacity."""

    def test_evicts_oldest_half_when_over_capacity(self) -> None:
        cache = DedupCache(capacity=10)
        for i in range(11):
            cache.admit(_event(f"tx{i}"))

        assert len(cache) == 5
        assert cache.evictions == 1
        assert "tx0" not in cache
        assert "tx5" not in cache
        assert all(f"tx{i}" in cache for i in range(6, 11))

    def test_no_eviction_at_capacity(self) -> None:
        cache = DedupCache(capacity=10)
        for i in range(10):
            cache.admit(_event(f"tx{i}"))

        assert len(cache) == 10
        assert cache.evictions == 0

    def test_evicted_ref_readmitted(self) -> None:
        cache = DedupCache(capacity=4)
        for i in range(5):
            cache.admit(_event(f"tx{i}"))

        assert cache.admit(_event("tx0")) is AdmitResult.ADMITTED

    def test_capacity_must_be_at_least_two(self) -> None:
        with pytest.raises(ValueError):
            DedupCache(capacity=1)


class TestDiscard:
    """Tests for discard and clear."""

    def test_discard_allows_retry(self) -> None:
        cache = DedupCache()
        cache.admit(_event("tx1"))
        cache.discard("tx1")

        assert cache.admit(_event("tx1")) is AdmitResult.ADMITTED

    def test_discard_unknown_is_noop(self) -> None:
        cache = DedupCache()
        cache.discard("missing")
        assert len(cache) == 0

    def test_clear(self) -> None:
        cache = DedupCache()
        cache.admit(_event("tx1"))
        cache.clear()
        assert len(cache) == 0
