"""Tests for periodic background tasks."""

from __future__ import annotations

import asyncio

import pytest

from memecoin_lifecycle_tracker.scheduler import PeriodicTask


class TestTick:
    async def test_tick_returns_callback_result(self) -> None:
        async def callback() -> str:
            return "done"

        task = PeriodicTask("test", 60, callback)

        assert await task.tick() == "done"
        assert task.ticks == 1
        assert task.failures == 0

    async def test_failing_tick_is_counted(self) -> None:
        async def callback() -> None:
            raise RuntimeError("boom")

        task = PeriodicTask("test", 60, callback)

        assert await task.tick() is None
        assert task.failures == 1

    async def test_ticks_do_not_overlap(self) -> None:
        active = 0
        peak = 0

        async def callback() -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        task = PeriodicTask("test", 60, callback)
        await asyncio.gather(task.tick(), task.tick(), task.tick())

        assert peak == 1
        assert task.ticks == 3

    def test_rejects_non_positive_interval(self) -> None:
        async def callback() -> None:
            return None

        with pytest.raises(ValueError):
            PeriodicTask("test", 0, callback)


class TestLoop:
    async def test_runs_immediately_and_repeats(self) -> None:
        calls = 0

        async def callback() -> None:
            nonlocal calls
            calls += 1

        task = PeriodicTask("test", 0.01, callback)
        await task.start()
        await asyncio.sleep(0.05)
        await task.stop()

        assert calls >= 2
        assert not task.is_running

    async def test_delayed_first_run(self) -> None:
        calls = 0

        async def callback() -> None:
            nonlocal calls
            calls += 1

        task = PeriodicTask("test", 60, callback, run_immediately=False)
        await task.start()
        await asyncio.sleep(0.01)
        await task.stop()

        assert calls == 0

    async def test_loop_survives_failures(self) -> None:
        async def callback() -> None:
            raise RuntimeError("boom")

        task = PeriodicTask("test", 0.01, callback)
        await task.start()
        await asyncio.sleep(0.05)

        assert task.is_running
        await task.stop()
        assert task.failures >= 2

    async def test_double_start_fails(self) -> None:
        async def callback() -> None:
            return None

        task = PeriodicTask("test", 60, callback)
        await task.start()
        try:
            with pytest.raises(RuntimeError):
                await task.start()
        finally:
            await task.stop()

    async def test_stop_before_start_is_noop(self) -> None:
        async def callback() -> None:
            return None

        await PeriodicTask("test", 60, callback).stop()
