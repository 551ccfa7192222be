"""Periodic background tasks.

Each cycle (signal tracking, candidate evaluation) runs as its own
``PeriodicTask`` with an independent interval.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[Any]]


class PeriodicTask:
    """Runs ``callback`` every ``interval_seconds`` until stopped.

    Ticks never overlap: a manual ``tick()`` issued while the loop is mid-cycle
    waits for it to finish. A failing tick is logged and the loop carries on.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: TickCallback,
        *,
        run_immediately: bool = True,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._run_immediately = run_immediately
        self._lock = asyncio.Lock()
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None
        self.ticks = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            raise RuntimeError(f"Task {self.name} is already running")
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name=self.name)
        logger.debug("Started periodic task %s (every %.0fs)", self.name, self.interval_seconds)

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.debug("Stopped periodic task %s", self.name)

    async def tick(self) -> Any:
        """Run one cycle now. Returns the callback result, or None on failure."""
        async with self._lock:
            self.ticks += 1
            try:
                return await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failures += 1
                logger.warning("Periodic task %s failed: %s", self.name, e, exc_info=True)
                return None

    async def _run_loop(self) -> None:
        assert self._stop_event is not None
        if self._run_immediately:
            await self.tick()
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                break
            except TimeoutError:
                pass
            await self.tick()
