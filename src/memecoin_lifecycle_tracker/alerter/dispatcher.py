"""Best-effort delivery of transition notifications.

Transitions are committed before dispatch; a failing callback is logged and
counted but never propagates and never rolls anything back.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

TransitionCallback = Callable[[str], Awaitable[None]]


@dataclass
class DispatchResult:
    """Outcome of dispatching one message to every registered callback."""

    success_count: int = 0
    failure_count: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0


class TransitionDispatcher:
    """Fans a pre-formatted message out to registered async callbacks."""

    def __init__(self, *, dry_run: bool = False) -> None:
        self._callbacks: list[TransitionCallback] = []
        self._dry_run = dry_run

    @property
    def callback_count(self) -> int:
        return len(self._callbacks)

    def register(self, callback: TransitionCallback) -> None:
        """Register a handler. Registering the same handler twice is a no-op."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister(self, callback: TransitionCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def dispatch(self, message: str) -> DispatchResult:
        """Deliver ``message`` to every callback concurrently."""
        result = DispatchResult()
        if self._dry_run:
            logger.info("[DRY RUN] Would send transition notification: %s", message.splitlines()[0] if message else "")
            return result
        if not self._callbacks:
            logger.debug("No transition callbacks registered; dropping notification")
            return result

        outcomes = await asyncio.gather(
            *(self._invoke(callback, message) for callback in self._callbacks),
        )
        for error in outcomes:
            if error is None:
                result.success_count += 1
            else:
                result.failure_count += 1
                result.errors.append(error)
        if not result.all_succeeded:
            logger.warning(
                "Transition notification partially failed: %d/%d callbacks succeeded",
                result.success_count,
                result.success_count + result.failure_count,
            )
        return result

    async def _invoke(self, callback: TransitionCallback, message: str) -> str | None:
        try:
            await callback(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            name = getattr(callback, "__qualname__", repr(callback))
            logger.warning("Transition callback %s failed: %s", name, e)
            return f"{name}: {e}"
        return None
