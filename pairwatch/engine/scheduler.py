from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from pairwatch.engine.config import EngineConfig
from pairwatch.utils.logging import get_logger

logger = get_logger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class Scheduler(Protocol):
    def schedule(self, delay_seconds: float, callback: TimerCallback) -> Any: ...

    def cancel(self, handle: Any) -> None: ...


class AsyncioScheduler:
    """One-shot timers on the running event loop. No polling."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._tasks: set[asyncio.Task] = set()

    def schedule(self, delay_seconds: float, callback: TimerCallback) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(delay_seconds, 0.0), self._fire, callback)

    def _fire(self, callback: TimerCallback) -> None:
        task = asyncio.ensure_future(callback())
        self._tasks.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Timer callback failed: {task.exception()!r}")

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()


def draw_interval_seconds(config: EngineConfig, rng: random.Random | None = None) -> float:
    """Uniform draw in [min, max] minutes, fresh each time so the cadence can't be learned."""
    r = rng or random
    minutes = r.uniform(config.verification_min_minutes, config.verification_max_minutes)
    return minutes * 60.0
