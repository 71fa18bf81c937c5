"""Minimum spacing between completion calls per conversation thread."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

from copilot_bridge.log import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """Tracks the last call time per ``(chat_id, topic)`` for this process only."""

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if min_interval < 0:
            raise ValueError(f"min_interval must be non-negative, got {min_interval}")
        self._min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_call: dict[tuple[int, str], float] = {}

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def acquire(self, chat_id: int, topic: str) -> float:
        """Wait until the thread may call again, then mark it. Returns seconds waited."""
        if self._min_interval == 0:
            return 0.0

        key = (chat_id, topic)
        waited = 0.0
        last = self._last_call.get(key)
        if last is not None:
            wait = self._min_interval - (self._clock() - last)
            if wait > 0:
                logger.debug("rate_limit_wait", chat_id=chat_id, topic=topic, seconds=round(wait, 3))
                await self._sleep(wait)
                waited = wait
        self._last_call[key] = self._clock()
        return waited

    def reset(self) -> None:
        self._last_call.clear()
