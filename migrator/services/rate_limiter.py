"""Process-wide throttle shared by the source fetcher and the destination sink."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from functools import wraps
from typing import Awaitable, Callable, Deque, Optional, TypeVar

from migrator.settings import RateLimitConfig

T = TypeVar("T")


class RateLimiter:
    """Sliding-window limiter with an optional minimum spacing between starts.

    - window: at most ``max_calls`` admissions within any ``period`` seconds
    - spacing: consecutive admissions at least ``min_interval`` seconds apart

    Waiters are admitted one at a time in arrival order; the lock is held while
    sleeping so a later caller can never overtake an earlier one.
    """

    def __init__(
        self,
        max_calls: Optional[int] = None,
        period: float = 60.0,
        *,
        min_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_calls is not None and max_calls <= 0:
            raise ValueError("max_calls는 양수여야 합니다.")
        if period <= 0:
            raise ValueError("period는 양수여야 합니다.")
        self._max_calls = max_calls
        self._period = period
        self._min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._starts: Deque[float] = deque()
        self._last_start: Optional[float] = None
        self._lock = asyncio.Lock()
        self.admitted = 0

    @classmethod
    def from_config(cls, config: RateLimitConfig, **kwargs) -> "RateLimiter":
        return cls(
            config.count,
            config.window_ms / 1000.0,
            min_interval=config.min_interval_ms / 1000.0,
            **kwargs,
        )

    def _wait_time(self, now: float) -> float:
        while self._starts and now - self._starts[0] >= self._period:
            self._starts.popleft()
        wait = 0.0
        if self._max_calls is not None and len(self._starts) >= self._max_calls:
            wait = self._starts[0] + self._period - now
        if self._last_start is not None and self._min_interval > 0:
            wait = max(wait, self._last_start + self._min_interval - now)
        return wait

    async def admit(self) -> None:
        """Suspend until the next send slot is available, then claim it."""
        async with self._lock:
            while True:
                now = self._clock()
                wait = self._wait_time(now)
                if wait <= 0:
                    self._starts.append(now)
                    self._last_start = now
                    self.admitted += 1
                    return
                await self._sleep(wait)

    def wrap(self, operation: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(operation)
        async def _limited(*args, **kwargs) -> T:
            await self.admit()
            return await operation(*args, **kwargs)

        return _limited
