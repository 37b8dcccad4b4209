"""Exponential backoff retry policy applied at the fetch and write call sites."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from migrator.connectors.base import RetryExhaustedError, TransientError
from migrator.settings import RetryConfig
from migrator.utils.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class RetryDecision(str, Enum):
    RETRY = "retry"
    RETRY_ONCE = "retry_once"
    GIVE_UP = "give_up"


def retry_transient(error: BaseException) -> RetryDecision:
    if isinstance(error, TransientError):
        return RetryDecision.RETRY
    return RetryDecision.GIVE_UP


SleepFn = Callable[[float], Awaitable[None]]
RetryHook = Callable[[int, BaseException, float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with doubling delay and additive jitter.

    ``classify`` decides per error whether another attempt is allowed.
    ``RETRY_ONCE`` only grants a second attempt, never a third.
    """

    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 30.0
    jitter: float = 0.2
    classify: Callable[[BaseException], RetryDecision] = retry_transient
    sleep: SleepFn = asyncio.sleep
    rng: random.Random = field(default_factory=random.Random)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts는 1 이상이어야 합니다.")
        if self.max_delay <= 0 or self.max_delay < self.base_delay:
            raise ValueError("max_delay는 0보다 크고 base_delay 이상이어야 합니다.")

    @classmethod
    def from_config(
        cls,
        config: RetryConfig,
        *,
        max_attempts: Optional[int] = None,
        classify: Callable[[BaseException], RetryDecision] = retry_transient,
        sleep: SleepFn = asyncio.sleep,
    ) -> "RetryPolicy":
        return cls(
            max_attempts=int(max_attempts or config.max_attempts),
            base_delay=config.base_delay_ms / 1000.0,
            max_delay=config.max_delay_ms / 1000.0,
            jitter=float(config.jitter),
            classify=classify,
            sleep=sleep,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the ``attempt``-th failure (1-based)."""
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if self.jitter > 0 and delay > 0:
            delay += self.rng.uniform(0, delay * self.jitter)
        return min(self.max_delay, delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        on_retry: Optional[RetryHook] = None,
    ) -> T:
        attempts = 0
        while True:
            attempts += 1
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                decision = self.classify(exc)
                if decision is RetryDecision.GIVE_UP:
                    raise
                if decision is RetryDecision.RETRY_ONCE and attempts >= 2:
                    raise
                if attempts >= self.max_attempts:
                    raise RetryExhaustedError(attempts, exc) from exc
                wait = self.delay_for(attempts)
                if on_retry is not None:
                    on_retry(attempts, exc, wait)
                else:
                    logger.warning(
                        "retry.scheduled",
                        extra={"attempt": attempts, "max_attempts": self.max_attempts, "wait": round(wait, 3), "error": str(exc)},
                    )
                await self.sleep(wait)
