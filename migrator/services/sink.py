"""Destination writer that retries transient failures and never raises per record."""

from __future__ import annotations

import asyncio
from typing import Protocol

from migrator.connectors.base import (
    DestinationValidationError,
    RetryExhaustedError,
    TransientError,
)
from migrator.models.domain import RawRecord, SaveResult, TransformedPayload, WriteResult
from migrator.services.error_collector import ErrorCollector
from migrator.services.rate_limiter import RateLimiter
from migrator.services.retry import RetryDecision, RetryPolicy
from migrator.services.transformer import failure_from_record
from migrator.utils.logging import get_logger

logger = get_logger(__name__)


class Destination(Protocol):
    async def save_page(self, payload: TransformedPayload) -> SaveResult: ...  # noqa: D401


def classify_write_error(error: BaseException, *, retry_validation_once: bool = False) -> RetryDecision:
    if isinstance(error, TransientError):
        return RetryDecision.RETRY
    if isinstance(error, DestinationValidationError) and retry_validation_once:
        return RetryDecision.RETRY_ONCE
    return RetryDecision.GIVE_UP


def describe_error(error: BaseException) -> str:
    if isinstance(error, RetryExhaustedError):
        error = error.last_error
    return f"{type(error).__name__}: {error}"


class RetryingSink:
    def __init__(
        self,
        destination: Destination,
        *,
        retry_policy: RetryPolicy,
        rate_limiter: RateLimiter,
        collector: ErrorCollector,
    ) -> None:
        self._destination = destination
        self._retry = retry_policy
        self._limiter = rate_limiter
        self._collector = collector

    async def write(self, payload: TransformedPayload, *, origin: RawRecord) -> WriteResult:
        attempts = 0

        async def _attempt() -> SaveResult:
            nonlocal attempts
            attempts += 1
            # every attempt, retries included, passes through the shared limiter
            await self._limiter.admit()
            logger.info('Saving "%s" (%s)', payload.title or "", payload.url, extra={"attempt": attempts})
            return await self._destination.save_page(payload)

        def _on_retry(attempt: int, exc: BaseException, wait: float) -> None:
            logger.warning(
                "sink.write.retry",
                extra={"url": payload.url, "attempt": attempt, "wait": round(wait, 3), "error": str(exc)},
            )

        try:
            await self._retry.run(_attempt, on_retry=_on_retry)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            reason = describe_error(exc)
            logger.error("sink.write.failed", extra={"url": payload.url, "attempts": attempts, "error": reason})
            self._collector.record(failure_from_record(origin, reason))
            return WriteResult(ok=False, record=origin, payload=payload, attempts=attempts, error=reason)
        return WriteResult(ok=True, record=origin, payload=payload, attempts=attempts)

    def record_failure(self, record: RawRecord, error: BaseException) -> WriteResult:
        """Register a record that never reached the destination (e.g. it failed to transform)."""
        reason = describe_error(error)
        logger.error("sink.record.failed", extra={"url": record.url, "error": reason})
        self._collector.record(failure_from_record(record, reason))
        return WriteResult(ok=False, record=record, attempts=0, error=reason)


def build_write_policy(
    retry: RetryPolicy,
    max_attempts: int,
    *,
    retry_validation_once: bool = False,
) -> RetryPolicy:
    """Copy of ``retry`` using the sink's attempt budget and classifier."""
    return RetryPolicy(
        max_attempts=max_attempts,
        base_delay=retry.base_delay,
        max_delay=retry.max_delay,
        jitter=retry.jitter,
        classify=lambda exc: classify_write_error(exc, retry_validation_once=retry_validation_once),
        sleep=retry.sleep,
        rng=retry.rng,
    )
