"""Pipeline orchestration: paginated source → bounded queue → transform + write."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Protocol

from migrator.connectors.base import ConfigurationError, FatalFetchError
from migrator.connectors.omnivore import OmnivoreClient
from migrator.connectors.pocket import PocketSource
from migrator.models.domain import Page, RawRecord
from migrator.services.error_collector import ErrorCollector
from migrator.services.rate_limiter import RateLimiter
from migrator.services.retry import RetryPolicy
from migrator.services.sink import Destination, RetryingSink, build_write_policy
from migrator.services.transformer import RecordTransformer
from migrator.settings import PipelineConfig, Settings, get_settings
from migrator.utils.logging import get_logger

logger = get_logger(__name__)


class RunState(str, Enum):
    INIT = "INIT"
    STREAMING = "STREAMING"
    DRAINING = "DRAINING"
    FLUSHING = "FLUSHING"
    DONE = "DONE"
    ABORTED = "ABORTED"


class PageSource(Protocol):
    async def fetch_next_page(self, cursor: Optional[str] = None) -> Page: ...  # noqa: D401


@dataclass
class RunSummary:
    state: RunState
    pages_fetched: int = 0
    records_seen: int = 0
    succeeded: int = 0
    failed: int = 0
    report_path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed

    @property
    def exit_code(self) -> int:
        return 1 if self.state is RunState.ABORTED else 0


_STOP = object()


class MigrationPipeline:
    """Producer/consumer run over one source collection.

    The producer owns the cursor and fetches a page only after every record of
    the previous page has been taken off the queue and processed. Consumers
    transform and write one record at a time; a per-record failure is recorded
    and never stops the run. Only a source failure aborts.
    """

    def __init__(
        self,
        source: PageSource,
        transformer: RecordTransformer,
        sink: RetryingSink,
        collector: ErrorCollector,
        *,
        concurrency: int = 1,
        queue_maxsize: int = 50,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency는 1 이상이어야 합니다.")
        self._source = source
        self._transformer = transformer
        self._sink = sink
        self._collector = collector
        self._concurrency = concurrency
        self._queue_maxsize = queue_maxsize
        self.trace_id = str(uuid.uuid4())
        self.state = RunState.INIT
        self.cursor: Optional[str] = None
        self.pages_fetched = 0
        self.records_seen = 0
        self.succeeded = 0
        self.failed = 0

    def _set_state(self, state: RunState) -> None:
        logger.info("run.state", extra={"trace_id": self.trace_id, "from": self.state.value, "to": state.value})
        self.state = state

    async def _produce(self, queue: asyncio.Queue) -> None:
        while True:
            page = await self._source.fetch_next_page(self.cursor)
            self.pages_fetched += 1
            for record in page.records:
                await queue.put(record)
                self.records_seen += 1
            await queue.join()
            if not page.has_next:
                return
            self.cursor = page.cursor

    async def _consume(self, queue: asyncio.Queue) -> None:
        while True:
            item = await queue.get()
            try:
                if item is _STOP:
                    return
                await self._process(item)
            finally:
                queue.task_done()

    async def _process(self, record: RawRecord) -> None:
        try:
            payload = self._transformer.transform(record)
            result = await self._sink.write(payload, origin=record)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # TransformError lands here, as does anything unexpected about this one record
            result = self._sink.record_failure(record, exc)
        if result.ok:
            self.succeeded += 1
        else:
            self.failed += 1

    async def run(self) -> RunSummary:
        self._set_state(RunState.STREAMING)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        workers: List[asyncio.Task] = [
            asyncio.create_task(self._consume(queue)) for _ in range(self._concurrency)
        ]
        error: Optional[BaseException] = None
        try:
            try:
                await self._produce(queue)
            except FatalFetchError as exc:
                error = exc
            except Exception as exc:
                logger.exception("run.source.unexpected", extra={"trace_id": self.trace_id})
                error = FatalFetchError(f"소스 처리 중 예기치 못한 오류: {exc}")
                error.__cause__ = exc

            if error is None:
                self._set_state(RunState.DRAINING)
                for _ in workers:
                    await queue.put(_STOP)
                await asyncio.gather(*workers)
            else:
                logger.error("run.aborted", extra={"trace_id": self.trace_id, "error": str(error)})
                self._set_state(RunState.ABORTED)
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        if error is None:
            self._set_state(RunState.FLUSHING)
        report_path = self._collector.flush()
        if error is None:
            self._set_state(RunState.DONE)

        summary = RunSummary(
            state=self.state,
            pages_fetched=self.pages_fetched,
            records_seen=self.records_seen,
            succeeded=self.succeeded,
            failed=self.failed,
            report_path=report_path,
            error=str(error) if error is not None else None,
        )
        logger.info(
            "run.finished",
            extra={
                "trace_id": self.trace_id,
                "state": summary.state.value,
                "pages": summary.pages_fetched,
                "records": summary.records_seen,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
            },
        )
        return summary


@dataclass
class Collaborators:
    config: PipelineConfig
    limiter: RateLimiter
    fetch_policy: RetryPolicy
    transformer: RecordTransformer
    collector: ErrorCollector
    sink: RetryingSink


def build_collaborators(
    config: PipelineConfig,
    destination: Destination,
    *,
    limiter: Optional[RateLimiter] = None,
    fetch_policy: Optional[RetryPolicy] = None,
    collector: Optional[ErrorCollector] = None,
) -> Collaborators:
    limiter = limiter or RateLimiter.from_config(config.rate_limit)
    fetch_policy = fetch_policy or RetryPolicy.from_config(config.retry)
    collector = collector or ErrorCollector(config.report_dir)
    sink = RetryingSink(
        destination,
        retry_policy=build_write_policy(
            fetch_policy,
            config.write_retry_max_attempts,
            retry_validation_once=config.retry_validation_once,
        ),
        rate_limiter=limiter,
        collector=collector,
    )
    transformer = RecordTransformer(config.favorite_label, config.global_label)
    return Collaborators(config, limiter, fetch_policy, transformer, collector, sink)


def build_destination(settings: Settings) -> OmnivoreClient:
    if not settings.omnivore_api_key:
        raise ConfigurationError("OMNIVORE_API_KEY가 설정되지 않았습니다.")
    return OmnivoreClient(
        settings.omnivore_api_url,
        api_key=settings.omnivore_api_key.get_secret_value(),
        timeout=float(settings.http_timeout_seconds),
    )


def build_source(settings: Settings, *, limiter: RateLimiter, retry_policy: RetryPolicy) -> PocketSource:
    if not settings.pocket_cookie or not settings.pocket_consumer_key:
        raise ConfigurationError("POCKET_COOKIE / POCKET_CONSUMER_KEY가 설정되지 않았습니다.")
    return PocketSource(
        settings.pocket_graphql_url,
        consumer_key=settings.pocket_consumer_key.get_secret_value(),
        cookie=settings.pocket_cookie.get_secret_value(),
        rate_limiter=limiter,
        retry_policy=retry_policy,
        page_size=settings.page_size,
        timeout=float(settings.http_timeout_seconds),
    )


async def migrate_core(
    settings: Optional[Settings] = None,
    *,
    source: Optional[PageSource] = None,
    destination: Optional[Destination] = None,
    config: Optional[PipelineConfig] = None,
) -> RunSummary:
    """Build the run from settings and drive it to completion; test-friendly."""
    cfg = settings or get_settings()
    pipeline_config = config or cfg.to_pipeline_config()
    owned: list = []
    try:
        if destination is None:
            destination = build_destination(cfg)
            owned.append(destination)
        parts = build_collaborators(pipeline_config, destination)
        if source is None:
            source = build_source(
                cfg,
                limiter=parts.limiter,
                retry_policy=parts.fetch_policy,
            )
            owned.append(source)
        pipeline = MigrationPipeline(
            source,
            parts.transformer,
            parts.sink,
            parts.collector,
            concurrency=pipeline_config.write_concurrency,
            queue_maxsize=pipeline_config.queue_maxsize,
        )
        return await pipeline.run()
    finally:
        for connector in owned:
            await connector.aclose()
