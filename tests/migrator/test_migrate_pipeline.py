from __future__ import annotations

import asyncio
import csv
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from migrator.connectors.base import FatalFetchError, TransientWriteError
from migrator.models.domain import Page, RawRecord, SaveResult, TransformedPayload
from migrator.services.error_collector import ErrorCollector
from migrator.services.rate_limiter import RateLimiter
from migrator.services.retry import RetryPolicy
from migrator.services.sink import RetryingSink, build_write_policy
from migrator.services.transformer import RecordTransformer
from migrator.tasks.migrate import MigrationPipeline, RunState, migrate_core
from migrator.settings import PipelineConfig, RetryConfig, Settings


def _rec(n: int, **overrides) -> RawRecord:
    data = {
        "source_id": f"saved-{n}",
        "url": f"https://example.com/{n}",
        "title": f"Article {n}",
        "created_at": 1_700_000_000 + n,
        "tags": ("t",),
    }
    data.update(overrides)
    return RawRecord(**data)


class ScriptedSource:
    """Serves fixed pages; logs every request into a shared event list."""

    def __init__(self, pages: List[Page], events: List[Tuple[str, object]], *, fail_at: Optional[int] = None):
        self.pages = pages
        self.events = events
        self.fail_at = fail_at
        self.cursors: List[Optional[str]] = []

    async def fetch_next_page(self, cursor: Optional[str] = None) -> Page:
        index = len(self.cursors)
        self.cursors.append(cursor)
        self.events.append(("fetch", index))
        if self.fail_at is not None and index == self.fail_at:
            raise FatalFetchError("401 Unauthorized")
        return self.pages[index]


class RecordingDestination:
    def __init__(self, events: List[Tuple[str, object]], *, failing: Optional[Dict[str, int]] = None, delay: float = 0.0):
        self.events = events
        self.failing = dict(failing or {})
        self.delay = delay
        self.saved: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def save_page(self, payload: TransformedPayload) -> SaveResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.failing.get(payload.url, 0) != 0:
                self.failing[payload.url] -= 1
                raise TransientWriteError("503")
            self.saved.append(payload.url)
            self.events.append(("write", payload.url))
            return SaveResult(url=payload.url, client_request_id=payload.client_request_id)
        finally:
            self.in_flight -= 1


def _pages(*sizes: int) -> List[Page]:
    pages: List[Page] = []
    n = 0
    for i, size in enumerate(sizes):
        records = tuple(_rec(n + k + 1) for k in range(size))
        n += size
        last = i == len(sizes) - 1
        pages.append(Page(records=records, cursor=None if last else f"cursor-{i + 1}", has_next=not last))
    return pages


def _pipeline(source, destination, tmp_path: Path, no_sleep, *, attempts: int = 3, concurrency: int = 1, queue_maxsize: int = 2, transformer=None):
    collector = ErrorCollector(tmp_path, today=lambda: date(2024, 6, 1))
    sink = RetryingSink(
        destination,
        retry_policy=build_write_policy(RetryPolicy(base_delay=0.0, jitter=0.0, sleep=no_sleep), attempts),
        rate_limiter=RateLimiter(None, 1.0),
        collector=collector,
    )
    pipeline = MigrationPipeline(
        source,
        transformer or RecordTransformer(),
        sink,
        collector,
        concurrency=concurrency,
        queue_maxsize=queue_maxsize,
    )
    return pipeline, collector


@pytest.mark.asyncio
async def test_pagination_terminates_after_last_page(tmp_path: Path, no_sleep):
    events: list = []
    source = ScriptedSource(_pages(2, 2, 1), events)
    pipeline, _ = _pipeline(source, RecordingDestination(events), tmp_path, no_sleep)

    summary = await pipeline.run()

    assert summary.state is RunState.DONE
    assert summary.pages_fetched == 3
    assert len(source.cursors) == 3
    assert summary.exit_code == 0


@pytest.mark.asyncio
async def test_cursor_monotonicity(tmp_path: Path, no_sleep):
    events: list = []
    source = ScriptedSource(_pages(1, 1, 1), events)
    pipeline, _ = _pipeline(source, RecordingDestination(events), tmp_path, no_sleep)

    await pipeline.run()

    assert source.cursors == [None, "cursor-1", "cursor-2"]


@pytest.mark.asyncio
async def test_every_record_is_accounted_for(tmp_path: Path, no_sleep):
    events: list = []
    pages = _pages(3, 4, 2)
    destination = RecordingDestination(events, failing={"https://example.com/5": 10})
    pipeline, collector = _pipeline(ScriptedSource(pages, events), destination, tmp_path, no_sleep)

    summary = await pipeline.run()

    total = sum(len(page.records) for page in pages)
    assert summary.records_seen == total
    assert summary.succeeded + summary.failed == total
    assert summary.failed == 1
    assert len(destination.saved) == total - 1
    assert [f.url for f in collector.failures] == ["https://example.com/5"]


@pytest.mark.asyncio
async def test_partial_failure_isolation_and_report(tmp_path: Path, no_sleep):
    events: list = []
    destination = RecordingDestination(events, failing={"https://example.com/3": 99})
    pipeline, _ = _pipeline(ScriptedSource(_pages(5), events), destination, tmp_path, no_sleep, attempts=3)

    summary = await pipeline.run()

    assert summary.state is RunState.DONE
    assert summary.exit_code == 0
    assert destination.saved == [f"https://example.com/{n}" for n in (1, 2, 4, 5)]
    assert summary.report_path == tmp_path / "error_2024-06-01.csv"
    with summary.report_path.open(newline="", encoding="utf-8") as fh:
        rows = list(csv.reader(fh))
    assert len(rows) == 2
    assert rows[1][:4] == ["https://example.com/3", "Article 3", "t", str(1_700_000_003)]


@pytest.mark.asyncio
async def test_no_report_when_everything_succeeds(tmp_path: Path, no_sleep):
    events: list = []
    pipeline, _ = _pipeline(ScriptedSource(_pages(3), events), RecordingDestination(events), tmp_path, no_sleep)

    summary = await pipeline.run()

    assert summary.report_path is None
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_fatal_fetch_aborts_but_flushes_collected_failures(tmp_path: Path, no_sleep):
    events: list = []
    source = ScriptedSource(_pages(2, 2, 2, 2, 2), events, fail_at=2)
    destination = RecordingDestination(events, failing={"https://example.com/2": 99})
    pipeline, _ = _pipeline(source, destination, tmp_path, no_sleep)

    summary = await pipeline.run()

    assert summary.state is RunState.ABORTED
    assert summary.exit_code == 1
    assert "401" in (summary.error or "")
    assert len(source.cursors) == 3
    assert destination.saved == [f"https://example.com/{n}" for n in (1, 3, 4)]
    assert summary.report_path is not None and summary.report_path.exists()
    with summary.report_path.open(newline="", encoding="utf-8") as fh:
        rows = list(csv.reader(fh))
    assert [row[0] for row in rows[1:]] == ["https://example.com/2"]


@pytest.mark.asyncio
async def test_next_page_not_requested_until_page_consumed(tmp_path: Path, no_sleep):
    events: list = []
    pages = _pages(3, 3, 1)
    destination = RecordingDestination(events, delay=0.001)
    pipeline, _ = _pipeline(ScriptedSource(pages, events), destination, tmp_path, no_sleep, queue_maxsize=10)

    await pipeline.run()

    fetch_positions = [i for i, event in enumerate(events) if event[0] == "fetch"]
    writes_before = [sum(1 for e in events[:pos] if e[0] == "write") for pos in fetch_positions]
    assert writes_before == [0, 3, 6]


@pytest.mark.asyncio
async def test_bounded_concurrency_shares_limiter_and_isolates_failures(tmp_path: Path, no_sleep):
    events: list = []
    destination = RecordingDestination(events, failing={"https://example.com/2": 99}, delay=0.001)
    pipeline, collector = _pipeline(
        ScriptedSource(_pages(6, 6), events), destination, tmp_path, no_sleep, concurrency=3, queue_maxsize=3
    )

    summary = await pipeline.run()

    assert summary.state is RunState.DONE
    assert summary.succeeded == 11
    assert summary.failed == 1
    assert 1 < destination.max_in_flight <= 3
    assert len(collector.failures) == 1


@pytest.mark.asyncio
async def test_transform_error_is_recorded_and_run_continues(tmp_path: Path, no_sleep):
    events: list = []
    page = Page(records=(_rec(1), _rec(2, created_at="garbage"), _rec(3, url=None)), has_next=False)
    destination = RecordingDestination(events)
    pipeline, collector = _pipeline(ScriptedSource([page], events), destination, tmp_path, no_sleep)

    summary = await pipeline.run()

    assert summary.state is RunState.DONE
    assert destination.saved == ["https://example.com/1"]
    assert summary.failed == 2
    reasons = [f.reason for f in collector.failures]
    assert all(reason.startswith("TransformError") for reason in reasons)
    assert collector.failures[1].title == "Article 3"


@pytest.mark.asyncio
async def test_state_moves_through_the_run(tmp_path: Path, no_sleep, caplog):
    events: list = []
    pipeline, _ = _pipeline(ScriptedSource(_pages(1), events), RecordingDestination(events), tmp_path, no_sleep)
    assert pipeline.state is RunState.INIT

    with caplog.at_level("INFO", logger="migrator.tasks.migrate"):
        await pipeline.run()

    transitions = [r.to for r in caplog.records if r.getMessage() == "run.state"]
    assert transitions == ["STREAMING", "DRAINING", "FLUSHING", "DONE"]


@pytest.mark.asyncio
async def test_migrate_core_wires_settings(tmp_path: Path, no_sleep):
    events: list = []
    source = ScriptedSource(_pages(2), events)
    destination = RecordingDestination(events)
    settings = Settings(OMNIVORE_API_KEY="k", GLOBAL_IMPORT_LABEL="Pocket")
    config = PipelineConfig(
        global_label="Pocket",
        retry=RetryConfig(max_attempts=2, base_delay_ms=0, jitter=0.0),
        report_dir=tmp_path,
    )

    summary = await migrate_core(settings, source=source, destination=destination, config=config)

    assert summary.state is RunState.DONE
    assert summary.succeeded == 2
    assert len(destination.saved) == 2
