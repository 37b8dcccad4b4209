"""Append-only failure list, flushed once to a dated CSV report."""

from __future__ import annotations

import csv
import threading
from datetime import date
from pathlib import Path
from typing import Callable, List, Optional

from migrator.connectors.base import ReportWriteError
from migrator.models.domain import FailureRecord
from migrator.utils.logging import get_logger

REPORT_COLUMNS = [
    ("url", "URL"),
    ("title", "Title"),
    ("tags", "Tags"),
    ("timestamp", "Timestamp"),
    ("reason", "Reason"),
]

logger = get_logger(__name__)


def report_path_for(report_dir: Path, day: date) -> Path:
    # Same-day runs share one name so a rerun overwrites its predecessor
    return Path(report_dir) / f"error_{day.isoformat()}.csv"


class ErrorCollector:
    def __init__(self, report_dir: Path | str = ".", *, today: Callable[[], date] = date.today) -> None:
        self._report_dir = Path(report_dir)
        self._today = today
        self._failures: List[FailureRecord] = []
        self._lock = threading.Lock()
        self._flushed = False

    def record(self, failure: FailureRecord) -> None:
        with self._lock:
            if self._flushed:
                raise RuntimeError("이미 flush된 ErrorCollector에는 기록할 수 없습니다.")
            self._failures.append(failure)

    @property
    def failures(self) -> List[FailureRecord]:
        with self._lock:
            return list(self._failures)

    def __len__(self) -> int:
        with self._lock:
            return len(self._failures)

    def flush(self) -> Optional[Path]:
        """Write the report if anything failed; returns its path, or None when there was nothing to write."""
        with self._lock:
            if self._flushed:
                raise RuntimeError("ErrorCollector는 한 번만 flush할 수 있습니다.")
            self._flushed = True
            failures = list(self._failures)

        if not failures:
            return None

        path = report_path_for(self._report_dir, self._today())
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", newline="", encoding="utf-8") as fh:
                writer = csv.writer(fh)
                writer.writerow([title for _, title in REPORT_COLUMNS])
                for failure in failures:
                    writer.writerow([getattr(failure, field) for field, _ in REPORT_COLUMNS])
        except OSError as exc:
            logger.error("report.write_failed", extra={"path": str(path), "failures": len(failures), "error": str(exc)})
            raise ReportWriteError(path, len(failures), exc) from exc
        logger.info("report.written", extra={"path": str(path), "failures": len(failures)})
        return path
