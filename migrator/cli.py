"""Command-line entry point for a migration run.

Usage:
  migrate-saves                      # Pocket API → Omnivore
  migrate-saves --export ril_export.html
  migrate-saves --item 1234567890    # single item

Reads configuration from .env via pydantic settings.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List

from migrator.connectors.base import ConfigurationError, FatalFetchError, ReportWriteError
from migrator.connectors.export_file import ExportFileSource
from migrator.settings import PipelineConfig, Settings, get_settings
from migrator.tasks.import_single import import_single_core
from migrator.tasks.migrate import RunSummary, migrate_core
from migrator.utils.logging import configure_logging


def _print_summary(summary: RunSummary) -> None:
    if summary.error:
        print(f"Import aborted: {summary.error}", file=sys.stderr)
    else:
        print("Import finished.")
    print(
        f"{summary.processed} records processed "
        f"({summary.succeeded} saved, {summary.failed} failed, {summary.pages_fetched} pages)."
    )
    if summary.report_path is not None:
        print(f"Errors written to CSV file: {summary.report_path}")


def _build_config(settings: Settings, args: argparse.Namespace) -> PipelineConfig:
    """Settings plus command-line overrides, validated again as a whole."""
    overrides = {}
    if args.concurrency is not None:
        if not 1 <= args.concurrency <= 8:
            raise ValueError("--concurrency must be between 1 and 8")
        overrides["write_concurrency"] = args.concurrency
    if args.report_dir is not None:
        overrides["report_dir"] = Path(args.report_dir)
    base = settings.to_pipeline_config()
    return PipelineConfig.model_validate({**base.model_dump(), **overrides})


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Migrate saved articles from Pocket to Omnivore")
    parser.add_argument("--export", default=None, help="Read a Pocket HTML export instead of the API")
    parser.add_argument("--item", default=None, help="Import a single Pocket item by id")
    parser.add_argument("--concurrency", type=int, default=None, help="Concurrent writes (default: WRITE_CONCURRENCY)")
    parser.add_argument("--report-dir", default=None, help="Directory for the error CSV (default: ERROR_REPORT_DIR)")
    parser.add_argument("--log-json", action="store_true", help="Emit JSON log lines")
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
        config = _build_config(settings, args)
    except (RuntimeError, ValueError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level, json_enabled=args.log_json or settings.log_json)

    try:
        if args.item:
            result = asyncio.run(import_single_core(args.item, settings, config=config))
            print(f"{'Saved' if result.ok else 'Failed'}: {result.record.title or ''} ({result.record.url or ''})")
            return 0 if result.ok else 1

        source = ExportFileSource(args.export) if args.export else None
        summary = asyncio.run(migrate_core(settings, source=source, config=config))
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    except FatalFetchError as exc:
        print(f"Import aborted: {exc}", file=sys.stderr)
        return 1
    except ReportWriteError as exc:
        print(f"Could not write error report ({exc.failures} failed records): {exc}", file=sys.stderr)
        return 1

    _print_summary(summary)
    return summary.exit_code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
