"""One-off import of a single Pocket item by id."""

from __future__ import annotations

from typing import Optional

from migrator.connectors.pocket import PocketSource
from migrator.models.domain import WriteResult
from migrator.services.sink import Destination
from migrator.settings import PipelineConfig, Settings, get_settings
from migrator.tasks.migrate import build_collaborators, build_destination, build_source
from migrator.utils.logging import get_logger

logger = get_logger(__name__)


async def import_single_core(
    item_id: str,
    settings: Optional[Settings] = None,
    *,
    source: Optional[PocketSource] = None,
    destination: Optional[Destination] = None,
    config: Optional[PipelineConfig] = None,
) -> WriteResult:
    """Fetch one saved item and write it through the same transform/sink path as a full run.

    A failed write is still flushed to the dated error report.
    """
    cfg = settings or get_settings()
    pipeline_config = config or cfg.to_pipeline_config()
    owned: list = []
    try:
        if destination is None:
            destination = build_destination(cfg)
            owned.append(destination)
        parts = build_collaborators(pipeline_config, destination)
        if source is None:
            source = build_source(cfg, limiter=parts.limiter, retry_policy=parts.fetch_policy)
            owned.append(source)

        record = await source.get_saved_item(item_id)
        logger.info("import_single.fetched", extra={"item_id": item_id, "url": record.url})
        try:
            payload = parts.transformer.transform(record)
        except Exception as exc:
            result = parts.sink.record_failure(record, exc)
        else:
            result = await parts.sink.write(payload, origin=record)
        parts.collector.flush()
        return result
    finally:
        for connector in owned:
            await connector.aclose()
