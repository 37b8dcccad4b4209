"""Pure mapping from a source record to the destination save payload."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from migrator.connectors.base import TransformError
from migrator.models.domain import ArchiveState, FailureRecord, Label, RawRecord, TransformedPayload


def _new_request_id() -> str:
    return str(uuid.uuid4())


def _to_epoch_seconds(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    try:
        return float(text)
    except ValueError:
        return None


def parse_saved_at(value: Any) -> datetime:
    seconds = _to_epoch_seconds(value)
    if seconds is None:
        raise TransformError(f"created 타임스탬프가 올바르지 않습니다: {value!r}")
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise TransformError(f"created 타임스탬프 범위 오류: {value!r}") from exc


def parse_published_at(value: Any) -> Optional[datetime]:
    """Best-effort publish date; anything unreadable becomes None, never "now"."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    seconds = _to_epoch_seconds(value)
    # Pocket sends "0000-00-00 00:00:00" for unknown dates; fromisoformat rejects it
    try:
        if seconds is not None:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    except (OverflowError, OSError, ValueError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def failure_from_record(record: RawRecord, reason: str = "") -> FailureRecord:
    return FailureRecord(
        url=record.url or "",
        title=record.title or "",
        tags=",".join(record.tags),
        timestamp="" if record.created_at is None else str(record.created_at),
        reason=reason,
    )


class RecordTransformer:
    """Builds a ``TransformedPayload`` per record.

    The request id is drawn once here; the sink reuses the payload for every
    retry so the destination sees a stable idempotency key.
    """

    def __init__(
        self,
        favorite_label: Optional[str] = None,
        global_label: Optional[str] = None,
        *,
        request_id_factory: Callable[[], str] = _new_request_id,
    ) -> None:
        self.favorite_label = favorite_label or None
        self.global_label = global_label or None
        self._request_id_factory = request_id_factory

    def labels_for(self, record: RawRecord) -> Optional[tuple[Label, ...]]:
        labels: List[Label] = [Label(name=tag) for tag in record.tags if tag]
        if record.is_favorite and self.favorite_label:
            labels.append(Label(name=self.favorite_label))
        if self.global_label:
            labels.append(Label(name=self.global_label))
        return tuple(labels) if labels else None

    def transform(self, record: RawRecord) -> TransformedPayload:
        if not record.url:
            raise TransformError(
                "레코드에 URL이 없습니다.",
                partial={"title": record.title, "source_id": record.source_id},
            )
        return TransformedPayload(
            url=record.url,
            title=record.title,
            content=record.content,
            client_request_id=self._request_id_factory(),
            labels=self.labels_for(record),
            state=ArchiveState.ARCHIVED if record.is_archived else ArchiveState.SUCCEEDED,
            saved_at=parse_saved_at(record.created_at),
            published_at=parse_published_at(record.published_at),
        )
