"""Domain DTOs for the migration pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Label(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str


class ArchiveState(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    ARCHIVED = "ARCHIVED"


class RawRecord(BaseModel):
    """One saved article as the source delivered it.

    Timestamps are kept exactly as received; the transformer owns their
    interpretation so that a malformed value fails one record, not the page.
    """

    model_config = ConfigDict(frozen=True)

    source_id: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    created_at: Any = Field(None, description="초 단위 epoch (원본 그대로)")
    published_at: Any = Field(None, description="게시일 (원본 그대로)")
    is_archived: bool = False
    is_favorite: bool = False
    tags: Tuple[str, ...] = ()
    # optional enrichment; never required downstream
    excerpt: Optional[str] = None
    domain: Optional[str] = None
    top_image_url: Optional[str] = None
    authors: Tuple[str, ...] = ()
    time_to_read: Optional[int] = None

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> "RawRecord":
        item = node.get("item") or {}
        if not isinstance(item, dict):
            item = {}
        tags = tuple(
            str(tag.get("name"))
            for tag in (node.get("tags") or [])
            if isinstance(tag, dict) and tag.get("name")
        )
        authors = tuple(
            str(author.get("name"))
            for author in (item.get("authors") or [])
            if isinstance(author, dict) and author.get("name")
        )
        time_to_read = item.get("timeToRead")
        return cls(
            source_id=_str_or_none(node.get("id")),
            url=_str_or_none(item.get("givenUrl") or node.get("url") or item.get("resolvedUrl")),
            title=_str_or_none(item.get("title")),
            content=item.get("article") if isinstance(item.get("article"), str) else None,
            created_at=node.get("_createdAt"),
            published_at=item.get("datePublished"),
            is_archived=bool(node.get("isArchived")),
            is_favorite=bool(node.get("isFavorite")),
            tags=tags,
            excerpt=_str_or_none(item.get("excerpt")),
            domain=_str_or_none(item.get("domain")),
            top_image_url=_str_or_none(item.get("topImageUrl")),
            authors=authors,
            time_to_read=time_to_read if isinstance(time_to_read, int) else None,
        )

    @classmethod
    def from_edge(cls, edge: Dict[str, Any]) -> "RawRecord":
        node = edge.get("node") if isinstance(edge, dict) else None
        return cls.from_node(node if isinstance(node, dict) else {})


class Page(BaseModel):
    """One fetched page; consumed entirely before the next fetch."""

    model_config = ConfigDict(frozen=True)

    records: Tuple[RawRecord, ...] = ()
    cursor: Optional[str] = None
    has_next: bool = False

    @model_validator(mode="after")
    def _cursor_required_when_more(self) -> "Page":
        if self.has_next and not self.cursor:
            raise ValueError("has_next=True 인 페이지에는 cursor가 필요합니다.")
        return self


class TransformedPayload(BaseModel):
    """Destination-shaped save request for one record."""

    model_config = ConfigDict(frozen=True)

    url: str
    title: Optional[str] = None
    content: Optional[str] = None
    client_request_id: str
    labels: Optional[Tuple[Label, ...]] = None
    state: ArchiveState = ArchiveState.SUCCEEDED
    saved_at: datetime
    published_at: Optional[datetime] = None
    source: str = "api"

    @model_validator(mode="after")
    def _labels_never_empty(self) -> "TransformedPayload":
        if self.labels is not None and len(self.labels) == 0:
            raise ValueError("labels는 빈 배열 대신 None이어야 합니다.")
        return self

    def to_input(self) -> Dict[str, Any]:
        """Render the ``SavePageInput`` variables; absent fields are omitted."""
        data: Dict[str, Any] = {
            "url": self.url,
            "clientRequestId": self.client_request_id,
            "title": self.title,
            "originalContent": self.content,
            "savedAt": self.saved_at.isoformat(),
            "source": self.source,
            "state": self.state.value,
        }
        if self.published_at is not None:
            data["publishedAt"] = self.published_at.isoformat()
        # The server rejects an empty array, so the key is left out instead
        if self.labels:
            data["labels"] = [{"name": label.name} for label in self.labels]
        return data


class FailureRecord(BaseModel):
    """Audit row for a record that could not be durably written."""

    model_config = ConfigDict(frozen=True)

    url: str = ""
    title: str = ""
    tags: str = ""
    timestamp: str = ""
    reason: str = ""


class SaveResult(BaseModel):
    url: Optional[str] = None
    client_request_id: Optional[str] = None


class WriteResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    ok: bool
    record: RawRecord
    payload: Optional[TransformedPayload] = None
    attempts: int = 0
    error: Optional[str] = None


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
