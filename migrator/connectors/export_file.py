"""Pocket HTML export (ril_export.html) as an offline page source."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from migrator.models.domain import Page, RawRecord

from .base import FatalFetchError


class Section(str, Enum):
    NONE = "none"
    UNREAD = "unread"
    ARCHIVE = "archive"


class ExportParser:
    """State machine over the export markup.

    Headings and anchors are visited in document order. ``section`` follows the
    most recent ``<h1>``; ``current_item`` holds the anchor being turned into a
    record. Anchors outside a list item or before the first known heading are
    navigation, not saves.
    """

    def __init__(self) -> None:
        self.section = Section.NONE
        self.current_item: Optional[Dict[str, Any]] = None
        self.records: List[RawRecord] = []

    def feed(self, html: str) -> List[RawRecord]:
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup.find_all(["h1", "a"]):
            if tag.name == "h1":
                self.section = _section_for(tag.get_text())
            else:
                self._on_anchor(tag)
        return self.records

    def _on_anchor(self, anchor: Tag) -> None:
        if self.section is Section.NONE or anchor.find_parent("li") is None:
            return
        self.current_item = {
            "href": anchor.get("href") or "",
            "time_added": anchor.get("time_added") or None,
            "tags": anchor.get("tags") or "",
            "title": anchor.get_text(),
        }
        self.records.append(self._record_from(self.current_item))
        self.current_item = None

    def _record_from(self, item: Dict[str, Any]) -> RawRecord:
        title = item["title"].strip() or None
        tags = tuple(tag.strip() for tag in str(item["tags"]).split(",") if tag.strip())
        return RawRecord(
            url=item["href"] or None,
            title=title,
            created_at=item["time_added"],
            is_archived=self.section is Section.ARCHIVE,
            tags=tags,
        )


def _section_for(heading: str) -> Section:
    text = heading.strip().lower()
    if "unread" in text:
        return Section.UNREAD
    if "archive" in text or text == "read":
        return Section.ARCHIVE
    return Section.NONE


def parse_export(html: str) -> List[RawRecord]:
    return ExportParser().feed(html)


class ExportFileSource:
    """Single-page source over an export file; has_next is always False."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self.pages_fetched = 0

    async def fetch_next_page(self, cursor: Optional[str] = None) -> Page:
        if cursor is not None:
            raise FatalFetchError("export 파일 소스는 한 페이지뿐입니다.")
        try:
            html = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise FatalFetchError(f"export 파일을 읽을 수 없습니다: {self._path}") from exc
        self.pages_fetched += 1
        return Page(records=tuple(parse_export(html)), cursor=None, has_next=False)

    async def aclose(self) -> None:
        return None
