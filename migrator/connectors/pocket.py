"""Pocket saved-items source (provider-injected for tests/offline)."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from migrator.models.domain import Page, RawRecord
from migrator.services.rate_limiter import RateLimiter
from migrator.services.retry import RetryPolicy
from migrator.utils.logging import get_logger

from . import queries
from .base import (
    FatalFetchError,
    GraphQLConnector,
    ProviderFn,
    RetryExhaustedError,
    TransientFetchError,
)

# The filter and sort stay fixed for the whole run so a consumed page is never re-requested.
SAVED_ITEMS_FILTER = {"statuses": ["UNREAD", "ARCHIVED"]}
SAVED_ITEMS_SORT = {"sortBy": "CREATED_AT", "sortOrder": "DESC"}

logger = get_logger(__name__)


class PocketSource(GraphQLConnector):
    """Cursor-paginated reader over the user's Pocket saves.

    - provider 주입 시: 오프라인 모드 (GraphQL 요청 body → 응답 dict)
    - provider 미주입 시: 실제 HTTP 호출
    """

    transient_error = TransientFetchError
    permanent_error = FatalFetchError
    service = "Pocket"

    def __init__(
        self,
        endpoint: str = "https://getpocket.com/graphql",
        *,
        consumer_key: str = "",
        cookie: str = "",
        rate_limiter: Optional[RateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        page_size: Optional[int] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        provider: Optional[ProviderFn] = None,
    ):
        super().__init__(
            endpoint,
            headers={"Cookie": cookie},
            params={"consumer_key": consumer_key, "enable_cors": "1"},
            timeout=timeout,
            client=client,
            provider=provider,
        )
        self._limiter = rate_limiter or RateLimiter()
        self._retry = retry_policy or RetryPolicy()
        self._page_size = page_size
        self.pages_fetched = 0

    def _variables(self, cursor: Optional[str]) -> Dict[str, Any]:
        pagination: Optional[Dict[str, Any]] = None
        if cursor is not None:
            pagination = {"after": cursor}
        if self._page_size:
            pagination = {**(pagination or {}), "first": int(self._page_size)}
        return {
            "filter": SAVED_ITEMS_FILTER,
            "sort": SAVED_ITEMS_SORT,
            "pagination": pagination,
        }

    async def _request(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        execute = self._limiter.wrap(self._execute)
        try:
            return await self._retry.run(lambda: execute(query, variables))
        except RetryExhaustedError as exc:
            raise FatalFetchError(f"Pocket 조회 재시도 한도 초과: {exc.last_error}") from exc

    async def fetch_next_page(self, cursor: Optional[str] = None) -> Page:
        """Fetch the page after ``cursor`` (first page when ``cursor`` is None)."""
        data = await self._request(queries.LIST_SAVED_ITEMS, self._variables(cursor))
        page = _parse_page(data)
        self.pages_fetched += 1
        logger.info(
            "fetch.page",
            extra={"page": self.pages_fetched, "records": len(page.records), "has_next": page.has_next},
        )
        return page

    async def get_saved_item(self, item_id: str) -> RawRecord:
        data = await self._request(queries.GET_SAVED_ITEM_BY_ID, {"itemId": item_id})
        user = data.get("user")
        node = user.get("savedItemById") if isinstance(user, dict) else None
        if not isinstance(node, dict):
            raise FatalFetchError(f"Pocket 항목을 찾을 수 없습니다: {item_id}")
        return RawRecord.from_node(node)


def _parse_page(data: Dict[str, Any]) -> Page:
    try:
        saved = data["user"]["savedItems"]
        edges = saved.get("edges") or []
        info = saved["pageInfo"]
    except (KeyError, TypeError, AttributeError) as exc:
        raise FatalFetchError("Pocket 응답에 savedItems/pageInfo가 없습니다.") from exc

    records = tuple(RawRecord.from_edge(edge) for edge in edges if isinstance(edge, dict))
    try:
        return Page(
            records=records,
            cursor=info.get("endCursor"),
            has_next=bool(info.get("hasNextPage")),
        )
    except ValidationError as exc:
        raise FatalFetchError(f"Pocket 페이지 정보가 올바르지 않습니다: {exc}") from exc
