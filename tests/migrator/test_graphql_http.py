from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

pytest.importorskip("pytest_httpx")

from migrator.connectors.base import (
    DestinationValidationError,
    FatalFetchError,
    PermanentWriteError,
    TransientWriteError,
)
from migrator.connectors.omnivore import OmnivoreClient
from migrator.connectors.pocket import PocketSource
from migrator.models.domain import Label, TransformedPayload
from migrator.services.rate_limiter import RateLimiter
from migrator.services.retry import RetryPolicy

POCKET_URL = "https://getpocket.com/graphql"
OMNIVORE_URL = "https://api-prod.omnivore.app/api/graphql"


def _pocket(no_sleep, attempts: int = 3) -> PocketSource:
    return PocketSource(
        POCKET_URL,
        consumer_key="ck-1",
        cookie="session=abc",
        rate_limiter=RateLimiter(None, 1.0),
        retry_policy=RetryPolicy(max_attempts=attempts, base_delay=0.0, jitter=0.0, sleep=no_sleep),
    )


def _single_page(node):
    return {
        "data": {
            "user": {
                "savedItems": {
                    "edges": [{"cursor": "e1", "node": node}],
                    "pageInfo": {"hasNextPage": False, "endCursor": "e1"},
                }
            }
        }
    }


def _payload(labels=None) -> TransformedPayload:
    return TransformedPayload(
        url="https://example.com/a",
        title="A",
        content="<p>a</p>",
        client_request_id="req-1",
        labels=labels,
        saved_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


@pytest.mark.asyncio
async def test_pocket_request_carries_credentials(httpx_mock, node_factory, no_sleep):
    httpx_mock.add_response(method="POST", json=_single_page(node_factory(1)))

    async with _pocket(no_sleep) as source:
        page = await source.fetch_next_page(None)

    assert len(page.records) == 1
    request = httpx_mock.get_requests()[0]
    assert request.headers["Cookie"] == "session=abc"
    assert request.url.params["consumer_key"] == "ck-1"
    assert request.url.params["enable_cors"] == "1"
    body = json.loads(request.content)
    assert "savedItems" in body["query"]
    assert body["variables"]["pagination"] is None


@pytest.mark.asyncio
async def test_pocket_5xx_retried_then_succeeds(httpx_mock, node_factory, no_sleep):
    httpx_mock.add_response(method="POST", status_code=503)
    httpx_mock.add_response(method="POST", json=_single_page(node_factory(1)))

    async with _pocket(no_sleep) as source:
        page = await source.fetch_next_page(None)

    assert len(page.records) == 1
    assert len(httpx_mock.get_requests()) == 2


@pytest.mark.asyncio
async def test_pocket_401_is_fatal_immediately(httpx_mock, no_sleep):
    httpx_mock.add_response(method="POST", status_code=401)

    async with _pocket(no_sleep) as source:
        with pytest.raises(FatalFetchError):
            await source.fetch_next_page(None)

    assert len(httpx_mock.get_requests()) == 1


@pytest.mark.asyncio
async def test_omnivore_save_success(httpx_mock):
    httpx_mock.add_response(
        method="POST",
        url=OMNIVORE_URL,
        json={"data": {"savePage": {"url": "https://example.com/a", "clientRequestId": "req-1"}}},
    )

    async with OmnivoreClient(OMNIVORE_URL, api_key="omni-key") as client:
        result = await client.save_page(_payload(labels=(Label(name="x"),)))

    assert result.client_request_id == "req-1"
    request = httpx_mock.get_requests()[0]
    assert request.headers["authorization"] == "omni-key"
    sent = json.loads(request.content)["variables"]["input"]
    assert sent["labels"] == [{"name": "x"}]
    assert sent["clientRequestId"] == "req-1"


@pytest.mark.asyncio
async def test_omnivore_omits_absent_labels(httpx_mock):
    httpx_mock.add_response(
        method="POST",
        url=OMNIVORE_URL,
        json={"data": {"savePage": {"url": "https://example.com/a", "clientRequestId": "req-1"}}},
    )

    async with OmnivoreClient(OMNIVORE_URL, api_key="omni-key") as client:
        await client.save_page(_payload(labels=None))

    sent = json.loads(httpx_mock.get_requests()[0].content)["variables"]["input"]
    assert "labels" not in sent
    assert "publishedAt" not in sent


@pytest.mark.asyncio
async def test_omnivore_save_error_is_validation_error(httpx_mock):
    httpx_mock.add_response(
        method="POST",
        url=OMNIVORE_URL,
        json={"data": {"savePage": {"errorCodes": ["BAD_REQUEST"], "message": "invalid url"}}},
    )

    async with OmnivoreClient(OMNIVORE_URL, api_key="omni-key") as client:
        with pytest.raises(DestinationValidationError) as exc:
            await client.save_page(_payload())

    assert exc.value.codes == ["BAD_REQUEST"]
    assert exc.value.message == "invalid url"


@pytest.mark.asyncio
@pytest.mark.parametrize("status,error", [(429, TransientWriteError), (502, TransientWriteError), (403, PermanentWriteError)])
async def test_omnivore_http_status_classification(httpx_mock, status, error):
    httpx_mock.add_response(method="POST", url=OMNIVORE_URL, status_code=status)

    async with OmnivoreClient(OMNIVORE_URL, api_key="omni-key") as client:
        with pytest.raises(error):
            await client.save_page(_payload())
