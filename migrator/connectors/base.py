"""Connector abstraction, errors, and helpers."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

import httpx


class MigrationError(Exception):
    """Base migration error."""


class ConfigurationError(MigrationError):
    """Required credentials or options are missing or inconsistent."""


class ReportWriteError(MigrationError):
    """The failure report could not be written."""

    def __init__(self, path, failures: int, cause: BaseException):
        super().__init__(f"{path}: {cause}")
        self.path = path
        self.failures = failures


class TransientError(MigrationError):
    """Retryable error (e.g., rate limit, network hiccup, 5xx)."""


class PermanentError(MigrationError):
    """Non-retryable error (e.g., auth failure, rejected payload)."""


class TransientFetchError(TransientError):
    """Source page request failed in a way worth retrying."""


class FatalFetchError(PermanentError):
    """Source is unreachable, unauthenticated or returned an unusable shape; ends the run."""


class TransientWriteError(TransientError):
    """Destination write failed in a way worth retrying."""


class PermanentWriteError(PermanentError):
    """Destination refused the write; retrying will not help."""


class DestinationValidationError(PermanentWriteError):
    """Destination rejected the payload itself (SaveError union member)."""

    def __init__(self, codes: List[str], message: str = ""):
        self.codes = list(codes)
        self.message = message
        detail = ",".join(self.codes) or "UNKNOWN"
        super().__init__(f"{detail}: {message}" if message else detail)


class TransformError(MigrationError):
    """Source record could not be mapped to a destination payload."""

    def __init__(self, message: str, partial: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.partial = dict(partial or {})


class RetryExhaustedError(MigrationError):
    """All attempts allowed by a retry policy failed."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"{attempts}회 시도 후 실패: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


RETRYABLE_STATUSES = {408, 429, 500, 502, 503, 504}

ProviderFn = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class GraphQLConnector:
    """Shared request/response handling for the two GraphQL services.

    Subclasses pick which error classes describe a retryable and a terminal
    failure on their side. A ``provider`` replaces the HTTP call entirely
    (tests/offline); it receives the request body and returns the decoded JSON.
    """

    transient_error: Type[TransientError] = TransientError
    permanent_error: Type[PermanentError] = PermanentError
    service: str = "graphql"

    def __init__(
        self,
        endpoint: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        provider: Optional[ProviderFn] = None,
    ):
        self._endpoint = endpoint
        self._headers = {"content-type": "application/json", **(headers or {})}
        self._params = dict(params or {})
        self._timeout = timeout
        self._provider = provider
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, connect=10.0))
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()

    async def _execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """Run one GraphQL operation and return its ``data`` object."""
        body = {"query": query, "variables": variables}
        if self._provider is not None:
            payload = await self._provider(body)
        else:
            payload = await self._post(body)

        if not isinstance(payload, dict):
            raise self.permanent_error(f"{self.service} 응답 형식 오류")
        errors = payload.get("errors")
        if errors:
            messages = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
            raise self.permanent_error(f"{self.service} GraphQL 오류: {messages}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise self.permanent_error(f"{self.service} 응답에 data가 없습니다.")
        return data

    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = await self._get_client().post(
                self._endpoint,
                json=body,
                headers=self._headers,
                params=self._params or None,
            )
        except httpx.TimeoutException as exc:
            raise self.transient_error(f"{self.service} 타임아웃") from exc
        except httpx.HTTPError as exc:
            raise self.transient_error(f"{self.service} 호출 오류: {exc}") from exc

        if resp.status_code in RETRYABLE_STATUSES or resp.status_code >= 500:
            raise self.transient_error(f"{self.service} 일시 오류: {resp.status_code}")
        if resp.status_code >= 400:
            raise self.permanent_error(f"{self.service} 오류: {resp.status_code}")

        try:
            return resp.json()
        except ValueError as exc:
            raise self.permanent_error(f"{self.service} 응답 JSON 파싱 실패") from exc
