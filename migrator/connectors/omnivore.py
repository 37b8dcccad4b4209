"""Omnivore savePage destination client."""

from __future__ import annotations

from typing import Optional

import httpx

from migrator.models.domain import SaveResult, TransformedPayload

from . import queries
from .base import (
    DestinationValidationError,
    GraphQLConnector,
    PermanentWriteError,
    ProviderFn,
    TransientWriteError,
)


class OmnivoreClient(GraphQLConnector):
    """Single-record writes against the Omnivore GraphQL API.

    One call is one attempt; retry and throttling belong to the sink.
    """

    transient_error = TransientWriteError
    permanent_error = PermanentWriteError
    service = "Omnivore"

    def __init__(
        self,
        endpoint: str = "https://api-prod.omnivore.app/api/graphql",
        *,
        api_key: str = "",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        provider: Optional[ProviderFn] = None,
    ):
        super().__init__(
            endpoint,
            headers={"authorization": api_key},
            timeout=timeout,
            client=client,
            provider=provider,
        )

    async def save_page(self, payload: TransformedPayload) -> SaveResult:
        data = await self._execute(queries.SAVE_PAGE, {"input": payload.to_input()})
        result = data.get("savePage")
        if not isinstance(result, dict):
            raise PermanentWriteError("Omnivore savePage 응답이 비어 있습니다.")
        if "errorCodes" in result:
            raise DestinationValidationError(
                [str(code) for code in (result.get("errorCodes") or [])],
                str(result.get("message") or ""),
            )
        return SaveResult(url=result.get("url"), client_request_id=result.get("clientRequestId"))
