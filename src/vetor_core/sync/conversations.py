"""Conversation store adapter -- reads analyzed conversations over a PostgREST API.

The store exposes /rest/v1/conversations and /rest/v1/sentiment_updates.
Both are read newest-first, 100 rows per fetch, optionally restricted to
rows updated within a lookback window. Authentication sends the key as both
the `apikey` header and a bearer token.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.vetor_core.sync.adapter import (
    ConversationAdapter,
    lookback_filter,
    source_retry,
    transport_error,
)
from src.vetor_core.sync.errors import SourceTransportError
from src.vetor_core.sync.schemas import SyncSource

logger = structlog.get_logger(__name__)

PAGE_SIZE = 100


class ConversationSyncAdapter(ConversationAdapter):
    """Adapter for the conversation store of one organization."""

    source = SyncSource.MADA

    def __init__(
        self,
        url: str,
        key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = f"{url.rstrip('/')}/rest/v1"
        self._timeout = timeout
        self._transport = transport
        self._headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    @source_retry
    async def _get(self, table: str, params: dict[str, str]) -> httpx.Response:
        async with self._client() as client:
            response = await client.get(f"{self._base_url}/{table}", params=params)
            response.raise_for_status()
            return response

    async def _fetch_table(self, table: str, minutes: int | None) -> list[dict[str, Any]]:
        params = {"order": "updated_at.desc", "limit": str(PAGE_SIZE)}
        params.update(lookback_filter(minutes))

        try:
            response = await self._get(table, params)
        except httpx.HTTPError as exc:
            raise transport_error(self.source, f"GET {table}", exc) from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise SourceTransportError(self.source.value, f"GET {table} returned invalid JSON") from exc
        if not isinstance(data, list):
            raise SourceTransportError(self.source.value, f"GET {table} did not return a list")

        logger.debug("conversations.rows_fetched", table=table, count=len(data), minutes=minutes)
        return data

    async def fetch_conversations(self, minutes: int | None = None) -> list[dict[str, Any]]:
        return await self._fetch_table("conversations", minutes)

    async def fetch_sentiment_updates(self, minutes: int | None = None) -> list[dict[str, Any]]:
        return await self._fetch_table("sentiment_updates", minutes)

    async def test_connection(self) -> bool:
        """True when a one-row probe answers 2xx."""
        try:
            async with self._client() as client:
                response = await client.get(f"{self._base_url}/conversations", params={"limit": "1"})
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("conversations.connection_test_failed", error=str(exc))
            return False
        return response.is_success
