"""Vetor Imobi CRM adapter -- async HTTP client for the entities REST API.

Authentication is a static `api_key` header. Every collection fetch is a
GET /entities/{Entity}; when a company id is configured it is sent as a
`company_id` query filter so the server returns only that company's records.

Requests retry with tenacity (3 attempts, exponential backoff 1-10s) on
connection errors, timeouts, and 5xx answers. 4xx answers fail immediately.
Either way the caller sees SourceTransportError.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.vetor_core.sync.adapter import CRMAdapter, lookback_filter, source_retry, transport_error
from src.vetor_core.sync.errors import SourceTransportError
from src.vetor_core.sync.schemas import SyncSource

logger = structlog.get_logger(__name__)


class VetorAdapter(CRMAdapter):
    """CRM adapter for the Vetor Imobi entities API.

    Args:
        api_key: Organization's API key.
        base_url: App base URL (settings.VETOR_BASE_URL).
        company_id: Optional server-side company filter.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    source = SyncSource.VETOR_IMOBI

    def __init__(
        self,
        api_key: str,
        base_url: str,
        company_id: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._company_id = company_id
        self._timeout = timeout
        self._transport = transport
        self._headers = {
            "api_key": api_key,
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    def _params(self, minutes: int | None) -> dict[str, str]:
        params: dict[str, str] = {}
        if self._company_id:
            params["company_id"] = self._company_id
        params.update(lookback_filter(minutes))
        return params

    @source_retry
    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        async with self._client() as client:
            response = await client.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=json,
            )
            response.raise_for_status()
            return response

    async def _fetch_entities(self, entity: str, minutes: int | None) -> list[dict[str, Any]]:
        try:
            response = await self._send("GET", f"/entities/{entity}", params=self._params(minutes))
        except httpx.HTTPError as exc:
            raise transport_error(self.source, f"GET /entities/{entity}", exc) from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise SourceTransportError(self.source.value, f"GET /entities/{entity} returned invalid JSON") from exc
        if not isinstance(data, list):
            raise SourceTransportError(self.source.value, f"GET /entities/{entity} did not return a list")

        logger.debug(
            "vetor.entities_fetched",
            entity=entity,
            count=len(data),
            minutes=minutes,
        )
        return data

    async def fetch_users(self, minutes: int | None = None) -> list[dict[str, Any]]:
        return await self._fetch_entities("User", minutes)

    async def fetch_clients(self, minutes: int | None = None) -> list[dict[str, Any]]:
        return await self._fetch_entities("Client", minutes)

    async def fetch_deals(self, minutes: int | None = None) -> list[dict[str, Any]]:
        return await self._fetch_entities("Deal", minutes)

    async def fetch_properties(self, minutes: int | None = None) -> list[dict[str, Any]]:
        return await self._fetch_entities("Property", minutes)

    async def fetch_notes(self, minutes: int | None = None) -> list[dict[str, Any]]:
        return await self._fetch_entities("Note", minutes)

    async def update_deal(self, external_id: str, fields: dict[str, Any]) -> None:
        """PUT /entities/Deal/{external_id} with the changed fields."""
        try:
            await self._send("PUT", f"/entities/Deal/{external_id}", json=fields)
        except httpx.HTTPError as exc:
            raise transport_error(self.source, f"PUT /entities/Deal/{external_id}", exc) from exc
        logger.info("vetor.deal_updated", external_id=external_id, fields=sorted(fields))

    async def test_connection(self) -> bool:
        """True when a client fetch returns a list."""
        try:
            clients = await self.fetch_clients()
        except (SourceTransportError, httpx.InvalidURL) as exc:
            logger.warning("vetor.connection_test_failed", error=str(exc))
            return False
        return isinstance(clients, list)
