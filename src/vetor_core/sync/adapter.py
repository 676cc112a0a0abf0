"""Source adapter abstract base classes -- the interface every external source implements.

Two families:
- CRMAdapter: users, clients, deals, properties, and notes from a CRM, plus
  the outbound update_deal push.
- ConversationAdapter: analyzed conversations and sentiment updates from a
  conversation store.

Every fetch takes an optional lookback in minutes. None means the full
collection (initial backfill); a number restricts the fetch to records
updated within that many minutes.

build_adapter() selects the concrete class from the SyncSource tag.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.vetor_core.config import Settings
from src.vetor_core.sync.credentials import (
    ConversationStoreCredentials,
    SourceCredentials,
    VetorCredentials,
)
from src.vetor_core.sync.errors import SourceTransportError
from src.vetor_core.sync.schemas import SyncSource


class SourceAdapter(ABC):
    """Common surface of all external sources."""

    source: SyncSource

    @abstractmethod
    async def test_connection(self) -> bool:
        """Probe the source. Returns False on any failure, never raises."""
        ...


class CRMAdapter(SourceAdapter):
    """Abstract interface for CRM sources.

    Fetches return raw JSON records; validation happens per record in the
    reconciler so one malformed record cannot fail a whole fetch.
    """

    @abstractmethod
    async def fetch_users(self, minutes: int | None = None) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def fetch_clients(self, minutes: int | None = None) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def fetch_deals(self, minutes: int | None = None) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def fetch_properties(self, minutes: int | None = None) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def fetch_notes(self, minutes: int | None = None) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def update_deal(self, external_id: str, fields: dict[str, Any]) -> None:
        """Push changed deal fields back to the CRM."""
        ...


class ConversationAdapter(SourceAdapter):
    """Abstract interface for conversation stores."""

    @abstractmethod
    async def fetch_conversations(self, minutes: int | None = None) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def fetch_sentiment_updates(self, minutes: int | None = None) -> list[dict[str, Any]]:
        ...


def build_adapter(
    source: SyncSource,
    credentials: SourceCredentials,
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SourceAdapter:
    """Instantiate the adapter for source with the organization's credentials."""
    # Local imports keep adapter modules importable without each other
    if source == SyncSource.VETOR_IMOBI:
        from src.vetor_core.sync.vetor import VetorAdapter

        if not isinstance(credentials, VetorCredentials):
            raise TypeError(f"{source.value} requires VetorCredentials")
        return VetorAdapter(
            api_key=credentials.api_key,
            base_url=settings.VETOR_BASE_URL,
            company_id=credentials.company_id,
            timeout=settings.SYNC_HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    if source == SyncSource.MADA:
        from src.vetor_core.sync.conversations import ConversationSyncAdapter

        if not isinstance(credentials, ConversationStoreCredentials):
            raise TypeError(f"{source.value} requires ConversationStoreCredentials")
        return ConversationSyncAdapter(
            url=credentials.url,
            key=credentials.key,
            timeout=settings.SYNC_HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    raise ValueError(f"Unknown sync source: {source}")


# ── Shared HTTP Helpers ─────────────────────────────────────────────────────


def _is_retryable(exc: BaseException) -> bool:
    """Connection failures, timeouts, and 5xx answers are retried; 4xx is final."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, (httpx.ConnectError, httpx.TimeoutException))


source_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_retryable),
    reraise=True,
)


def lookback_filter(minutes: int | None) -> dict[str, str]:
    """updated_at filter for records changed in the last N minutes ({} for None)."""
    if minutes is None:
        return {}
    since = datetime.now(timezone.utc) - timedelta(minutes=minutes)
    return {"updated_at": f"gte.{since.isoformat().replace('+00:00', 'Z')}"}


def transport_error(source: SyncSource, what: str, exc: Exception) -> SourceTransportError:
    """Wrap an httpx failure as SourceTransportError."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return SourceTransportError(source.value, f"{what} returned HTTP {status}", status_code=status)
    return SourceTransportError(source.value, f"{what}: {exc.__class__.__name__} {exc}".strip())
