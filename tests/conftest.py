"""Shared test infrastructure for the Vetor Core test suite.

Provides:
- session_factory / db_session: async SQLite database (file in tmp_path) with
  all tables created, so several sessions can be open at once the way the
  orchestrator uses them
- settings: Settings with the scheduler disabled and short timeouts
- make_org / make_user / make_broker / make_deal: row factories
- FakeCRMAdapter / FakeConversationAdapter: in-memory source adapters
- api_client: httpx AsyncClient over the real app with get_db and auth
  overridden
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from src.vetor_core.core.database import Base

import src.vetor_core.deals.models  # noqa: F401
import src.vetor_core.models.tenant  # noqa: F401
import src.vetor_core.sync.models  # noqa: F401

from src.vetor_core.api.deps import AuthUser, get_adapter_factory, get_current_user, get_db
from src.vetor_core.config import Settings
from src.vetor_core.deals.models import Broker, Deal
from src.vetor_core.models.tenant import Organization, User
from src.vetor_core.sync.adapter import ConversationAdapter, CRMAdapter
from src.vetor_core.sync.orchestrator import SyncOrchestrator
from src.vetor_core.sync.scheduler import SyncScheduler


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh SQLite database per test with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'vetor_test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        SCHEDULER_ENABLED=False,
        VETOR_BASE_URL="https://crm.example.com/api",
        SYNC_HTTP_TIMEOUT_SECONDS=5.0,
    )


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_org(db_session):
    """Factory for Organization rows.

    Usage:
        org = await make_org(crm_type="vetor", crm_config={"vetor_api_key": "k"})
    """

    async def _factory(
        name: str = "Imobiliária Teste",
        crm_type: str = "none",
        crm_config: dict[str, Any] | None = None,
        company_id: str | None = None,
    ) -> Organization:
        org = Organization(name=name, crm_type=crm_type, crm_config=crm_config, company_id=company_id)
        db_session.add(org)
        await db_session.commit()
        return org

    return _factory


@pytest.fixture
def make_user(db_session):
    async def _factory(
        organization_id: uuid.UUID,
        email: str | None = None,
        role: str = "gestor",
        password_hash: str | None = None,
    ) -> User:
        user = User(
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            organization_id=organization_id,
            role=role,
            password_hash=password_hash,
            auth_provider="local",
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _factory


@pytest.fixture
def make_broker(db_session):
    async def _factory(organization_id: uuid.UUID, **fields: Any) -> Broker:
        defaults: dict[str, Any] = {"first_name": "Ana", "last_name": "Souza", "is_active": True}
        defaults.update(fields)
        defaults.setdefault("name", f"{defaults['first_name']} {defaults['last_name']}".strip())
        broker = Broker(organization_id=organization_id, **defaults)
        db_session.add(broker)
        await db_session.commit()
        return broker

    return _factory


@pytest.fixture
def make_deal(db_session):
    async def _factory(organization_id: uuid.UUID, **fields: Any) -> Deal:
        defaults: dict[str, Any] = {
            "client_name": "Cliente",
            "status": "New",
            "sentiment": "Neutral",
        }
        defaults.update(fields)
        if isinstance(defaults.get("potential_value"), (int, float)):
            defaults["potential_value"] = Decimal(str(defaults["potential_value"]))
        deal = Deal(organization_id=organization_id, **defaults)
        db_session.add(deal)
        await db_session.commit()
        return deal

    return _factory


# ---------------------------------------------------------------------------
# Fake source adapters
# ---------------------------------------------------------------------------


class FakeCRMAdapter(CRMAdapter):
    """In-memory CRM returning fixed record lists and recording pushes."""

    def __init__(
        self,
        users: list[dict] | None = None,
        clients: list[dict] | None = None,
        deals: list[dict] | None = None,
        notes: list[dict] | None = None,
        properties: list[dict] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.users = users or []
        self.clients = clients or []
        self.deals = deals or []
        self.notes = notes or []
        self.properties = properties or []
        self.error = error
        self.fetch_minutes: list[int | None] = []
        self.pushed: list[tuple[str, dict]] = []

    async def _fetch(self, records: list[dict], minutes: int | None) -> list[dict]:
        self.fetch_minutes.append(minutes)
        if self.error is not None:
            raise self.error
        return list(records)

    async def fetch_users(self, minutes=None):
        return await self._fetch(self.users, minutes)

    async def fetch_clients(self, minutes=None):
        return await self._fetch(self.clients, minutes)

    async def fetch_deals(self, minutes=None):
        return await self._fetch(self.deals, minutes)

    async def fetch_properties(self, minutes=None):
        return await self._fetch(self.properties, minutes)

    async def fetch_notes(self, minutes=None):
        return await self._fetch(self.notes, minutes)

    async def update_deal(self, external_id, fields):
        self.pushed.append((external_id, fields))

    async def test_connection(self):
        return self.error is None


class FakeConversationAdapter(ConversationAdapter):
    def __init__(
        self,
        conversations: list[dict] | None = None,
        sentiment_updates: list[dict] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.conversations = conversations or []
        self.sentiment_updates = sentiment_updates or []
        self.error = error

    async def fetch_conversations(self, minutes=None):
        if self.error is not None:
            raise self.error
        return list(self.conversations)

    async def fetch_sentiment_updates(self, minutes=None):
        if self.error is not None:
            raise self.error
        return list(self.sentiment_updates)

    async def test_connection(self):
        return self.error is None


def adapter_factory_for(adapter):
    """An adapter_factory that always returns the given adapter and records calls."""
    calls: list[tuple] = []

    def _factory(source, credentials, settings):
        calls.append((source, credentials))
        return adapter

    _factory.calls = calls  # type: ignore[attr-defined]
    return _factory


@pytest.fixture
def fake_crm() -> FakeCRMAdapter:
    return FakeCRMAdapter()


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def auth_user_for(user: User) -> AuthUser:
    return AuthUser(id=user.id, email=user.email, organization_id=user.organization_id, role=user.role)


@pytest_asyncio.fixture
async def api_client(session_factory, settings, fake_crm) -> AsyncGenerator[tuple[AsyncClient, Any], None]:
    """AsyncClient over the app with the test database and a switchable caller.

    Yields (client, login) where login(user) makes subsequent requests run
    as that user. Before login, get_current_user is not overridden, so
    requests without a valid token get 401.
    """
    from src.vetor_core.main import create_app

    app = create_app()

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_adapter_factory] = lambda: adapter_factory_for(fake_crm)

    orchestrator = SyncOrchestrator(session_factory, settings, adapter_factory=adapter_factory_for(fake_crm))
    app.state.sync_scheduler = SyncScheduler(orchestrator, settings)

    def login(user: User) -> None:
        caller = auth_user_for(user)
        app.dependency_overrides[get_current_user] = lambda: caller

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, login


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
