"""Tests for the broker endpoints."""

from __future__ import annotations

import uuid

import pytest_asyncio


@pytest_asyncio.fixture
async def caller(api_client, make_org, make_user):
    client, login = api_client
    org = await make_org()
    login(await make_user(org.id))
    return client, org


class TestListBrokers:
    async def test_filters_and_scoping(self, caller, make_org, make_broker):
        client, org = caller
        await make_broker(org.id, first_name="Ana", last_name="Lima", email="ana@example.com")
        await make_broker(org.id, first_name="Bruno", last_name="Reis", is_active=False)
        other = await make_org(name="Outra")
        await make_broker(other.id, first_name="Zeca")

        all_names = sorted(b["name"] for b in (await client.get("/api/brokers")).json()["brokers"])
        assert all_names == ["Ana Lima", "Bruno Reis"]

        active = (await client.get("/api/brokers", params={"active": "true"})).json()["brokers"]
        assert [b["first_name"] for b in active] == ["Ana"]

        found = (await client.get("/api/brokers", params={"search": "ANA@"})).json()["brokers"]
        assert [b["email"] for b in found] == ["ana@example.com"]

    async def test_get_foreign_broker_is_404(self, caller, make_org, make_broker):
        client, _ = caller
        other = await make_org(name="Outra")
        foreign = await make_broker(other.id)

        assert (await client.get(f"/api/brokers/{foreign.id}")).status_code == 404
        assert (await client.get(f"/api/brokers/{uuid.uuid4()}")).status_code == 404


class TestCreateBroker:
    async def test_create_with_split_names(self, caller):
        client, org = caller

        response = await client.post(
            "/api/brokers",
            json={"first_name": "Maria", "last_name": "Silva", "email": "maria@example.com"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Broker created successfully"
        assert body["broker"]["name"] == "Maria Silva"
        assert body["broker"]["organization_id"] == str(org.id)
        assert body["broker"]["is_active"] is True

    async def test_legacy_name_is_split(self, caller):
        client, _ = caller
        response = await client.post("/api/brokers", json={"name": "José Carlos Nunes"})

        broker = response.json()["broker"]
        assert broker["first_name"] == "José"
        assert broker["last_name"] == "Carlos Nunes"

    async def test_first_name_required(self, caller):
        client, _ = caller
        response = await client.post("/api/brokers", json={"last_name": "Silva"})

        assert response.status_code == 400
        assert response.json()["message"] == "First name is required"


class TestUpdateBroker:
    async def test_update_recomposes_name(self, caller, make_broker):
        client, org = caller
        broker = await make_broker(org.id, first_name="Ana", last_name="Lima")

        response = await client.put(f"/api/brokers/{broker.id}", json={"last_name": "Costa", "is_active": False})

        assert response.status_code == 200
        updated = response.json()["broker"]
        assert updated["name"] == "Ana Costa"
        assert updated["is_active"] is False

    async def test_update_foreign_broker_is_404(self, caller, make_org, make_broker):
        client, _ = caller
        other = await make_org(name="Outra")
        foreign = await make_broker(other.id)

        response = await client.put(f"/api/brokers/{foreign.id}", json={"first_name": "X"})
        assert response.status_code == 404
