"""Tests for CRM and conversation reconciliation.

Covers:
- map_stage: keyword priority and totality
- derive_broker_active truth table
- Broker upsert: create, update-in-place, active flag preservation
- Deal upsert: external id match, title fallback adoption, conflicts,
  client denormalization, broker lookup by agent email
- Notes: dedup on external id, archived skip, unknown deal errors
- Idempotence and tenant isolation across organizations
- Per-record failure isolation
- Conversation summaries and sentiment updates
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from src.vetor_core.deals.models import ActivityLog, Broker, Deal
from src.vetor_core.deals.schemas import DealStatus
from src.vetor_core.sync.reconciler import (
    UNTITLED_CLIENT,
    ConversationReconciler,
    CRMReconciler,
    derive_broker_active,
    map_stage,
)


# ── Helpers ─────────────────────────────────────────────────────────────────


def _user(id_: str = "u1", **overrides) -> dict:
    data = {
        "id": id_,
        "first_name": "Carla",
        "last_name": "Mendes",
        "email": "carla@example.com",
        "phone": "+55 11 99999-0000",
        "disabled": False,
        "status": "active",
    }
    data.update(overrides)
    return data


def _deal(id_: str = "d1", **overrides) -> dict:
    data = {
        "id": id_,
        "title": "Apartamento Jardins",
        "stage": "Qualificação",
        "potential_value": 850000,
        "client_id": "c1",
        "agent_email": "carla@example.com",
    }
    data.update(overrides)
    return data


def _client(id_: str = "c1", **overrides) -> dict:
    data = {
        "id": id_,
        "full_name": "João Pereira",
        "email": "joao@example.com",
        "phone_primary": "+55 11 98888-1111",
    }
    data.update(overrides)
    return data


async def _count(session_factory, model, *conditions) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model).where(*conditions))


async def _all(session_factory, model, *conditions) -> list:
    async with session_factory() as session:
        return list((await session.scalars(select(model).where(*conditions))).all())


async def _run_crm(session_factory, org_id, users=(), clients=(), deals=(), notes=(), properties=None):
    async with session_factory() as session:
        return await CRMReconciler(session, org_id).run(
            list(users), list(clients), list(deals), list(notes), properties=properties
        )


# ── Stage Mapping ───────────────────────────────────────────────────────────


class TestMapStage:
    """Free-text CRM stages map to exactly one DealStatus."""

    @pytest.mark.parametrize(
        "stage, expected",
        [
            ("Perdido", DealStatus.LOST),
            ("Lost - no budget", DealStatus.LOST),
            ("Fechado", DealStatus.CLOSED),
            ("Negócio ganho", DealStatus.CLOSED),
            ("Won", DealStatus.CLOSED),
            ("Proposta enviada", DealStatus.PROPOSAL),
            ("Em negociação", DealStatus.PROPOSAL),
            ("Visita agendada", DealStatus.NEGOTIATION),
            ("Qualificação", DealStatus.QUALIFIED),
            ("qualified lead", DealStatus.QUALIFIED),
        ],
    )
    def test_keywords(self, stage, expected):
        assert map_stage(stage) == expected

    def test_lost_beats_later_groups(self):
        """A stage naming several groups takes the highest-priority one."""
        assert map_stage("Proposta perdida / perdido") == DealStatus.LOST
        assert map_stage("Visita - proposta") == DealStatus.PROPOSAL

    @pytest.mark.parametrize("stage", [None, "", "Contato inicial", "???"])
    def test_unknown_maps_to_new(self, stage):
        assert map_stage(stage) == DealStatus.NEW

    def test_case_insensitive(self):
        assert map_stage("FECHADO") == DealStatus.CLOSED


class TestDeriveBrokerActive:
    @pytest.mark.parametrize(
        "disabled, status, expected",
        [
            (False, "active", True),
            (None, "active", True),
            (True, "active", False),
            (False, "inactive", False),
            (False, None, False),
            (True, None, False),
        ],
    )
    def test_truth_table(self, disabled, status, expected):
        assert derive_broker_active(disabled, status) is expected


# ── Brokers ─────────────────────────────────────────────────────────────────


class TestUpsertBroker:
    async def test_creates_broker(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        result = await _run_crm(session_factory, org.id, users=[_user()])

        assert result.processed == 1
        brokers = await _all(session_factory, Broker, Broker.organization_id == org.id)
        assert len(brokers) == 1
        broker = brokers[0]
        assert broker.crm_external_id == "u1"
        assert broker.first_name == "Carla"
        assert broker.last_name == "Mendes"
        assert broker.name == "Carla Mendes"
        assert broker.is_active is True

    async def test_updates_in_place(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        await _run_crm(session_factory, org.id, users=[_user()])
        await _run_crm(session_factory, org.id, users=[_user(last_name="Souza", disabled=True)])

        brokers = await _all(session_factory, Broker, Broker.organization_id == org.id)
        assert len(brokers) == 1
        assert brokers[0].last_name == "Souza"
        assert brokers[0].is_active is False

    async def test_missing_flags_preserve_active(self, session_factory, make_org):
        """An update without disabled/status leaves is_active alone."""
        org = await make_org(crm_type="vetor")
        await _run_crm(session_factory, org.id, users=[_user()])
        await _run_crm(
            session_factory,
            org.id,
            users=[{"id": "u1", "first_name": "Carla", "last_name": "Mendes"}],
        )

        broker = (await _all(session_factory, Broker, Broker.organization_id == org.id))[0]
        assert broker.is_active is True

    async def test_full_name_fallback(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        await _run_crm(session_factory, org.id, users=[{"id": 42, "full_name": "Paulo Roberto Lima", "status": "active"}])

        broker = (await _all(session_factory, Broker, Broker.organization_id == org.id))[0]
        assert broker.crm_external_id == "42"
        assert broker.first_name == "Paulo"
        assert broker.last_name == "Roberto Lima"


# ── Deals ───────────────────────────────────────────────────────────────────


class TestUpsertDeal:
    async def test_creates_deal_with_client_and_broker(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        result = await _run_crm(
            session_factory,
            org.id,
            users=[_user()],
            clients=[_client()],
            deals=[_deal(exclusividade={"tem": True, "data_inicio": "2026-01-01", "data_fim": "2026-06-30"})],
        )

        assert result.processed == 2
        assert result.errors == []
        deal = (await _all(session_factory, Deal, Deal.organization_id == org.id))[0]
        broker = (await _all(session_factory, Broker, Broker.organization_id == org.id))[0]
        assert deal.external_id == "d1"
        assert deal.client_name == "João Pereira"
        assert deal.client_email == "joao@example.com"
        assert deal.client_phone == "+55 11 98888-1111"
        assert deal.property_title == "Apartamento Jardins"
        assert deal.status == "Qualified"
        assert deal.stage == "Qualificação"
        assert deal.sentiment == "Neutral"
        assert deal.potential_value == Decimal("850000")
        assert deal.broker_id == broker.id
        assert deal.exclusivity == {"has": True, "start_date": "2026-01-01", "end_date": "2026-06-30"}

    async def test_broker_lookup_is_case_insensitive(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        await _run_crm(
            session_factory,
            org.id,
            users=[_user(email="Carla@Example.com")],
            deals=[_deal(agent_email="CARLA@example.COM", client_id=None)],
        )

        deal = (await _all(session_factory, Deal, Deal.organization_id == org.id))[0]
        assert deal.broker_id is not None

    async def test_update_without_stage_keeps_status(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        await _run_crm(session_factory, org.id, deals=[_deal(stage="Fechado")])
        await _run_crm(session_factory, org.id, deals=[{"id": "d1", "potential_value": 900000}])

        deal = (await _all(session_factory, Deal, Deal.organization_id == org.id))[0]
        assert deal.status == "Closed"
        assert deal.potential_value == Decimal("900000")
        assert deal.property_title == "Apartamento Jardins"

    async def test_untitled_deal_without_client(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        await _run_crm(session_factory, org.id, deals=[{"id": "d9"}])

        deal = (await _all(session_factory, Deal, Deal.organization_id == org.id))[0]
        assert deal.client_name == UNTITLED_CLIENT
        assert deal.status == "New"

    async def test_title_fallback_adopts_legacy_deal(self, session_factory, make_org, make_deal):
        """A local deal with no external id and the same title is adopted, not duplicated."""
        org = await make_org(crm_type="vetor")
        legacy = await make_deal(org.id, property_title="Casa Alphaville", client_name="Legado")

        result = await _run_crm(session_factory, org.id, deals=[_deal("d7", title="Casa Alphaville", client_id=None)])

        assert result.processed == 1
        deals = await _all(session_factory, Deal, Deal.organization_id == org.id)
        assert len(deals) == 1
        assert deals[0].id == legacy.id
        assert deals[0].external_id == "d7"

    async def test_title_from_property_when_deal_untitled(self, session_factory, make_org, make_deal):
        org = await make_org(crm_type="vetor")
        legacy = await make_deal(org.id, property_title="Cobertura Moema")

        await _run_crm(
            session_factory,
            org.id,
            deals=[{"id": "d8", "property_ids": ["p1"]}],
            properties=[{"id": "p1", "title": "Cobertura Moema"}],
        )

        deals = await _all(session_factory, Deal, Deal.organization_id == org.id)
        assert [d.id for d in deals] == [legacy.id]
        assert deals[0].external_id == "d8"
        assert deals[0].property_id == "p1"

    async def test_ambiguous_title_is_conflict(self, session_factory, make_org, make_deal):
        org = await make_org(crm_type="vetor")
        await make_deal(org.id, property_title="Sala Comercial")
        await make_deal(org.id, property_title="Sala Comercial")

        result = await _run_crm(session_factory, org.id, deals=[_deal("d5", title="Sala Comercial", client_id=None)])

        assert result.processed == 0
        assert len(result.errors) == 1
        assert "d5" in result.errors[0]
        assert await _count(session_factory, Deal, Deal.external_id == "d5") == 0
        assert await _count(session_factory, Deal, Deal.organization_id == org.id) == 2


# ── Notes ───────────────────────────────────────────────────────────────────


class TestUpsertNote:
    async def test_note_dedup_by_external_id(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        note = {"id": "n1", "deal_id": "d1", "title": "Ligação", "content": "Cliente pediu desconto"}

        await _run_crm(session_factory, org.id, deals=[_deal(client_id=None)], notes=[note])
        await _run_crm(session_factory, org.id, notes=[{**note, "content": "Desconto aprovado"}])

        logs = await _all(session_factory, ActivityLog, ActivityLog.type == "note")
        assert len(logs) == 1
        assert logs[0].external_id == "n1"
        assert logs[0].description == "Desconto aprovado"
        assert logs[0].metadata_json["crm_note_id"] == "n1"
        assert logs[0].metadata_json["title"] == "Ligação"

    async def test_note_moved_to_another_deal_is_repointed(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        deals = [_deal("d1", client_id=None), _deal("d2", title="Casa Morumbi", client_id=None)]

        await _run_crm(session_factory, org.id, deals=deals, notes=[{"id": "n1", "deal_id": "d1", "content": "Visita"}])
        await _run_crm(session_factory, org.id, notes=[{"id": "n1", "deal_id": "d2", "content": "Visita remarcada"}])

        logs = await _all(session_factory, ActivityLog, ActivityLog.external_id == "n1")
        target = (await _all(session_factory, Deal, Deal.external_id == "d2"))[0]
        assert len(logs) == 1
        assert logs[0].deal_id == target.id
        assert logs[0].description == "Visita remarcada"

    async def test_same_note_id_in_other_org_is_separate(self, session_factory, make_org):
        org_a = await make_org(name="A", crm_type="vetor")
        org_b = await make_org(name="B", crm_type="vetor")
        note = {"id": "n1", "deal_id": "d1", "content": "Primeiro contato"}

        await _run_crm(session_factory, org_a.id, deals=[_deal(client_id=None)], notes=[note])
        await _run_crm(session_factory, org_b.id, deals=[_deal(client_id=None)], notes=[note])

        assert await _count(session_factory, ActivityLog, ActivityLog.external_id == "n1") == 2

    async def test_archived_note_skipped(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        result = await _run_crm(
            session_factory,
            org.id,
            deals=[_deal(client_id=None)],
            notes=[{"id": "n2", "deal_id": "d1", "content": "old", "is_archived": True}],
        )

        assert result.processed == 1
        assert result.skipped == 1
        assert await _count(session_factory, ActivityLog) == 0

    async def test_note_for_unknown_deal_is_error(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        result = await _run_crm(session_factory, org.id, notes=[{"id": "n3", "deal_id": "missing"}])

        assert result.processed == 0
        assert result.errors and "n3" in result.errors[0]

    async def test_note_without_deal_is_error(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        result = await _run_crm(session_factory, org.id, notes=[{"id": "n4", "content": "x"}])

        assert len(result.errors) == 1


# ── Batch Behaviour ─────────────────────────────────────────────────────────


class TestBatchBehaviour:
    async def test_idempotent_rerun(self, session_factory, make_org):
        """Applying the same batch twice leaves the same rows and values."""
        org = await make_org(crm_type="vetor")
        batch = {
            "users": [_user()],
            "clients": [_client()],
            "deals": [_deal()],
            "notes": [{"id": "n1", "deal_id": "d1", "content": "Primeiro contato"}],
        }

        await _run_crm(session_factory, org.id, **batch)
        first = {d.id: (d.status, d.potential_value, d.client_name) for d in await _all(session_factory, Deal)}
        await _run_crm(session_factory, org.id, **batch)
        second = {d.id: (d.status, d.potential_value, d.client_name) for d in await _all(session_factory, Deal)}

        assert first == second
        assert await _count(session_factory, Broker) == 1
        assert await _count(session_factory, Deal) == 1
        assert await _count(session_factory, ActivityLog) == 1

    async def test_tenant_isolation(self, session_factory, make_org):
        """The same external ids in two organizations produce separate rows."""
        org_a = await make_org(name="A", crm_type="vetor")
        org_b = await make_org(name="B", crm_type="vetor")

        await _run_crm(session_factory, org_a.id, users=[_user()], deals=[_deal(client_id=None)])
        await _run_crm(
            session_factory,
            org_b.id,
            users=[_user(first_name="Beatriz")],
            deals=[_deal(client_id=None, stage="Perdido")],
        )

        deal_a = (await _all(session_factory, Deal, Deal.organization_id == org_a.id))[0]
        deal_b = (await _all(session_factory, Deal, Deal.organization_id == org_b.id))[0]
        assert deal_a.id != deal_b.id
        assert deal_a.status == "Qualified"
        assert deal_b.status == "Lost"

        broker_a = (await _all(session_factory, Broker, Broker.organization_id == org_a.id))[0]
        broker_b = (await _all(session_factory, Broker, Broker.organization_id == org_b.id))[0]
        assert broker_a.first_name == "Carla"
        assert broker_b.first_name == "Beatriz"
        assert deal_a.broker_id == broker_a.id
        assert deal_b.broker_id == broker_b.id

    async def test_one_bad_record_does_not_stop_batch(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        deals = [
            _deal("d1", client_id=None),
            _deal("d2", client_id=None, title="Outro", potential_value="not-a-number"),
            _deal("d3", client_id=None, title="Terceiro"),
        ]

        result = await _run_crm(session_factory, org.id, deals=deals)

        assert result.processed == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Failed to sync deal d2")
        external_ids = {d.external_id for d in await _all(session_factory, Deal)}
        assert external_ids == {"d1", "d3"}

    async def test_invalid_client_reported(self, session_factory, make_org):
        org = await make_org(crm_type="vetor")
        result = await _run_crm(session_factory, org.id, clients=[{"full_name": "Sem id"}], deals=[_deal(client_id=None)])

        assert result.processed == 1
        assert len(result.errors) == 1


# ── Conversations ───────────────────────────────────────────────────────────


class TestConversationReconciler:
    async def test_conversation_updates_deal_and_logs_summary(self, session_factory, make_org, make_deal):
        org = await make_org(crm_type="mada")
        deal = await make_deal(org.id, client_name="Marina")
        updated_at = datetime(2026, 3, 1, 14, 30, tzinfo=timezone.utc)

        async with session_factory() as session:
            result = await ConversationReconciler(session, org.id).run([
                {
                    "id": "conv-1",
                    "deal_id": str(deal.id),
                    "summary": "Cliente quer visitar no sábado",
                    "sentiment": "positive",
                    "transcription": "abcdef",
                    "updated_at": updated_at.isoformat(),
                }
            ])

        assert result.processed == 1
        stored = (await _all(session_factory, Deal, Deal.id == deal.id))[0]
        assert stored.smart_summary == "Cliente quer visitar no sábado"
        assert stored.sentiment == "Positive"
        assert stored.last_activity.replace(tzinfo=timezone.utc) == updated_at

        logs = await _all(session_factory, ActivityLog, ActivityLog.deal_id == deal.id)
        assert len(logs) == 1
        assert logs[0].type == "ConversationSummary"
        assert logs[0].metadata_json == {
            "sentiment": "Positive",
            "conversation_id": "conv-1",
            "transcription_length": 6,
        }

    async def test_conversation_linked_through_metadata_and_external_id(self, session_factory, make_org, make_deal):
        org = await make_org(crm_type="mada")
        deal = await make_deal(org.id, external_id="crm-55")

        async with session_factory() as session:
            reconciler = ConversationReconciler(session, org.id)
            await reconciler.run([{"id": "conv-2", "metadata": {"deal_id": "crm-55"}, "summary": "v1"}])
            await reconciler.run([{"id": "conv-2", "metadata": {"deal_id": "crm-55"}, "summary": "v2"}])

        logs = await _all(session_factory, ActivityLog, ActivityLog.deal_id == deal.id)
        assert len(logs) == 1
        assert logs[0].description == "v2"

    async def test_conversation_for_other_org_deal_is_error(self, session_factory, make_org, make_deal):
        org_a = await make_org(name="A", crm_type="mada")
        org_b = await make_org(name="B", crm_type="mada")
        foreign = await make_deal(org_b.id)

        async with session_factory() as session:
            result = await ConversationReconciler(session, org_a.id).run(
                [{"id": "conv-3", "deal_id": str(foreign.id), "summary": "x"}]
            )

        assert result.processed == 0
        assert len(result.errors) == 1
        assert await _count(session_factory, ActivityLog) == 0

    async def test_sentiment_updates(self, session_factory, make_org, make_deal):
        org = await make_org(crm_type="mada")
        deal = await make_deal(org.id)

        async with session_factory() as session:
            result = await ConversationReconciler(session, org.id).run(
                [],
                [
                    {"deal_id": str(deal.id), "sentiment": "URGENT"},
                    {"deal_id": str(deal.id), "sentiment": "furious"},
                ],
            )

        assert result.processed == 1
        assert len(result.errors) == 1
        stored = (await _all(session_factory, Deal, Deal.id == deal.id))[0]
        assert stored.sentiment == "Urgent"
