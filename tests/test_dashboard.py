"""Tests for dashboard KPIs (repository and endpoint)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from src.vetor_core.deals.models import ActivityLog
from src.vetor_core.deals.repository import DealRepository


class TestDashboardStats:
    async def test_kpis(self, db_session, make_org, make_deal):
        org = await make_org()
        now = datetime(2026, 5, 10, 12, 0, tzinfo=timezone.utc)

        risky = await make_deal(org.id, sentiment="Negative", last_activity=now - timedelta(minutes=30))
        await make_deal(org.id, sentiment="Urgent", last_activity=now - timedelta(minutes=90))
        await make_deal(org.id, sentiment="Positive", last_activity=now - timedelta(hours=48))
        await make_deal(org.id, sentiment="Neutral")
        other = await make_org(name="Outra")
        await make_deal(other.id, sentiment="Negative", last_activity=now - timedelta(days=30))

        db_session.add_all([
            ActivityLog(deal_id=risky.id, type="ConversationSummary", description="recente",
                        created_at=now - timedelta(hours=1)),
            ActivityLog(deal_id=risky.id, type="ConversationSummary", description="antigo",
                        created_at=now - timedelta(days=3)),
            ActivityLog(deal_id=risky.id, type="note", description="nota", created_at=now - timedelta(hours=1)),
        ])
        await db_session.commit()

        stats = await DealRepository(db_session).dashboard_stats(org.id, now=now)

        assert stats.riskDeals == 2
        assert stats.activeConversations == 2
        assert stats.newSummaries == 1
        # (30 + 90 + 2880) / 3
        assert stats.avgResponseTime == 1000

    async def test_empty_org(self, db_session, make_org):
        org = await make_org()
        stats = await DealRepository(db_session).dashboard_stats(org.id)

        assert stats.riskDeals == 0
        assert stats.activeConversations == 0
        assert stats.newSummaries == 0
        assert stats.avgResponseTime is None

    async def test_endpoint_scoped_to_caller(self, api_client, make_org, make_user, make_deal):
        client, login = api_client
        org = await make_org(name="A")
        other = await make_org(name="B")
        await make_deal(org.id, sentiment="Urgent")
        await make_deal(other.id, sentiment="Negative")
        await make_deal(other.id, sentiment="Negative")
        login(await make_user(org.id))

        response = await client.get("/api/dashboard/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["riskDeals"] == 1
        assert set(body) == {"riskDeals", "activeConversations", "avgResponseTime", "newSummaries"}
