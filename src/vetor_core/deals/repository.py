"""Deal repository -- organization-scoped async queries for deals and brokers.

DealRepository wraps an AsyncSession. Every method takes organization_id as
its first argument and filters on it, so a caller can never read or write
another organization's rows through this class.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import and_, extract, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.vetor_core.deals.models import ActivityLog, Broker, Deal
from src.vetor_core.deals.schemas import (
    RISK_SENTIMENTS,
    ActivityLogRead,
    ActivityType,
    BrokerRead,
    DashboardStats,
    DealDetail,
    DealFilter,
    DealRead,
    DealStats,
    DealStatus,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def deal_to_read(deal: Deal, broker: Broker | None) -> DealRead:
    """Convert a Deal row (and its optional broker) to DealRead."""
    read = DealRead.model_validate(deal, from_attributes=True)
    read.broker_name = broker.full_name or None if broker else None
    return read


def broker_to_read(broker: Broker) -> BrokerRead:
    """Convert a Broker row to BrokerRead with the composed display name."""
    return BrokerRead.model_validate(broker, from_attributes=True)


# ── Repository ──────────────────────────────────────────────────────────────


class DealRepository:
    """Organization-scoped reads and writes for deals, brokers, and activity."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ── Deals ───────────────────────────────────────────────────────────────

    async def list_deals(self, organization_id: uuid.UUID, filters: DealFilter) -> tuple[list[DealRead], int]:
        """Return one page of deals (newest first) and the total match count."""
        conditions = [Deal.organization_id == organization_id]
        if filters.status:
            conditions.append(Deal.status == filters.status)
        if filters.sentiment:
            conditions.append(Deal.sentiment == filters.sentiment)
        if filters.broker_id:
            conditions.append(Deal.broker_id == filters.broker_id)
        if filters.search:
            pattern = _like_pattern(filters.search)
            conditions.append(
                or_(
                    Deal.client_name.ilike(pattern, escape="\\"),
                    Deal.property_title.ilike(pattern, escape="\\"),
                    Deal.client_phone.ilike(pattern, escape="\\"),
                )
            )

        total = await self._session.scalar(
            select(func.count()).select_from(Deal).where(and_(*conditions))
        )

        result = await self._session.execute(
            select(Deal, Broker)
            .outerjoin(Broker, Deal.broker_id == Broker.id)
            .where(and_(*conditions))
            .order_by(Deal.created_at.desc(), Deal.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )
        deals = [deal_to_read(deal, broker) for deal, broker in result.all()]
        return deals, int(total or 0)

    async def get_deal(self, organization_id: uuid.UUID, deal_id: uuid.UUID) -> DealDetail | None:
        """Deal with broker info and its activity logs (newest first)."""
        row = (
            await self._session.execute(
                select(Deal, Broker)
                .outerjoin(Broker, Deal.broker_id == Broker.id)
                .where(Deal.id == deal_id, Deal.organization_id == organization_id)
            )
        ).first()
        if row is None:
            return None
        deal, broker = row

        logs = (
            await self._session.scalars(
                select(ActivityLog)
                .where(ActivityLog.deal_id == deal.id)
                .order_by(ActivityLog.created_at.desc())
            )
        ).all()

        detail = DealDetail.model_validate(deal, from_attributes=True)
        detail.broker_name = broker.full_name or None if broker else None
        detail.broker_phone = broker.phone if broker else None
        detail.activity_logs = [ActivityLogRead.model_validate(log, from_attributes=True) for log in logs]
        return detail

    async def get_deal_row(self, organization_id: uuid.UUID, deal_id: uuid.UUID) -> Deal | None:
        return await self._session.scalar(
            select(Deal).where(Deal.id == deal_id, Deal.organization_id == organization_id)
        )

    async def update_deal(
        self,
        organization_id: uuid.UUID,
        deal_id: uuid.UUID,
        changes: dict[str, Any],
        notes: str | None = None,
    ) -> DealRead | None:
        """Apply field changes (and an optional note) to one deal and commit."""
        deal = await self.get_deal_row(organization_id, deal_id)
        if deal is None:
            return None

        previous_status = deal.status
        for field, value in changes.items():
            setattr(deal, field, value)
        deal.updated_at = datetime.now(timezone.utc)

        if "status" in changes and changes["status"] != previous_status:
            self._session.add(ActivityLog(
                deal_id=deal.id,
                type=ActivityType.STATUS_CHANGE.value,
                description=f"Status changed from {previous_status} to {changes['status']}",
                metadata_json={"from": previous_status, "to": changes["status"]},
            ))
        if notes:
            self._session.add(ActivityLog(
                deal_id=deal.id,
                type=ActivityType.NOTE.value,
                description=notes,
            ))

        await self._session.commit()
        broker = await self._session.get(Broker, deal.broker_id) if deal.broker_id else None
        return deal_to_read(deal, broker)

    async def deal_stats(self, organization_id: uuid.UUID) -> DealStats:
        """Pipeline aggregates: totals, active (not lost), visiting, open value."""
        org = Deal.organization_id == organization_id
        not_lost = Deal.status != DealStatus.LOST.value

        total = await self._session.scalar(select(func.count()).select_from(Deal).where(org))
        active = await self._session.scalar(select(func.count()).select_from(Deal).where(org, not_lost))
        visiting = await self._session.scalar(
            select(func.count()).select_from(Deal).where(org, Deal.status == DealStatus.NEGOTIATION.value)
        )
        pipeline = await self._session.scalar(
            select(func.coalesce(func.sum(Deal.potential_value), 0)).where(org, not_lost)
        )
        return DealStats(
            total=int(total or 0),
            active=int(active or 0),
            visiting=int(visiting or 0),
            pipelineValue=float(Decimal(str(pipeline or 0))),
        )

    async def dashboard_stats(self, organization_id: uuid.UUID, now: datetime | None = None) -> DashboardStats:
        """Dashboard KPIs over the last 24 hours."""
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(hours=24)
        org = Deal.organization_id == organization_id

        risk = await self._session.scalar(
            select(func.count()).select_from(Deal).where(org, Deal.sentiment.in_(RISK_SENTIMENTS))
        )
        active_conversations = await self._session.scalar(
            select(func.count()).select_from(Deal).where(org, Deal.last_activity >= since)
        )
        new_summaries = await self._session.scalar(
            select(func.count())
            .select_from(ActivityLog)
            .join(Deal, ActivityLog.deal_id == Deal.id)
            .where(
                org,
                ActivityLog.type == ActivityType.CONVERSATION_SUMMARY.value,
                ActivityLog.created_at >= since,
            )
        )

        # AVG ignores NULLs and yields NULL for an organization with no activity
        avg_epoch = await self._session.scalar(
            select(func.avg(extract("epoch", Deal.last_activity))).where(org)
        )
        avg_response_time = None
        if avg_epoch is not None:
            avg_response_time = round((now.timestamp() - float(avg_epoch)) / 60)

        return DashboardStats(
            riskDeals=int(risk or 0),
            activeConversations=int(active_conversations or 0),
            avgResponseTime=avg_response_time,
            newSummaries=int(new_summaries or 0),
        )

    # ── Brokers ─────────────────────────────────────────────────────────────

    async def list_brokers(
        self,
        organization_id: uuid.UUID,
        active: bool | None = None,
        search: str | None = None,
    ) -> list[BrokerRead]:
        conditions = [Broker.organization_id == organization_id]
        if active is not None:
            conditions.append(Broker.is_active == active)
        if search:
            pattern = _like_pattern(search)
            conditions.append(
                or_(
                    Broker.first_name.ilike(pattern, escape="\\"),
                    Broker.last_name.ilike(pattern, escape="\\"),
                    Broker.email.ilike(pattern, escape="\\"),
                    Broker.phone.ilike(pattern, escape="\\"),
                )
            )
        brokers = (
            await self._session.scalars(
                select(Broker).where(and_(*conditions)).order_by(Broker.created_at.desc())
            )
        ).all()
        return [broker_to_read(b) for b in brokers]

    async def get_broker_row(self, organization_id: uuid.UUID, broker_id: uuid.UUID) -> Broker | None:
        return await self._session.scalar(
            select(Broker).where(Broker.id == broker_id, Broker.organization_id == organization_id)
        )

    async def create_broker(
        self,
        organization_id: uuid.UUID,
        first_name: str,
        last_name: str,
        email: str | None,
        phone: str | None,
    ) -> BrokerRead:
        broker = Broker(
            organization_id=organization_id,
            first_name=first_name,
            last_name=last_name,
            name=f"{first_name} {last_name}".strip(),
            email=email or None,
            phone=phone or None,
            is_active=True,
        )
        self._session.add(broker)
        await self._session.commit()
        logger.info("broker.created", organization_id=str(organization_id), broker_id=str(broker.id))
        return broker_to_read(broker)

    async def update_broker(
        self,
        organization_id: uuid.UUID,
        broker_id: uuid.UUID,
        changes: dict[str, Any],
    ) -> BrokerRead | None:
        broker = await self.get_broker_row(organization_id, broker_id)
        if broker is None:
            return None
        for field, value in changes.items():
            setattr(broker, field, value)
        if "first_name" in changes or "last_name" in changes:
            broker.name = f"{broker.first_name} {broker.last_name}".strip()
        await self._session.commit()
        return broker_to_read(broker)
