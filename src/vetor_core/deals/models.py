"""Deal persistence models -- brokers, deals, and their activity logs.

Three SQLAlchemy models scoped to an organization:
- Broker: Sales agent, matched across syncs by crm_external_id
- Deal: Sales opportunity, matched across syncs by external_id (title fallback
  for legacy rows without one)
- ActivityLog: Timestamped event attached to a deal (conversation summary,
  note, status change, sync marker). external_id holds the upstream note or
  conversation id so repeated syncs update instead of duplicating.

ActivityLog is scoped to an organization transitively through its deal.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.vetor_core.core.database import Base, utcnow


class Broker(Base):
    """Sales agent belonging to an organization.

    Created on first sync when no broker with the same crm_external_id exists
    for the organization; afterwards updated in place. Never deleted by sync.
    """

    __tablename__ = "brokers"
    __table_args__ = (
        Index("ix_brokers_org_external_id", "organization_id", "crm_external_id"),
        Index("ix_brokers_org_email", "organization_id", "email"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id"), nullable=False
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)  # legacy composite
    first_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    last_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    crm_external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def full_name(self) -> str:
        composed = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return composed or (self.name or "")


class Deal(Base):
    """Sales opportunity owned by an organization, optionally assigned to a broker."""

    __tablename__ = "deals"
    __table_args__ = (
        Index("ix_deals_org_external_id", "organization_id", "external_id"),
        Index("ix_deals_org_property_title", "organization_id", "property_title"),
        Index("ix_deals_org_created_at", "organization_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id"), nullable=False
    )
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    broker_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("brokers.id"), nullable=True
    )
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    client_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    property_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    property_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(50), default="New", nullable=False)
    sentiment: Mapped[str] = mapped_column(String(50), default="Neutral", nullable=False)
    smart_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_activity: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    potential_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    stage: Mapped[str | None] = mapped_column(String(100), nullable=True)
    stage_entered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    potential_commission: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    exclusivity: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    origin: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class ActivityLog(Base):
    """Event attached to a deal, displayed on the deal timeline."""

    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("ix_activity_logs_type_external", "type", "external_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    deal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("deals.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
