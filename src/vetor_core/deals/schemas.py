"""Pydantic schemas for deals, brokers, and activity logs.

Defines:
- Enums: DealStatus, Sentiment, ActivityType
- Read schemas: BrokerRead, DealRead, ActivityLogRead, DealDetail
- Write schemas: BrokerCreate, BrokerUpdate, DealUpdate
- Query/aggregate schemas: DealFilter, DealPage, DealStats, DashboardStats

Read schemas are built from ORM rows with model_validate(..., from_attributes=True)
and serialize datetimes to ISO strings and decimals to floats.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, model_validator

# ── Enums ───────────────────────────────────────────────────────────────────


class DealStatus(str, Enum):
    """Local deal lifecycle status, derived from the external stage on sync."""

    NEW = "New"
    QUALIFIED = "Qualified"
    NEGOTIATION = "Negotiation"
    PROPOSAL = "Proposal"
    CLOSED = "Closed"
    LOST = "Lost"


class Sentiment(str, Enum):
    """Conversation sentiment classification."""

    POSITIVE = "Positive"
    NEUTRAL = "Neutral"
    NEGATIVE = "Negative"
    URGENT = "Urgent"

    @classmethod
    def parse(cls, value: Any) -> Sentiment | None:
        """Case-insensitive lookup; None for empty or unknown values."""
        if not isinstance(value, str) or not value.strip():
            return None
        wanted = value.strip().lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member
        return None


RISK_SENTIMENTS = (Sentiment.NEGATIVE.value, Sentiment.URGENT.value)


class ActivityType(str, Enum):
    """Kinds of events on a deal timeline."""

    CONVERSATION_SUMMARY = "ConversationSummary"
    NOTE = "note"
    STATUS_CHANGE = "StatusChange"
    ALERT = "Alert"
    SYNC = "Sync"


# ── Brokers ─────────────────────────────────────────────────────────────────


def split_full_name(full_name: str) -> tuple[str, str]:
    """Split a legacy single 'name' into (first_name, last_name)."""
    parts = full_name.strip().split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


class BrokerRead(BaseModel):
    """Broker as returned by the API, with the computed display name."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    name: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    crm_external_id: str | None = None
    is_active: bool = True
    created_at: datetime | None = None

    @model_validator(mode="after")
    def _compose_name(self) -> BrokerRead:
        composed = f"{self.first_name} {self.last_name}".strip()
        if composed:
            self.name = composed
        return self


class BrokerCreate(BaseModel):
    """Request body for creating a broker (legacy 'name' is split)."""

    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None

    def resolved_names(self) -> tuple[str, str]:
        if self.name and self.name.strip():
            return split_full_name(self.name)
        return (self.first_name or "").strip(), (self.last_name or "").strip()


class BrokerUpdate(BaseModel):
    """Request body for updating a broker (all fields optional)."""

    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    is_active: bool | None = None

    def changes(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True, exclude={"name"})
        if self.name is not None and self.name.strip():
            data["first_name"], data["last_name"] = split_full_name(self.name)
        return data


# ── Deals ───────────────────────────────────────────────────────────────────


class ActivityLogRead(BaseModel):
    """Activity log entry on a deal timeline."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    deal_id: uuid.UUID
    type: str
    description: str
    external_id: str | None = None
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("metadata_json", "metadata")
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DealRead(BaseModel):
    """Deal as returned by list and update endpoints."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    external_id: str | None = None
    broker_id: uuid.UUID | None = None
    broker_name: str | None = None
    client_name: str
    client_phone: str | None = None
    client_email: str | None = None
    property_title: str | None = None
    property_id: str | None = None
    status: str
    sentiment: str
    smart_summary: str | None = None
    last_activity: datetime | None = None
    potential_value: Decimal | None = None
    stage: str | None = None
    stage_entered_at: datetime | None = None
    potential_commission: Decimal | None = None
    exclusivity: dict[str, Any] | None = None
    origin: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_serializer("potential_value", "potential_commission")
    def _decimal_to_float(self, value: Decimal | None) -> float | None:
        return float(value) if value is not None else None


class DealDetail(DealRead):
    """Deal detail with the broker's phone and the activity timeline."""

    broker_phone: str | None = None
    activity_logs: list[ActivityLogRead] = Field(default_factory=list)


class DealUpdate(BaseModel):
    """Request body for updating a deal (all fields optional)."""

    status: DealStatus | None = None
    sentiment: Sentiment | None = None
    smart_summary: str | None = None
    notes: str | None = None
    potential_value: Decimal | None = None
    broker_id: uuid.UUID | None = None


class DealFilter(BaseModel):
    """List filters and pagination for GET /api/deals."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    status: str | None = None
    sentiment: str | None = None
    broker_id: uuid.UUID | None = None
    search: str | None = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class DealPage(BaseModel):
    """Paginated deals list."""

    deals: list[DealRead]
    total: int
    page: int
    limit: int


class DealStats(BaseModel):
    """Pipeline aggregates for the deals page."""

    total: int = 0
    active: int = 0
    visiting: int = 0
    pipelineValue: float = 0.0


class DashboardStats(BaseModel):
    """Dashboard KPIs for one organization."""

    riskDeals: int = 0
    activeConversations: int = 0
    avgResponseTime: int | None = None
    newSummaries: int = 0
