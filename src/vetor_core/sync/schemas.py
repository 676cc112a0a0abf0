"""Pydantic schemas for sync sources, external records, and pass results.

External record models are permissive on purpose: unknown keys are ignored,
numeric ids are coerced to strings, and every field except the id is optional.
A record that fails validation becomes a per-record error in the reconciler.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SyncSource(str, Enum):
    """External data sources, tagged as stored in SyncLog.source."""

    VETOR_IMOBI = "vetor_imobi"
    MADA = "mada"


class SyncStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    PARTIAL = "partial"


# ── External Records ────────────────────────────────────────────────────────


class _ExternalRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str


class VetorUser(_ExternalRecord):
    """A CRM user; becomes a local Broker."""

    first_name: str | None = None
    last_name: str | None = None
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None
    disabled: bool | None = None
    status: str | None = None


class VetorClient(_ExternalRecord):
    """A CRM client; denormalized onto deals as client name/email/phone."""

    first_name: str | None = None
    last_name: str | None = None
    full_name: str | None = None
    email: str | None = None
    phone_primary: str | None = None

    @property
    def display_name(self) -> str:
        if self.full_name and self.full_name.strip():
            return self.full_name.strip()
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class VetorProperty(_ExternalRecord):
    title: str | None = None
    status: str | None = None


class VetorDeal(_ExternalRecord):
    """A CRM deal (negócio)."""

    title: str | None = None
    agent_email: str | None = None
    stage: str | None = None
    stage_entered_at: datetime | None = None
    potential_value: float | None = None
    potential_commission: float | None = None
    client_id: str | None = None
    property_id: str | None = None
    property_ids: list[str] | None = None
    exclusividade: dict[str, Any] | None = None
    origem: str | None = None
    last_activity_at: datetime | None = None

    @property
    def first_property_id(self) -> str | None:
        if self.property_ids:
            return self.property_ids[0]
        return self.property_id

    def exclusivity(self) -> dict[str, Any] | None:
        """Exclusivity block in local key names ({has, start_date, end_date})."""
        if self.exclusividade is None:
            return None
        return {
            "has": bool(self.exclusividade.get("tem")),
            "start_date": self.exclusividade.get("data_inicio"),
            "end_date": self.exclusividade.get("data_fim"),
        }


class VetorNote(_ExternalRecord):
    """A CRM note attached to a deal."""

    deal_id: str | None = None
    title: str | None = None
    content: str | None = None
    note_type: str | None = None
    priority: str | None = None
    due_date: str | None = None
    is_completed: bool | None = None
    is_archived: bool | None = None
    agent_email: str | None = None


class MadaConversation(_ExternalRecord):
    """An analyzed conversation from the conversation store."""

    deal_id: str | None = None
    metadata: dict[str, Any] | None = None
    summary: str | None = None
    sentiment: str | None = None
    transcription: str | None = None
    updated_at: datetime | None = None

    @property
    def linked_deal_id(self) -> str | None:
        if self.deal_id:
            return self.deal_id
        if self.metadata and self.metadata.get("deal_id"):
            return str(self.metadata["deal_id"])
        return None


class SentimentUpdate(BaseModel):
    """A standalone sentiment change for a deal."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    deal_id: str
    sentiment: str
    updated_at: datetime | None = None


# ── Results ─────────────────────────────────────────────────────────────────


class ReconcileResult(BaseModel):
    """Outcome of applying one batch of external records."""

    processed: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)


class SyncPassResult(BaseModel):
    """Outcome of one (organization, source) pass, mirrored in its SyncLog."""

    sync_log_id: uuid.UUID
    organization_id: uuid.UUID
    source: SyncSource
    status: SyncStatus
    records_processed: int = 0
    error_message: str | None = None


class ManualSyncResult(BaseModel):
    """Aggregate of a manual trigger over one or more sources."""

    passes: list[SyncPassResult] = Field(default_factory=list)

    @property
    def records_processed(self) -> int:
        return sum(p.records_processed for p in self.passes)

    @property
    def failed(self) -> list[SyncPassResult]:
        return [p for p in self.passes if p.status == SyncStatus.ERROR]

    @property
    def sync_log_ids(self) -> list[str]:
        return [str(p.sync_log_id) for p in self.passes]


class SyncLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    source: str
    status: str
    records_processed: int
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None


class SyncRequest(BaseModel):
    """Body of POST /api/sync."""

    source: str
    minutes: int | None = Field(default=None, ge=1)
