"""SyncLog -- audit record of one sync pass for one (organization, source) pair.

Inserted with status "running" when the pass starts and updated exactly once
when it ends (success or error). Rows left in "running" by a process crash
are swept to "error" at startup by SyncOrchestrator.sweep_stale_runs().
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.vetor_core.core.database import Base, utcnow


class SyncLog(Base):
    """One sync attempt: source, outcome, record count, timing."""

    __tablename__ = "sync_logs"
    __table_args__ = (
        Index("ix_sync_logs_org_started_at", "organization_id", "started_at"),
        Index("ix_sync_logs_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id"), nullable=False
    )
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    records_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
