"""Tenant models -- organizations and the dashboard users that belong to them.

An Organization is the isolation boundary: every broker, deal, and sync log
row carries its organization_id, and every query filters on it.

crm_type selects which external source feeds the organization; crm_config
holds that source's credentials as stored JSON. Typed access to the
credentials goes through src.vetor_core.sync.credentials.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.vetor_core.core.database import Base, utcnow


class CrmType(str, Enum):
    """External source configured for an organization."""

    NONE = "none"
    VETOR = "vetor"
    MADA = "mada"


class UserRole(str, Enum):
    """Dashboard user roles."""

    GESTOR = "gestor"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class Organization(Base):
    """Tenant boundary holding the CRM type and its credentials."""

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    crm_type: Mapped[str] = mapped_column(
        String(20), default=CrmType.NONE.value, nullable=False, index=True
    )
    crm_config: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class User(Base):
    """Dashboard user within an organization."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(String(50), default=UserRole.GESTOR.value, nullable=False)
    auth_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
