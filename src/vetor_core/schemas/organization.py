"""Pydantic schemas for the superadmin organization and user endpoints.

Organization responses never include crm_config: credentials are write-only
through PUT /api/superadmin/organizations/{id}/crm-config.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from src.vetor_core.models.tenant import CrmType, UserRole

_PASSWORD_RULES = (
    (re.compile(r"[A-Z]"), "uppercase"),
    (re.compile(r"[a-z]"), "lowercase"),
    (re.compile(r"[0-9]"), "numbers"),
)


def validate_password_strength(password: str) -> str:
    """At least 12 characters with uppercase, lowercase, and a digit."""
    if len(password) < 12:
        raise ValueError("Password must be at least 12 characters long")
    if not all(pattern.search(password) for pattern, _ in _PASSWORD_RULES):
        raise ValueError("Password must contain uppercase, lowercase, and numbers")
    return password


def validate_conversation_store_url(url: str) -> str:
    """Only HTTPS URLs on a *.supabase.co host are accepted."""
    try:
        parsed = urlparse(url)
    except ValueError:
        raise ValueError("Invalid Supabase URL format")
    if not parsed.scheme or not parsed.hostname:
        raise ValueError("Invalid Supabase URL format")
    if parsed.scheme != "https":
        raise ValueError("Supabase URL must use HTTPS")
    if not parsed.hostname.endswith(".supabase.co"):
        raise ValueError("Invalid Supabase URL. Must be a *.supabase.co domain")
    return url.rstrip("/")


# ── Organizations ───────────────────────────────────────────────────────────


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    company_id: str | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Organization name is required")
        return value


class OrganizationUpdate(OrganizationCreate):
    pass


class OrganizationRead(BaseModel):
    """Organization without its credentials."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    company_id: str | None = None
    crm_type: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class OrganizationSummary(OrganizationRead):
    user_count: int = 0


class CrmConfigUpdate(BaseModel):
    """Body of PUT organizations/{id}/crm-config.

    vetor requires vetor_api_key and vetor_company_id; mada requires a
    *.supabase.co HTTPS URL and a key; none clears the configuration.
    """

    crm_type: CrmType
    vetor_api_key: str | None = None
    vetor_company_id: str | None = None
    mada_supabase_url: str | None = None
    mada_supabase_key: str | None = None

    @model_validator(mode="after")
    def _check_required_keys(self) -> CrmConfigUpdate:
        if self.crm_type == CrmType.VETOR:
            if not (self.vetor_api_key or "").strip():
                raise ValueError("vetor_api_key is required for Vetor CRM")
            if not (self.vetor_company_id or "").strip():
                raise ValueError("vetor_company_id is required for Vetor CRM")
        elif self.crm_type == CrmType.MADA:
            if not (self.mada_supabase_url or "").strip() or not (self.mada_supabase_key or "").strip():
                raise ValueError("mada_supabase_url and mada_supabase_key are required for Mada CRM")
            self.mada_supabase_url = validate_conversation_store_url(self.mada_supabase_url.strip())
        return self

    def to_config(self) -> dict[str, str] | None:
        if self.crm_type == CrmType.VETOR:
            return {
                "vetor_api_key": self.vetor_api_key.strip(),
                "vetor_company_id": self.vetor_company_id.strip(),
            }
        if self.crm_type == CrmType.MADA:
            return {
                "mada_supabase_url": self.mada_supabase_url,
                "mada_supabase_key": self.mada_supabase_key.strip(),
            }
        return None


# ── Users ───────────────────────────────────────────────────────────────────


class UserSummary(BaseModel):
    id: uuid.UUID
    email: str
    role: str
    organization_id: uuid.UUID
    organization_name: str | None = None
    created_at: datetime | None = None


class UserInvite(BaseModel):
    email: EmailStr
    password: str
    organization_id: uuid.UUID
    role: Literal["gestor", "admin", "superadmin"] = UserRole.ADMIN.value

    @field_validator("password")
    @classmethod
    def _strong_password(cls, value: str) -> str:
        return validate_password_strength(value)


class RoleUpdate(BaseModel):
    role: UserRole


class PlatformStats(BaseModel):
    organizations: int
    users: int
    superadmins: int
