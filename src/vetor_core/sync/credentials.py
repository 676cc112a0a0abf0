"""Typed per-source credentials parsed from Organization.crm_config.

crm_config is free-form JSON in the database. This module is the only place
that reads its keys; everything downstream receives a typed record or None.
"""

from __future__ import annotations

from typing import Union

from pydantic import BaseModel, ConfigDict

from src.vetor_core.models.tenant import CrmType, Organization
from src.vetor_core.sync.schemas import SyncSource

# crm_config keys
VETOR_API_KEY = "vetor_api_key"
VETOR_COMPANY_ID = "vetor_company_id"
MADA_URL = "mada_supabase_url"
MADA_KEY = "mada_supabase_key"

CRM_TYPE_BY_SOURCE: dict[SyncSource, CrmType] = {
    SyncSource.VETOR_IMOBI: CrmType.VETOR,
    SyncSource.MADA: CrmType.MADA,
}


class VetorCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str
    company_id: str | None = None


class ConversationStoreCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    key: str


SourceCredentials = Union[VetorCredentials, ConversationStoreCredentials]


def source_for_crm_type(crm_type: str | None) -> SyncSource | None:
    """The sync source that feeds an organization with this crm_type."""
    for source, mapped in CRM_TYPE_BY_SOURCE.items():
        if mapped.value == crm_type:
            return source
    return None


def _value(config: dict, key: str) -> str | None:
    raw = config.get(key)
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def credentials_for(org: Organization, source: SyncSource) -> SourceCredentials | None:
    """Typed credentials for source, or None if the org is not configured for it.

    None is returned when the organization's crm_type does not select this
    source, when crm_config is not a mapping, or when a required key is
    missing or blank.
    """
    if org.crm_type != CRM_TYPE_BY_SOURCE[source].value:
        return None
    config = org.crm_config if isinstance(org.crm_config, dict) else {}

    if source == SyncSource.VETOR_IMOBI:
        api_key = _value(config, VETOR_API_KEY)
        if api_key is None:
            return None
        company_id = _value(config, VETOR_COMPANY_ID) or (org.company_id or None)
        return VetorCredentials(api_key=api_key, company_id=company_id)

    url = _value(config, MADA_URL)
    key = _value(config, MADA_KEY)
    if url is None or key is None:
        return None
    return ConversationStoreCredentials(url=url.rstrip("/"), key=key)
