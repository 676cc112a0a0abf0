"""Organization and user administration for platform superadmins.

Plain async functions over an AsyncSession. Lookups that miss return None
and the API layer turns that into a 404; email collisions raise
UserAlreadyExists.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.vetor_core.config import get_settings
from src.vetor_core.core.security import hash_password
from src.vetor_core.deals.models import ActivityLog, Broker, Deal
from src.vetor_core.models.tenant import CrmType, Organization, User, UserRole
from src.vetor_core.schemas.organization import (
    CrmConfigUpdate,
    OrganizationRead,
    OrganizationSummary,
    PlatformStats,
    UserInvite,
    UserSummary,
)
from src.vetor_core.sync.models import SyncLog

logger = structlog.get_logger(__name__)


class UserAlreadyExists(Exception):
    """An account with this email is already registered."""


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


async def platform_stats(session: AsyncSession) -> PlatformStats:
    domain = get_settings().SUPERADMIN_EMAIL_DOMAIN.lower()
    organizations = await session.scalar(select(func.count()).select_from(Organization))
    users = await session.scalar(select(func.count()).select_from(User))
    superadmins = await session.scalar(
        select(func.count())
        .select_from(User)
        .where(
            or_(
                User.role == UserRole.SUPERADMIN.value,
                (User.role == UserRole.ADMIN.value) & func.lower(User.email).like(f"%@{domain}"),
            )
        )
    )
    return PlatformStats(
        organizations=int(organizations or 0),
        users=int(users or 0),
        superadmins=int(superadmins or 0),
    )


# ── Organizations ───────────────────────────────────────────────────────────


async def list_organizations(session: AsyncSession) -> list[OrganizationSummary]:
    user_count = (
        select(func.count(User.id))
        .where(User.organization_id == Organization.id)
        .correlate(Organization)
        .scalar_subquery()
    )
    rows = (
        await session.execute(
            select(Organization, user_count.label("user_count")).order_by(Organization.created_at.desc())
        )
    ).all()
    summaries = []
    for org, count in rows:
        summary = OrganizationSummary.model_validate(org, from_attributes=True)
        summary.user_count = int(count or 0)
        summaries.append(summary)
    return summaries


async def create_organization(session: AsyncSession, name: str, company_id: str | None) -> OrganizationRead:
    org = Organization(name=name, company_id=company_id or None, crm_type=CrmType.NONE.value)
    session.add(org)
    await session.commit()
    logger.info("organization.created", organization_id=str(org.id))
    return OrganizationRead.model_validate(org, from_attributes=True)


async def get_organization(session: AsyncSession, organization_id: uuid.UUID) -> Organization | None:
    return await session.get(Organization, organization_id)


async def organization_users(session: AsyncSession, organization_id: uuid.UUID) -> list[dict[str, Any]]:
    users = (
        await session.scalars(
            select(User).where(User.organization_id == organization_id).order_by(User.created_at.desc())
        )
    ).all()
    return [
        {"id": str(u.id), "email": u.email, "role": u.role, "created_at": u.created_at.isoformat() if u.created_at else None}
        for u in users
    ]


async def update_organization(
    session: AsyncSession,
    organization_id: uuid.UUID,
    name: str,
    company_id: str | None,
) -> OrganizationRead | None:
    org = await session.get(Organization, organization_id)
    if org is None:
        return None
    org.name = name
    if company_id is not None:
        org.company_id = company_id or None
    await session.commit()
    return OrganizationRead.model_validate(org, from_attributes=True)


async def set_crm_config(
    session: AsyncSession,
    organization_id: uuid.UUID,
    body: CrmConfigUpdate,
) -> OrganizationRead | None:
    org = await session.get(Organization, organization_id)
    if org is None:
        return None
    org.crm_type = body.crm_type.value
    org.crm_config = body.to_config()
    org.company_id = body.vetor_company_id.strip() if body.crm_type == CrmType.VETOR else None
    await session.commit()
    logger.info("organization.crm_config_updated", organization_id=str(org.id), crm_type=org.crm_type)
    return OrganizationRead.model_validate(org, from_attributes=True)


async def delete_organization(session: AsyncSession, organization_id: uuid.UUID) -> bool:
    """Delete an organization and everything it owns."""
    org = await session.get(Organization, organization_id)
    if org is None:
        return False

    deal_ids = select(Deal.id).where(Deal.organization_id == organization_id)
    await session.execute(delete(ActivityLog).where(ActivityLog.deal_id.in_(deal_ids)))
    await session.execute(delete(Deal).where(Deal.organization_id == organization_id))
    await session.execute(delete(Broker).where(Broker.organization_id == organization_id))
    await session.execute(delete(SyncLog).where(SyncLog.organization_id == organization_id))
    await session.execute(delete(User).where(User.organization_id == organization_id))
    await session.delete(org)
    await session.commit()
    logger.warning("organization.deleted", organization_id=str(organization_id))
    return True


# ── Users ───────────────────────────────────────────────────────────────────


async def list_users(session: AsyncSession, role: str | None = None, search: str | None = None) -> list[UserSummary]:
    query = select(User, Organization.name).outerjoin(Organization, User.organization_id == Organization.id)
    if role:
        query = query.where(User.role == role)
    if search:
        query = query.where(User.email.ilike(_like_pattern(search), escape="\\"))
    rows = (await session.execute(query.order_by(User.created_at.desc()))).all()
    return [
        UserSummary(
            id=user.id,
            email=user.email,
            role=user.role,
            organization_id=user.organization_id,
            organization_name=org_name,
            created_at=user.created_at,
        )
        for user, org_name in rows
    ]


async def invite_user(session: AsyncSession, body: UserInvite) -> User:
    email = body.email.lower()
    existing = await session.scalar(select(User.id).where(func.lower(User.email) == email))
    if existing is not None:
        raise UserAlreadyExists(email)

    user = User(
        email=email,
        password_hash=hash_password(body.password),
        organization_id=body.organization_id,
        role=body.role,
        auth_provider="local",
    )
    session.add(user)
    await session.commit()
    logger.info("user.invited", user_id=str(user.id), organization_id=str(user.organization_id), role=user.role)
    return user


async def set_user_role(session: AsyncSession, user_id: uuid.UUID, role: UserRole) -> User | None:
    user = await session.get(User, user_id)
    if user is None:
        return None
    user.role = role.value
    await session.commit()
    return user


async def delete_user(session: AsyncSession, user_id: uuid.UUID) -> bool:
    user = await session.get(User, user_id)
    if user is None:
        return False
    await session.delete(user)
    await session.commit()
    return True
