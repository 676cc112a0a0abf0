"""Superadmin API endpoints for platform-wide organization and user management.

Every route requires require_superadmin (403 otherwise). Organization
responses never include stored CRM credentials.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.vetor_core.api.deps import AuthUser, get_db, require_superadmin
from src.vetor_core.schemas.organization import (
    CrmConfigUpdate,
    OrganizationCreate,
    OrganizationRead,
    OrganizationUpdate,
    PlatformStats,
    RoleUpdate,
    UserInvite,
)
from src.vetor_core.services import organizations as org_service

router = APIRouter(prefix="/api/superadmin", tags=["superadmin"])


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


@router.get("/stats", response_model=PlatformStats)
async def stats(
    _: AuthUser = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    return await org_service.platform_stats(db)


# ── Organizations ───────────────────────────────────────────────────────────


@router.get("/organizations")
async def list_organizations(
    _: AuthUser = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    organizations = await org_service.list_organizations(db)
    return {"organizations": [o.model_dump(mode="json") for o in organizations]}


@router.post("/organizations", status_code=status.HTTP_201_CREATED)
async def create_organization(
    body: OrganizationCreate,
    _: AuthUser = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    org = await org_service.create_organization(db, body.name, body.company_id)
    return {"message": "Organization created successfully", "organization": org.model_dump(mode="json")}


@router.get("/organizations/{organization_id}")
async def get_organization(
    organization_id: uuid.UUID,
    _: AuthUser = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    org = await org_service.get_organization(db, organization_id)
    if org is None:
        raise _not_found("Organization")
    return {
        "organization": OrganizationRead.model_validate(org, from_attributes=True).model_dump(mode="json"),
        "users": await org_service.organization_users(db, organization_id),
    }


@router.put("/organizations/{organization_id}")
async def update_organization(
    organization_id: uuid.UUID,
    body: OrganizationUpdate,
    _: AuthUser = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    org = await org_service.update_organization(db, organization_id, body.name, body.company_id)
    if org is None:
        raise _not_found("Organization")
    return {"message": "Organization updated successfully", "organization": org.model_dump(mode="json")}


@router.put("/organizations/{organization_id}/crm-config")
async def update_crm_config(
    organization_id: uuid.UUID,
    body: CrmConfigUpdate,
    _: AuthUser = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    """Set the organization's CRM type and credentials (validated, never echoed back)."""
    org = await org_service.set_crm_config(db, organization_id, body)
    if org is None:
        raise _not_found("Organization")
    return {"message": "CRM configuration updated successfully", "organization": org.model_dump(mode="json")}


@router.delete("/organizations/{organization_id}")
async def delete_organization(
    organization_id: uuid.UUID,
    current_user: AuthUser = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    """Delete an organization with its users, brokers, deals, and sync logs."""
    if organization_id == current_user.organization_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You cannot delete your own organization",
        )
    if not await org_service.delete_organization(db, organization_id):
        raise _not_found("Organization")
    return {"message": "Organization deleted successfully"}


# ── Users ───────────────────────────────────────────────────────────────────


@router.get("/users")
async def list_users(
    role: str | None = Query(None),
    search: str | None = Query(None),
    _: AuthUser = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    users = await org_service.list_users(db, role=role, search=search)
    return {"users": [u.model_dump(mode="json") for u in users]}


@router.post("/invite", status_code=status.HTTP_201_CREATED)
async def invite_user(
    body: UserInvite,
    _: AuthUser = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    """Create a user with a password in an existing organization."""
    if await org_service.get_organization(db, body.organization_id) is None:
        raise _not_found("Organization")
    try:
        user = await org_service.invite_user(db, body)
    except org_service.UserAlreadyExists:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User with this email already exists",
        )
    return {
        "message": "User invited successfully",
        "user": {
            "id": str(user.id),
            "email": user.email,
            "organization_id": str(user.organization_id),
            "role": user.role,
        },
    }


@router.put("/users/{user_id}/role")
async def update_user_role(
    user_id: uuid.UUID,
    body: RoleUpdate,
    current_user: AuthUser = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You cannot change your own role",
        )
    user = await org_service.set_user_role(db, user_id, body.role)
    if user is None:
        raise _not_found("User")
    return {
        "message": "User role updated successfully",
        "user": {"id": str(user.id), "email": user.email, "role": user.role},
    }


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: uuid.UUID,
    current_user: AuthUser = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You cannot delete your own account",
        )
    if not await org_service.delete_user(db, user_id):
        raise _not_found("User")
    return {"message": "User deleted successfully"}
