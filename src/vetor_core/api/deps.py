"""FastAPI dependency injection for database sessions, authentication, and sync.

These dependencies are used in endpoint function signatures to inject the
database session, the authenticated user with their organization, and the
sync scheduler owned by the application.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.vetor_core.config import get_settings
from src.vetor_core.core.database import get_session
from src.vetor_core.core.security import verify_token
from src.vetor_core.models.tenant import User, UserRole
from src.vetor_core.sync.adapter import build_adapter
from src.vetor_core.sync.orchestrator import AdapterFactory
from src.vetor_core.sync.scheduler import SyncScheduler


class AuthUser(BaseModel):
    """The authenticated caller and the organization their requests are scoped to."""

    id: uuid.UUID
    email: str
    organization_id: uuid.UUID
    role: str


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session for the request."""
    async for session in get_session():
        yield session


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AuthUser:
    """Extract and validate the current user from the Bearer JWT.

    Raises:
        HTTPException(401): If no token is sent, the token is invalid, or the
            user it names no longer exists in the token's organization.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(auth_header[7:], token_type="access")
    try:
        user_id = uuid.UUID(str(payload["sub"]))
        organization_id = uuid.UUID(str(payload["organization_id"]))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await db.scalar(
        select(User).where(User.id == user_id, User.organization_id == organization_id)
    )
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    # Request logging reads these once the response is produced
    request.state.user_id = str(user.id)
    request.state.organization_id = str(user.organization_id)

    return AuthUser(
        id=user.id,
        email=user.email,
        organization_id=user.organization_id,
        role=user.role,
    )


def is_superadmin(user: AuthUser) -> bool:
    """Role "superadmin", or role "admin" with an email on the platform domain."""
    if user.role == UserRole.SUPERADMIN.value:
        return True
    domain = get_settings().SUPERADMIN_EMAIL_DOMAIN.lower()
    return user.role == UserRole.ADMIN.value and user.email.lower().endswith(f"@{domain}")


async def require_superadmin(current_user: AuthUser = Depends(get_current_user)) -> AuthUser:
    """Allow only platform superadmins.

    Raises:
        HTTPException(403): If the authenticated user is not a superadmin.
    """
    if not is_superadmin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Superadmin access required",
        )
    return current_user


async def get_sync_scheduler(request: Request) -> SyncScheduler:
    """The SyncScheduler created in the application lifespan."""
    scheduler = getattr(request.app.state, "sync_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync service not initialized",
        )
    return scheduler


def get_adapter_factory() -> AdapterFactory:
    """Factory used to build source adapters outside a sync pass."""
    return build_adapter
