"""Authentication API endpoints.

Provides email/password login and the current user. Login is the only
endpoint under /api that does not require a bearer token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.vetor_core.api.deps import AuthUser, get_current_user, get_db
from src.vetor_core.core.security import create_access_token, verify_password
from src.vetor_core.models.tenant import User
from src.vetor_core.schemas.auth import LoginRequest, LoginResponse, MeResponse, UserResponse

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Authenticate a user and return a JWT carrying their organization."""
    user = await db.scalar(select(User).where(func.lower(User.email) == body.email.lower()))

    if not user or not user.password_hash or not verify_password(body.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    token = create_access_token({
        "sub": str(user.id),
        "organization_id": str(user.organization_id),
        "role": user.role,
        "email": user.email,
    })

    return LoginResponse(
        user=UserResponse(
            id=user.id,
            email=user.email,
            organization_id=user.organization_id,
            role=user.role,
        ),
        token=token,
    )


@router.get("/me", response_model=MeResponse)
async def get_me(current_user: AuthUser = Depends(get_current_user)):
    """Return the authenticated user."""
    return MeResponse(user=UserResponse(**current_user.model_dump()))
