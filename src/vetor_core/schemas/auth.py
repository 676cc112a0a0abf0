"""Pydantic schemas for authentication API endpoints."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    """Request schema for user login."""

    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")


class UserResponse(BaseModel):
    """Public view of a dashboard user."""

    id: uuid.UUID
    email: str
    organization_id: uuid.UUID
    role: str


class LoginResponse(BaseModel):
    message: str = "Login successful"
    user: UserResponse
    token: str


class MeResponse(BaseModel):
    user: UserResponse
