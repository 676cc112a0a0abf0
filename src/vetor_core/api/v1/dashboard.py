"""Dashboard KPI endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.vetor_core.api.deps import AuthUser, get_current_user, get_db
from src.vetor_core.deals.repository import DealRepository
from src.vetor_core.deals.schemas import DashboardStats

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/stats", response_model=DashboardStats)
async def dashboard_stats(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Risk deals, active conversations, average response time, and new summaries."""
    return await DealRepository(db).dashboard_stats(current_user.organization_id)
