"""V1 API router -- aggregates all endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.vetor_core.api.v1 import auth, brokers, dashboard, deals, health, superadmin, sync

router = APIRouter()

router.include_router(health.router)
router.include_router(auth.router)
router.include_router(dashboard.router)
router.include_router(deals.router)
router.include_router(brokers.router)
router.include_router(sync.router)
router.include_router(superadmin.router)
