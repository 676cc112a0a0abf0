"""Sync API endpoints: manual trigger and recent sync logs.

The manual trigger runs synchronously and returns once every requested pass
has finished. Credentials are checked before anything is written, so a
request for an unconfigured source leaves no SyncLog behind.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.vetor_core.api.deps import AuthUser, get_current_user, get_db, get_sync_scheduler
from src.vetor_core.models.tenant import Organization
from src.vetor_core.sync.credentials import credentials_for, source_for_crm_type
from src.vetor_core.sync.models import SyncLog
from src.vetor_core.sync.scheduler import SyncScheduler
from src.vetor_core.sync.schemas import SyncLogRead, SyncRequest, SyncSource

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])

ALL_SOURCES = ("both", "all")
SYNC_LOG_LIMIT = 50


def _parse_source(value: str) -> SyncSource | None:
    """SyncSource for a single source name, None for "both"; 400 for anything else."""
    if value in ALL_SOURCES:
        return None
    try:
        return SyncSource(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Source must be "vetor_imobi", "mada", or "both"',
        )


@router.post("")
async def trigger_sync(
    body: SyncRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    scheduler: SyncScheduler = Depends(get_sync_scheduler),
):
    """Run a sync now for the caller's organization."""
    requested = _parse_source(body.source)

    org = await db.get(Organization, current_user.organization_id)
    if org is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")

    configured = source_for_crm_type(org.crm_type)
    if requested is None and configured is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No CRM source configured for this organization",
        )
    source = requested or configured

    if source != configured or credentials_for(org, source) is None:
        logger.info(
            "sync.manual_rejected_missing_credentials",
            organization_id=str(org.id),
            source=source.value,
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{source.value} credentials not configured for this organization",
        )

    result = await scheduler.trigger(org.id, [source], body.minutes)

    if result.failed:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "error": "Sync failed",
                "message": "; ".join(p.error_message or "unknown error" for p in result.failed),
                "syncLogIds": result.sync_log_ids,
            },
        )

    return {
        "status": "success",
        "recordsProcessed": result.records_processed,
        "message": f"Sync triggered for {body.source}",
        "syncLogIds": result.sync_log_ids,
    }


@router.get("/logs")
async def sync_logs(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The most recent sync logs for the caller's organization."""
    logs = (
        await db.scalars(
            select(SyncLog)
            .where(SyncLog.organization_id == current_user.organization_id)
            .order_by(SyncLog.started_at.desc())
            .limit(SYNC_LOG_LIMIT)
        )
    ).all()
    return {"logs": [SyncLogRead.model_validate(log).model_dump(mode="json") for log in logs]}
