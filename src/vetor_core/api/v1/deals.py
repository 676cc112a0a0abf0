"""Deal API endpoints.

List, stats, detail, and update for the caller's organization. Every query
is scoped to current_user.organization_id; a deal id from another
organization is indistinguishable from a missing one (404).
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.vetor_core.api.deps import AuthUser, get_adapter_factory, get_current_user, get_db
from src.vetor_core.config import get_settings
from src.vetor_core.deals.repository import DealRepository
from src.vetor_core.deals.schemas import DealDetail, DealFilter, DealPage, DealStats, DealUpdate
from src.vetor_core.models.tenant import Organization
from src.vetor_core.sync.adapter import CRMAdapter
from src.vetor_core.sync.credentials import credentials_for
from src.vetor_core.sync.orchestrator import AdapterFactory
from src.vetor_core.sync.schemas import SyncSource

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/deals", tags=["deals"])


@router.get("", response_model=DealPage)
async def list_deals(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: str | None = Query(None, alias="status"),
    sentiment: str | None = Query(None),
    broker_id: uuid.UUID | None = Query(None),
    search: str | None = Query(None),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Paginated deals, newest first."""
    filters = DealFilter(
        page=page,
        limit=limit,
        status=status_filter,
        sentiment=sentiment,
        broker_id=broker_id,
        search=search,
    )
    deals, total = await DealRepository(db).list_deals(current_user.organization_id, filters)
    return DealPage(deals=deals, total=total, page=page, limit=limit)


@router.get("/stats", response_model=DealStats)
async def deal_stats(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Pipeline totals for the deals page."""
    return await DealRepository(db).deal_stats(current_user.organization_id)


@router.get("/{deal_id}", response_model=DealDetail)
async def get_deal(
    deal_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Deal with broker info and its activity timeline."""
    deal = await DealRepository(db).get_deal(current_user.organization_id, deal_id)
    if deal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found")
    return deal


async def _push_to_crm(
    db: AsyncSession,
    organization_id: uuid.UUID,
    external_id: str,
    fields: dict[str, Any],
    adapter_factory: AdapterFactory,
) -> None:
    """Send changed fields to the organization's CRM. Failures are logged, not raised."""
    org = await db.get(Organization, organization_id)
    credentials = credentials_for(org, SyncSource.VETOR_IMOBI) if org else None
    if credentials is None:
        return
    try:
        adapter = adapter_factory(SyncSource.VETOR_IMOBI, credentials, get_settings())
        if isinstance(adapter, CRMAdapter):
            await adapter.update_deal(external_id, fields)
    except Exception as exc:
        logger.warning(
            "deal.crm_push_failed",
            organization_id=str(organization_id),
            external_id=external_id,
            error=str(exc),
        )


@router.put("/{deal_id}")
async def update_deal(
    deal_id: uuid.UUID,
    body: DealUpdate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    """Update status, sentiment, summary, value, or broker; optionally add a note."""
    repo = DealRepository(db)
    existing = await repo.get_deal_row(current_user.organization_id, deal_id)
    if existing is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found")
    previous_value = existing.potential_value
    external_id = existing.external_id

    fields = body.model_dump(exclude_unset=True, exclude={"notes"})
    changes: dict[str, Any] = {}
    for field, value in fields.items():
        if field in ("status", "sentiment"):
            if value is None:
                continue
            changes[field] = value.value
        else:
            changes[field] = value

    if changes.get("broker_id") is not None:
        broker = await repo.get_broker_row(current_user.organization_id, changes["broker_id"])
        if broker is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Broker not found in this organization",
            )

    deal = await repo.update_deal(current_user.organization_id, deal_id, changes, notes=body.notes)
    if deal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found")

    new_value = changes.get("potential_value")
    if external_id and "potential_value" in changes and new_value != previous_value:
        await _push_to_crm(
            db,
            current_user.organization_id,
            external_id,
            {"potential_value": float(new_value) if new_value is not None else None},
            adapter_factory,
        )

    logger.info(
        "deal.updated",
        organization_id=str(current_user.organization_id),
        deal_id=str(deal_id),
        fields=sorted(changes),
    )
    return {"message": "Deal updated successfully", "deal": deal.model_dump(mode="json")}
