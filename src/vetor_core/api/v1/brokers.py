"""Broker API endpoints, scoped to the caller's organization."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.vetor_core.api.deps import AuthUser, get_current_user, get_db
from src.vetor_core.deals.repository import DealRepository
from src.vetor_core.deals.schemas import BrokerCreate, BrokerRead, BrokerUpdate

router = APIRouter(prefix="/api/brokers", tags=["brokers"])


@router.get("")
async def list_brokers(
    active: bool | None = Query(None),
    search: str | None = Query(None),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    brokers = await DealRepository(db).list_brokers(current_user.organization_id, active=active, search=search)
    return {"brokers": [b.model_dump(mode="json") for b in brokers]}


@router.get("/{broker_id}", response_model=BrokerRead)
async def get_broker(
    broker_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    broker = await DealRepository(db).get_broker_row(current_user.organization_id, broker_id)
    if broker is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Broker not found")
    return BrokerRead.model_validate(broker, from_attributes=True)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_broker(
    body: BrokerCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a broker. A legacy single "name" is split into first and last name."""
    first_name, last_name = body.resolved_names()
    if not first_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="First name is required",
        )

    broker = await DealRepository(db).create_broker(
        current_user.organization_id,
        first_name=first_name,
        last_name=last_name,
        email=body.email,
        phone=body.phone,
    )
    return {"message": "Broker created successfully", "broker": broker.model_dump(mode="json")}


@router.put("/{broker_id}")
async def update_broker(
    broker_id: uuid.UUID,
    body: BrokerUpdate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    changes = body.changes()
    if "first_name" in changes and not (changes["first_name"] or "").strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="First name cannot be empty",
        )
    if changes.get("last_name") is None and "last_name" in changes:
        changes["last_name"] = ""
    if "is_active" in changes and changes["is_active"] is None:
        del changes["is_active"]

    broker = await DealRepository(db).update_broker(current_user.organization_id, broker_id, changes)
    if broker is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Broker not found")
    return {"message": "Broker updated successfully", "broker": broker.model_dump(mode="json")}
