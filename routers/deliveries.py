from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from database import get_db
from core.config import settings
from core.notifications import Notifier, get_notifier
from core.security import Principal, require_principal, require_role
from crud.delivery import get_deliveries, get_delivery_for, accept_delivery, update_delivery
from crud.order import get_order_by_id
from models.models import DeliveryStatus, UserRole
from schemas.schemas import (
    DeliveryResponse, DeliveryListResponse, DeliveryAcceptRequest, DeliveryUpdateRequest
)

router = APIRouter(prefix="/deliveries", tags=["deliveries"])

@router.get("", response_model=DeliveryListResponse)
async def list_deliveries(
    unassigned_only: bool = Query(False, alias="unassignedOnly"),
    delivery_agent_id: Optional[int] = Query(None, alias="deliveryAgentId"),
    delivery_status: Optional[DeliveryStatus] = Query(None, alias="status"),
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_role(UserRole.DELIVERY_AGENT))
):
    """Delivery dashboard feed; clients poll it every poll_interval_seconds"""
    deliveries = await get_deliveries(
        db, principal, delivery_agent_id, delivery_status, unassigned_only, skip, limit
    )
    return DeliveryListResponse(
        deliveries=[DeliveryResponse.model_validate(d) for d in deliveries],
        poll_interval_seconds=settings.DELIVERY_POLL_INTERVAL_SECONDS
    )

@router.get("/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery(
    delivery_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_principal)
):
    delivery = await get_delivery_for(db, principal, delivery_id)
    return DeliveryResponse.model_validate(delivery)

@router.post("/accept", response_model=DeliveryResponse)
async def accept(
    data: DeliveryAcceptRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_role(UserRole.DELIVERY_AGENT)),
    notifier: Notifier = Depends(get_notifier)
):
    """Claim an open delivery; only one agent can win it"""
    delivery = await accept_delivery(db, principal, data.delivery_id, data.delivery_agent_id)
    order = await get_order_by_id(db, delivery.order_id)
    await notifier.delivery_status_changed(db, delivery, order)
    return DeliveryResponse.model_validate(delivery)

@router.put("", response_model=DeliveryResponse)
async def update(
    data: DeliveryUpdateRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_role(UserRole.DELIVERY_AGENT)),
    notifier: Notifier = Depends(get_notifier)
):
    delivery, order = await update_delivery(
        db, principal, data.delivery_id, data.status, data.delivery_photo_url, data.notes
    )
    if data.status is not None:
        order = order or await get_order_by_id(db, delivery.order_id)
        await notifier.delivery_status_changed(db, delivery, order)
        if delivery.status == DeliveryStatus.DELIVERED.value:
            await notifier.order_status_changed(db, order)
    return DeliveryResponse.model_validate(delivery)
