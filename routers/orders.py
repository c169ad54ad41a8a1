from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, List

from database import get_db
from core.config import settings
from core.geo import AddressResolver, get_address_resolver
from core.notifications import Notifier, get_notifier
from core.security import Principal, require_principal, require_role
from crud.order import (
    create_order, get_orders, set_item_approval, approve_all_items
)
from crud.workflow import accept_order, cancel_order, set_order_status, get_order_for
from models.models import OrderStatus, UserRole
from schemas.schemas import (
    OrderCreate, OrderResponse, OrderStatusUpdate, OrderCancel, ItemApprovalUpdate,
    OrderItemResponse, OrderAcceptResponse, OrderTrackingResponse, DeliveryResponse
)

router = APIRouter(tags=["orders"])

@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_role(UserRole.CUSTOMER))
):
    """Submit the cart as an order request for the shopkeeper"""
    order = await create_order(db, principal, order_data)
    return OrderResponse.model_validate(order)

@router.get("/orders", response_model=List[OrderResponse])
async def list_orders(
    customer_id: Optional[int] = None,
    shop_id: Optional[int] = None,
    status: Optional[OrderStatus] = None,
    skip: int = 0,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_principal)
):
    orders = await get_orders(db, principal, customer_id, shop_id, status, skip, limit)
    return [OrderResponse.model_validate(order) for order in orders]

@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_principal)
):
    order = await get_order_for(db, principal, order_id)
    return OrderResponse.model_validate(order)

@router.get("/orders/{order_id}/tracking", response_model=OrderTrackingResponse)
async def track_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_principal)
):
    """Order and delivery status for the customer's polling screen"""
    order = await get_order_for(db, principal, order_id)
    return OrderTrackingResponse(
        order_id=order.id,
        order_status=order.status,
        delivery=DeliveryResponse.model_validate(order.delivery) if order.delivery else None,
        poll_interval_seconds=settings.CUSTOMER_POLL_INTERVAL_SECONDS
    )

@router.put("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    update: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_principal),
    resolver: AddressResolver = Depends(get_address_resolver),
    notifier: Notifier = Depends(get_notifier)
):
    order = await set_order_status(
        db, principal, order_id, update.status, resolver, notifier,
        notes=update.notes,
        rejection_reason=update.rejection_reason
    )
    return OrderResponse.model_validate(order)

@router.post("/orders/{order_id}/accept", response_model=OrderAcceptResponse)
async def accept(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_role(UserRole.SHOPKEEPER)),
    resolver: AddressResolver = Depends(get_address_resolver),
    notifier: Notifier = Depends(get_notifier)
):
    """Approve the order, deduct stock and open the delivery request in one go"""
    result = await accept_order(db, principal, order_id, resolver, notifier)
    message = "Order approved and delivery request created" if result.created else "Order was already approved"
    return OrderAcceptResponse(
        message=message,
        created=result.created,
        order=OrderResponse.model_validate(result.order),
        delivery=DeliveryResponse.model_validate(result.delivery)
    )

@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel(
    order_id: int,
    data: OrderCancel,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_principal),
    notifier: Notifier = Depends(get_notifier)
):
    order = await cancel_order(db, principal, order_id, data.cancellation_reason, notifier)
    return OrderResponse.model_validate(order)

@router.post("/orders/{order_id}/items/approve-all", response_model=OrderResponse)
async def approve_all(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_role(UserRole.SHOPKEEPER))
):
    order = await approve_all_items(db, principal, order_id)
    return OrderResponse.model_validate(order)

@router.put("/order_items/{item_id}/approval", response_model=OrderItemResponse)
async def update_item_approval(
    item_id: int,
    update: ItemApprovalUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_role(UserRole.SHOPKEEPER))
):
    item = await set_item_approval(db, principal, item_id, update.approval_status, update.rejection_reason)
    return OrderItemResponse.model_validate(item)
