from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, desc
from typing import Optional, List, Tuple
from datetime import datetime
import logging

from core.exceptions import (
    ValidationError, NotFoundError, PermissionDenied, ConflictError, DeliveryAlreadyAssigned
)
from core.geo import AddressResolver, AddressNotFound, GeoPoint
from core.retry import retry_transient
from core.security import Principal
from crud.delivery_agent import (
    get_delivery_agent, ensure_acting_as_agent, is_eligible, record_completed_delivery
)
from crud.order import get_order_by_id, ensure_order_access
from crud.transitions import (
    transition_order, can_transition_order, DELIVERY_AGENT_STEPS, CANCELLABLE_DELIVERY_STATUSES
)
from models.models import (
    Delivery, DeliveryStatus, DeliveryAgentStatus, Order, OrderStatus, Shop, UserRole
)

logger = logging.getLogger(__name__)

# Timestamp column stamped by each agent step
STEP_TIMESTAMPS = {
    DeliveryStatus.PICKED_UP: "picked_up_at",
    DeliveryStatus.IN_TRANSIT: "in_transit_at",
    DeliveryStatus.DELIVERED: "delivered_at",
}

# ========== DELIVERY RETRIEVAL ==========

async def get_delivery_by_id(db: AsyncSession, delivery_id: int) -> Optional[Delivery]:
    result = await db.execute(
        select(Delivery)
        .where(Delivery.id == delivery_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()

async def get_delivery_by_order(db: AsyncSession, order_id: int) -> Optional[Delivery]:
    result = await db.execute(
        select(Delivery)
        .where(Delivery.order_id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()

async def get_delivery_for(db: AsyncSession, principal: Principal, delivery_id: int) -> Delivery:
    """Agents see open deliveries and their own; everyone else goes through the order"""
    delivery = await get_delivery_by_id(db, delivery_id)
    if not delivery:
        raise NotFoundError(f"Delivery {delivery_id} not found")

    if principal.role == UserRole.DELIVERY_AGENT:
        if delivery.delivery_agent_id == principal.id:
            return delivery
        if delivery.delivery_agent_id is None and delivery.status == DeliveryStatus.UNASSIGNED.value:
            return delivery
        raise PermissionDenied("Delivery is assigned to another agent")

    order = await get_order_by_id(db, delivery.order_id)
    ensure_order_access(principal, order)
    return delivery

async def get_deliveries(
    db: AsyncSession,
    principal: Principal,
    delivery_agent_id: Optional[int] = None,
    status: Optional[DeliveryStatus] = None,
    unassigned_only: bool = False,
    skip: int = 0,
    limit: int = 100
) -> List[Delivery]:
    """Poll query behind the agent dashboard, newest first"""
    if principal.role == UserRole.DELIVERY_AGENT:
        if delivery_agent_id is not None and delivery_agent_id != principal.id:
            raise PermissionDenied("You can only list your own deliveries")
        if not unassigned_only:
            delivery_agent_id = principal.id
    elif not principal.is_admin:
        raise PermissionDenied("Not authorized to list deliveries")

    conditions = []
    if unassigned_only:
        if principal.role == UserRole.DELIVERY_AGENT:
            agent = await get_delivery_agent(db, principal.id)
            if not agent or not is_eligible(agent):
                return []
        conditions.append(Delivery.delivery_agent_id.is_(None))
        conditions.append(Delivery.status == DeliveryStatus.UNASSIGNED.value)
    else:
        if delivery_agent_id is not None:
            conditions.append(Delivery.delivery_agent_id == delivery_agent_id)
        if status is not None:
            conditions.append(Delivery.status == DeliveryStatus(status).value)

    query = select(Delivery)
    if conditions:
        query = query.where(and_(*conditions))

    result = await db.execute(
        query
        .order_by(desc(Delivery.created_at), desc(Delivery.id))
        .offset(skip)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()

# ========== DISPATCH ==========

async def resolve_location(resolver: AddressResolver, address: Optional[str]) -> Optional[GeoPoint]:
    """Best-effort geocoding; a failure never blocks dispatch"""
    if not address:
        return None
    try:
        return await resolver.resolve(address)
    except AddressNotFound:
        logger.info(f"No coordinates found for address: {address}")
    except Exception as e:
        logger.warning(f"Address resolution failed for '{address}': {e}", exc_info=True)
    return None

async def dispatch_delivery(
    db: AsyncSession,
    order: Order,
    shop: Shop,
    resolver: AddressResolver
) -> Tuple[Delivery, bool]:
    """Create the order's delivery request unless it already has one.

    Runs inside the acceptance transaction. Returns (delivery, created).
    """
    existing = await get_delivery_by_order(db, order.id)
    if existing:
        logger.info(f"Delivery {existing.id} already exists for order {order.id}")
        return existing, False

    pickup_lat, pickup_lng = shop.latitude, shop.longitude
    if pickup_lat is None or pickup_lng is None:
        point = await resolve_location(resolver, shop.address)
        if point:
            pickup_lat, pickup_lng = point.latitude, point.longitude
            await db.execute(
                update(Shop)
                .where(Shop.id == shop.id)
                .values(latitude=pickup_lat, longitude=pickup_lng)
                .execution_options(synchronize_session=False)
            )

    drop_lat, drop_lng = order.delivery_latitude, order.delivery_longitude
    if drop_lat is None or drop_lng is None:
        point = await resolve_location(resolver, order.delivery_address)
        if point:
            drop_lat, drop_lng = point.latitude, point.longitude
            await db.execute(
                update(Order)
                .where(Order.id == order.id)
                .values(delivery_latitude=drop_lat, delivery_longitude=drop_lng)
                .execution_options(synchronize_session=False)
            )

    delivery = Delivery(
        order_id=order.id,
        status=DeliveryStatus.UNASSIGNED.value,
        pickup_address=shop.address,
        pickup_latitude=pickup_lat,
        pickup_longitude=pickup_lng,
        delivery_address=order.delivery_address,
        delivery_latitude=drop_lat,
        delivery_longitude=drop_lng,
        delivery_phone=order.delivery_phone,
        notes=f"Pickup from: {shop.address} | Deliver to: {order.delivery_address}"
    )
    db.add(delivery)
    await db.flush()
    logger.info(f"Delivery {delivery.id} created for order {order.id}")
    return delivery, True

async def cancel_delivery(db: AsyncSession, delivery: Delivery) -> bool:
    """Withdraw a delivery that has not been picked up yet"""
    result = await db.execute(
        update(Delivery)
        .where(and_(
            Delivery.id == delivery.id,
            Delivery.status.in_([s.value for s in CANCELLABLE_DELIVERY_STATUSES])
        ))
        .values(status=DeliveryStatus.CANCELLED.value, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1

# ========== DELIVERY LIFECYCLE ==========

async def accept_delivery(db: AsyncSession, principal: Principal, delivery_id: int, agent_id: int) -> Delivery:
    """Claim an open delivery. Exactly one of several racing agents wins."""
    ensure_acting_as_agent(principal, agent_id)

    agent = await get_delivery_agent(db, agent_id)
    if not agent:
        raise NotFoundError("Delivery agent not found")
    if agent.status != DeliveryAgentStatus.APPROVED.value:
        raise PermissionDenied("Delivery agent is not approved")
    if not agent.is_available:
        raise ConflictError("Delivery agent is not available")

    async def claim() -> int:
        try:
            now = datetime.utcnow()
            result = await db.execute(
                update(Delivery)
                .where(and_(
                    Delivery.id == delivery_id,
                    Delivery.delivery_agent_id.is_(None),
                    Delivery.status == DeliveryStatus.UNASSIGNED.value
                ))
                .values(
                    delivery_agent_id=agent_id,
                    status=DeliveryStatus.ASSIGNED.value,
                    assigned_at=now,
                    updated_at=now
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount
        except Exception:
            await db.rollback()
            raise

    if await retry_transient(claim) != 1:
        delivery = await get_delivery_by_id(db, delivery_id)
        if not delivery:
            raise NotFoundError(f"Delivery {delivery_id} not found")
        if delivery.delivery_agent_id == agent_id and delivery.status == DeliveryStatus.ASSIGNED.value:
            # Retried claim that had already gone through
            return delivery
        if delivery.status == DeliveryStatus.CANCELLED.value:
            raise ConflictError(f"Delivery {delivery_id} was cancelled")
        logger.warning(f"Agent {agent_id} lost the claim on delivery {delivery_id}")
        raise DeliveryAlreadyAssigned(delivery_id)

    logger.info(f"Delivery {delivery_id} assigned to agent {agent_id}")
    return await get_delivery_by_id(db, delivery_id)

async def update_delivery(
    db: AsyncSession,
    principal: Principal,
    delivery_id: int,
    status: Optional[DeliveryStatus] = None,
    delivery_photo_url: Optional[str] = None,
    notes: Optional[str] = None
) -> Tuple[Delivery, Optional[Order]]:
    """Advance a delivery one step, or record its proof photo / notes.

    Returns the delivery and, when the order changed too, the order.
    """
    photo_url = (delivery_photo_url or "").strip() or None
    notes = (notes or "").strip() or None
    if status is None and not photo_url and not notes:
        raise ValidationError("At least one field to update is required")

    delivery = await get_delivery_by_id(db, delivery_id)
    if not delivery:
        raise NotFoundError(f"Delivery {delivery_id} not found")
    if not principal.is_admin and (
            principal.role != UserRole.DELIVERY_AGENT or delivery.delivery_agent_id != principal.id):
        raise PermissionDenied("Only the assigned delivery agent can update this delivery")
    if delivery.status in (DeliveryStatus.DELIVERED.value, DeliveryStatus.CANCELLED.value):
        raise ConflictError(f"Delivery is already {delivery.status}")

    now = datetime.utcnow()
    values = {"updated_at": now}
    if notes:
        values["notes"] = notes
    if photo_url:
        values["delivery_photo_url"] = photo_url
        values["delivery_photo_uploaded_at"] = now

    conditions = [Delivery.id == delivery.id, Delivery.status == delivery.status]

    if status is not None:
        status = DeliveryStatus(status)
        if DELIVERY_AGENT_STEPS.get(DeliveryStatus(delivery.status)) != status:
            raise ConflictError(f"Cannot move delivery from {delivery.status} to {status.value}")

        if status == DeliveryStatus.DELIVERED and not (photo_url or delivery.delivery_photo_url):
            raise ValidationError(
                "Delivery proof photo is required before marking as delivered. Please upload a photo first."
            )

        values["status"] = status.value
        values[STEP_TIMESTAMPS[status]] = now
        conditions.append(Delivery.delivery_agent_id == delivery.delivery_agent_id)

    order = None
    try:
        result = await db.execute(
            update(Delivery)
            .where(and_(*conditions))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Delivery was updated by someone else, please reload")

        if status == DeliveryStatus.DELIVERED:
            order = await get_order_by_id(db, delivery.order_id)
            if order and can_transition_order(order.status, OrderStatus.DELIVERED):
                if not await transition_order(db, order, OrderStatus.DELIVERED, principal.id):
                    raise ConflictError("Order was modified by someone else, please retry")
            elif order:
                logger.warning(f"Order {order.id} is {order.status}; not marking it delivered")
            await record_completed_delivery(db, delivery.delivery_agent_id)

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Delivery {delivery_id} updated: {values.get('status', 'details only')}")
    if order is not None:
        order = await get_order_by_id(db, order.id)
    return await get_delivery_by_id(db, delivery_id), order
