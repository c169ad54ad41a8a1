"""
Transition tables for orders and deliveries.

Status writes go through ``transition_order`` / the delivery updates in
``crud.delivery``; both are conditional on the status the caller last saw,
so two writers racing on the same row cannot both win.
"""
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ConflictError
from models.models import Order, OrderStatus, DeliveryStatus

ORDER_TRANSITIONS = {
    OrderStatus.PENDING_APPROVAL: frozenset({OrderStatus.APPROVED, OrderStatus.REJECTED, OrderStatus.CANCELLED}),
    OrderStatus.APPROVED: frozenset({OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.DELIVERED}),
    OrderStatus.READY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Orders past approval whose delivery record already exists
FULFILMENT_STATUSES = frozenset({
    OrderStatus.APPROVED, OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.DELIVERED,
})

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING_APPROVAL, OrderStatus.APPROVED})

# Steps a delivery agent drives; ASSIGNED is reached by claiming, CANCELLED by order cancellation
DELIVERY_AGENT_STEPS = {
    DeliveryStatus.ASSIGNED: DeliveryStatus.PICKED_UP,
    DeliveryStatus.PICKED_UP: DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.IN_TRANSIT: DeliveryStatus.DELIVERED,
}

CANCELLABLE_DELIVERY_STATUSES = frozenset({DeliveryStatus.UNASSIGNED, DeliveryStatus.ASSIGNED})

def can_transition_order(current: str, target: OrderStatus) -> bool:
    return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]

def ensure_order_transition(current: str, target: OrderStatus) -> None:
    if not can_transition_order(current, target):
        raise ConflictError(f"Cannot move order from {current} to {OrderStatus(target).value}")

def history_entry(status: OrderStatus, actor_id: Optional[int] = None, note: Optional[str] = None) -> Dict[str, Any]:
    entry = {"status": OrderStatus(status).value, "at": datetime.utcnow().isoformat(), "by": actor_id}
    if note:
        entry["note"] = note
    return entry

async def transition_order(
    db: AsyncSession,
    order: Order,
    target: OrderStatus,
    actor_id: Optional[int] = None,
    note: Optional[str] = None,
    **values
) -> bool:
    """Move ``order`` to ``target`` if it is still in the status it was loaded with.

    Returns False when another writer changed the status first.
    """
    ensure_order_transition(order.status, target)

    history = list(order.status_history or [])
    history.append(history_entry(target, actor_id, note))

    result = await db.execute(
        update(Order)
        .where(and_(Order.id == order.id, Order.status == order.status))
        .values(status=OrderStatus(target).value, status_history=history, updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
