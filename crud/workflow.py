"""
Multi-step order workflows.

Acceptance (order status + stock deduction + delivery dispatch) and
cancellation (order status + stock release + delivery withdrawal) each run
as one transaction. Any failure rolls the whole transaction back, which
leaves the order in the status it had before the call.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ValidationError, ConflictError, InsufficientStockError
from core.geo import AddressResolver
from core.notifications import Notifier
from core.retry import retry_transient
from core.security import Principal
from crud.delivery import dispatch_delivery, cancel_delivery, get_delivery_by_order
from crud.inventory import check_stock, reserve_stock, release_stock
from crud.order import (
    get_order_or_404, get_order_by_id, ensure_order_access, billable_items,
    mark_pending_items_approved, reject_order, advance_order, order_totals
)
from crud.shop import ensure_shop_manager
from crud.transitions import (
    transition_order, FULFILMENT_STATUSES, CANCELLABLE_STATUSES, CANCELLABLE_DELIVERY_STATUSES
)
from models.models import Order, Delivery, OrderStatus, UserRole

logger = logging.getLogger(__name__)

@dataclass
class AcceptResult:
    order: Order
    delivery: Delivery
    created: bool

# ========== ACCEPTANCE ==========

async def _accept_once(db: AsyncSession, principal: Principal, order_id: int, resolver: AddressResolver):
    order = await get_order_or_404(db, order_id)
    ensure_shop_manager(principal, order.shop)

    if order.status != OrderStatus.PENDING_APPROVAL.value:
        existing = await get_delivery_by_order(db, order.id)
        if OrderStatus(order.status) in FULFILMENT_STATUSES and existing:
            logger.info(f"Order {order_id} already accepted, returning delivery {existing.id}")
            return order, existing, False
        raise ConflictError(f"Cannot approve order with status: {order.status}")

    items = billable_items(order)
    if not items:
        raise ValidationError("Every item of this order was rejected; reject the order instead")

    products = await check_stock(db, items)

    # Rejected lines are neither shipped nor charged
    if not await transition_order(db, order, OrderStatus.APPROVED, principal.id, **order_totals(items)):
        raise ConflictError("Order was modified by someone else, please retry")

    await reserve_stock(db, items, products)
    await mark_pending_items_approved(db, order.id)
    delivery, created = await dispatch_delivery(db, order, order.shop, resolver)
    return order, delivery, created

async def accept_order(
    db: AsyncSession,
    principal: Principal,
    order_id: int,
    resolver: AddressResolver,
    notifier: Optional[Notifier] = None
) -> AcceptResult:
    """Approve an order: validate and deduct stock, then open its delivery request.

    Calling it again for an already accepted order returns the existing
    delivery without touching stock.
    """
    async def attempt():
        try:
            outcome = await _accept_once(db, principal, order_id, resolver)
            await db.commit()
            return outcome
        except IntegrityError as e:
            await db.rollback()
            logger.warning(f"Delivery for order {order_id} was created concurrently: {e}")
            raise ConflictError("Order was accepted concurrently, please retry") from e
        except InsufficientStockError as e:
            await db.rollback()
            logger.warning(f"Approval of order {order_id} aborted, order stays {OrderStatus.PENDING_APPROVAL.value}: {e.message}")
            raise
        except Exception:
            await db.rollback()
            raise

    _, delivery, created = await retry_transient(attempt)

    order = await get_order_by_id(db, order_id)
    delivery = await get_delivery_by_order(db, order_id) or delivery

    if created:
        logger.info(f"Order {order_id} approved by {principal.id}; delivery {delivery.id} dispatched")
        if notifier is not None:
            await notifier.order_status_changed(db, order)
            await notifier.delivery_available(db, delivery)

    return AcceptResult(order=order, delivery=delivery, created=created)

# ========== CANCELLATION ==========

def ensure_can_cancel(principal: Principal, order: Order) -> None:
    if principal.is_admin:
        return
    if principal.role == UserRole.CUSTOMER and order.customer_id == principal.id:
        return
    ensure_shop_manager(principal, order.shop)

async def _cancel_once(db: AsyncSession, principal: Principal, order_id: int, reason: str) -> None:
    order = await get_order_or_404(db, order_id)
    ensure_can_cancel(principal, order)

    if OrderStatus(order.status) not in CANCELLABLE_STATUSES:
        allowed = " or ".join(sorted(s.value for s in CANCELLABLE_STATUSES))
        raise ConflictError(f"Cannot cancel order with status: {order.status}. Only {allowed} orders can be cancelled.")

    delivery = order.delivery
    was_approved = order.status == OrderStatus.APPROVED.value
    if was_approved and delivery and delivery.status not in {s.value for s in CANCELLABLE_DELIVERY_STATUSES}:
        raise ConflictError("Order has already been picked up for delivery")

    if not await transition_order(
        db, order, OrderStatus.CANCELLED, principal.id, note=reason,
        cancellation_reason=reason,
        cancelled_at=datetime.utcnow(),
        cancelled_by=principal.id
    ):
        raise ConflictError("Order was modified by someone else, please reload")

    if was_approved:
        await release_stock(db, order.order_items)
        if delivery and not await cancel_delivery(db, delivery):
            raise ConflictError("Order has already been picked up for delivery")

async def cancel_order(
    db: AsyncSession,
    principal: Principal,
    order_id: int,
    reason: Optional[str],
    notifier: Optional[Notifier] = None
) -> Order:
    """Cancel an order that has not left the shop; approved stock goes back on the shelf"""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Cancellation reason is required")

    async def attempt():
        try:
            await _cancel_once(db, principal, order_id, reason)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    await retry_transient(attempt)
    logger.info(f"Order {order_id} cancelled by {principal.id}: {reason}")

    order = await get_order_by_id(db, order_id)
    if notifier is not None:
        await notifier.order_status_changed(db, order)
    return order

# ========== STATUS DISPATCH ==========

async def set_order_status(
    db: AsyncSession,
    principal: Principal,
    order_id: int,
    status: OrderStatus,
    resolver: AddressResolver,
    notifier: Optional[Notifier] = None,
    notes: Optional[str] = None,
    rejection_reason: Optional[str] = None
) -> Order:
    """Route a requested order status to the workflow that owns it"""
    status = OrderStatus(status)

    if status == OrderStatus.APPROVED:
        return (await accept_order(db, principal, order_id, resolver, notifier)).order
    if status == OrderStatus.CANCELLED:
        return await cancel_order(db, principal, order_id, rejection_reason or notes, notifier)
    if status == OrderStatus.REJECTED:
        order = await reject_order(db, principal, order_id, rejection_reason or notes)
    elif status in (OrderStatus.PREPARING, OrderStatus.READY):
        order = await advance_order(db, principal, order_id, status, notes)
    else:
        raise ValidationError(f"Order status {status.value} is set by the delivery workflow")

    if notifier is not None:
        await notifier.order_status_changed(db, order)
    return order

async def get_order_for(db: AsyncSession, principal: Principal, order_id: int) -> Order:
    order = await get_order_or_404(db, order_id)
    ensure_order_access(principal, order)
    return order
