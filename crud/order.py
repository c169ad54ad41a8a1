from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, desc
from sqlalchemy.orm import selectinload
from typing import Optional, List, Dict, Iterable
import logging

from core.config import settings
from core.exceptions import ValidationError, NotFoundError, PermissionDenied, ConflictError
from core.security import Principal
from crud.address import get_customer_address, validate_address_fields, format_address
from crud.shop import get_approved_shop, get_shop_by_id, ensure_shop_manager
from crud.transitions import transition_order, history_entry
from models.models import (
    Order, OrderItem, Product, Shop, User, UserRole,
    OrderStatus, ApprovalStatus, PaymentStatus
)
from schemas.schemas import OrderCreate

logger = logging.getLogger(__name__)

def calculate_delivery_charge(subtotal: float) -> float:
    if subtotal >= settings.FREE_DELIVERY_THRESHOLD:
        return 0.0
    return settings.BASE_DELIVERY_CHARGE

def order_totals(items: Iterable[OrderItem]) -> Dict[str, float]:
    """Subtotal, delivery charge and total over the given lines"""
    subtotal = round(sum(item.price * item.quantity for item in items), 2)
    delivery_charge = calculate_delivery_charge(subtotal)
    return {
        "subtotal": subtotal,
        "delivery_charge": delivery_charge,
        "total_amount": round(subtotal + delivery_charge, 2)
    }

# ========== ORDER CREATION ==========

async def create_order(db: AsyncSession, principal: Principal, order_data: OrderCreate) -> Order:
    """Turn a customer's cart into an order request awaiting shopkeeper approval"""
    customer_id = order_data.customer_id or principal.id
    if customer_id != principal.id and not principal.is_admin:
        raise PermissionDenied("Orders can only be placed for your own account")

    if not order_data.items:
        raise ValidationError("Cart is empty")
    if not order_data.payment_method:
        raise ValidationError("Payment method is required")

    customer = await db.get(User, customer_id)
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")

    shop = await get_approved_shop(db, order_data.shop_id)

    # Resolve delivery address: saved address book entry or manual entry
    delivery_latitude = delivery_longitude = None
    if order_data.address_id is not None:
        address = await get_customer_address(db, order_data.address_id, customer_id)
        if not address:
            raise NotFoundError("Address not found")
        delivery_address = address.formatted()
        delivery_phone = address.phone
        delivery_latitude, delivery_longitude = address.latitude, address.longitude
    elif order_data.delivery_address is not None:
        fields = validate_address_fields(order_data.delivery_address)
        delivery_address = format_address(fields)
        delivery_phone = fields["phone"]
    else:
        raise ValidationError("Delivery address is required")

    # Snapshot prices of the requested products
    product_ids = sorted({item.product_id for item in order_data.items})
    result = await db.execute(select(Product).where(Product.id.in_(product_ids)))
    products = {product.id: product for product in result.scalars().all()}

    order_items = []
    for item_data in order_data.items:
        product = products.get(item_data.product_id)
        if not product or product.shop_id != shop.id or not product.is_active:
            raise NotFoundError(f"Product {item_data.product_id} not found in this shop")

        order_items.append(OrderItem(
            product_id=product.id,
            quantity=item_data.quantity,
            price=product.price,
            approval_status=ApprovalStatus.PENDING.value
        ))

    db_order = Order(
        customer_id=customer_id,
        shop_id=shop.id,
        **order_totals(order_items),
        delivery_address=delivery_address,
        delivery_phone=delivery_phone,
        delivery_latitude=delivery_latitude,
        delivery_longitude=delivery_longitude,
        payment_method=order_data.payment_method.value,
        payment_status=PaymentStatus.PENDING.value,
        notes=(order_data.notes or "").strip() or None,
        status=OrderStatus.PENDING_APPROVAL.value,
        request_type="ORDER_REQUEST",
        status_history=[history_entry(OrderStatus.PENDING_APPROVAL, principal.id)],
        order_items=order_items
    )

    db.add(db_order)
    await db.commit()
    logger.info(f"Order {db_order.id} created by customer {customer_id} for shop {shop.id} ({len(order_items)} items)")
    return await get_order_by_id(db, db_order.id)

# ========== ORDER RETRIEVAL ==========

async def get_order_by_id(db: AsyncSession, order_id: int) -> Optional[Order]:
    """Get order by ID with its items, shop and delivery, always re-read from the database"""
    result = await db.execute(
        select(Order)
        .options(
            selectinload(Order.order_items),
            selectinload(Order.shop),
            selectinload(Order.delivery)
        )
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()

async def get_order_or_404(db: AsyncSession, order_id: int) -> Order:
    order = await get_order_by_id(db, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order

def ensure_order_access(principal: Principal, order: Order) -> None:
    """Customers see their own orders, shopkeepers their shop's, agents the ones they carry"""
    if principal.is_admin:
        return
    if principal.role == UserRole.CUSTOMER and order.customer_id == principal.id:
        return
    if principal.role == UserRole.SHOPKEEPER and order.shop and order.shop.owner_id == principal.id:
        return
    if (principal.role == UserRole.DELIVERY_AGENT and order.delivery
            and order.delivery.delivery_agent_id == principal.id):
        return
    raise PermissionDenied("You do not have access to this order")

async def get_orders(
    db: AsyncSession,
    principal: Principal,
    customer_id: Optional[int] = None,
    shop_id: Optional[int] = None,
    status: Optional[OrderStatus] = None,
    skip: int = 0,
    limit: int = 50
) -> List[Order]:
    """List orders visible to the principal, newest first"""
    conditions = []

    if principal.role == UserRole.CUSTOMER:
        if customer_id is not None and customer_id != principal.id:
            raise PermissionDenied("You can only list your own orders")
        conditions.append(Order.customer_id == principal.id)
    elif principal.role == UserRole.SHOPKEEPER:
        if shop_id is not None:
            shop = await get_shop_by_id(db, shop_id)
            if not shop:
                raise NotFoundError("Shop not found")
            ensure_shop_manager(principal, shop)
            conditions.append(Order.shop_id == shop_id)
        else:
            owned = select(Shop.id).where(Shop.owner_id == principal.id)
            conditions.append(Order.shop_id.in_(owned))
    elif principal.is_admin:
        if customer_id is not None:
            conditions.append(Order.customer_id == customer_id)
        if shop_id is not None:
            conditions.append(Order.shop_id == shop_id)
    else:
        raise PermissionDenied("Not authorized to list orders")

    if status is not None:
        conditions.append(Order.status == OrderStatus(status).value)

    query = select(Order).options(selectinload(Order.order_items))
    if conditions:
        query = query.where(and_(*conditions))

    result = await db.execute(
        query
        .order_by(desc(Order.created_at), desc(Order.id))
        .offset(skip)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()

# ========== SHOPKEEPER REVIEW ==========

async def reject_order(db: AsyncSession, principal: Principal, order_id: int, reason: Optional[str]) -> Order:
    """Reject a whole order; items, stock and deliveries are left untouched"""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required")

    order = await get_order_or_404(db, order_id)
    ensure_shop_manager(principal, order.shop)

    if not await transition_order(db, order, OrderStatus.REJECTED, principal.id, note=reason, rejection_reason=reason):
        await db.rollback()
        raise ConflictError("Order was modified by someone else, please reload")

    await db.commit()
    logger.info(f"Order {order_id} rejected by {principal.id}: {reason}")
    return await get_order_by_id(db, order_id)

async def advance_order(
    db: AsyncSession,
    principal: Principal,
    order_id: int,
    status: OrderStatus,
    notes: Optional[str] = None
) -> Order:
    """Shopkeeper progress updates after approval (PREPARING, READY)"""
    if status not in (OrderStatus.PREPARING, OrderStatus.READY):
        raise ValidationError(f"Order status {OrderStatus(status).value} cannot be set directly")

    order = await get_order_or_404(db, order_id)
    ensure_shop_manager(principal, order.shop)

    extra = {"notes": notes.strip()} if notes and notes.strip() else {}
    if not await transition_order(db, order, status, principal.id, **extra):
        await db.rollback()
        raise ConflictError("Order was modified by someone else, please reload")

    await db.commit()
    logger.info(f"Order {order_id} moved to {OrderStatus(status).value} by {principal.id}")
    return await get_order_by_id(db, order_id)

# ========== ITEM APPROVAL ==========

def reviewable_order_ids():
    """Lines can only be reviewed while their order awaits approval"""
    return select(Order.id).where(Order.status == OrderStatus.PENDING_APPROVAL.value)

def ensure_items_reviewable(order: Order) -> None:
    if order.status != OrderStatus.PENDING_APPROVAL.value:
        raise ConflictError(f"Items of an order with status {order.status} can no longer be reviewed")

async def get_order_item_by_id(db: AsyncSession, item_id: int) -> Optional[OrderItem]:
    result = await db.execute(
        select(OrderItem)
        .where(OrderItem.id == item_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()

async def set_item_approval(
    db: AsyncSession,
    principal: Principal,
    item_id: int,
    approval_status: ApprovalStatus,
    rejection_reason: Optional[str] = None
) -> OrderItem:
    """Approve or reject a single line of an order awaiting approval"""
    if approval_status == ApprovalStatus.PENDING:
        raise ValidationError("An item cannot be reset to PENDING")

    reason = (rejection_reason or "").strip()
    if approval_status == ApprovalStatus.REJECTED and not reason:
        raise ValidationError("Rejection reason is required")

    item = await get_order_item_by_id(db, item_id)
    if not item:
        raise NotFoundError(f"Order item {item_id} not found")

    order = await get_order_or_404(db, item.order_id)
    ensure_shop_manager(principal, order.shop)
    ensure_items_reviewable(order)

    result = await db.execute(
        update(OrderItem)
        .where(and_(OrderItem.id == item_id, OrderItem.order_id.in_(reviewable_order_ids())))
        .values(
            approval_status=ApprovalStatus(approval_status).value,
            rejection_reason=reason if approval_status == ApprovalStatus.REJECTED else None
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ConflictError("Order was modified by someone else, please reload")
    await db.commit()
    logger.info(f"Order item {item_id} of order {order.id} set to {ApprovalStatus(approval_status).value}")
    return await get_order_item_by_id(db, item_id)

async def approve_all_items(db: AsyncSession, principal: Principal, order_id: int) -> Order:
    """Mark every line of the order APPROVED in one statement"""
    order = await get_order_or_404(db, order_id)
    ensure_shop_manager(principal, order.shop)
    ensure_items_reviewable(order)

    result = await db.execute(
        update(OrderItem)
        .where(and_(OrderItem.order_id == order_id, OrderItem.order_id.in_(reviewable_order_ids())))
        .values(approval_status=ApprovalStatus.APPROVED.value, rejection_reason=None)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        await db.rollback()
        raise ConflictError("Order was modified by someone else, please reload")
    await db.commit()
    logger.info(f"All items of order {order_id} approved by {principal.id}")
    return await get_order_by_id(db, order_id)

async def mark_pending_items_approved(db: AsyncSession, order_id: int) -> None:
    await db.execute(
        update(OrderItem)
        .where(and_(
            OrderItem.order_id == order_id,
            OrderItem.approval_status == ApprovalStatus.PENDING.value
        ))
        .values(approval_status=ApprovalStatus.APPROVED.value)
        .execution_options(synchronize_session=False)
    )

def billable_items(order: Order) -> List[OrderItem]:
    """Lines that will actually be shipped"""
    return [item for item in order.order_items if item.approval_status != ApprovalStatus.REJECTED.value]
