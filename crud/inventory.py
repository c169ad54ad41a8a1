from collections import OrderedDict
from datetime import datetime
from typing import Dict, Iterable
import logging

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import InsufficientStockError, NotFoundError
from models.models import Product, OrderItem

logger = logging.getLogger(__name__)

def requested_quantities(items: Iterable[OrderItem]) -> "OrderedDict[int, int]":
    """Total quantity per product, in the order the lines were placed"""
    totals = OrderedDict()
    for item in sorted(items, key=lambda i: i.id or 0):
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return totals

def reserved_quantities(items: Iterable[OrderItem]) -> "OrderedDict[int, int]":
    """Units per product that acceptance actually took off the shelf"""
    totals = OrderedDict()
    for item in sorted(items, key=lambda i: i.id or 0):
        if item.reserved_quantity:
            totals[item.product_id] = totals.get(item.product_id, 0) + item.reserved_quantity
    return totals

async def get_products(db: AsyncSession, product_ids: Iterable[int]) -> Dict[int, Product]:
    result = await db.execute(
        select(Product)
        .where(Product.id.in_(list(product_ids)))
        .execution_options(populate_existing=True)
    )
    return {product.id: product for product in result.scalars().all()}

async def check_stock(db: AsyncSession, items: Iterable[OrderItem]) -> Dict[int, Product]:
    """Validate that every line can be served from current stock.

    Raises InsufficientStockError naming the first product that is short.
    """
    totals = requested_quantities(items)
    products = await get_products(db, totals.keys())

    for product_id, requested in totals.items():
        product = products.get(product_id)
        if not product:
            raise NotFoundError(f"Product not found for order item: {product_id}")
        available = product.quantity or 0
        if available < requested:
            raise InsufficientStockError(product.name, requested, available)

    return products

async def reserve_stock(db: AsyncSession, items: Iterable[OrderItem], products: Dict[int, Product]) -> None:
    """Deduct stock for every line, each deduction conditional on enough stock remaining.

    Must run inside the caller's transaction; a short line raises and the
    caller rolls back every deduction made so far.
    """
    items = list(items)
    for product_id, requested in requested_quantities(items).items():
        result = await db.execute(
            update(Product)
            .where(and_(Product.id == product_id, Product.quantity >= requested))
            .values(
                quantity=Product.quantity - requested,
                version=Product.version + 1,
                updated_at=datetime.utcnow()
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Another approval took the stock between the check and the update
            current = (await get_products(db, [product_id])).get(product_id)
            available = current.quantity if current else 0
            name = current.name if current else products[product_id].name
            raise InsufficientStockError(name, requested, available)

        logger.info(f"Stock reserved: product={product_id} deducted={requested}")

    await db.execute(
        update(OrderItem)
        .where(OrderItem.id.in_([item.id for item in items]))
        .values(reserved_quantity=OrderItem.quantity)
        .execution_options(synchronize_session=False)
    )

async def release_stock(db: AsyncSession, items: Iterable[OrderItem]) -> None:
    """Put back exactly what acceptance deducted for these lines"""
    items = list(items)
    for product_id, quantity in reserved_quantities(items).items():
        await db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(
                quantity=Product.quantity + quantity,
                version=Product.version + 1,
                updated_at=datetime.utcnow()
            )
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Stock released: product={product_id} restored={quantity}")

    await db.execute(
        update(OrderItem)
        .where(OrderItem.id.in_([item.id for item in items]))
        .values(reserved_quantity=0)
        .execution_options(synchronize_session=False)
    )
