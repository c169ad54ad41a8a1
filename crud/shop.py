from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from typing import Optional, List, Tuple

from core.exceptions import NotFoundError, PermissionDenied
from core.geo import haversine_km
from core.security import Principal
from models.models import Shop, ShopStatus, Product, UserRole

# ========== SHOP RETRIEVAL ==========

async def get_shop_by_id(db: AsyncSession, shop_id: int) -> Optional[Shop]:
    result = await db.execute(select(Shop).where(Shop.id == shop_id))
    return result.scalar_one_or_none()

async def get_approved_shop(db: AsyncSession, shop_id: int) -> Shop:
    """Only approved shops are visible to customers"""
    shop = await get_shop_by_id(db, shop_id)
    if not shop or shop.status != ShopStatus.APPROVED.value:
        raise NotFoundError("Shop not found")
    return shop

async def get_nearby_shops(
    db: AsyncSession,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius_km: Optional[float] = None,
    skip: int = 0,
    limit: int = 50
) -> List[Tuple[Shop, Optional[float]]]:
    """Approved shops with their distance from the given point, nearest first.

    Without a point the shops come back by name with no distance. Shops with
    no coordinates are dropped once a radius is given.
    """
    result = await db.execute(
        select(Shop)
        .where(Shop.status == ShopStatus.APPROVED.value)
        .order_by(Shop.name)
    )
    shops = result.scalars().all()

    if latitude is None or longitude is None:
        return [(shop, None) for shop in shops][skip:skip + limit]

    ranked = []
    for shop in shops:
        if shop.latitude is None or shop.longitude is None:
            if radius_km is None:
                ranked.append((shop, None))
            continue
        distance = round(haversine_km(latitude, longitude, shop.latitude, shop.longitude), 2)
        if radius_km is not None and distance > radius_km:
            continue
        ranked.append((shop, distance))

    ranked.sort(key=lambda pair: (pair[1] is None, pair[1] or 0.0))
    return ranked[skip:skip + limit]

async def get_shop_products(db: AsyncSession, shop_id: int) -> List[Product]:
    await get_approved_shop(db, shop_id)
    result = await db.execute(
        select(Product)
        .where(and_(Product.shop_id == shop_id, Product.is_active == True))
        .order_by(Product.name)
    )
    return result.scalars().all()

# ========== OWNERSHIP ==========

def ensure_shop_manager(principal: Principal, shop: Shop) -> None:
    """Only the shop's owner (or an admin) may act on its orders"""
    if principal.is_admin:
        return
    if principal.role != UserRole.SHOPKEEPER or shop.owner_id != principal.id:
        raise PermissionDenied("You do not manage this shop")
