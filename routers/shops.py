from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, List

from database import get_db
from crud.shop import get_nearby_shops, get_shop_products
from schemas.schemas import ShopResponse, ProductResponse

router = APIRouter(prefix="/shops", tags=["shops"])

@router.get("", response_model=List[ShopResponse])
async def list_shops(
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: Optional[float] = Query(None, gt=0),
    skip: int = 0,
    limit: int = 50,
    db: AsyncSession = Depends(get_db)
):
    """Approved shops, nearest first when a location is given"""
    shops = await get_nearby_shops(db, latitude, longitude, radius_km, skip, limit)
    response = []
    for shop, distance in shops:
        item = ShopResponse.model_validate(shop)
        item.distance_km = distance
        response.append(item)
    return response

@router.get("/{shop_id}/products", response_model=List[ProductResponse])
async def list_products(shop_id: int, db: AsyncSession = Depends(get_db)):
    products = await get_shop_products(db, shop_id)
    return [ProductResponse.model_validate(p) for p in products]
