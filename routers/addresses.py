from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from database import get_db
from core.security import Principal, require_role
from crud.address import get_customer_addresses, create_customer_address, set_default_address
from models.models import UserRole
from schemas.schemas import AddressCreate, AddressResponse

router = APIRouter(prefix="/customer/addresses", tags=["addresses"])

@router.get("", response_model=List[AddressResponse])
async def list_addresses(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_role(UserRole.CUSTOMER))
):
    addresses = await get_customer_addresses(db, principal.id)
    return [AddressResponse.model_validate(a) for a in addresses]

@router.post("", response_model=AddressResponse, status_code=status.HTTP_201_CREATED)
async def add_address(
    address_data: AddressCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_role(UserRole.CUSTOMER))
):
    address = await create_customer_address(db, principal, address_data)
    return AddressResponse.model_validate(address)

@router.put("/{address_id}/default", response_model=AddressResponse)
async def make_default(
    address_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_role(UserRole.CUSTOMER))
):
    address = await set_default_address(db, principal, address_id)
    return AddressResponse.model_validate(address)
