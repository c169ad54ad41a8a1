from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, func
from typing import Optional, List
import logging

from core.exceptions import ValidationError, NotFoundError
from core.security import Principal
from models.models import CustomerAddress
from schemas.schemas import ManualAddress, AddressCreate

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = ("address_line1", "city", "state", "pincode", "phone")

def validate_address_fields(address: ManualAddress) -> dict:
    """Strip every field and reject the address if a mandatory one is blank"""
    cleaned = {}
    for field, value in address.model_dump().items():
        cleaned[field] = value.strip() if isinstance(value, str) else value
    for field in REQUIRED_ADDRESS_FIELDS:
        if not cleaned.get(field):
            raise ValidationError(f"Delivery address field '{field}' is required")
    return cleaned

def format_address(fields: dict) -> str:
    address = fields["address_line1"]
    if fields.get("address_line2"):
        address += f", {fields['address_line2']}"
    address += f", {fields['city']}, {fields['state']} - {fields['pincode']}"
    return address

# ========== ADDRESS BOOK ==========

async def get_customer_address(db: AsyncSession, address_id: int, user_id: int) -> Optional[CustomerAddress]:
    result = await db.execute(
        select(CustomerAddress).where(
            and_(CustomerAddress.id == address_id, CustomerAddress.user_id == user_id)
        )
    )
    return result.scalar_one_or_none()

async def get_customer_addresses(db: AsyncSession, user_id: int) -> List[CustomerAddress]:
    """Default address first, then newest"""
    result = await db.execute(
        select(CustomerAddress)
        .where(CustomerAddress.user_id == user_id)
        .order_by(CustomerAddress.is_default.desc(), CustomerAddress.created_at.desc())
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()

async def create_customer_address(db: AsyncSession, principal: Principal, address_data: AddressCreate) -> CustomerAddress:
    """Add an address to the principal's book; the first one becomes the default"""
    fields = validate_address_fields(address_data)

    count_result = await db.execute(
        select(func.count(CustomerAddress.id)).where(CustomerAddress.user_id == principal.id)
    )
    is_default = address_data.is_default or count_result.scalar() == 0

    if is_default:
        await db.execute(
            update(CustomerAddress)
            .where(CustomerAddress.user_id == principal.id)
            .values(is_default=False)
            .execution_options(synchronize_session=False)
        )

    db_address = CustomerAddress(
        user_id=principal.id,
        label=(address_data.label or "Home").strip(),
        address_line1=fields["address_line1"],
        address_line2=fields.get("address_line2"),
        city=fields["city"],
        state=fields["state"],
        pincode=fields["pincode"],
        phone=fields["phone"],
        latitude=address_data.latitude,
        longitude=address_data.longitude,
        is_default=is_default
    )
    db.add(db_address)
    await db.commit()
    logger.info(f"Address {db_address.id} added for user {principal.id}")
    return db_address

async def set_default_address(db: AsyncSession, principal: Principal, address_id: int) -> CustomerAddress:
    address = await get_customer_address(db, address_id, principal.id)
    if not address:
        raise NotFoundError("Address not found")

    await db.execute(
        update(CustomerAddress)
        .where(CustomerAddress.user_id == principal.id)
        .values(is_default=(CustomerAddress.id == address_id))
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(address)
    return address
