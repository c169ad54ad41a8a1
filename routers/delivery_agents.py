from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from core.security import Principal, require_role
from crud.delivery_agent import get_delivery_agent_for, set_availability
from models.models import UserRole
from schemas.schemas import AvailabilityUpdate, DeliveryAgentResponse

router = APIRouter(prefix="/delivery-agents", tags=["delivery agents"])

@router.put("/availability", response_model=DeliveryAgentResponse)
async def update_availability(
    data: AvailabilityUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_role(UserRole.DELIVERY_AGENT))
):
    """Go online or offline for new delivery requests"""
    agent = await set_availability(db, principal, data.delivery_agent_id, data.is_available)
    return DeliveryAgentResponse.model_validate(agent)

@router.get("/{agent_id}", response_model=DeliveryAgentResponse)
async def get_agent(
    agent_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_role(UserRole.DELIVERY_AGENT))
):
    agent = await get_delivery_agent_for(db, principal, agent_id)
    return DeliveryAgentResponse.model_validate(agent)
