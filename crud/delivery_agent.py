from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from typing import Optional
from datetime import datetime
import logging

from core.exceptions import NotFoundError, PermissionDenied
from core.security import Principal
from models.models import DeliveryAgent, DeliveryAgentStatus, UserRole

logger = logging.getLogger(__name__)

async def get_delivery_agent(db: AsyncSession, agent_id: int) -> Optional[DeliveryAgent]:
    result = await db.execute(
        select(DeliveryAgent)
        .where(DeliveryAgent.id == agent_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()

def ensure_acting_as_agent(principal: Principal, agent_id: int) -> None:
    """A delivery agent may only act on their own behalf"""
    if principal.is_admin:
        return
    if principal.role != UserRole.DELIVERY_AGENT or principal.id != agent_id:
        raise PermissionDenied("You can only act as yourself")

def is_eligible(agent: DeliveryAgent) -> bool:
    """Approved and switched on: the agent gets to see open deliveries"""
    return agent.status == DeliveryAgentStatus.APPROVED.value and bool(agent.is_available)

async def get_delivery_agent_for(db: AsyncSession, principal: Principal, agent_id: int) -> DeliveryAgent:
    ensure_acting_as_agent(principal, agent_id)
    agent = await get_delivery_agent(db, agent_id)
    if not agent:
        raise NotFoundError("Delivery agent not found")
    return agent

async def set_availability(db: AsyncSession, principal: Principal, agent_id: int, is_available: bool) -> DeliveryAgent:
    """Toggle availability; deliveries already in hand are not affected"""
    agent = await get_delivery_agent_for(db, principal, agent_id)

    await db.execute(
        update(DeliveryAgent)
        .where(DeliveryAgent.id == agent.id)
        .values(is_available=is_available, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info(f"Delivery agent {agent_id} is now {'available' if is_available else 'unavailable'}")
    return await get_delivery_agent(db, agent_id)

async def record_completed_delivery(db: AsyncSession, agent_id: int) -> None:
    await db.execute(
        update(DeliveryAgent)
        .where(DeliveryAgent.id == agent_id)
        .values(total_deliveries=DeliveryAgent.total_deliveries + 1, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
