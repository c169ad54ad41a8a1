from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_, desc
from typing import List

from core.security import Principal
from models.models import Notification

async def get_notifications(
    db: AsyncSession,
    principal: Principal,
    unread_only: bool = False,
    skip: int = 0,
    limit: int = 50
) -> List[Notification]:
    """Notifications addressed to the principal plus broadcasts to their role"""
    role = principal.role.value
    conditions = [
        Notification.recipient_role == role,
        or_(Notification.recipient_id == principal.id, Notification.recipient_id.is_(None))
    ]
    if unread_only:
        conditions.append(Notification.is_read == False)

    result = await db.execute(
        select(Notification)
        .where(and_(*conditions))
        .order_by(desc(Notification.created_at), desc(Notification.id))
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()
