from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from database import get_db
from core.security import Principal, require_principal
from crud.notification import get_notifications
from schemas.schemas import NotificationResponse

router = APIRouter(prefix="/notifications", tags=["notifications"])

@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = False,
    skip: int = 0,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_principal)
):
    """In-app notifications for the current user, newest first"""
    notifications = await get_notifications(db, principal, unread_only, skip, limit)
    return [NotificationResponse.model_validate(n) for n in notifications]
