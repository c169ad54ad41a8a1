"""
Notification port.

Workflow code reports state changes here after its transaction commits.
Clients still learn about changes by polling; this port is the seam where a
push channel would plug in. Failures are logged and never reach the caller.
"""
from abc import ABC, abstractmethod
import logging

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from core.twilio_client import TwilioClient
from models.models import Delivery, Notification, NotificationType, Order, UserRole

logger = logging.getLogger(__name__)

class Notifier(ABC):

    @abstractmethod
    async def order_status_changed(self, db: AsyncSession, order: Order) -> None:
        ...

    @abstractmethod
    async def delivery_available(self, db: AsyncSession, delivery: Delivery) -> None:
        ...

    @abstractmethod
    async def delivery_status_changed(self, db: AsyncSession, delivery: Delivery, order: Order) -> None:
        ...

class DefaultNotifier(Notifier):
    """Stores an in-app notification and texts the customer when Twilio is configured"""

    def __init__(self, sms_client: TwilioClient = None):
        self.sms_client = sms_client or TwilioClient()

    async def _record(self, db: AsyncSession, **fields) -> None:
        try:
            db.add(Notification(**fields))
            await db.commit()
        except Exception as e:
            logger.warning(f"Failed to store notification '{fields.get('title')}': {e}", exc_info=True)
            await db.rollback()

    async def _text(self, send, *args) -> None:
        try:
            await run_in_threadpool(send, *args)
        except Exception as e:
            logger.warning(f"Failed to send SMS: {e}", exc_info=True)

    async def order_status_changed(self, db: AsyncSession, order: Order) -> None:
        logger.info(f"Order {order.id} is now {order.status}")
        await self._record(
            db,
            recipient_id=order.customer_id,
            recipient_role=UserRole.CUSTOMER.value,
            title=f"Order #{order.id} {order.status.replace('_', ' ').lower()}",
            message=f"Your order #{order.id} is now {order.status}.",
            notification_type=NotificationType.ORDER_UPDATED.value,
            data={"order_id": order.id, "status": order.status}
        )
        if order.delivery_phone:
            await self._text(self.sms_client.send_order_update_sms, order.delivery_phone, order.id, order.status)

    async def delivery_available(self, db: AsyncSession, delivery: Delivery) -> None:
        logger.info(f"Delivery {delivery.id} for order {delivery.order_id} is open for pickup")
        await self._record(
            db,
            recipient_id=None,
            recipient_role=UserRole.DELIVERY_AGENT.value,
            title="New delivery request",
            message=f"Pickup from {delivery.pickup_address or 'shop'} to {delivery.delivery_address}",
            notification_type=NotificationType.DELIVERY_AVAILABLE.value,
            data={"delivery_id": delivery.id, "order_id": delivery.order_id}
        )

    async def delivery_status_changed(self, db: AsyncSession, delivery: Delivery, order: Order) -> None:
        logger.info(f"Delivery {delivery.id} for order {delivery.order_id} is now {delivery.status}")
        await self._record(
            db,
            recipient_id=order.customer_id,
            recipient_role=UserRole.CUSTOMER.value,
            title=f"Delivery update for order #{order.id}",
            message=f"Your delivery is now {delivery.status}.",
            notification_type=NotificationType.DELIVERY_UPDATED.value,
            data={"delivery_id": delivery.id, "order_id": order.id, "status": delivery.status}
        )
        if order.delivery_phone:
            await self._text(self.sms_client.send_delivery_update_sms, order.delivery_phone, order.id, delivery.status)

def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier
