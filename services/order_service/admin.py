from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.consigne_service.service import ConsigneService
from services.notification_service.gateway import NotificationGateway
from shared.clock import utcnow
from .enums import OrderStatus
from .models import Order
from .rollback import rollback_order
from .service import InvalidTransitionError, OrderService, can_transition

logger = structlog.get_logger(__name__)


class OrderAdminService:
    """Status changes made from the back office."""

    @staticmethod
    async def update_status(
        db: AsyncSession,
        gateway: NotificationGateway,
        order: Order,
        new_status: OrderStatus,
        actor: str,
        now: Optional[datetime] = None,
    ) -> Order:
        now = now or utcnow()
        current = OrderStatus(order.status)
        if not can_transition(current, new_status):
            raise InvalidTransitionError(current, new_status)

        if current == OrderStatus.PENDING and new_status == OrderStatus.CANCELLED:
            return await rollback_order(db, order, reason="admin", actor=actor, now=now)

        changed = await OrderService.transition(db, order, new_status, actor, now=now)
        if changed and new_status == OrderStatus.DELIVERED:
            await ConsigneService.on_delivered(db, gateway, order, now=now)
        return order

    @staticmethod
    async def mark_consigne_received(
        db: AsyncSession,
        gateway: NotificationGateway,
        order: Order,
        now: Optional[datetime] = None,
    ) -> int:
        return await ConsigneService.mark_received(db, gateway, order, now=now)
