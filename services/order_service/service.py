import random
import time
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.clock import utcnow
from .enums import OrderStatus
from .models import Order, OrderStatusHistory
from .repository import OrderRepository

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


class InvalidTransitionError(ValueError):
    def __init__(self, current: OrderStatus, target: OrderStatus):
        super().__init__(f"Cannot move order from '{current.value}' to '{target.value}'")
        self.current = current
        self.target = target


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def generate_order_number(now_ms: Optional[int] = None) -> str:
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"CP-{now_ms}-{random.randint(0, 999):03d}"


class OrderService:

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int) -> Optional[Order]:
        return await OrderRepository.get_order(db, order_id)

    @staticmethod
    async def transition(
        db: AsyncSession,
        order: Order,
        new_status: OrderStatus,
        actor: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Moves the order along the state machine and appends one history entry.

        The status column is updated conditionally on its current value, so
        of two concurrent callers only one appends history; the other gets
        False. Raises InvalidTransitionError for moves the machine forbids.
        """
        current = OrderStatus(order.status)
        if not can_transition(current, new_status):
            raise InvalidTransitionError(current, new_status)

        if not await OrderRepository.claim_status(db, order.id, current, new_status):
            await db.commit()
            return False

        order.status = new_status
        order.status_history.append(
            OrderStatusHistory(status=new_status, changed_at=now or utcnow(), changed_by=actor)
        )
        await db.commit()
        logger.info(
            "order_status_changed",
            order_id=order.id,
            order_number=order.number,
            from_status=current.value,
            to_status=new_status.value,
            actor=actor,
        )
        return True
