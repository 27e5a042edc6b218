from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification_service.gateway import NotificationGateway
from services.notification_service.service import NotificationService
from services.order_service.enums import NotificationKind
from services.order_service.models import Order
from shared.clock import utcnow

logger = structlog.get_logger(__name__)


def start_deposit_clock(order: Order, now: datetime) -> int:
    """Sets start_at/due_at on lines that have not started yet. Returns how many started."""
    started = 0
    for line in order.consigne_lines:
        if line.received_at is not None or line.start_at is not None:
            continue
        line.start_at = now
        line.due_at = now + timedelta(days=max(0, line.delay_days or 0))
        started += 1
    return started


def open_lines(order: Order) -> list:
    return [line for line in order.consigne_lines if line.received_at is None]


class ConsigneService:

    @staticmethod
    async def on_delivered(
        db: AsyncSession,
        gateway: NotificationGateway,
        order: Order,
        now: Optional[datetime] = None,
    ) -> bool:
        """Starts the return deadline of every deposit line and sends the start e-mail once."""
        if not order.consigne_lines:
            return False

        now = now or utcnow()
        started = start_deposit_clock(order, now)
        await db.commit()
        logger.info("consigne_clock_started", order_id=order.id, lines=started)

        if not open_lines(order):
            return False
        return await NotificationService.send_once(
            db, gateway, order, NotificationKind.CONSIGNE_START, now=now
        )

    @staticmethod
    async def mark_received(
        db: AsyncSession,
        gateway: NotificationGateway,
        order: Order,
        now: Optional[datetime] = None,
    ) -> int:
        """Registers the physical return of every open line; returns how many were marked."""
        now = now or utcnow()
        pending = open_lines(order)
        for line in pending:
            line.received_at = now
        await db.commit()

        if pending:
            logger.info("consigne_received", order_id=order.id, lines=len(pending))

        if order.consigne_lines and not open_lines(order):
            await NotificationService.send_once(
                db, gateway, order, NotificationKind.CONSIGNE_RECEIVED, now=now
            )
        return len(pending)
