from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.customer_service.repository import CustomerRepository
from services.order_service.enums import NotificationKind
from services.order_service.repository import NOTIFICATION_GUARDS, OrderRepository
from shared.clock import utcnow
from shared.observability import carparts_notification_total
from .gateway import NotificationGateway

logger = structlog.get_logger(__name__)


def already_sent(order, kind: NotificationKind) -> bool:
    return getattr(order, NOTIFICATION_GUARDS[kind].key) is not None


class NotificationService:

    @staticmethod
    async def send_once(
        db: AsyncSession,
        gateway: NotificationGateway,
        order,
        kind: NotificationKind,
        customer=None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Sends one notification of this kind for the order at most once.

        The guard is stamped with a conditional update after the gateway
        accepted the message; a failed send leaves it unset so a later run
        retries. Returns True when this call stamped the guard.
        """
        if already_sent(order, kind):
            carparts_notification_total.labels(kind=kind.value, outcome="skipped").inc()
            return False

        if customer is None:
            customer = await CustomerRepository.get_by_id(db, order.customer_id)
        if customer is None or not customer.email:
            carparts_notification_total.labels(kind=kind.value, outcome="skipped").inc()
            logger.warning("notification_skipped_no_recipient", kind=kind.value, order_id=order.id)
            return False

        result = await gateway.send(kind, order, customer)
        if not result.ok:
            carparts_notification_total.labels(kind=kind.value, outcome="failed").inc()
            logger.warning("notification_failed", kind=kind.value, order_id=order.id, reason=result.reason)
            return False

        now = now or utcnow()
        stamped = await OrderRepository.stamp_notification(db, order.id, kind, now)
        await db.commit()
        if stamped:
            setattr(order, NOTIFICATION_GUARDS[kind].key, now)
        carparts_notification_total.labels(kind=kind.value, outcome="sent").inc()
        logger.info("notification_sent", kind=kind.value, order_id=order.id, stamped=stamped)
        return stamped
