from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.product_service.service import StockService
from services.promo_service.service import PromoService
from shared.clock import utcnow
from shared.observability import carparts_order_rollback_total
from .enums import OrderStatus, PaymentStatus
from .models import Order
from .repository import OrderRepository
from .service import OrderService, can_transition

logger = structlog.get_logger(__name__)


async def rollback_order(
    db: AsyncSession,
    order: Order,
    reason: str,
    actor: str = "system",
    now: Optional[datetime] = None,
) -> Order:
    """
    The single compensation path for an order that will not be paid.

    Marks a still-pending payment failed, moves the order to cancelled when
    the state machine allows it, gives back the stock it removed and deletes
    its promo reservations. Every step is guarded, so running it twice is
    harmless.
    """
    now = now or utcnow()
    order_id = order.id

    if order.payment_status == PaymentStatus.PENDING:
        await OrderRepository.claim_payment_status(db, order_id, PaymentStatus.FAILED)
        await db.commit()

    if can_transition(OrderStatus(order.status), OrderStatus.CANCELLED):
        await OrderService.transition(db, order, OrderStatus.CANCELLED, actor, now=now)

    await StockService.release(db, order, now=now)
    released = await PromoService.release(db, order_id)

    carparts_order_rollback_total.labels(reason=reason).inc()
    logger.warning(
        "order_rolled_back",
        order_id=order_id,
        order_number=order.number,
        reason=reason,
        actor=actor,
        promo_reservations_released=released,
    )
    return order
