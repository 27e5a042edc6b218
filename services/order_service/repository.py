from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.clock import utcnow
from .enums import NotificationKind, OrderStatus, PaymentStatus
from .models import ConsigneLine, Order

NOTIFICATION_GUARDS = {
    NotificationKind.ORDER_CONFIRMATION: Order.order_confirmation_sent_at,
    NotificationKind.CONSIGNE_START: Order.consigne_start_sent_at,
    NotificationKind.CONSIGNE_RECEIVED: Order.consigne_received_sent_at,
    NotificationKind.CONSIGNE_REMINDER_SOON: Order.consigne_reminder_soon_sent_at,
    NotificationKind.CONSIGNE_OVERDUE: Order.consigne_overdue_sent_at,
}


class OrderRepository:
    """
    Conditional updates ("claim_*", "stamp_*") only touch a row when its guard
    still holds and report whether they did; the caller commits.
    """

    @staticmethod
    async def create_order(db: AsyncSession, order: Order) -> Order:
        db.add(order)
        await db.commit()
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int, fresh: bool = False) -> Optional[Order]:
        stmt = select(Order).where(Order.id == order_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def get_by_remote_id(db: AsyncSession, remote_id: str) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.payment_remote_id == remote_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_latest_for_cart(
        db: AsyncSession, customer_id: int, cart_session_id: str
    ) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.customer_id == customer_id, Order.cart_session_id == cart_session_id)
            .order_by(Order.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def update_fields(db: AsyncSession, order_id: int, **values) -> None:
        await db.execute(update(Order).where(Order.id == order_id).values(updated_at=utcnow(), **values))

    @staticmethod
    async def claim_payment_status(
        db: AsyncSession, order_id: int, new_status: PaymentStatus, **values
    ) -> bool:
        """Moves payment_status out of 'pending'; only one caller can win."""
        result = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_status == PaymentStatus.PENDING)
            .values(payment_status=new_status, updated_at=utcnow(), **values)
        )
        return result.rowcount == 1

    @staticmethod
    async def claim_capture(
        db: AsyncSession, order_id: int, now: datetime, stale_before: datetime
    ) -> bool:
        """Latch taken before calling the provider's capture; a latch older than stale_before is taken over."""
        result = await db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.payment_status == PaymentStatus.PENDING,
                Order.payment_captured_at.is_(None),
                or_(
                    Order.payment_capture_started_at.is_(None),
                    Order.payment_capture_started_at < stale_before,
                ),
            )
            .values(payment_capture_started_at=now, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    @staticmethod
    async def release_capture(db: AsyncSession, order_id: int) -> None:
        await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_captured_at.is_(None))
            .values(payment_capture_started_at=None, updated_at=utcnow())
        )

    @staticmethod
    async def claim_status(
        db: AsyncSession, order_id: int, from_status: OrderStatus, to_status: OrderStatus
    ) -> bool:
        result = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == from_status)
            .values(status=to_status, updated_at=utcnow())
        )
        return result.rowcount == 1

    @staticmethod
    async def claim_stock_reservation(db: AsyncSession, order_id: int, now: datetime) -> bool:
        result = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.stock_reserved_at.is_(None))
            .values(stock_reserved_at=now, updated_at=now)
        )
        return result.rowcount == 1

    @staticmethod
    async def claim_stock_release(db: AsyncSession, order_id: int, now: datetime) -> bool:
        result = await db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.stock_reserved_at.is_not(None),
                Order.stock_released_at.is_(None),
            )
            .values(stock_released_at=now, updated_at=now)
        )
        return result.rowcount == 1

    @staticmethod
    async def stamp_notification(
        db: AsyncSession, order_id: int, kind: NotificationKind, now: datetime
    ) -> bool:
        guard = NOTIFICATION_GUARDS[kind]
        result = await db.execute(
            update(Order)
            .where(Order.id == order_id, guard.is_(None))
            .values({guard.key: now, "updated_at": now})
        )
        return result.rowcount == 1

    @staticmethod
    async def find_consigne_due_soon(
        db: AsyncSession, now: datetime, soon_limit: datetime, limit: int
    ) -> Sequence[Order]:
        open_line_due_soon = Order.consigne_lines.any(
            and_(
                ConsigneLine.received_at.is_(None),
                ConsigneLine.due_at >= now,
                ConsigneLine.due_at <= soon_limit,
            )
        )
        result = await db.execute(
            select(Order)
            .where(Order.consigne_reminder_soon_sent_at.is_(None), open_line_due_soon)
            .order_by(Order.id)
            .limit(limit)
        )
        return result.scalars().all()

    @staticmethod
    async def find_consigne_overdue(db: AsyncSession, now: datetime, limit: int) -> Sequence[Order]:
        open_line_overdue = Order.consigne_lines.any(
            and_(ConsigneLine.received_at.is_(None), ConsigneLine.due_at < now)
        )
        result = await db.execute(
            select(Order)
            .where(Order.consigne_overdue_sent_at.is_(None), open_line_overdue)
            .order_by(Order.id)
            .limit(limit)
        )
        return result.scalars().all()
