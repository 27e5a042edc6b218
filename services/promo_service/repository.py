from datetime import datetime
from typing import Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import PromoCode, PromoRedemption, RedemptionState


class PromoRepository:

    @staticmethod
    async def create_promo(db: AsyncSession, promo: PromoCode) -> PromoCode:
        db.add(promo)
        await db.commit()
        await db.refresh(promo)
        return promo

    @staticmethod
    async def get_by_code(db: AsyncSession, code: str) -> Optional[PromoCode]:
        result = await db.execute(select(PromoCode).where(PromoCode.code == code))
        return result.scalars().first()

    @staticmethod
    async def lock_for_reservation(db: AsyncSession, promo_id: int, now: datetime) -> Optional[PromoCode]:
        """Holds the promo row (a database write lock on SQLite) until the caller commits."""
        await db.execute(
            update(PromoCode).where(PromoCode.id == promo_id).values(last_reserved_at=now)
        )
        result = await db.execute(
            select(PromoCode)
            .where(PromoCode.id == promo_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def count_active_usages(
        db: AsyncSession, promo_id: int, now: datetime, customer_id: Optional[int] = None
    ) -> int:
        """Redeemed rows plus reservations that have not expired yet."""
        stmt = select(func.count(PromoRedemption.id)).where(
            PromoRedemption.promo_code_id == promo_id,
            or_(
                PromoRedemption.state == RedemptionState.REDEEMED,
                and_(
                    PromoRedemption.state == RedemptionState.RESERVED,
                    PromoRedemption.expires_at > now,
                ),
            ),
        )
        if customer_id is not None:
            stmt = stmt.where(PromoRedemption.customer_id == customer_id)
        result = await db.execute(stmt)
        return result.scalar_one()

    @staticmethod
    async def list_for_order(db: AsyncSession, order_id: int) -> list[PromoRedemption]:
        result = await db.execute(
            select(PromoRedemption)
            .where(PromoRedemption.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def mark_redeemed(db: AsyncSession, order_id: int, now: datetime) -> int:
        result = await db.execute(
            update(PromoRedemption)
            .where(
                PromoRedemption.order_id == order_id,
                PromoRedemption.state == RedemptionState.RESERVED,
            )
            .values(state=RedemptionState.REDEEMED, redeemed_at=now, expires_at=None)
        )
        return result.rowcount

    @staticmethod
    async def delete_reserved(db: AsyncSession, order_id: int) -> int:
        result = await db.execute(
            delete(PromoRedemption).where(
                PromoRedemption.order_id == order_id,
                PromoRedemption.state == RedemptionState.RESERVED,
            )
        )
        return result.rowcount

    @staticmethod
    async def delete_expired(db: AsyncSession, now: datetime) -> int:
        result = await db.execute(
            delete(PromoRedemption).where(
                PromoRedemption.state == RedemptionState.RESERVED,
                PromoRedemption.expires_at <= now,
            )
        )
        return result.rowcount
