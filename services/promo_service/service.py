import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.clock import utcnow
from shared.observability import carparts_promo_reservation_total
from .models import PromoCode, PromoRedemption, RedemptionState
from .repository import PromoRepository

logger = structlog.get_logger(__name__)

CODE_PATTERN = re.compile(r"^[A-Z0-9_-]{3,30}$")
DEFAULT_RESERVATION_TTL = timedelta(minutes=120)


@dataclass(frozen=True)
class PromoEvaluation:
    ok: bool
    code: str
    promo: Optional[PromoCode] = None
    reason: str = ""


@dataclass(frozen=True)
class PromoReservation:
    ok: bool
    reason: str = ""
    redemption: Optional[PromoRedemption] = None


def normalize_code(value) -> str:
    if not isinstance(value, str):
        return ""
    return re.sub(r"\s+", "", value).upper()


def is_valid_code(code: str) -> bool:
    return bool(code) and CODE_PATTERN.match(code) is not None


def is_within_period(promo: PromoCode, now: datetime) -> bool:
    if promo.starts_at is not None and now < promo.starts_at:
        return False
    if promo.ends_at is not None and now > promo.ends_at:
        return False
    return True


def _format_euros(cents: int) -> str:
    return f"{cents / 100:.2f} €"


class PromoService:
    """
    Two-phase promo usage: reserve when the order is created, redeem once the
    payment is confirmed, release when the order is rolled back.

    Caps are always checked against the active usage count (redeemed rows plus
    unexpired reservations), once in evaluate() for the customer-facing
    message and again under a row lock in reserve().
    """

    @staticmethod
    async def _cap_reason(
        db: AsyncSession, promo: PromoCode, customer_id: Optional[int], now: datetime
    ) -> str:
        if promo.max_total_uses:
            used = await PromoRepository.count_active_usages(db, promo.id, now)
            if used >= promo.max_total_uses:
                return "This promo code has reached its usage limit."

        if promo.max_uses_per_user and customer_id is not None:
            used = await PromoRepository.count_active_usages(db, promo.id, now, customer_id=customer_id)
            if used >= promo.max_uses_per_user:
                return "This promo code has already been used on this account."
        return ""

    @staticmethod
    async def evaluate(
        db: AsyncSession,
        code,
        customer_id: Optional[int],
        items_subtotal_cents: int,
        now: Optional[datetime] = None,
    ) -> PromoEvaluation:
        now = now or utcnow()
        normalized = normalize_code(code)
        if not is_valid_code(normalized):
            return PromoEvaluation(ok=False, code=normalized, reason="Invalid code.")

        promo = await PromoRepository.get_by_code(db, normalized)
        if promo is None:
            return PromoEvaluation(ok=False, code=normalized, reason="Promo code not found.")

        if not promo.is_active:
            return PromoEvaluation(ok=False, code=normalized, reason="This promo code is inactive.")

        if not is_within_period(promo, now):
            return PromoEvaluation(ok=False, code=normalized, reason="This promo code is not valid at this date.")

        minimum = promo.min_subtotal_cents or 0
        if minimum > 0 and (items_subtotal_cents or 0) < minimum:
            return PromoEvaluation(
                ok=False,
                code=normalized,
                reason=f"Minimum order amount required: {_format_euros(minimum)}",
            )

        reason = await PromoService._cap_reason(db, promo, customer_id, now)
        if reason:
            return PromoEvaluation(ok=False, code=normalized, reason=reason)

        return PromoEvaluation(ok=True, code=normalized, promo=promo)

    @staticmethod
    async def reserve(
        db: AsyncSession,
        promo_id: int,
        customer_id: int,
        order_id: int,
        ttl: timedelta = DEFAULT_RESERVATION_TTL,
        now: Optional[datetime] = None,
    ) -> PromoReservation:
        now = now or utcnow()

        promo = await PromoRepository.lock_for_reservation(db, promo_id, now)
        if promo is None or not promo.is_active or not is_within_period(promo, now):
            await db.commit()
            carparts_promo_reservation_total.labels(outcome="inactive").inc()
            return PromoReservation(ok=False, reason="This promo code is no longer available.")

        reason = await PromoService._cap_reason(db, promo, customer_id, now)
        if reason:
            await db.commit()
            carparts_promo_reservation_total.labels(outcome="cap_reached").inc()
            logger.info("promo_reservation_rejected", promo_code=promo.code, order_id=order_id, reason=reason)
            return PromoReservation(ok=False, reason=reason)

        redemption = PromoRedemption(
            promo_code_id=promo_id,
            customer_id=customer_id,
            order_id=order_id,
            state=RedemptionState.RESERVED,
            expires_at=now + ttl,
        )
        db.add(redemption)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            carparts_promo_reservation_total.labels(outcome="duplicate").inc()
            logger.info("promo_reservation_duplicate", promo_id=promo_id, order_id=order_id)
            return PromoReservation(ok=False, reason="This promo code is already reserved for this order.")

        carparts_promo_reservation_total.labels(outcome="reserved").inc()
        logger.info("promo_reserved", promo_code=promo.code, order_id=order_id, expires_at=redemption.expires_at.isoformat())
        return PromoReservation(ok=True, redemption=redemption)

    @staticmethod
    async def redeem(db: AsyncSession, order_id: int, now: Optional[datetime] = None) -> int:
        count = await PromoRepository.mark_redeemed(db, order_id, now or utcnow())
        await db.commit()
        if count:
            logger.info("promo_redeemed", order_id=order_id, redemptions=count)
        return count

    @staticmethod
    async def release(db: AsyncSession, order_id: int) -> int:
        count = await PromoRepository.delete_reserved(db, order_id)
        await db.commit()
        if count:
            logger.info("promo_released", order_id=order_id, redemptions=count)
        return count

    @staticmethod
    async def purge_expired(db: AsyncSession, now: Optional[datetime] = None) -> int:
        """Deletes reservations past their expires_at (the store-level TTL)."""
        count = await PromoRepository.delete_expired(db, now or utcnow())
        await db.commit()
        logger.info("promo_reservations_purged", deleted=count)
        return count
