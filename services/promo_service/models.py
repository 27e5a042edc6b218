import enum

from sqlalchemy import (
    Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint,
)

from shared.clock import utcnow
from shared.config.database import Base
from services.order_service.enums import enum_values
from services.order_service.pricing import PromoTerms


class DiscountType(str, enum.Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class RedemptionState(str, enum.Enum):
    RESERVED = "reserved"
    REDEEMED = "redeemed"


class PromoCode(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(30), unique=True, nullable=False, index=True)
    label = Column(String, nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)
    discount_type = Column(
        Enum(DiscountType, native_enum=False, values_callable=enum_values, length=10),
        nullable=False,
        default=DiscountType.PERCENT,
    )
    # Percent points (0-90) for "percent", cents for "fixed"
    value = Column(Integer, nullable=False, default=0)
    min_subtotal_cents = Column(Integer, nullable=False, default=0)
    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    max_total_uses = Column(Integer, nullable=True)
    max_uses_per_user = Column(Integer, nullable=True)
    last_reserved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def as_terms(self) -> PromoTerms:
        return PromoTerms(code=self.code, discount_type=self.discount_type.value, value=self.value)


class PromoRedemption(Base):
    """Reservation ledger: one row per (promo code, order)."""
    __tablename__ = "promo_redemptions"
    __table_args__ = (
        UniqueConstraint("promo_code_id", "order_id", name="uq_promo_redemption_promo_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    promo_code_id = Column(Integer, ForeignKey("promo_codes.id"), nullable=False, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    order_id = Column(Integer, nullable=False, index=True)
    state = Column(
        Enum(RedemptionState, native_enum=False, values_callable=enum_values, length=10),
        nullable=False,
        default=RedemptionState.RESERVED,
    )
    # Only meaningful while reserved; swept by purge_expired()
    expires_at = Column(DateTime, nullable=True, index=True)
    redeemed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
