from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from shared.clock import utcnow
from shared.config.database import Base
from .enums import OrderStatus, PaymentProvider, PaymentStatus, enum_values


def _enum(enum_cls):
    return Enum(enum_cls, native_enum=False, values_callable=enum_values, length=20)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    number = Column(String(40), unique=True, nullable=False)
    customer_id = Column(Integer, nullable=False, index=True)
    cart_session_id = Column(String(64), nullable=True, index=True)
    account_type = Column(String(20), nullable=False, default="individual")

    status = Column(_enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)

    payment_provider = Column(_enum(PaymentProvider), nullable=False)
    payment_method = Column(String(20), nullable=False, default="card")
    payment_status = Column(_enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    # Mollie payment id or Scalapay order token
    payment_remote_id = Column(String(120), nullable=True, index=True)
    payment_remote_status = Column(String(40), nullable=False, default="")
    payment_checkout_url = Column(String(500), nullable=False, default="")
    payment_profile_id = Column(String(60), nullable=False, default="")
    payment_last_checked_at = Column(DateTime, nullable=True)
    payment_paid_at = Column(DateTime, nullable=True)
    payment_captured_at = Column(DateTime, nullable=True)
    # Set while a capture call is in flight; cleared again if it fails
    payment_capture_started_at = Column(DateTime, nullable=True)

    stock_reserved_at = Column(DateTime, nullable=True)
    stock_released_at = Column(DateTime, nullable=True)

    # Monetary breakdown, integer cents
    currency = Column(String(3), nullable=False, default="EUR")
    shipping_method = Column(String(20), nullable=False, default="home")
    items_subtotal_cents = Column(Integer, nullable=False, default=0)
    client_discount_percent = Column(Integer, nullable=False, default=0)
    client_discount_cents = Column(Integer, nullable=False, default=0)
    promo_code = Column(String(30), nullable=False, default="")
    promo_discount_cents = Column(Integer, nullable=False, default=0)
    items_total_after_discount_cents = Column(Integer, nullable=False, default=0)
    shipping_cost_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False)

    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=False)

    vehicle_identifier_type = Column(String(10), nullable=False, default="")
    vehicle_plate = Column(String(20), nullable=False, default="")
    vehicle_vin = Column(String(32), nullable=False, default="")
    vehicle_consent_at = Column(DateTime, nullable=True)
    vehicle_provided_at = Column(DateTime, nullable=True)

    legal_terms_accepted_at = Column(DateTime, nullable=True)
    legal_terms_slug = Column(String(40), nullable=False, default="cgv")
    legal_terms_updated_at = Column(DateTime, nullable=True)

    # One guard per customer-facing e-mail
    order_confirmation_sent_at = Column(DateTime, nullable=True)
    consigne_start_sent_at = Column(DateTime, nullable=True)
    consigne_received_sent_at = Column(DateTime, nullable=True)
    consigne_reminder_soon_sent_at = Column(DateTime, nullable=True)
    consigne_overdue_sent_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    items = relationship(
        "OrderItem", back_populates="order", lazy="selectin",
        order_by="OrderItem.id", cascade="all, delete-orphan",
    )
    status_history = relationship(
        "OrderStatusHistory", back_populates="order", lazy="selectin",
        order_by="OrderStatusHistory.id", cascade="all, delete-orphan",
    )
    consigne_lines = relationship(
        "ConsigneLine", back_populates="order", lazy="selectin",
        order_by="ConsigneLine.id", cascade="all, delete-orphan",
    )


class OrderItem(Base):
    """Snapshot of a cart line; never re-read from the live catalog."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    name = Column(String, nullable=False)
    sku = Column(String, nullable=False, default="")
    unit_price_cents = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    line_total_cents = Column(Integer, nullable=False)
    # What stock reservation actually removed; release adds back exactly this
    reserved_qty = Column(Integer, nullable=False, default=0)

    order = relationship("Order", back_populates="items")


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(_enum(OrderStatus), nullable=False)
    changed_at = Column(DateTime, nullable=False)
    changed_by = Column(String(120), nullable=False, default="")

    order = relationship("Order", back_populates="status_history")


class ConsigneLine(Base):
    __tablename__ = "consigne_lines"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    sku = Column(String, nullable=False, default="")
    quantity = Column(Integer, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    delay_days = Column(Integer, nullable=False, default=30)
    start_at = Column(DateTime, nullable=True)
    due_at = Column(DateTime, nullable=True, index=True)
    received_at = Column(DateTime, nullable=True)

    order = relationship("Order", back_populates="consigne_lines")
