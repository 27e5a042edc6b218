from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.clock import utcnow
from services.order_service.models import Order
from services.order_service.repository import OrderRepository
from .models import Product
from .repository import ProductRepository, ShippingClassRepository

logger = structlog.get_logger(__name__)

# Home delivery price when the catalog has no shipping class at all
FALLBACK_HOME_DELIVERY_CENTS = 1290


def _in_lock_order(items):
    return sorted(items, key=lambda item: (item.product_id, item.id))


class StockService:
    """
    The only place checkout mutates product stock.

    reserve() sets stock to max(0, stock - qty) and records on each order line
    how much it actually removed; release() adds exactly that back. Both are
    single-fire latches on the order's stock_reserved_at / stock_released_at.
    Product rows are always locked in product id order.
    """

    @staticmethod
    async def reserve(db: AsyncSession, order: Order, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        if not await OrderRepository.claim_stock_reservation(db, order.id, now):
            await db.commit()
            return False

        for item in _in_lock_order(order.items):
            product = await ProductRepository.get_product_for_update(db, item.product_id)
            if product is None or not product.tracks_stock:
                continue

            new_qty = max(0, product.stock_qty - item.quantity)
            item.reserved_qty = product.stock_qty - new_qty
            product.stock_qty = new_qty
            product.in_stock = new_qty > 0

        await db.commit()
        logger.info("stock_reserved", order_id=order.id, order_number=order.number)
        return True

    @staticmethod
    async def release(db: AsyncSession, order: Order, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        if not await OrderRepository.claim_stock_release(db, order.id, now):
            await db.commit()
            return False

        for item in _in_lock_order(order.items):
            if not item.reserved_qty:
                continue
            product = await ProductRepository.get_product_for_update(db, item.product_id)
            if product is None or not product.tracks_stock:
                continue

            product.stock_qty += item.reserved_qty
            product.in_stock = product.stock_qty > 0

        await db.commit()
        logger.info("stock_released", order_id=order.id, order_number=order.number)
        return True


@dataclass(frozen=True)
class ShippingMethod:
    id: str
    title: str
    price_cents: int


class ShippingService:

    @staticmethod
    async def home_delivery_price_cents(db: AsyncSession, products: Iterable[Product]) -> int:
        products = [p for p in products if p is not None]
        if not products:
            return 0

        default_class = await ShippingClassRepository.get_default(db)
        classes = await ShippingClassRepository.get_by_ids(
            db, [p.shipping_class_id for p in products if p.shipping_class_id]
        )
        if default_class is None and not classes:
            return FALLBACK_HOME_DELIVERY_CENTS

        price = 0
        for product in products:
            cls = classes.get(product.shipping_class_id) if product.shipping_class_id else default_class
            if cls is None:
                continue
            price = max(price, cls.home_delivery_price_cents or 0)
        return price

    @staticmethod
    async def shipping_methods(db: AsyncSession, products: Iterable[Product]) -> list[ShippingMethod]:
        home = await ShippingService.home_delivery_price_cents(db, products)
        return [
            ShippingMethod(id="home", title="Home delivery", price_cents=home),
            ShippingMethod(id="pickup", title="Store pickup", price_cents=0),
        ]
