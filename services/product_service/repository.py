from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from .models import Product, ShippingClass


class ProductRepository:

    @staticmethod
    async def get_products_by_ids(db: AsyncSession, product_ids: Iterable[int]) -> dict[int, Product]:
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        result = await db.execute(select(Product).where(Product.id.in_(ids)))
        return {p.id: p for p in result.scalars().all()}

    @staticmethod
    async def get_product_for_update(db: AsyncSession, product_id: int):
        result = await db.execute(
            select(Product).where(Product.id == product_id).with_for_update()
        )
        return result.scalars().first()


class ShippingClassRepository:

    @staticmethod
    async def get_default(db: AsyncSession):
        result = await db.execute(select(ShippingClass).where(ShippingClass.is_default.is_(True)))
        return result.scalars().first()

    @staticmethod
    async def get_by_ids(db: AsyncSession, class_ids: Iterable[int]) -> dict[int, ShippingClass]:
        ids = sorted(set(class_ids))
        if not ids:
            return {}
        result = await db.execute(select(ShippingClass).where(ShippingClass.id.in_(ids)))
        return {c.id: c for c in result.scalars().all()}
