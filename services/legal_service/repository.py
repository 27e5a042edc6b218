from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import LegalPage


class LegalPageRepository:

    @staticmethod
    async def get_published(db: AsyncSession, slug: str) -> Optional[LegalPage]:
        result = await db.execute(
            select(LegalPage).where(LegalPage.slug == slug, LegalPage.is_published.is_(True))
        )
        return result.scalars().first()
