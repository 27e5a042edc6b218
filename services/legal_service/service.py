from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .repository import LegalPageRepository


@dataclass(frozen=True)
class LegalVersion:
    slug: str
    title: str
    content: str
    updated_at: Optional[datetime]


class LegalPageService:

    @staticmethod
    async def get_current_version(db: AsyncSession, slug: str) -> Optional[LegalVersion]:
        """The published page customers accept at checkout, or None when it does not exist."""
        page = await LegalPageRepository.get_published(db, (slug or "").strip().lower())
        if page is None:
            return None
        return LegalVersion(
            slug=page.slug, title=page.title, content=page.content or "", updated_at=page.updated_at
        )
