"""
Deletes promo reservations past their expiry.

    python -m services.promo_service.jobs
"""
import asyncio
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from .service import PromoService


async def purge_expired_reservations(
    session_factory: async_sessionmaker, now: Optional[datetime] = None
) -> int:
    async with session_factory() as db:
        return await PromoService.purge_expired(db, now=now)


async def _main() -> int:
    from shared.config.database import AsyncSessionLocal, engine
    from shared.observability import configure_logging

    configure_logging()
    try:
        return await purge_expired_reservations(AsyncSessionLocal)
    finally:
        await engine.dispose()


def main() -> None:
    deleted = asyncio.run(_main())
    print(f"expired promo reservations deleted: {deleted}")


if __name__ == "__main__":
    main()
