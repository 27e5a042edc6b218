"""
Deposit reminder sweep.

Run periodically (cron / scheduler):

    python -m services.consigne_service.jobs

Overlapping runs are safe: a guard is only stamped by a conditional update
that still finds it unset, and only after the e-mail was accepted.
"""
import asyncio
import json
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from services.customer_service.repository import CustomerRepository
from services.notification_service.gateway import NotificationGateway
from services.notification_service.service import NotificationService
from services.order_service.enums import NotificationKind
from services.order_service.repository import OrderRepository
from shared.clock import utcnow

logger = structlog.get_logger(__name__)


def _empty_bucket(candidates: int) -> dict:
    return {"candidates": candidates, "sent": 0, "skipped": 0, "errors": 0}


async def _notify_all(session_factory, gateway, orders, kind, bucket, dry_run, now) -> None:
    for order in orders:
        async with session_factory() as db:
            try:
                customer = await CustomerRepository.get_by_id(db, order.customer_id)
                if customer is None or not customer.email:
                    bucket["skipped"] += 1
                    continue

                if dry_run:
                    bucket["sent"] += 1
                    continue

                current = await OrderRepository.get_order(db, order.id)
                sent = await NotificationService.send_once(db, gateway, current, kind, customer=customer, now=now)
                if sent:
                    bucket["sent"] += 1
                else:
                    bucket["errors"] += 1
            except Exception:
                bucket["errors"] += 1
                logger.exception("consigne_reminder_failed", kind=kind.value, order_id=order.id)


async def run_sweep(
    session_factory: async_sessionmaker,
    gateway: NotificationGateway,
    now: Optional[datetime] = None,
    reminder_days: int = 7,
    dry_run: bool = False,
    limit: int = 200,
) -> dict:
    now = now or utcnow()
    soon_limit = now + timedelta(days=reminder_days)

    async with session_factory() as db:
        soon_orders = await OrderRepository.find_consigne_due_soon(db, now, soon_limit, limit)
        overdue_orders = await OrderRepository.find_consigne_overdue(db, now, limit)

    report = {
        "now": now.isoformat(),
        "soon": _empty_bucket(len(soon_orders)),
        "overdue": _empty_bucket(len(overdue_orders)),
    }

    await _notify_all(
        session_factory, gateway, soon_orders,
        NotificationKind.CONSIGNE_REMINDER_SOON, report["soon"], dry_run, now,
    )
    await _notify_all(
        session_factory, gateway, overdue_orders,
        NotificationKind.CONSIGNE_OVERDUE, report["overdue"], dry_run, now,
    )

    logger.info("consigne_sweep_finished", dry_run=dry_run, **report)
    return report


async def _main() -> dict:
    from services.notification_service.gateway import MailerSendGateway
    from shared.config.database import AsyncSessionLocal, engine
    from shared.config.settings import get_settings
    from shared.observability import configure_logging

    configure_logging()
    settings = get_settings()
    try:
        return await run_sweep(
            AsyncSessionLocal,
            MailerSendGateway(settings),
            reminder_days=settings.consigne_reminder_days,
            dry_run=settings.dry_run,
            limit=settings.consigne_sweep_limit,
        )
    finally:
        await engine.dispose()


def main() -> None:
    report = asyncio.run(_main())
    print(json.dumps(report, indent=2))


if __name__ == "__main__":
    main()
