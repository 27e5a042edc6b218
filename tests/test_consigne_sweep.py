from datetime import datetime, timedelta

from services.consigne_service.jobs import run_sweep
from services.order_service.enums import NotificationKind, OrderStatus, PaymentStatus
from services.order_service.repository import OrderRepository

NOW = datetime(2026, 6, 10, 8, 0)


def deposit(product_id, due_at, received_at=None):
    return dict(
        product_id=product_id,
        name="Alternator",
        quantity=1,
        amount_cents=5000,
        delay_days=30,
        start_at=due_at - timedelta(days=30),
        due_at=due_at,
        received_at=received_at,
    )


async def delivered_order(order_factory, seed, *lines):
    return await order_factory(
        [(seed.alternator_id, 1)],
        consigne=lines,
        status=OrderStatus.DELIVERED,
        payment_status=PaymentStatus.PAID,
    )


async def test_overdue_deposit_gets_one_reminder(session_factory, db, seed, order_factory, gateway):
    order_id = await delivered_order(order_factory, seed, deposit(seed.alternator_id, NOW - timedelta(days=10)))

    report = await run_sweep(session_factory, gateway, now=NOW, reminder_days=7)

    assert report["overdue"] == {"candidates": 1, "sent": 1, "skipped": 0, "errors": 0}
    assert report["soon"]["candidates"] == 0
    assert gateway.sent == [(NotificationKind.CONSIGNE_OVERDUE, order_id, "jean.dupont@example.com")]

    order = await OrderRepository.get_order(db, order_id, fresh=True)
    assert order.consigne_overdue_sent_at == NOW
    assert order.consigne_reminder_soon_sent_at is None

    again = await run_sweep(session_factory, gateway, now=NOW + timedelta(days=1), reminder_days=7)
    assert again["overdue"]["candidates"] == 0
    assert len(gateway.sent) == 1


async def test_deposit_due_within_window_gets_soon_reminder(session_factory, seed, order_factory, gateway):
    order_id = await delivered_order(order_factory, seed, deposit(seed.alternator_id, NOW + timedelta(days=3)))
    await delivered_order(order_factory, seed, deposit(seed.alternator_id, NOW + timedelta(days=20)))

    report = await run_sweep(session_factory, gateway, now=NOW, reminder_days=7)

    assert report["soon"] == {"candidates": 1, "sent": 1, "skipped": 0, "errors": 0}
    assert report["overdue"]["candidates"] == 0
    assert gateway.sent == [(NotificationKind.CONSIGNE_REMINDER_SOON, order_id, "jean.dupont@example.com")]


async def test_soon_and_overdue_are_independent(session_factory, seed, order_factory, gateway):
    order_id = await delivered_order(order_factory, seed, deposit(seed.alternator_id, NOW + timedelta(days=2)))

    await run_sweep(session_factory, gateway, now=NOW, reminder_days=7)
    await run_sweep(session_factory, gateway, now=NOW + timedelta(days=5), reminder_days=7)

    assert gateway.sent == [
        (NotificationKind.CONSIGNE_REMINDER_SOON, order_id, "jean.dupont@example.com"),
        (NotificationKind.CONSIGNE_OVERDUE, order_id, "jean.dupont@example.com"),
    ]


async def test_received_deposits_are_not_reminded(session_factory, seed, order_factory, gateway):
    await delivered_order(
        order_factory, seed,
        deposit(seed.alternator_id, NOW - timedelta(days=10), received_at=NOW - timedelta(days=12)),
    )

    report = await run_sweep(session_factory, gateway, now=NOW)

    assert report["overdue"]["candidates"] == 0
    assert report["soon"]["candidates"] == 0
    assert gateway.sent == []


async def test_dry_run_sends_and_stamps_nothing(session_factory, db, seed, order_factory, gateway):
    order_id = await delivered_order(order_factory, seed, deposit(seed.alternator_id, NOW - timedelta(days=1)))

    report = await run_sweep(session_factory, gateway, now=NOW, dry_run=True)

    assert report["overdue"]["sent"] == 1
    assert gateway.sent == []
    order = await OrderRepository.get_order(db, order_id, fresh=True)
    assert order.consigne_overdue_sent_at is None


async def test_gateway_failure_leaves_guard_unset(session_factory, db, seed, order_factory, gateway):
    order_id = await delivered_order(order_factory, seed, deposit(seed.alternator_id, NOW - timedelta(days=1)))
    gateway.ok = False

    report = await run_sweep(session_factory, gateway, now=NOW)

    assert report["overdue"] == {"candidates": 1, "sent": 0, "skipped": 0, "errors": 1}
    order = await OrderRepository.get_order(db, order_id, fresh=True)
    assert order.consigne_overdue_sent_at is None

    gateway.ok = True
    retry = await run_sweep(session_factory, gateway, now=NOW)
    assert retry["overdue"]["sent"] == 1


async def test_sweep_respects_limit(session_factory, seed, order_factory, gateway):
    for _ in range(3):
        await delivered_order(order_factory, seed, deposit(seed.alternator_id, NOW - timedelta(days=2)))

    report = await run_sweep(session_factory, gateway, now=NOW, limit=2)

    assert report["overdue"]["candidates"] == 2
    assert report["now"] == NOW.isoformat()
