import re
from datetime import datetime, timedelta

import pytest

from services.order_service.admin import OrderAdminService
from services.order_service.enums import NotificationKind, OrderStatus, PaymentStatus
from services.order_service.repository import OrderRepository
from services.order_service.rollback import rollback_order
from services.order_service.service import (
    InvalidTransitionError,
    OrderService,
    can_transition,
    generate_order_number,
)
from services.product_service.models import Product
from services.product_service.service import StockService

NOW = datetime(2026, 5, 4, 9, 30)

ALTERNATOR_DEPOSIT = dict(name="Alternator", sku="ALT-220", quantity=1, amount_cents=5000, delay_days=30)


async def load(db, order_id):
    return await OrderRepository.get_order(db, order_id, fresh=True)


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (OrderStatus.PENDING, OrderStatus.CONFIRMED, True),
        (OrderStatus.PENDING, OrderStatus.CANCELLED, True),
        (OrderStatus.PENDING, OrderStatus.SHIPPED, False),
        (OrderStatus.CONFIRMED, OrderStatus.SHIPPED, True),
        (OrderStatus.CONFIRMED, OrderStatus.CANCELLED, True),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED, True),
        (OrderStatus.SHIPPED, OrderStatus.CANCELLED, False),
        (OrderStatus.DELIVERED, OrderStatus.CANCELLED, False),
        (OrderStatus.CANCELLED, OrderStatus.PENDING, False),
    ],
)
def test_allowed_transitions(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_order_number_format():
    assert re.fullmatch(r"CP-1700000000123-\d{3}", generate_order_number(1700000000123))
    assert generate_order_number().startswith("CP-")


async def test_transition_appends_history(db, seed, order_factory):
    order_id = await order_factory([(seed.brake_pads_id, 1)], status=OrderStatus.CONFIRMED)
    order = await load(db, order_id)

    assert await OrderService.transition(db, order, OrderStatus.SHIPPED, "warehouse", now=NOW)

    order = await load(db, order_id)
    assert order.status == OrderStatus.SHIPPED
    assert [(h.status, h.changed_by) for h in order.status_history][-1] == (OrderStatus.SHIPPED, "warehouse")
    assert order.status_history[-1].changed_at == NOW


async def test_forbidden_transition_raises(db, seed, order_factory):
    order_id = await order_factory([(seed.brake_pads_id, 1)], status=OrderStatus.DELIVERED)
    order = await load(db, order_id)

    with pytest.raises(InvalidTransitionError) as excinfo:
        await OrderService.transition(db, order, OrderStatus.CANCELLED, "admin")

    assert excinfo.value.current == OrderStatus.DELIVERED
    assert str(excinfo.value) == "Cannot move order from 'delivered' to 'cancelled'"
    assert len((await load(db, order_id)).status_history) == 1


async def test_concurrent_transition_writes_history_once(session_factory, db, seed, order_factory):
    order_id = await order_factory([(seed.brake_pads_id, 1)], status=OrderStatus.CONFIRMED)

    async with session_factory() as first_db, session_factory() as second_db:
        first = await load(first_db, order_id)
        second = await load(second_db, order_id)

        assert await OrderService.transition(first_db, first, OrderStatus.SHIPPED, "warehouse") is True
        assert await OrderService.transition(second_db, second, OrderStatus.SHIPPED, "warehouse") is False

    order = await load(db, order_id)
    assert [h.status for h in order.status_history] == [OrderStatus.CONFIRMED, OrderStatus.SHIPPED]


async def test_admin_cancel_of_pending_order_releases_everything(db, seed, order_factory, gateway):
    order_id = await order_factory([(seed.brake_pads_id, 2)])
    order = await load(db, order_id)
    await StockService.reserve(db, order)

    order = await OrderAdminService.update_status(db, gateway, order, OrderStatus.CANCELLED, "admin:alice")

    order = await load(db, order_id)
    assert order.status == OrderStatus.CANCELLED
    assert order.payment_status == PaymentStatus.FAILED
    assert order.status_history[-1].changed_by == "admin:alice"
    assert (await db.get(Product, seed.brake_pads_id, populate_existing=True)).stock_qty == 5


async def test_admin_cannot_skip_states(db, seed, order_factory, gateway):
    order_id = await order_factory([(seed.brake_pads_id, 1)])
    order = await load(db, order_id)

    with pytest.raises(InvalidTransitionError):
        await OrderAdminService.update_status(db, gateway, order, OrderStatus.DELIVERED, "admin")


async def test_rollback_twice_is_harmless(db, seed, order_factory):
    order_id = await order_factory([(seed.brake_pads_id, 1)])
    order = await load(db, order_id)
    await StockService.reserve(db, order)

    await rollback_order(db, order, reason="test")
    await rollback_order(db, await load(db, order_id), reason="test")

    order = await load(db, order_id)
    assert [h.status for h in order.status_history] == [OrderStatus.PENDING, OrderStatus.CANCELLED]
    assert (await db.get(Product, seed.brake_pads_id, populate_existing=True)).stock_qty == 5


async def test_delivery_starts_deposit_clock(db, seed, order_factory, gateway):
    order_id = await order_factory(
        [(seed.alternator_id, 1)],
        consigne=[dict(product_id=seed.alternator_id, **ALTERNATOR_DEPOSIT)],
        status=OrderStatus.SHIPPED,
        payment_status=PaymentStatus.PAID,
    )
    order = await load(db, order_id)

    await OrderAdminService.update_status(db, gateway, order, OrderStatus.DELIVERED, "carrier", now=NOW)

    order = await load(db, order_id)
    (line,) = order.consigne_lines
    assert order.status == OrderStatus.DELIVERED
    assert line.start_at == NOW
    assert line.due_at == NOW + timedelta(days=30)
    assert order.consigne_start_sent_at == NOW
    assert gateway.count(NotificationKind.CONSIGNE_START) == 1


async def test_delivery_without_deposit_sends_nothing(db, seed, order_factory, gateway):
    order_id = await order_factory([(seed.brake_pads_id, 1)], status=OrderStatus.SHIPPED)
    order = await load(db, order_id)

    await OrderAdminService.update_status(db, gateway, order, OrderStatus.DELIVERED, "carrier")

    assert gateway.sent == []


async def test_mark_received_notifies_once(db, seed, order_factory, gateway):
    order_id = await order_factory(
        [(seed.alternator_id, 1)],
        consigne=[
            dict(product_id=seed.alternator_id, **ALTERNATOR_DEPOSIT, start_at=NOW, due_at=NOW + timedelta(days=30)),
        ],
        status=OrderStatus.DELIVERED,
    )
    order = await load(db, order_id)

    assert await OrderAdminService.mark_consigne_received(db, gateway, order, now=NOW) == 1
    assert await OrderAdminService.mark_consigne_received(db, gateway, await load(db, order_id), now=NOW) == 0

    order = await load(db, order_id)
    assert order.consigne_lines[0].received_at == NOW
    assert order.consigne_received_sent_at == NOW
    assert gateway.count(NotificationKind.CONSIGNE_RECEIVED) == 1


async def test_failed_notification_is_retried_later(db, seed, order_factory, gateway):
    order_id = await order_factory(
        [(seed.alternator_id, 1)],
        consigne=[dict(product_id=seed.alternator_id, **ALTERNATOR_DEPOSIT, start_at=NOW)],
        status=OrderStatus.DELIVERED,
    )
    gateway.ok = False

    await OrderAdminService.mark_consigne_received(db, gateway, await load(db, order_id), now=NOW)
    assert (await load(db, order_id)).consigne_received_sent_at is None

    gateway.ok = True
    await OrderAdminService.mark_consigne_received(db, gateway, await load(db, order_id), now=NOW)
    assert (await load(db, order_id)).consigne_received_sent_at == NOW
    assert gateway.count(NotificationKind.CONSIGNE_RECEIVED) == 1
