from services.order_service.repository import OrderRepository
from services.product_service.repository import ProductRepository
from services.product_service.models import Product
from services.product_service.service import ShippingService, StockService


async def load(db, order_id):
    return await OrderRepository.get_order(db, order_id, fresh=True)


async def stock_of(db, product_id):
    product = await db.get(Product, product_id, populate_existing=True)
    return product.stock_qty, product.in_stock


async def test_reserve_removes_stock_once(db, seed, order_factory):
    order_id = await order_factory([(seed.brake_pads_id, 2)])
    order = await load(db, order_id)

    assert await StockService.reserve(db, order) is True
    assert await StockService.reserve(db, order) is False

    assert await stock_of(db, seed.brake_pads_id) == (3, True)
    order = await load(db, order_id)
    assert order.stock_reserved_at is not None
    assert order.items[0].reserved_qty == 2


async def test_release_restores_exactly_what_was_reserved(db, seed, order_factory):
    order_id = await order_factory([(seed.bulky_id, 3)])
    order = await load(db, order_id)

    await StockService.reserve(db, order)
    # only one gearbox was in stock
    assert await stock_of(db, seed.bulky_id) == (0, False)
    assert order.items[0].reserved_qty == 1

    assert await StockService.release(db, order) is True
    assert await StockService.release(db, order) is False
    assert await stock_of(db, seed.bulky_id) == (1, True)

    order = await load(db, order_id)
    assert order.stock_released_at is not None


async def test_products_are_locked_in_id_order(db, seed, order_factory, monkeypatch):
    order_id = await order_factory([(seed.bulky_id, 1), (seed.alternator_id, 1), (seed.brake_pads_id, 1)])
    locked = []
    get_for_update = ProductRepository.get_product_for_update

    async def recording(session, product_id):
        locked.append(product_id)
        return await get_for_update(session, product_id)

    monkeypatch.setattr(ProductRepository, "get_product_for_update", recording)

    await StockService.reserve(db, await load(db, order_id))
    await StockService.release(db, await load(db, order_id))

    expected = sorted([seed.bulky_id, seed.alternator_id, seed.brake_pads_id])
    assert locked == expected + expected


async def test_release_without_reservation_is_a_noop(db, seed, order_factory):
    order_id = await order_factory([(seed.brake_pads_id, 1)])
    order = await load(db, order_id)

    assert await StockService.release(db, order) is False
    assert await stock_of(db, seed.brake_pads_id) == (5, True)


async def test_untracked_stock_is_left_alone(db, seed, order_factory):
    order_id = await order_factory([(seed.untracked_id, 4), (seed.alternator_id, 1)])
    order = await load(db, order_id)

    await StockService.reserve(db, order)
    await StockService.release(db, order)

    assert await stock_of(db, seed.untracked_id) == (None, True)
    assert await stock_of(db, seed.alternator_id) == (2, True)
    assert [item.reserved_qty for item in order.items] == [0, 1]


async def test_home_delivery_uses_most_expensive_class(db, seed):
    brake_pads = await db.get(Product, seed.brake_pads_id)
    gearbox = await db.get(Product, seed.bulky_id)

    assert await ShippingService.home_delivery_price_cents(db, [brake_pads]) == 500
    assert await ShippingService.home_delivery_price_cents(db, [brake_pads, gearbox]) == 2490
    assert await ShippingService.home_delivery_price_cents(db, []) == 0

    methods = await ShippingService.shipping_methods(db, [brake_pads])
    assert [(m.id, m.price_cents) for m in methods] == [("home", 500), ("pickup", 0)]
