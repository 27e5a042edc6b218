import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("CHECKOUT_RATE_LIMIT", "1000/minute")

import asyncio  # noqa: E402
import itertools  # noqa: E402
from dataclasses import dataclass  # noqa: E402
from datetime import datetime  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from shared.config.database import Base  # noqa: E402
from shared.config.settings import Settings  # noqa: E402
from services.checkout_service.schemas import AddressIn, CartLine, CheckoutRequest  # noqa: E402
from services.checkout_service.service import CheckoutOrchestrator  # noqa: E402
from services.customer_service.models import Customer  # noqa: E402
from services.legal_service.models import LegalPage  # noqa: E402
from services.notification_service.gateway import NotificationGateway, NotificationResult  # noqa: E402
from services.order_service.enums import OrderStatus, PaymentProvider, PaymentStatus  # noqa: E402
from services.order_service.models import ConsigneLine, Order, OrderItem, OrderStatusHistory  # noqa: E402
from services.payment_service.registry import build_adapters  # noqa: E402
from services.product_service.models import Product, ShippingClass  # noqa: E402
from services.promo_service.models import DiscountType, PromoCode  # noqa: E402
from shared.clock import utcnow  # noqa: E402

MOLLIE_PAYMENT_ID = "tr_test123"
SCALAPAY_TOKEN = "sp_token_1"


class ProviderStub:
    """Plays both payment providers behind an httpx.MockTransport."""

    def __init__(self):
        self.mollie_status = "open"
        self.scalapay_status = "created"
        self.fail_create = False
        self.fail_capture = False
        self.fail_status = False
        self.mollie_create_body = None
        self.requests: list[httpx.Request] = []

    def calls(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host, path, method = request.url.host, request.url.path, request.method

        if host == "mollie.test":
            if method == "POST" and path == "/v2/payments":
                if self.fail_create:
                    raise httpx.ConnectTimeout("timed out", request=request)
                if self.mollie_create_body is not None:
                    return httpx.Response(201, json=self.mollie_create_body)
                return httpx.Response(201, json={
                    "id": MOLLIE_PAYMENT_ID,
                    "status": "open",
                    "_links": {"checkout": {"href": f"https://mollie.test/checkout/{MOLLIE_PAYMENT_ID}"}},
                })
            if method == "GET" and path == f"/v2/payments/{MOLLIE_PAYMENT_ID}":
                if self.fail_status:
                    return httpx.Response(503, json={"detail": "Service unavailable"})
                return httpx.Response(200, json={"id": MOLLIE_PAYMENT_ID, "status": self.mollie_status})

        if host == "scalapay.test":
            if method == "POST" and path == "/v2/orders":
                if self.fail_create:
                    return httpx.Response(401, json={"message": "Unauthorized"})
                return httpx.Response(200, json={
                    "token": SCALAPAY_TOKEN,
                    "checkoutUrl": f"https://scalapay.test/checkout/{SCALAPAY_TOKEN}",
                })
            if method == "GET" and path == f"/v2/payments/{SCALAPAY_TOKEN}":
                return httpx.Response(200, json={"token": SCALAPAY_TOKEN, "status": self.scalapay_status})
            if method == "POST" and path == "/v2/payments/capture":
                # lets a concurrent reconcile run while the capture is in flight
                await asyncio.sleep(0.01)
                if self.fail_capture:
                    return httpx.Response(500, text="capture unavailable")
                return httpx.Response(200, json={"token": SCALAPAY_TOKEN, "status": "APPROVED"})

        return httpx.Response(404, json={"detail": "not found"})


class RecordingGateway(NotificationGateway):
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent: list[tuple] = []

    async def send(self, kind, order, customer, attachments=None) -> NotificationResult:
        if not self.ok:
            return NotificationResult(ok=False, reason="mailersend_error")
        self.sent.append((kind, order.id, customer.email))
        return NotificationResult(ok=True)

    def count(self, kind) -> int:
        return sum(1 for sent_kind, _, _ in self.sent if sent_kind == kind)


@dataclass
class Seed:
    customer_id: int
    brake_pads_id: int
    alternator_id: int
    bulky_id: int
    untracked_id: int
    promo_id: int


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'checkout.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seed(session_factory) -> Seed:
    async with session_factory() as session:
        standard = ShippingClass(name="Standard", home_delivery_price_cents=500, is_default=True)
        bulky_class = ShippingClass(name="Bulky", home_delivery_price_cents=2490)
        session.add_all([standard, bulky_class])
        await session.flush()

        customer = Customer(
            email="jean.dupont@example.com",
            first_name="Jean",
            last_name="Dupont",
            phone="06 12 34 56 78",
            discount_percent=10,
        )
        brake_pads = Product(name="Brake pads", sku="BP-001", price_cents=10000, stock_qty=5)
        alternator = Product(
            name="Alternator", sku="ALT-220", price_cents=25000, stock_qty=2,
            consigne_enabled=True, consigne_amount_cents=5000, consigne_delay_days=30,
        )
        bulky = Product(name="Gearbox", sku="GB-6", price_cents=90000, stock_qty=1, shipping_class_id=bulky_class.id)
        untracked = Product(name="Wiper blade", sku="WB-1", price_cents=1500, stock_qty=None)
        promo = PromoCode(
            code="SAVE5", label="5% off", discount_type=DiscountType.PERCENT, value=5, max_total_uses=1,
        )
        terms = LegalPage(slug="cgv", title="Terms of sale", content="...", updated_at=datetime(2026, 1, 15))
        session.add_all([customer, brake_pads, alternator, bulky, untracked, promo, terms])
        await session.commit()

        return Seed(
            customer_id=customer.id,
            brake_pads_id=brake_pads.id,
            alternator_id=alternator.id,
            bulky_id=bulky.id,
            untracked_id=untracked.id,
            promo_id=promo.id,
        )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        public_base_url="https://shop.test",
        mollie_api_key="test_mollie",
        mollie_base_url="https://mollie.test/v2",
        scalapay_api_key="test_scalapay",
        scalapay_base_url="https://scalapay.test",
        payment_webhook_token="hook-secret",
    )


@pytest.fixture
def provider():
    return ProviderStub()


@pytest.fixture
async def http_client(provider):
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider.handler)) as client:
        yield client


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def orchestrator(settings, http_client, gateway):
    return CheckoutOrchestrator(build_adapters(settings, client=http_client), gateway, settings)


def make_checkout_request(product_id: int, quantity: int = 1, **overrides) -> CheckoutRequest:
    values = dict(
        cart_session_id="cart-abc",
        items=[CartLine(product_id=product_id, quantity=quantity)],
        shipping_method="home",
        shipping_address=AddressIn(
            full_name="Jean Dupont",
            phone="0612345678",
            line1="12 rue de la Paix",
            postal_code="75002",
            city="Paris",
        ),
        payment_method="card",
        accept_terms=True,
    )
    values.update(overrides)
    return CheckoutRequest(**values)


@pytest.fixture
def make_request():
    return make_checkout_request


@pytest.fixture
def order_factory(session_factory, seed):
    """Inserts an order directly, bypassing checkout. lines: [(product_id, quantity)]."""
    numbers = itertools.count(1)

    async def create(lines, consigne=(), **overrides) -> int:
        now = utcnow()
        address = {"full_name": "Jean Dupont", "line1": "12 rue de la Paix", "postal_code": "75002", "city": "Paris"}
        values = dict(
            number=f"CP-TEST-{next(numbers):03d}",
            customer_id=seed.customer_id,
            cart_session_id=None,
            status=OrderStatus.PENDING,
            payment_provider=PaymentProvider.MOLLIE,
            payment_status=PaymentStatus.PENDING,
            total_cents=0,
            shipping_address=address,
            billing_address=address,
            created_at=now,
            updated_at=now,
        )
        values.update(overrides)
        order = Order(
            items=[
                OrderItem(
                    product_id=product_id, name=f"Part {product_id}", unit_price_cents=1000,
                    quantity=quantity, line_total_cents=1000 * quantity,
                )
                for product_id, quantity in lines
            ],
            consigne_lines=[ConsigneLine(**line) for line in consigne],
            status_history=[
                OrderStatusHistory(status=values["status"], changed_at=now, changed_by="test")
            ],
            **values,
        )
        async with session_factory() as session:
            session.add(order)
            await session.commit()
            return order.id

    return create
