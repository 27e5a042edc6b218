"""
Checkout orchestration.

start_checkout() turns a validated cart into a pending order, reserves stock
and the promo, and opens a remote payment. reconcile() is the single,
idempotent place where a provider's answer is applied to an order; the
customer's return redirect and the provider webhook both end up there.
Every failure after the order exists goes through rollback_order().
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from urllib.parse import urlencode

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.customer_service.repository import CustomerRepository
from services.legal_service.service import LegalPageService
from services.notification_service.gateway import NotificationGateway
from services.notification_service.service import NotificationService
from services.order_service.enums import (
    NotificationKind,
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
)
from services.order_service.models import ConsigneLine, Order, OrderItem, OrderStatusHistory
from services.order_service.pricing import PricedLine, PricingBreakdown, compute_pricing
from services.order_service.repository import OrderRepository
from services.order_service.rollback import rollback_order
from services.order_service.service import OrderService, generate_order_number
from services.payment_service.base import (
    PaymentCustomer,
    PaymentProviderAdapter,
    PaymentProviderError,
    PaymentRequest,
)
from services.payment_service.registry import AdapterMap, provider_for_method
from services.payment_service.scalapay import split_name
from services.product_service.repository import ProductRepository
from services.product_service.service import ShippingMethod, ShippingService, StockService
from services.promo_service.models import PromoCode
from services.promo_service.service import PromoService, normalize_code
from shared.clock import utcnow
from shared.config.settings import Settings
from shared.observability import (
    carparts_checkout_duration_seconds,
    carparts_checkout_total,
    carparts_payment_reconciliation_total,
)
from shared.security import sign_order_reference, verify_order_reference, verify_webhook_token
from .errors import (
    CheckoutValidationError,
    InsufficientStockError,
    OrderNumberCollisionError,
    PaymentInitiationError,
    PromoReservationError,
)
from .schemas import CheckoutRequest, QuoteRequest
from .validation import validated_addresses, validated_vehicle

logger = structlog.get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 3
# A capture latch older than this is considered abandoned
CAPTURE_LATCH_TIMEOUT = timedelta(minutes=5)
LOCAL_HOSTS = ("://localhost", "://127.0.0.1", "://0.0.0.0")


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    redirect_url: str
    reused: bool = False


@dataclass(frozen=True)
class QuoteResult:
    pricing: PricingBreakdown
    shipping_methods: list[ShippingMethod]
    promo_error: str = ""


@dataclass(frozen=True)
class _CartLine:
    product: object
    quantity: int


def _is_local(url: str) -> bool:
    lowered = (url or "").lower()
    return any(host in lowered for host in LOCAL_HOSTS)


class CheckoutOrchestrator:

    def __init__(
        self,
        adapters: AdapterMap,
        notifier: NotificationGateway,
        settings: Settings,
        number_factory: Callable[[], str] = generate_order_number,
    ):
        self.adapters = adapters
        self.notifier = notifier
        self.settings = settings
        self.number_factory = number_factory

    # --- URLs ---

    def _url(self, path: str, **params) -> str:
        query = urlencode({k: v for k, v in params.items() if v is not None})
        return f"{self.settings.public_base_url}{path}" + (f"?{query}" if query else "")

    def confirmation_url(self, order_id: int) -> str:
        return self._url(self.settings.order_confirmation_path.format(order_id=order_id))

    def payment_page_url(self, order_id: Optional[int] = None, error: Optional[str] = None) -> str:
        return self._url(self.settings.payment_page_path, orderId=order_id, error=error)

    def return_url(self, order_id: int, cancelled: bool = False) -> str:
        return self._url(
            "/checkout/payment/return",
            orderId=order_id,
            cancel="1" if cancelled else None,
            token=sign_order_reference(order_id),
        )

    def webhook_url(self) -> str:
        base = self.settings.payment_webhook_url or self.settings.public_base_url
        if not base or _is_local(base):
            return ""
        token = self.settings.payment_webhook_token
        return f"{base}/checkout/payment/webhook" + (f"?{urlencode({'token': token})}" if token else "")

    # --- cart ---

    @staticmethod
    async def _load_cart(db: AsyncSession, items) -> list[_CartLine]:
        quantities: dict[int, int] = {}
        for line in items:
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity

        products = await ProductRepository.get_products_by_ids(db, quantities.keys())
        cart = []
        for product_id, quantity in quantities.items():
            product = products.get(product_id)
            if product is None:
                raise CheckoutValidationError(f"Product {product_id} is no longer available.")
            cart.append(_CartLine(product=product, quantity=quantity))
        return cart

    @staticmethod
    def _check_stock(cart: list[_CartLine]) -> None:
        for line in cart:
            product = line.product
            out_of_stock = not product.in_stock or (
                product.tracks_stock and line.quantity > product.stock_qty
            )
            if out_of_stock:
                raise InsufficientStockError(
                    "Insufficient stock for one or more items. Please update your cart."
                )

    @staticmethod
    async def _select_shipping(db: AsyncSession, cart: list[_CartLine], method_id: str):
        methods = await ShippingService.shipping_methods(db, [line.product for line in cart])
        selected = next((m for m in methods if m.id == method_id), None)
        return methods, selected

    async def _evaluate_promo(self, db, code, customer_id, subtotal_cents, now) -> Optional[PromoCode]:
        if not normalize_code(code):
            return None
        evaluation = await PromoService.evaluate(db, code, customer_id, subtotal_cents, now=now)
        if not evaluation.ok:
            raise CheckoutValidationError(evaluation.reason or "Invalid promo code.")
        return evaluation.promo

    # --- quote ---

    async def quote(self, db: AsyncSession, customer_id: int, request: QuoteRequest) -> QuoteResult:
        """Prices a cart without creating anything."""
        customer = await CustomerRepository.get_by_id(db, customer_id)
        cart = await self._load_cart(db, request.items)
        subtotal = sum(line.product.price_cents * line.quantity for line in cart)
        methods, selected = await self._select_shipping(db, cart, request.shipping_method)

        promo_error = ""
        terms = None
        if normalize_code(request.promo_code):
            evaluation = await PromoService.evaluate(db, request.promo_code, customer_id, subtotal)
            if evaluation.ok:
                terms = evaluation.promo.as_terms()
            else:
                promo_error = evaluation.reason

        pricing = compute_pricing(
            subtotal,
            selected.price_cents if selected else 0,
            customer.discount_percent if customer else 0,
            terms,
        )
        return QuoteResult(pricing=pricing, shipping_methods=methods, promo_error=promo_error)

    # --- start ---

    async def start_checkout(
        self,
        db: AsyncSession,
        customer_id: int,
        request: CheckoutRequest,
        now: Optional[datetime] = None,
    ) -> CheckoutResult:
        with carparts_checkout_duration_seconds.time():
            try:
                result = await self._start_checkout(db, customer_id, request, now or utcnow())
            except (CheckoutValidationError, PromoReservationError):
                carparts_checkout_total.labels(status="rejected").inc()
                raise
            except (PaymentInitiationError, OrderNumberCollisionError):
                carparts_checkout_total.labels(status="failed").inc()
                raise
        carparts_checkout_total.labels(status="reused" if result.reused else "success").inc()
        return result

    async def _reuse_existing(self, db, customer_id, cart_session_id) -> Optional[CheckoutResult]:
        existing = await OrderRepository.get_latest_for_cart(db, customer_id, cart_session_id)
        if existing is None:
            return None
        if existing.payment_status == PaymentStatus.PAID:
            return CheckoutResult(existing, self.confirmation_url(existing.id), reused=True)
        if existing.payment_status == PaymentStatus.PENDING and existing.payment_checkout_url:
            return CheckoutResult(existing, existing.payment_checkout_url, reused=True)
        return None

    async def _start_checkout(
        self, db: AsyncSession, customer_id: int, request: CheckoutRequest, now: datetime
    ) -> CheckoutResult:
        customer = await CustomerRepository.get_by_id(db, customer_id)
        if customer is None or not customer.is_active:
            raise CheckoutValidationError("Customer account not found.")

        reused = await self._reuse_existing(db, customer_id, request.cart_session_id)
        if reused is not None:
            logger.info("checkout_reused_order", order_id=reused.order.id, customer_id=customer_id)
            return reused

        vehicle = validated_vehicle(request.vehicle, now)

        if not request.accept_terms:
            raise CheckoutValidationError("Please accept the terms of sale to continue.")
        terms = await LegalPageService.get_current_version(db, self.settings.legal_terms_slug)
        if terms is None:
            raise CheckoutValidationError("The terms of sale are unavailable right now. Please try again later.")

        provider = provider_for_method(request.payment_method)
        if provider is None:
            raise CheckoutValidationError("Unknown payment method.")
        adapter = self.adapters[provider]
        if not adapter.is_configured:
            raise CheckoutValidationError(
                "This payment method is temporarily unavailable. Please try again in a few minutes."
            )

        shipping_address, billing_address = validated_addresses(
            request.shipping_address, request.billing_address, request.billing_same_as_shipping
        )

        cart = await self._load_cart(db, request.items)
        self._check_stock(cart)
        _, shipping = await self._select_shipping(db, cart, request.shipping_method)
        if shipping is None:
            raise CheckoutValidationError("Please choose a shipping method.")

        subtotal = sum(line.product.price_cents * line.quantity for line in cart)
        promo = await self._evaluate_promo(db, request.promo_code, customer_id, subtotal, now)
        pricing = compute_pricing(
            subtotal,
            shipping.price_cents,
            customer.discount_percent,
            promo.as_terms() if promo is not None else None,
        )

        # Plain snapshots: a number collision rolls the session back and
        # expires every loaded row.
        account_type = customer.account_type.value
        payer = self._payment_customer(customer, shipping_address)
        promo_id = promo.id if promo is not None else None
        item_rows = [
            dict(
                product_id=line.product.id,
                name=line.product.name,
                sku=line.product.sku or "",
                unit_price_cents=line.product.price_cents,
                quantity=line.quantity,
                line_total_cents=line.product.price_cents * line.quantity,
                reserved_qty=0,
            )
            for line in cart
        ]
        consigne_rows = [
            dict(
                product_id=line.product.id,
                name=line.product.name,
                sku=line.product.sku or "",
                quantity=line.quantity,
                amount_cents=line.product.consigne_amount_cents,
                delay_days=line.product.consigne_delay_days,
            )
            for line in cart
            if line.product.has_consigne
        ]

        def build_order() -> Order:
            return Order(
                number=self.number_factory(),
                customer_id=customer_id,
                cart_session_id=request.cart_session_id,
                account_type=account_type,
                status=OrderStatus.PENDING,
                payment_provider=provider,
                payment_method=request.payment_method,
                payment_status=PaymentStatus.PENDING,
                payment_profile_id=self.settings.mollie_profile_id if provider == PaymentProvider.MOLLIE else "",
                currency=self.settings.currency,
                shipping_method=shipping.id,
                items_subtotal_cents=pricing.items_subtotal_cents,
                client_discount_percent=pricing.client_discount_percent,
                client_discount_cents=pricing.client_discount_cents,
                promo_code=pricing.promo_code,
                promo_discount_cents=pricing.promo_discount_cents,
                items_total_after_discount_cents=pricing.items_total_after_discount_cents,
                shipping_cost_cents=pricing.shipping_cost_cents,
                total_cents=pricing.total_cents,
                shipping_address=shipping_address,
                billing_address=billing_address,
                vehicle_identifier_type=vehicle.identifier_type,
                vehicle_plate=vehicle.plate,
                vehicle_vin=vehicle.vin,
                vehicle_consent_at=vehicle.consent_at,
                vehicle_provided_at=vehicle.provided_at,
                legal_terms_accepted_at=now,
                legal_terms_slug=terms.slug,
                legal_terms_updated_at=terms.updated_at,
                items=[OrderItem(**row) for row in item_rows],
                consigne_lines=[ConsigneLine(**row) for row in consigne_rows],
                status_history=[
                    OrderStatusHistory(status=OrderStatus.PENDING, changed_at=now, changed_by="client")
                ],
                created_at=now,
                updated_at=now,
            )

        order = await self._create_order(db, build_order)
        order_id = order.id
        logger.info(
            "order_created",
            order_id=order_id,
            order_number=order.number,
            customer_id=customer_id,
            provider=provider.value,
            total_cents=order.total_cents,
        )

        try:
            await StockService.reserve(db, order, now=now)

            if promo_id is not None:
                reservation = await PromoService.reserve(
                    db,
                    promo_id,
                    customer_id,
                    order_id,
                    ttl=timedelta(minutes=self.settings.promo_reservation_ttl_minutes),
                    now=now,
                )
                if not reservation.ok:
                    order = await OrderRepository.get_order(db, order_id, fresh=True)
                    await rollback_order(db, order, reason="promo_reservation", actor="promo", now=now)
                    raise PromoReservationError(
                        reservation.reason
                        or "The promo code cannot be reserved right now (it may just have been used). Please try again.",
                        order_id=order_id,
                    )

            payment_request = PaymentRequest(
                order_id=order_id,
                order_number=order.number,
                customer_id=customer_id,
                totals=pricing,
                return_url=self.return_url(order_id),
                cancel_url=self.return_url(order_id, cancelled=True),
                webhook_url=self.webhook_url(),
                customer=payer,
                shipping_address=shipping_address,
                billing_address=billing_address,
                lines=[
                    PricedLine(
                        item.product_id, item.name, item.sku,
                        item.unit_price_cents, item.quantity, item.line_total_cents,
                    )
                    for item in order.items
                ],
                currency=order.currency,
                payment_method=order.payment_method,
            )

            try:
                remote = await adapter.create_remote_payment(payment_request)
            except PaymentProviderError as exc:
                logger.error(
                    "payment_initiation_failed",
                    order_id=order_id,
                    order_number=order.number,
                    provider=provider.value,
                    error=exc.message,
                )
                await OrderRepository.update_fields(
                    db, order_id, payment_remote_status="failed", payment_last_checked_at=now
                )
                await db.commit()
                await rollback_order(db, order, reason="provider_error", actor=provider.value, now=now)
                raise PaymentInitiationError(order_id=order_id) from exc

            await OrderRepository.update_fields(
                db,
                order_id,
                payment_remote_id=remote.remote_id,
                payment_remote_status=remote.raw_status,
                payment_checkout_url=remote.checkout_url,
                payment_last_checked_at=now,
            )
            await db.commit()
        except (PromoReservationError, PaymentInitiationError):
            raise
        except Exception as exc:
            logger.exception("checkout_failed_after_order_created", order_id=order_id, provider=provider.value)
            await db.rollback()
            order = await OrderRepository.get_order(db, order_id, fresh=True)
            await rollback_order(db, order, reason="internal_error", now=now)
            raise PaymentInitiationError(order_id=order_id) from exc

        return CheckoutResult(order, remote.checkout_url)

    async def _create_order(self, db: AsyncSession, build_order: Callable[[], Order]) -> Order:
        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            order = build_order()
            try:
                return await OrderRepository.create_order(db, order)
            except IntegrityError:
                await db.rollback()
                logger.warning("order_number_collision", number=order.number, attempt=attempt)
        raise OrderNumberCollisionError("An error occurred while creating your order.")

    @staticmethod
    def _payment_customer(customer, shipping_address: dict) -> PaymentCustomer:
        if customer.first_name and customer.last_name:
            given_names, surname = customer.first_name, customer.last_name
        else:
            given_names, surname = split_name(shipping_address.get("full_name"))
        return PaymentCustomer(
            email=customer.email,
            given_names=given_names,
            surname=surname,
            phone=customer.phone or shipping_address.get("phone", ""),
        )

    # --- reconciliation ---

    async def _capture_once(
        self, db: AsyncSession, adapter: PaymentProviderAdapter, order: Order, now: datetime
    ) -> Optional[datetime]:
        """Returns the capture time, or None when another caller holds the latch or the capture failed."""
        order_id = order.id
        provider = adapter.name.value

        claimed = await OrderRepository.claim_capture(
            db, order_id, now, stale_before=now - CAPTURE_LATCH_TIMEOUT
        )
        await db.commit()
        if not claimed:
            carparts_payment_reconciliation_total.labels(provider=provider, outcome="capture_in_progress").inc()
            logger.info("payment_capture_in_progress", order_id=order_id, provider=provider)
            return None

        try:
            await adapter.capture(order.payment_remote_id, order.total_cents, order.number, order.currency)
        except PaymentProviderError as exc:
            await OrderRepository.release_capture(db, order_id)
            await db.commit()
            carparts_payment_reconciliation_total.labels(provider=provider, outcome="capture_failed").inc()
            logger.warning("payment_capture_failed", order_id=order_id, provider=provider, error=exc.message)
            return None

        await OrderRepository.update_fields(db, order_id, payment_captured_at=now)
        await db.commit()
        return now

    async def reconcile(
        self,
        db: AsyncSession,
        order: Order,
        cancelled: bool = False,
        now: Optional[datetime] = None,
    ) -> Order:
        """
        Applies the provider's current status to the order.

        Only the caller that moves payment_status out of 'pending' performs
        the follow-up work (confirm + redeem + e-mail, or rollback), so
        concurrent or repeated calls with the same answer change nothing.
        """
        now = now or utcnow()
        provider = PaymentProvider(order.payment_provider)
        adapter = self.adapters[provider]
        order_id = order.id

        if PaymentStatus(order.payment_status).is_terminal:
            carparts_payment_reconciliation_total.labels(provider=provider.value, outcome="noop").inc()
            return order

        if not order.payment_remote_id:
            if cancelled:
                return await rollback_order(db, order, reason="payment_failed", actor="client", now=now)
            return order

        try:
            remote = await adapter.fetch_status(order.payment_remote_id)
        except PaymentProviderError as exc:
            carparts_payment_reconciliation_total.labels(provider=provider.value, outcome="error").inc()
            logger.warning("payment_status_fetch_failed", order_id=order_id, provider=provider.value, error=exc.message)
            return order

        status = remote.status
        if cancelled and status != PaymentStatus.PAID:
            status = PaymentStatus.FAILED

        captured_at = order.payment_captured_at
        if status == PaymentStatus.PAID and adapter.requires_capture and captured_at is None:
            captured_at = await self._capture_once(db, adapter, order, now)
            if captured_at is None:
                status = PaymentStatus.PENDING

        if status == PaymentStatus.PENDING:
            await OrderRepository.update_fields(
                db, order_id, payment_remote_status=remote.raw_status, payment_last_checked_at=now
            )
            await db.commit()
            carparts_payment_reconciliation_total.labels(provider=provider.value, outcome="pending").inc()
            return await OrderRepository.get_order(db, order_id, fresh=True)

        values = {"payment_remote_status": remote.raw_status, "payment_last_checked_at": now}
        if status == PaymentStatus.PAID:
            values["payment_paid_at"] = now
            values["payment_captured_at"] = captured_at

        won = await OrderRepository.claim_payment_status(db, order_id, status, **values)
        await db.commit()
        if not won:
            carparts_payment_reconciliation_total.labels(provider=provider.value, outcome="noop").inc()
            return await OrderRepository.get_order(db, order_id, fresh=True)

        carparts_payment_reconciliation_total.labels(provider=provider.value, outcome=status.value).inc()
        logger.info(
            "payment_reconciled",
            order_id=order_id,
            order_number=order.number,
            provider=provider.value,
            remote_status=remote.raw_status,
            payment_status=status.value,
        )

        if status == PaymentStatus.FAILED:
            return await rollback_order(db, order, reason="payment_failed", actor=provider.value, now=now)

        if OrderStatus(order.status) == OrderStatus.PENDING:
            await OrderService.transition(db, order, OrderStatus.CONFIRMED, provider.value, now=now)
        await PromoService.redeem(db, order_id, now=now)
        await NotificationService.send_once(
            db, self.notifier, order, NotificationKind.ORDER_CONFIRMATION, now=now
        )
        return order

    async def handle_return(
        self,
        db: AsyncSession,
        order_id: int,
        token: Optional[str] = None,
        cancelled: bool = False,
    ) -> tuple[Optional[Order], str]:
        """
        Customer coming back from the provider; returns the order and where to send them.

        Only a return carrying the token signed into return_url() may touch the
        order. Anything else gets a redirect built from the stored status.
        """
        order = await OrderRepository.get_order(db, order_id, fresh=True)
        if order is None:
            return None, self._url(self.settings.orders_list_path)

        if not verify_order_reference(order.id, token):
            logger.warning("payment_return_unsigned", order_id=order.id)
            return order, self._return_redirect(order, cancelled=False)

        order = await self.reconcile(db, order, cancelled=cancelled)
        return order, self._return_redirect(order, cancelled)

    def _return_redirect(self, order: Order, cancelled: bool) -> str:
        payment_status = PaymentStatus(order.payment_status)
        if payment_status == PaymentStatus.PAID:
            return self.confirmation_url(order.id)
        if payment_status == PaymentStatus.PENDING:
            return self.payment_page_url(order.id, error="cancelled" if cancelled else "pending")
        return self.payment_page_url(error="cancelled" if cancelled else "failed")

    async def handle_webhook(
        self, db: AsyncSession, remote_id: str, token: Optional[str] = None
    ) -> Optional[Order]:
        """Provider callback. Unknown ids and bad tokens are ignored, never raised."""
        if not verify_webhook_token(token, self.settings.payment_webhook_token):
            logger.warning("payment_webhook_bad_token")
            return None

        remote_id = (remote_id or "").strip()
        if not remote_id:
            return None

        order = await OrderRepository.get_by_remote_id(db, remote_id)
        if order is None:
            logger.info("payment_webhook_unknown_payment", remote_id=remote_id)
            return None
        return await self.reconcile(db, order)
