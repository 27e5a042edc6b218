import re
from typing import Optional

import httpx
import structlog

from services.order_service.enums import PaymentProvider, PaymentStatus
from services.order_service.pricing import allocate_discount
from .base import (
    DEFAULT_TIMEOUT_SECONDS,
    PaymentProviderAdapter,
    PaymentProviderError,
    PaymentRequest,
    ProviderStatus,
    RemotePayment,
    format_amount,
)

logger = structlog.get_logger(__name__)

PAID_STATUSES = {"charged", "captured", "approved"}
FAILED_STATUSES = {"declined", "canceled", "cancelled", "expired", "void"}

PRODUCTS = {"pay_in_3": "pay-in-3", "pay_in_4": "pay-in-4"}


def country_code(country) -> str:
    raw = (country or "").strip().upper() if isinstance(country, str) else ""
    if not raw or raw == "FRANCE":
        return "FR"
    if re.fullmatch(r"[A-Z]{2}", raw):
        return raw
    return "FR"


def normalize_phone(phone, code: str = "FR") -> str:
    raw = phone.strip() if isinstance(phone, str) else ""
    if not raw:
        return "+33000000000"
    cleaned = re.sub(r"[\s.()-]", "", raw)
    if cleaned.startswith("+"):
        return cleaned
    if code == "FR":
        return f"+33{cleaned[1:]}" if cleaned.startswith("0") else f"+33{cleaned}"
    return f"+{cleaned}"


def split_name(full_name) -> tuple[str, str]:
    parts = full_name.split() if isinstance(full_name, str) else []
    if not parts:
        return "", ""
    if len(parts) == 1:
        return parts[0], parts[0]
    return parts[0], " ".join(parts[1:])


def _money(cents: int, currency: str) -> dict:
    return {"amount": format_amount(cents), "currency": currency}


class ScalapayAdapter(PaymentProviderAdapter):
    """
    Installment payment. An approved payment is only authorised: funds move
    after ``capture``, which the reconciliation flow calls once before the
    order is treated as paid.
    """

    name = PaymentProvider.SCALAPAY
    requires_capture = True

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://integration.api.scalapay.com",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_key, base_url, timeout=timeout, client=client)

    @staticmethod
    def map_status(raw_status: str) -> PaymentStatus:
        status = (raw_status or "").strip().lower()
        if status in PAID_STATUSES:
            return PaymentStatus.PAID
        if status in FAILED_STATUSES:
            return PaymentStatus.FAILED
        # unknown statuses stay pending
        return PaymentStatus.PENDING

    def _address(self, address: dict, phone: str, fallback_name: str) -> dict:
        return {
            "phoneNumber": phone,
            "countryCode": country_code(address.get("country")),
            "name": (address.get("full_name") or "").strip() or fallback_name,
            "postcode": (address.get("postal_code") or "").strip(),
            "suburb": (address.get("city") or "").strip(),
            "line1": (address.get("line1") or "").strip(),
        }

    def build_order_body(self, request: PaymentRequest) -> dict:
        currency = request.currency
        shipping = request.shipping_address or {}
        billing = request.billing_address or {}

        phone = normalize_phone(
            request.customer.phone or shipping.get("phone") or billing.get("phone"),
            country_code(shipping.get("country")),
        )
        given_names = request.customer.given_names or "Client"
        surname = request.customer.surname or "CarParts"
        fallback_name = f"{given_names} {surname}"

        lines = allocate_discount(request.lines, request.totals.items_total_after_discount_cents)
        items = [
            {
                "sku": line.sku or str(line.product_id),
                "name": line.name or "Article",
                "quantity": line.quantity or 1,
                "price": _money(line.unit_price_cents, currency),
                "category": "car-parts",
            }
            for line in lines
        ]

        return {
            "totalAmount": _money(request.totals.total_cents, currency),
            "consumer": {
                "phoneNumber": phone,
                "givenNames": given_names,
                "surname": surname,
                "email": request.customer.email,
            },
            "shipping": self._address(shipping, phone, fallback_name),
            "billing": self._address(billing, phone, fallback_name),
            "items": items,
            "merchant": {
                "redirectConfirmUrl": request.return_url,
                "redirectCancelUrl": request.cancel_url,
            },
            "merchantReference": request.order_number,
            "shippingAmount": _money(request.totals.shipping_cost_cents, currency),
            "taxAmount": _money(0, currency),
            "type": "online",
            "product": PRODUCTS.get(request.payment_method, "pay-in-3"),
        }

    async def create_remote_payment(self, request: PaymentRequest) -> RemotePayment:
        body = await self._request_json("POST", "/v2/orders", self.build_order_body(request))
        token = str(body.get("token") or "")
        checkout_url = str(body.get("checkoutUrl") or "")
        if not token or not checkout_url:
            raise PaymentProviderError(self.name.value, "response missing token or checkoutUrl")

        logger.info("scalapay_order_created", order_id=request.order_id, remote_id=token)
        return RemotePayment(remote_id=token, checkout_url=checkout_url, raw_status="created")

    async def fetch_status(self, remote_id: str) -> ProviderStatus:
        if not remote_id:
            raise PaymentProviderError(self.name.value, "token missing")
        body = await self._request_json("GET", f"/v2/payments/{remote_id}")
        raw_status = str(body.get("status") or "")
        return ProviderStatus(raw_status=raw_status, status=self.map_status(raw_status))

    async def capture(
        self, remote_id: str, amount_cents: int, reference: str = "", currency: str = "EUR"
    ) -> None:
        if not remote_id:
            raise PaymentProviderError(self.name.value, "token missing")
        payload = {"token": remote_id}
        if reference:
            payload["merchantReference"] = reference
        if amount_cents is not None:
            payload["amount"] = _money(amount_cents, currency)
        await self._request_json("POST", "/v2/payments/capture", payload)
        logger.info("scalapay_payment_captured", remote_id=remote_id, merchant_reference=reference)
