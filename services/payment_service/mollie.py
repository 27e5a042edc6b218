from typing import Optional

import httpx
import structlog

from services.order_service.enums import PaymentProvider, PaymentStatus
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

PENDING_STATUSES = {"open", "pending", "authorized"}


class MollieAdapter(PaymentProviderAdapter):
    """Redirect payment: the charge is final as soon as the provider reports it paid."""

    name = PaymentProvider.MOLLIE
    requires_capture = False

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.mollie.com/v2",
        profile_id: str = "",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_key, base_url, timeout=timeout, client=client)
        self.profile_id = profile_id

    @staticmethod
    def map_status(raw_status: str) -> PaymentStatus:
        status = (raw_status or "").strip().lower()
        if status == "paid":
            return PaymentStatus.PAID
        if status in PENDING_STATUSES:
            return PaymentStatus.PENDING
        return PaymentStatus.FAILED

    async def create_remote_payment(self, request: PaymentRequest) -> RemotePayment:
        payload = {
            "amount": {"currency": request.currency, "value": format_amount(request.totals.total_cents)},
            "description": request.description,
            "redirectUrl": request.return_url,
            "locale": "fr_FR",
            "metadata": {
                "orderId": str(request.order_id),
                "orderNumber": request.order_number,
                "customerId": str(request.customer_id),
            },
        }
        if request.webhook_url:
            payload["webhookUrl"] = request.webhook_url
        if self.profile_id:
            payload["profileId"] = self.profile_id

        body = await self._request_json("POST", "/payments", payload)
        remote_id = str(body.get("id") or "")
        links = body.get("_links")
        checkout = links.get("checkout") if isinstance(links, dict) else None
        checkout_url = checkout.get("href") if isinstance(checkout, dict) else ""
        if not remote_id or not checkout_url or not isinstance(checkout_url, str):
            raise PaymentProviderError(self.name.value, "response missing id or checkout url")

        logger.info("mollie_payment_created", order_id=request.order_id, remote_id=remote_id)
        return RemotePayment(remote_id=remote_id, checkout_url=checkout_url, raw_status=str(body.get("status") or ""))

    async def fetch_status(self, remote_id: str) -> ProviderStatus:
        body = await self._request_json("GET", f"/payments/{remote_id}")
        raw_status = str(body.get("status") or "")
        return ProviderStatus(raw_status=raw_status, status=self.map_status(raw_status))
