"""
Provider-agnostic payment adapter contract.

The checkout orchestrator only talks to ``PaymentProviderAdapter`` and the
three-way ``PaymentStatus``; every concrete provider maps its own status
vocabulary onto pending/paid/failed.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import httpx
import structlog

from services.order_service.enums import PaymentProvider, PaymentStatus
from services.order_service.pricing import PricedLine, PricingBreakdown

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class PaymentProviderError(Exception):
    """Timeout, transport failure, rejection or unusable response from a provider."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"[{provider}] {message}")
        self.provider = provider
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class PaymentCustomer:
    email: str
    given_names: str
    surname: str
    phone: str = ""


@dataclass(frozen=True)
class PaymentRequest:
    order_id: int
    order_number: str
    customer_id: int
    totals: PricingBreakdown
    return_url: str
    cancel_url: str
    webhook_url: str
    customer: PaymentCustomer
    shipping_address: dict
    billing_address: dict
    lines: Sequence[PricedLine] = field(default_factory=tuple)
    currency: str = "EUR"
    payment_method: str = "card"

    @property
    def description(self) -> str:
        return f"Order {self.order_number}"


@dataclass(frozen=True)
class RemotePayment:
    remote_id: str
    checkout_url: str
    raw_status: str = ""


@dataclass(frozen=True)
class ProviderStatus:
    raw_status: str
    status: PaymentStatus


def format_amount(cents: int) -> str:
    return f"{(cents or 0) / 100:.2f}"


class PaymentProviderAdapter(ABC):
    name: PaymentProvider
    # Providers that only authorise on approval and need an explicit capture
    requires_capture: bool = False

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    @abstractmethod
    def map_status(raw_status: str) -> PaymentStatus:
        ...

    @abstractmethod
    async def create_remote_payment(self, request: PaymentRequest) -> RemotePayment:
        ...

    @abstractmethod
    async def fetch_status(self, remote_id: str) -> ProviderStatus:
        ...

    async def capture(
        self, remote_id: str, amount_cents: int, reference: str = "", currency: str = "EUR"
    ) -> None:
        raise NotImplementedError(f"{self.name.value} does not support capture")

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for key in ("detail", "message", "error", "error_message"):
                if body.get(key):
                    return str(body[key])
        snippet = " ".join(response.text[:200].split())
        return f"HTTP {response.status_code} - {snippet}" if snippet else f"HTTP {response.status_code}"

    async def _send(self, client: httpx.AsyncClient, method: str, path: str, payload: Any):
        return await client.request(
            method,
            f"{self.base_url}{path}",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout,
        )

    async def _request_json(self, method: str, path: str, payload: Any = None) -> dict:
        provider = self.name.value
        if not self.api_key:
            raise PaymentProviderError(provider, f"{provider.upper()}_API_KEY missing")

        try:
            if self._client is not None:
                response = await self._send(self._client, method, path, payload)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._send(client, method, path, payload)
        except httpx.TimeoutException as exc:
            raise PaymentProviderError(provider, "timeout") from exc
        except httpx.HTTPError as exc:
            raise PaymentProviderError(provider, f"transport error: {exc}") from exc

        if not 200 <= response.status_code < 300:
            message = self._error_message(response)
            logger.warning(
                "payment_provider_rejected",
                provider=provider,
                path=path,
                status_code=response.status_code,
                message=message,
            )
            raise PaymentProviderError(provider, message, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise PaymentProviderError(
                provider, f"invalid response ({response.status_code})", response.status_code
            ) from exc
        if not isinstance(body, dict):
            raise PaymentProviderError(provider, f"invalid response ({response.status_code})", response.status_code)
        return body
