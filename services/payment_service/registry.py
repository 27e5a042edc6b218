from typing import Dict, Optional

import httpx

from services.order_service.enums import PaymentProvider
from shared.config.settings import Settings
from .base import PaymentProviderAdapter
from .mollie import MollieAdapter
from .scalapay import ScalapayAdapter

PAYMENT_METHODS = {
    "card": PaymentProvider.MOLLIE,
    "pay_in_3": PaymentProvider.SCALAPAY,
    "pay_in_4": PaymentProvider.SCALAPAY,
}

AdapterMap = Dict[PaymentProvider, PaymentProviderAdapter]


def provider_for_method(payment_method: str) -> Optional[PaymentProvider]:
    return PAYMENT_METHODS.get((payment_method or "").strip().lower())


def build_adapters(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> AdapterMap:
    return {
        PaymentProvider.MOLLIE: MollieAdapter(
            api_key=settings.mollie_api_key,
            base_url=settings.mollie_base_url,
            profile_id=settings.mollie_profile_id,
            timeout=settings.provider_timeout_seconds,
            client=client,
        ),
        PaymentProvider.SCALAPAY: ScalapayAdapter(
            api_key=settings.scalapay_api_key,
            base_url=settings.scalapay_base_url,
            timeout=settings.provider_timeout_seconds,
            client=client,
        ),
    }
