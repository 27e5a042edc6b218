from functools import lru_cache

from services.notification_service.dependencies import get_notifier
from services.payment_service.registry import build_adapters
from shared.config.settings import get_settings
from .service import CheckoutOrchestrator


@lru_cache
def get_orchestrator() -> CheckoutOrchestrator:
    settings = get_settings()
    return CheckoutOrchestrator(build_adapters(settings), get_notifier(), settings)
