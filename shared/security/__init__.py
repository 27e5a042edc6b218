from .jwt_handler import (
    create_access_token,
    sign_order_reference,
    verify_access_token,
    verify_order_reference,
)
from .api_key import verify_api_key, verify_webhook_token
from .dependencies import get_current_customer, verify_internal_api_key
from .rate_limiter import limiter, customer_id_or_ip

__all__ = [
    "create_access_token",
    "verify_access_token",
    "sign_order_reference",
    "verify_order_reference",
    "verify_api_key",
    "verify_webhook_token",
    "get_current_customer",
    "verify_internal_api_key",
    "limiter",
    "customer_id_or_ip"
]
