from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from .jwt_handler import verify_access_token


def customer_id_or_ip(request: Request) -> str:
    """
    Key function for SlowAPI.
    Uses the customer id from the bearer token when present so that one
    customer cannot hammer checkout from several addresses; falls back to
    the client IP for anonymous calls.
    """
    auth_header = request.headers.get("Authorization")

    if auth_header and auth_header.startswith("Bearer "):
        payload = verify_access_token(auth_header.split(" ", 1)[1])
        if payload and "sub" in payload:
            return f"customer:{payload['sub']}"

    return f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=customer_id_or_ip)
