import hashlib
import hmac
import os
import secrets
import warnings
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt

_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "").strip()
if not _SECRET_KEY:
    warnings.warn(
        "JWT_SECRET_KEY is not set. Customer tokens are signed with an insecure "
        "development key. Set this env var in production!",
        stacklevel=2,
    )
    _SECRET_KEY = "insecure-dev-secret-change-me"

SECRET_KEY: str = _SECRET_KEY
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60


def create_access_token(customer_id: int, expires_delta: timedelta | None = None) -> str:
    """Issues a customer token; the storefront login flow owns when this is called."""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return jwt.encode({"sub": str(customer_id), "exp": expire}, SECRET_KEY, algorithm=ALGORITHM)


def verify_access_token(token: str) -> dict | None:
    """Decodes and verifies the JWT. Returns payload if valid, None if invalid/expired."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


def sign_order_reference(order_id: int) -> str:
    """Token carried by the provider return URL; binds the redirect to one order."""
    message = f"order-return:{order_id}".encode("utf-8")
    return hmac.new(SECRET_KEY.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_order_reference(order_id: int, token: str | None) -> bool:
    if not token:
        return False
    return secrets.compare_digest(str(token), sign_order_reference(order_id))
