from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer, APIKeyHeader
from .jwt_handler import verify_access_token
from .api_key import verify_api_key

# Tokens are issued by the storefront login flow, not by this service
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="account/login", auto_error=False)

api_key_header = APIKeyHeader(name="X-Internal-API-Key", auto_error=False)


async def get_current_customer(request: Request, token: str = Depends(oauth2_scheme)) -> int:
    """Validates the bearer JWT and returns the customer id (sub)."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        raise credentials_exception

    payload = verify_access_token(token)
    if payload is None:
        raise credentials_exception

    subject = payload.get("sub")
    try:
        customer_id = int(subject)
    except (TypeError, ValueError):
        raise credentials_exception

    # Read back by the rate limiter key function
    request.state.customer_id = customer_id
    return customer_id


async def verify_internal_api_key(api_key: str = Depends(api_key_header)) -> bool:
    """Guards back-office endpoints (order status changes, deposit returns)."""
    if not verify_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing X-Internal-API-Key header"
        )
    return True
