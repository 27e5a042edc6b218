import json
from typing import Optional
from urllib.parse import parse_qs

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.config.settings import get_settings
from shared.security import get_current_customer, limiter
from .dependencies import get_orchestrator
from .errors import (
    CheckoutError,
    CheckoutValidationError,
    InsufficientStockError,
    PaymentInitiationError,
    PromoReservationError,
)
from .schemas import CheckoutRequest, CheckoutResponse, PricingOut, QuoteRequest, QuoteResponse, ShippingMethodOut
from .service import CheckoutOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter()


def _checkout_rate_limit() -> str:
    return get_settings().checkout_rate_limit


def to_http_error(exc: CheckoutError) -> HTTPException:
    if isinstance(exc, InsufficientStockError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, CheckoutValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, PromoReservationError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, PaymentInitiationError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(
        status_code=code,
        detail={"message": exc.message, "retryable": exc.retryable, "order_id": exc.order_id},
    )


async def _webhook_payment_id(request: Request) -> str:
    from_query = request.query_params.get("id")
    if from_query:
        return from_query

    body = await request.body()
    if "application/json" in request.headers.get("content-type", ""):
        try:
            data = json.loads(body or b"{}")
        except ValueError:
            return ""
        if not isinstance(data, dict):
            return ""
        return str(data.get("id") or data.get("token") or "")

    # Mollie posts "id=tr_xxx" form-encoded
    parsed = parse_qs(body.decode("utf-8", errors="ignore"))
    return (parsed.get("id") or [""])[0]


@router.post("/payment", response_model=CheckoutResponse)
@limiter.limit(_checkout_rate_limit)
async def start_checkout(
    request: Request,
    payload: CheckoutRequest,
    customer_id: int = Depends(get_current_customer),
    db: AsyncSession = Depends(get_db),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    try:
        result = await orchestrator.start_checkout(db, customer_id, payload)
    except CheckoutError as exc:
        logger.info("checkout_rejected", customer_id=customer_id, error=exc.message, kind=type(exc).__name__)
        raise to_http_error(exc)

    order = result.order
    return CheckoutResponse(
        order_id=order.id,
        order_number=order.number,
        status=order.status.value,
        payment_status=order.payment_status.value,
        redirect_url=result.redirect_url,
        reused=result.reused,
    )


@router.post("/quote", response_model=QuoteResponse)
async def quote(
    payload: QuoteRequest,
    customer_id: int = Depends(get_current_customer),
    db: AsyncSession = Depends(get_db),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    try:
        result = await orchestrator.quote(db, customer_id, payload)
    except CheckoutError as exc:
        raise to_http_error(exc)

    return QuoteResponse(
        pricing=PricingOut.model_validate(result.pricing),
        shipping_methods=[ShippingMethodOut.model_validate(m) for m in result.shipping_methods],
        promo_error=result.promo_error,
    )


@router.get("/payment/return")
async def payment_return(
    order_id: int = Query(..., alias="orderId"),
    cancel: Optional[str] = None,
    token: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    _, url = await orchestrator.handle_return(
        db, order_id, token=token, cancelled=(cancel or "").strip() == "1"
    )
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


@router.post("/payment/webhook", response_class=PlainTextResponse)
async def payment_webhook(
    request: Request,
    token: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    # Always acknowledged: an error status only makes the provider retry
    payment_id = await _webhook_payment_id(request)
    try:
        await orchestrator.handle_webhook(db, payment_id, token=token)
    except Exception:
        await db.rollback()
        logger.exception("payment_webhook_failed", remote_id=payment_id)
    return PlainTextResponse("OK")
