from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification_service.dependencies import get_notifier
from services.notification_service.gateway import NotificationGateway
from shared.config.database import get_db
from shared.security.dependencies import verify_internal_api_key
from .admin import OrderAdminService
from .models import Order
from .pricing import breakdown_from_order
from .schemas import (
    ConsigneLineOut,
    ConsigneReceivedResponse,
    InvoiceBreakdown,
    OrderItemOut,
    OrderResponse,
    StatusHistoryOut,
    StatusUpdate,
)
from .service import InvalidTransitionError, OrderService

# Back-office only
router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
public_router = APIRouter()


@public_router.get("/health")
async def health_check():
    return {"service": "carparts-checkout", "status": "running"}


def to_response(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        number=order.number,
        customer_id=order.customer_id,
        status=order.status,
        payment_provider=order.payment_provider.value,
        payment_method=order.payment_method,
        payment_status=order.payment_status.value,
        shipping_method=order.shipping_method,
        currency=order.currency,
        breakdown=InvoiceBreakdown.model_validate(breakdown_from_order(order)),
        shipping_address=order.shipping_address,
        billing_address=order.billing_address,
        items=[OrderItemOut.model_validate(item) for item in order.items],
        status_history=[StatusHistoryOut.model_validate(entry) for entry in order.status_history],
        consigne_lines=[ConsigneLineOut.model_validate(line) for line in order.consigne_lines],
        created_at=order.created_at,
    )


async def _get_order_or_404(db: AsyncSession, order_id: int) -> Order:
    order = await OrderService.get_order(db, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: int, db: AsyncSession = Depends(get_db)):
    return to_response(await _get_order_or_404(db, order_id))


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_status(
    order_id: int,
    payload: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
):
    order = await _get_order_or_404(db, order_id)
    try:
        order = await OrderAdminService.update_status(db, notifier, order, payload.status, payload.actor)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return to_response(order)


@router.post("/{order_id}/consigne/received", response_model=ConsigneReceivedResponse)
async def consigne_received(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
):
    order = await _get_order_or_404(db, order_id)
    if not order.consigne_lines:
        raise HTTPException(status_code=400, detail="This order has no deposit to mark as received.")
    marked = await OrderAdminService.mark_consigne_received(db, notifier, order)
    return ConsigneReceivedResponse(order_id=order_id, lines_marked=marked)
