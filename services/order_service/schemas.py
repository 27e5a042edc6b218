from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from .enums import OrderStatus


class OrderItemOut(BaseModel):
    product_id: int
    name: str
    sku: str
    unit_price_cents: int
    quantity: int
    line_total_cents: int

    class Config:
        from_attributes = True


class StatusHistoryOut(BaseModel):
    status: OrderStatus
    changed_at: datetime
    changed_by: str

    class Config:
        from_attributes = True


class ConsigneLineOut(BaseModel):
    product_id: int
    name: str
    quantity: int
    amount_cents: int
    delay_days: int
    start_at: Optional[datetime] = None
    due_at: Optional[datetime] = None
    received_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvoiceBreakdown(BaseModel):
    items_subtotal_cents: int
    client_discount_percent: int
    client_discount_cents: int
    promo_code: str
    promo_discount_cents: int
    items_total_after_discount_cents: int
    shipping_cost_cents: int
    total_cents: int

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    number: str
    customer_id: int
    status: OrderStatus
    payment_provider: str
    payment_method: str
    payment_status: str
    shipping_method: str
    currency: str
    breakdown: InvoiceBreakdown
    shipping_address: dict
    billing_address: dict
    items: List[OrderItemOut]
    status_history: List[StatusHistoryOut]
    consigne_lines: List[ConsigneLineOut]
    created_at: Optional[datetime] = None


class StatusUpdate(BaseModel):
    status: OrderStatus
    actor: str = "admin"


class ConsigneReceivedResponse(BaseModel):
    order_id: int
    lines_marked: int
