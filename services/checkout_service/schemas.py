from typing import List, Optional

from pydantic import BaseModel, Field


class CartLine(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)


class AddressIn(BaseModel):
    label: str = ""
    full_name: str = ""
    phone: str = ""
    line1: str = ""
    line2: str = ""
    postal_code: str = ""
    city: str = ""
    country: str = "France"


class VehicleIn(BaseModel):
    identifier_type: str = "plate"  # "plate" | "vin"
    plate: str = ""
    vin: str = ""
    consent: bool = False


class CheckoutRequest(BaseModel):
    cart_session_id: str = Field(min_length=1, max_length=64)
    items: List[CartLine] = Field(min_length=1)
    shipping_method: str = "home"
    shipping_address: AddressIn
    billing_address: Optional[AddressIn] = None
    billing_same_as_shipping: bool = True
    payment_method: str = "card"
    accept_terms: bool = False
    promo_code: Optional[str] = None
    vehicle: Optional[VehicleIn] = None


class QuoteRequest(BaseModel):
    items: List[CartLine] = Field(min_length=1)
    shipping_method: str = "home"
    promo_code: Optional[str] = None


class ShippingMethodOut(BaseModel):
    id: str
    title: str
    price_cents: int

    class Config:
        from_attributes = True


class PricingOut(BaseModel):
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


class QuoteResponse(BaseModel):
    pricing: PricingOut
    shipping_methods: List[ShippingMethodOut]
    promo_error: str = ""


class CheckoutResponse(BaseModel):
    order_id: int
    order_number: str
    status: str
    payment_status: str
    redirect_url: str
    reused: bool = False
