"""
Checkout pricing.

Pure functions over integer cents. The order of the steps is part of the
contract: the customer discount applies to the items subtotal, the promo
applies to what is left after the customer discount, and shipping is added
last. Invoices and order pages rebuild the same breakdown from the stored
order fields through ``breakdown_from_order`` and never re-price the catalog.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Sequence

MAX_DISCOUNT_PERCENT = 90


@dataclass(frozen=True)
class PromoTerms:
    code: str
    discount_type: str  # "percent" | "fixed"
    value: int  # percent points, or cents for "fixed"


@dataclass(frozen=True)
class PricingBreakdown:
    items_subtotal_cents: int
    shipping_cost_cents: int
    client_discount_percent: int
    client_discount_cents: int
    promo_code: str
    promo_discount_cents: int
    items_total_after_discount_cents: int
    total_cents: int

    @property
    def items_total_after_client_cents(self) -> int:
        return self.items_subtotal_cents - self.client_discount_cents


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    name: str
    sku: str
    unit_price_cents: int
    quantity: int
    line_total_cents: int


def _to_decimal(value) -> Decimal:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return Decimal(0)
    return number if number.is_finite() else Decimal(0)


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def clamp_cents(value) -> int:
    return max(0, _round_half_up(_to_decimal(value)))


def clamp_percent(value) -> Decimal:
    return min(Decimal(MAX_DISCOUNT_PERCENT), max(Decimal(0), _to_decimal(value)))


def _percent_of(amount_cents: int, percent: Decimal) -> int:
    return _round_half_up(Decimal(amount_cents) * percent / 100)


def compute_client_discount_cents(items_subtotal_cents, client_discount_percent) -> int:
    subtotal = clamp_cents(items_subtotal_cents)
    pct = clamp_percent(client_discount_percent)
    if not subtotal or not pct:
        return 0
    return min(subtotal, _percent_of(subtotal, pct))


def compute_promo_discount_cents(amount_after_client_cents, promo: Optional[PromoTerms]) -> int:
    base = clamp_cents(amount_after_client_cents)
    if promo is None or not promo.code:
        return 0

    if promo.discount_type == "fixed":
        return min(base, clamp_cents(promo.value))

    pct = clamp_percent(promo.value)
    if not pct:
        return 0
    return min(base, _percent_of(base, pct))


def compute_pricing(
    items_subtotal_cents,
    shipping_cost_cents,
    client_discount_percent=0,
    promo: Optional[PromoTerms] = None,
) -> PricingBreakdown:
    subtotal = clamp_cents(items_subtotal_cents)
    shipping = clamp_cents(shipping_cost_cents)

    client_discount = compute_client_discount_cents(subtotal, client_discount_percent)
    after_client = max(0, subtotal - client_discount)

    promo_discount = compute_promo_discount_cents(after_client, promo)
    after_promo = max(0, after_client - promo_discount)

    return PricingBreakdown(
        items_subtotal_cents=subtotal,
        shipping_cost_cents=shipping,
        client_discount_percent=_round_half_up(clamp_percent(client_discount_percent)),
        client_discount_cents=client_discount,
        promo_code=promo.code if promo is not None and promo.code else "",
        promo_discount_cents=promo_discount,
        items_total_after_discount_cents=after_promo,
        total_cents=after_promo + shipping,
    )


def breakdown_from_order(order) -> PricingBreakdown:
    """Invoice view of a placed order, read only from its stored cents fields."""
    return PricingBreakdown(
        items_subtotal_cents=order.items_subtotal_cents,
        shipping_cost_cents=order.shipping_cost_cents,
        client_discount_percent=order.client_discount_percent,
        client_discount_cents=order.client_discount_cents,
        promo_code=order.promo_code or "",
        promo_discount_cents=order.promo_discount_cents,
        items_total_after_discount_cents=order.items_total_after_discount_cents,
        total_cents=order.total_cents,
    )


def allocate_discount(lines: Sequence[PricedLine], target_total_cents: int) -> list[PricedLine]:
    """
    Scales unit prices so the lines sum to target_total_cents.

    Used for providers that want itemised lines matching the charged amount.
    Every unit is floored, then the missing cents go to the units with the
    largest fractional remainder; units that end up at the same price are
    regrouped into one line.
    """
    lines = [line for line in lines if line is not None]
    original = sum(line.line_total_cents for line in lines)
    target = max(0, int(target_total_cents or 0))

    if not lines or original <= 0 or target >= original:
        return list(lines)

    ratio = Decimal(target) / Decimal(original)
    units = []
    for line in lines:
        for _ in range(max(1, line.quantity)):
            raw = Decimal(line.unit_price_cents) * ratio
            floored = int(raw)
            units.append([line, floored, raw - floored])

    diff = target - sum(unit[1] for unit in units)
    if diff > 0:
        units.sort(key=lambda unit: unit[2], reverse=True)
        for unit in units[:diff]:
            unit[1] += 1

    grouped: dict[tuple, PricedLine] = {}
    for line, price, _ in units:
        key = (line.product_id, line.sku, price, line.name)
        existing = grouped.get(key)
        if existing is None:
            grouped[key] = PricedLine(line.product_id, line.name, line.sku, price, 1, price)
        else:
            grouped[key] = PricedLine(
                line.product_id, line.name, line.sku, price,
                existing.quantity + 1, existing.line_total_cents + price,
            )
    return list(grouped.values())
