from types import SimpleNamespace

from services.order_service.pricing import (
    PricedLine,
    PromoTerms,
    allocate_discount,
    breakdown_from_order,
    compute_pricing,
)


def test_customer_discount_then_promo_then_shipping():
    result = compute_pricing(10000, 500, client_discount_percent=10, promo=PromoTerms("SAVE5", "percent", 5))

    assert result.client_discount_cents == 1000
    assert result.items_total_after_client_cents == 9000
    assert result.promo_discount_cents == 450
    assert result.items_total_after_discount_cents == 8550
    assert result.total_cents == 9050


def test_fixed_promo_never_exceeds_remaining_amount():
    result = compute_pricing(3000, 0, client_discount_percent=50, promo=PromoTerms("BIG", "fixed", 5000))

    assert result.client_discount_cents == 1500
    assert result.promo_discount_cents == 1500
    assert result.items_total_after_discount_cents == 0
    assert result.total_cents == 0


def test_percentages_are_clamped_to_ninety():
    result = compute_pricing(10000, 0, client_discount_percent=150)

    assert result.client_discount_percent == 90
    assert result.client_discount_cents == 9000


def test_invalid_inputs_are_treated_as_zero():
    result = compute_pricing("not a number", -200, client_discount_percent=None)

    assert result.items_subtotal_cents == 0
    assert result.shipping_cost_cents == 0
    assert result.total_cents == 0


def test_half_cents_round_half_up():
    # 5% of 1010 = 50.5
    result = compute_pricing(1010, 0, promo=PromoTerms("HALF", "percent", 5))
    assert result.promo_discount_cents == 51


def test_promo_without_code_is_ignored():
    result = compute_pricing(10000, 0, promo=PromoTerms("", "percent", 20))
    assert result.promo_discount_cents == 0
    assert result.promo_code == ""


def test_breakdown_is_rebuilt_from_stored_fields_only():
    order = SimpleNamespace(
        items_subtotal_cents=10000,
        shipping_cost_cents=500,
        client_discount_percent=10,
        client_discount_cents=1000,
        promo_code="SAVE5",
        promo_discount_cents=450,
        items_total_after_discount_cents=8550,
        total_cents=9050,
    )

    breakdown = breakdown_from_order(order)

    assert breakdown.total_cents == 9050
    assert breakdown.promo_code == "SAVE5"
    assert breakdown.items_total_after_client_cents == 9000


def test_allocate_discount_matches_target_total():
    lines = [
        PricedLine(1, "Brake pads", "BP", 3333, 3, 9999),
        PricedLine(2, "Filter", "FI", 1001, 1, 1001),
    ]

    allocated = allocate_discount(lines, 9000)

    assert sum(line.line_total_cents for line in allocated) == 9000
    assert sum(line.quantity for line in allocated) == 4
    for line in allocated:
        assert line.line_total_cents == line.unit_price_cents * line.quantity


def test_allocate_discount_keeps_lines_when_no_discount():
    lines = [PricedLine(1, "Brake pads", "BP", 1000, 2, 2000)]
    assert allocate_discount(lines, 2000) == lines
    assert allocate_discount([], 0) == []
