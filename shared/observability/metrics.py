from prometheus_client import Counter, Histogram

# Business Metrics
carparts_checkout_total = Counter(
    "carparts_checkout_total",
    "Checkout attempts that reached order creation or were rejected",
    ["status"]  # Labels: 'success', 'reused', 'rejected', 'failed'
)

carparts_checkout_duration_seconds = Histogram(
    "carparts_checkout_duration_seconds",
    "Checkout start duration in seconds"
)

carparts_order_rollback_total = Counter(
    "carparts_order_rollback_total",
    "Orders rolled back to cancelled with stock and promo released",
    ["reason"]  # Labels: 'promo_reservation', 'provider_error', 'payment_failed', 'admin'
)

carparts_payment_reconciliation_total = Counter(
    "carparts_payment_reconciliation_total",
    "Payment reconciliations by provider and outcome",
    ["provider", "outcome"]  # outcome: 'paid', 'failed', 'pending', 'noop', 'capture_failed', 'error'
)

carparts_promo_reservation_total = Counter(
    "carparts_promo_reservation_total",
    "Promo reservation attempts",
    ["outcome"]  # Labels: 'reserved', 'cap_reached', 'duplicate', 'inactive'
)

carparts_notification_total = Counter(
    "carparts_notification_total",
    "Transactional notifications by kind and outcome",
    ["kind", "outcome"]  # outcome: 'sent', 'failed', 'skipped'
)
