from .setup import setup_observability, configure_logging
from .metrics import (
    carparts_checkout_total,
    carparts_checkout_duration_seconds,
    carparts_order_rollback_total,
    carparts_payment_reconciliation_total,
    carparts_promo_reservation_total,
    carparts_notification_total,
)
