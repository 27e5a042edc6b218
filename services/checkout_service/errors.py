class CheckoutError(Exception):
    """Base for checkout failures shown to the customer."""

    retryable = False

    def __init__(self, message: str, order_id=None):
        super().__init__(message)
        self.message = message
        self.order_id = order_id


class CheckoutValidationError(CheckoutError):
    pass


class InsufficientStockError(CheckoutValidationError):
    pass


class PromoReservationError(CheckoutError):
    retryable = True


class PaymentInitiationError(CheckoutError):
    retryable = True

    def __init__(self, message: str = "Unable to start the payment. Please try again.", order_id=None):
        super().__init__(message, order_id=order_id)


class OrderNumberCollisionError(CheckoutError):
    pass
