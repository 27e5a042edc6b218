import enum


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentProvider(str, enum.Enum):
    MOLLIE = "mollie"
    SCALAPAY = "scalapay"


class NotificationKind(str, enum.Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    CONSIGNE_START = "consigne_start"
    CONSIGNE_RECEIVED = "consigne_received"
    CONSIGNE_REMINDER_SOON = "consigne_reminder_soon"
    CONSIGNE_OVERDUE = "consigne_overdue"


class AccountType(str, enum.Enum):
    INDIVIDUAL = "individual"
    PRO = "pro"


def enum_values(enum_cls):
    """values_callable for SQLAlchemy Enum columns: persist the value, not the name."""
    return [member.value for member in enum_cls]
