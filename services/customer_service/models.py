from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String

from shared.clock import utcnow
from shared.config.database import Base
from services.order_service.enums import AccountType, enum_values


class Customer(Base):
    """Read-only view of the storefront account; registration and login live elsewhere."""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(120), nullable=False, default="")
    last_name = Column(String(120), nullable=False, default="")
    phone = Column(String(40), nullable=False, default="")
    account_type = Column(
        Enum(AccountType, native_enum=False, values_callable=enum_values, length=20),
        nullable=False,
        default=AccountType.INDIVIDUAL,
    )
    discount_percent = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
