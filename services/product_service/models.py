from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from shared.config.database import Base


class ShippingClass(Base):
    __tablename__ = "shipping_classes"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    home_delivery_price_cents = Column(Integer, nullable=False, default=0)
    is_default = Column(Boolean, nullable=False, default=False)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    sku = Column(String, nullable=False, default="")
    price_cents = Column(Integer, nullable=False)
    # NULL means the catalog does not track a quantity for this part
    stock_qty = Column(Integer, nullable=True)
    in_stock = Column(Boolean, nullable=False, default=True)
    shipping_class_id = Column(Integer, ForeignKey("shipping_classes.id"), nullable=True)

    consigne_enabled = Column(Boolean, nullable=False, default=False)
    consigne_amount_cents = Column(Integer, nullable=False, default=0)
    consigne_delay_days = Column(Integer, nullable=False, default=30)

    @property
    def tracks_stock(self) -> bool:
        return self.stock_qty is not None

    @property
    def has_consigne(self) -> bool:
        return bool(self.consigne_enabled and self.consigne_amount_cents > 0)
