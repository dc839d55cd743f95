from sqlalchemy import Column, Integer, String, DateTime, Numeric
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from checkout.data.database import Base


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_number = Column(String, nullable=False, unique=True)
    owner_id = Column(Integer, nullable=True, index=True)  # NULL = gosc (tylko COD)

    status = Column(String, nullable=False, default="pending")  # pending, paid, processing, shipped, delivered, cancelled
    payment_method = Column(String, nullable=False)  # cod, upi, card
    payment_status = Column(String, nullable=False, default="pending")  # pending, completed, failed
    payment_reference = Column(String, nullable=True)

    subtotal = Column(Numeric(10, 2), nullable=False)
    shipping = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False)

    #kopia adresu, zamowienie nie zalezy od pozniejszych zmian w ksiazce adresowej
    shipping_address_id = Column(Integer, nullable=True)
    shipping_full_name = Column(String, nullable=False)
    shipping_line1 = Column(String, nullable=False)
    shipping_city = Column(String, nullable=False)
    shipping_state = Column(String, nullable=False)
    shipping_zip_code = Column(String(6), nullable=False)
    shipping_phone = Column(String(10), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=lambda: datetime.now(timezone.utc))
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        order_by="OrderItemModel.id",
    )
