from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, JSON, Numeric, String

from checkout.data.database import Base


class PaymentAttemptModel(Base):
    """Platnosc przez bramke: INTENT_CREATED -> CLIENT_AUTHORIZED -> VERIFIED | FAILED."""

    __tablename__ = "payment_attempts"

    id = Column(Integer, primary_key=True)
    session_id = Column(String, nullable=False, index=True)
    owner_id = Column(Integer, nullable=False, index=True)

    gateway_order_id = Column(String, nullable=False, unique=True)
    gateway_payment_id = Column(String, nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    status = Column(String, nullable=False, default="INTENT_CREATED")
    failure_reason = Column(String, nullable=True)

    #intent + adres + metoda, to co zostanie zapisane jako zamowienie
    checkout_snapshot = Column(JSON, nullable=False)
    order_id = Column(Integer, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=lambda: datetime.now(timezone.utc))
