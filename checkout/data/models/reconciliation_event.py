from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, JSON, String

from checkout.data.database import Base


class ReconciliationEventModel(Base):
    __tablename__ = "reconciliation_events"

    id = Column(Integer, primary_key=True)
    kind = Column(String, nullable=False, index=True)  # stock_decrement, payment_without_order, order_number_exhausted
    status = Column(String, nullable=False, default="open", index=True)  # open, resolved

    order_id = Column(Integer, nullable=True)
    payment_attempt_id = Column(Integer, nullable=True)
    payload = Column(JSON, nullable=False)

    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    resolved_at = Column(DateTime(timezone=True), nullable=True)
