from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from checkout.data.database import Base


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)

    #snapshot z chwili zakupu, nigdy nie nadpisywany
    product_name = Column(String, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    variant = Column(String, nullable=True)

    #pochodne, przeliczane po anulowaniu / zwrocie
    total_price = Column(Numeric(10, 2), nullable=False)
    cancelled_quantity = Column(Integer, nullable=False, default=0)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    order = relationship("OrderModel", back_populates="items")
    return_requests = relationship(
        "ReturnRequestModel",
        back_populates="order_item",
        order_by="ReturnRequestModel.id",
    )
