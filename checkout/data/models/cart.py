#checkout/data/models/cart.py
from sqlalchemy import Column, Integer
from sqlalchemy.orm import relationship

from checkout.data.database import Base


class CartModel(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, nullable=False, unique=True, index=True)

    #podbijana przy kazdej zmianie, klient porownuje ze swoim optymistycznym widokiem
    version = Column(Integer, nullable=False, default=1)

    items = relationship(
        "CartItemModel",
        back_populates="cart",
        cascade="all, delete-orphan",
    )
