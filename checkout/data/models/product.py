from sqlalchemy import Boolean, Column, Integer, JSON, Numeric, String

from checkout.data.database import Base


class ProductModel(Base):
    """Produkt z katalogu. Serwis tylko czyta produkty i zmniejsza stan magazynu."""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    variant_options = Column(JSON, nullable=True)  # np. ["S", "M", "L"]
