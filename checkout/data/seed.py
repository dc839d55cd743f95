# checkout/data/seed.py
from decimal import Decimal

from checkout.data.database import Base, SessionLocal, engine
from checkout.data.models import ProductModel
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

PRODUCTS = [
    {"name": "Cotton Kurta", "price": Decimal("799.00"), "stock": 40, "variant_options": ["S", "M", "L", "XL"]},
    {"name": "Linen Shirt", "price": Decimal("1299.00"), "stock": 25, "variant_options": ["M", "L"]},
    {"name": "Silk Dupatta", "price": Decimal("549.50"), "stock": 60, "variant_options": None},
    {"name": "Denim Jacket", "price": Decimal("2499.00"), "stock": 0, "variant_options": ["M", "L"]},
]


def seed():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        # not forcing: only seed if empty
        if db.query(ProductModel).first():
            return
        for data in PRODUCTS:
            db.add(ProductModel(is_active=True, **data))
        db.commit()
        logger.info(f"Seeded {len(PRODUCTS)} products")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
