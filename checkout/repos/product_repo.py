# checkout/repos/product_repo.py
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from checkout.data.models.product import ProductModel


class ProductRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: int) -> ProductModel | None:
        return self.db.get(ProductModel, product_id)

    def get_products(self, product_ids) -> dict:
        ids = set(product_ids)
        if not ids:
            return {}
        rows = self.db.query(ProductModel).filter(ProductModel.id.in_(ids)).all()
        return {p.id: p for p in rows}

    def decrement_stock(self, product_id: int, quantity: int) -> int:
        #delta liczona w bazie, bez read-modify-write w aplikacji
        #UPDATE products SET stock = stock - 2 WHERE id = 1 AND stock >= 2
        return self.db.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id, ProductModel.stock >= quantity)
            .values(stock=ProductModel.stock - quantity)
            .execution_options(synchronize_session=False)
        ).rowcount

    def take_stock(self, product_id: int, quantity: int, attempts: int = 3) -> int | None:
        """
        Zdejmuje quantity ze stanu, nigdy ponizej zera.
        Zwraca ile zabraklo (0 = stan wystarczyl), None gdy produktu nie ma.
        """
        for _ in range(attempts):
            if self.decrement_stock(product_id, quantity):
                return 0

            stock = self.db.execute(
                select(ProductModel.stock).where(ProductModel.id == product_id)
            ).scalar_one_or_none()
            if stock is None:
                return None

            #zerujemy tylko jesli nikt w miedzyczasie nie zmienil stanu
            clamped = self.db.execute(
                update(ProductModel)
                .where(ProductModel.id == product_id, ProductModel.stock == stock, ProductModel.stock < quantity)
                .values(stock=0)
                .execution_options(synchronize_session=False)
            ).rowcount
            if clamped:
                return quantity - stock

        raise RuntimeError(f"Stan produktu {product_id} zmienia sie zbyt czesto")

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
