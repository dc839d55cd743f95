# checkout/repos/order_repo.py
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from checkout.data.models.order import OrderModel
from checkout.data.models.order_item import OrderItemModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def order_number_exists(self, order_number: str) -> bool:
        return self.db.execute(
            select(func.count(OrderModel.id)).where(OrderModel.order_number == order_number)
        ).scalar_one() > 0

    def add_order_with_items(self, order: OrderModel, items: list[OrderItemModel]) -> OrderModel:
        """
        Najpierw wiersz zamowienia (flush -> mamy id), dopiero potem pozycje.
        Commit robi wywolujacy, wszystko idzie w jednej transakcji.
        """
        self.db.add(order)
        self.db.flush()

        for item in items:
            item.order_id = order.id
            self.db.add(item)
        self.db.flush()
        return order

    def get_order(self, order_id: int) -> OrderModel | None:
        #pozycje i zwroty od razu, odpowiedz serializuje cale drzewo
        return self.db.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .options(selectinload(OrderModel.items).selectinload(OrderItemModel.return_requests))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_order_item(self, item_id: int) -> OrderItemModel | None:
        return self.db.get(OrderItemModel, item_id)

    def get_order_items(self, order_id: int) -> list[OrderItemModel]:
        return list(
            self.db.execute(
                select(OrderItemModel)
                .where(OrderItemModel.order_id == order_id)
                .order_by(OrderItemModel.id)
            ).scalars()
        )

    def add_cancelled_quantity(self, item_id: int, quantity: int, returned: int, now) -> int:
        #warunek na pozostala ilosc w tym samym UPDATE, powtorzone anulowanie nie przejdzie
        return self.db.execute(
            update(OrderItemModel)
            .where(
                OrderItemModel.id == item_id,
                OrderItemModel.quantity - OrderItemModel.cancelled_quantity - returned >= quantity,
            )
            .values(
                cancelled_quantity=OrderItemModel.cancelled_quantity + quantity,
                cancelled_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount

    def refresh(self, obj):
        self.db.refresh(obj)
        return obj

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
