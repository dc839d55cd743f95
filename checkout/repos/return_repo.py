# checkout/repos/return_repo.py
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from checkout.data.models.return_request import ReturnRequestModel

#statusy ktore "zajmuja" ilosc pozycji
OPEN_RETURN_STATUSES = ("pending", "approved", "refunded")
#statusy po ktorych towar faktycznie wraca (zmieniaja sumy)
SETTLED_RETURN_STATUSES = ("approved", "refunded")


class ReturnRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_return(self, return_id: int) -> ReturnRequestModel | None:
        return self.db.get(ReturnRequestModel, return_id)

    def list_for_item(self, order_item_id: int) -> list[ReturnRequestModel]:
        return list(
            self.db.execute(
                select(ReturnRequestModel)
                .where(ReturnRequestModel.order_item_id == order_item_id)
                .order_by(ReturnRequestModel.id)
            ).scalars()
        )

    def requested_quantity(self, order_item_id: int) -> int:
        """Ilosc objeta otwartymi zwrotami (pending/approved/refunded)."""
        return self.db.execute(
            select(
                func.coalesce(
                    func.sum(
                        func.coalesce(
                            ReturnRequestModel.approved_quantity,
                            ReturnRequestModel.requested_quantity,
                        )
                    ),
                    0,
                )
            ).where(
                ReturnRequestModel.order_item_id == order_item_id,
                ReturnRequestModel.status.in_(OPEN_RETURN_STATUSES),
            )
        ).scalar_one()

    def returned_quantity(self, order_item_id: int) -> int:
        return self.db.execute(
            select(func.coalesce(func.sum(ReturnRequestModel.approved_quantity), 0)).where(
                ReturnRequestModel.order_item_id == order_item_id,
                ReturnRequestModel.status.in_(SETTLED_RETURN_STATUSES),
            )
        ).scalar_one()

    def has_pending(self, order_item_id: int) -> bool:
        return self.db.execute(
            select(func.count(ReturnRequestModel.id)).where(
                ReturnRequestModel.order_item_id == order_item_id,
                ReturnRequestModel.status == "pending",
            )
        ).scalar_one() > 0

    def add_return(self, request: ReturnRequestModel) -> ReturnRequestModel:
        self.db.add(request)
        self.db.flush()
        return request

    def transition(self, return_id: int, from_status: str, new_data: dict) -> int:
        return self.db.execute(
            update(ReturnRequestModel)
            .where(ReturnRequestModel.id == return_id, ReturnRequestModel.status == from_status)
            .values(**new_data)
            .execution_options(synchronize_session=False)
        ).rowcount

    def refresh(self, obj):
        self.db.refresh(obj)
        return obj

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
