# checkout/repos/payment_repo.py
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from checkout.data.models.payment_attempt import PaymentAttemptModel


class PaymentRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_attempt(self, attempt: PaymentAttemptModel) -> PaymentAttemptModel:
        self.db.add(attempt)
        self.db.commit()
        self.db.refresh(attempt)
        return attempt

    def get_by_gateway_order_id(self, gateway_order_id: str) -> PaymentAttemptModel | None:
        return self.db.execute(
            select(PaymentAttemptModel).where(PaymentAttemptModel.gateway_order_id == gateway_order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def transition(self, attempt_id: int, old_version: int, new_data: dict, from_statuses=None) -> int:
        # Optimistic locking
        # np w bazie update set version 3 where id 1 and version 2
        data = dict(new_data)
        data["version"] = old_version + 1
        conditions = [
            PaymentAttemptModel.id == attempt_id,
            PaymentAttemptModel.version == old_version,
        ]
        if from_statuses:
            conditions.append(PaymentAttemptModel.status.in_(from_statuses))
        return self.db.execute(
            update(PaymentAttemptModel)
            .where(*conditions)
            .values(**data)
            .execution_options(synchronize_session=False)
        ).rowcount

    def find_verified(self, session_id: str) -> PaymentAttemptModel | None:
        return self.db.execute(
            select(PaymentAttemptModel)
            .where(
                PaymentAttemptModel.session_id == session_id,
                PaymentAttemptModel.status == "VERIFIED",
            )
            .limit(1)
        ).scalar_one_or_none()

    def list_stale(self, statuses, created_before: datetime) -> list[PaymentAttemptModel]:
        return list(
            self.db.execute(
                select(PaymentAttemptModel).where(
                    PaymentAttemptModel.status.in_(statuses),
                    PaymentAttemptModel.created_at < created_before,
                )
            ).scalars()
        )

    def refresh(self, obj):
        self.db.refresh(obj)
        return obj

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
