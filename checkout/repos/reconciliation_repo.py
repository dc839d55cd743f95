# checkout/repos/reconciliation_repo.py
from sqlalchemy import select
from sqlalchemy.orm import Session

from checkout.data.models.reconciliation_event import ReconciliationEventModel


class ReconciliationRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_event(self, event: ReconciliationEventModel) -> ReconciliationEventModel:
        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)
        return event

    def get_event(self, event_id: int) -> ReconciliationEventModel | None:
        return self.db.get(ReconciliationEventModel, event_id)

    def list_open(self, kind: str, limit: int = 100) -> list[ReconciliationEventModel]:
        return list(
            self.db.execute(
                select(ReconciliationEventModel)
                .where(
                    ReconciliationEventModel.kind == kind,
                    ReconciliationEventModel.status == "open",
                )
                .order_by(ReconciliationEventModel.id)
                .limit(limit)
            ).scalars()
        )

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
