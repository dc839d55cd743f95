from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from checkout.celery_worker import celery_app
from checkout.data.models import PaymentAttemptModel, ProductModel, ReconciliationEventModel
from checkout.tasks import expire, reconcile


@pytest.fixture()
def task_db(db, monkeypatch):
    #taski otwieraja wlasna sesje, podmieniamy ja na testowa
    monkeypatch.setattr(reconcile, "SessionLocal", lambda: db)
    monkeypatch.setattr(expire, "SessionLocal", lambda: db)
    return db


def test_beat_schedule_registered():
    tasks = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
    assert tasks == {
        "checkout.tasks.expire.expire_payment_attempts_task",
        "checkout.tasks.reconcile.retry_stock_decrements_task",
    }


def test_retry_stock_decrements(task_db, products):
    kurta = products[0]
    task_db.add(
        ReconciliationEventModel(
            kind="stock_decrement",
            order_id=1,
            payload={"product_id": kurta.id, "quantity": 2},
        )
    )
    task_db.add(
        ReconciliationEventModel(
            kind="stock_decrement",
            order_id=1,
            payload={"product_id": 9999, "quantity": 1},
        )
    )
    task_db.commit()

    assert reconcile.retry_stock_decrements_task() == 1

    assert task_db.get(ProductModel, kurta.id).stock == 8
    events = task_db.query(ReconciliationEventModel).order_by(ReconciliationEventModel.id).all()
    assert [e.status for e in events] == ["resolved", "open"]
    assert events[1].attempts == 1
    assert "9999" in events[1].last_error


def test_expire_payment_attempts(task_db, redis_client, gateway, monkeypatch):
    monkeypatch.setattr(expire, "get_redis", lambda: redis_client)
    monkeypatch.setattr(expire, "get_gateway", lambda: gateway)

    for gateway_order_id, age in (("order_old", timedelta(hours=1)), ("order_new", timedelta(seconds=5))):
        task_db.add(
            PaymentAttemptModel(
                session_id=f"s-{gateway_order_id}",
                owner_id=1,
                gateway_order_id=gateway_order_id,
                amount=Decimal("549.50"),
                currency="INR",
                status="INTENT_CREATED",
                checkout_snapshot={},
                created_at=datetime.now(timezone.utc) - age,
            )
        )
    task_db.commit()

    assert expire.expire_payment_attempts_task() == 1

    statuses = {a.gateway_order_id: a.status for a in task_db.query(PaymentAttemptModel).all()}
    assert statuses == {"order_old": "FAILED", "order_new": "INTENT_CREATED"}
