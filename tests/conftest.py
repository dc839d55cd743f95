import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PAYMENT_GATEWAY"] = "fake"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "false"
os.environ["INTENT_WAIT_SECONDS"] = "2"

from decimal import Decimal  # noqa: E402

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from checkout.data.database import Base, SessionLocal, engine, get_db  # noqa: E402
from checkout.data.models import AddressModel, ProductModel  # noqa: E402
from checkout.data.redis_client import get_redis  # noqa: E402
from checkout.main import app  # noqa: E402
from checkout.services.payment_gateway import FakeGateway, get_gateway  # noqa: E402

ADDRESS = {
    "full_name": "Asha Verma",
    "line1": "12 MG Road",
    "city": "Pune",
    "state": "Maharashtra",
    "zip_code": "411001",
    "phone": "+91 98765 43210",
}


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def client(db, redis_client, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_redis] = lambda: redis_client
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def products(db):
    items = [
        ProductModel(name="Cotton Kurta", price=Decimal("799.00"), stock=10, variant_options=["S", "M", "L"]),
        ProductModel(name="Silk Dupatta", price=Decimal("549.50"), stock=5, variant_options=None),
        ProductModel(name="Old Saree", price=Decimal("999.00"), stock=3, is_active=False),
    ]
    db.add_all(items)
    db.commit()
    return items


@pytest.fixture()
def address(db):
    row = AddressModel(owner_id=1, is_default=True, **{**ADDRESS, "phone": "9876543210"})
    db.add(row)
    db.commit()
    return row
