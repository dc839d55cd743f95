"""Koszyk goscia (redis) i zalogowanego uzytkownika (baza)."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from checkout.data.database import Base
from checkout.data.models import CartItemModel, CartModel, ProductModel
from checkout.domain.errors import CheckoutValidationError, NotFoundError, UnavailableError
from checkout.repos.cart_repo import CartRepo
from checkout.services.cart_store import GuestCartStore, PersistedCartStore, cart_store_for


class TestGuestCartStore:
    def test_same_product_and_variant_is_one_row(self, redis_client):
        store = GuestCartStore(redis_client, "guest-1")

        store.add_item(1, 2, "M")
        items = store.add_item(1, 1, "M")

        assert len(items) == 1
        assert items[0].quantity == 3
        assert items[0].variant == "M"

    def test_other_variant_is_separate_row(self, redis_client):
        store = GuestCartStore(redis_client, "guest-1")

        store.add_item(1, 1, "M")
        items = store.add_item(1, 1, "L")

        assert sorted(i.variant for i in items) == ["L", "M"]

    def test_state_is_saved_after_every_change(self, redis_client):
        GuestCartStore(redis_client, "guest-1").add_item(2, 4)

        items = GuestCartStore(redis_client, "guest-1").list()
        assert [(i.product_id, i.quantity) for i in items] == [(2, 4)]
        assert redis_client.ttl("guest-cart:guest-1") > 0

    def test_update_to_zero_removes_item(self, redis_client):
        store = GuestCartStore(redis_client, "guest-1")
        item = store.add_item(1, 2)[0]

        assert store.update_qty(item.id, 0) == []
        assert redis_client.get("guest-cart:guest-1") is None

    def test_update_unknown_item(self, redis_client):
        store = GuestCartStore(redis_client, "guest-1")
        store.add_item(1, 1)

        with pytest.raises(NotFoundError):
            store.update_qty("missing", 2)

    def test_quantity_must_be_positive(self, redis_client):
        with pytest.raises(CheckoutValidationError):
            GuestCartStore(redis_client, "guest-1").add_item(1, 0)

    def test_guest_token_required(self, redis_client):
        with pytest.raises(CheckoutValidationError):
            GuestCartStore(redis_client, "")


class TestPersistedCartStore:
    def test_repeated_add_increments_single_row(self, db, products):
        store = PersistedCartStore(db, owner_id=1)
        kurta = products[0]

        store.add_item(kurta.id, 2, "M")
        items = store.add_item(kurta.id, 1, "M")

        assert len(items) == 1
        assert items[0].quantity == 3
        assert items[0].unit_price == kurta.price

    def test_no_variant_dedup(self, db, products):
        store = PersistedCartStore(db, owner_id=1)
        dupatta = products[1]

        for _ in range(3):
            items = store.add_item(dupatta.id, 1)

        assert len(items) == 1
        assert items[0].quantity == 3
        assert items[0].variant is None

    def test_version_bumped_on_every_change(self, db, products):
        store = PersistedCartStore(db, owner_id=1)
        before = store.snapshot().version

        store.add_item(products[0].id, 1, "S")
        store.add_item(products[1].id, 1)

        assert store.snapshot().version == before + 2

    def test_inactive_product_rejected(self, db, products):
        with pytest.raises(UnavailableError):
            PersistedCartStore(db, owner_id=1).add_item(products[2].id, 1)

    def test_update_and_remove(self, db, products):
        store = PersistedCartStore(db, owner_id=1)
        item = store.add_item(products[0].id, 1, "S")[0]

        assert store.update_qty(item.id, 5)[0].quantity == 5
        assert store.update_qty(item.id, -1) == []

    def test_unknown_item_id(self, db, products):
        store = PersistedCartStore(db, owner_id=1)

        with pytest.raises(NotFoundError):
            store.update_qty("abc", 2)

    def test_snapshot_subtotal(self, db, products):
        store = PersistedCartStore(db, owner_id=1)
        store.add_item(products[0].id, 2, "M")
        store.add_item(products[1].id, 1)

        assert str(store.snapshot().subtotal) == "2147.50"


def test_store_selection(db, redis_client):
    assert isinstance(cart_store_for(db, redis_client, 5, None), PersistedCartStore)
    assert isinstance(cart_store_for(db, redis_client, None, "tok"), GuestCartStore)


@pytest.fixture()
def file_sessions(tmp_path):
    """Osobna baza w pliku, kazdy watek ma wlasne polaczenie jak na produkcji."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'carts.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        #sqlite blokuje zapis na cala transakcje, jak SELECT ... FOR UPDATE
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    with factory() as session:
        product = ProductModel(name="Cotton Kurta", price=Decimal("799.00"), stock=10)
        session.add(product)
        session.commit()
        product_id = product.id

    yield factory, product_id
    engine.dispose()


class TestConcurrentAdds:
    def test_parallel_adds_of_same_item_are_summed(self, file_sessions):
        factory, product_id = file_sessions

        def add_one(_):
            with factory() as session:
                PersistedCartStore(session, owner_id=1).add_item(product_id, 1, "M")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(add_one, range(8)))

        with factory() as session:
            assert session.query(CartModel).filter_by(owner_id=1).count() == 1
            item = session.query(CartItemModel).one()
            assert item.quantity == 8
            assert item.variant == "M"
            assert session.query(CartModel).one().version == 1 + 8

    def test_insert_race_falls_back_to_increment(self, db, products, monkeypatch):
        store = PersistedCartStore(db, owner_id=1)
        kurta = products[0]
        store.add_item(kurta.id, 2, "M")

        original = CartRepo._increment
        calls = []

        def stale_increment(self, *args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                #wiersza jeszcze nie widac, drugi request wstawia go w tej chwili
                return 0
            return original(self, *args, **kwargs)

        monkeypatch.setattr(CartRepo, "_increment", stale_increment)

        items = store.add_item(kurta.id, 3, "M")

        assert len(calls) == 2
        assert len(items) == 1
        assert items[0].quantity == 5
