import pytest
from pydantic import ValidationError

from sqlalchemy.exc import IntegrityError

from checkout.data.models.address import AddressModel
from checkout.domain.errors import CheckoutValidationError, ConflictError, NotFoundError
from checkout.domain.schemas import AddressIn, AddressSnapshot, AddressUpdate
from checkout.services import address_service
from checkout.services.address_service import AddressService
from checkout.services.checkout_session import CheckoutSession
from tests.conftest import ADDRESS


def _address(**overrides):
    return AddressIn(**{**ADDRESS, **overrides})


class TestAddressValidation:
    def test_five_digit_zip_rejected(self):
        with pytest.raises(ValidationError):
            AddressSnapshot(**{**ADDRESS, "zip_code": "12345"})

    def test_six_digit_zip_accepted(self):
        assert AddressSnapshot(**{**ADDRESS, "zip_code": "123456"}).zip_code == "123456"

    def test_phone_normalized(self):
        assert AddressSnapshot(**ADDRESS).phone == "9876543210"

    def test_short_phone_rejected(self):
        with pytest.raises(ValidationError):
            AddressSnapshot(**{**ADDRESS, "phone": "98765"})

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            AddressSnapshot(**{**ADDRESS, "full_name": "   "})


class TestAddressBook:
    def test_first_address_is_default(self, db, redis_client):
        address = AddressService(db, redis_client).create_address(1, _address())
        assert address.is_default is True

    def test_at_most_three_addresses(self, db, redis_client):
        svc = AddressService(db, redis_client)
        for _ in range(3):
            svc.create_address(1, _address())

        with pytest.raises(CheckoutValidationError) as exc:
            svc.create_address(1, _address())
        assert exc.value.code == "ADDRESS_LIMIT"

    def test_limit_is_per_owner(self, db, redis_client):
        svc = AddressService(db, redis_client)
        for _ in range(3):
            svc.create_address(1, _address())

        assert svc.create_address(2, _address()).is_default is True

    def test_single_default_after_create(self, db, redis_client):
        svc = AddressService(db, redis_client)
        svc.create_address(1, _address())
        second = svc.create_address(1, _address(is_default=True))

        defaults = [a.id for a in svc.list_addresses(1) if a.is_default]
        assert defaults == [second.id]

    def test_single_default_after_update(self, db, redis_client):
        svc = AddressService(db, redis_client)
        first = svc.create_address(1, _address())
        second = svc.create_address(1, _address())

        svc.update_address(1, second.id, AddressUpdate(is_default=True))

        defaults = [a.id for a in svc.list_addresses(1) if a.is_default]
        assert defaults == [second.id]
        assert first.id not in defaults

    def test_other_owner_cannot_read(self, db, redis_client):
        address = AddressService(db, redis_client).create_address(1, _address())

        with pytest.raises(NotFoundError):
            AddressService(db, redis_client).get_address(2, address.id)

    def test_delete(self, db, redis_client):
        svc = AddressService(db, redis_client)
        address = svc.create_address(1, _address())

        svc.delete_address(1, address.id)

        assert svc.list_addresses(1) == []


class TestConcurrentWrites:
    def test_busy_owner_lock_blocks_create(self, db, redis_client, monkeypatch):
        monkeypatch.setattr(address_service, "ADDRESS_LOCK_WAIT_SECONDS", 0.1)
        #inny zapis tego uzytkownika trzyma lock
        redis_client.set("address:1:lock", "other-writer")

        with pytest.raises(ConflictError) as exc:
            AddressService(db, redis_client).create_address(1, _address())

        assert exc.value.code == "ADDRESS_BUSY"
        assert AddressService(db, redis_client).list_addresses(1) == []

    def test_other_owner_not_blocked(self, db, redis_client, monkeypatch):
        monkeypatch.setattr(address_service, "ADDRESS_LOCK_WAIT_SECONDS", 0.1)
        redis_client.set("address:1:lock", "other-writer")

        address = AddressService(db, redis_client).create_address(2, _address())

        assert address.is_default is True

    def test_lock_released_after_rejected_write(self, db, redis_client):
        svc = AddressService(db, redis_client)
        for _ in range(3):
            svc.create_address(1, _address())

        with pytest.raises(CheckoutValidationError):
            svc.create_address(1, _address())

        assert redis_client.get("address:1:lock") is None

    def test_database_allows_one_default_per_owner(self, db):
        fields = {**ADDRESS, "phone": "9876543210"}
        db.add(AddressModel(owner_id=1, is_default=True, **fields))
        db.add(AddressModel(owner_id=1, is_default=True, **fields))

        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_many_non_default_rows_allowed(self, db):
        fields = {**ADDRESS, "phone": "9876543210"}
        db.add(AddressModel(owner_id=1, is_default=True, **fields))
        db.add(AddressModel(owner_id=1, is_default=False, **fields))
        db.add(AddressModel(owner_id=1, is_default=False, **fields))
        db.commit()

        assert db.query(AddressModel).filter_by(owner_id=1).count() == 3


class TestSelection:
    def test_select_is_session_state_only(self, db, redis_client):
        svc = AddressService(db, redis_client)
        first = svc.create_address(1, _address())
        second = svc.create_address(1, _address(city="Mumbai"))

        svc.select_address("s-1", 1, second.id)

        assert CheckoutSession(redis_client, "s-1").selected_address() == second.id
        assert svc.get_address(1, first.id).is_default is True
        assert svc.get_address(1, second.id).is_default is False

    def test_snapshot_uses_selected_address(self, db, redis_client):
        svc = AddressService(db, redis_client)
        svc.create_address(1, _address())
        second = svc.create_address(1, _address(city="Mumbai"))
        svc.select_address("s-1", 1, second.id)

        address_id, snapshot = svc.shipping_snapshot("s-1", 1, None, None)

        assert address_id == second.id
        assert snapshot.city == "Mumbai"

    def test_guest_needs_inline_address(self, db, redis_client):
        svc = AddressService(db, redis_client)

        with pytest.raises(CheckoutValidationError):
            svc.shipping_snapshot("s-1", None, None, None)

        address_id, snapshot = svc.shipping_snapshot("s-1", None, None, AddressSnapshot(**ADDRESS))
        assert address_id is None
        assert snapshot.zip_code == "411001"
