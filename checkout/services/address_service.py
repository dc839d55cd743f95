# checkout/services/address_service.py
import uuid
from contextlib import contextmanager
from typing import List

import redis
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from checkout.data.models.address import AddressModel
from checkout.domain.errors import CheckoutValidationError, ConflictError, NotFoundError
from checkout.domain.schemas import AddressIn, AddressSnapshot, AddressUpdate
from checkout.repos.address_repo import AddressRepo
from checkout.services.checkout_session import CheckoutSession
from checkout.services.lock_service import LockService
from checkout.utils.retry import poll_until_present
from checkout.utils.settings import ADDRESS_LOCK_TTL_SECONDS, ADDRESS_LOCK_WAIT_SECONDS, MAX_ADDRESSES
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


class AddressService:
    """
    Ksiazka adresowa uzytkownika: max MAX_ADDRESSES adresow, najwyzej jeden domyslny.
    Limity pilnowane tutaj, nie tylko w UI. Zapisy jednego uzytkownika ida po kolei
    (lock w redisie), jeden domyslny adres pilnuje dodatkowo indeks w bazie.
    """

    def __init__(self, db: Session, client: redis.Redis, lock_service: LockService | None = None):
        self.repo = AddressRepo(db)
        self.redis = client
        self.locks = lock_service or LockService(client)

    def list_addresses(self, owner_id: int) -> List[AddressModel]:
        return self.repo.list_addresses(owner_id)

    def get_address(self, owner_id: int, address_id: int) -> AddressModel:
        address = self.repo.get_address(owner_id, address_id)
        if not address:
            raise NotFoundError("Adres nie istnieje", code="ADDRESS_NOT_FOUND")
        return address

    @contextmanager
    def _owner_lock(self, owner_id: int):
        key = f"address:{owner_id}:lock"
        token = uuid.uuid4().hex
        acquired = poll_until_present(ADDRESS_LOCK_WAIT_SECONDS)(
            lambda: True if self.locks.acquire(key, token, ADDRESS_LOCK_TTL_SECONDS) else None
        )()
        if not acquired:
            raise ConflictError("Adresy sa wlasnie zmieniane, sprobuj ponownie", code="ADDRESS_BUSY")
        try:
            yield
        finally:
            self.locks.release(key, token)

    def create_address(self, owner_id: int, data: AddressIn) -> AddressModel:
        with self._owner_lock(owner_id):
            count = self.repo.count_addresses(owner_id)
            if count >= MAX_ADDRESSES:
                raise CheckoutValidationError(
                    f"Mozna zapisac najwyzej {MAX_ADDRESSES} adresy",
                    code="ADDRESS_LIMIT",
                )

            #pierwszy adres zawsze domyslny
            make_default = data.is_default or count == 0

            try:
                if make_default:
                    #najpierw zdejmujemy flage z pozostalych, potem ustawiamy, jedna transakcja
                    self.repo.unset_defaults(owner_id)

                address = self.repo.add_address(
                    AddressModel(
                        owner_id=owner_id,
                        full_name=data.full_name,
                        line1=data.line1,
                        city=data.city,
                        state=data.state,
                        zip_code=data.zip_code,
                        phone=data.phone,
                        is_default=make_default,
                    )
                )
                self.repo.commit()
            except IntegrityError:
                self.repo.rollback()
                raise ConflictError("Uzytkownik ma juz adres domyslny", code="ADDRESS_CONFLICT")
            except Exception:
                self.repo.rollback()
                raise

        logger.info(f"Utworzono adres {address.id} dla uzytkownika {owner_id}")
        return address

    def update_address(self, owner_id: int, address_id: int, data: AddressUpdate) -> AddressModel:
        with self._owner_lock(owner_id):
            address = self.get_address(owner_id, address_id)
            changes = data.model_dump(exclude_unset=True, exclude_none=True)

            try:
                if changes.get("is_default"):
                    self.repo.unset_defaults(owner_id)

                for field, value in changes.items():
                    setattr(address, field, value)

                self.repo.commit()
            except IntegrityError:
                self.repo.rollback()
                raise ConflictError("Uzytkownik ma juz adres domyslny", code="ADDRESS_CONFLICT")
            except Exception:
                self.repo.rollback()
                raise

        logger.info(f"Zaktualizowano adres {address_id} uzytkownika {owner_id}")
        return address

    def delete_address(self, owner_id: int, address_id: int) -> None:
        #zamowienia trzymaja kopie adresu, wiec usuniecie nie psuje historii
        with self._owner_lock(owner_id):
            address = self.get_address(owner_id, address_id)
            self.repo.delete_address(address)
            self.repo.commit()
        logger.info(f"Usunieto adres {address_id} uzytkownika {owner_id}")

    def select_address(self, session_id: str, owner_id: int, address_id: int) -> AddressModel:
        """Wybor adresu dla checkoutu - tylko stan sesji, rekord adresu bez zmian."""
        address = self.get_address(owner_id, address_id)
        CheckoutSession(self.redis, session_id).select_address(address.id)
        return address

    def shipping_snapshot(
        self,
        session_id: str,
        owner_id: int | None,
        address_id: int | None,
        inline: AddressSnapshot | None,
    ) -> tuple[int | None, AddressSnapshot]:
        """Adres do zamowienia: podane id, wybrany w sesji albo wpisany w formularzu."""
        if owner_id:
            if address_id is None and inline is None:
                address_id = CheckoutSession(self.redis, session_id).selected_address()

            if address_id is not None:
                address = self.get_address(owner_id, address_id)
                return address.id, AddressSnapshot(
                    full_name=address.full_name,
                    line1=address.line1,
                    city=address.city,
                    state=address.state,
                    zip_code=address.zip_code,
                    phone=address.phone,
                )

        if inline is None:
            raise CheckoutValidationError("Adres dostawy jest wymagany", code="ADDRESS_REQUIRED")
        return None, inline
