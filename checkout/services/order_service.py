# checkout/services/order_service.py
import uuid
from typing import Any, Callable, Dict

import redis
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from checkout.data.models.order import OrderModel
from checkout.data.models.order_item import OrderItemModel
from checkout.domain.errors import CheckoutValidationError, ConflictError, NotFoundError, ReconciliationError
from checkout.domain.schemas import GATEWAY_METHODS, AddressSnapshot, CreateOrderIn, PurchaseIntent
from checkout.repos.order_repo import OrderRepo
from checkout.services.address_service import AddressService
from checkout.services.cart_store import cart_store_for
from checkout.services.checkout_session import CheckoutSession
from checkout.services.intent_resolver import PurchaseIntentResolver
from checkout.services.lock_service import LockService
from checkout.services.order_number import OrderNumberGenerator
from checkout.services.reconciliation_service import ORDER_NUMBER_EXHAUSTED, ReconciliationService
from checkout.utils.settings import CURRENCY, ORDER_INSERT_ATTEMPTS, SUBMIT_GUARD_TTL_SECONDS
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


class OrderService:
    """
    Skladanie zamowienia z intentu sesji checkoutu.

    COD: zamowienie od razu oplacone (paid/completed), zapis Order + OrderItems
    w jednej transakcji, potem zmniejszenie stanow (best-effort).
    UPI/karta: zadnego wiersza Order, tylko dane do bramki - zamowienie powstaje
    dopiero po weryfikacji platnosci (PaymentService).
    """

    def __init__(self, db: Session, client: redis.Redis, lock_service: LockService | None = None):
        self.db = db
        self.redis = client
        self.repo = OrderRepo(db)
        self.locks = lock_service or LockService(client)
        self.numbers = OrderNumberGenerator(client, self.repo.order_number_exists, self.locks)
        self.addresses = AddressService(db, client)
        self.resolver = PurchaseIntentResolver(db, client, lock_service=self.locks)
        self.reconciliation = ReconciliationService(db)

    # =====================================================
    # COMMANDS
    # =====================================================
    def create_order(self, session_id: str, payload: CreateOrderIn) -> Dict[str, Any]:
        session = CheckoutSession(self.redis, session_id)

        existing = session.get_result()
        if existing:
            logger.info(f"Sesja {session_id} ma juz zamowienie {existing.get('order_number')}")
            return existing

        #jedno skladanie na sesje, flaga wygasa sama jesli klient zniknie
        token = uuid.uuid4().hex
        if not self.locks.acquire(session.submit_key, token, SUBMIT_GUARD_TTL_SECONDS):
            existing = session.get_result()
            if existing:
                return existing
            raise ConflictError("Zamowienie jest juz skladane", code="SUBMISSION_IN_PROGRESS")

        try:
            intent = self.resolver.current(session_id)
            self._check_identity(intent, payload)

            address_id, snapshot = self.addresses.shipping_snapshot(
                session_id, payload.owner_id, payload.address_id, payload.address
            )

            if payload.payment_method in GATEWAY_METHODS:
                return self._defer_to_gateway(session, token, intent, payload, address_id, snapshot)

            order = self.place_order(intent, snapshot, address_id, "cod")
        except Exception:
            #formularz musi dac sie wyslac ponownie
            self.locks.release(session.submit_key, token)
            raise

        result = {"status": "placed", "order_id": order.id, "order_number": order.order_number}
        session.store_result(result)

        self.reconciliation.decrement_stock(order.id, self._stock_lines(intent))
        self.clear_origin_cart(intent)
        return result

    def place_order(
        self,
        intent: PurchaseIntent,
        address: AddressSnapshot,
        address_id: int | None,
        payment_method: str,
        payment_reference: str | None = None,
        in_transaction: Callable[[OrderModel], None] | None = None,
    ) -> OrderModel:
        """
        Kroki: numer -> Order (flush, mamy id) -> OrderItems -> commit.
        Kolizja numeru przy insercie = nowy numer i ponowienie, nie blad.
        in_transaction dziala w tej samej transakcji (np. oznaczenie platnosci).
        """
        for attempt in range(1, ORDER_INSERT_ATTEMPTS + 1):
            order_number = self.numbers.generate()
            try:
                order = self.repo.add_order_with_items(
                    self._build_order(intent, address, address_id, payment_method, payment_reference, order_number),
                    self._build_items(intent),
                )
                if in_transaction:
                    in_transaction(order)
                self.repo.commit()
            except IntegrityError:
                self.repo.rollback()
                if not self.repo.order_number_exists(order_number):
                    raise
                logger.warning(f"Kolizja numeru {order_number} przy zapisie (proba {attempt}), ponawiam")
                continue

            logger.info(
                f"Zamowienie {order.order_number} (id {order.id}) utworzone, "
                f"{payment_method}, total {order.total}"
            )
            return order

        event = self.reconciliation.record(
            ORDER_NUMBER_EXHAUSTED,
            {"session_id": intent.session_id, "attempts": ORDER_INSERT_ATTEMPTS},
        )
        raise ReconciliationError(
            "Nie udalo sie zapisac zamowienia, skontaktuj sie z obsluga",
            reference=f"REC-{event.id}" if event else None,
        )

    def clear_origin_cart(self, intent: PurchaseIntent) -> None:
        #tylko checkout z koszyka, "kup teraz" nie rusza koszyka
        if intent.source != "CART":
            return
        try:
            cart_store_for(self.db, self.redis, intent.owner_id, intent.guest_token).clear()
            logger.info(f"Wyczyszczono koszyk po zamowieniu z sesji {intent.session_id}")
        except Exception as e:
            logger.error(f"Nie udalo sie wyczyscic koszyka sesji {intent.session_id}: {e}")

    # =====================================================
    # QUERY
    # =====================================================
    def get_order(self, order_id: int, owner_id: int | None = None) -> OrderModel:
        order = self.repo.get_order(order_id)

        if not order:
            raise NotFoundError("Zamowienie nie istnieje", code="ORDER_NOT_FOUND")

        if owner_id is not None and order.owner_id != owner_id:
            raise PermissionError("Brak dostepu do zamowienia")

        return order

    # =====================================================
    # HELPERS
    # =====================================================
    @staticmethod
    def _check_identity(intent: PurchaseIntent, payload: CreateOrderIn) -> None:
        if intent.owner_id and intent.owner_id != payload.owner_id:
            raise PermissionError("Brak dostepu do sesji checkoutu")
        if not intent.owner_id and intent.guest_token and intent.guest_token != payload.guest_token:
            raise PermissionError("Brak dostepu do sesji checkoutu")

    def _defer_to_gateway(self, session, token, intent, payload, address_id, snapshot) -> Dict[str, Any]:
        if not payload.owner_id:
            raise CheckoutValidationError(
                "Platnosc online wymaga zalogowania",
                code="LOGIN_REQUIRED",
            )

        session.store_pending(
            {
                "intent": intent.model_dump(mode="json"),
                "address_id": address_id,
                "address": snapshot.model_dump(),
                "payment_method": payload.payment_method,
                "owner_id": payload.owner_id,
                "submit_token": token,
            }
        )
        logger.info(f"Sesja {session.session_id}: czeka na platnosc {payload.payment_method} {intent.total}")

        return {
            "status": "payment_required",
            "amount": intent.total,
            "currency": CURRENCY,
            "items": intent.items,
        }

    @staticmethod
    def _build_order(intent, address, address_id, payment_method, payment_reference, order_number) -> OrderModel:
        return OrderModel(
            order_number=order_number,
            owner_id=intent.owner_id,
            status="paid",
            payment_method=payment_method,
            payment_status="completed",
            payment_reference=payment_reference,
            subtotal=intent.subtotal,
            shipping=intent.shipping,
            total=intent.total,
            shipping_address_id=address_id,
            shipping_full_name=address.full_name,
            shipping_line1=address.line1,
            shipping_city=address.city,
            shipping_state=address.state,
            shipping_zip_code=address.zip_code,
            shipping_phone=address.phone,
        )

    @staticmethod
    def _build_items(intent: PurchaseIntent) -> list[OrderItemModel]:
        return [
            OrderItemModel(
                product_id=line.product_id,
                product_name=line.name,
                unit_price=line.unit_price,
                quantity=line.quantity,
                variant=line.variant,
                total_price=line.unit_price * line.quantity,
                cancelled_quantity=0,
            )
            for line in intent.items
        ]

    @staticmethod
    def _stock_lines(intent: PurchaseIntent) -> list[dict]:
        return [{"product_id": line.product_id, "quantity": line.quantity} for line in intent.items]
