# checkout/services/intent_resolver.py
import uuid
from decimal import Decimal
from typing import Any, Dict, List

import redis
from sqlalchemy.orm import Session

from checkout.domain.errors import (
    CART_EMPTY,
    PRODUCT_UNAVAILABLE,
    ConflictError,
    UnavailableError,
)
from checkout.domain.schemas import LineItem, NavParams, PurchaseIntent
from checkout.repos.product_repo import ProductRepo
from checkout.services.cart_store import cart_store_for, normalize_variant
from checkout.services.checkout_session import CheckoutSession
from checkout.services.lock_service import LockService
from checkout.utils.retry import poll_until_present
from checkout.utils.settings import INTENT_LOCK_TTL_SECONDS, INTENT_WAIT_SECONDS, SHIPPING_FLAT
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


class PurchaseIntentResolver:
    """
    Ustala co kupujemy w tej sesji checkoutu: caly koszyk albo "kup teraz" jednego produktu.

    Wynik liczony jest najwyzej raz na sesje. Pierwsze wywolanie bierze flage
    checkout:{session}:intent:lock (SET NX), liczy i zapisuje wynik; pozostale
    czekaja na ten sam wynik zamiast pobierac produkt drugi raz.
    Zapisany intent jest snapshotem, pozniejsze zmiany koszyka go nie zmieniaja.
    """

    def __init__(
        self,
        db: Session,
        client: redis.Redis,
        catalog=None,
        lock_service: LockService | None = None,
        wait_seconds: float = INTENT_WAIT_SECONDS,
    ):
        self.db = db
        self.redis = client
        self.catalog = catalog or ProductRepo(db)
        self.locks = lock_service or LockService(client)
        self.wait_seconds = wait_seconds

    def resolve(
        self,
        session_id: str,
        nav: NavParams,
        owner_id: int | None = None,
        guest_token: str | None = None,
    ) -> PurchaseIntent:
        session = CheckoutSession(self.redis, session_id)

        outcome = session.get_intent_outcome()
        if outcome is None:
            outcome = self._resolve_once(session, nav, owner_id, guest_token)

        return self._from_outcome(outcome)

    def current(self, session_id: str) -> PurchaseIntent:
        """Intent juz rozwiazany w tej sesji (bez ponownego liczenia)."""
        outcome = CheckoutSession(self.redis, session_id).get_intent_outcome()
        if outcome is None:
            raise UnavailableError(
                "Sesja checkoutu nie ma ustalonych produktow",
                code="INTENT_NOT_RESOLVED",
            )
        return self._from_outcome(outcome)

    def _resolve_once(self, session: CheckoutSession, nav, owner_id, guest_token) -> Dict[str, Any]:
        token = uuid.uuid4().hex

        if not self.locks.acquire(session.intent_lock_key, token, INTENT_LOCK_TTL_SECONDS):
            logger.info(f"Intent sesji {session.session_id} juz w toku, czekam na wynik")
            outcome = poll_until_present(self.wait_seconds)(session.get_intent_outcome)()
            if outcome is None:
                raise ConflictError(
                    "Ustalanie zawartosci checkoutu trwa zbyt dlugo",
                    code="INTENT_PENDING",
                )
            return outcome

        try:
            #ktos mogl skonczyc miedzy naszym odczytem a SET NX
            outcome = session.get_intent_outcome()
            if outcome is None:
                outcome = self._compute(session.session_id, nav, owner_id, guest_token)
                session.store_intent_outcome(outcome)
            return outcome
        finally:
            self.locks.release(session.intent_lock_key, token)

    def _compute(self, session_id, nav: NavParams, owner_id, guest_token) -> Dict[str, Any]:
        try:
            if nav.is_direct_purchase:
                #bezposredni zakup zawsze wygrywa z koszykiem
                items = [self._direct_line(nav)]
                source = "DIRECT"
            else:
                items = self._cart_lines(owner_id, guest_token)
                source = "CART"
        except UnavailableError as e:
            logger.info(f"Sesja {session_id}: {e.code} ({e.message})")
            return {"ok": False, "code": e.code, "message": e.message}

        subtotal = sum((i.line_total for i in items), Decimal("0.00"))
        shipping = Decimal(SHIPPING_FLAT)
        intent = PurchaseIntent(
            session_id=session_id,
            source=source,
            items=items,
            subtotal=subtotal,
            shipping=shipping,
            total=subtotal + shipping,
            owner_id=owner_id,
            guest_token=guest_token,
        )
        logger.info(
            f"Sesja {session_id}: intent {source}, {len(items)} pozycji, total {intent.total}"
        )
        return {"ok": True, "intent": intent.model_dump(mode="json")}

    def _available(self, product, quantity: int, variant: str) -> bool:
        if not product or not product.is_active:
            return False
        if product.stock is not None and product.stock < quantity:
            return False
        options = product.variant_options or []
        if variant and options and variant not in options:
            return False
        return True

    def _direct_line(self, nav: NavParams) -> LineItem:
        variant = normalize_variant(nav.variant)
        logger.info(f"Pobieranie produktu {nav.product_id} dla zakupu bezposredniego")
        product = self.catalog.get_product(nav.product_id)

        if not self._available(product, nav.quantity, variant):
            raise UnavailableError(
                "Produkt jest niedostepny",
                code=PRODUCT_UNAVAILABLE,
                context={"product_id": nav.product_id},
            )

        return LineItem(
            product_id=product.id,
            name=product.name,
            unit_price=Decimal(str(product.price)),
            quantity=nav.quantity,
            variant=variant or None,
        )

    def _cart_lines(self, owner_id, guest_token) -> List[LineItem]:
        if not owner_id and not guest_token:
            raise UnavailableError("Koszyk jest pusty", code=CART_EMPTY)

        cart_items = cart_store_for(self.db, self.redis, owner_id, guest_token).list()
        if not cart_items:
            raise UnavailableError("Koszyk jest pusty", code=CART_EMPTY)

        lines = []
        for item in cart_items:
            product = self.catalog.get_product(item.product_id)
            if not self._available(product, item.quantity, item.variant or ""):
                raise UnavailableError(
                    "Produkt z koszyka jest niedostepny",
                    code=PRODUCT_UNAVAILABLE,
                    context={"product_id": item.product_id},
                )
            lines.append(
                LineItem(
                    product_id=product.id,
                    name=product.name,
                    unit_price=Decimal(str(product.price)),
                    quantity=item.quantity,
                    variant=item.variant,
                )
            )
        return lines

    @staticmethod
    def _from_outcome(outcome: Dict[str, Any]) -> PurchaseIntent:
        if not outcome.get("ok"):
            raise UnavailableError(outcome.get("message", "Produkt jest niedostepny"), code=outcome["code"])
        return PurchaseIntent.model_validate(outcome["intent"])
