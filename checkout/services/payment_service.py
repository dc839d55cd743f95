# checkout/services/payment_service.py
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict

import redis
from sqlalchemy.orm import Session

from checkout.data.models.payment_attempt import PaymentAttemptModel
from checkout.domain.errors import (
    CheckoutValidationError,
    ConflictError,
    GatewayRejectedError,
    NotFoundError,
    ReconciliationError,
)
from checkout.domain.schemas import AddressSnapshot, PaymentIntentIn, PurchaseIntent, VerifyPaymentIn
from checkout.repos.payment_repo import PaymentRepo
from checkout.services.checkout_session import CheckoutSession
from checkout.services.lock_service import LockService
from checkout.services.order_service import OrderService
from checkout.services.payment_gateway import GatewayError, PaymentGateway, receipt_for
from checkout.services.reconciliation_service import (
    DUPLICATE_PAYMENT,
    PAYMENT_WITHOUT_ORDER,
    ReconciliationService,
)
from checkout.utils.settings import CURRENCY, PAYMENT_TIMEOUT_SECONDS, VERIFY_LOCK_TTL_SECONDS
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

INTENT_CREATED = "INTENT_CREATED"
CLIENT_AUTHORIZED = "CLIENT_AUTHORIZED"
VERIFIED = "VERIFIED"
FAILED = "FAILED"

OPEN_STATUSES = (INTENT_CREATED, CLIENT_AUTHORIZED)


class PaymentService:
    """
    Platnosc przez bramke w trzech krokach:

    1. create_payment_intent - zamowienie po stronie bramki na kwote z intentu (INTENT_CREATED)
    2. klient placi w UI bramki i odsyla podpisana referencje (CLIENT_AUTHORIZED)
       albo zamyka okno (FAILED, dismissed)
    3. verify_payment - liczymy podpis sami i dopiero wtedy zapisujemy zamowienie (VERIFIED)

    Przejscia stanow z optimistic lockingiem na version, jak przy koszyku.
    """

    def __init__(
        self,
        db: Session,
        client: redis.Redis,
        gateway: PaymentGateway,
        lock_service: LockService | None = None,
    ):
        self.db = db
        self.redis = client
        self.gateway = gateway
        self.repo = PaymentRepo(db)
        self.locks = lock_service or LockService(client)
        self.orders = OrderService(db, client, lock_service=self.locks)
        self.reconciliation = ReconciliationService(db)

    # =====================================================
    # 1. INTENT_CREATED
    # =====================================================
    def create_payment_intent(self, payload: PaymentIntentIn) -> Dict[str, Any]:
        session = CheckoutSession(self.redis, payload.session_id)

        #jedna sesja checkoutu = jedno zamowienie, druga platnosc to podwojne obciazenie
        if session.get_result() or self.repo.find_verified(payload.session_id):
            raise ConflictError(
                "Zamowienie dla tej sesji zostalo juz zlozone",
                code="ORDER_ALREADY_PLACED",
            )

        pending = session.get_pending()

        if not pending:
            raise CheckoutValidationError(
                "Brak zamowienia oczekujacego na platnosc",
                code="NO_PENDING_CHECKOUT",
            )

        if pending["owner_id"] != payload.owner_id:
            raise PermissionError("Brak dostepu do sesji checkoutu")

        intent = PurchaseIntent.model_validate(pending["intent"])

        #kwote bierzemy z intentu, klient moze ja tylko potwierdzic
        if Decimal(payload.amount) != intent.total:
            raise CheckoutValidationError(
                "Kwota platnosci nie zgadza sie z zamowieniem",
                code="AMOUNT_MISMATCH",
                context={"expected": str(intent.total), "got": str(payload.amount)},
            )

        if payload.currency != CURRENCY:
            raise CheckoutValidationError(
                f"Platnosc mozliwa tylko w {CURRENCY}",
                code="CURRENCY_MISMATCH",
                context={"expected": CURRENCY, "got": payload.currency},
            )

        try:
            remote = self.gateway.create_order(
                amount=intent.total,
                currency=CURRENCY,
                receipt=receipt_for(payload.session_id),
                notes={"owner_id": str(payload.owner_id), "session_id": payload.session_id},
            )
        except GatewayError as e:
            logger.warning(f"Bramka odrzucila utworzenie platnosci sesji {payload.session_id}: {e}")
            raise GatewayRejectedError(str(e), code="GATEWAY_UNAVAILABLE")

        attempt = self.repo.create_attempt(
            PaymentAttemptModel(
                session_id=payload.session_id,
                owner_id=payload.owner_id,
                gateway_order_id=remote.gateway_order_id,
                amount=intent.total,
                currency=remote.currency,
                status=INTENT_CREATED,
                checkout_snapshot=pending,
            )
        )

        logger.info(
            f"Platnosc {attempt.gateway_order_id} utworzona dla sesji {payload.session_id}, "
            f"kwota {attempt.amount} {attempt.currency}"
        )
        return {
            "gateway_order_id": attempt.gateway_order_id,
            "key": self.gateway.key_id,
            "amount": attempt.amount,
            "currency": attempt.currency,
        }

    # =====================================================
    # 2-3. CLIENT_AUTHORIZED -> VERIFIED | FAILED
    # =====================================================
    def verify_payment(self, payload: VerifyPaymentIn) -> Dict[str, Any]:
        attempt = self._get_attempt(payload.gateway_order_id, payload.owner_id)

        if attempt.status == VERIFIED:
            #ponowne potwierdzenie tej samej platnosci, zamowienie juz jest
            return self._result_for(attempt)

        #callback bramki i klient potrafia potwierdzac te sama platnosc naraz
        lock_key = f"payment:{attempt.gateway_order_id}:verify"
        token = uuid.uuid4().hex
        if not self.locks.acquire(lock_key, token, VERIFY_LOCK_TTL_SECONDS):
            attempt = self._get_attempt(payload.gateway_order_id, payload.owner_id)
            if attempt.status == VERIFIED:
                return self._result_for(attempt)
            raise ConflictError("Platnosc jest wlasnie weryfikowana", code="VERIFICATION_IN_PROGRESS")

        try:
            return self._verify_locked(payload)
        finally:
            self.locks.release(lock_key, token)

    def _verify_locked(self, payload: VerifyPaymentIn) -> Dict[str, Any]:
        #stan mogl sie zmienic zanim dostalismy lock
        attempt = self._get_attempt(payload.gateway_order_id, payload.owner_id)

        if attempt.status == VERIFIED:
            return self._result_for(attempt)

        if attempt.status not in OPEN_STATUSES:
            raise GatewayRejectedError(
                "Payment Failed",
                code="PAYMENT_CLOSED",
                context={"status": attempt.status, "reason": attempt.failure_reason},
            )

        attempt = self._transition(
            attempt,
            {"status": CLIENT_AUTHORIZED, "gateway_payment_id": payload.gateway_payment_id},
        )

        try:
            signature_ok = self.gateway.verify_signature(
                attempt.gateway_order_id, payload.gateway_payment_id, payload.signature
            )
        except GatewayError as e:
            self._fail(attempt, "verification_error")
            raise GatewayRejectedError(f"Payment Failed: {e}", code="VERIFICATION_ERROR")

        if not signature_ok:
            logger.warning(f"Niepoprawny podpis platnosci {attempt.gateway_order_id}")
            self._fail(attempt, "signature_mismatch")
            raise GatewayRejectedError("Payment Failed", code="SIGNATURE_MISMATCH")

        snapshot = attempt.checkout_snapshot
        intent = PurchaseIntent.model_validate(snapshot["intent"])

        if payload.intent_snapshot is not None and payload.intent_snapshot.total != intent.total:
            logger.warning(
                f"Snapshot klienta ({payload.intent_snapshot.total}) rozny od zapisanego "
                f"({intent.total}) dla {attempt.gateway_order_id}"
            )
            self._fail(attempt, "intent_mismatch")
            raise GatewayRejectedError("Payment Failed", code="INTENT_MISMATCH")

        if attempt.currency != CURRENCY or Decimal(attempt.amount) != intent.total:
            self._fail(attempt, "amount_mismatch")
            raise GatewayRejectedError("Payment Failed", code="AMOUNT_MISMATCH")

        #rownolegla weryfikacja mogla juz zapisac zamowienie
        attempt = self.repo.get_by_gateway_order_id(attempt.gateway_order_id)
        if attempt.status == VERIFIED:
            return self._result_for(attempt)

        session = CheckoutSession(self.redis, attempt.session_id)
        if session.get_result() or self.repo.find_verified(attempt.session_id):
            self._duplicate_payment(attempt, payload)

        # od tego miejsca bramka przyjela pieniadze - kazdy blad to RECONCILIATION
        try:
            order = self.orders.place_order(
                intent,
                AddressSnapshot.model_validate(snapshot["address"]),
                snapshot.get("address_id"),
                snapshot["payment_method"],
                payment_reference=(
                    f"Payment ID: {payload.gateway_payment_id}. "
                    f"Gateway order: {attempt.gateway_order_id}"
                ),
                in_transaction=lambda o: self._mark_verified(attempt, o),
            )
        except ConflictError as e:
            #platnosc oznaczona przez inne wywolanie miedzy odczytem a zapisem
            self.db.rollback()
            current = self.repo.get_by_gateway_order_id(attempt.gateway_order_id)
            if current.status == VERIFIED:
                logger.warning(f"Platnosc {current.gateway_order_id} zweryfikowana rownolegle, zwracam zamowienie")
                return self._result_for(current)
            if current.status in OPEN_STATUSES:
                raise ConflictError("Platnosc jest wlasnie weryfikowana", code="VERIFICATION_IN_PROGRESS")
            self._payment_without_order(current, payload, e)
        except Exception as e:
            self._payment_without_order(attempt, payload, e)

        result = {"order_id": order.id, "order_number": order.order_number}
        session.store_result({"status": "placed", **result})
        session.clear_pending()

        self.reconciliation.decrement_stock(order.id, OrderService._stock_lines(intent))
        self.orders.clear_origin_cart(intent)
        return result

    def dismiss(self, gateway_order_id: str, owner_id: int, reason: str = "dismissed") -> PaymentAttemptModel:
        """Klient zamknal okno bramki - normalny koniec, formularz znowu aktywny."""
        attempt = self._get_attempt(gateway_order_id, owner_id)

        if attempt.status in OPEN_STATUSES:
            attempt = self._fail(attempt, reason)
            logger.info(f"Platnosc {gateway_order_id} przerwana przez klienta")
        return attempt

    def expire_stale(self) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=PAYMENT_TIMEOUT_SECONDS)
        expired = 0
        for attempt in self.repo.list_stale(OPEN_STATUSES, cutoff):
            try:
                self._fail(attempt, "timeout")
                expired += 1
            except ConflictError:
                #zmienila sie w miedzyczasie (np. wlasnie weryfikowana)
                continue
        if expired:
            logger.info(f"Wygaszono {expired} nieukonczonych platnosci")
        return expired

    # =====================================================
    # HELPERS
    # =====================================================
    def _get_attempt(self, gateway_order_id: str, owner_id: int) -> PaymentAttemptModel:
        attempt = self.repo.get_by_gateway_order_id(gateway_order_id)
        if not attempt:
            raise NotFoundError("Platnosc nie istnieje", code="PAYMENT_NOT_FOUND")
        if attempt.owner_id != owner_id:
            raise PermissionError("Brak dostepu do platnosci")
        return attempt

    def _transition(self, attempt: PaymentAttemptModel, new_data: dict) -> PaymentAttemptModel:
        rowcount = self.repo.transition(attempt.id, attempt.version, new_data, from_statuses=OPEN_STATUSES)
        if rowcount == 0:
            self.repo.rollback()
            raise ConflictError(
                "Platnosc zostala zmieniona przez inna operacje",
                code="PAYMENT_STATE_CONFLICT",
            )
        self.repo.commit()
        return self.repo.refresh(attempt)

    def _mark_verified(self, attempt: PaymentAttemptModel, order) -> None:
        #bez commita - idzie w transakcji zamowienia
        if not self.repo.transition(
            attempt.id,
            attempt.version,
            {"status": VERIFIED, "order_id": order.id},
            from_statuses=(CLIENT_AUTHORIZED,),
        ):
            raise ConflictError("Platnosc zostala juz rozliczona", code="PAYMENT_STATE_CONFLICT")

    def _fail(self, attempt: PaymentAttemptModel, reason: str) -> PaymentAttemptModel:
        attempt = self._transition(attempt, {"status": FAILED, "failure_reason": reason})
        self._release_submit_guard(attempt)
        return attempt

    def _release_submit_guard(self, attempt: PaymentAttemptModel) -> None:
        token = (attempt.checkout_snapshot or {}).get("submit_token")
        if token:
            session = CheckoutSession(self.redis, attempt.session_id)
            self.locks.release(session.submit_key, token)

    def _result_for(self, attempt: PaymentAttemptModel) -> Dict[str, Any]:
        order = self.orders.get_order(attempt.order_id)
        return {"order_id": order.id, "order_number": order.order_number}

    def _payment_without_order(self, attempt, payload: VerifyPaymentIn, error: Exception):
        """Pieniadze pobrane, zamowienia brak. Nigdy nie moze przejsc po cichu."""
        self._escalate(
            attempt,
            payload,
            PAYMENT_WITHOUT_ORDER,
            "order_write_failed",
            "Platnosc zostala przyjeta, ale nie udalo sie zapisac zamowienia. "
            "Skontaktuj sie z obsluga podajac numer referencyjny.",
            error=error,
        )

    def _duplicate_payment(self, attempt, payload: VerifyPaymentIn):
        """Druga oplacona platnosc sesji, ktora ma juz zamowienie: do zwrotu, nie do zapisu."""
        self._escalate(
            attempt,
            payload,
            DUPLICATE_PAYMENT,
            "session_already_placed",
            "Zamowienie dla tej sesji zostalo juz zlozone, druga platnosc zostanie zwrocona. "
            "Skontaktuj sie z obsluga podajac numer referencyjny.",
            code="DUPLICATE_PAYMENT",
        )

    def _escalate(self, attempt, payload, kind, failure_reason, message, error=None, code=None):
        self.db.rollback()

        context = {
            "gateway_order_id": attempt.gateway_order_id,
            "gateway_payment_id": payload.gateway_payment_id,
            "amount": str(attempt.amount),
            "currency": attempt.currency,
            "owner_id": attempt.owner_id,
            "session_id": attempt.session_id,
            "checkout_snapshot": attempt.checkout_snapshot,
        }
        event = self.reconciliation.record(
            kind,
            context,
            payment_attempt_id=attempt.id,
            error=repr(error) if error else None,
        )

        try:
            attempt = self.repo.get_by_gateway_order_id(attempt.gateway_order_id)
            #VERIFIED zostaje VERIFIED
            self.repo.transition(
                attempt.id,
                attempt.version,
                {"status": FAILED, "failure_reason": failure_reason},
                from_statuses=OPEN_STATUSES,
            )
            self.repo.commit()
        except Exception as e:
            self.repo.rollback()
            logger.critical(f"[RECONCILIATION] nie udalo sie oznaczyc platnosci {attempt.gateway_order_id}: {e}")

        reference = f"REC-{event.id}" if event else attempt.gateway_order_id
        raise ReconciliationError(message, reference=reference, code=code, context=context) from error
