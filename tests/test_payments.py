import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import fakeredis
import pytest

from checkout.data.models import OrderModel, PaymentAttemptModel, ReconciliationEventModel
from checkout.domain.errors import (
    CheckoutValidationError,
    ConflictError,
    GatewayRejectedError,
    ReconciliationError,
)
from checkout.domain.schemas import CreateOrderIn, NavParams, PaymentIntentIn, VerifyPaymentIn
from checkout.services.cart_store import PersistedCartStore
from checkout.services.checkout_session import CheckoutSession
from checkout.services.intent_resolver import PurchaseIntentResolver
from checkout.services.lock_service import LockService
from checkout.services.order_service import OrderService
from checkout.services.payment_gateway import RazorpayGateway, sign, to_minor_units
from checkout.services.payment_service import PaymentService
from checkout.services.reconciliation_service import (
    DUPLICATE_PAYMENT,
    PAYMENT_WITHOUT_ORDER,
    ReconciliationService,
)


@pytest.fixture(autouse=True)
def no_celery(monkeypatch):
    monkeypatch.setattr(ReconciliationService, "_schedule_stock_retry", staticmethod(lambda: None))


@pytest.fixture()
def pending_checkout(db, redis_client, products, address):
    """Koszyk z jednym produktem, zamowienie UPI czeka na platnosc."""
    PersistedCartStore(db, owner_id=1).add_item(products[1].id, 1)
    PurchaseIntentResolver(db, redis_client).resolve("s-1", NavParams(), owner_id=1)
    OrderService(db, redis_client).create_order(
        "s-1", CreateOrderIn(payment_method="upi", owner_id=1, address_id=address.id)
    )
    return "s-1"


@pytest.fixture()
def service(db, redis_client, gateway):
    return PaymentService(db, redis_client, gateway)


@pytest.fixture()
def payment_intent(service, pending_checkout):
    return service.create_payment_intent(
        PaymentIntentIn(session_id=pending_checkout, owner_id=1, amount=Decimal("549.50"))
    )


def _verify(gateway, gateway_order_id, payment_id="pay_001", signature=None, **extra):
    return VerifyPaymentIn(
        gateway_payment_id=payment_id,
        gateway_order_id=gateway_order_id,
        signature=signature or gateway.sign(gateway_order_id, payment_id),
        owner_id=1,
        **extra,
    )


class TestPaymentIntent:
    def test_intent_created(self, db, service, gateway, payment_intent):
        assert payment_intent["key"] == gateway.key_id
        assert payment_intent["amount"] == Decimal("549.50")
        assert gateway.calls[0]["amount"] == Decimal("549.50")

        attempt = db.query(PaymentAttemptModel).one()
        assert attempt.status == "INTENT_CREATED"
        assert attempt.gateway_order_id == payment_intent["gateway_order_id"]
        assert db.query(OrderModel).count() == 0

    def test_amount_must_match_intent(self, service, pending_checkout):
        with pytest.raises(CheckoutValidationError) as exc:
            service.create_payment_intent(
                PaymentIntentIn(session_id=pending_checkout, owner_id=1, amount=Decimal("1.00"))
            )
        assert exc.value.code == "AMOUNT_MISMATCH"

    def test_requires_pending_checkout(self, service):
        with pytest.raises(CheckoutValidationError):
            service.create_payment_intent(PaymentIntentIn(session_id="none", owner_id=1, amount=Decimal("10")))

    def test_gateway_failure(self, db, service, gateway, pending_checkout):
        gateway.should_fail = True

        with pytest.raises(GatewayRejectedError):
            service.create_payment_intent(
                PaymentIntentIn(session_id=pending_checkout, owner_id=1, amount=Decimal("549.50"))
            )
        assert db.query(PaymentAttemptModel).count() == 0

    def test_other_currency_rejected(self, db, service, gateway, pending_checkout):
        with pytest.raises(CheckoutValidationError) as exc:
            service.create_payment_intent(
                PaymentIntentIn(
                    session_id=pending_checkout, owner_id=1, amount=Decimal("549.50"), currency="USD"
                )
            )

        assert exc.value.code == "CURRENCY_MISMATCH"
        assert gateway.calls == []
        assert db.query(PaymentAttemptModel).count() == 0

    def test_gateway_always_charged_in_store_currency(self, gateway, payment_intent):
        assert gateway.calls[0]["currency"] == "INR"
        assert payment_intent["currency"] == "INR"

    def test_no_new_intent_after_order_placed(self, db, service, gateway, payment_intent):
        service.verify_payment(_verify(gateway, payment_intent["gateway_order_id"]))

        with pytest.raises(ConflictError) as exc:
            service.create_payment_intent(
                PaymentIntentIn(session_id="s-1", owner_id=1, amount=Decimal("549.50"))
            )

        assert exc.value.code == "ORDER_ALREADY_PLACED"
        assert len(gateway.calls) == 1
        assert db.query(PaymentAttemptModel).count() == 1

    def test_other_owner(self, service, pending_checkout):
        with pytest.raises(PermissionError):
            service.create_payment_intent(
                PaymentIntentIn(session_id=pending_checkout, owner_id=2, amount=Decimal("549.50"))
            )


class TestVerifyPayment:
    def test_valid_signature_creates_paid_order(self, db, redis_client, service, gateway, products, payment_intent):
        result = service.verify_payment(_verify(gateway, payment_intent["gateway_order_id"]))

        order = db.get(OrderModel, result["order_id"])
        assert order.status == "paid"
        assert order.payment_status == "completed"
        assert order.payment_method == "upi"
        assert "pay_001" in order.payment_reference
        assert order.total == Decimal("549.50")

        attempt = db.query(PaymentAttemptModel).one()
        assert attempt.status == "VERIFIED"
        assert attempt.order_id == order.id

        db.refresh(products[1])
        assert products[1].stock == 4
        assert PersistedCartStore(db, owner_id=1).list() == []
        assert CheckoutSession(redis_client, "s-1").get_result()["order_id"] == order.id

    def test_signature_mismatch_creates_no_order(self, db, service, gateway, payment_intent):
        with pytest.raises(GatewayRejectedError) as exc:
            service.verify_payment(_verify(gateway, payment_intent["gateway_order_id"], signature="deadbeef"))

        assert exc.value.message == "Payment Failed"
        assert db.query(OrderModel).count() == 0
        attempt = db.query(PaymentAttemptModel).one()
        assert attempt.status == "FAILED"
        assert attempt.failure_reason == "signature_mismatch"

    def test_signature_mismatch_reenables_form(self, db, redis_client, service, gateway, address, payment_intent):
        with pytest.raises(GatewayRejectedError):
            service.verify_payment(_verify(gateway, payment_intent["gateway_order_id"], signature="deadbeef"))

        result = OrderService(db, redis_client).create_order(
            "s-1", CreateOrderIn(payment_method="cod", owner_id=1, address_id=address.id)
        )
        assert result["status"] == "placed"

    def test_client_snapshot_with_other_total_rejected(self, db, redis_client, service, gateway, payment_intent):
        stored = PurchaseIntentResolver(db, redis_client).current("s-1")
        tampered = stored.model_copy(update={"total": Decimal("1.00")})

        with pytest.raises(GatewayRejectedError):
            service.verify_payment(_verify(gateway, payment_intent["gateway_order_id"], intent_snapshot=tampered))
        assert db.query(OrderModel).count() == 0

    def test_matching_client_snapshot_accepted(self, db, redis_client, service, gateway, payment_intent):
        stored = PurchaseIntentResolver(db, redis_client).current("s-1")

        result = service.verify_payment(
            _verify(gateway, payment_intent["gateway_order_id"], intent_snapshot=stored)
        )
        assert result["order_number"]

    def test_verify_twice_returns_same_order(self, db, service, gateway, payment_intent):
        first = service.verify_payment(_verify(gateway, payment_intent["gateway_order_id"]))
        second = service.verify_payment(_verify(gateway, payment_intent["gateway_order_id"]))

        assert first == second
        assert db.query(OrderModel).count() == 1

    def test_order_write_failure_is_reconciliation(self, db, service, gateway, payment_intent):
        def broken(*args, **kwargs):
            raise RuntimeError("connection lost")

        service.orders.place_order = broken

        with pytest.raises(ReconciliationError) as exc:
            service.verify_payment(_verify(gateway, payment_intent["gateway_order_id"]))

        event = db.query(ReconciliationEventModel).one()
        assert event.kind == PAYMENT_WITHOUT_ORDER
        assert event.payload["gateway_payment_id"] == "pay_001"
        assert exc.value.reference == f"REC-{event.id}"
        assert exc.value.to_detail()["kind"] == "RECONCILIATION"

        attempt = db.query(PaymentAttemptModel).one()
        assert attempt.status == "FAILED"
        assert attempt.failure_reason == "order_write_failed"
        assert db.query(OrderModel).count() == 0

    def test_other_owner_cannot_verify(self, service, gateway, payment_intent):
        payload = _verify(gateway, payment_intent["gateway_order_id"]).model_copy(update={"owner_id": 2})

        with pytest.raises(PermissionError):
            service.verify_payment(payload)


class TestConcurrentVerification:
    """Callback bramki i klient potwierdzaja te sama platnosc w tym samym czasie."""

    @staticmethod
    def _second_service(db, redis_client, gateway):
        #osobny magazyn lockow = lock pierwszego wywolania juz wygasl
        return PaymentService(
            db, redis_client, gateway, lock_service=LockService(fakeredis.FakeRedis(decode_responses=True))
        )

    def test_overlap_during_signature_check(self, db, redis_client, service, gateway, products, payment_intent):
        gateway_order_id = payment_intent["gateway_order_id"]
        other = self._second_service(db, redis_client, gateway)
        original = gateway.verify_signature
        inner = []

        def verify_with_overlap(*args):
            if not inner:
                inner.append(None)
                inner[0] = other.verify_payment(_verify(gateway, gateway_order_id))
            return original(*args)

        gateway.verify_signature = verify_with_overlap

        result = service.verify_payment(_verify(gateway, gateway_order_id))

        assert result == inner[0]
        assert db.query(OrderModel).count() == 1
        assert db.query(ReconciliationEventModel).count() == 0

        attempt = db.query(PaymentAttemptModel).one()
        assert attempt.status == "VERIFIED"
        assert attempt.order_id == result["order_id"]

        db.refresh(products[1])
        assert products[1].stock == 4

    def test_overlap_with_held_lock(self, db, redis_client, service, gateway, payment_intent):
        gateway_order_id = payment_intent["gateway_order_id"]
        original = gateway.verify_signature
        rejected = []

        def verify_with_overlap(*args):
            if not rejected:
                with pytest.raises(ConflictError) as exc:
                    service.verify_payment(_verify(gateway, gateway_order_id))
                rejected.append(exc.value.code)
            return original(*args)

        gateway.verify_signature = verify_with_overlap

        result = service.verify_payment(_verify(gateway, gateway_order_id))

        assert rejected == ["VERIFICATION_IN_PROGRESS"]
        assert result["order_number"]
        assert db.query(OrderModel).count() == 1
        assert db.query(PaymentAttemptModel).one().status == "VERIFIED"
        assert db.query(ReconciliationEventModel).count() == 0

    def test_overlap_during_order_write(self, db, redis_client, service, gateway, products, payment_intent):
        gateway_order_id = payment_intent["gateway_order_id"]
        other = self._second_service(db, redis_client, gateway)
        original = service.orders.numbers.generate
        inner = []

        def generate_with_overlap():
            if not inner:
                inner.append(other.verify_payment(_verify(gateway, gateway_order_id)))
            return original()

        service.orders.numbers.generate = generate_with_overlap

        result = service.verify_payment(_verify(gateway, gateway_order_id))

        assert result == inner[0]
        assert db.query(OrderModel).count() == 1
        assert db.query(ReconciliationEventModel).count() == 0

        attempt = db.query(PaymentAttemptModel).one()
        assert attempt.status == "VERIFIED"
        assert attempt.failure_reason is None

        db.refresh(products[1])
        assert products[1].stock == 4

    def test_lock_released_after_verification(self, redis_client, service, gateway, payment_intent):
        gateway_order_id = payment_intent["gateway_order_id"]

        service.verify_payment(_verify(gateway, gateway_order_id))

        assert redis_client.get(f"payment:{gateway_order_id}:verify") is None


class TestSecondPayment:
    """Dwie platnosci w jednej sesji checkoutu: zamowienie tylko z pierwszej."""

    def _intent(self, service):
        return service.create_payment_intent(
            PaymentIntentIn(session_id="s-1", owner_id=1, amount=Decimal("549.50"))
        )

    def test_second_paid_attempt_is_reconciled_not_ordered(self, db, redis_client, service, gateway, pending_checkout):
        first = self._intent(service)
        second = self._intent(service)

        placed = service.verify_payment(_verify(gateway, first["gateway_order_id"]))

        with pytest.raises(ReconciliationError) as exc:
            service.verify_payment(_verify(gateway, second["gateway_order_id"], payment_id="pay_002"))

        assert exc.value.code == "DUPLICATE_PAYMENT"
        assert db.query(OrderModel).count() == 1

        event = db.query(ReconciliationEventModel).one()
        assert event.kind == DUPLICATE_PAYMENT
        assert event.payload["gateway_payment_id"] == "pay_002"
        assert exc.value.reference == f"REC-{event.id}"

        by_id = {a.gateway_order_id: a for a in db.query(PaymentAttemptModel).all()}
        assert by_id[first["gateway_order_id"]].status == "VERIFIED"
        assert by_id[first["gateway_order_id"]].order_id == placed["order_id"]
        assert by_id[second["gateway_order_id"]].status == "FAILED"
        assert by_id[second["gateway_order_id"]].failure_reason == "session_already_placed"

    def test_pending_checkout_cleared_after_order(self, redis_client, service, gateway, pending_checkout):
        intent = self._intent(service)

        service.verify_payment(_verify(gateway, intent["gateway_order_id"]))

        assert CheckoutSession(redis_client, "s-1").get_pending() is None

    def test_first_payment_still_verifies_again(self, db, service, gateway, pending_checkout):
        first = self._intent(service)
        second = self._intent(service)
        placed = service.verify_payment(_verify(gateway, first["gateway_order_id"]))

        with pytest.raises(ReconciliationError):
            service.verify_payment(_verify(gateway, second["gateway_order_id"], payment_id="pay_002"))

        assert service.verify_payment(_verify(gateway, first["gateway_order_id"])) == placed


class TestDismissAndTimeout:
    def test_dismiss_is_terminal_and_releases_guard(self, db, redis_client, service, gateway, payment_intent):
        attempt = service.dismiss(payment_intent["gateway_order_id"], owner_id=1)

        assert attempt.status == "FAILED"
        assert attempt.failure_reason == "dismissed"
        assert redis_client.get(CheckoutSession(redis_client, "s-1").submit_key) is None

        with pytest.raises(GatewayRejectedError):
            service.verify_payment(_verify(gateway, payment_intent["gateway_order_id"]))
        assert db.query(OrderModel).count() == 0

    def test_stale_attempts_expire(self, db, redis_client, service, payment_intent):
        attempt = db.query(PaymentAttemptModel).one()
        attempt.created_at = datetime.now(timezone.utc) - timedelta(hours=2)
        db.commit()

        assert service.expire_stale() == 1

        db.refresh(attempt)
        assert attempt.status == "FAILED"
        assert attempt.failure_reason == "timeout"
        assert redis_client.get(CheckoutSession(redis_client, "s-1").submit_key) is None

    def test_fresh_attempts_kept(self, db, service, payment_intent):
        assert service.expire_stale() == 0
        assert db.query(PaymentAttemptModel).one().status == "INTENT_CREATED"


class TestGatewayHelpers:
    def test_signature_is_hmac_of_order_and_payment(self):
        expected = hmac.new(b"secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
        assert sign("secret", "order_1", "pay_1") == expected
        assert sign("secret", "order_1", "pay_1") != sign("secret", "order_1", "pay_2")

    def test_minor_units(self):
        assert to_minor_units(Decimal("549.50")) == 54950

    def test_unconfigured_razorpay_rejects(self):
        from checkout.services.payment_gateway import GatewayError

        with pytest.raises(GatewayError):
            RazorpayGateway(key_id="", key_secret="").create_order(Decimal("1"), "INR", "r", {})
