# checkout/api/routers/payments.py
import redis
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from checkout.api.errors import forbidden, http_error
from checkout.data.database import get_db
from checkout.data.redis_client import get_redis
from checkout.domain.errors import CheckoutError
from checkout.domain.schemas import (
    DismissPaymentIn,
    PaymentAttemptOut,
    PaymentIntentIn,
    PaymentIntentOut,
    VerifyPaymentIn,
    VerifyPaymentOut,
)
from checkout.services.payment_gateway import PaymentGateway, get_gateway
from checkout.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


def get_service(db: Session, client: redis.Redis, gateway: PaymentGateway):
    return PaymentService(db, client, gateway)


@router.post("/intents", response_model=PaymentIntentOut, status_code=201)
def create_payment_intent(
    payload: PaymentIntentIn,
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
    gateway: PaymentGateway = Depends(get_gateway),
):
    svc = get_service(db, client, gateway)
    try:
        return svc.create_payment_intent(payload)
    except PermissionError as e:
        raise forbidden(e)
    except CheckoutError as e:
        raise http_error(e)


@router.post("/verify", response_model=VerifyPaymentOut)
def verify_payment(
    payload: VerifyPaymentIn,
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """
    Weryfikacja podpisu z bramki i dopiero wtedy zapis zamowienia.
    402 - platnosc odrzucona, 500 z referencja - platnosc pobrana bez zamowienia.
    """
    svc = get_service(db, client, gateway)
    try:
        return svc.verify_payment(payload)
    except PermissionError as e:
        raise forbidden(e)
    except CheckoutError as e:
        raise http_error(e)


@router.post("/{gateway_order_id}/dismiss", response_model=PaymentAttemptOut)
def dismiss_payment(
    gateway_order_id: str,
    payload: DismissPaymentIn,
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
    gateway: PaymentGateway = Depends(get_gateway),
):
    svc = get_service(db, client, gateway)
    try:
        return svc.dismiss(gateway_order_id, payload.owner_id)
    except PermissionError as e:
        raise forbidden(e)
    except CheckoutError as e:
        raise http_error(e)
