# checkout/api/routers/checkout.py
import redis
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from checkout.api.errors import forbidden, http_error
from checkout.data.database import get_db
from checkout.data.redis_client import get_redis
from checkout.domain.errors import CheckoutError
from checkout.domain.schemas import (
    AddressOut,
    CreateOrderIn,
    CreateOrderOut,
    PurchaseIntent,
    ResolveIntentIn,
    SelectAddressIn,
)
from checkout.services.address_service import AddressService
from checkout.services.intent_resolver import PurchaseIntentResolver
from checkout.services.order_service import OrderService

router = APIRouter(prefix="/checkout/sessions", tags=["checkout"])


def get_service(db: Session, client: redis.Redis):
    return OrderService(db, client)


@router.post("/{session_id}/intent", response_model=PurchaseIntent)
def resolve_intent(
    session_id: str,
    payload: ResolveIntentIn,
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    """
    Ustala zawartosc checkoutu (koszyk albo "kup teraz").
    Kolejne wywolania w tej samej sesji zwracaja ten sam wynik.
    """
    resolver = PurchaseIntentResolver(db, client)
    try:
        return resolver.resolve(session_id, payload, payload.owner_id, payload.guest_token)
    except CheckoutError as e:
        raise http_error(e)


@router.get("/{session_id}/intent", response_model=PurchaseIntent)
def get_intent(
    session_id: str,
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    try:
        return PurchaseIntentResolver(db, client).current(session_id)
    except CheckoutError as e:
        raise http_error(e)


@router.post("/{session_id}/address", response_model=AddressOut)
def select_address(
    session_id: str,
    payload: SelectAddressIn,
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    svc = AddressService(db, client)
    try:
        return svc.select_address(session_id, payload.owner_id, payload.address_id)
    except CheckoutError as e:
        raise http_error(e)


@router.post("/{session_id}/orders", response_model=CreateOrderOut)
def create_order(
    session_id: str,
    payload: CreateOrderIn,
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    """
    COD -> zamowienie od razu (status placed).
    UPI/karta -> payment_required, zamowienie powstanie po /payments/verify.
    """
    svc = get_service(db, client)
    try:
        return svc.create_order(session_id, payload)
    except PermissionError as e:
        raise forbidden(e)
    except CheckoutError as e:
        raise http_error(e)
