# checkout/api/routers/carts.py
import redis
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from checkout.api.errors import http_error
from checkout.data.database import get_db
from checkout.data.redis_client import get_redis
from checkout.domain.errors import CheckoutError
from checkout.domain.schemas import CartItemIn, CartItemUpdate, CartOut, MergeCartIn, MergeCartOut
from checkout.services.cart_merge_service import CartMergeService
from checkout.services.cart_store import CartStore, cart_store_for

router = APIRouter(prefix="/carts", tags=["carts"])


def get_store(db: Session, client: redis.Redis, owner_id: int | None, guest_token: str | None) -> CartStore:
    try:
        return cart_store_for(db, client, owner_id, guest_token)
    except CheckoutError as e:
        raise http_error(e)


@router.get("", response_model=CartOut)
def get_cart(
    owner_id: int | None = Query(None),
    guest_token: str | None = Query(None),
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    return get_store(db, client, owner_id, guest_token).snapshot()


@router.post("/items", response_model=CartOut)
def add_item(
    payload: CartItemIn,
    owner_id: int | None = Query(None),
    guest_token: str | None = Query(None),
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    store = get_store(db, client, owner_id, guest_token)
    try:
        store.add_item(payload.product_id, payload.quantity, payload.variant)
    except CheckoutError as e:
        raise http_error(e)
    return store.snapshot()


@router.patch("/items/{item_id}", response_model=CartOut)
def update_item(
    item_id: str,
    payload: CartItemUpdate,
    owner_id: int | None = Query(None),
    guest_token: str | None = Query(None),
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    store = get_store(db, client, owner_id, guest_token)
    try:
        store.update_qty(item_id, payload.quantity)
    except CheckoutError as e:
        raise http_error(e)
    return store.snapshot()


@router.delete("/items/{item_id}", response_model=CartOut)
def remove_item(
    item_id: str,
    owner_id: int | None = Query(None),
    guest_token: str | None = Query(None),
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    store = get_store(db, client, owner_id, guest_token)
    try:
        store.remove_item(item_id)
    except CheckoutError as e:
        raise http_error(e)
    return store.snapshot()


@router.post("/merge", response_model=MergeCartOut)
def merge_guest_cart(
    payload: MergeCartIn,
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    """
    Wywolywane raz po zalogowaniu (gosc -> uzytkownik).
    Ponowne wywolanie z pustym koszykiem goscia niczego nie zmienia.
    """
    svc = CartMergeService(db, client)
    return MergeCartOut(merged_count=svc.merge_guest_into_user(payload.owner_id, payload.guest_token))
