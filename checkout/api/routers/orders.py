# checkout/api/routers/orders.py
import redis
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from checkout.api.errors import forbidden, http_error
from checkout.data.database import get_db
from checkout.data.redis_client import get_redis
from checkout.domain.errors import CheckoutError
from checkout.domain.schemas import (
    CancelItemIn,
    CancelOrderIn,
    OrderOut,
    OrderStatusIn,
    ReturnRequestIn,
    ReturnRequestOut,
)
from checkout.services.order_service import OrderService
from checkout.services.post_order_service import PostOrderService

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(db: Session):
    return PostOrderService(db)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    owner_id: int | None = Query(None),
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    """
    Pobiera szczegóły zamówienia.
    """
    svc = OrderService(db, client)
    try:
        return svc.get_order(order_id, owner_id)
    except PermissionError as e:
        raise forbidden(e)
    except CheckoutError as e:
        raise http_error(e)


@router.post("/items/{item_id}/cancel", response_model=OrderOut)
def cancel_order_item(
    item_id: int,
    payload: CancelItemIn,
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.cancel_item(item_id, payload.quantity, payload.owner_id)
    except PermissionError as e:
        raise forbidden(e)
    except CheckoutError as e:
        raise http_error(e)


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: int,
    payload: CancelOrderIn,
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.cancel_order(order_id, payload.owner_id)
    except PermissionError as e:
        raise forbidden(e)
    except CheckoutError as e:
        raise http_error(e)


@router.post("/items/{item_id}/returns", response_model=ReturnRequestOut, status_code=201)
def request_return(
    item_id: int,
    payload: ReturnRequestIn,
    db: Session = Depends(get_db),
):
    """
    Zgloszenie zwrotu (pending). Sumy zamowienia zmienia dopiero zatwierdzenie.
    """
    svc = get_service(db)
    try:
        return svc.request_return(item_id, payload.quantity, payload.reason, payload.owner_id)
    except PermissionError as e:
        raise forbidden(e)
    except CheckoutError as e:
        raise http_error(e)


@router.put("/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: int,
    payload: OrderStatusIn,
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.update_status(order_id, payload.status)
    except CheckoutError as e:
        raise http_error(e)
