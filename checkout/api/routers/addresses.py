# checkout/api/routers/addresses.py
from typing import List

import redis
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from checkout.api.errors import http_error
from checkout.data.database import get_db
from checkout.data.redis_client import get_redis
from checkout.domain.errors import CheckoutError
from checkout.domain.schemas import AddressIn, AddressOut, AddressUpdate
from checkout.services.address_service import AddressService

router = APIRouter(prefix="/addresses", tags=["addresses"])


def get_service(db: Session, client: redis.Redis):
    return AddressService(db, client)


@router.get("", response_model=List[AddressOut])
def list_addresses(
    owner_id: int = Query(..., gt=0),
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    return get_service(db, client).list_addresses(owner_id)


@router.post("", response_model=AddressOut, status_code=201)
def create_address(
    payload: AddressIn,
    owner_id: int = Query(..., gt=0),
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    svc = get_service(db, client)
    try:
        return svc.create_address(owner_id, payload)
    except CheckoutError as e:
        raise http_error(e)


@router.put("/{address_id}", response_model=AddressOut)
def update_address(
    address_id: int,
    payload: AddressUpdate,
    owner_id: int = Query(..., gt=0),
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    svc = get_service(db, client)
    try:
        return svc.update_address(owner_id, address_id, payload)
    except CheckoutError as e:
        raise http_error(e)


@router.delete("/{address_id}", status_code=204)
def delete_address(
    address_id: int,
    owner_id: int = Query(..., gt=0),
    db: Session = Depends(get_db),
    client: redis.Redis = Depends(get_redis),
):
    svc = get_service(db, client)
    try:
        svc.delete_address(owner_id, address_id)
    except CheckoutError as e:
        raise http_error(e)
