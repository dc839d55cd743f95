# checkout/api/routers/returns.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from checkout.api.errors import forbidden, http_error
from checkout.data.database import get_db
from checkout.domain.errors import CheckoutError
from checkout.domain.schemas import ApproveReturnIn, ReturnRequestOut
from checkout.services.post_order_service import PostOrderService

router = APIRouter(prefix="/returns", tags=["returns"])


def get_service(db: Session):
    return PostOrderService(db)


@router.post("/{return_id}/approve", response_model=ReturnRequestOut)
def approve_return(
    return_id: int,
    payload: ApproveReturnIn,
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.approve_return(return_id, payload.approved_quantity, payload.notes)
    except CheckoutError as e:
        raise http_error(e)


@router.post("/{return_id}/reject", response_model=ReturnRequestOut)
def reject_return(
    return_id: int,
    notes: str | None = Query(None),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.reject_return(return_id, notes)
    except CheckoutError as e:
        raise http_error(e)


@router.post("/{return_id}/refund", response_model=ReturnRequestOut)
def refund_return(
    return_id: int,
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.refund_return(return_id)
    except CheckoutError as e:
        raise http_error(e)


@router.post("/{return_id}/withdraw", response_model=ReturnRequestOut)
def withdraw_return(
    return_id: int,
    owner_id: int = Query(..., gt=0),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.withdraw_return(return_id, owner_id)
    except PermissionError as e:
        raise forbidden(e)
    except CheckoutError as e:
        raise http_error(e)
