# checkout/api/errors.py
from fastapi import HTTPException

from checkout.domain.errors import (
    CheckoutError,
    CheckoutValidationError,
    ConflictError,
    GatewayRejectedError,
    NotFoundError,
    ReconciliationError,
    UnavailableError,
)
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

STATUS_CODES = {
    CheckoutValidationError: 400,
    NotFoundError: 404,
    UnavailableError: 409,
    ConflictError: 409,
    GatewayRejectedError: 402,
    ReconciliationError: 500,
}


def http_error(e: CheckoutError) -> HTTPException:
    """Blad domenowy -> odpowiedz HTTP z {kind, code, message}."""
    status_code = next(
        (code for cls, code in STATUS_CODES.items() if isinstance(e, cls)),
        400,
    )
    if isinstance(e, ReconciliationError):
        #pelny kontekst jest juz w logu i w rejestrze, tu tylko referencja
        logger.critical(f"[RECONCILIATION] {e.code} reference={e.reference}")
    return HTTPException(status_code=status_code, detail=e.to_detail())


def forbidden(e: PermissionError) -> HTTPException:
    return HTTPException(
        status_code=403,
        detail={"kind": "PERMISSION", "code": "FORBIDDEN", "message": str(e)},
    )
