# checkout/domain/errors.py
"""
Bledy checkoutu, jedna klasa na kazda kategorie:

VALIDATION        - zle dane adresu/platnosci, klient poprawia formularz
UNAVAILABLE       - produkt niedostepny / pusty koszyk, koniec tej sesji
CONFLICT          - kolizja numeru zamowienia, rownolegle wyslanie formularza
GATEWAY_REJECTED  - platnosc odrzucona lub przerwana, mozna sprobowac ponownie
RECONCILIATION    - platnosc pobrana a zapis zamowienia sie nie udal
"""
from typing import Any, Dict


class CheckoutError(Exception):
    kind = "CHECKOUT"
    code = "CHECKOUT_ERROR"

    def __init__(self, message: str, code: str | None = None, context: Dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = context or {}

    def to_detail(self) -> Dict[str, Any]:
        return {"kind": self.kind, "code": self.code, "message": self.message}


class CheckoutValidationError(CheckoutError, ValueError):
    kind = "VALIDATION"
    code = "INVALID_INPUT"


class NotFoundError(CheckoutError, LookupError):
    kind = "NOT_FOUND"
    code = "NOT_FOUND"


class UnavailableError(CheckoutError):
    kind = "UNAVAILABLE"
    code = "PRODUCT_UNAVAILABLE"


class ConflictError(CheckoutError):
    kind = "CONFLICT"
    code = "CONFLICT"


class GatewayRejectedError(CheckoutError):
    kind = "GATEWAY_REJECTED"
    code = "PAYMENT_FAILED"


class ReconciliationError(CheckoutError):
    kind = "RECONCILIATION"
    code = "CONTACT_SUPPORT"

    def __init__(self, message: str, reference: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.reference = reference

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["reference"] = self.reference
        return detail


CART_EMPTY = "CART_EMPTY"
PRODUCT_UNAVAILABLE = "PRODUCT_UNAVAILABLE"
