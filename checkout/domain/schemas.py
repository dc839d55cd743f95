# checkout/domain/schemas.py
import re
from datetime import datetime
from decimal import Decimal
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ZIP_RE = re.compile(r"^\d{6}$")

PaymentMethod = Literal["cod", "upi", "card"]
GATEWAY_METHODS = ("upi", "card")


def normalize_phone(value: str) -> str:
    """Usuwa prefiks +91 i wszystko co nie jest cyfra."""
    cleaned = re.sub(r"^\+91\s*", "", value.strip())
    return re.sub(r"\D", "", cleaned)


def _check_zip(value: str) -> str:
    value = value.strip()
    if not _ZIP_RE.match(value):
        raise ValueError("Kod pocztowy musi miec dokladnie 6 cyfr")
    return value


def _check_phone(value: str) -> str:
    digits = normalize_phone(value)
    if len(digits) != 10:
        raise ValueError("Numer telefonu musi miec dokladnie 10 cyfr")
    return digits


# =====================================================
# CART
# =====================================================
class CartItemIn(BaseModel):
    """Schema dla dodawania produktu do koszyka."""

    product_id: int = Field(..., gt=0, description="ID produktu (musi byc > 0)")
    quantity: int = Field(..., gt=0, description="Ilosc produktu (musi byc > 0)")
    variant: str | None = Field(None, max_length=50, description="Np. rozmiar")


class CartItemUpdate(BaseModel):
    #<= 0 usuwa pozycje
    quantity: int


class CartItemOut(BaseModel):
    id: str
    product_id: int
    quantity: int
    variant: str | None = None
    unit_price: Decimal | None = None


class CartOut(BaseModel):
    owner_id: int | None = None
    guest_token: str | None = None
    version: int | None = None
    items: List[CartItemOut]
    subtotal: Decimal


class MergeCartIn(BaseModel):
    owner_id: int = Field(..., gt=0)
    guest_token: str = Field(..., min_length=1)


class MergeCartOut(BaseModel):
    merged_count: int


# =====================================================
# PURCHASE INTENT
# =====================================================
class NavParams(BaseModel):
    """Parametry nawigacji checkoutu (?direct=true&product_id=..&quantity=..&variant=..)."""

    direct: bool = False
    product_id: int | None = None
    quantity: int | None = None
    variant: str | None = None

    @property
    def is_direct_purchase(self) -> bool:
        return bool(self.direct and self.product_id and self.quantity and self.quantity >= 1)


class ResolveIntentIn(NavParams):
    owner_id: int | None = None
    guest_token: str | None = None


class LineItem(BaseModel):
    product_id: int
    name: str
    unit_price: Decimal
    quantity: int
    variant: str | None = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class PurchaseIntent(BaseModel):
    """Snapshot ustalony raz na sesje checkoutu, nie czyta juz koszyka ani katalogu."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    source: Literal["CART", "DIRECT"]
    items: List[LineItem]
    subtotal: Decimal
    shipping: Decimal
    total: Decimal
    owner_id: int | None = None
    guest_token: str | None = None


# =====================================================
# ADDRESS
# =====================================================
class AddressSnapshot(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=100)
    line1: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    zip_code: str
    phone: str

    @field_validator("full_name", "line1", "city", "state")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Pole nie moze byc puste")
        return value

    @field_validator("zip_code")
    @classmethod
    def valid_zip(cls, value: str) -> str:
        return _check_zip(value)

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, value: str) -> str:
        return _check_phone(value)


class AddressIn(AddressSnapshot):
    is_default: bool = False


class AddressUpdate(BaseModel):
    full_name: str | None = Field(None, min_length=1, max_length=100)
    line1: str | None = Field(None, min_length=1, max_length=200)
    city: str | None = Field(None, min_length=1, max_length=100)
    state: str | None = Field(None, min_length=1, max_length=100)
    zip_code: str | None = None
    phone: str | None = None
    is_default: bool | None = None

    @field_validator("zip_code")
    @classmethod
    def valid_zip(cls, value: str | None) -> str | None:
        return None if value is None else _check_zip(value)

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, value: str | None) -> str | None:
        return None if value is None else _check_phone(value)


class AddressOut(BaseModel):
    id: int
    owner_id: int
    full_name: str
    line1: str
    city: str
    state: str
    zip_code: str
    phone: str
    is_default: bool

    model_config = ConfigDict(from_attributes=True)


class SelectAddressIn(BaseModel):
    owner_id: int = Field(..., gt=0)
    address_id: int = Field(..., gt=0)


# =====================================================
# ORDER CREATION / PAYMENT
# =====================================================
class CreateOrderIn(BaseModel):
    payment_method: PaymentMethod
    address_id: int | None = None
    address: AddressSnapshot | None = None
    owner_id: int | None = None
    guest_token: str | None = None


class CreateOrderOut(BaseModel):
    status: Literal["placed", "payment_required"]
    order_id: int | None = None
    order_number: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    items: List[LineItem] = []


class PaymentIntentIn(BaseModel):
    session_id: str = Field(..., min_length=1)
    owner_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0)
    currency: str = Field("INR", min_length=3, max_length=3)


class PaymentIntentOut(BaseModel):
    gateway_order_id: str
    key: str
    amount: Decimal
    currency: str


class VerifyPaymentIn(BaseModel):
    gateway_payment_id: str = Field(..., min_length=1)
    gateway_order_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    intent_snapshot: PurchaseIntent | None = None
    owner_id: int = Field(..., gt=0)


class VerifyPaymentOut(BaseModel):
    order_id: int
    order_number: str


class DismissPaymentIn(BaseModel):
    owner_id: int = Field(..., gt=0)


class PaymentAttemptOut(BaseModel):
    gateway_order_id: str
    status: str
    failure_reason: str | None = None
    order_id: int | None = None

    model_config = ConfigDict(from_attributes=True)


# =====================================================
# ORDERS / POST-ORDER
# =====================================================
class ReturnRequestOut(BaseModel):
    id: int
    order_id: int
    order_item_id: int
    reason: str
    requested_quantity: int
    approved_quantity: int | None = None
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    product_name: str
    unit_price: Decimal
    quantity: int
    cancelled_quantity: int
    total_price: Decimal
    variant: str | None = None
    return_requests: List[ReturnRequestOut] = []

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    """Schema dla zamowienia (response)."""

    id: int
    order_number: str
    owner_id: int | None = None
    status: str
    payment_method: str
    payment_status: str
    subtotal: Decimal
    shipping: Decimal
    total: Decimal
    shipping_full_name: str
    shipping_line1: str
    shipping_city: str
    shipping_state: str
    shipping_zip_code: str
    shipping_phone: str
    items: List[OrderItemOut]
    created_at: datetime
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class CancelItemIn(BaseModel):
    quantity: int = Field(..., gt=0)
    owner_id: int | None = None


class CancelOrderIn(BaseModel):
    owner_id: int | None = None


class ReturnRequestIn(BaseModel):
    quantity: int = Field(..., gt=0)
    reason: str = Field(..., max_length=500)
    owner_id: int = Field(..., gt=0)


class ApproveReturnIn(BaseModel):
    approved_quantity: int | None = Field(None, gt=0)
    notes: str | None = None


class OrderStatusIn(BaseModel):
    status: Literal["processing", "shipped", "delivered"]
