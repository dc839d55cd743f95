# checkout/services/cart_store.py
import json
import uuid
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List

import redis
from sqlalchemy.orm import Session

from checkout.domain.errors import CheckoutValidationError, NotFoundError, UnavailableError
from checkout.domain.schemas import CartItemOut, CartOut
from checkout.repos.cart_repo import CartRepo
from checkout.repos.product_repo import ProductRepo
from checkout.utils.retry import redis_retry
from checkout.utils.settings import CART_TTL_SECONDS
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


def normalize_variant(variant: str | None) -> str:
    return (variant or "").strip()


def _check_quantity(quantity: int) -> None:
    if quantity <= 0:
        raise CheckoutValidationError("Ilosc musi byc wieksza niz 0", code="INVALID_QUANTITY")


class CartStore(ABC):
    """Wspolny interfejs koszyka goscia (redis) i zalogowanego uzytkownika (baza)."""

    @abstractmethod
    def add_item(self, product_id: int, quantity: int, variant: str | None = None) -> List[CartItemOut]:
        ...

    @abstractmethod
    def update_qty(self, item_id: str, quantity: int) -> List[CartItemOut]:
        """quantity <= 0 usuwa pozycje."""
        ...

    @abstractmethod
    def remove_item(self, item_id: str) -> List[CartItemOut]:
        ...

    @abstractmethod
    def list(self) -> List[CartItemOut]:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    @abstractmethod
    def snapshot(self) -> CartOut:
        ...


def _subtotal(items: List[CartItemOut]) -> Decimal:
    return sum(
        ((i.unit_price or Decimal("0.00")) * i.quantity for i in items),
        Decimal("0.00"),
    )


class GuestCartStore(CartStore):
    """
    Koszyk goscia: lista pozycji jako JSON pod tokenem klienta.
    Zapis synchroniczny po kazdej zmianie, bez bazy.
    """

    def __init__(self, client: redis.Redis, guest_token: str):
        if not guest_token:
            raise CheckoutValidationError("Brak tokenu koszyka goscia", code="GUEST_TOKEN_REQUIRED")
        self.redis = client
        self.guest_token = guest_token

    @property
    def key(self) -> str:
        return f"guest-cart:{self.guest_token}"

    @redis_retry()
    def _load(self) -> List[dict]:
        raw = self.redis.get(self.key)
        return json.loads(raw) if raw else []

    @redis_retry()
    def _save(self, items: List[dict]) -> None:
        if items:
            self.redis.set(self.key, json.dumps(items), ex=CART_TTL_SECONDS)
        else:
            self.redis.delete(self.key)

    @staticmethod
    def _to_out(raw: dict) -> CartItemOut:
        return CartItemOut(
            id=raw["id"],
            product_id=raw["product_id"],
            quantity=raw["quantity"],
            variant=raw.get("variant") or None,
            unit_price=Decimal(raw["unit_price"]) if raw.get("unit_price") else None,
        )

    def add_item(self, product_id: int, quantity: int, variant: str | None = None) -> List[CartItemOut]:
        _check_quantity(quantity)
        variant = normalize_variant(variant)
        items = self._load()

        for raw in items:
            if raw["product_id"] == product_id and (raw.get("variant") or "") == variant:
                raw["quantity"] += quantity
                break
        else:
            items.append(
                {
                    "id": uuid.uuid4().hex,
                    "product_id": product_id,
                    "quantity": quantity,
                    "variant": variant,
                    "unit_price": None,
                }
            )

        self._save(items)
        return [self._to_out(i) for i in items]

    def update_qty(self, item_id: str, quantity: int) -> List[CartItemOut]:
        if quantity <= 0:
            return self.remove_item(item_id)

        items = self._load()
        for raw in items:
            if raw["id"] == item_id:
                raw["quantity"] = quantity
                break
        else:
            raise NotFoundError("Pozycja koszyka nie istnieje", code="CART_ITEM_NOT_FOUND")

        self._save(items)
        return [self._to_out(i) for i in items]

    def remove_item(self, item_id: str) -> List[CartItemOut]:
        items = [i for i in self._load() if i["id"] != item_id]
        self._save(items)
        return [self._to_out(i) for i in items]

    def list(self) -> List[CartItemOut]:
        return [self._to_out(i) for i in self._load()]

    @redis_retry()
    def clear(self) -> None:
        self.redis.delete(self.key)

    def snapshot(self) -> CartOut:
        items = self.list()
        return CartOut(guest_token=self.guest_token, items=items, subtotal=_subtotal(items))


class PersistedCartStore(CartStore):
    """
    Koszyk zalogowanego uzytkownika.
    Kazda zmiana to upsert po (cart_id, product_id, variant) + podbicie wersji koszyka.
    """

    def __init__(self, db: Session, owner_id: int):
        self.repo = CartRepo(db)
        self.products = ProductRepo(db)
        self.owner_id = owner_id
        self._cart = None

    @property
    def cart(self):
        if self._cart is None:
            self._cart = self.repo.get_or_create_cart(self.owner_id)
        return self._cart

    @staticmethod
    def _parse_id(item_id: str) -> int:
        try:
            return int(item_id)
        except (TypeError, ValueError):
            raise NotFoundError("Pozycja koszyka nie istnieje", code="CART_ITEM_NOT_FOUND")

    def _finish(self) -> List[CartItemOut]:
        self.repo.bump_version(self.cart.id)
        self.repo.commit()
        return self.list()

    def add_item(self, product_id: int, quantity: int, variant: str | None = None) -> List[CartItemOut]:
        _check_quantity(quantity)

        product = self.products.get_product(product_id)
        if not product or not product.is_active:
            raise UnavailableError("Produkt jest niedostepny", context={"product_id": product_id})

        try:
            self.repo.upsert_item(
                cart_id=self.cart.id,
                product_id=product_id,
                variant=normalize_variant(variant),
                quantity=quantity,
                unit_price=product.price,
            )
            logger.info(f"Produkt {product_id} ({variant or '-'}) x{quantity} w koszyku {self.cart.id}")
            return self._finish()
        except Exception as e:
            logger.error(f"Blad podczas dodawania produktu: {e}")
            self.repo.rollback()
            raise

    def update_qty(self, item_id: str, quantity: int) -> List[CartItemOut]:
        if quantity <= 0:
            return self.remove_item(item_id)

        if not self.repo.set_item_quantity(self.cart.id, self._parse_id(item_id), quantity):
            self.repo.rollback()
            raise NotFoundError("Pozycja koszyka nie istnieje", code="CART_ITEM_NOT_FOUND")
        return self._finish()

    def remove_item(self, item_id: str) -> List[CartItemOut]:
        self.repo.delete_cart_item(self.cart.id, self._parse_id(item_id))
        logger.info(f"Usunieto pozycje {item_id} z koszyka {self.cart.id}")
        return self._finish()

    def list(self) -> List[CartItemOut]:
        return [
            CartItemOut(
                id=str(i.id),
                product_id=i.product_id,
                quantity=i.quantity,
                variant=i.variant or None,
                unit_price=i.unit_price,
            )
            for i in self.repo.get_cart_items(self.cart.id)
        ]

    def clear(self) -> None:
        self.repo.clear_cart(self.cart.id)
        self.repo.bump_version(self.cart.id)
        self.repo.commit()

    def snapshot(self) -> CartOut:
        items = self.list()
        return CartOut(
            owner_id=self.owner_id,
            version=self.repo.get_version(self.cart.id),
            items=items,
            subtotal=_subtotal(items),
        )


def cart_store_for(db: Session, client: redis.Redis, owner_id: int | None, guest_token: str | None) -> CartStore:
    if owner_id:
        return PersistedCartStore(db, owner_id)
    return GuestCartStore(client, guest_token)
