# checkout/repos/cart_repo.py
from decimal import Decimal

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from checkout.data.models.cart import CartModel
from checkout.data.models.cart_item import CartItemModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_cart_by_owner(self, owner_id: int) -> CartModel | None:
        return self.db.execute(
            select(CartModel).where(CartModel.owner_id == owner_id)
        ).scalar_one_or_none()

    def get_or_create_cart(self, owner_id: int) -> CartModel:
        cart = self.get_cart_by_owner(owner_id)
        if cart:
            return cart

        try:
            with self.db.begin_nested():
                cart = CartModel(owner_id=owner_id, version=1)
                self.db.add(cart)
        except IntegrityError:
            #drugi request utworzyl koszyk w tym samym momencie
            cart = self.get_cart_by_owner(owner_id)
        return cart

    def get_cart_items(self, cart_id: int) -> list[CartItemModel]:
        return list(
            self.db.execute(
                select(CartItemModel)
                .where(CartItemModel.cart_id == cart_id)
                .order_by(CartItemModel.id)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def get_cart_item(self, cart_id: int, item_id: int) -> CartItemModel | None:
        return self.db.execute(
            select(CartItemModel).where(
                CartItemModel.cart_id == cart_id,
                CartItemModel.id == item_id,
            ).execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def find_cart_item(self, cart_id: int, product_id: int, variant: str) -> CartItemModel | None:
        return self.db.execute(
            select(CartItemModel).where(
                CartItemModel.cart_id == cart_id,
                CartItemModel.product_id == product_id,
                CartItemModel.variant == variant,
            ).execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _increment(self, cart_id: int, product_id: int, variant: str, quantity: int, unit_price) -> int:
        values = {"quantity": CartItemModel.quantity + quantity}
        if unit_price is not None:
            values["unit_price"] = unit_price
        return self.db.execute(
            update(CartItemModel)
            .where(
                CartItemModel.cart_id == cart_id,
                CartItemModel.product_id == product_id,
                CartItemModel.variant == variant,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount

    def upsert_item(
        self,
        cart_id: int,
        product_id: int,
        variant: str,
        quantity: int,
        unit_price: Decimal | None = None,
    ) -> None:
        """
        Upsert po (cart_id, product_id, variant).
        Zwiekszenie ilosci to UPDATE quantity = quantity + n, nie nadpisanie.
        """
        if self._increment(cart_id, product_id, variant, quantity, unit_price):
            return

        try:
            with self.db.begin_nested():
                self.db.add(
                    CartItemModel(
                        cart_id=cart_id,
                        product_id=product_id,
                        variant=variant,
                        quantity=quantity,
                        unit_price=unit_price,
                    )
                )
        except IntegrityError:
            #rownolegly insert tej samej pary, wiersz juz jest wiec dodajemy do niego
            self._increment(cart_id, product_id, variant, quantity, unit_price)

    def set_item_quantity(self, cart_id: int, item_id: int, quantity: int) -> int:
        return self.db.execute(
            update(CartItemModel)
            .where(CartItemModel.cart_id == cart_id, CartItemModel.id == item_id)
            .values(quantity=quantity)
            .execution_options(synchronize_session=False)
        ).rowcount

    def delete_cart_item(self, cart_id: int, item_id: int) -> int:
        return self.db.execute(
            delete(CartItemModel)
            .where(CartItemModel.cart_id == cart_id, CartItemModel.id == item_id)
            .execution_options(synchronize_session=False)
        ).rowcount

    def clear_cart(self, cart_id: int) -> int:
        return self.db.execute(
            delete(CartItemModel)
            .where(CartItemModel.cart_id == cart_id)
            .execution_options(synchronize_session=False)
        ).rowcount

    def bump_version(self, cart_id: int) -> None:
        self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart_id)
            .values(version=CartModel.version + 1)
            .execution_options(synchronize_session=False)
        )

    def get_version(self, cart_id: int) -> int:
        return self.db.execute(
            select(CartModel.version).where(CartModel.id == cart_id)
        ).scalar_one()

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
