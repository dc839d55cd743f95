# checkout/services/cart_merge_service.py
import redis
from sqlalchemy.orm import Session

from checkout.repos.cart_repo import CartRepo
from checkout.repos.product_repo import ProductRepo
from checkout.services.cart_store import GuestCartStore, normalize_variant
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


class CartMergeService:
    """
    Przenosi koszyk goscia do koszyka uzytkownika po zalogowaniu.
    Wywolywane raz na przejscie gosc -> zalogowany, ponowne wywolanie z pustym
    koszykiem goscia nic nie robi.
    """

    def __init__(self, db: Session, client: redis.Redis):
        self.db = db
        self.redis = client
        self.repo = CartRepo(db)
        self.products = ProductRepo(db)

    def merge_guest_into_user(self, owner_id: int, guest_token: str) -> int:
        guest = GuestCartStore(self.redis, guest_token)
        guest_items = guest.list()

        if not guest_items:
            logger.info(f"Koszyk goscia {guest_token} pusty, nic do scalenia dla {owner_id}")
            guest.clear()
            return 0

        cart = self.repo.get_or_create_cart(owner_id)
        merged_count = 0

        for item in guest_items:
            #kazda pozycja w osobnym savepoincie, blad jednej nie przerywa reszty
            try:
                with self.db.begin_nested():
                    product = self.products.get_product(item.product_id)
                    if not product or not product.is_active:
                        logger.warning(
                            f"Pomijam produkt {item.product_id} z koszyka goscia - niedostepny"
                        )
                        continue

                    self.repo.upsert_item(
                        cart_id=cart.id,
                        product_id=item.product_id,
                        variant=normalize_variant(item.variant),
                        quantity=item.quantity,
                        unit_price=product.price,
                    )
                merged_count += 1
            except Exception as e:
                logger.warning(f"Nie udalo sie scalic produktu {item.product_id}: {e}")

        self.repo.bump_version(cart.id)
        self.repo.commit()

        #czyscimy dopiero po calej petli, twardy blad wyzej zostawia koszyk goscia do ponowienia
        if merged_count > 0:
            guest.clear()

        logger.info(
            f"Scalono {merged_count}/{len(guest_items)} pozycji z koszyka goscia "
            f"{guest_token} do koszyka {cart.id}"
        )
        return merged_count
