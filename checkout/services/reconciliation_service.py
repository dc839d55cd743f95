# checkout/services/reconciliation_service.py
from datetime import datetime, timezone
from typing import Any, Dict, Iterable

from sqlalchemy.orm import Session

from checkout.data.models.reconciliation_event import ReconciliationEventModel
from checkout.repos.product_repo import ProductRepo
from checkout.repos.reconciliation_repo import ReconciliationRepo
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

STOCK_DECREMENT = "stock_decrement"
PAYMENT_WITHOUT_ORDER = "payment_without_order"
ORDER_NUMBER_EXHAUSTED = "order_number_exhausted"
DUPLICATE_PAYMENT = "duplicate_payment"
STOCK_OVERSOLD = "stock_oversold"

#pieniadze klienta bez pokrycia w zamowieniu
MONEY_AT_RISK = (PAYMENT_WITHOUT_ORDER, DUPLICATE_PAYMENT)


class ReconciliationService:
    """
    Rejestr niespojnosci do recznego albo asynchronicznego wyjasnienia.
    Nic co tu trafia nie moze zginac bez sladu: zawsze log + wiersz w bazie.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = ReconciliationRepo(db)
        self.products = ProductRepo(db)

    def record(
        self,
        kind: str,
        payload: Dict[str, Any],
        order_id: int | None = None,
        payment_attempt_id: int | None = None,
        error: str | None = None,
    ) -> ReconciliationEventModel | None:
        level = logger.critical if kind in MONEY_AT_RISK else logger.error
        level(
            f"[RECONCILIATION] {kind} order={order_id} payment_attempt={payment_attempt_id} "
            f"error={error} payload={payload}"
        )

        try:
            #poprzednia transakcja mogla sie wysypac
            self.repo.rollback()
            return self.repo.add_event(
                ReconciliationEventModel(
                    kind=kind,
                    order_id=order_id,
                    payment_attempt_id=payment_attempt_id,
                    payload=payload,
                    last_error=error,
                )
            )
        except Exception as e:
            #zostaje tylko log, ale pelny - z niego da sie odtworzyc zdarzenie
            logger.critical(f"[RECONCILIATION] nie udalo sie zapisac zdarzenia {kind}: {e} payload={payload}")
            self.repo.rollback()
            return None

    def decrement_stock(self, order_id: int, lines: Iterable[Dict[str, Any]]) -> int:
        """
        Zmniejsza stany po zlozeniu zamowienia. Blad nie cofa zamowienia,
        tylko trafia do rejestru i do ponowienia w tle. Zwraca liczbe bledow.
        """
        failures = 0
        for line in lines:
            product_id, quantity = line["product_id"], line["quantity"]
            try:
                self._take_stock(order_id, product_id, quantity)
            except Exception as e:
                failures += 1
                self.products.rollback()
                self.record(
                    STOCK_DECREMENT,
                    {"product_id": product_id, "quantity": quantity},
                    order_id=order_id,
                    error=str(e),
                )

        if failures:
            self._schedule_stock_retry()
        return failures

    def retry_stock_decrements(self, limit: int = 100) -> int:
        resolved = 0
        for event in self.repo.list_open(STOCK_DECREMENT, limit=limit):
            event_id, order_id = event.id, event.order_id
            product_id = event.payload["product_id"]
            quantity = event.payload["quantity"]
            event.attempts += 1
            try:
                self._take_stock(order_id, product_id, quantity, event=event)
                resolved += 1
                logger.info(f"Stan produktu {product_id} uzgodniony dla zamowienia {order_id}")
            except Exception as e:
                self.repo.rollback()
                event = self.repo.get_event(event_id)
                event.attempts += 1
                event.last_error = str(e)
                self.repo.commit()
                logger.warning(f"Ponowienie zmniejszenia stanu {product_id} nieudane: {e}")
        return resolved

    def _take_stock(self, order_id, product_id: int, quantity: int, event=None) -> None:
        shortage = self.products.take_stock(product_id, quantity)
        if shortage is None:
            raise LookupError(f"Produkt {product_id} nie istnieje")

        if event is not None:
            event.status = "resolved"
            event.resolved_at = datetime.now(timezone.utc)
        self.products.commit()

        if shortage:
            #sprzedane wiecej niz bylo na stanie, do wyjasnienia recznie
            self.record(
                STOCK_OVERSOLD,
                {"product_id": product_id, "quantity": quantity, "shortage": shortage},
                order_id=order_id,
            )

    @staticmethod
    def _schedule_stock_retry():
        from checkout.tasks.reconcile import retry_stock_decrements_task

        try:
            retry_stock_decrements_task.delay()
        except Exception as e:
            #beat i tak podejmie otwarte zdarzenia
            logger.warning(f"Nie udalo sie zlecic ponowienia stanow: {e}")
