# checkout/services/post_order_service.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from checkout.data.models.order import OrderModel
from checkout.data.models.order_item import OrderItemModel
from checkout.data.models.return_request import ReturnRequestModel
from checkout.domain.errors import CheckoutValidationError, ConflictError, NotFoundError
from checkout.repos.order_repo import OrderRepo
from checkout.repos.return_repo import ReturnRepo
from checkout.utils.settings import RETURN_WINDOW_DAYS
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

NOT_CANCELLABLE = ("delivered", "cancelled")

STATUS_TRANSITIONS = {
    "paid": ("processing", "shipped"),
    "processing": ("shipped",),
    "shipped": ("delivered",),
}


def _as_utc(value: datetime) -> datetime:
    #sqlite zwraca daty bez strefy
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PostOrderService:
    """
    Zmiany na zlozonym zamowieniu: anulowanie pozycji i zwroty.

    Ilosc pozycji dzieli sie na: aktywna, anulowana i zwroty
    (pending/approved/refunded/rejected). Cena i ilosc z chwili zakupu
    nigdy nie sa nadpisywane, przeliczane sa tylko total_price pozycji
    i sumy zamowienia.
    """

    def __init__(self, db: Session):
        self.db = db
        self.orders = OrderRepo(db)
        self.returns = ReturnRepo(db)

    # =====================================================
    # CANCEL
    # =====================================================
    def cancel_item(self, item_id: int, quantity: int, owner_id: int | None = None) -> OrderModel:
        item = self._get_item(item_id)
        order = item.order
        self._check_owner(order, owner_id)

        if order.status in NOT_CANCELLABLE:
            raise CheckoutValidationError(
                f"Nie mozna anulowac pozycji zamowienia o statusie {order.status}",
                code="ORDER_NOT_CANCELLABLE",
            )

        if quantity <= 0:
            raise CheckoutValidationError("Ilosc musi byc wieksza od zera", code="INVALID_QUANTITY")

        returned = self.returns.requested_quantity(item.id)
        active = item.quantity - item.cancelled_quantity - returned
        if quantity > active:
            raise CheckoutValidationError(
                f"Nie mozna anulowac {quantity} szt., pozostalo {active}",
                code="CANCEL_QUANTITY_EXCEEDED",
                context={"active": active},
            )

        now = datetime.now(timezone.utc)
        if not self.orders.add_cancelled_quantity(item.id, quantity, returned, now):
            #ktos anulowal w miedzyczasie, warunek w UPDATE nie przeszedl
            self.orders.rollback()
            raise CheckoutValidationError(
                "Pozycja zostala juz anulowana",
                code="CANCEL_QUANTITY_EXCEEDED",
            )

        self.orders.refresh(item)
        self._recompute(order, now)
        self.orders.commit()

        logger.info(
            f"Zamowienie {order.order_number}: anulowano {quantity} szt. pozycji {item.id}, "
            f"status {order.status}, total {order.total}"
        )
        return self.orders.get_order(order.id)

    def cancel_order(self, order_id: int, owner_id: int | None = None) -> OrderModel:
        order = self._get_order(order_id)
        self._check_owner(order, owner_id)

        if order.status in NOT_CANCELLABLE:
            raise CheckoutValidationError(
                f"Nie mozna anulowac zamowienia o statusie {order.status}",
                code="ORDER_NOT_CANCELLABLE",
            )

        for item in self.orders.get_order_items(order.id):
            remaining = item.quantity - item.cancelled_quantity - self.returns.requested_quantity(item.id)
            if remaining > 0:
                order = self.cancel_item(item.id, remaining, owner_id)
        return order

    # =====================================================
    # RETURNS
    # =====================================================
    def request_return(self, item_id: int, quantity: int, reason: str, owner_id: int) -> ReturnRequestModel:
        item = self._get_item(item_id)
        order = item.order
        self._check_owner(order, owner_id)

        if order.status != "delivered":
            raise CheckoutValidationError(
                "Zwrot mozliwy tylko dla dostarczonych zamowien",
                code="RETURN_NOT_ALLOWED",
            )

        reason = (reason or "").strip()
        if not reason:
            raise CheckoutValidationError("Podaj powod zwrotu", code="REASON_REQUIRED")

        delivered_at = _as_utc(order.delivered_at or order.created_at)
        if datetime.now(timezone.utc) - delivered_at > timedelta(days=RETURN_WINDOW_DAYS):
            raise CheckoutValidationError(
                f"Zwrot mozna zglosic w ciagu {RETURN_WINDOW_DAYS} dni od dostawy",
                code="RETURN_WINDOW_CLOSED",
            )

        if self.returns.has_pending(item.id):
            raise CheckoutValidationError(
                "Dla tej pozycji jest juz oczekujace zgloszenie zwrotu",
                code="RETURN_ALREADY_PENDING",
            )

        available = item.quantity - item.cancelled_quantity - self.returns.requested_quantity(item.id)
        if quantity <= 0 or quantity > available:
            raise CheckoutValidationError(
                f"Nie mozna zwrocic {quantity} szt., dostepne {available}",
                code="RETURN_QUANTITY_EXCEEDED",
                context={"available": available},
            )

        request = self.returns.add_return(
            ReturnRequestModel(
                order_id=order.id,
                order_item_id=item.id,
                owner_id=owner_id,
                reason=reason,
                requested_quantity=quantity,
                status="pending",
            )
        )
        self.returns.commit()

        logger.info(f"Zwrot {request.id}: {quantity} szt. pozycji {item.id} zamowienia {order.order_number}")
        return request

    def approve_return(
        self,
        return_id: int,
        approved_quantity: int | None = None,
        notes: str | None = None,
    ) -> ReturnRequestModel:
        request = self._get_return(return_id)

        if request.status == "approved":
            return request
        self._require_status(request, "pending")

        quantity = approved_quantity or request.requested_quantity
        if quantity > request.requested_quantity:
            raise CheckoutValidationError(
                "Zatwierdzona ilosc wieksza niz zgloszona",
                code="RETURN_QUANTITY_EXCEEDED",
            )

        item = request.order_item
        if self.returns.returned_quantity(item.id) + item.cancelled_quantity + quantity > item.quantity:
            raise CheckoutValidationError(
                "Zwrot przekracza ilosc pozycji",
                code="RETURN_QUANTITY_EXCEEDED",
            )

        self._transition(
            request,
            "pending",
            {"status": "approved", "approved_quantity": quantity, "notes": notes},
        )
        #totals zmienia dopiero zatwierdzenie
        self._recompute(item.order, datetime.now(timezone.utc))
        self.returns.commit()

        logger.info(f"Zwrot {request.id} zatwierdzony ({quantity} szt.)")
        return self.returns.refresh(request)

    def reject_return(self, return_id: int, notes: str | None = None) -> ReturnRequestModel:
        request = self._get_return(return_id)

        if request.status == "rejected":
            return request
        self._require_status(request, "pending")

        self._transition(request, "pending", {"status": "rejected", "notes": notes})
        self.returns.commit()

        logger.info(f"Zwrot {request.id} odrzucony")
        return self.returns.refresh(request)

    def refund_return(self, return_id: int) -> ReturnRequestModel:
        request = self._get_return(return_id)

        if request.status == "refunded":
            return request
        self._require_status(request, "approved")

        self._transition(request, "approved", {"status": "refunded"})
        self.returns.commit()

        logger.info(f"Zwrot {request.id} rozliczony")
        return self.returns.refresh(request)

    def withdraw_return(self, return_id: int, owner_id: int) -> ReturnRequestModel:
        request = self._get_return(return_id)
        if request.owner_id != owner_id:
            raise PermissionError("Brak dostepu do zgloszenia zwrotu")

        if request.status == "cancelled":
            return request
        self._require_status(request, "pending")

        self._transition(request, "pending", {"status": "cancelled"})
        self.returns.commit()

        logger.info(f"Zwrot {request.id} wycofany przez klienta")
        return self.returns.refresh(request)

    # =====================================================
    # ADMIN
    # =====================================================
    def update_status(self, order_id: int, status: str) -> OrderModel:
        order = self._get_order(order_id)

        if order.status == status:
            return order

        if status not in STATUS_TRANSITIONS.get(order.status, ()):
            raise CheckoutValidationError(
                f"Niedozwolona zmiana statusu {order.status} -> {status}",
                code="INVALID_STATUS_TRANSITION",
            )

        previous = order.status
        order.status = status
        if status == "delivered":
            order.delivered_at = datetime.now(timezone.utc)
        self.orders.commit()

        logger.info(f"Zamowienie {order.order_number}: {previous} -> {status}")
        return self.orders.get_order(order.id)

    # =====================================================
    # HELPERS
    # =====================================================
    def _recompute(self, order: OrderModel, now: datetime) -> None:
        subtotal = Decimal("0")
        all_cancelled = True

        for item in self.orders.get_order_items(order.id):
            returned = self.returns.returned_quantity(item.id)
            active = item.quantity - item.cancelled_quantity - returned
            item.total_price = Decimal(item.unit_price) * active
            subtotal += item.total_price
            if item.quantity - item.cancelled_quantity > 0:
                all_cancelled = False

        order.subtotal = subtotal
        order.total = subtotal + Decimal(order.shipping or 0)

        if all_cancelled:
            order.status = "cancelled"
            order.cancelled_at = now
        elif order.status == "paid":
            order.status = "processing"

        self.db.flush()

    def _transition(self, request: ReturnRequestModel, from_status: str, new_data: dict) -> None:
        new_data = {**new_data, "updated_at": datetime.now(timezone.utc)}
        if not self.returns.transition(request.id, from_status, new_data):
            self.returns.rollback()
            raise ConflictError("Zgloszenie zwrotu zostalo zmienione", code="RETURN_STATE_CONFLICT")

    @staticmethod
    def _require_status(request: ReturnRequestModel, status: str) -> None:
        if request.status != status:
            raise CheckoutValidationError(
                f"Zgloszenie ma status {request.status}, oczekiwano {status}",
                code="INVALID_RETURN_TRANSITION",
            )

    @staticmethod
    def _check_owner(order: OrderModel, owner_id: int | None) -> None:
        #zamowienia gosci (owner_id NULL) nie maja konta do sprawdzenia
        if order.owner_id is not None and order.owner_id != owner_id:
            raise PermissionError("Brak dostepu do zamowienia")

    def _get_order(self, order_id: int) -> OrderModel:
        order = self.orders.get_order(order_id)
        if not order:
            raise NotFoundError("Zamowienie nie istnieje", code="ORDER_NOT_FOUND")
        return order

    def _get_item(self, item_id: int) -> OrderItemModel:
        item = self.orders.get_order_item(item_id)
        if not item:
            raise NotFoundError("Pozycja zamowienia nie istnieje", code="ORDER_ITEM_NOT_FOUND")
        return item

    def _get_return(self, return_id: int) -> ReturnRequestModel:
        request = self.returns.get_return(return_id)
        if not request:
            raise NotFoundError("Zgloszenie zwrotu nie istnieje", code="RETURN_NOT_FOUND")
        return request
