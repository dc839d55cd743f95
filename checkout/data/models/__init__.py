#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from checkout.data.models.product import ProductModel
from checkout.data.models.cart import CartModel
from checkout.data.models.cart_item import CartItemModel
from checkout.data.models.address import AddressModel
from checkout.data.models.order import OrderModel
from checkout.data.models.order_item import OrderItemModel
from checkout.data.models.return_request import ReturnRequestModel
from checkout.data.models.payment_attempt import PaymentAttemptModel
from checkout.data.models.reconciliation_event import ReconciliationEventModel

__all__ = [
    "ProductModel",
    "CartModel",
    "CartItemModel",
    "AddressModel",
    "OrderModel",
    "OrderItemModel",
    "ReturnRequestModel",
    "PaymentAttemptModel",
    "ReconciliationEventModel",
]
