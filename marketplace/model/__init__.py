# ------ marketplace/model/__init__.py ------

from .store import Store
from .product import Product
from .cart import CartLine
from .offer import StoreOffer, OFFER_TYPES
from .coupon import Coupon, CouponHistory
from .order import Order, OrderItem
from .notification import Notification
from .checkout import CheckoutAttempt

__all__ = [
    "Store",
    "Product",
    "CartLine",
    "StoreOffer",
    "OFFER_TYPES",
    "Coupon",
    "CouponHistory",
    "Order",
    "OrderItem",
    "Notification",
    "CheckoutAttempt",
]
