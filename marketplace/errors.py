# marketplace/errors.py
"""Checkout error kinds.

Services raise these; ``register_error_handlers`` renders them through the
standard ``api_error`` envelope so every rejection carries a readable
message plus the numbers the client needs to correct the request.
"""
from __future__ import annotations

from .utils.api import err


class CheckoutError(Exception):
    status_code = 400
    kind = "checkout_error"

    def __init__(self, message: str, **data):
        super().__init__(message)
        self.message = message
        self.data = data

    def as_api(self) -> dict:
        return {"error": self.kind, "message": self.message, **self.data}


class ValidationError(CheckoutError):
    status_code = 422
    kind = "validation_error"


class NotFoundError(CheckoutError):
    status_code = 404
    kind = "not_found"


class ForbiddenError(CheckoutError):
    status_code = 403
    kind = "forbidden"


class InsufficientStockError(CheckoutError):
    status_code = 409
    kind = "insufficient_stock"

    def __init__(self, product_id: int, name: str | None, available: int, requested: int):
        label = name or f"product {product_id}"
        if available <= 0:
            message = f"{label} is out of stock"
        else:
            message = f"only {available} units of {label} available"
        super().__init__(
            message,
            product_id=product_id,
            available=available,
            requested=requested,
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class CouponIneligibleError(CheckoutError):
    kind = "coupon_ineligible"

    EXPIRED = "expired"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    ALREADY_USED = "already_used"
    MIN_ORDER_NOT_MET = "min_order_not_met"
    WRONG_STORE = "wrong_store"
    INELIGIBLE_USER = "ineligible_user"

    def __init__(self, reason: str, message: str, **data):
        super().__init__(message, reason=reason, **data)
        self.reason = reason


class ConflictError(CheckoutError):
    status_code = 409
    kind = "conflict"


def register_error_handlers(app):
    @app.errorhandler(CheckoutError)
    def handle_checkout_error(e: CheckoutError):
        return err(e.message, e.status_code, e.as_api())
