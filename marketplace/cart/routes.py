# marketplace/cart/routes.py
from __future__ import annotations
from flask import request

from ..utils.api import ok
from ..utils.decorators import user_required
from ..utils.money import money_api
from ..services import cart_service
from ..services.pricing_service import quote_cart
from . import bp


def _cart_payload(user_id):
    lines = cart_service.list_lines(user_id)
    total = sum(((l.product.price or 0) * l.quantity for l in lines if l.product), 0)
    return {"items": [l.as_api() for l in lines], "count": len(lines), "subtotal": money_api(total)}


@bp.post("")
@user_required
def add_item(user_id):
    data = request.get_json(silent=True) or {}
    line = cart_service.add_to_cart(user_id, data.get("product_id"), data.get("quantity", 1))
    return ok("added to cart", line.as_api(), 201)


@bp.get("")
@user_required
def get_cart(user_id):
    return ok("cart", _cart_payload(user_id))


@bp.patch("/<int:line_id>")
@user_required
def update_item(line_id: int, user_id):
    data = request.get_json(silent=True) or {}
    line = cart_service.update_quantity(user_id, line_id, data.get("quantity"))
    if line is None:
        return ok("removed from cart", _cart_payload(user_id))
    return ok("cart updated", line.as_api())


@bp.delete("/<int:line_id>")
@user_required
def remove_item(line_id: int, user_id):
    cart_service.remove_line(user_id, line_id)
    return ok("removed from cart", _cart_payload(user_id))


@bp.get("/bill")
@user_required
def bill(user_id):
    """
    Query params:
      - coupon=CODE
      - donate=amount
      - store_id=<id>  (bill a single store)
    """
    store_id = request.args.get("store_id", type=int)
    summary = quote_cart(
        user_id,
        coupon_code=request.args.get("coupon") or None,
        donation=request.args.get("donate") or 0,
        store_id=store_id,
    )
    return ok("bill summary", summary.as_api())
