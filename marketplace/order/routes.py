# marketplace/order/routes.py
from flask import request

from ..utils.api import ok
from ..utils.decorators import is_admin, user_required
from ..services import order_service
from . import bp


@bp.post("/checkout")
@user_required
def checkout(user_id):
    """
    Header:
      - Idempotency-Key: client token, reused when retrying the same checkout
    Body:
      - address, coupon, donate, store_id
    """
    data = request.get_json(silent=True) or {}
    token = request.headers.get("Idempotency-Key") or data.get("checkout_token")
    result = order_service.commit_checkout(
        user_id,
        token,
        address=data.get("address"),
        coupon_code=data.get("coupon") or None,
        donation=data.get("donate") or 0,
        store_id=data.get("store_id"),
    )
    if result.replayed is None and not result.succeeded and len(result.failed) == 1:
        # single store: surface its error directly
        raise result.failed[0].error
    payload = result.as_api()
    if payload.get("orders"):
        return ok("order placed", payload, 201)
    return ok("no orders placed", payload, 409)


@bp.get("")
@user_required
def list_orders(user_id):
    """
    Query params:
      - page, per_page
      - status=Pending|Accepted|...
      - store_id=<id>
    """
    paged = order_service.list_orders(
        user_id=user_id,
        store_id=request.args.get("store_id", type=int),
        status=request.args.get("status"),
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 20, type=int),
    )
    return ok("orders", {
        "page": paged.page,
        "per_page": paged.per_page,
        "total": paged.total,
        "items": [o.as_api() for o in paged.items],
    })


@bp.get("/<int:order_id>")
@user_required
def get_order(order_id: int, user_id):
    return ok("order", order_service.get_order(order_id, user_id).as_api())


@bp.patch("/<int:order_id>/status")
@user_required
def change_status(order_id: int, user_id):
    data = request.get_json(silent=True) or {}
    o = order_service.change_order_status(
        order_id, data.get("status"), data.get("estimated_date"),
        actor_id=user_id, is_admin=is_admin(),
    )
    return ok("order status updated", o.as_api())


@bp.post("/<int:order_id>/cancel")
@user_required
def cancel(order_id: int, user_id):
    return ok("order cancelled", order_service.cancel_order(order_id, user_id).as_api())
