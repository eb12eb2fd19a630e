# marketplace/coupon/routes.py
from flask import request

from ..utils.api import ok
from ..utils.decorators import current_role, is_admin, role_required, user_required
from ..services import coupon_service
from ..services.inputs import parse_amount
from ..services.pricing_service import quote_cart
from . import bp


@bp.post("")
@role_required("admin", "seller", "retailer", message="Only admins, sellers and retailers can create coupons")
def create(user_id):
    data = request.get_json(silent=True) or {}
    c = coupon_service.create_coupon_from_payload(data, owner_type=current_role(), owner_id=user_id)
    return ok("coupon created", c.as_api(), 201)


@bp.get("")
@role_required("admin")
def list_all(user_id):
    return ok("coupons", [c.as_api() for c in coupon_service.list_coupons()])


@bp.get("/applicable")
@user_required
def applicable(user_id):
    """
    Query params:
      - store_id=<id>   include that store's own coupons
      - cart_total=amount  annotate each coupon with is_eligible
    """
    items = coupon_service.list_applicable_coupons(
        user_id,
        store_id=request.args.get("store_id", type=int),
        cart_total=request.args.get("cart_total"),
    )
    return ok("applicable coupons", items)


@bp.post("/validate")
@user_required
def validate(user_id):
    """Check a code against an amount without touching the cart."""
    data = request.get_json(silent=True) or {}
    check = coupon_service.validate_coupon(
        data.get("code"),
        user_id,
        parse_amount(data.get("order_total"), "order_total", required=True),
        store_id=data.get("store_id"),
    )
    if not check.is_valid:
        raise check.as_error()
    return ok("coupon is valid", check.as_api())


@bp.post("/apply")
@user_required
def apply(user_id):
    """Price the user's cart with the code applied."""
    data = request.get_json(silent=True) or {}
    summary = quote_cart(
        user_id,
        coupon_code=data.get("code"),
        donation=data.get("donate") or 0,
        store_id=data.get("store_id"),
    )
    return ok("coupon applied", summary.as_api())


@bp.delete("/<int:coupon_id>")
@user_required
def delete(coupon_id: int, user_id):
    coupon_service.delete_coupon(coupon_id, user_id, is_admin=is_admin())
    return ok("coupon deleted", {"id": coupon_id})
