# marketplace/services/coupon_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import CouponIneligibleError, ForbiddenError, NotFoundError, ValidationError
from ..model import Coupon, CouponHistory, Order, Store
from ..utils.dates import parse_iso8601, utcnow
from ..utils.money import D, ZERO, money_api, round_money
from .access import ensure_store_owner
from .inputs import parse_amount, parse_int

logger = logging.getLogger(__name__)

DISCOUNT_TYPES = ("flat", "percentage")
USER_ELIGIBILITY = ("all", "new_user", "existing_user")
USES = ("one", "many")
OWNER_TYPES = ("admin", "seller", "retailer")


def normalize_code(code) -> str:
    return (code or "").strip().upper()


def find_coupon(code) -> Coupon | None:
    code = normalize_code(code)
    if not code:
        return None
    return Coupon.query.filter(func.upper(Coupon.code) == code).first()


# ---- discount math -----------------------------------------------------------

@dataclass(frozen=True)
class CouponTerms:
    """The part of a coupon the pricing code needs."""
    id: int
    code: str
    discount_type: str
    discount_value: Decimal
    max_discount_amount: Decimal | None = None
    store_id: int | None = None

    @classmethod
    def from_model(cls, c: Coupon) -> "CouponTerms":
        return cls(
            id=c.id,
            code=c.code,
            discount_type=c.discount_type,
            discount_value=D(c.discount_value),
            max_discount_amount=D(c.max_discount_amount) if c.max_discount_amount is not None else None,
            store_id=c.store_id,
        )


def coupon_discount(terms: CouponTerms, base) -> Decimal:
    """Discount on ``base`` (item total after store offers). Never negative, never above base."""
    base = D(base)
    if base <= 0:
        return ZERO
    if terms.discount_type == "percentage":
        amount = base * terms.discount_value / Decimal(100)
        if terms.max_discount_amount:
            amount = min(amount, terms.max_discount_amount)
    else:
        amount = min(terms.discount_value, base)
    return max(ZERO, min(amount, base))


# ---- validation --------------------------------------------------------------

@dataclass
class CouponCheck:
    is_valid: bool
    coupon: Coupon | None = None
    discount_amount: Decimal = ZERO
    reason: str | None = None
    message: str | None = None
    required: Decimal | None = None

    def as_error(self):
        if self.reason == "not_found":
            return NotFoundError(self.message)
        extra = {"required": money_api(self.required)} if self.required is not None else {}
        return CouponIneligibleError(self.reason, self.message, **extra)

    def as_api(self):
        if not self.is_valid:
            out = {"is_valid": False, "reason": self.reason, "message": self.message}
            if self.required is not None:
                out["required"] = money_api(self.required)
            return out
        return {
            "is_valid": True,
            "coupon": self.coupon.as_api(),
            "discount_amount": money_api(self.discount_amount),
        }


def _fail(reason, message, coupon=None, required=None) -> CouponCheck:
    return CouponCheck(False, coupon=coupon, reason=reason, message=message, required=required)


def has_prior_orders(user_id) -> bool:
    return db.session.query(Order.id).filter(Order.created_by == user_id).first() is not None


def already_used_by(coupon: Coupon, user_id) -> bool:
    return (db.session.query(CouponHistory.id)
            .filter(CouponHistory.coupon_id == coupon.id, CouponHistory.user_id == user_id)
            .first() is not None)


def validate_coupon(code, user_id, item_total, store_id=None, order_total=None, now=None) -> CouponCheck:
    """Check a coupon against store, user, date and usage constraints.

    The first failing check wins, in this order: exists, date window,
    store, usage limit, one-time use, user eligibility, minimum order.
    ``item_total`` gates the minimum order; the discount is computed on
    ``order_total`` (defaults to ``item_total``).
    """
    now = now or utcnow()
    item_total = parse_amount(item_total, "item_total", required=True)
    order_total = parse_amount(order_total, "order_total")
    if order_total is None:
        order_total = item_total
    store_id = parse_int(store_id, "store_id")

    c = find_coupon(code)
    if not c or c.deleted:
        return _fail("not_found", "Coupon not found")

    if c.valid_from and now < c.valid_from:
        return _fail(CouponIneligibleError.EXPIRED, "Coupon is not active yet", c)
    if c.valid_until and now > c.valid_until:
        return _fail(CouponIneligibleError.EXPIRED, "Coupon has expired", c)

    if store_id is not None and c.store_id is not None and int(c.store_id) != store_id:
        return _fail(CouponIneligibleError.WRONG_STORE, "Coupon is not applicable to this store", c)

    if c.usage_limit > 0 and c.usage_count >= c.usage_limit:
        return _fail(CouponIneligibleError.USAGE_LIMIT_REACHED, "Coupon usage limit reached", c)

    if c.is_one_time and already_used_by(c, user_id):
        return _fail(CouponIneligibleError.ALREADY_USED, "Coupon already used by you", c)

    if c.user_eligibility in ("new_user", "existing_user"):
        prior = has_prior_orders(user_id)
        if c.user_eligibility == "new_user" and prior:
            return _fail(CouponIneligibleError.INELIGIBLE_USER, "Coupon is only for new users", c)
        if c.user_eligibility == "existing_user" and not prior:
            return _fail(CouponIneligibleError.INELIGIBLE_USER, "Coupon is only for existing users", c)

    minimum = D(c.min_order_value)
    if item_total < minimum:
        return _fail(
            CouponIneligibleError.MIN_ORDER_NOT_MET,
            f"Minimum order value of {minimum:.2f} required for this coupon",
            c, required=minimum,
        )

    discount = coupon_discount(CouponTerms.from_model(c), order_total)
    return CouponCheck(True, coupon=c, discount_amount=discount)


def validate_or_raise(code, user_id, item_total, **kw) -> CouponCheck:
    check = validate_coupon(code, user_id, item_total, **kw)
    if not check.is_valid:
        raise check.as_error()
    return check


# ---- commit step -------------------------------------------------------------

def increment_coupon_usage(coupon_id) -> bool:
    """Atomic ``usage_count += 1`` guarded by the limit in the same UPDATE."""
    stmt = (
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            Coupon.deleted.is_(False),
            or_(Coupon.usage_limit == 0, Coupon.usage_count < Coupon.usage_limit),
        )
        .values(usage_count=Coupon.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


def redeem_coupon(coupon_id, user_id, order_id) -> CouponHistory:
    """Append the history row and bump usage. Runs inside the caller's transaction."""
    coupon = db.session.get(Coupon, coupon_id)
    if not coupon or coupon.deleted:
        raise NotFoundError("Coupon not found")

    row = CouponHistory(
        coupon_id=coupon.id,
        user_id=user_id,
        order_id=order_id,
        one_time_key=CouponHistory.key_for(coupon, user_id),
    )
    db.session.add(row)
    try:
        db.session.flush()
    except IntegrityError:
        raise CouponIneligibleError(CouponIneligibleError.ALREADY_USED, "Coupon already used by you")

    if not increment_coupon_usage(coupon.id):
        raise CouponIneligibleError(CouponIneligibleError.USAGE_LIMIT_REACHED, "Coupon usage limit reached")
    logger.info("coupon %s redeemed by user %s on order %s", coupon.code, user_id, order_id)
    return row


def coupon_redeemed_on(order) -> bool:
    """True when the coupon usage was recorded against this order."""
    return (db.session.query(CouponHistory.id)
            .filter(CouponHistory.order_id == order.id)
            .first() is not None)


# ---- administration ------------------------------------------------------------

def create_coupon_from_payload(data: dict, owner_type: str = "admin", owner_id: int | None = None) -> Coupon:
    """Create a coupon owned by the caller.

    ``owner_type`` comes from the caller's role, never from the payload.
    Admins may create global coupons; sellers and retailers only coupons
    scoped to a store they own.
    """
    code = normalize_code(data.get("code"))
    discount_type = (data.get("discount_type") or "flat").lower().strip()
    use = (data.get("use") or "one").lower().strip()
    eligibility = (data.get("user_eligibility") or "all").lower().strip()
    owner_type = (owner_type or "admin").lower().strip()

    if not code:
        raise ValidationError("code is required")
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError("discount_type must be 'flat' or 'percentage'")
    if use not in USES:
        raise ValidationError("use must be 'one' or 'many'")
    if eligibility not in USER_ELIGIBILITY:
        raise ValidationError(f"user_eligibility must be one of: {', '.join(USER_ELIGIBILITY)}")
    if owner_type not in OWNER_TYPES:
        raise ForbiddenError("Only admins, sellers and retailers can create coupons")
    if owner_id is None:
        raise ValidationError("owner_id is required")

    value = parse_amount(data.get("discount_value"), "discount_value", required=True)
    min_order_value = parse_amount(data.get("min_order_value"), "min_order_value") or ZERO
    cap = parse_amount(data.get("max_discount_amount"), "max_discount_amount")
    usage_limit = parse_int(data.get("usage_limit"), "usage_limit") or 0

    if value <= 0:
        raise ValidationError("discount_value must be > 0")
    if discount_type == "percentage" and value > 100:
        raise ValidationError("percentage coupon must be <= 100")
    if min_order_value < 0 or usage_limit < 0 or (cap is not None and cap < 0):
        raise ValidationError("min_order_value, usage_limit and max_discount_amount must be >= 0")

    valid_from = parse_iso8601(data.get("valid_from"))
    valid_until = parse_iso8601(data.get("valid_until"))
    if not valid_from or not valid_until:
        raise ValidationError("valid_from and valid_until must be ISO-8601 datetimes")
    if valid_until <= valid_from:
        raise ValidationError("valid_until must be after valid_from")

    store_id = parse_int(data.get("store_id"), "store_id")
    if store_id is None and owner_type != "admin":
        raise ForbiddenError("Only admins can create global coupons")
    if store_id is not None:
        store = db.session.get(Store, store_id)
        if not store or store.deleted:
            raise NotFoundError("Store not found")
        ensure_store_owner(store, owner_id, is_admin=owner_type == "admin")

    if find_coupon(code):
        raise ValidationError("Coupon code already exists")

    c = Coupon(
        code=code,
        name=(data.get("name") or code).strip(),
        description=(data.get("description") or "").strip(),
        discount_type=discount_type,
        discount_value=value,
        max_discount_amount=cap,
        min_order_value=min_order_value,
        usage_limit=usage_limit,
        valid_from=valid_from,
        valid_until=valid_until,
        user_eligibility=eligibility,
        use=use,
        owner_type=owner_type,
        owner_id=int(owner_id),
        store_id=store_id,
    )
    db.session.add(c)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("Coupon code already exists")
    return c


def list_coupons(include_deleted: bool = False) -> list[Coupon]:
    q = Coupon.query
    if not include_deleted:
        q = q.filter(Coupon.deleted.is_(False))
    return q.order_by(Coupon.id.desc()).all()


def _live_coupons_query(now):
    return Coupon.query.filter(
        Coupon.deleted.is_(False),
        Coupon.valid_from <= now,
        Coupon.valid_until >= now,
        or_(Coupon.usage_limit == 0, Coupon.usage_count < Coupon.usage_limit),
    )


def list_applicable_coupons(user_id, store_id=None, cart_total=None, now=None) -> list[dict]:
    """Live coupons this user could apply, optionally annotated for a cart total."""
    now = now or utcnow()
    cart_total = parse_amount(cart_total, "cart_total")
    q = _live_coupons_query(now)
    if store_id is not None:
        q = q.filter(or_(Coupon.store_id.is_(None), Coupon.store_id == store_id))
    else:
        q = q.filter(Coupon.store_id.is_(None))

    prior = has_prior_orders(user_id)
    out = []
    for c in q.order_by(Coupon.created_at.desc(), Coupon.id.desc()).all():
        if c.user_eligibility == "new_user" and prior:
            continue
        if c.user_eligibility == "existing_user" and not prior:
            continue
        if c.is_one_time and already_used_by(c, user_id):
            continue
        row = c.as_api()
        if cart_total is not None:
            total = round_money(cart_total)
            minimum = D(c.min_order_value)
            row["is_eligible"] = total >= minimum
            row["eligibility_message"] = (
                "Coupon is eligible for current cart total" if row["is_eligible"]
                else f"Minimum order value of {minimum:.2f} required (current cart total: {total:.2f})"
            )
        out.append(row)
    return out


def delete_coupon(coupon_id, user_id=None, is_admin: bool = False) -> Coupon:
    c = db.session.get(Coupon, coupon_id)
    if not c or c.deleted:
        raise NotFoundError("Coupon not found")
    if user_id is not None and not is_admin and int(c.owner_id) != int(user_id):
        raise ForbiddenError("You can only delete your own coupons")
    c.deleted = True
    db.session.commit()
    return c
