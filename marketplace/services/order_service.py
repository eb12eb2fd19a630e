# marketplace/services/order_service.py
"""
Checkout commit and the order lifecycle.

One DB transaction per store order: stock is reserved with conditional
UPDATEs, the order and its items are inserted, the coupon is redeemed
on the first store order that carries a coupon share, and the consumed
cart lines are soft-deleted. Either all of it commits or none of it does.
A failing store does not undo stores that already committed; the caller
gets a ``CheckoutResult`` listing both.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError

from ..extensions import db
from ..errors import CheckoutError, ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ..model import CartLine, CheckoutAttempt, Order, OrderItem, Product
from ..model.order import (
    ACCEPTED, CANCELLED, DELIVERED, ORDER_STATUSES, PAYMENT_PENDING, PAYMENT_SUCCESS,
    PENDING, REJECTED, can_transition,
)
from ..utils.dates import parse_iso8601, utcnow
from ..utils.money import round_money
from .access import ensure_store_owner
from .coupon_service import coupon_redeemed_on, redeem_coupon
from .notification_service import notify_low_stock, notify_new_order, notify_order_status_change
from .pricing_service import BillSummary, StoreBill, quote_cart
from .stock_service import reserve_stock

logger = logging.getLogger(__name__)


@dataclass
class StoreFailure:
    store_id: int
    error: CheckoutError

    def as_api(self):
        return {"store_id": self.store_id, **self.error.as_api()}


@dataclass
class CheckoutResult:
    succeeded: list[Order] = field(default_factory=list)
    failed: list[StoreFailure] = field(default_factory=list)
    replayed: dict | None = None      # stored response of a completed attempt

    def as_api(self):
        if self.replayed is not None:
            return self.replayed
        return {
            "orders": [o.as_api() for o in self.succeeded],
            "failed": [f.as_api() for f in self.failed],
        }


def _order_code(store_id) -> str:
    return f"ORD-{utcnow():%Y%m%d%H%M%S}-{secrets.token_hex(3).upper()}-S{store_id}"


# ---- idempotency -------------------------------------------------------------

def _begin_attempt(token, user_id) -> CheckoutAttempt:
    """Claim ``token`` for this request, or return the completed attempt."""
    now = utcnow()
    existing = CheckoutAttempt.query.filter_by(token=token).first()
    if existing is None:
        attempt = CheckoutAttempt(token=token, user_id=user_id, locked_at=now)
        db.session.add(attempt)
        try:
            db.session.commit()
            return attempt
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("checkout with this Idempotency-Key is already in progress")

    if existing.user_id != user_id:
        raise ConflictError("Idempotency-Key was used by another checkout")
    if existing.status == CheckoutAttempt.COMPLETED:
        return existing

    lease = timedelta(seconds=current_app.config.get("CHECKOUT_ATTEMPT_LEASE_SECONDS", 60))
    stmt = (
        update(CheckoutAttempt)
        .where(
            CheckoutAttempt.id == existing.id,
            CheckoutAttempt.status == CheckoutAttempt.PROCESSING,
            CheckoutAttempt.locked_at < now - lease,
        )
        .values(locked_at=now)
        .execution_options(synchronize_session=False)
    )
    taken = db.session.execute(stmt).rowcount == 1
    db.session.commit()
    if not taken:
        raise ConflictError("checkout with this Idempotency-Key is already in progress")
    logger.info("taking over stale checkout attempt %s", token)
    return existing


def _finish_attempt(attempt: CheckoutAttempt, payload: dict):
    attempt.status = CheckoutAttempt.COMPLETED
    attempt.result_json = payload
    attempt.completed_at = utcnow()
    db.session.commit()


def _abandon_attempt(attempt: CheckoutAttempt):
    # nothing was written for this token; let the client retry with it
    db.session.rollback()
    db.session.delete(attempt)
    db.session.commit()


# ---- per-store write -----------------------------------------------------------

@dataclass
class _Written:
    order: Order
    low_stock: list[tuple[int, int]] = field(default_factory=list)   # (product_id, new_stock)
    redeemed: bool = False


def _write_store_order(user_id, token, address, sb: StoreBill, bill: BillSummary, redeem: bool) -> _Written:
    existing = Order.query.filter_by(checkout_token=token, store_id=sb.store_id).first()
    if existing is not None:
        return _Written(order=existing, redeemed=coupon_redeemed_on(existing))

    out = _Written(order=None)
    for lb in sb.lines:
        line = lb.line
        res = reserve_stock(line.product_id, line.quantity)
        if not res.ok:
            raise InsufficientStockError(line.product_id, line.name, res.available, line.quantity)
        if res.low_stock:
            out.low_stock.append((line.product_id, res.new_stock))

    charges = sb.charges
    order = Order(
        code=_order_code(sb.store_id),
        checkout_token=token,
        created_by=user_id,
        store_id=sb.store_id,
        status=PENDING,
        payment_status=PAYMENT_PENDING,
        address_json=address,
        total_amount=sb.item_total,
        discount_amount=sb.discount_amount,
        coupon_id=bill.coupon_id if sb.coupon_discount > 0 else None,
        coupon_discount=sb.coupon_discount,
        shipping_fee=sb.shipping_fee,
        platform_fee=charges.platform_fee,
        extra_charges_total=round_money(charges.product_total + charges.store_total),
        charges_breakdown=charges.as_api()["breakdown"],
        donate=sb.donation,
        grand_total=sb.grand_total,
    )
    for lb in sb.lines:
        order.items.append(OrderItem(
            product_id=lb.line.product_id,
            name=lb.line.name,
            mrp=lb.line.mrp,
            unit_price=lb.line.unit_price,
            quantity=lb.line.quantity,
            free_quantity=lb.free_quantity,
            applied_offers=lb.applied_offers,
            discount=lb.discount,
            line_total=lb.line_total,
        ))
    db.session.add(order)
    db.session.flush()

    if redeem and order.coupon_id is not None:
        redeem_coupon(order.coupon_id, user_id, order.id)
        out.redeemed = True

    line_ids = [lb.line.cart_line_id for lb in sb.lines if lb.line.cart_line_id is not None]
    if line_ids:
        stmt = (
            update(CartLine)
            .where(CartLine.id.in_(line_ids), CartLine.deleted.is_(False))
            .values(deleted=True)
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount != len(line_ids):
            raise ConflictError("cart changed during checkout", store_id=sb.store_id)

    db.session.commit()
    out.order = order
    return out


def _commit_store(user_id, token, address, sb: StoreBill, bill: BillSummary, redeem: bool) -> _Written:
    attempts = max(1, int(current_app.config.get("CHECKOUT_COMMIT_ATTEMPTS", 3)))
    for n in range(1, attempts + 1):
        try:
            return _write_store_order(user_id, token, address, sb, bill, redeem)
        except OperationalError:
            db.session.rollback()
            logger.warning("store %s order write failed on attempt %s/%s", sb.store_id, n, attempts)
        except IntegrityError:
            db.session.rollback()
            existing = Order.query.filter_by(checkout_token=token, store_id=sb.store_id).first()
            if existing is None:
                raise ConflictError("could not place order, please retry", store_id=sb.store_id)
            return _Written(order=existing, redeemed=coupon_redeemed_on(existing))
        except CheckoutError:
            db.session.rollback()
            raise
    raise ConflictError("could not place order, please retry", store_id=sb.store_id)


def _after_commit(sb: StoreBill, written: _Written):
    owner_id = sb.store.owner_id
    if owner_id is None:
        return
    for product_id, new_stock in written.low_stock:
        product = db.session.get(Product, product_id)
        if product is not None:
            notify_low_stock(owner_id, product, new_stock)
    notify_new_order(owner_id, written.order)


# ---- checkout ------------------------------------------------------------------

def commit_checkout(user_id, token, address=None, coupon_code=None, donation=0, store_id=None) -> CheckoutResult:
    """Turn the user's cart into one order per store.

    ``token`` is the caller's idempotency key. Re-sending a completed
    token returns the stored response without writing anything.
    """
    token = (token or "").strip()
    if not token:
        raise ValidationError("Idempotency-Key is required")

    attempt = _begin_attempt(token, user_id)
    if attempt.status == CheckoutAttempt.COMPLETED:
        logger.info("replaying checkout %s", token)
        return CheckoutResult(replayed=attempt.result_json or {})

    prior = Order.query.filter_by(checkout_token=token).order_by(Order.id.asc()).all()
    try:
        bill = quote_cart(user_id, coupon_code, donation, store_id)
    except CheckoutError:
        if prior:
            # earlier run for this token placed orders and consumed the cart
            result = CheckoutResult(succeeded=prior)
            _finish_attempt(attempt, result.as_api())
            return result
        _abandon_attempt(attempt)
        raise
    except Exception:
        # never leave the token stuck in processing
        _abandon_attempt(attempt)
        raise

    result = CheckoutResult(succeeded=list(prior))
    coupon_pending = bill.coupon_id is not None and not any(coupon_redeemed_on(o) for o in prior)
    for sb in bill.stores:
        redeem = coupon_pending and sb.coupon_discount > 0
        try:
            written = _commit_store(user_id, token, address, sb, bill, redeem)
        except CheckoutError as e:
            logger.info("store %s rejected checkout %s: %s", sb.store_id, token, e.message)
            result.failed.append(StoreFailure(sb.store_id, e))
            continue
        if written.redeemed:
            coupon_pending = False
        if written.order not in result.succeeded:
            result.succeeded.append(written.order)
        logger.info("order %s placed for store %s", written.order.code, sb.store_id)
        _after_commit(sb, written)

    if result.succeeded:
        _finish_attempt(attempt, result.as_api())
    else:
        _abandon_attempt(attempt)
    return result


# ---- lifecycle -----------------------------------------------------------------

def get_order(order_id, user_id=None) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or (user_id is not None and order.created_by != user_id):
        raise NotFoundError("Order not found")
    return order


def list_orders(user_id=None, store_id=None, status=None, page=1, per_page=20):
    q = Order.query
    if user_id is not None:
        q = q.filter(Order.created_by == user_id)
    if store_id is not None:
        q = q.filter(Order.store_id == store_id)
    if status:
        q = q.filter(Order.status == status)
    per_page = min(max(1, int(per_page)), 100)
    return (q.order_by(Order.created_at.desc(), Order.id.desc())
            .paginate(page=max(1, int(page)), per_page=per_page, error_out=False))


def change_order_status(order_id, new_status, estimated_date=None, actor_id=None, is_admin=False) -> Order:
    """Move an order along its lifecycle. With ``actor_id`` set, only the store owner or an admin may."""
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    if actor_id is not None:
        ensure_store_owner(order.store, actor_id, is_admin)
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")
    if not can_transition(order.status, new_status):
        raise ValidationError(f"cannot move order from {order.status} to {new_status}",
                              current=order.status, requested=new_status)

    if new_status == ACCEPTED and estimated_date:
        parsed = parse_iso8601(estimated_date)
        if parsed is None:
            raise ValidationError("estimated_date must be an ISO-8601 datetime")
        order.estimated_date = parsed
    if new_status == DELIVERED:
        order.delivered_at = utcnow()
    if new_status in (REJECTED, CANCELLED) and order.payment_status == PAYMENT_SUCCESS:
        order.refund = True

    order.status = new_status
    db.session.commit()
    logger.info("order %s moved to %s", order.code, new_status)

    notify_order_status_change(order.created_by, order)
    return order


def cancel_order(order_id, user_id) -> Order:
    order = get_order(order_id, user_id)
    if order.status not in (PENDING, ACCEPTED):
        raise ValidationError(f"order can no longer be cancelled ({order.status})")
    order.status = CANCELLED
    if order.payment_status == PAYMENT_SUCCESS:
        order.refund = True
    db.session.commit()
    logger.info("order %s cancelled by user %s", order.code, user_id)

    if order.store is not None:
        notify_order_status_change(order.store.owner_id, order)
    return order
