# tests/test_checkout.py
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from marketplace.errors import (
    ConflictError, CouponIneligibleError, ForbiddenError, InsufficientStockError, ValidationError,
)
from marketplace.extensions import db
from marketplace.model import CartLine, CheckoutAttempt, Coupon, CouponHistory, Notification, Order, Product
from marketplace.model.order import ACCEPTED, CANCELLED, PAYMENT_SUCCESS, SHIPPED
from marketplace.services import order_service
from marketplace.services.coupon_service import coupon_redeemed_on
from marketplace.services.order_service import commit_checkout
from marketplace.services.pricing_service import quote_cart
from marketplace.utils.dates import utcnow

ADDRESS = {"name": "Asha", "city": "Pune", "pincode": "411001"}


def test_checkout_places_order_and_reserves_stock(make_store, make_product, add_to_cart):
    store = make_store(owner_id=900)
    seeds = make_product(store, "Seeds", price="120", stock=10, low_stock_threshold=8)
    add_to_cart(1, seeds, 3)

    bill = quote_cart(1)
    result = commit_checkout(1, "tok-1", ADDRESS)

    assert result.failed == []
    (order,) = result.succeeded
    assert order.grand_total == bill.total_payable
    # 360 is under the free shipping threshold
    assert order.shipping_fee == Decimal("50")
    assert order.items[0].quantity == 3
    assert order.address_json == ADDRESS
    assert db.session.get(Product, seeds.id).stock == 7
    assert CartLine.query.filter_by(user_id=1, deleted=False).count() == 0

    kinds = sorted(n.kind for n in Notification.query.filter_by(user_id=900))
    # 7 left <= threshold of 8
    assert kinds == ["alert", "order"]


def test_replayed_token_returns_stored_result(make_store, make_product, add_to_cart):
    store = make_store()
    p = make_product(store, price="80", stock=5)
    add_to_cart(1, p, 2)

    first = commit_checkout(1, "tok-replay", ADDRESS).as_api()
    again = commit_checkout(1, "tok-replay", ADDRESS)

    assert again.replayed is not None
    assert again.as_api()["orders"][0]["id"] == first["orders"][0]["id"]
    assert Order.query.count() == 1
    assert db.session.get(Product, p.id).stock == 3


def test_in_flight_token_conflicts(make_store, make_product, add_to_cart):
    store = make_store()
    add_to_cart(1, make_product(store, stock=5))
    db.session.add(CheckoutAttempt(token="tok-busy", user_id=1, locked_at=utcnow()))
    db.session.commit()

    with pytest.raises(ConflictError):
        commit_checkout(1, "tok-busy", ADDRESS)
    assert Order.query.count() == 0


def test_stale_attempt_is_taken_over(make_store, make_product, add_to_cart):
    store = make_store()
    add_to_cart(1, make_product(store, stock=5))
    db.session.add(CheckoutAttempt(token="tok-stale", user_id=1,
                                   locked_at=utcnow() - timedelta(minutes=10)))
    db.session.commit()

    result = commit_checkout(1, "tok-stale", ADDRESS)
    assert len(result.succeeded) == 1
    assert CheckoutAttempt.query.filter_by(token="tok-stale").one().status == CheckoutAttempt.COMPLETED


def test_token_of_another_user_conflicts(make_store, make_product, add_to_cart):
    store = make_store()
    p = make_product(store, stock=5)
    add_to_cart(1, p)
    add_to_cart(2, p)
    commit_checkout(1, "tok-shared", ADDRESS)
    with pytest.raises(ConflictError):
        commit_checkout(2, "tok-shared", ADDRESS)


def test_missing_token_is_rejected(app):
    with pytest.raises(ValidationError):
        commit_checkout(1, "  ", ADDRESS)


def test_empty_cart_leaves_no_attempt(app):
    with pytest.raises(ValidationError):
        commit_checkout(1, "tok-empty", ADDRESS)
    assert CheckoutAttempt.query.count() == 0


def test_one_store_failing_does_not_block_the_other(make_store, make_product, add_to_cart):
    a, b = make_store("A"), make_store("B")
    pa = make_product(a, "Hoe", price="200", stock=10)
    pb = make_product(b, "Spade", price="150", stock=2)
    add_to_cart(1, pa, 1)
    add_to_cart(1, pb, 2)
    # stock sold elsewhere after the item was carted
    db.session.get(Product, pb.id).stock = 1
    db.session.commit()

    result = commit_checkout(1, "tok-split", ADDRESS)

    assert [o.store_id for o in result.succeeded] == [a.id]
    (failure,) = result.failed
    assert failure.store_id == b.id
    assert isinstance(failure.error, InsufficientStockError)
    assert failure.error.message == "only 1 units of Spade available"
    # the failed store keeps its stock and its cart line
    assert db.session.get(Product, pb.id).stock == 1
    assert CartLine.query.filter_by(user_id=1, store_id=b.id, deleted=False).count() == 1
    assert failure.as_api()["available"] == 1


def test_global_coupon_redeemed_once_across_stores(make_store, make_product, make_coupon, add_to_cart):
    a, b = make_store("A"), make_store("B")
    add_to_cart(1, make_product(a, price="300", stock=5))
    add_to_cart(1, make_product(b, price="100", stock=5))
    c = make_coupon("FLAT100", discount_type="flat", value="100", use="many")

    result = commit_checkout(1, "tok-coupon", ADDRESS, coupon_code="flat100")

    orders = result.succeeded
    assert sum(o.coupon_discount for o in orders) == Decimal("100")
    assert [o.coupon_discount for o in orders] == [Decimal("75"), Decimal("25")]
    # both orders carry a share, only the first records the usage
    assert [coupon_redeemed_on(o) for o in orders] == [True, False]
    assert db.session.get(Coupon, c.id).usage_count == 1
    assert CouponHistory.query.count() == 1


def test_invalid_coupon_fails_before_any_write(make_store, make_product, make_coupon, add_to_cart):
    store = make_store()
    p = make_product(store, price="30", stock=5)
    add_to_cart(1, p)
    make_coupon("FLAT50", discount_type="flat", value="50", min_order_value=Decimal("100"))

    with pytest.raises(CouponIneligibleError) as exc:
        commit_checkout(1, "tok-bad-coupon", ADDRESS, coupon_code="FLAT50")
    assert exc.value.reason == CouponIneligibleError.MIN_ORDER_NOT_MET
    assert db.session.get(Product, p.id).stock == 5
    assert Order.query.count() == 0


def test_donation_is_recorded(make_store, make_product, add_to_cart):
    store = make_store()
    add_to_cart(1, make_product(store, price="600", stock=5))
    (order,) = commit_checkout(1, "tok-donate", ADDRESS, donation="10").succeeded
    assert order.donate == Decimal("10")
    assert order.grand_total == Decimal("610")


def test_negative_donation_rejected(make_store, make_product, add_to_cart):
    store = make_store()
    add_to_cart(1, make_product(store, stock=5))
    with pytest.raises(ValidationError):
        commit_checkout(1, "tok-neg", ADDRESS, donation="-5")


# ---- lifecycle ----------------------------------------------------------------

def _place(make_store, make_product, add_to_cart, token="tok-life"):
    store = make_store(owner_id=900)
    add_to_cart(1, make_product(store, stock=5))
    return commit_checkout(1, token, ADDRESS).succeeded[0]


def test_status_moves_forward_only(make_store, make_product, add_to_cart):
    order = _place(make_store, make_product, add_to_cart)
    with pytest.raises(ValidationError):
        order_service.change_order_status(order.id, SHIPPED)

    order = order_service.change_order_status(order.id, ACCEPTED, "2030-01-05T10:00:00Z")
    assert order.estimated_date == datetime(2030, 1, 5, 10, 0)
    assert Notification.query.filter_by(user_id=1, kind="order").count() == 1


def test_cancel_from_accepted_flags_refund_when_paid(make_store, make_product, add_to_cart):
    order = _place(make_store, make_product, add_to_cart)
    order.payment_status = PAYMENT_SUCCESS
    db.session.commit()
    order_service.change_order_status(order.id, ACCEPTED)

    order = order_service.cancel_order(order.id, 1)
    assert order.status == CANCELLED
    assert order.refund is True


def test_cancel_after_shipping_is_rejected(make_store, make_product, add_to_cart):
    order = _place(make_store, make_product, add_to_cart)
    order_service.change_order_status(order.id, ACCEPTED)
    order_service.change_order_status(order.id, SHIPPED)
    with pytest.raises(ValidationError):
        order_service.cancel_order(order.id, 1)


def test_terminal_status_cannot_change(make_store, make_product, add_to_cart):
    order = _place(make_store, make_product, add_to_cart)
    order_service.cancel_order(order.id, 1)
    with pytest.raises(ValidationError):
        order_service.change_order_status(order.id, ACCEPTED)


def test_non_finite_donation_frees_the_token(make_store, make_product, add_to_cart):
    store = make_store()
    p = make_product(store, price="100", stock=5)
    add_to_cart(1, p)

    for raw in ("Infinity", "NaN"):
        with pytest.raises(ValidationError):
            commit_checkout(1, "tok-inf", ADDRESS, donation=raw)
        assert CheckoutAttempt.query.count() == 0

    (order,) = commit_checkout(1, "tok-inf", ADDRESS, donation=0).succeeded
    assert order.donate == Decimal("0")
    assert db.session.get(Product, p.id).stock == 4


def test_unexpected_pricing_failure_frees_the_token(monkeypatch, make_store, make_product, add_to_cart):
    add_to_cart(1, make_product(make_store(), stock=5))

    def broken(*args, **kwargs):
        raise RuntimeError("pricing backend down")

    monkeypatch.setattr(order_service, "quote_cart", broken)
    with pytest.raises(RuntimeError):
        commit_checkout(1, "tok-crash", ADDRESS)
    assert CheckoutAttempt.query.count() == 0

    monkeypatch.undo()
    assert len(commit_checkout(1, "tok-crash", ADDRESS).succeeded) == 1


def test_failed_notification_keeps_the_order(monkeypatch, make_store, make_product, add_to_cart):
    from sqlalchemy.exc import SQLAlchemyError
    from marketplace.services import notification_service

    def broken(**kwargs):
        raise SQLAlchemyError("notifications table is gone")

    monkeypatch.setattr(notification_service, "Notification", broken)
    store = make_store(owner_id=900)
    p = make_product(store, stock=3, low_stock_threshold=5)
    add_to_cart(1, p, 1)

    result = commit_checkout(1, "tok-notify", ADDRESS)

    (order,) = result.succeeded
    assert result.failed == []
    assert db.session.get(Order, order.id).status == "Pending"
    assert db.session.get(Product, p.id).stock == 2
    assert Notification.query.count() == 0
    assert CheckoutAttempt.query.filter_by(token="tok-notify").one().status == CheckoutAttempt.COMPLETED


def test_locked_database_retries_then_conflicts(app, monkeypatch, make_store, make_product, add_to_cart):
    from sqlalchemy.exc import OperationalError

    app.config["CHECKOUT_COMMIT_ATTEMPTS"] = 3
    store = make_store()
    p = make_product(store, stock=5)
    add_to_cart(1, p)
    calls = []

    def locked(*args, **kwargs):
        calls.append(1)
        raise OperationalError("UPDATE products", {}, Exception("database is locked"))

    monkeypatch.setattr(order_service, "_write_store_order", locked)
    result = commit_checkout(1, "tok-locked", ADDRESS)

    assert len(calls) == 3
    assert result.succeeded == []
    (failure,) = result.failed
    assert failure.store_id == store.id
    assert isinstance(failure.error, ConflictError)
    assert db.session.get(Product, p.id).stock == 5
    assert CheckoutAttempt.query.count() == 0


def test_status_change_by_another_seller_is_forbidden(make_store, make_product, add_to_cart):
    order = _place(make_store, make_product, add_to_cart, token="tok-owner")
    with pytest.raises(ForbiddenError):
        order_service.change_order_status(order.id, ACCEPTED, actor_id=555)
    assert db.session.get(Order, order.id).status == "Pending"

    assert order_service.change_order_status(order.id, ACCEPTED, actor_id=900).status == ACCEPTED
