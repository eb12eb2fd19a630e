# tests/test_coupons.py
from datetime import timedelta
from decimal import Decimal

import pytest

from marketplace.errors import CouponIneligibleError, ForbiddenError, NotFoundError, ValidationError
from marketplace.extensions import db
from marketplace.model import CouponHistory
from marketplace.services import coupon_service
from marketplace.services.coupon_service import validate_coupon
from marketplace.services.order_service import commit_checkout
from marketplace.utils.dates import utcnow


def test_unknown_code_is_not_found(app):
    check = validate_coupon("NOPE", 1, Decimal("100"))
    assert not check.is_valid and check.reason == "not_found"
    assert isinstance(check.as_error(), NotFoundError)


def test_code_lookup_ignores_case(make_coupon):
    make_coupon("SAVE10")
    assert validate_coupon("save10", 1, Decimal("100")).is_valid


def test_min_order_message_names_required_amount(make_coupon):
    make_coupon("FLAT50", discount_type="flat", value="50", min_order_value=Decimal("100"))
    check = validate_coupon("FLAT50", 1, Decimal("30"))
    assert check.reason == CouponIneligibleError.MIN_ORDER_NOT_MET
    assert "100" in check.message
    error = check.as_error()
    assert error.data["required"] == 100.0


def test_expired_is_reported_before_wrong_store(make_store, make_coupon):
    other = make_store("Other")
    now = utcnow()
    make_coupon("OLD", store_id=other.id,
                valid_from=now - timedelta(days=10), valid_until=now - timedelta(days=1))
    check = validate_coupon("OLD", 1, Decimal("100"), store_id=other.id + 1)
    assert check.reason == CouponIneligibleError.EXPIRED


def test_not_yet_active_counts_as_expired(make_coupon):
    now = utcnow()
    make_coupon("SOON", valid_from=now + timedelta(days=1), valid_until=now + timedelta(days=5))
    assert validate_coupon("SOON", 1, Decimal("100")).reason == CouponIneligibleError.EXPIRED


def test_wrong_store(make_store, make_coupon):
    a, b = make_store("A"), make_store("B")
    make_coupon("ONLYA", store_id=a.id)
    assert validate_coupon("ONLYA", 1, Decimal("100"), store_id=b.id).reason == CouponIneligibleError.WRONG_STORE
    assert validate_coupon("ONLYA", 1, Decimal("100"), store_id=a.id).is_valid


def test_usage_limit_reached(make_coupon):
    make_coupon("ONCE", usage_limit=1, usage_count=1)
    assert validate_coupon("ONCE", 1, Decimal("100")).reason == CouponIneligibleError.USAGE_LIMIT_REACHED


def test_one_time_coupon_second_use_is_already_used(make_coupon):
    c = make_coupon("SAVE10")
    coupon_service.redeem_coupon(c.id, 7, None)
    db.session.commit()
    assert c.history.count() == 1

    assert validate_coupon("SAVE10", 7, Decimal("100")).reason == CouponIneligibleError.ALREADY_USED
    # other users are unaffected
    assert validate_coupon("SAVE10", 8, Decimal("100")).is_valid


def test_redeem_twice_hits_unique_key(make_coupon):
    c = make_coupon("SAVE10")
    coupon_service.redeem_coupon(c.id, 7, None)
    db.session.commit()
    with pytest.raises(CouponIneligibleError) as exc:
        coupon_service.redeem_coupon(c.id, 7, None)
    db.session.rollback()
    assert exc.value.reason == CouponIneligibleError.ALREADY_USED
    assert CouponHistory.query.count() == 1


def test_increment_stops_at_limit(make_coupon):
    c = make_coupon("TWICE", use="many", usage_limit=2)
    assert coupon_service.increment_coupon_usage(c.id)
    assert coupon_service.increment_coupon_usage(c.id)
    assert not coupon_service.increment_coupon_usage(c.id)
    db.session.commit()
    db.session.refresh(c)
    assert c.usage_count == 2


def test_new_user_coupon_rejects_returning_customer(make_store, make_product, make_coupon, add_to_cart):
    store = make_store()
    p = make_product(store, price="100")
    make_coupon("WELCOME", user_eligibility="new_user")
    assert validate_coupon("WELCOME", 5, Decimal("100")).is_valid

    add_to_cart(5, p)
    commit_checkout(5, "tok-first", address={"city": "Pune"})

    assert validate_coupon("WELCOME", 5, Decimal("100")).reason == CouponIneligibleError.INELIGIBLE_USER


def test_existing_user_coupon_rejects_newcomer(make_coupon):
    make_coupon("LOYAL", user_eligibility="existing_user")
    assert validate_coupon("LOYAL", 5, Decimal("100")).reason == CouponIneligibleError.INELIGIBLE_USER


def test_discount_computed_on_order_total(make_coupon):
    make_coupon("SAVE10")
    check = validate_coupon("SAVE10", 1, Decimal("1000"), order_total=Decimal("800"))
    assert check.discount_amount == Decimal("80")


def _payload(**kw):
    now = utcnow()
    data = {
        "code": "new20",
        "discount_type": "percentage",
        "discount_value": 20,
        "valid_from": (now - timedelta(days=1)).isoformat(),
        "valid_until": (now + timedelta(days=30)).isoformat() + "Z",
    }
    data.update(kw)
    return data


def test_create_coupon_stores_upper_case(app):
    c = coupon_service.create_coupon_from_payload(_payload(), owner_id=1)
    assert c.code == "NEW20"
    with pytest.raises(ValidationError):
        coupon_service.create_coupon_from_payload(_payload(code="New20"), owner_id=1)


def test_create_coupon_rejects_bad_percentage(app):
    with pytest.raises(ValidationError):
        coupon_service.create_coupon_from_payload(_payload(discount_value=150), owner_id=1)
    with pytest.raises(ValidationError):
        coupon_service.create_coupon_from_payload(_payload(valid_until="not a date"), owner_id=1)


def test_applicable_coupons_annotated_with_cart_total(make_store, make_coupon):
    store = make_store()
    make_coupon("BIG", min_order_value=Decimal("1000"))
    make_coupon("MINE", store_id=store.id)
    make_coupon("GONE", deleted=True)

    rows = coupon_service.list_applicable_coupons(1, store_id=store.id, cart_total="500")
    by_code = {r["code"]: r for r in rows}
    assert set(by_code) == {"BIG", "MINE"}
    assert by_code["BIG"]["is_eligible"] is False
    assert "1000.00" in by_code["BIG"]["eligibility_message"]
    assert by_code["MINE"]["is_eligible"] is True

    # without a store only global coupons are listed
    assert {r["code"] for r in coupon_service.list_applicable_coupons(1)} == {"BIG"}


def test_delete_coupon_soft_deletes(make_coupon):
    c = make_coupon("BYE")
    coupon_service.delete_coupon(c.id)
    assert validate_coupon("BYE", 1, Decimal("100")).reason == "not_found"
    with pytest.raises(NotFoundError):
        coupon_service.delete_coupon(c.id)


def test_seller_coupon_must_target_own_store(make_store):
    mine, theirs = make_store("Mine", owner_id=900), make_store("Theirs", owner_id=901)

    with pytest.raises(ForbiddenError):
        coupon_service.create_coupon_from_payload(_payload(), owner_type="seller", owner_id=900)
    with pytest.raises(ForbiddenError):
        coupon_service.create_coupon_from_payload(_payload(store_id=theirs.id), owner_type="seller", owner_id=900)
    with pytest.raises(ForbiddenError):
        coupon_service.create_coupon_from_payload(_payload(store_id=mine.id), owner_type="user", owner_id=900)

    c = coupon_service.create_coupon_from_payload(
        _payload(store_id=str(mine.id), owner_type="admin", owner_id=1), owner_type="seller", owner_id=900)
    assert (c.owner_type, c.owner_id, c.store_id) == ("seller", 900, mine.id)


def test_coupon_numbers_must_be_finite(app):
    for bad in ({"discount_value": "Infinity"}, {"min_order_value": "NaN"},
                {"max_discount_amount": "lots"}, {"usage_limit": "2.5"}, {"store_id": "abc"}):
        with pytest.raises(ValidationError):
            coupon_service.create_coupon_from_payload(_payload(**bad), owner_id=1)


def test_validate_coupon_requires_a_total(make_coupon):
    make_coupon("SAVE10")
    with pytest.raises(ValidationError):
        validate_coupon("SAVE10", 1, None)
    with pytest.raises(ValidationError):
        validate_coupon("SAVE10", 1, "NaN")
    with pytest.raises(ValidationError):
        validate_coupon("SAVE10", 1, Decimal("100"), store_id="x")


def test_only_owner_or_admin_deletes_coupon(make_coupon):
    c = make_coupon("MINE", owner_id=900)
    with pytest.raises(ForbiddenError):
        coupon_service.delete_coupon(c.id, user_id=555)
    coupon_service.delete_coupon(c.id, user_id=555, is_admin=True)
    assert c.deleted is True
