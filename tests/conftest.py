# tests/conftest.py
from datetime import timedelta
from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token

from marketplace import create_app
from marketplace.config import TestingConfig
from marketplace.extensions import db
from marketplace.model import Coupon, Product, Store, StoreOffer
from marketplace.services import cart_service
from marketplace.utils.dates import utcnow


@pytest.fixture
def app(tmp_path):
    # file DB so worker threads in the race tests see the same data
    class _Config(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'test.db'}"

    app = create_app(_Config)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    def _headers(user_id, role=None, **extra):
        claims = {"role": role} if role else None
        token = create_access_token(identity=str(user_id), additional_claims=claims)
        return {"Authorization": f"Bearer {token}", **extra}
    return _headers


@pytest.fixture
def make_store(app):
    def _make(name="Green Farm", owner_id=900, **kw):
        s = Store(name=name, owner_id=owner_id, **kw)
        db.session.add(s)
        db.session.commit()
        return s
    return _make


@pytest.fixture
def make_product(app):
    def _make(store, name="Seeds", price="100", mrp=None, stock=None, **kw):
        p = Product(
            store_id=store.id,
            name=name,
            price=Decimal(str(price)),
            mrp=Decimal(str(mrp if mrp is not None else price)),
            stock=stock,
            **kw,
        )
        db.session.add(p)
        db.session.commit()
        return p
    return _make


@pytest.fixture
def make_offer(app):
    def _make(store, offer_type, discount_value=None, min_order_value="0", product_ids=None):
        o = StoreOffer(
            store_id=store.id,
            created_by=store.owner_id,
            title=offer_type,
            offer_type=offer_type,
            discount_value=Decimal(str(discount_value)) if discount_value is not None else None,
            min_order_value=Decimal(str(min_order_value)),
            selected_product_ids=product_ids or [],
        )
        db.session.add(o)
        db.session.commit()
        return o
    return _make


@pytest.fixture
def make_coupon(app):
    def _make(code="SAVE10", discount_type="percentage", value="10", **kw):
        now = utcnow()
        fields = dict(
            code=code,
            name=code,
            discount_type=discount_type,
            discount_value=Decimal(str(value)),
            min_order_value=Decimal("0"),
            usage_limit=0,
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=1),
            owner_id=1,
            use="one",
        )
        fields.update(kw)
        c = Coupon(**fields)
        db.session.add(c)
        db.session.commit()
        return c
    return _make


@pytest.fixture
def add_to_cart(app):
    def _add(user_id, product, qty=1):
        return cart_service.add_to_cart(user_id, product.id, qty)
    return _add
