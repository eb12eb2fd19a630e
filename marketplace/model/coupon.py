# --- marketplace/model/coupon.py ---

from ..extensions import db
from sqlalchemy.sql import func

class Coupon(db.Model):
    __tablename__ = "coupon"
    __table_args__ = (
        db.CheckConstraint(
            "usage_limit = 0 OR usage_count <= usage_limit",
            name="ck_coupon_usage_within_limit",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), unique=True, nullable=False, index=True)   # stored upper-case
    name = db.Column(db.String(120), nullable=False, default="")
    description = db.Column(db.String(255), nullable=False, default="")

    # "flat" or "percentage"
    discount_type = db.Column(db.String(16), nullable=False, default="flat")
    discount_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    max_discount_amount = db.Column(db.Numeric(12, 2), nullable=True)   # cap, percentage only
    min_order_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    usage_limit = db.Column(db.Integer, nullable=False, default=0)   # 0 = unlimited
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime, nullable=False)
    valid_until = db.Column(db.DateTime, nullable=False)

    user_eligibility = db.Column(db.String(16), nullable=False, default="all")   # all | new_user | existing_user
    use = db.Column(db.String(8), nullable=False, default="one")                  # one | many

    owner_type = db.Column(db.String(16), nullable=False, default="admin")        # admin | seller | retailer
    owner_id = db.Column(db.Integer, nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("store.id"), nullable=True, index=True)   # NULL = global

    deleted = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    history = db.relationship("CouponHistory", back_populates="coupon", lazy="dynamic")

    @property
    def is_one_time(self) -> bool:
        return (self.use or "one") == "one"

    def as_api(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": float(self.discount_value or 0),
            "max_discount_amount": float(self.max_discount_amount) if self.max_discount_amount is not None else None,
            "min_order_value": float(self.min_order_value or 0),
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
            "valid_from": self.valid_from.isoformat() if self.valid_from else None,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
            "user_eligibility": self.user_eligibility,
            "use": self.use,
            "owner_type": self.owner_type,
            "owner_id": self.owner_id,
            "store_id": self.store_id,
        }

class CouponHistory(db.Model):
    """One row per redemption. Append-only."""
    __tablename__ = "coupon_history"

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupon.id"), index=True, nullable=False)
    user_id = db.Column(db.Integer, index=True, nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    # "<coupon_id>:<user_id>" for use="one" coupons, NULL otherwise.
    # The unique index is what rejects a second concurrent redemption.
    one_time_key = db.Column(db.String(64), unique=True, nullable=True)

    created_at = db.Column(db.DateTime, server_default=func.now())

    coupon = db.relationship("Coupon", back_populates="history")

    @staticmethod
    def key_for(coupon, user_id):
        return f"{coupon.id}:{user_id}" if coupon.is_one_time else None
