from ..extensions import db
from ..utils.dates import utcnow

PENDING = "Pending"
ACCEPTED = "Accepted"
REJECTED = "Rejected"
SHIPPED = "Product shipped"
ON_THE_WAY = "On the way"
OUT_FOR_DELIVERY = "Out for delivery"
AT_DESTINATION = "Your Destination"
DELIVERED = "Delivered"
CANCELLED = "Cancelled"

ORDER_STATUSES = (
    PENDING, ACCEPTED, REJECTED, SHIPPED, ON_THE_WAY,
    OUT_FOR_DELIVERY, AT_DESTINATION, DELIVERED, CANCELLED,
)
TERMINAL_STATUSES = frozenset({DELIVERED, REJECTED, CANCELLED})

# forward moves; Cancelled is reachable from every non-terminal status
STATUS_TRANSITIONS = {
    PENDING: {ACCEPTED, REJECTED},
    ACCEPTED: {SHIPPED},
    SHIPPED: {ON_THE_WAY},
    ON_THE_WAY: {OUT_FOR_DELIVERY},
    OUT_FOR_DELIVERY: {AT_DESTINATION},
    AT_DESTINATION: {DELIVERED},
}

PAYMENT_PENDING = "PENDING"
PAYMENT_SUCCESS = "SUCCESS"
PAYMENT_FAILED = "FAILED"


def can_transition(current: str, new: str) -> bool:
    if current in TERMINAL_STATUSES:
        return False
    if new == CANCELLED:
        return True
    return new in STATUS_TRANSITIONS.get(current, set())


class Order(db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("checkout_token", "store_id", name="uq_orders_checkout_store"),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(40), unique=True, index=True)  # e.g., "ORD-20251022-0001-S3"
    checkout_token = db.Column(db.String(255), nullable=False, index=True)
    created_by = db.Column(db.Integer, nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("store.id"), nullable=False, index=True)

    status = db.Column(db.String(20), default=PENDING, nullable=False, index=True)
    payment_status = db.Column(db.String(10), default=PAYMENT_PENDING, nullable=False)
    refund = db.Column(db.Boolean, default=False, nullable=False)

    address_json = db.Column(db.JSON)

    # Money snapshot, frozen at commit
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupon.id"), nullable=True)
    coupon_discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    shipping_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    platform_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    extra_charges_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    charges_breakdown = db.Column(db.JSON)
    donate = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    grand_total = db.Column(db.Numeric(12, 2), nullable=False)

    estimated_date = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        lazy="joined",
        order_by="OrderItem.id.asc()",
    )
    store = db.relationship("Store", lazy="joined")

    def as_api(self):
        return {
            "id": self.id,
            "code": self.code,
            "store_id": self.store_id,
            "created_by": self.created_by,
            "status": self.status,
            "payment_status": self.payment_status,
            "refund": self.refund,
            "address": self.address_json,
            "summary": {
                "total_amount": float(self.total_amount or 0),
                "discount_amount": float(self.discount_amount or 0),
                "coupon_discount": float(self.coupon_discount or 0),
                "shipping_fee": float(self.shipping_fee or 0),
                "platform_fee": float(self.platform_fee or 0),
                "extra_charges": float(self.extra_charges_total or 0),
                "charges_breakdown": self.charges_breakdown or [],
                "donate": float(self.donate or 0),
                "grand_total": float(self.grand_total or 0),
            },
            "items": [i.as_api() for i in self.items],
            "estimated_date": self.estimated_date.isoformat() if self.estimated_date else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, index=True)
    name = db.Column(db.String(255))

    mrp = db.Column(db.Numeric(12, 2))
    unit_price = db.Column(db.Numeric(12, 2))
    quantity = db.Column(db.Integer, nullable=False)
    free_quantity = db.Column(db.Integer, nullable=False, default=0)
    applied_offers = db.Column(db.JSON)
    discount = db.Column(db.Numeric(12, 2), default=0)
    line_total = db.Column(db.Numeric(12, 2))

    def as_api(self):
        return {
            "product_id": self.product_id,
            "name": self.name,
            "mrp": float(self.mrp or 0),
            "unit_price": float(self.unit_price or 0),
            "quantity": self.quantity,
            "free_quantity": self.free_quantity,
            "applied_offers": self.applied_offers or [],
            "discount": float(self.discount or 0),
            "line_total": float(self.line_total or 0),
        }
