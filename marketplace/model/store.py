# marketplace/model/store.py
from sqlalchemy.sql import func
from ..extensions import db

class Store(db.Model):
    __tablename__ = "store"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    owner_id = db.Column(db.Integer, nullable=False, index=True)   # retailer who receives order notifications

    # Overrides the configured PLATFORM_FEE when set
    platform_fee = db.Column(db.Numeric(12, 2), nullable=True)
    # [{"label": "Packing", "type": "flat"|"percent", "amount": 10}]
    extra_charges = db.Column(db.JSON, nullable=True)

    deleted = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    products = db.relationship("Product", backref="store", lazy=True)

    def as_api(self):
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "platform_fee": float(self.platform_fee) if self.platform_fee is not None else None,
            "extra_charges": self.extra_charges or [],
        }
