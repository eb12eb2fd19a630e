# marketplace/model/cart.py
from __future__ import annotations
from sqlalchemy.sql import func
from ..extensions import db

class CartLine(db.Model):
    __tablename__ = "cart_line"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("store.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    # soft delete; set once the line is consumed by an order
    deleted = db.Column(db.Boolean, default=False, nullable=False, index=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    product = db.relationship("Product", lazy="joined")

    def as_api(self):
        p = self.product
        return {
            "id": self.id,
            "product_id": self.product_id,
            "store_id": self.store_id,
            "quantity": self.quantity,
            "name": p.name if p else None,
            "price": float(p.price or 0) if p else None,
            "mrp": float(p.mrp or 0) if p else None,
            "line_total": float((p.price or 0) * self.quantity) if p else None,
        }
