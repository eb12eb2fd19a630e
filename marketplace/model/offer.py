# marketplace/model/offer.py
from sqlalchemy.sql import func
from ..extensions import db

OFFER_TYPES = ("percentage_discount", "flat_discount", "buy_one_get_one")

class StoreOffer(db.Model):
    __tablename__ = "store_offer"

    id = db.Column(db.Integer, primary_key=True)   # ascending id = order the seller saved them
    store_id = db.Column(db.Integer, db.ForeignKey("store.id"), nullable=False, index=True)
    created_by = db.Column(db.Integer, nullable=False)
    title = db.Column(db.String(255), nullable=False)

    offer_type = db.Column(db.String(32), nullable=False)
    discount_value = db.Column(db.Numeric(12, 2), nullable=True)   # not used by BOGO
    min_order_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    selected_product_ids = db.Column(db.JSON, nullable=True)        # BOGO products

    deleted = db.Column(db.Boolean, default=False, nullable=False, index=True)
    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    def as_api(self):
        return {
            "id": self.id,
            "store_id": self.store_id,
            "title": self.title,
            "offer_type": self.offer_type,
            "discount_value": float(self.discount_value) if self.discount_value is not None else None,
            "min_order_value": float(self.min_order_value or 0),
            "selected_product_ids": self.selected_product_ids or [],
        }
