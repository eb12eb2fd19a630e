# marketplace/model/product.py
from ..extensions import db
from sqlalchemy.sql import func

class Product(db.Model):
    __tablename__ = "product"
    __table_args__ = (
        db.CheckConstraint("stock IS NULL OR stock >= 0", name="ck_product_stock_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("store.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False, index=True)

    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)   # selling price
    mrp = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=True)                   # NULL = untracked
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)

    extra_charges = db.Column(db.JSON, nullable=True)

    deleted = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    @property
    def tracks_stock(self) -> bool:
        return self.stock is not None

    def as_api(self):
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "price": float(self.price or 0),
            "mrp": float(self.mrp or 0),
            "stock": self.stock,
            "low_stock_threshold": self.low_stock_threshold,
            "extra_charges": self.extra_charges or [],
        }
