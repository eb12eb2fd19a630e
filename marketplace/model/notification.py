#  --- marketplace/model/notification.py ---
from sqlalchemy.sql import func
from ..extensions import db

class Notification(db.Model):
    __tablename__ = "notification"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    title = db.Column(db.String(120), nullable=False)
    message = db.Column(db.String(255), nullable=False)
    kind = db.Column(db.String(16), nullable=False, default="info")   # order | alert | info
    meta = db.Column(db.JSON, nullable=True)
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, server_default=func.now())

    def as_api(self):
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "kind": self.kind,
            "meta": self.meta or {},
            "is_read": self.is_read,
        }
