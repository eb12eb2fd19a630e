# marketplace/model/checkout.py
from ..extensions import db
from ..utils.dates import utcnow

class CheckoutAttempt(db.Model):
    """Idempotency record for POST /orders/checkout, keyed by the caller token."""
    __tablename__ = "checkout_attempt"

    PROCESSING = "processing"
    COMPLETED = "completed"

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(255), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=PROCESSING)
    result_json = db.Column(db.JSON, nullable=True)

    # refreshed by whoever holds the attempt; a stale lease can be taken over
    locked_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    def as_api(self):
        return {
            "token": self.token,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
