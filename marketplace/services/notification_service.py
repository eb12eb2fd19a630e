# marketplace/services/notification_service.py
"""Retailer notifications.

Sent after the order transaction has committed. A failure here is logged
and dropped; it never undoes or fails a checkout.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..model import Notification

logger = logging.getLogger(__name__)


def _send(user_id, title, message, kind, meta=None):
    try:
        note = Notification(user_id=user_id, title=title, message=message, kind=kind, meta=meta or {})
        db.session.add(note)
        db.session.commit()
        return note
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("failed to notify user %s (%s)", user_id, title)
        return None


def notify_low_stock(retailer_id, product, new_stock):
    return _send(
        retailer_id,
        "Low stock",
        f"{product.name} has only {new_stock} left in stock",
        "alert",
        {"product_id": product.id, "stock": new_stock},
    )


def notify_new_order(retailer_id, order):
    return _send(
        retailer_id,
        "New order",
        f"Order {order.code} received ({len(order.items)} items, total {order.grand_total})",
        "order",
        {"order_id": order.id, "code": order.code},
    )


def notify_order_status_change(user_id, order):
    return _send(
        user_id,
        "Order update",
        f"Order {order.code} is now {order.status}",
        "order",
        {"order_id": order.id, "status": order.status},
    )


def list_notifications(user_id, unread_only=False):
    q = Notification.query.filter_by(user_id=user_id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.id.desc()).all()


def mark_read(user_id, note_id):
    note = Notification.query.filter_by(id=note_id, user_id=user_id).first()
    if note is None:
        return None
    note.is_read = True
    db.session.commit()
    return note
