from flask import request

from ..utils.api import ok, err
from ..utils.decorators import user_required
from ..services import notification_service
from . import bp


@bp.get("")
@user_required
def get_notifications(user_id):
    unread = request.args.get("unread") in ("1", "true", "yes")
    notes = notification_service.list_notifications(user_id, unread_only=unread)
    return ok("notifications", [n.as_api() for n in notes])


@bp.put("/<int:note_id>/read")
@user_required
def mark_as_read(note_id: int, user_id):
    note = notification_service.mark_read(user_id, note_id)
    if note is None:
        return err("notification not found", 404)
    return ok("marked as read", note.as_api())
