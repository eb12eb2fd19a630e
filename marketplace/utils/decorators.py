# ------- marketplace/utils/decorators.py -------
from functools import wraps

from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request

from .api import err


def current_user_id():
    verify_jwt_in_request()
    uid = get_jwt_identity()
    try:
        return int(uid)
    except (TypeError, ValueError):
        return None


def current_role() -> str:
    # tokens without a role claim are plain shoppers
    return (get_jwt().get("role") or "user").lower()


def is_admin() -> bool:
    return current_role() == "admin"


def user_required(fn):
    """``jwt_required`` plus a numeric identity, passed as ``user_id``."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        uid = current_user_id()
        if uid is None:
            return err("invalid token identity", 401)
        return fn(*args, user_id=uid, **kwargs)
    return wrapper


def role_required(*roles, message: str | None = None):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            uid = current_user_id()
            if uid is None:
                return err("Unauthorized", 401)
            if current_role() not in roles:
                return err(message or "Forbidden", 403)
            return fn(*args, user_id=uid, **kwargs)
        return wrapper
    return decorator
