# marketplace/services/access.py
from ..errors import ForbiddenError


def ensure_store_owner(store, user_id, is_admin: bool = False):
    """Only the store's owner (or an admin) may manage its orders, offers and coupons."""
    if is_admin:
        return
    if store is None or store.owner_id is None or int(store.owner_id) != int(user_id):
        raise ForbiddenError("You do not manage this store", store_id=getattr(store, "id", None))
