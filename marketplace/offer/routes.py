# marketplace/offer/routes.py
from flask import request

from ..utils.api import ok
from ..utils.decorators import is_admin, user_required
from ..services import offer_service
from . import bp


@bp.post("/<int:store_id>/offers")
@user_required
def create_offer(store_id: int, user_id):
    data = request.get_json(silent=True) or {}
    offer = offer_service.create_offer_from_payload(store_id, user_id, data, is_admin=is_admin())
    return ok("offer created", offer.as_api(), 201)


@bp.get("/<int:store_id>/offers")
@user_required
def list_offers(store_id: int, user_id):
    return ok("offers", [o.as_api() for o in offer_service.list_offers(store_id)])


@bp.delete("/<int:store_id>/offers/<int:offer_id>")
@user_required
def delete_offer(store_id: int, offer_id: int, user_id):
    offer_service.delete_offer(store_id, offer_id, user_id, is_admin=is_admin())
    return ok("offer deleted", {"id": offer_id})
