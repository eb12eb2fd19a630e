# marketplace/services/offer_service.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..model import Product, Store, StoreOffer, OFFER_TYPES
from ..utils.money import ZERO
from .access import ensure_store_owner
from .domain import LineItem, OfferSpec
from .inputs import parse_amount, parse_int_list

PERCENTAGE = "percentage_discount"
FLAT = "flat_discount"
BOGO = "buy_one_get_one"


class OfferPolicy(str, Enum):
    """How ``min_order_value`` is evaluated when several offers are active.

    PRE_DISCOUNT
        every offer is checked against the store's full pre-discount
        subtotal and the eligible discounts are summed. Line order and
        offer order do not change the result.
    RUNNING
        lines fold in cart order; after each line the running subtotal is
        checked against each offer in saved order. A percentage offer only
        discounts lines reached after the threshold is crossed, and a flat
        offer is added once, the first time it qualifies.
    """

    PRE_DISCOUNT = "pre_discount"
    RUNNING = "running"


@dataclass
class LineOffers:
    line: LineItem
    discount: Decimal = ZERO          # percentage discounts, unrounded
    applied_offers: list[dict] = field(default_factory=list)
    free_quantity: int = 0


@dataclass
class OfferResult:
    lines: list[LineOffers]
    subtotal: Decimal
    percentage_discount: Decimal = ZERO
    flat_discount: Decimal = ZERO
    applied_offers: list[dict] = field(default_factory=list)

    @property
    def total_discount(self) -> Decimal:
        # never more than the store subtotal
        return min(self.percentage_discount + self.flat_discount, self.subtotal)


def describe_offer(offer: OfferSpec) -> dict:
    if offer.offer_type == PERCENTAGE:
        text = f"{offer.discount_value.normalize():f}% discount"
    elif offer.offer_type == FLAT:
        text = f"Flat {offer.discount_value.normalize():f} discount"
    else:
        text = "Buy 1 Get 1 Free"
    return {"offer_id": offer.id, "type": offer.offer_type, "description": text}


def _percent_of(line: LineItem, offer: OfferSpec) -> Decimal:
    return line.line_total * offer.discount_value / Decimal(100)


def _apply_bogo(r: LineOffers, offer: OfferSpec):
    if r.line.product_id in offer.selected_product_ids:
        # informational: the customer still pays for `quantity`
        r.free_quantity = r.line.quantity
        r.applied_offers.append(describe_offer(offer))
        return True
    return False


def apply_offers(offers: list[OfferSpec], lines: list[LineItem],
                 policy: OfferPolicy = OfferPolicy.PRE_DISCOUNT) -> OfferResult:
    """Fold a store's active offers into its lines.

    ``offers`` must already be filtered to non-deleted offers of the store,
    in the order the seller saved them.
    """
    policy = OfferPolicy(policy)
    rows = [LineOffers(line=l) for l in lines]
    subtotal = sum((l.line_total for l in lines), ZERO)
    result = OfferResult(lines=rows, subtotal=subtotal)
    store_applied: dict[int, dict] = {}

    if policy is OfferPolicy.PRE_DISCOUNT:
        for offer in offers:
            if offer.offer_type == BOGO:
                for r in rows:
                    if _apply_bogo(r, offer):
                        store_applied.setdefault(offer.id, describe_offer(offer))
                continue
            if subtotal < offer.min_order_value:
                continue
            if offer.offer_type == PERCENTAGE:
                for r in rows:
                    amount = _percent_of(r.line, offer)
                    r.discount += amount
                    result.percentage_discount += amount
                    r.applied_offers.append(describe_offer(offer))
            elif offer.offer_type == FLAT:
                result.flat_discount += offer.discount_value
            store_applied.setdefault(offer.id, describe_offer(offer))
    else:
        running = ZERO
        flat_done = set()
        for r in rows:
            running += r.line.line_total
            for offer in offers:
                if offer.offer_type == BOGO:
                    if _apply_bogo(r, offer):
                        store_applied.setdefault(offer.id, describe_offer(offer))
                    continue
                if running < offer.min_order_value:
                    continue
                if offer.offer_type == PERCENTAGE:
                    amount = _percent_of(r.line, offer)
                    r.discount += amount
                    result.percentage_discount += amount
                    r.applied_offers.append(describe_offer(offer))
                elif offer.offer_type == FLAT:
                    if offer.id in flat_done:
                        continue
                    flat_done.add(offer.id)
                    result.flat_discount += offer.discount_value
                store_applied.setdefault(offer.id, describe_offer(offer))

    # stacked percentages can't discount a line below zero
    for r in rows:
        if r.discount > r.line.line_total:
            result.percentage_discount -= r.discount - r.line.line_total
            r.discount = r.line.line_total

    result.applied_offers = list(store_applied.values())
    return result


# ---- seller-side administration --------------------------------------------

def list_offers(store_id: int) -> list[StoreOffer]:
    return (StoreOffer.query
            .filter_by(store_id=store_id, deleted=False)
            .order_by(StoreOffer.id.asc())
            .all())


def create_offer_from_payload(store_id: int, created_by: int, data: dict, is_admin: bool = False) -> StoreOffer:
    store = db.session.get(Store, store_id)
    if not store or store.deleted:
        raise NotFoundError("Store not found")
    ensure_store_owner(store, created_by, is_admin)

    title = (data.get("title") or "").strip()
    offer_type = (data.get("offer_type") or "").strip().lower()
    if not title:
        raise ValidationError("title is required")
    if offer_type not in OFFER_TYPES:
        raise ValidationError(f"offer_type must be one of: {', '.join(OFFER_TYPES)}")

    min_order_value = parse_amount(data.get("min_order_value"), "min_order_value") or ZERO
    discount_value = parse_amount(data.get("discount_value"), "discount_value")
    if min_order_value < 0:
        raise ValidationError("min_order_value must be >= 0")

    selected = []
    if offer_type == BOGO:
        selected = parse_int_list(data.get("selected_product_ids"), "selected_product_ids")
        if not selected:
            raise ValidationError("selected_product_ids is required for buy_one_get_one")
        found = {pid for (pid,) in db.session.query(Product.id)
                 .filter(Product.id.in_(selected), Product.store_id == store_id, Product.deleted.is_(False))}
        missing = [pid for pid in selected if pid not in found]
        if missing:
            raise ValidationError("selected products do not belong to this store", product_ids=missing)
        discount_value = None
    else:
        if discount_value is None or discount_value <= 0:
            raise ValidationError("discount_value must be > 0")
        if offer_type == PERCENTAGE and discount_value > 100:
            raise ValidationError("percentage discount must be <= 100")

    offer = StoreOffer(
        store_id=store_id,
        created_by=created_by,
        title=title,
        offer_type=offer_type,
        discount_value=discount_value,
        min_order_value=min_order_value,
        selected_product_ids=selected,
    )
    db.session.add(offer)
    db.session.commit()
    return offer


def delete_offer(store_id: int, offer_id: int, user_id: int | None = None, is_admin: bool = False) -> StoreOffer:
    offer = StoreOffer.query.filter_by(id=offer_id, store_id=store_id, deleted=False).first()
    if not offer:
        raise NotFoundError("Offer not found")
    if user_id is not None:
        ensure_store_owner(db.session.get(Store, store_id), user_id, is_admin)
    offer.deleted = True
    db.session.commit()
    return offer
