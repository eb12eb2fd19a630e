# marketplace/services/pricing_service.py
"""
Cart pricing.

``PricingAssembler`` turns a ``CartSnapshot`` into a ``BillSummary``: per
store it folds in offers, shipping and charges, then spreads a global
coupon and the donation across stores by store subtotal. It never writes
to the DB, so the same snapshot always prices the same.

``quote_cart`` is the DB-facing entry point used by the bill endpoint and
by checkout.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..model import CartLine, Store, StoreOffer
from ..utils.money import D, ZERO, money_api, round_money
from .charge_service import ChargeCalculator, Charges
from .coupon_service import CouponTerms, coupon_discount, find_coupon, validate_or_raise
from .domain import CartSnapshot, LineItem, OfferSpec, StoreConfig
from .inputs import parse_amount, parse_int
from .offer_service import OfferPolicy, apply_offers
from .shipping import ShippingRule

logger = logging.getLogger(__name__)


@dataclass
class LineBill:
    line: LineItem
    line_total: Decimal
    discount: Decimal = ZERO
    free_quantity: int = 0
    applied_offers: list[dict] = field(default_factory=list)

    def as_api(self):
        l = self.line
        return {
            "cart_line_id": l.cart_line_id,
            "product_id": l.product_id,
            "name": l.name,
            "mrp": money_api(l.mrp),
            "unit_price": money_api(l.unit_price),
            "quantity": l.quantity,
            "free_quantity": self.free_quantity,
            "line_total": money_api(self.line_total),
            "discount": money_api(self.discount),
            "applied_offers": self.applied_offers,
        }


@dataclass
class StoreBill:
    store: StoreConfig
    lines: list[LineBill]
    applied_offers: list[dict]
    item_total: Decimal
    discount_amount: Decimal
    shipping_fee: Decimal
    charges: Charges
    coupon_discount: Decimal = ZERO
    donation: Decimal = ZERO

    @property
    def store_id(self) -> int:
        return self.store.store_id

    @property
    def net_items(self) -> Decimal:
        return self.item_total - self.discount_amount

    @property
    def grand_total(self) -> Decimal:
        total = (self.item_total - self.discount_amount - self.coupon_discount
                 + self.shipping_fee + round_money(self.charges.total) + self.donation)
        return max(ZERO, total)

    def as_api(self):
        return {
            "store_id": self.store_id,
            "store_name": self.store.name,
            "item_total": money_api(self.item_total),
            "discount_amount": money_api(self.discount_amount),
            "coupon_discount": money_api(self.coupon_discount),
            "shipping_fee": money_api(self.shipping_fee),
            "donation_amount": money_api(self.donation),
            "charges": self.charges.as_api(),
            "grand_total": money_api(self.grand_total),
            "applied_offers": self.applied_offers,
            "items": [l.as_api() for l in self.lines],
        }


@dataclass
class BillSummary:
    stores: list[StoreBill]
    coupon_id: int | None = None
    coupon_code: str | None = None

    def store_bill(self, store_id) -> StoreBill | None:
        for s in self.stores:
            if s.store_id == store_id:
                return s
        return None

    def _sum(self, attr) -> Decimal:
        return sum((getattr(s, attr) for s in self.stores), ZERO)

    @property
    def item_total(self): return self._sum("item_total")

    @property
    def discount_amount(self): return self._sum("discount_amount")

    @property
    def coupon_discount(self): return self._sum("coupon_discount")

    @property
    def shipping_fee(self): return self._sum("shipping_fee")

    @property
    def donation(self): return self._sum("donation")

    @property
    def charges(self) -> Charges:
        return Charges.combine([s.charges for s in self.stores])

    @property
    def total_payable(self) -> Decimal:
        total = (self.item_total - self.discount_amount - self.coupon_discount
                 + self.shipping_fee + round_money(self.charges.total) + self.donation)
        return max(ZERO, total)

    @property
    def saved(self) -> Decimal:
        return self.discount_amount + self.coupon_discount

    def as_api(self):
        return {
            "item_total": money_api(self.item_total),
            "discount_amount": money_api(self.discount_amount),
            "coupon_discount": money_api(self.coupon_discount),
            "coupon_code": self.coupon_code,
            "shipping_fee": money_api(self.shipping_fee),
            "donation_amount": money_api(self.donation),
            "charges": self.charges.as_api(),
            "total_payable": money_api(self.total_payable),
            "saved": money_api(self.saved),
            "stores": [s.as_api() for s in self.stores],
        }


def allocate(total, weights: list, caps: list | None = None) -> list[Decimal]:
    """Split ``total`` by ``weights`` in cents; the last share takes the remainder.

    With ``caps`` no share exceeds its cap and any overflow moves to the
    stores that still have room, so the shares always sum to ``total`` as
    long as ``total <= sum(caps)``.
    """
    total = round_money(total)
    if not weights:
        return []
    weights = [D(w) for w in weights]
    wsum = sum(weights, ZERO)
    shares = []
    remaining = total
    last = len(weights) - 1
    for i, w in enumerate(weights):
        if i == last:
            share = remaining
        elif wsum > 0:
            share = round_money(total * w / wsum)
        else:
            share = ZERO
        if caps is not None:
            share = min(share, D(caps[i]))
        share = max(ZERO, min(share, remaining))
        shares.append(share)
        remaining -= share

    if caps is not None and remaining > 0:
        for i in range(len(shares)):
            room = D(caps[i]) - shares[i]
            if room <= 0:
                continue
            extra = min(room, remaining)
            shares[i] += extra
            remaining -= extra
            if remaining <= 0:
                break
    return shares


def _reconcile_line_discounts(rows: list[LineBill], target: Decimal):
    # make Σ rounded line discounts equal the rounded store percentage discount
    diff = target - sum((r.discount for r in rows), ZERO)
    if not diff or not rows:
        return
    for r in reversed(rows):
        adjusted = r.discount + diff
        if ZERO <= adjusted <= r.line_total:
            r.discount = adjusted
            return


class PricingAssembler:
    def __init__(self, charges: ChargeCalculator | None = None,
                 shipping: ShippingRule | None = None,
                 offer_policy=OfferPolicy.PRE_DISCOUNT):
        self.charges = charges or ChargeCalculator()
        self.shipping = shipping or ShippingRule()
        self.offer_policy = OfferPolicy(offer_policy)

    def price_store(self, store: StoreConfig, lines: list[LineItem], offers: list[OfferSpec]) -> StoreBill:
        result = apply_offers(offers, lines, self.offer_policy)
        rows = [
            LineBill(
                line=r.line,
                line_total=round_money(r.line.line_total),
                discount=round_money(r.discount),
                free_quantity=r.free_quantity,
                applied_offers=r.applied_offers,
            )
            for r in result.lines
        ]
        _reconcile_line_discounts(rows, round_money(result.percentage_discount))

        item_total = round_money(result.subtotal)
        discount = min(round_money(result.total_discount), item_total)
        return StoreBill(
            store=store,
            lines=rows,
            applied_offers=result.applied_offers,
            item_total=item_total,
            discount_amount=discount,
            shipping_fee=round_money(self.shipping(result.subtotal - result.total_discount)),
            charges=self.charges.compute(store, lines, result.subtotal),
        )

    def price_cart(self, snapshot: CartSnapshot, coupon: CouponTerms | None = None, donation=ZERO) -> BillSummary:
        bills = [
            self.price_store(snapshot.store(sid), snapshot.lines_for(sid), snapshot.offers.get(sid, []))
            for sid in snapshot.store_ids()
        ]
        summary = BillSummary(stores=bills)

        if coupon is not None:
            summary.coupon_id = coupon.id
            summary.coupon_code = coupon.code
            if coupon.store_id is not None:
                target = summary.store_bill(coupon.store_id)
                if target is not None:
                    target.coupon_discount = min(round_money(coupon_discount(coupon, target.net_items)),
                                                 target.net_items)
            elif bills:
                base = sum((b.net_items for b in bills), ZERO)
                amount = round_money(coupon_discount(coupon, base))
                shares = allocate(amount, [b.item_total for b in bills], [b.net_items for b in bills])
                for b, share in zip(bills, shares):
                    b.coupon_discount = share

        donation = round_money(donation)
        if donation > 0 and bills:
            for b, share in zip(bills, allocate(donation, [b.item_total for b in bills])):
                b.donation = share

        return summary


def pricing_from_config(config) -> PricingAssembler:
    return PricingAssembler(
        charges=ChargeCalculator(D(config.get("PLATFORM_FEE", "0"))),
        shipping=ShippingRule(
            threshold=D(config.get("FREE_SHIPPING_THRESHOLD", "500")),
            fee=D(config.get("SHIPPING_FEE", "50")),
        ),
        offer_policy=config.get("OFFER_POLICY", OfferPolicy.PRE_DISCOUNT.value),
    )


def current_pricing() -> PricingAssembler:
    pricing = current_app.extensions.get("pricing")
    if pricing is None:
        pricing = current_app.extensions["pricing"] = pricing_from_config(current_app.config)
    return pricing


# ---- DB-facing ---------------------------------------------------------------

def load_cart_snapshot(user_id, store_id=None) -> CartSnapshot:
    q = CartLine.query.filter_by(user_id=user_id, deleted=False)
    if store_id is not None:
        q = q.filter(CartLine.store_id == store_id)
    cart_lines = q.order_by(CartLine.id.asc()).all()

    lines = []
    for cl in cart_lines:
        p = cl.product
        if p is None or p.deleted:
            raise NotFoundError(f"product {cl.product_id} is no longer available", product_id=cl.product_id)
        lines.append(LineItem.from_cart_line(cl))

    snapshot = CartSnapshot(user_id=user_id, lines=lines)
    store_ids = snapshot.store_ids()
    if not store_ids:
        return snapshot

    for s in Store.query.filter(Store.id.in_(store_ids)).all():
        snapshot.stores[s.id] = StoreConfig.from_model(s)
    offers = (StoreOffer.query
              .filter(StoreOffer.store_id.in_(store_ids), StoreOffer.deleted.is_(False))
              .order_by(StoreOffer.id.asc())
              .all())
    for o in offers:
        snapshot.offers.setdefault(o.store_id, []).append(OfferSpec.from_model(o))
    return snapshot


def parse_donation(raw) -> Decimal:
    donation = parse_amount(raw, "donation") or ZERO
    if donation < 0:
        raise ValidationError("donation must be >= 0")
    return round_money(donation)


def quote_cart(user_id, coupon_code=None, donation=0, store_id=None, snapshot: CartSnapshot | None = None) -> BillSummary:
    """Price the user's cart, validating ``coupon_code`` against the right totals.

    A store-scoped coupon is checked against its own store's totals; a
    global one against the whole cart. Raises the coupon's error when it
    does not apply.
    """
    donation = parse_donation(donation)
    store_id = parse_int(store_id, "store_id")
    snapshot = snapshot or load_cart_snapshot(user_id, store_id)
    if not snapshot.lines:
        raise ValidationError("Cart is empty")

    pricing = current_pricing()
    if not coupon_code:
        return pricing.price_cart(snapshot, donation=donation)

    base = pricing.price_cart(snapshot)
    scope_store = store_id
    item_total, order_total = base.item_total, base.item_total - base.discount_amount

    c = find_coupon(coupon_code)
    if c is not None and c.store_id is not None:
        own = base.store_bill(c.store_id)
        if own is not None:
            scope_store = c.store_id
            item_total, order_total = own.item_total, own.net_items
        else:
            # coupon's store is not in this cart: surfaces as wrong_store
            scope_store = snapshot.store_ids()[0]

    check = validate_or_raise(coupon_code, user_id, item_total,
                              store_id=scope_store, order_total=order_total)
    logger.debug("coupon %s accepted for user %s: %s", check.coupon.code, user_id, check.discount_amount)
    return pricing.price_cart(snapshot, CouponTerms.from_model(check.coupon), donation)
