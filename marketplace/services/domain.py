"""
Pricing inputs as plain values.

The pricing functions never touch the session: ``load_cart_snapshot`` in
``pricing_service`` copies what they need out of the ORM rows into these
frozen dataclasses, so a bill can be recomputed any number of times
without side effects.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..utils.money import D, ZERO


@dataclass(frozen=True)
class ExtraCharge:
    label: str
    type: str        # "flat" | "percent"
    amount: Decimal

    @classmethod
    def parse_list(cls, raw, default_label: str) -> tuple["ExtraCharge", ...]:
        charges = []
        for c in raw or []:
            if not isinstance(c, dict):
                continue
            ctype = (c.get("type") or "flat").lower().strip()
            charges.append(cls(
                label=c.get("label") or default_label,
                type="percent" if ctype == "percent" else "flat",
                amount=D(c.get("amount")),
            ))
        return tuple(charges)


@dataclass(frozen=True)
class LineItem:
    product_id: int
    store_id: int
    unit_price: Decimal
    mrp: Decimal
    quantity: int
    name: str = ""
    extra_charges: tuple[ExtraCharge, ...] = ()
    cart_line_id: int | None = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @classmethod
    def from_cart_line(cls, cart_line) -> "LineItem":
        p = cart_line.product
        return cls(
            product_id=p.id,
            store_id=cart_line.store_id,
            unit_price=D(p.price),
            mrp=D(p.mrp),
            quantity=int(cart_line.quantity),
            name=p.name,
            extra_charges=ExtraCharge.parse_list(p.extra_charges, "Product charge"),
            cart_line_id=cart_line.id,
        )


@dataclass(frozen=True)
class OfferSpec:
    id: int
    offer_type: str
    discount_value: Decimal = ZERO
    min_order_value: Decimal = ZERO
    selected_product_ids: frozenset = frozenset()
    title: str = ""

    @classmethod
    def from_model(cls, offer) -> "OfferSpec":
        return cls(
            id=offer.id,
            offer_type=offer.offer_type,
            discount_value=D(offer.discount_value),
            min_order_value=D(offer.min_order_value),
            selected_product_ids=frozenset(int(x) for x in (offer.selected_product_ids or [])),
            title=offer.title or "",
        )


@dataclass(frozen=True)
class StoreConfig:
    store_id: int
    name: str = ""
    owner_id: int | None = None
    platform_fee: Decimal | None = None     # None = use the configured default
    extra_charges: tuple[ExtraCharge, ...] = ()

    @classmethod
    def from_model(cls, store) -> "StoreConfig":
        return cls(
            store_id=store.id,
            name=store.name,
            owner_id=store.owner_id,
            platform_fee=D(store.platform_fee) if store.platform_fee is not None else None,
            extra_charges=ExtraCharge.parse_list(store.extra_charges, "Extra charge"),
        )


@dataclass
class CartSnapshot:
    user_id: int
    lines: list[LineItem]
    stores: dict[int, StoreConfig] = field(default_factory=dict)
    offers: dict[int, list[OfferSpec]] = field(default_factory=dict)

    def store_ids(self) -> list[int]:
        # first-appearance order of the cart
        seen = []
        for line in self.lines:
            if line.store_id not in seen:
                seen.append(line.store_id)
        return seen

    def lines_for(self, store_id: int) -> list[LineItem]:
        return [l for l in self.lines if l.store_id == store_id]

    def store(self, store_id: int) -> StoreConfig:
        return self.stores.get(store_id) or StoreConfig(store_id=store_id)
