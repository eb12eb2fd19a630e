# marketplace/services/charge_service.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..utils.money import D, ZERO, round_money, money_api
from .domain import ExtraCharge, LineItem, StoreConfig


@dataclass
class Charges:
    platform_fee: Decimal = ZERO
    product_total: Decimal = ZERO
    store_total: Decimal = ZERO
    breakdown: list[dict] = field(default_factory=list)   # [{"label", "amount": Decimal}]

    @property
    def total(self) -> Decimal:
        return self.platform_fee + self.product_total + self.store_total

    def as_api(self):
        return {
            "platform_fee": money_api(self.platform_fee),
            "total": money_api(self.total),
            "breakdown": [{"label": b["label"], "amount": money_api(b["amount"])} for b in self.breakdown],
        }

    @classmethod
    def combine(cls, parts: list["Charges"]) -> "Charges":
        out = cls()
        for c in parts:
            out.platform_fee += c.platform_fee
            out.product_total += c.product_total
            out.store_total += c.store_total
            out.breakdown.extend(c.breakdown)
        return out


def _charge_amount(charge: ExtraCharge, base: Decimal) -> Decimal:
    if charge.type == "percent":
        return round_money(base * charge.amount / Decimal(100))
    return round_money(charge.amount)


class ChargeCalculator:
    """Platform fee plus itemized extra charges.

    ``default_platform_fee`` comes from configuration; a store's own
    ``platform_fee`` takes precedence when it is set.
    """

    def __init__(self, default_platform_fee=ZERO):
        self.default_platform_fee = D(default_platform_fee)

    def platform_fee_for(self, store: StoreConfig) -> Decimal:
        fee = store.platform_fee if store.platform_fee is not None else self.default_platform_fee
        return round_money(fee) if fee > 0 else ZERO

    def compute(self, store: StoreConfig, lines: list[LineItem], products_subtotal) -> Charges:
        out = Charges(platform_fee=self.platform_fee_for(store))
        if out.platform_fee:
            out.breakdown.append({"label": "Platform fee", "amount": out.platform_fee})

        for line in lines:
            for charge in line.extra_charges:
                amount = _charge_amount(charge, line.line_total)
                if amount > 0:
                    out.product_total += amount
                    out.breakdown.append({"label": charge.label, "amount": amount})

        for charge in store.extra_charges:
            amount = _charge_amount(charge, D(products_subtotal))
            if amount > 0:
                out.store_total += amount
                out.breakdown.append({"label": charge.label, "amount": amount})

        return out
