# marketplace/services/shipping.py
from dataclasses import dataclass
from decimal import Decimal

from ..utils.money import D, ZERO


@dataclass(frozen=True)
class ShippingRule:
    threshold: Decimal = Decimal("500")
    fee: Decimal = Decimal("50")

    def __call__(self, subtotal) -> Decimal:
        # strictly above the threshold ships free
        return ZERO if D(subtotal) > self.threshold else self.fee
