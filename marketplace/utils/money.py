# marketplace/utils/money.py

from decimal import Decimal, ROUND_HALF_UP

Money = Decimal

ZERO = Decimal("0")
CENT = Decimal("0.01")

def D(x) -> Money:
    return x if isinstance(x, Decimal) else Decimal(str(x or "0"))

def round_money(x: Money) -> Money:
    return D(x).quantize(CENT, rounding=ROUND_HALF_UP)

def money_api(x) -> float:
    # JSON boundary only
    return float(round_money(x))
