# marketplace/services/stock_service.py
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import update

from ..extensions import db
from ..model import Product


@dataclass
class Reservation:
    ok: bool
    new_stock: int | None = None      # None when the product does not track stock
    available: int | None = None
    insufficient_by: int = 0
    low_stock: bool = False


def read_stock(product_id) -> tuple[int | None, int]:
    """(stock, low_stock_threshold) straight from the DB, bypassing the identity map."""
    row = (db.session.query(Product.stock, Product.low_stock_threshold)
           .filter(Product.id == product_id)
           .execution_options(populate_existing=True)
           .first())
    if row is None:
        return None, 0
    return row[0], int(row[1] or 0)


def reserve_stock(product_id, qty: int) -> Reservation:
    """Decrement stock by ``qty`` only if enough remains.

    Single conditional UPDATE, so two checkouts can never both take the
    last unit. Does not commit; the caller's transaction owns the write.
    """
    qty = int(qty)
    stock, threshold = read_stock(product_id)
    if stock is None:
        return Reservation(ok=True)

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock.isnot(None), Product.stock >= qty)
        .values(stock=Product.stock - qty)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount != 1:
        available, _ = read_stock(product_id)
        available = int(available or 0)
        return Reservation(ok=False, available=available, insufficient_by=max(0, qty - available))

    new_stock, threshold = read_stock(product_id)
    return Reservation(ok=True, new_stock=new_stock, available=new_stock,
                       low_stock=new_stock is not None and new_stock <= threshold)
