# marketplace/services/cart_service.py
from __future__ import annotations

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..model import CartLine, Product
from .inputs import parse_int


def _parse_qty(raw, allow_zero=False) -> int:
    try:
        qty = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("quantity must be an integer")
    if qty < (0 if allow_zero else 1):
        raise ValidationError("quantity must be >= 1")
    return qty


def _check_stock(product: Product, qty: int):
    if product.tracks_stock and qty > product.stock:
        raise InsufficientStockError(product.id, product.name, product.stock, qty)


def _get_line(user_id, line_id) -> CartLine:
    line = CartLine.query.filter_by(id=line_id, user_id=user_id, deleted=False).first()
    if line is None:
        raise NotFoundError("Cart line not found")
    return line


def list_lines(user_id) -> list[CartLine]:
    return (CartLine.query
            .filter_by(user_id=user_id, deleted=False)
            .order_by(CartLine.id.asc())
            .all())


def add_to_cart(user_id, product_id, quantity=1) -> CartLine:
    """Add a product, merging into the user's existing line for it."""
    qty = _parse_qty(quantity)
    product_id = parse_int(product_id, "product_id")
    product = db.session.get(Product, product_id) if product_id is not None else None
    if product is None or product.deleted:
        raise NotFoundError("Product not found")

    line = CartLine.query.filter_by(user_id=user_id, product_id=product.id, deleted=False).first()
    new_qty = qty + (line.quantity if line else 0)
    _check_stock(product, new_qty)

    if line is None:
        line = CartLine(user_id=user_id, product_id=product.id, store_id=product.store_id, quantity=new_qty)
        db.session.add(line)
    else:
        line.quantity = new_qty
    db.session.commit()
    return line


def update_quantity(user_id, line_id, quantity) -> CartLine | None:
    """Set a line's quantity; 0 removes the line."""
    qty = _parse_qty(quantity, allow_zero=True)
    line = _get_line(user_id, line_id)
    if qty == 0:
        line.deleted = True
        db.session.commit()
        return None
    _check_stock(line.product, qty)
    line.quantity = qty
    db.session.commit()
    return line


def remove_line(user_id, line_id):
    line = _get_line(user_id, line_id)
    line.deleted = True
    db.session.commit()
