# marketplace/services/inputs.py
"""Parsing of client-supplied values; anything malformed is a ValidationError."""
from __future__ import annotations

from decimal import Decimal

from ..errors import ValidationError
from ..utils.money import D


def parse_amount(raw, field: str, required: bool = False) -> Decimal | None:
    if raw is None or raw == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(raw, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        value = D(raw)
    except ArithmeticError:
        raise ValidationError(f"{field} must be a number")
    if not value.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return value


def parse_int(raw, field: str, required: bool = False) -> int | None:
    if raw is None or raw == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(raw, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def parse_int_list(raw, field: str) -> list[int]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise ValidationError(f"{field} must be a list of integers")
    return [parse_int(x, field, required=True) for x in raw]
