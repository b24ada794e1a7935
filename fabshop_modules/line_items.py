"""
Line item arithmetic shared by budgets and service orders.

Budget items and order items have the same shape: service name, optional
description, quantity, unit price and a derived total.  The total is always
``round_money(quantity * unit_price)``; it is never accepted from input.

Pure functions, zero I/O.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from fabshop_kernel.db.types import round_money, to_decimal
from fabshop_kernel.exceptions import ValidationError

MIN_QUANTITY = Decimal("1")


@dataclass(frozen=True)
class LineItemInput:
    """Caller-supplied line item.  Totals are derived, not passed."""
    service_name: str
    quantity: Decimal | int | str
    unit_price: Decimal | int | str
    description: str | None = None


@dataclass(frozen=True)
class ValidLineItem:
    """A validated line item with its derived total."""
    service_name: str
    description: str | None
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal


def line_total(quantity: Decimal, unit_price: Decimal) -> Decimal:
    return round_money(quantity * unit_price)


def validate_quantity(value: Any) -> Decimal:
    quantity = to_decimal(value, "quantity")
    if quantity < MIN_QUANTITY:
        raise ValidationError("quantity", f"must be >= 1, got {quantity}")
    return quantity


def validate_unit_price(value: Any) -> Decimal:
    unit_price = round_money(to_decimal(value, "unit_price"))
    if unit_price < 0:
        raise ValidationError("unit_price", f"must be >= 0, got {unit_price}")
    return unit_price


def validate_service_name(value: str | None) -> str:
    if value is None or not value.strip():
        raise ValidationError("service_name", "must not be blank")
    return value.strip()


def validate_line(item: LineItemInput) -> ValidLineItem:
    """
    Validate one line item and derive its total.

    Raises:
        ValidationError: Blank name, quantity < 1, negative unit price or a
            non-numeric value.
    """
    name = validate_service_name(item.service_name)
    quantity = validate_quantity(item.quantity)
    unit_price = validate_unit_price(item.unit_price)
    description = item.description.strip() if item.description else None
    return ValidLineItem(
        service_name=name,
        description=description or None,
        quantity=quantity,
        unit_price=unit_price,
        total_price=line_total(quantity, unit_price),
    )


def items_total(totals: Iterable[Decimal]) -> Decimal:
    return round_money(sum(totals, Decimal("0")))


def content_key(item) -> tuple:
    """
    Identity of a line item by content, for idempotent copying.

    Works on any object with the line item attributes (ORM rows, DTOs,
    ValidLineItem).  Numbers are normalized so 2 and 2.000000000 match.
    """
    return (
        item.service_name,
        item.description or None,
        to_decimal(item.quantity).normalize(),
        round_money(to_decimal(item.unit_price)),
        round_money(to_decimal(item.total_price)),
    )


def missing_items(source: Iterable, present: Iterable) -> list:
    """
    Items of ``source`` not yet represented in ``present``, compared as a
    multiset of content keys.  Source order is preserved.
    """
    remaining = Counter(content_key(item) for item in present)
    missing = []
    for item in source:
        key = content_key(item)
        if remaining[key] > 0:
            remaining[key] -= 1
        else:
            missing.append(item)
    return missing
