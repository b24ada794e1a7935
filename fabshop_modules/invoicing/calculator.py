"""
Invoice Totals Calculator.

Pure functions with deterministic behavior. No I/O.

Used both when an invoice is created and when its stored totals are
verified against the frozen snapshot, so the two can never disagree about
rounding.

Usage:
    from fabshop_modules.invoicing.calculator import compute_invoice_totals

    totals = compute_invoice_totals(
        order_values=[Decimal("195.00"), Decimal("80.00")],
        order_hours=[Decimal("3.5"), Decimal("1.0")],
        extras=[Decimal("50.00")],
    )
    totals.total_value   # Decimal("325.00")
    totals.total_time    # Decimal("4.5000")
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from fabshop_kernel.db.types import round_hours, round_money, to_decimal
from fabshop_kernel.exceptions import ValidationError


@dataclass(frozen=True)
class InvoiceTotals:
    orders_value: Decimal
    extras_value: Decimal
    total_value: Decimal
    total_time: Decimal


def validate_extra_value(value) -> Decimal:
    amount = round_money(to_decimal(value, "extra.value"))
    if amount < 0:
        raise ValidationError("extra.value", f"must be >= 0, got {amount}")
    return amount


def compute_invoice_totals(
    order_values: Iterable[Decimal],
    order_hours: Iterable[Decimal],
    extras: Iterable[Decimal] = (),
) -> InvoiceTotals:
    """
    total_value = sum(order sale values) + sum(extra values)
    total_time  = sum(order hours)

    Money is rounded to 2 places, hours to 4.
    """
    orders_value = round_money(sum((to_decimal(v) for v in order_values), Decimal("0")))
    extras_value = round_money(sum((to_decimal(v) for v in extras), Decimal("0")))
    total_time = round_hours(sum((to_decimal(h) for h in order_hours), Decimal("0")))
    return InvoiceTotals(
        orders_value=orders_value,
        extras_value=extras_value,
        total_value=round_money(orders_value + extras_value),
        total_time=total_time,
    )
