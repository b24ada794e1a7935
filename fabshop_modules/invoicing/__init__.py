"""
Invoicing Module.

Aggregates a client's billable service orders into invoices with
at-most-once billing per order.
"""

from fabshop_modules.invoicing.calculator import InvoiceTotals, compute_invoice_totals
from fabshop_modules.invoicing.models import (
    AggregationStatus,
    BillableOrder,
    DroppedOrder,
    Invoice,
    InvoiceAggregationResult,
    InvoicedOrder,
    InvoiceExtra,
    InvoiceExtraInput,
    InvoiceStatus,
)
from fabshop_modules.invoicing.service import InvoiceAggregator

__all__ = [
    "AggregationStatus",
    "BillableOrder",
    "DroppedOrder",
    "Invoice",
    "InvoiceAggregationResult",
    "InvoiceAggregator",
    "InvoiceExtra",
    "InvoiceExtraInput",
    "InvoiceStatus",
    "InvoiceTotals",
    "InvoicedOrder",
    "compute_invoice_totals",
]
