"""
Invoice domain models.

An invoice freezes the value and worked hours of a client's billable orders
inside a service-start window, plus optional extra lines.  The frozen
per-order rows are the invoice's own record; later edits to the orders do
not change it.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from fabshop_kernel.exceptions import NoBillableOrdersError


class InvoiceStatus(str, Enum):
    ISSUED = "issued"
    VOID = "void"


class AggregationStatus(str, Enum):
    CREATED = "created"
    NO_BILLABLE_ORDERS = "no_billable_orders"


@dataclass(frozen=True)
class InvoiceExtraInput:
    """Caller-supplied extra line (travel, freight...)."""
    description: str
    value: Decimal | int | str


@dataclass(frozen=True)
class BillableOrder:
    """An order eligible for invoicing, with hours recomputed from logs."""
    order_id: UUID
    order_number: str
    service_description: str
    sale_value: Decimal
    hours: Decimal
    service_start_date: date


@dataclass(frozen=True)
class DroppedOrder:
    """An order excluded at commit-time re-validation."""
    order_id: UUID
    order_number: str | None
    reason: str


@dataclass(frozen=True)
class InvoicedOrder:
    """Frozen snapshot of one order on an invoice."""
    order_id: UUID
    order_number: str
    service_description: str
    sale_value: Decimal
    hours: Decimal
    items: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class InvoiceExtra:
    id: UUID
    description: str
    value: Decimal


@dataclass(frozen=True)
class Invoice:
    id: UUID
    invoice_number: str
    client_id: UUID
    client_name: str
    window_start: date
    window_end: date
    status: InvoiceStatus
    total_value: Decimal
    total_time: Decimal
    orders: tuple[InvoicedOrder, ...] = ()
    extras: tuple[InvoiceExtra, ...] = ()
    voided_at: datetime | None = None
    void_reason: str | None = None
    created_at: datetime | None = None

    @property
    def order_ids(self) -> tuple[UUID, ...]:
        return tuple(o.order_id for o in self.orders)

    @property
    def is_void(self) -> bool:
        return self.status == InvoiceStatus.VOID


@dataclass(frozen=True)
class InvoiceAggregationResult:
    """
    Outcome of ``InvoiceAggregator.create_invoice``.

    An empty selection is a normal outcome (``NO_BILLABLE_ORDERS``), not an
    exception; ``unwrap()`` converts it into ``NoBillableOrdersError`` for
    callers that want one.
    """
    status: AggregationStatus
    client_id: UUID
    window_start: date
    window_end: date
    invoice: Invoice | None = None
    dropped: tuple[DroppedOrder, ...] = ()

    @property
    def created(self) -> bool:
        return self.status == AggregationStatus.CREATED

    def unwrap(self) -> Invoice:
        if self.invoice is None:
            raise NoBillableOrdersError(
                str(self.client_id),
                self.window_start.isoformat(),
                self.window_end.isoformat(),
                dropped=self.dropped,
            )
        return self.invoice
