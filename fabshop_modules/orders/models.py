"""
Service Order Domain Models (``fabshop_modules.orders.models``).

Responsibility
--------------
Frozen value objects for service orders, their line items, hold records
("calls") and the results of conversion and status changes.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* ``OrderStatus`` is a closed enumeration; legal moves between its members
  live in ``workflows.ORDER_WORKFLOW``.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class OrderStatus(str, Enum):
    """Service order production states."""
    RECEIVED = "received"
    PENDING = "pending"
    PRODUCTION = "production"
    ON_HOLD = "on_hold"
    STOPPED = "stopped"
    QUALITY_CONTROL = "quality_control"
    READY_FOR_PICKUP = "ready_for_pickup"
    READY_FOR_SHIPMENT = "ready_for_shipment"
    AWAITING_INSTALLATION = "awaiting_installation"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    TO_INVOICE = "to_invoice"
    INVOICED = "invoiced"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

# States in which logged work moves the order automatically
WORK_SYNC_STATUSES = frozenset({
    OrderStatus.RECEIVED,
    OrderStatus.PENDING,
    OrderStatus.PRODUCTION,
    OrderStatus.STOPPED,
})


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class OrderItem:
    """A line item copied from a budget or added to the order directly."""
    id: UUID
    order_id: UUID
    position: int
    service_name: str
    description: str | None
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class ServiceOrder:
    """A unit of billable work tracked through production states."""
    id: UUID
    order_number: str
    budget_id: UUID | None
    client_id: UUID | None
    client_name: str
    client_contact: str | None
    client_address: str | None
    service_description: str
    sale_value: Decimal
    itemized: bool  # items are the billing source of truth
    status: OrderStatus
    urgency: Urgency
    assigned_worker_id: UUID | None
    deadline: date | None
    opening_date: date
    service_start_date: date
    invoice_id: UUID | None
    items: tuple[OrderItem, ...] = ()
    items_pending: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class HoldCall:
    """Audit record justifying an on_hold transition."""
    id: UUID
    order_id: UUID
    order_number: str | None
    reason: str
    created_by_id: UUID
    created_at: datetime | None
    resolved: bool
    resolved_by_id: UUID | None
    resolved_at: datetime | None


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of converting a budget into a service order."""
    order: ServiceOrder
    budget_id: UUID
    budget_number: str
    base_number: str
    allocation_attempts: int
    migrated_items: int
    items_pending: bool = False

    @property
    def order_number(self) -> str:
        return self.order.order_number


@dataclass(frozen=True)
class StatusChangeResult:
    """Outcome of a status change.  ``changed`` is False for no-op requests."""
    order: ServiceOrder
    previous_status: OrderStatus
    changed: bool
    call: HoldCall | None = None
