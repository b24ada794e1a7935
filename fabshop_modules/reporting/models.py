"""
Reporting Projection Models (``fabshop_modules.reporting.models``).

Responsibility
--------------
Frozen rows returned by ``ReportingSelector``.  Every figure is recomputed
from orders, tasks and time logs when the view is requested.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* Hours and money are ``Decimal``, never ``float``.
* Open time logs never contribute to hour figures.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class StatusCount:
    status: str
    count: int


@dataclass(frozen=True)
class StatusHistogram:
    """Order count per status; every status is present, zero-filled."""
    counts: tuple[StatusCount, ...]
    date_from: date | None = None
    date_to: date | None = None

    @property
    def total(self) -> int:
        return sum(c.count for c in self.counts)

    def as_dict(self) -> dict[str, int]:
        return {c.status: c.count for c in self.counts}


@dataclass(frozen=True)
class OpenOrderRow:
    order_id: UUID
    order_number: str
    client_name: str
    status: str
    urgency: str
    assigned_worker_name: str | None
    deadline: date | None
    sale_value: Decimal
    created_at: datetime


@dataclass(frozen=True)
class OpenTaskRow:
    task_id: UUID
    title: str
    status: str
    priority: str
    order_id: UUID
    order_number: str
    worker_id: UUID
    worker_name: str | None
    deadline: date | None
    estimated_hours: Decimal


@dataclass(frozen=True)
class WorkerProductivity:
    worker_id: UUID
    worker_name: str
    total_tasks: int
    completed_tasks: int
    total_hours: Decimal
    average_hours_per_task: Decimal
    completion_rate: Decimal  # percent, 2 places


@dataclass(frozen=True)
class TimeEntryRow:
    time_log_id: UUID
    worker_id: UUID
    worker_name: str | None
    task_id: UUID
    task_title: str
    order_id: UUID
    order_number: str
    start_time: datetime
    end_time: datetime
    hours_worked: Decimal


@dataclass(frozen=True)
class ExportItem:
    service_name: str
    description: str | None
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class OrderExportRow:
    """Fully resolved order for export collaborators.  Data only."""
    order_id: UUID
    order_number: str
    client_name: str
    client_contact: str | None
    client_address: str | None
    service_description: str
    status: str
    urgency: str
    assigned_worker_name: str | None
    opening_date: date
    service_start_date: date
    deadline: date | None
    sale_value: Decimal
    items: tuple[ExportItem, ...]
    items_total: Decimal
    worked_hours: Decimal
