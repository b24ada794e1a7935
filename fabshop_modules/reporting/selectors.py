"""
Reporting Projection (``fabshop_modules.reporting.selectors``).

Read-only views over orders, tasks and time logs: status histogram, open
orders and tasks, worker productivity, time entries and the resolved order
rows consumed by export collaborators.

Nothing here is cached: every call recomputes from current rows, and open
time logs never count towards hours.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from fabshop_config.schema import ReportingConfig
from fabshop_kernel.db.types import round_hours, round_money, to_decimal
from fabshop_kernel.domain.clock import day_bounds
from fabshop_kernel.domain.workflow import state_key
from fabshop_kernel.logging_config import get_logger
from fabshop_kernel.models.party import Party, PartyType
from fabshop_kernel.selectors.base import BaseSelector
from fabshop_modules.orders.models import OrderStatus
from fabshop_modules.orders.orm import ServiceOrderModel
from fabshop_modules.orders.service import parse_order_status
from fabshop_modules.reporting.models import (
    ExportItem,
    OpenOrderRow,
    OpenTaskRow,
    OrderExportRow,
    StatusCount,
    StatusHistogram,
    TimeEntryRow,
    WorkerProductivity,
)
from fabshop_modules.tasks.models import TaskStatus
from fabshop_modules.tasks.orm import TaskModel, TimeLogModel
from fabshop_modules.tasks.service import TaskService

logger = get_logger("modules.reporting.selectors")

_ZERO = Decimal("0")


def _bounded(stmt, column, date_from: date | None, date_to: date | None):
    start, end = day_bounds(date_from, date_to)
    if start is not None:
        stmt = stmt.where(column >= start)
    if end is not None:
        stmt = stmt.where(column < end)
    return stmt


class ReportingSelector(BaseSelector):
    """Read-side projection.  Never flushes or commits."""

    def __init__(self, session: Session, config: ReportingConfig | None = None):
        super().__init__(session)
        self.config = config or ReportingConfig()
        self._tasks = TaskService(session)

    def _worker_names(self, worker_ids) -> dict[UUID, str]:
        ids = {w for w in worker_ids if w is not None}
        if not ids:
            return {}
        rows = self.session.execute(select(Party.id, Party.name).where(Party.id.in_(ids)))
        return {row.id: row.name for row in rows}

    # =========================================================================
    # Orders
    # =========================================================================

    def status_histogram(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> StatusHistogram:
        """Count orders per status, bounded on creation date (inclusive)."""
        stmt = select(ServiceOrderModel.status, func.count(ServiceOrderModel.id)).group_by(
            ServiceOrderModel.status
        )
        stmt = _bounded(stmt, ServiceOrderModel.created_at, date_from, date_to)
        found = {status: count for status, count in self.session.execute(stmt).all()}
        counts = tuple(
            StatusCount(status=s.value, count=found.get(s.value, 0)) for s in OrderStatus
        )
        logger.debug(
            "status_histogram_computed",
            extra={"total": sum(c.count for c in counts)},
        )
        return StatusHistogram(counts=counts, date_from=date_from, date_to=date_to)

    def open_orders(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[OpenOrderRow]:
        """Orders whose status is not in the configured closed set, oldest first."""
        excluded = [state_key(s) for s in self.config.open_order_excluded]
        stmt = select(ServiceOrderModel).where(ServiceOrderModel.status.not_in(excluded))
        stmt = _bounded(stmt, ServiceOrderModel.created_at, date_from, date_to)
        stmt = stmt.order_by(ServiceOrderModel.created_at, ServiceOrderModel.order_number)
        orders = self.session.execute(stmt).scalars().all()
        names = self._worker_names(o.assigned_worker_id for o in orders)
        return [
            OpenOrderRow(
                order_id=o.id,
                order_number=o.order_number,
                client_name=o.client_name,
                status=o.status,
                urgency=o.urgency,
                assigned_worker_name=names.get(o.assigned_worker_id),
                deadline=o.deadline,
                sale_value=o.sale_value,
                created_at=o.created_at,
            )
            for o in orders
        ]

    # =========================================================================
    # Tasks and time
    # =========================================================================

    def open_tasks(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
        worker_id: UUID | None = None,
    ) -> list[OpenTaskRow]:
        excluded = [state_key(s) for s in self.config.open_task_excluded]
        stmt = (
            select(TaskModel, ServiceOrderModel.order_number)
            .join(ServiceOrderModel, ServiceOrderModel.id == TaskModel.order_id)
            .where(TaskModel.status.not_in(excluded))
        )
        if worker_id is not None:
            stmt = stmt.where(TaskModel.assigned_worker_id == worker_id)
        stmt = _bounded(stmt, TaskModel.created_at, date_from, date_to)
        stmt = stmt.order_by(TaskModel.deadline.is_(None), TaskModel.deadline, TaskModel.created_at)
        rows = self.session.execute(stmt).all()
        names = self._worker_names(task.assigned_worker_id for task, _ in rows)
        return [
            OpenTaskRow(
                task_id=task.id,
                title=task.title,
                status=task.status,
                priority=task.priority,
                order_id=task.order_id,
                order_number=order_number,
                worker_id=task.assigned_worker_id,
                worker_name=names.get(task.assigned_worker_id),
                deadline=task.deadline,
                estimated_hours=task.estimated_hours,
            )
            for task, order_number in rows
        ]

    def worker_productivity(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[WorkerProductivity]:
        """
        Per worker: task counts (tasks created in the window), hours of
        closed logs started in the window, average hours per task and
        completion rate (percent).  Workers with neither tasks nor hours are
        omitted.
        """
        task_stmt = select(
            TaskModel.assigned_worker_id, TaskModel.status, func.count(TaskModel.id)
        ).group_by(TaskModel.assigned_worker_id, TaskModel.status)
        task_stmt = _bounded(task_stmt, TaskModel.created_at, date_from, date_to)

        hour_stmt = (
            select(TimeLogModel.worker_id, func.sum(TimeLogModel.hours_worked))
            .where(TimeLogModel.end_time.is_not(None))
            .group_by(TimeLogModel.worker_id)
        )
        hour_stmt = _bounded(hour_stmt, TimeLogModel.start_time, date_from, date_to)

        totals: dict[UUID, int] = defaultdict(int)
        completed: dict[UUID, int] = defaultdict(int)
        for worker_id, status, count in self.session.execute(task_stmt).all():
            totals[worker_id] += count
            if status == TaskStatus.COMPLETED.value:
                completed[worker_id] += count
        hours = {
            worker_id: round_hours(to_decimal(total or 0))
            for worker_id, total in self.session.execute(hour_stmt).all()
        }

        worker_ids = set(totals) | set(hours)
        if not worker_ids:
            return []
        workers = self.session.execute(
            select(Party.id, Party.name)
            .where(Party.id.in_(worker_ids), Party.party_type == PartyType.WORKER.value)
            .order_by(Party.name)
        ).all()

        result = []
        for worker_id, name in workers:
            total_tasks = totals.get(worker_id, 0)
            done = completed.get(worker_id, 0)
            worked = hours.get(worker_id, _ZERO)
            result.append(
                WorkerProductivity(
                    worker_id=worker_id,
                    worker_name=name,
                    total_tasks=total_tasks,
                    completed_tasks=done,
                    total_hours=worked,
                    average_hours_per_task=(
                        round_hours(worked / total_tasks) if total_tasks else _ZERO
                    ),
                    completion_rate=(
                        round_money(Decimal(done) * 100 / total_tasks) if total_tasks else _ZERO
                    ),
                )
            )
        return result

    def time_entries(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
        worker_id: UUID | None = None,
    ) -> list[TimeEntryRow]:
        """Closed time logs started in the window, oldest first."""
        stmt = (
            select(TimeLogModel, TaskModel.title, TaskModel.order_id, ServiceOrderModel.order_number)
            .join(TaskModel, TaskModel.id == TimeLogModel.task_id)
            .join(ServiceOrderModel, ServiceOrderModel.id == TaskModel.order_id)
            .where(TimeLogModel.end_time.is_not(None))
        )
        if worker_id is not None:
            stmt = stmt.where(TimeLogModel.worker_id == worker_id)
        stmt = _bounded(stmt, TimeLogModel.start_time, date_from, date_to)
        stmt = stmt.order_by(TimeLogModel.start_time)
        rows = self.session.execute(stmt).all()
        names = self._worker_names(log.worker_id for log, *_ in rows)
        return [
            TimeEntryRow(
                time_log_id=log.id,
                worker_id=log.worker_id,
                worker_name=names.get(log.worker_id),
                task_id=log.task_id,
                task_title=title,
                order_id=order_id,
                order_number=order_number,
                start_time=log.start_time,
                end_time=log.end_time,
                hours_worked=log.hours_worked,
            )
            for log, title, order_id, order_number in rows
        ]

    # =========================================================================
    # Export
    # =========================================================================

    def order_export_view(self, status: OrderStatus | str | None = None) -> list[OrderExportRow]:
        """Resolved order rows, newest first, for CSV/PDF/XLSX collaborators."""
        stmt = select(ServiceOrderModel).options(selectinload(ServiceOrderModel.items))
        if status is not None:
            stmt = stmt.where(ServiceOrderModel.status == parse_order_status(status).value)
        stmt = stmt.order_by(ServiceOrderModel.created_at.desc(), ServiceOrderModel.order_number.desc())
        orders = self.session.execute(stmt).scalars().all()
        names = self._worker_names(o.assigned_worker_id for o in orders)
        hours = self._tasks.hours_by_order(o.id for o in orders)

        rows = []
        for o in orders:
            items = tuple(
                ExportItem(
                    service_name=i.service_name,
                    description=i.description,
                    quantity=i.quantity,
                    unit_price=i.unit_price,
                    total_price=i.total_price,
                )
                for i in o.items
            )
            rows.append(
                OrderExportRow(
                    order_id=o.id,
                    order_number=o.order_number,
                    client_name=o.client_name,
                    client_contact=o.client_contact,
                    client_address=o.client_address,
                    service_description=o.service_description,
                    status=o.status,
                    urgency=o.urgency,
                    assigned_worker_name=names.get(o.assigned_worker_id),
                    opening_date=o.opening_date,
                    service_start_date=o.service_start_date,
                    deadline=o.deadline,
                    sale_value=o.sale_value,
                    items=items,
                    items_total=round_money(sum((i.total_price for i in items), _ZERO)),
                    worked_hours=hours.get(o.id, _ZERO),
                )
            )
        return rows
