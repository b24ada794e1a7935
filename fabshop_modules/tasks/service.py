"""
Task & Time Tracking (``fabshop_modules.tasks.service``).

Responsibility
--------------
Task CRUD against existing service orders, worker assignment and time log
accumulation.

Architecture position
---------------------
**Modules layer**, leaf: never imports the orders service.  The owning order
is checked through a lightweight table reference.

Invariants enforced
-------------------
* ``hours_worked`` is derived when a log closes; open logs contribute zero
  to every aggregate.
* A log never ends before it starts.
* At most one open log per (task, worker).
* A task with closed time logs cannot be deleted.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import column, func, select, table
from sqlalchemy.orm import Session, selectinload

from fabshop_kernel.db.base import UUIDString
from fabshop_kernel.db.types import hours_between, round_hours, to_decimal
from fabshop_kernel.domain.clock import Clock
from fabshop_kernel.domain.notifications import ChangeAction, ChangedEntity
from fabshop_kernel.domain.workflow import state_key
from fabshop_kernel.exceptions import (
    InvalidStatusTransitionError,
    InvalidTimeRangeError,
    OpenTimeLogExistsError,
    OrderNotFoundError,
    TaskHasTimeLogsError,
    TaskNotFoundError,
    TimeLogAlreadyClosedError,
    TimeLogNotFoundError,
    ValidationError,
)
from fabshop_kernel.logging_config import get_logger
from fabshop_kernel.models.party import PartyType
from fabshop_kernel.services.base import BaseService
from fabshop_kernel.services.party_service import PartyService
from fabshop_modules.tasks.models import Task, TaskPriority, TaskStatus, TimeLog
from fabshop_modules.tasks.orm import TaskModel, TimeLogModel
from fabshop_modules.tasks.workflows import TASK_WORKFLOW

logger = get_logger("modules.tasks.service")

_ENTITY = "task"

_orders = table("service_orders", column("id", UUIDString()))


def _parse(enum_cls, value, field: str):
    try:
        return enum_cls(state_key(value))
    except ValueError as exc:
        raise ValidationError(field, f"unknown {field} {value!r}") from exc


def _estimate(value) -> Decimal:
    hours = round_hours(to_decimal(value, "estimated_hours"))
    if hours < 0:
        raise ValidationError("estimated_hours", f"must be >= 0, got {hours}")
    return hours


def _aware(value: datetime, field: str) -> datetime:
    if value.tzinfo is None:
        raise ValidationError(field, "must be timezone-aware")
    return value


def _title(value: str | None) -> str:
    if value is None or not value.strip():
        raise ValidationError("title", "must not be blank")
    return value.strip()


class TaskService(BaseService[TaskModel]):
    """Tasks and their time logs.  Returns ``Task`` / ``TimeLog`` DTOs."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._parties = PartyService(session, self.clock)

    # =========================================================================
    # Lookups
    # =========================================================================

    def _get(self, task_id: UUID, for_update: bool = False) -> TaskModel:
        stmt = (
            select(TaskModel)
            .where(TaskModel.id == task_id)
            .options(selectinload(TaskModel.time_logs))
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        task = self.session.execute(stmt).scalar_one_or_none()
        if task is None:
            raise TaskNotFoundError(str(task_id))
        return task

    def _get_log(self, log_id: UUID) -> TimeLogModel:
        log = self.session.get(TimeLogModel, log_id)
        if log is None:
            raise TimeLogNotFoundError(str(log_id))
        return log

    def _require_order(self, order_id: UUID) -> None:
        found = self.session.execute(
            select(_orders.c.id).where(_orders.c.id == order_id)
        ).first()
        if found is None:
            raise OrderNotFoundError(str(order_id))

    def _require_worker(self, worker_id: UUID) -> None:
        self._parties.require(worker_id, PartyType.WORKER)

    def get_task(self, task_id: UUID) -> Task:
        return self._get(task_id).to_dto()

    def get_log(self, log_id: UUID) -> TimeLog:
        return self._get_log(log_id).to_dto()

    def order_id_of_task(self, task_id: UUID) -> UUID:
        order_id = self.session.execute(
            select(TaskModel.order_id).where(TaskModel.id == task_id)
        ).scalar_one_or_none()
        if order_id is None:
            raise TaskNotFoundError(str(task_id))
        return order_id

    def list_tasks(
        self,
        order_id: UUID | None = None,
        assigned_worker_id: UUID | None = None,
        status: TaskStatus | str | None = None,
    ) -> list[Task]:
        stmt = select(TaskModel).options(selectinload(TaskModel.time_logs))
        if order_id is not None:
            stmt = stmt.where(TaskModel.order_id == order_id)
        if assigned_worker_id is not None:
            stmt = stmt.where(TaskModel.assigned_worker_id == assigned_worker_id)
        if status is not None:
            stmt = stmt.where(TaskModel.status == _parse(TaskStatus, status, "status").value)
        stmt = stmt.order_by(TaskModel.created_at, TaskModel.title)
        return [t.to_dto() for t in self.session.execute(stmt).scalars()]

    def open_logs(self, worker_id: UUID | None = None) -> list[TimeLog]:
        """Running timers, oldest first."""
        stmt = select(TimeLogModel).where(TimeLogModel.end_time.is_(None))
        if worker_id is not None:
            stmt = stmt.where(TimeLogModel.worker_id == worker_id)
        stmt = stmt.order_by(TimeLogModel.start_time)
        return [log.to_dto() for log in self.session.execute(stmt).scalars()]

    def worked_hours(
        self,
        order_id: UUID | None = None,
        task_id: UUID | None = None,
    ) -> Decimal:
        """Sum of hours of closed logs, optionally narrowed to an order or task."""
        stmt = (
            select(func.coalesce(func.sum(TimeLogModel.hours_worked), 0))
            .select_from(TimeLogModel)
            .where(TimeLogModel.end_time.is_not(None))
        )
        if task_id is not None:
            stmt = stmt.where(TimeLogModel.task_id == task_id)
        if order_id is not None:
            stmt = stmt.join(TaskModel, TaskModel.id == TimeLogModel.task_id).where(
                TaskModel.order_id == order_id
            )
        return round_hours(to_decimal(self.session.execute(stmt).scalar_one()))

    def hours_by_order(self, order_ids) -> dict[UUID, Decimal]:
        """Closed-log hours per order in one grouped query; missing ids map to 0."""
        ids = list(dict.fromkeys(order_ids))
        if not ids:
            return {}
        rows = self.session.execute(
            select(TaskModel.order_id, func.sum(TimeLogModel.hours_worked))
            .join(TimeLogModel, TimeLogModel.task_id == TaskModel.id)
            .where(TaskModel.order_id.in_(ids), TimeLogModel.end_time.is_not(None))
            .group_by(TaskModel.order_id)
        ).all()
        hours = {order_id: Decimal("0") for order_id in ids}
        for order_id, total in rows:
            hours[order_id] = round_hours(to_decimal(total or 0))
        return hours

    # =========================================================================
    # Tasks
    # =========================================================================

    def create_task(
        self,
        order_id: UUID,
        title: str,
        assigned_worker_id: UUID,
        actor_id: UUID,
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        estimated_hours: Decimal | int | str = 0,
        description: str | None = None,
        deadline: date | None = None,
    ) -> Task:
        """
        Raises:
            ValidationError: Blank title, unknown priority, negative estimate.
            OrderNotFoundError: Unknown order.
            PartyNotFoundError: Unknown worker.
        """
        clean_title = _title(title)
        level = _parse(TaskPriority, priority, "priority")
        estimate = _estimate(estimated_hours)
        self._require_order(order_id)
        self._require_worker(assigned_worker_id)

        task = TaskModel(
            order_id=order_id,
            title=clean_title,
            description=description.strip() if description else None,
            priority=level.value,
            estimated_hours=estimate,
            deadline=deadline,
            assigned_worker_id=assigned_worker_id,
            status=TaskStatus.PENDING.value,
            created_at=self._now(),
            created_by_id=actor_id,
        )
        self.session.add(task)
        self.session.flush()
        self._changed(ChangedEntity.TASK, task.id, ChangeAction.CREATED)
        logger.info(
            "task_created",
            extra={
                "task_id": str(task.id),
                "order_id": str(order_id),
                "worker_id": str(assigned_worker_id),
            },
        )
        return task.to_dto()

    def update_task(
        self,
        task_id: UUID,
        actor_id: UUID,
        title: str | None = None,
        description: str | None = None,
        priority: TaskPriority | str | None = None,
        estimated_hours: Decimal | int | str | None = None,
        deadline: date | None = None,
        status_details: str | None = None,
    ) -> Task:
        task = self._get(task_id)
        if title is not None:
            task.title = _title(title)
        if description is not None:
            task.description = description.strip() or None
        if priority is not None:
            task.priority = _parse(TaskPriority, priority, "priority").value
        if estimated_hours is not None:
            task.estimated_hours = _estimate(estimated_hours)
        if deadline is not None:
            task.deadline = deadline
        if status_details is not None:
            task.status_details = status_details.strip() or None
        task.updated_by_id = actor_id
        self._flush(_ENTITY, task.id)
        self._changed(ChangedEntity.TASK, task.id)
        return task.to_dto()

    def change_task_status(
        self,
        task_id: UUID,
        to_status: TaskStatus | str,
        actor_id: UUID,
        status_details: str | None = None,
    ) -> Task:
        target = _parse(TaskStatus, to_status, "status")
        task = self._get(task_id, for_update=True)
        if status_details is not None:
            task.status_details = status_details.strip() or None
        if task.status != target.value:
            if TASK_WORKFLOW.find(task.status, target) is None:
                raise InvalidStatusTransitionError(
                    _ENTITY, str(task.id), task.status, target.value
                )
            logger.info(
                "task_status_changed",
                extra={
                    "task_id": str(task.id),
                    "from_status": task.status,
                    "to_status": target.value,
                },
            )
            task.status = target.value
        task.updated_by_id = actor_id
        self._flush(_ENTITY, task.id)
        self._changed(ChangedEntity.TASK, task.id)
        return task.to_dto()

    def reassign_task(self, task_id: UUID, worker_id: UUID, actor_id: UUID) -> Task:
        task = self._get(task_id)
        self._require_worker(worker_id)
        task.assigned_worker_id = worker_id
        task.updated_by_id = actor_id
        self._flush(_ENTITY, task.id)
        self._changed(ChangedEntity.TASK, task.id)
        return task.to_dto()

    def delete_task(self, task_id: UUID, actor_id: UUID) -> UUID:
        """
        Delete a task without closed time logs.  Returns the owning order id.

        Raises:
            TaskHasTimeLogsError: Closed logs exist; they are billed hours.
        """
        task = self._get(task_id, for_update=True)
        closed = [log for log in task.time_logs if log.end_time is not None]
        if closed:
            raise TaskHasTimeLogsError(str(task.id), len(closed))
        order_id = task.order_id
        self.session.delete(task)
        self._flush(_ENTITY, task_id)
        self._changed(ChangedEntity.TASK, task_id, ChangeAction.DELETED)
        logger.info(
            "task_deleted",
            extra={"task_id": str(task_id), "order_id": str(order_id), "actor_id": str(actor_id)},
        )
        return order_id

    # =========================================================================
    # Time logs
    # =========================================================================

    def _open_log_for(self, task_id: UUID, worker_id: UUID) -> TimeLogModel | None:
        return self.session.execute(
            select(TimeLogModel).where(
                TimeLogModel.task_id == task_id,
                TimeLogModel.worker_id == worker_id,
                TimeLogModel.end_time.is_(None),
            )
        ).scalars().first()

    def start_log(
        self,
        task_id: UUID,
        worker_id: UUID,
        actor_id: UUID,
        start_time: datetime | None = None,
        description: str | None = None,
    ) -> TimeLog:
        """
        Open a time log.  A ``pending`` task moves to ``in_progress``.

        Raises:
            OpenTimeLogExistsError: The worker already has an open log on it.
        """
        task = self._get(task_id, for_update=True)
        self._require_worker(worker_id)
        running = self._open_log_for(task.id, worker_id)
        if running is not None:
            raise OpenTimeLogExistsError(str(task.id), str(worker_id), str(running.id))

        log = TimeLogModel(
            task_id=task.id,
            worker_id=worker_id,
            start_time=_aware(start_time, "start_time") if start_time else self._now(),
            description=description.strip() if description else None,
            created_at=self._now(),
            created_by_id=actor_id,
        )
        task.time_logs.append(log)
        if task.status == TaskStatus.PENDING.value:
            task.status = TaskStatus.IN_PROGRESS.value
            task.updated_by_id = actor_id
        self._flush(_ENTITY, task.id)
        self._changed(ChangedEntity.TIME_LOG, log.id, ChangeAction.CREATED)
        self._changed(ChangedEntity.TASK, task.id)
        logger.info(
            "time_log_started",
            extra={"time_log_id": str(log.id), "task_id": str(task.id), "worker_id": str(worker_id)},
        )
        return log.to_dto()

    def close_log(
        self,
        log_id: UUID,
        actor_id: UUID,
        end_time: datetime | None = None,
        description: str | None = None,
    ) -> TimeLog:
        """
        Close an open log and derive its hours.

        Raises:
            TimeLogAlreadyClosedError: The log has an end time.
            InvalidTimeRangeError: ``end_time`` is before the start.
        """
        log = self._get_log(log_id)
        if log.end_time is not None:
            raise TimeLogAlreadyClosedError(str(log.id))
        end = _aware(end_time, "end_time") if end_time else self._now()
        if end < log.start_time:
            raise InvalidTimeRangeError(str(log.id), "end_time is before start_time")

        log.end_time = end
        log.hours_worked = hours_between(log.start_time, end)
        if description is not None:
            log.description = description.strip() or None
        log.updated_by_id = actor_id
        self.session.flush()
        self._changed(ChangedEntity.TIME_LOG, log.id)
        logger.info(
            "time_log_closed",
            extra={
                "time_log_id": str(log.id),
                "task_id": str(log.task_id),
                "hours_worked": str(log.hours_worked),
            },
        )
        return log.to_dto()

    def record_log(
        self,
        task_id: UUID,
        worker_id: UUID,
        start_time: datetime,
        end_time: datetime,
        actor_id: UUID,
        description: str | None = None,
    ) -> TimeLog:
        """Record a finished interval in one step."""
        _aware(start_time, "start_time")
        _aware(end_time, "end_time")
        if end_time < start_time:
            raise InvalidTimeRangeError(None, "end_time is before start_time")
        task = self._get(task_id)
        self._require_worker(worker_id)
        log = TimeLogModel(
            task_id=task.id,
            worker_id=worker_id,
            start_time=start_time,
            end_time=end_time,
            hours_worked=hours_between(start_time, end_time),
            description=description.strip() if description else None,
            created_at=self._now(),
            created_by_id=actor_id,
        )
        task.time_logs.append(log)
        self.session.flush()
        self._changed(ChangedEntity.TIME_LOG, log.id, ChangeAction.CREATED)
        return log.to_dto()

    def remove_log(self, log_id: UUID, actor_id: UUID) -> UUID:
        """
        Delete a time log.  Returns the owning task id.

        Raises:
            InvalidTimeRangeError: The log is the task's last open log; a
                running interval must be closed, not discarded.
        """
        log = self._get_log(log_id)
        if log.end_time is None:
            other_open = self.session.execute(
                select(func.count(TimeLogModel.id)).where(
                    TimeLogModel.task_id == log.task_id,
                    TimeLogModel.end_time.is_(None),
                    TimeLogModel.id != log.id,
                )
            ).scalar_one()
            if other_open == 0:
                raise InvalidTimeRangeError(
                    str(log.id), "the last open log of a task must be closed, not removed"
                )
        task_id = log.task_id
        log.task.time_logs.remove(log)
        self.session.flush()
        self._changed(ChangedEntity.TIME_LOG, log_id, ChangeAction.DELETED)
        logger.info(
            "time_log_removed",
            extra={"time_log_id": str(log_id), "task_id": str(task_id), "actor_id": str(actor_id)},
        )
        return task_id
