"""
Task and time log domain models.

Tasks break a service order into assignable pieces of work; time logs record
when a worker was on a task.  ``hours_worked`` is derived when a log closes
and is never accepted from input.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class TimeLog:
    id: UUID
    task_id: UUID
    worker_id: UUID
    start_time: datetime
    end_time: datetime | None
    hours_worked: Decimal | None
    description: str | None

    @property
    def is_open(self) -> bool:
        return self.end_time is None


@dataclass(frozen=True)
class Task:
    """A piece of work on a service order, assigned to one worker."""
    id: UUID
    order_id: UUID
    title: str
    description: str | None
    priority: TaskPriority
    estimated_hours: Decimal
    deadline: date | None
    assigned_worker_id: UUID
    status: TaskStatus
    status_details: str | None
    time_logs: tuple[TimeLog, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def worked_hours(self) -> Decimal:
        """Hours from closed logs only."""
        return sum(
            (log.hours_worked for log in self.time_logs if log.hours_worked is not None),
            Decimal("0"),
        )

    @property
    def has_open_log(self) -> bool:
        return any(log.is_open for log in self.time_logs)
