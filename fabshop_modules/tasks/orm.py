"""
Task ORM Models (``fabshop_modules.tasks.orm``).

Tasks belong to a service order; time logs belong to a task.  Deleting a
task removes its logs (the service refuses when closed logs exist).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fabshop_kernel.db.base import TrackedBase
from fabshop_modules.tasks.models import Task, TaskPriority, TaskStatus, TimeLog


class TaskModel(TrackedBase):
    """
    ORM model for service order tasks.

    Guarantees:
        - version is managed by SQLAlchemy (optimistic locking).
    """

    __tablename__ = "service_order_tasks"

    __table_args__ = (
        Index("idx_tasks_order", "order_id"),
        Index("idx_tasks_worker", "assigned_worker_id"),
        Index("idx_tasks_status", "status"),
    )

    order_id: Mapped[UUID] = mapped_column(
        ForeignKey("service_orders.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default=TaskPriority.MEDIUM.value
    )
    estimated_hours: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    deadline: Mapped[date | None] = mapped_column(nullable=True)
    assigned_worker_id: Mapped[UUID] = mapped_column(
        ForeignKey("parties.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TaskStatus.PENDING.value
    )
    status_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    time_logs: Mapped[list["TimeLogModel"]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TimeLogModel.start_time",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> Task:
        return Task(
            id=self.id,
            order_id=self.order_id,
            title=self.title,
            description=self.description,
            priority=TaskPriority(self.priority),
            estimated_hours=self.estimated_hours,
            deadline=self.deadline,
            assigned_worker_id=self.assigned_worker_id,
            status=TaskStatus(self.status),
            status_details=self.status_details,
            time_logs=tuple(log.to_dto() for log in self.time_logs),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class TimeLogModel(TrackedBase):
    """ORM model for time logs.  ``end_time IS NULL`` marks an open log."""

    __tablename__ = "task_time_logs"

    __table_args__ = (
        Index("idx_time_logs_task", "task_id"),
        Index("idx_time_logs_worker", "worker_id"),
        Index("idx_time_logs_start", "start_time"),
    )

    task_id: Mapped[UUID] = mapped_column(
        ForeignKey("service_order_tasks.id", ondelete="CASCADE"), nullable=False
    )
    worker_id: Mapped[UUID] = mapped_column(ForeignKey("parties.id"), nullable=False)
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(nullable=True)
    hours_worked: Mapped[Decimal | None] = mapped_column(nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    task: Mapped[TaskModel] = relationship(back_populates="time_logs")

    def to_dto(self) -> TimeLog:
        return TimeLog(
            id=self.id,
            task_id=self.task_id,
            worker_id=self.worker_id,
            start_time=self.start_time,
            end_time=self.end_time,
            hours_worked=self.hours_worked,
            description=self.description,
        )
