"""
Tasks Module.

Tasks against service orders and the time logs that are the source of truth
for billed hours.
"""

from fabshop_modules.tasks.models import Task, TaskPriority, TaskStatus, TimeLog
from fabshop_modules.tasks.service import TaskService
from fabshop_modules.tasks.workflows import TASK_WORKFLOW

__all__ = [
    "TASK_WORKFLOW",
    "Task",
    "TaskPriority",
    "TaskService",
    "TaskStatus",
    "TimeLog",
]
