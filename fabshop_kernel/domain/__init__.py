"""
Pure domain layer.

Value objects and helpers with NO dependency on the ORM or the database:
the injectable clock, workflow state machines and change notifications.
"""

from fabshop_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SequentialClock,
    SystemClock,
    day_bounds,
)
from fabshop_kernel.domain.notifications import (
    ChangeAction,
    ChangedEntity,
    ChangeEvent,
    ChangeNotifier,
)
from fabshop_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "ChangeAction",
    "ChangeEvent",
    "ChangeNotifier",
    "ChangedEntity",
    "Clock",
    "DeterministicClock",
    "Guard",
    "SequentialClock",
    "SystemClock",
    "Transition",
    "Workflow",
    "day_bounds",
]
