"""
Reporting Module.

Read-only projection over orders, tasks and time logs.
"""

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
from fabshop_modules.reporting.selectors import ReportingSelector

__all__ = [
    "ExportItem",
    "OpenOrderRow",
    "OpenTaskRow",
    "OrderExportRow",
    "ReportingSelector",
    "StatusCount",
    "StatusHistogram",
    "TimeEntryRow",
    "WorkerProductivity",
]
