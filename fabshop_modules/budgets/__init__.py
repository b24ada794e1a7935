"""
Budgets Module.

Quotes and their line items: numbering, item arithmetic, ownership and the
quote status workflow.
"""

from fabshop_modules.budgets.models import (
    Budget,
    BudgetFilter,
    BudgetItem,
    BudgetStatus,
    CONVERTIBLE_STATUSES,
)
from fabshop_modules.budgets.service import BudgetService
from fabshop_modules.budgets.workflows import BUDGET_WORKFLOW

__all__ = [
    "BUDGET_WORKFLOW",
    "Budget",
    "BudgetFilter",
    "BudgetItem",
    "BudgetService",
    "BudgetStatus",
    "CONVERTIBLE_STATUSES",
]
