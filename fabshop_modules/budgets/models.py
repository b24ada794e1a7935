"""
Budget Domain Models (``fabshop_modules.budgets.models``).

Responsibility
--------------
Frozen value objects for quotes: the budget header with its client snapshot,
and its ordered line items.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* Money is ``Decimal``; ``total_value`` equals the sum of item totals.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class BudgetStatus(str, Enum):
    """Budget lifecycle states."""
    DRAFT = "draft"
    PENDING = "pending"
    SENT = "sent"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


CONVERTIBLE_STATUSES = frozenset({
    BudgetStatus.DRAFT,
    BudgetStatus.PENDING,
    BudgetStatus.SENT,
})


@dataclass(frozen=True)
class BudgetItem:
    """A priced line on a quote."""
    id: UUID
    budget_id: UUID
    position: int
    service_name: str
    description: str | None
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class Budget:
    """A quote, convertible into a service order."""
    id: UUID
    budget_number: str
    client_id: UUID | None
    client_name: str
    client_contact: str | None
    client_address: str | None
    description: str | None
    total_value: Decimal
    valid_until: date | None
    status: BudgetStatus
    owner_id: UUID
    items: tuple[BudgetItem, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_locked(self) -> bool:
        return self.status == BudgetStatus.APPROVED

    def is_expired_on(self, today: date) -> bool:
        return self.valid_until is not None and self.valid_until < today


@dataclass(frozen=True)
class BudgetFilter:
    """List filters.  ``search`` matches the budget number or client name."""
    search: str | None = None
    status: BudgetStatus | None = None
    client_name: str | None = None
    client_id: UUID | None = None
    date_from: date | None = None
    date_to: date | None = None
