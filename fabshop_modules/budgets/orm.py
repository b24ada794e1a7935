"""
Budget ORM Models (``fabshop_modules.budgets.orm``).

Responsibility
--------------
SQLAlchemy persistence for budgets and their line items.  Maps to the frozen
dataclasses in ``models.py``.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``fabshop_kernel.db.base``
and sibling ``models.py``.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fabshop_kernel.db.base import TrackedBase
from fabshop_modules.budgets.models import Budget, BudgetItem, BudgetStatus


class BudgetModel(TrackedBase):
    """
    ORM model for budgets (quotes).

    Guarantees:
        - budget_number is unique (uq_budgets_number).
        - client_* columns are a snapshot; client_id is an optional link.
        - version is managed by SQLAlchemy (optimistic locking).
        - created_by_id is the owning user.
    """

    __tablename__ = "budgets"

    __table_args__ = (
        UniqueConstraint("budget_number", name="uq_budgets_number"),
        Index("idx_budgets_status", "status"),
        Index("idx_budgets_client", "client_id"),
        Index("idx_budgets_created_at", "created_at"),
    )

    budget_number: Mapped[str] = mapped_column(String(50), nullable=False)
    client_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("parties.id"), nullable=True
    )
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_contact: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    valid_until: Mapped[date | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BudgetStatus.DRAFT.value
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    items: Mapped[list["BudgetItemModel"]] = relationship(
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BudgetItemModel.position",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> Budget:
        return Budget(
            id=self.id,
            budget_number=self.budget_number,
            client_id=self.client_id,
            client_name=self.client_name,
            client_contact=self.client_contact,
            client_address=self.client_address,
            description=self.description,
            total_value=self.total_value,
            valid_until=self.valid_until,
            status=BudgetStatus(self.status),
            owner_id=self.created_by_id,
            items=tuple(item.to_dto() for item in self.items),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class BudgetItemModel(TrackedBase):
    """
    ORM model for budget line items.

    Guarantees:
        - total_price = round_money(quantity * unit_price), written by the
          service on every edit.
        - (budget_id, position) is unique.
    """

    __tablename__ = "budget_items"

    __table_args__ = (
        UniqueConstraint("budget_id", "position", name="uq_budget_items_position"),
        Index("idx_budget_items_budget", "budget_id"),
    )

    budget_id: Mapped[UUID] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    total_price: Mapped[Decimal] = mapped_column(nullable=False)

    budget: Mapped[BudgetModel] = relationship(back_populates="items")

    def to_dto(self) -> BudgetItem:
        return BudgetItem(
            id=self.id,
            budget_id=self.budget_id,
            position=self.position,
            service_name=self.service_name,
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            total_price=self.total_price,
        )
