"""
Service Order ORM Models (``fabshop_modules.orders.orm``).

Responsibility
--------------
SQLAlchemy persistence for service orders, their items and hold records.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``fabshop_kernel.db.base``
and sibling ``models.py``.

Notes
-----
* ``order_number`` carries the only hard uniqueness guarantee the allocator
  relies on (uq_service_orders_number).
* ``budget_id`` is unique: a budget yields at most one order.
* ``invoice_id`` is maintained by the invoice aggregator.  It is a plain
  column (no FK) so this module does not depend on the invoicing tables.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fabshop_kernel.db.base import TrackedBase, UUIDString
from fabshop_modules.orders.models import (
    HoldCall,
    OrderItem,
    OrderStatus,
    ServiceOrder,
    Urgency,
)


class ServiceOrderModel(TrackedBase):
    """
    ORM model for service orders.

    Guarantees:
        - order_number is unique.
        - version is managed by SQLAlchemy (optimistic locking).
        - client_* columns are a snapshot; client_id is an optional link.
    """

    __tablename__ = "service_orders"

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_service_orders_number"),
        UniqueConstraint("budget_id", name="uq_service_orders_budget"),
        Index("idx_service_orders_status", "status"),
        Index(
            "idx_service_orders_billing",
            "client_id",
            "status",
            "service_start_date",
        ),
        Index("idx_service_orders_worker", "assigned_worker_id"),
        Index("idx_service_orders_invoice", "invoice_id"),
        Index("idx_service_orders_created_at", "created_at"),
    )

    order_number: Mapped[str] = mapped_column(String(60), nullable=False)
    budget_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("budgets.id"), nullable=True
    )
    client_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("parties.id"), nullable=True
    )
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_contact: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    service_description: Mapped[str] = mapped_column(Text, nullable=False)
    sale_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    itemized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # set when a conversion created the order but its items failed to copy
    items_pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=OrderStatus.RECEIVED.value
    )
    urgency: Mapped[str] = mapped_column(
        String(10), nullable=False, default=Urgency.MEDIUM.value
    )
    assigned_worker_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("parties.id"), nullable=True
    )
    deadline: Mapped[date | None] = mapped_column(nullable=True)
    opening_date: Mapped[date] = mapped_column(nullable=False)
    service_start_date: Mapped[date] = mapped_column(nullable=False)
    invoice_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    items: Mapped[list["ServiceOrderItemModel"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="ServiceOrderItemModel.position",
    )
    calls: Mapped[list["ServiceOrderCallModel"]] = relationship(
        back_populates="order",
        order_by="ServiceOrderCallModel.created_at",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> ServiceOrder:
        return ServiceOrder(
            id=self.id,
            order_number=self.order_number,
            budget_id=self.budget_id,
            client_id=self.client_id,
            client_name=self.client_name,
            client_contact=self.client_contact,
            client_address=self.client_address,
            service_description=self.service_description,
            sale_value=self.sale_value,
            itemized=self.itemized,
            items_pending=self.items_pending,
            status=OrderStatus(self.status),
            urgency=Urgency(self.urgency),
            assigned_worker_id=self.assigned_worker_id,
            deadline=self.deadline,
            opening_date=self.opening_date,
            service_start_date=self.service_start_date,
            invoice_id=self.invoice_id,
            items=tuple(item.to_dto() for item in self.items),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class ServiceOrderItemModel(TrackedBase):
    """
    ORM model for order line items.  Independent of the source budget's
    items once copied.
    """

    __tablename__ = "service_order_items"

    __table_args__ = (
        UniqueConstraint("order_id", "position", name="uq_service_order_items_position"),
        Index("idx_service_order_items_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        ForeignKey("service_orders.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    total_price: Mapped[Decimal] = mapped_column(nullable=False)

    order: Mapped[ServiceOrderModel] = relationship(back_populates="items")

    def to_dto(self) -> OrderItem:
        return OrderItem(
            id=self.id,
            order_id=self.order_id,
            position=self.position,
            service_name=self.service_name,
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            total_price=self.total_price,
        )


class ServiceOrderCallModel(TrackedBase):
    """
    ORM model for hold records.

    Guarantees:
        - reason is non-blank (checked by the service before insert).
        - created_by_id is the user who put the order on hold.
    """

    __tablename__ = "service_order_calls"

    __table_args__ = (
        Index("idx_service_order_calls_order", "order_id"),
        Index("idx_service_order_calls_resolved", "resolved"),
    )

    order_id: Mapped[UUID] = mapped_column(
        ForeignKey("service_orders.id"), nullable=False
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    order: Mapped[ServiceOrderModel] = relationship(back_populates="calls")

    def to_dto(self, order_number: str | None = None) -> HoldCall:
        return HoldCall(
            id=self.id,
            order_id=self.order_id,
            order_number=order_number,
            reason=self.reason,
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            resolved=self.resolved,
            resolved_by_id=self.resolved_by_id,
            resolved_at=self.resolved_at,
        )
