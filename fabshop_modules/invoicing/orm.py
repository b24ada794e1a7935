"""
Invoice ORM Models (``fabshop_modules.invoicing.orm``).

Invoices, their frozen per-order snapshot rows and extra lines.  Snapshot
rows are written once at creation and never updated.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fabshop_kernel.db.base import TrackedBase
from fabshop_modules.invoicing.models import (
    Invoice,
    InvoicedOrder,
    InvoiceExtra,
    InvoiceStatus,
)


class InvoiceModel(TrackedBase):
    """
    ORM model for invoices.

    Guarantees:
        - invoice_number is unique.
        - total_value / total_time equal the snapshot sums at creation.
        - version is managed by SQLAlchemy (optimistic locking).
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoices_number"),
        Index("idx_invoices_client", "client_id"),
        Index("idx_invoices_status", "status"),
    )

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    client_id: Mapped[UUID] = mapped_column(ForeignKey("parties.id"), nullable=False)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    window_start: Mapped[date] = mapped_column(nullable=False)
    window_end: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.ISSUED.value
    )
    total_value: Mapped[Decimal] = mapped_column(nullable=False)
    total_time: Mapped[Decimal] = mapped_column(nullable=False)
    voided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    orders: Mapped[list["InvoiceOrderSnapshotModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceOrderSnapshotModel.order_number",
    )
    extras: Mapped[list["InvoiceExtraModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceExtraModel.position",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> Invoice:
        return Invoice(
            id=self.id,
            invoice_number=self.invoice_number,
            client_id=self.client_id,
            client_name=self.client_name,
            window_start=self.window_start,
            window_end=self.window_end,
            status=InvoiceStatus(self.status),
            total_value=self.total_value,
            total_time=self.total_time,
            orders=tuple(o.to_dto() for o in self.orders),
            extras=tuple(e.to_dto() for e in self.extras),
            voided_at=self.voided_at,
            void_reason=self.void_reason,
            created_at=self.created_at,
        )


class InvoiceOrderSnapshotModel(TrackedBase):
    """One frozen order on an invoice."""

    __tablename__ = "invoice_orders"

    __table_args__ = (
        UniqueConstraint("invoice_id", "order_id", name="uq_invoice_orders_order"),
        Index("idx_invoice_orders_order", "order_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False
    )
    order_id: Mapped[UUID] = mapped_column(
        ForeignKey("service_orders.id"), nullable=False
    )
    order_number: Mapped[str] = mapped_column(String(60), nullable=False)
    service_description: Mapped[str] = mapped_column(Text, nullable=False)
    sale_value: Mapped[Decimal] = mapped_column(nullable=False)
    hours: Mapped[Decimal] = mapped_column(nullable=False)
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    invoice: Mapped[InvoiceModel] = relationship(back_populates="orders")

    def to_dto(self) -> InvoicedOrder:
        return InvoicedOrder(
            order_id=self.order_id,
            order_number=self.order_number,
            service_description=self.service_description,
            sale_value=self.sale_value,
            hours=self.hours,
            items=tuple(self.items or ()),
        )


class InvoiceExtraModel(TrackedBase):
    """An extra line (value >= 0) added by the caller."""

    __tablename__ = "invoice_extras"

    __table_args__ = (
        Index("idx_invoice_extras_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[Decimal] = mapped_column(nullable=False)

    invoice: Mapped[InvoiceModel] = relationship(back_populates="extras")

    def to_dto(self) -> InvoiceExtra:
        return InvoiceExtra(id=self.id, description=self.description, value=self.value)
