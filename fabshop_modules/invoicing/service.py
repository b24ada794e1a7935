"""
Invoice Aggregator (``fabshop_modules.invoicing.service``).

Responsibility
--------------
Select a client's billable orders inside a service-start window, freeze
them into an invoice with optional extra lines, and void invoices.

Architecture position
---------------------
**Modules layer**, top of the module graph: uses the order lifecycle to
claim orders and the task service for worked hours.  Flush-only.

Billing rule
------------
An order is billable when it belongs to the client, is ``to_invoice``, has
its service start date inside the window (inclusive) and is not referenced
by a non-void invoice.  Hours are the sum of the order's *closed* time logs,
recomputed at invoicing time.

Commit-time re-validation
-------------------------
The caller's selection may be stale.  Each order is re-read under a row
lock inside its own SAVEPOINT and re-checked; an order that no longer
qualifies (or loses an optimistic-lock race) is dropped with a reason
instead of failing the invoice.  If every order drops, nothing is written
and the result reports ``NO_BILLABLE_ORDERS``.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from fabshop_config.schema import ShopConfig
from fabshop_kernel.domain.clock import Clock
from fabshop_kernel.domain.notifications import ChangeAction, ChangedEntity
from fabshop_kernel.exceptions import (
    DoubleBillingError,
    InvalidStatusTransitionError,
    InvoiceAlreadyVoidError,
    InvoiceNotFoundError,
    InvoiceTotalsMismatchError,
    OptimisticLockError,
    OrderNotFoundError,
    ValidationError,
)
from fabshop_kernel.logging_config import get_logger
from fabshop_kernel.models.party import PartyType
from fabshop_kernel.services.base import BaseService
from fabshop_kernel.services.party_service import PartyService
from fabshop_kernel.services.sequence_service import SequenceService, format_number
from fabshop_modules.invoicing.calculator import (
    compute_invoice_totals,
    validate_extra_value,
)
from fabshop_modules.invoicing.models import (
    AggregationStatus,
    BillableOrder,
    DroppedOrder,
    Invoice,
    InvoiceAggregationResult,
    InvoiceExtraInput,
    InvoiceStatus,
)
from fabshop_modules.invoicing.orm import (
    InvoiceExtraModel,
    InvoiceModel,
    InvoiceOrderSnapshotModel,
)
from fabshop_modules.orders.models import OrderStatus
from fabshop_modules.orders.orm import ServiceOrderModel
from fabshop_modules.orders.service import OrderLifecycleService
from fabshop_modules.tasks.service import TaskService

logger = get_logger("modules.invoicing.service")

_ENTITY = "invoice"

# Drop reasons reported in DroppedOrder.reason
NOT_FOUND = "not_found"
STATUS_CHANGED = "status_changed"
CLIENT_CHANGED = "client_changed"
OUTSIDE_WINDOW = "outside_window"
ALREADY_INVOICED = "already_invoiced"
CONCURRENT_UPDATE = "concurrent_update"


def _validate_window(window_start: date, window_end: date) -> None:
    if window_start > window_end:
        raise ValidationError("window", "window_start is after window_end")


def _item_snapshot(order: ServiceOrderModel) -> list[dict]:
    return [
        {
            "service_name": item.service_name,
            "description": item.description,
            "quantity": str(item.quantity),
            "unit_price": str(item.unit_price),
            "total_price": str(item.total_price),
        }
        for item in order.items
    ]


class InvoiceAggregator(BaseService[InvoiceModel]):
    """Builds, voids and verifies invoices.  Returns ``Invoice`` DTOs."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: ShopConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or ShopConfig()
        self.orders = OrderLifecycleService(session, self.clock, self.config)
        self.tasks = TaskService(session, self.clock)
        self._parties = PartyService(session, self.clock)

    # =========================================================================
    # Lookups
    # =========================================================================

    def _get(self, invoice_id: UUID, for_update: bool = False) -> InvoiceModel:
        stmt = (
            select(InvoiceModel)
            .where(InvoiceModel.id == invoice_id)
            .options(selectinload(InvoiceModel.orders), selectinload(InvoiceModel.extras))
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        invoice = self.session.execute(stmt).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        return self._get(invoice_id).to_dto()

    def list_invoices(
        self,
        client_id: UUID | None = None,
        include_void: bool = False,
    ) -> list[Invoice]:
        stmt = select(InvoiceModel).options(
            selectinload(InvoiceModel.orders), selectinload(InvoiceModel.extras)
        )
        if client_id is not None:
            stmt = stmt.where(InvoiceModel.client_id == client_id)
        if not include_void:
            stmt = stmt.where(InvoiceModel.status != InvoiceStatus.VOID.value)
        stmt = stmt.order_by(InvoiceModel.created_at.desc(), InvoiceModel.invoice_number.desc())
        return [i.to_dto() for i in self.session.execute(stmt).scalars()]

    # =========================================================================
    # Selection
    # =========================================================================

    def select_billable(
        self,
        client_id: UUID,
        window_start: date,
        window_end: date,
    ) -> list[BillableOrder]:
        """
        Billable orders for a client, oldest service start first.

        Raises:
            ValidationError: ``window_start`` is after ``window_end``.
        """
        _validate_window(window_start, window_end)
        orders = self.session.execute(
            select(ServiceOrderModel)
            .where(
                ServiceOrderModel.client_id == client_id,
                ServiceOrderModel.status == OrderStatus.TO_INVOICE.value,
                ServiceOrderModel.invoice_id.is_(None),
                ServiceOrderModel.service_start_date >= window_start,
                ServiceOrderModel.service_start_date <= window_end,
            )
            .order_by(ServiceOrderModel.service_start_date, ServiceOrderModel.order_number)
        ).scalars().all()
        hours = self.tasks.hours_by_order(o.id for o in orders)
        return [
            BillableOrder(
                order_id=o.id,
                order_number=o.order_number,
                service_description=o.service_description,
                sale_value=o.sale_value,
                hours=hours[o.id],
                service_start_date=o.service_start_date,
            )
            for o in orders
        ]

    def _rejection(
        self,
        order: ServiceOrderModel,
        client_id: UUID,
        window_start: date,
        window_end: date,
    ) -> str | None:
        if order.invoice_id is not None:
            return ALREADY_INVOICED
        if order.status != OrderStatus.TO_INVOICE.value:
            return STATUS_CHANGED
        if order.client_id != client_id:
            return CLIENT_CHANGED
        if not window_start <= order.service_start_date <= window_end:
            return OUTSIDE_WINDOW
        return None

    def _claim(
        self,
        order_id: UUID,
        invoice_id: UUID,
        client_id: UUID,
        window_start: date,
        window_end: date,
        actor_id: UUID,
    ) -> tuple[ServiceOrderModel | None, DroppedOrder | None]:
        """Re-validate and mark one order inside its own savepoint."""
        order_number = None
        try:
            with self.session.begin_nested():
                order = self.orders.lock_order(order_id)
                order_number = order.order_number
                reason = self._rejection(order, client_id, window_start, window_end)
                if reason is None:
                    self.orders.mark_invoiced(order, invoice_id, actor_id)
        except OrderNotFoundError:
            reason = NOT_FOUND
        except DoubleBillingError:
            reason = ALREADY_INVOICED
        except InvalidStatusTransitionError:
            reason = STATUS_CHANGED
        except OptimisticLockError:
            reason = CONCURRENT_UPDATE

        if reason is None:
            return order, None
        logger.warning(
            "invoice_order_dropped",
            extra={"order_id": str(order_id), "order_number": order_number, "reason": reason},
        )
        return None, DroppedOrder(order_id=order_id, order_number=order_number, reason=reason)

    # =========================================================================
    # Create / void
    # =========================================================================

    def create_invoice(
        self,
        client_id: UUID,
        window_start: date,
        window_end: date,
        actor_id: UUID,
        extras: Iterable[InvoiceExtraInput] = (),
        order_ids: Iterable[UUID] | None = None,
    ) -> InvoiceAggregationResult:
        """
        Aggregate billable orders into a new invoice.

        Args:
            order_ids: The caller's earlier selection.  Selected now when
                omitted.  Every id is re-validated before it is billed.

        Returns:
            ``CREATED`` with the invoice, or ``NO_BILLABLE_ORDERS`` when no
            order survives re-validation (nothing is written).  ``dropped``
            lists excluded orders with their reasons in both cases.

        Raises:
            ValidationError: Bad window or extra line.
            PartyNotFoundError: Unknown client.
        """
        _validate_window(window_start, window_end)
        client = self._parties.require(client_id, PartyType.CLIENT)
        extra_lines = []
        for extra in extras:
            description = (extra.description or "").strip()
            if not description:
                raise ValidationError("extra.description", "must not be blank")
            extra_lines.append((description, validate_extra_value(extra.value)))

        if order_ids is None:
            candidates = [b.order_id for b in self.select_billable(client_id, window_start, window_end)]
        else:
            candidates = list(dict.fromkeys(order_ids))

        invoice_id = uuid4()
        accepted: list[ServiceOrderModel] = []
        dropped: list[DroppedOrder] = []
        invoice = None

        with self.session.begin_nested():
            for order_id in candidates:
                order, drop = self._claim(
                    order_id, invoice_id, client_id, window_start, window_end, actor_id
                )
                if drop is not None:
                    dropped.append(drop)
                else:
                    accepted.append(order)

            if accepted:
                invoice = self._write_invoice(
                    invoice_id, client_id, client.name, window_start, window_end,
                    accepted, extra_lines, actor_id,
                )

        if invoice is None:
            logger.info(
                "invoice_no_billable_orders",
                extra={
                    "client_id": str(client_id),
                    "window_start": window_start.isoformat(),
                    "window_end": window_end.isoformat(),
                    "dropped_count": len(dropped),
                },
            )
            return InvoiceAggregationResult(
                status=AggregationStatus.NO_BILLABLE_ORDERS,
                client_id=client_id,
                window_start=window_start,
                window_end=window_end,
                dropped=tuple(dropped),
            )

        return InvoiceAggregationResult(
            status=AggregationStatus.CREATED,
            client_id=client_id,
            window_start=window_start,
            window_end=window_end,
            invoice=invoice.to_dto(),
            dropped=tuple(dropped),
        )

    def _write_invoice(
        self,
        invoice_id: UUID,
        client_id: UUID,
        client_name: str,
        window_start: date,
        window_end: date,
        orders: list[ServiceOrderModel],
        extra_lines: list,
        actor_id: UUID,
    ) -> InvoiceModel:
        hours = self.tasks.hours_by_order(o.id for o in orders)
        totals = compute_invoice_totals(
            order_values=[o.sale_value for o in orders],
            order_hours=[hours[o.id] for o in orders],
            extras=[value for _, value in extra_lines],
        )
        numbering = self.config.numbering
        number = format_number(
            numbering.invoice_prefix,
            SequenceService(self.session).next_value(SequenceService.INVOICE),
            numbering.padding,
            numbering.separator,
        )
        now = self._now()

        invoice = InvoiceModel(
            id=invoice_id,
            invoice_number=number,
            client_id=client_id,
            client_name=client_name,
            window_start=window_start,
            window_end=window_end,
            status=InvoiceStatus.ISSUED.value,
            total_value=totals.total_value,
            total_time=totals.total_time,
            created_at=now,
            created_by_id=actor_id,
        )
        for order in orders:
            invoice.orders.append(
                InvoiceOrderSnapshotModel(
                    order_id=order.id,
                    order_number=order.order_number,
                    service_description=order.service_description,
                    sale_value=order.sale_value,
                    hours=hours[order.id],
                    items=_item_snapshot(order),
                    created_at=now,
                    created_by_id=actor_id,
                )
            )
        for position, (description, value) in enumerate(extra_lines, start=1):
            invoice.extras.append(
                InvoiceExtraModel(
                    position=position,
                    description=description,
                    value=value,
                    created_at=now,
                    created_by_id=actor_id,
                )
            )
        self.session.add(invoice)
        self.session.flush()
        self._changed(ChangedEntity.INVOICE, invoice.id, ChangeAction.CREATED)

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "client_id": str(client_id),
                "order_count": len(orders),
                "extra_count": len(extra_lines),
                "total_value": str(totals.total_value),
                "total_time": str(totals.total_time),
            },
        )
        return invoice

    def void_invoice(self, invoice_id: UUID, actor_id: UUID, reason: str) -> Invoice:
        """
        Void an invoice and return its orders to ``to_invoice``.

        Orders moved on since invoicing (e.g. ``completed``) keep their
        status; only the invoice link is cleared.

        Raises:
            InvoiceAlreadyVoidError: Already void.
            ValidationError: Blank reason.
        """
        if reason is None or not reason.strip():
            raise ValidationError("reason", "must not be blank")
        invoice = self._get(invoice_id, for_update=True)
        if invoice.status == InvoiceStatus.VOID.value:
            raise InvoiceAlreadyVoidError(str(invoice.id))

        released = 0
        with self.session.begin_nested():
            invoice.status = InvoiceStatus.VOID.value
            invoice.voided_at = self._now()
            invoice.void_reason = reason.strip()
            invoice.updated_by_id = actor_id
            self._flush(_ENTITY, invoice.id)
            for snapshot in invoice.orders:
                order = self.orders.lock_order(snapshot.order_id)
                if self.orders.release_from_invoice(order, invoice.id, actor_id):
                    released += 1
        self._changed(ChangedEntity.INVOICE, invoice.id)

        logger.info(
            "invoice_voided",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "released_orders": released,
            },
        )
        return invoice.to_dto()

    # =========================================================================
    # Verification
    # =========================================================================

    def verify_invoice(self, invoice_id: UUID) -> Invoice:
        """
        Recompute totals from the frozen snapshot.

        Raises:
            InvoiceTotalsMismatchError: Stored totals differ from the snapshot.
        """
        invoice = self._get(invoice_id)
        totals = compute_invoice_totals(
            order_values=[o.sale_value for o in invoice.orders],
            order_hours=[o.hours for o in invoice.orders],
            extras=[e.value for e in invoice.extras],
        )
        if totals.total_value != invoice.total_value or totals.total_time != invoice.total_time:
            logger.error(
                "invoice_totals_mismatch",
                extra={
                    "invoice_id": str(invoice.id),
                    "stored_value": str(invoice.total_value),
                    "computed_value": str(totals.total_value),
                },
            )
            raise InvoiceTotalsMismatchError(
                str(invoice.id),
                str(invoice.total_value),
                str(totals.total_value),
                str(invoice.total_time),
                str(totals.total_time),
            )
        return invoice.to_dto()
