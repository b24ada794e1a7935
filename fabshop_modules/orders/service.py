"""
Order Lifecycle Engine (``fabshop_modules.orders.service``).

Responsibility
--------------
Budget conversion, direct order creation, the status state machine with the
on_hold hold-record protocol, order items and hold record resolution.

Architecture position
---------------------
**Modules layer**.  Uses the budget store for locking/approving budgets, the
allocator for order numbers and reads task rows for work-driven status sync.
Flush-only; ``WorkshopService`` owns commit/rollback.

Invariants enforced
-------------------
* Conversion is one SAVEPOINT unit: number allocation, order insert and
  budget approval commit together or not at all.  A failed item copy rolls
  back only its inner SAVEPOINT and leaves the order ``items_pending``;
  ``complete_item_migration`` is the only path that clears the flag.
* ``on_hold`` is entered only after a hold record with a non-blank reason
  has been flushed; the status write happens in the same SAVEPOINT.
* ``invoiced`` is entered and left only through ``mark_invoiced`` and
  ``release_from_invoice`` (called by the invoice aggregator).
* While an order has items, ``sale_value`` is the sum of item totals.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from fabshop_config.schema import ShopConfig
from fabshop_kernel.db.types import round_money, to_decimal
from fabshop_kernel.domain.clock import Clock
from fabshop_kernel.domain.notifications import ChangeAction, ChangedEntity
from fabshop_kernel.domain.workflow import state_key
from fabshop_kernel.exceptions import (
    BudgetAlreadyConvertedError,
    BudgetExpiredError,
    CallAlreadyResolvedError,
    CallNotFoundError,
    DoubleBillingError,
    HoldReasonRequiredError,
    InvalidStatusTransitionError,
    OrderItemNotFoundError,
    OrderNotFoundError,
    StaleStateError,
    ValidationError,
)
from fabshop_kernel.logging_config import get_logger
from fabshop_kernel.models.party import PartyType
from fabshop_kernel.services.base import BaseService
from fabshop_kernel.services.party_service import PartyService
from fabshop_kernel.services.sequence_service import SequenceService, format_number
from fabshop_modules.budgets.models import BudgetStatus, CONVERTIBLE_STATUSES
from fabshop_modules.budgets.service import BudgetService
from fabshop_modules.line_items import (
    LineItemInput,
    items_total,
    line_total,
    missing_items,
    validate_line,
    validate_quantity,
    validate_service_name,
    validate_unit_price,
)
from fabshop_modules.orders.allocator import OrderNumberAllocator
from fabshop_modules.orders.models import (
    ConversionResult,
    HoldCall,
    OrderStatus,
    ServiceOrder,
    StatusChangeResult,
    Urgency,
    WORK_SYNC_STATUSES,
)
from fabshop_modules.orders.orm import (
    ServiceOrderCallModel,
    ServiceOrderItemModel,
    ServiceOrderModel,
)
from fabshop_modules.orders.workflows import order_workflow
from fabshop_modules.tasks.models import TaskStatus
from fabshop_modules.tasks.orm import TaskModel, TimeLogModel

logger = get_logger("modules.orders.service")

_ENTITY = "service_order"


def parse_order_status(value: OrderStatus | str, field: str = "status") -> OrderStatus:
    try:
        return OrderStatus(state_key(value))
    except ValueError as exc:
        raise ValidationError(field, f"unknown order status {value!r}") from exc


def parse_urgency(value: Urgency | str) -> Urgency:
    try:
        return Urgency(state_key(value))
    except ValueError as exc:
        raise ValidationError("urgency", f"unknown urgency {value!r}") from exc


class OrderLifecycleService(BaseService[ServiceOrderModel]):
    """
    Write side of the order lifecycle.

    Returns ``ServiceOrder`` DTOs (or result objects wrapping them).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: ShopConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or ShopConfig()
        self.workflow = order_workflow(self.config.orders.allow_reopen_terminal)
        self.allocator = OrderNumberAllocator(session, self.config.numbering)
        self._parties = PartyService(session, self.clock)
        self._budgets = BudgetService(session, self.clock, self.config)

    # =========================================================================
    # Lookups
    # =========================================================================

    def _get(self, order_id: UUID, for_update: bool = False) -> ServiceOrderModel:
        stmt = (
            select(ServiceOrderModel)
            .where(ServiceOrderModel.id == order_id)
            .options(selectinload(ServiceOrderModel.items))
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        order = self.session.execute(stmt).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def lock_order(self, order_id: UUID) -> ServiceOrderModel:
        """Re-read an order under a row lock, for callers that mutate it next."""
        return self._get(order_id, for_update=True)

    def _get_item(self, item_id: UUID) -> ServiceOrderItemModel:
        item = self.session.get(ServiceOrderItemModel, item_id)
        if item is None:
            raise OrderItemNotFoundError(str(item_id))
        return item

    def _order_for_budget(self, budget_id: UUID) -> UUID | None:
        return self.session.execute(
            select(ServiceOrderModel.id).where(ServiceOrderModel.budget_id == budget_id)
        ).scalar_one_or_none()

    def get_order(self, order_id: UUID) -> ServiceOrder:
        return self._get(order_id).to_dto()

    def get_order_by_number(self, order_number: str) -> ServiceOrder:
        order = self.session.execute(
            select(ServiceOrderModel)
            .where(ServiceOrderModel.order_number == order_number)
            .options(selectinload(ServiceOrderModel.items))
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_number)
        return order.to_dto()

    def list_orders(
        self,
        status: OrderStatus | str | None = None,
        client_id: UUID | None = None,
        assigned_worker_id: UUID | None = None,
        search: str | None = None,
    ) -> list[ServiceOrder]:
        """List orders, newest first.  ``search`` matches number or client name."""
        stmt = select(ServiceOrderModel).options(selectinload(ServiceOrderModel.items))
        if status is not None:
            stmt = stmt.where(ServiceOrderModel.status == parse_order_status(status).value)
        if client_id is not None:
            stmt = stmt.where(ServiceOrderModel.client_id == client_id)
        if assigned_worker_id is not None:
            stmt = stmt.where(ServiceOrderModel.assigned_worker_id == assigned_worker_id)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                ServiceOrderModel.order_number.ilike(pattern)
                | ServiceOrderModel.client_name.ilike(pattern)
            )
        stmt = stmt.order_by(
            ServiceOrderModel.created_at.desc(), ServiceOrderModel.order_number.desc()
        )
        return [o.to_dto() for o in self.session.execute(stmt).scalars()]

    # =========================================================================
    # Conversion
    # =========================================================================

    def _new_item(self, order: ServiceOrderModel, line, position: int, actor_id: UUID):
        return ServiceOrderItemModel(
            order_id=order.id,
            position=position,
            service_name=line.service_name,
            description=line.description,
            quantity=line.quantity,
            unit_price=line.unit_price,
            total_price=line.total_price,
            created_at=self._now(),
            created_by_id=actor_id,
        )

    def _migrate_items(
        self,
        order: ServiceOrderModel,
        source_items: Iterable,
        actor_id: UUID,
    ) -> int:
        """Copy source items the order does not yet hold.  Returns the count."""
        missing = missing_items(source_items, order.items)
        position = max((i.position for i in order.items), default=0)
        for line in missing:
            position += 1
            order.items.append(self._new_item(order, line, position, actor_id))
        if missing:
            self.session.flush()
        return len(missing)

    def convert_budget(self, budget_id: UUID, actor_id: UUID) -> ConversionResult:
        """
        Convert a budget into a service order.

        The new order is ``pending``, carries the budget's client snapshot,
        total and items, and gets the order number derived from the budget
        number (suffixed on collision).  The budget becomes ``approved``.

        Raises:
            BudgetNotFoundError: Unknown budget.
            BudgetAlreadyConvertedError: The budget already yielded an order.
            InvalidStatusTransitionError: Budget approved, rejected or expired.
            BudgetExpiredError: ``valid_until`` is in the past.
            ValidationError: The budget has no items, or its number lacks
                the quote prefix.
            AllocationExhaustedError: No free order number within the cap.
        """
        with self.session.begin_nested():
            budget = self._budgets.lock_for_conversion(budget_id)

            existing = self._order_for_budget(budget.id)
            if existing is not None:
                raise BudgetAlreadyConvertedError(str(budget.id), str(existing))
            if BudgetStatus(budget.status) not in CONVERTIBLE_STATUSES:
                raise InvalidStatusTransitionError(
                    "budget", str(budget.id), budget.status, BudgetStatus.APPROVED.value
                )
            today = self.clock.today()
            if (
                self.config.budgets.reject_expired
                and budget.valid_until is not None
                and budget.valid_until < today
            ):
                raise BudgetExpiredError(str(budget.id), budget.valid_until.isoformat())
            if not budget.items:
                raise ValidationError("items", "a budget without items cannot be converted")

            base = self.allocator.derive_base(budget.budget_number)
            description = budget.description or ", ".join(
                item.service_name for item in budget.items
            )
            now = self._now()
            urgency = Urgency(self.config.orders.default_urgency)

            def build(number: str) -> ServiceOrderModel:
                return ServiceOrderModel(
                    order_number=number,
                    budget_id=budget.id,
                    client_id=budget.client_id,
                    client_name=budget.client_name,
                    client_contact=budget.client_contact,
                    client_address=budget.client_address,
                    service_description=description,
                    sale_value=budget.total_value,
                    itemized=True,
                    status=OrderStatus.PENDING.value,
                    urgency=urgency.value,
                    opening_date=today,
                    service_start_date=today,
                    created_at=now,
                    created_by_id=actor_id,
                )

            try:
                allocation = self.allocator.insert_unique(base, build)
            except IntegrityError as exc:
                existing = self._order_for_budget(budget.id)
                if existing is not None:
                    raise BudgetAlreadyConvertedError(str(budget.id), str(existing)) from exc
                raise

            order = allocation.order
            try:
                with self.session.begin_nested():
                    migrated = self._migrate_items(order, budget.items, actor_id)
            except SQLAlchemyError:
                # the order row stands; complete_item_migration finishes the copy
                logger.warning(
                    "order_items_pending",
                    exc_info=True,
                    extra={"order_id": str(order.id), "budget_id": str(budget.id)},
                )
                order.items_pending = True
                migrated = 0
                self._flush(_ENTITY, order.id)
            self._budgets.mark_approved(budget, actor_id)

        self._changed(ChangedEntity.SERVICE_ORDER, order.id, ChangeAction.CREATED)
        logger.info(
            "budget_converted",
            extra={
                "budget_id": str(budget.id),
                "budget_number": budget.budget_number,
                "order_id": str(order.id),
                "order_number": order.order_number,
                "allocation_attempts": allocation.attempts,
                "migrated_items": migrated,
                "items_pending": order.items_pending,
                "sale_value": str(order.sale_value),
            },
        )
        return ConversionResult(
            order=order.to_dto(),
            budget_id=budget.id,
            budget_number=budget.budget_number,
            base_number=base,
            allocation_attempts=allocation.attempts,
            migrated_items=migrated,
            items_pending=order.items_pending,
        )

    def complete_item_migration(self, order_id: UUID, actor_id: UUID) -> int:
        """
        Finish a conversion whose item copy failed.

        Only orders flagged ``items_pending`` are touched; on any other order
        the items belong to the user and this returns 0.  Items are diffed by
        content as a multiset, so nothing is duplicated.  Returns the number
        of items inserted.
        """
        order = self._get(order_id, for_update=True)
        if order.budget_id is None or not order.items_pending:
            return 0
        budget = self._budgets.lock_for_conversion(order.budget_id)
        inserted = self._migrate_items(order, budget.items, actor_id)
        order.items_pending = False
        order.itemized = True
        order.sale_value = items_total(i.total_price for i in order.items)
        order.updated_by_id = actor_id
        self._flush(_ENTITY, order.id)
        self._changed(ChangedEntity.SERVICE_ORDER, order.id)
        logger.info(
            "order_items_migrated",
            extra={"order_id": str(order.id), "inserted": inserted},
        )
        return inserted

    # =========================================================================
    # Direct creation / update
    # =========================================================================

    def _next_base(self) -> str:
        numbering = self.config.numbering
        value = SequenceService(self.session).next_value(SequenceService.SERVICE_ORDER)
        return format_number(
            numbering.order_prefix, value, numbering.padding, numbering.separator
        )

    def _require_worker(self, worker_id: UUID | None) -> None:
        if worker_id is not None:
            self._parties.require(worker_id, PartyType.WORKER)

    def create_order(
        self,
        actor_id: UUID,
        service_description: str | None = None,
        client_id: UUID | None = None,
        client_name: str | None = None,
        client_contact: str | None = None,
        client_address: str | None = None,
        items: Iterable[LineItemInput] = (),
        sale_value: Decimal | int | str | None = None,
        urgency: Urgency | str | None = None,
        deadline: date | None = None,
        assigned_worker_id: UUID | None = None,
        status: OrderStatus | str | None = None,
        order_number: str | None = None,
        service_start_date: date | None = None,
    ) -> ServiceOrder:
        """
        Create an order without a budget.

        With items, the sale value is their sum and ``sale_value`` must not
        be passed.  Without items, ``sale_value`` (default 0) is the manual
        price.  An explicit ``order_number`` is used as the allocator base,
        so a taken number yields ``NUMBER-1``.

        Raises:
            ValidationError: Bad start status, blank description, bad item or
                both items and sale_value given.
            PartyNotFoundError: Unknown client or worker.
        """
        start = parse_order_status(status or self.config.orders.direct_order_status)
        if start not in (OrderStatus.RECEIVED, OrderStatus.PENDING):
            raise ValidationError("status", "a new order starts as received or pending")
        lines = [validate_line(item) for item in items]
        if lines and sale_value is not None:
            raise ValidationError("sale_value", "derived from items when items are given")
        if lines:
            value = items_total(line.total_price for line in lines)
        else:
            value = round_money(to_decimal(sale_value if sale_value is not None else 0, "sale_value"))
            if value < 0:
                raise ValidationError("sale_value", f"must be >= 0, got {value}")
        description = (service_description or "").strip() or ", ".join(
            line.service_name for line in lines
        )
        if not description:
            raise ValidationError("service_description", "must not be blank")
        level = parse_urgency(urgency or self.config.orders.default_urgency)
        self._require_worker(assigned_worker_id)
        snapshot = self._parties.resolve_snapshot(
            client_id, client_name, client_contact, client_address
        )
        if order_number is not None and not order_number.strip():
            raise ValidationError("order_number", "must not be blank")

        base = order_number.strip() if order_number else self._next_base()
        today = self.clock.today()
        now = self._now()

        def build(number: str) -> ServiceOrderModel:
            return ServiceOrderModel(
                order_number=number,
                client_id=snapshot.client_id,
                client_name=snapshot.name,
                client_contact=snapshot.contact,
                client_address=snapshot.address,
                service_description=description,
                sale_value=value,
                itemized=bool(lines),
                status=start.value,
                urgency=level.value,
                assigned_worker_id=assigned_worker_id,
                deadline=deadline,
                opening_date=today,
                service_start_date=service_start_date or today,
                created_at=now,
                created_by_id=actor_id,
            )

        allocation = self.allocator.insert_unique(base, build)
        order = allocation.order
        for position, line in enumerate(lines, start=1):
            order.items.append(self._new_item(order, line, position, actor_id))
        self.session.flush()
        self._changed(ChangedEntity.SERVICE_ORDER, order.id, ChangeAction.CREATED)

        logger.info(
            "order_created",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "status": order.status,
                "item_count": len(lines),
                "sale_value": str(order.sale_value),
            },
        )
        return order.to_dto()

    def update_order(
        self,
        order_id: UUID,
        actor_id: UUID,
        service_description: str | None = None,
        urgency: Urgency | str | None = None,
        deadline: date | None = None,
        client_id: UUID | None = None,
        client_name: str | None = None,
        client_contact: str | None = None,
        client_address: str | None = None,
        service_start_date: date | None = None,
    ) -> ServiceOrder:
        """Update header fields.  Passing ``client_id`` re-copies the snapshot."""
        order = self._get(order_id)

        if service_description is not None:
            if not service_description.strip():
                raise ValidationError("service_description", "must not be blank")
            order.service_description = service_description.strip()
        if urgency is not None:
            order.urgency = parse_urgency(urgency).value
        if deadline is not None:
            order.deadline = deadline
        if service_start_date is not None:
            order.service_start_date = service_start_date
        if client_id is not None:
            snapshot = self._parties.resolve_snapshot(
                client_id, client_name, client_contact, client_address
            )
            order.client_id = snapshot.client_id
            order.client_name = snapshot.name
            order.client_contact = snapshot.contact
            order.client_address = snapshot.address
        else:
            if client_name is not None:
                if not client_name.strip():
                    raise ValidationError("client_name", "must not be blank")
                order.client_name = client_name.strip()
            if client_contact is not None:
                order.client_contact = client_contact
            if client_address is not None:
                order.client_address = client_address

        order.updated_by_id = actor_id
        self._flush(_ENTITY, order.id)
        self._changed(ChangedEntity.SERVICE_ORDER, order.id)
        return order.to_dto()

    def assign_worker(
        self,
        order_id: UUID,
        worker_id: UUID | None,
        actor_id: UUID,
    ) -> ServiceOrder:
        """Assign (or with ``None`` unassign) the responsible worker."""
        order = self._get(order_id)
        self._require_worker(worker_id)
        order.assigned_worker_id = worker_id
        order.updated_by_id = actor_id
        self._flush(_ENTITY, order.id)
        self._changed(ChangedEntity.SERVICE_ORDER, order.id)
        logger.info(
            "order_worker_assigned",
            extra={
                "order_id": str(order.id),
                "worker_id": str(worker_id) if worker_id else None,
            },
        )
        return order.to_dto()

    # =========================================================================
    # Status
    # =========================================================================

    def _set_status(
        self,
        order: ServiceOrderModel,
        target: OrderStatus,
        actor_id: UUID,
    ) -> None:
        order.status = target.value
        order.updated_by_id = actor_id
        self._flush(_ENTITY, order.id)
        self._changed(ChangedEntity.SERVICE_ORDER, order.id)

    def change_status(
        self,
        order_id: UUID,
        to_status: OrderStatus | str,
        actor_id: UUID,
        reason: str | None = None,
        expected_status: OrderStatus | str | None = None,
    ) -> StatusChangeResult:
        """
        Move an order to ``to_status``.

        Moving to the current status is a no-op: nothing is written and no
        hold record is created.  Entering ``on_hold`` first persists a hold
        record carrying ``reason``; the status is written only after that
        record is flushed, and both roll back together on failure.

        Args:
            expected_status: If given, the stored status must still equal it.

        Raises:
            ValidationError: Unknown status.
            HoldReasonRequiredError: ``on_hold`` without a non-blank reason.
            StaleStateError: Stored status differs from ``expected_status``.
            InvalidStatusTransitionError: Move not allowed (e.g. manual
                ``invoiced``).
            OptimisticLockError: Concurrent update of the same order.
        """
        target = parse_order_status(to_status)
        expected = (
            parse_order_status(expected_status, "expected_status")
            if expected_status is not None
            else None
        )
        order = self._get(order_id, for_update=True)
        previous = OrderStatus(order.status)

        if expected is not None and expected is not previous:
            raise StaleStateError(_ENTITY, str(order.id), expected.value, previous.value)
        if target is previous:
            return StatusChangeResult(order=order.to_dto(), previous_status=previous, changed=False)

        transition = self.workflow.find(previous.value, target.value)
        if transition is None or transition.system_only:
            raise InvalidStatusTransitionError(
                _ENTITY, str(order.id), previous.value, target.value
            )
        hold_reason = None
        if target is OrderStatus.ON_HOLD:
            hold_reason = (reason or "").strip()
            if not hold_reason:
                raise HoldReasonRequiredError(str(order.id))

        call = None
        with self.session.begin_nested():
            if hold_reason is not None:
                call = ServiceOrderCallModel(
                    order_id=order.id,
                    reason=hold_reason,
                    resolved=False,
                    created_at=self._now(),
                    created_by_id=actor_id,
                )
                self.session.add(call)
                self.session.flush()
            self._set_status(order, target, actor_id)

        logger.info(
            "order_status_changed",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "from_status": previous.value,
                "to_status": target.value,
                "call_id": str(call.id) if call else None,
            },
        )
        return StatusChangeResult(
            order=order.to_dto(),
            previous_status=previous,
            changed=True,
            call=call.to_dto(order.order_number) if call else None,
        )

    def sync_status_from_work(self, order_id: UUID, actor_id: UUID) -> StatusChangeResult:
        """
        Derive the order status from its tasks after timer activity.

        Only orders in received / pending / production / stopped move:
        every non-cancelled task completed -> quality_control; otherwise any
        open time log -> production; otherwise production -> stopped.
        """
        order = self._get(order_id, for_update=True)
        previous = OrderStatus(order.status)
        if not self.config.orders.auto_sync_status or previous not in WORK_SYNC_STATUSES:
            return StatusChangeResult(order=order.to_dto(), previous_status=previous, changed=False)

        statuses = self.session.execute(
            select(TaskModel.status).where(
                TaskModel.order_id == order.id,
                TaskModel.status != TaskStatus.CANCELLED.value,
            )
        ).scalars().all()
        has_open_log = self.session.execute(
            select(
                exists().where(
                    TimeLogModel.task_id == TaskModel.id,
                    TaskModel.order_id == order.id,
                    TimeLogModel.end_time.is_(None),
                )
            )
        ).scalar()

        if statuses and all(s == TaskStatus.COMPLETED.value for s in statuses):
            target = OrderStatus.QUALITY_CONTROL
        elif has_open_log:
            target = OrderStatus.PRODUCTION
        elif previous is OrderStatus.PRODUCTION:
            target = OrderStatus.STOPPED
        else:
            target = previous

        if target is previous:
            return StatusChangeResult(order=order.to_dto(), previous_status=previous, changed=False)

        self._set_status(order, target, actor_id)
        logger.info(
            "order_status_synced",
            extra={
                "order_id": str(order.id),
                "from_status": previous.value,
                "to_status": target.value,
            },
        )
        return StatusChangeResult(order=order.to_dto(), previous_status=previous, changed=True)

    def mark_invoiced(
        self,
        order: ServiceOrderModel,
        invoice_id: UUID,
        actor_id: UUID,
    ) -> None:
        """
        Freeze a locked ``to_invoice`` order into an invoice.

        Raises:
            DoubleBillingError: The order already belongs to an invoice.
            InvalidStatusTransitionError: The order is not ``to_invoice``.
        """
        if order.invoice_id is not None:
            raise DoubleBillingError(str(order.id), str(order.invoice_id))
        if self.workflow.find(order.status, OrderStatus.INVOICED.value) is None:
            raise InvalidStatusTransitionError(
                _ENTITY, str(order.id), order.status, OrderStatus.INVOICED.value
            )
        order.invoice_id = invoice_id
        self._set_status(order, OrderStatus.INVOICED, actor_id)

    def release_from_invoice(
        self,
        order: ServiceOrderModel,
        invoice_id: UUID,
        actor_id: UUID,
    ) -> bool:
        """
        Detach an order from a voided invoice.  A still-``invoiced`` order
        returns to ``to_invoice``.  Returns False if the order was not linked
        to ``invoice_id``.
        """
        if order.invoice_id != invoice_id:
            return False
        order.invoice_id = None
        if order.status == OrderStatus.INVOICED.value:
            self._set_status(order, OrderStatus.TO_INVOICE, actor_id)
        else:
            order.updated_by_id = actor_id
            self._flush(_ENTITY, order.id)
            self._changed(ChangedEntity.SERVICE_ORDER, order.id)
        return True

    # =========================================================================
    # Hold records
    # =========================================================================

    def resolve_call(self, call_id: UUID, actor_id: UUID) -> HoldCall:
        """
        Raises:
            CallNotFoundError: Unknown hold record.
            CallAlreadyResolvedError: Already resolved.
        """
        call = self.session.get(ServiceOrderCallModel, call_id)
        if call is None:
            raise CallNotFoundError(str(call_id))
        if call.resolved:
            raise CallAlreadyResolvedError(str(call.id))
        call.resolved = True
        call.resolved_by_id = actor_id
        call.resolved_at = self._now()
        call.updated_by_id = actor_id
        self.session.flush()
        self._changed(ChangedEntity.SERVICE_ORDER, call.order_id)
        logger.info(
            "call_resolved",
            extra={"call_id": str(call.id), "order_id": str(call.order_id)},
        )
        return call.to_dto(call.order.order_number)

    def list_calls(
        self,
        order_id: UUID | None = None,
        resolved: bool | None = None,
    ) -> list[HoldCall]:
        """Hold records, newest first."""
        stmt = select(ServiceOrderCallModel, ServiceOrderModel.order_number).join(
            ServiceOrderModel, ServiceOrderModel.id == ServiceOrderCallModel.order_id
        )
        if order_id is not None:
            stmt = stmt.where(ServiceOrderCallModel.order_id == order_id)
        if resolved is not None:
            stmt = stmt.where(ServiceOrderCallModel.resolved.is_(resolved))
        stmt = stmt.order_by(ServiceOrderCallModel.created_at.desc())
        return [call.to_dto(number) for call, number in self.session.execute(stmt).all()]

    # =========================================================================
    # Items and value
    # =========================================================================

    def _recompute_value(self, order: ServiceOrderModel, actor_id: UUID) -> None:
        if order.items:
            order.itemized = True
            order.sale_value = items_total(i.total_price for i in order.items)
        else:
            # last item removed: keep the value, it becomes manual
            order.itemized = False
        order.updated_by_id = actor_id

    def add_item(self, order_id: UUID, item: LineItemInput, actor_id: UUID) -> ServiceOrder:
        order = self._get(order_id)
        line = validate_line(item)
        position = max((i.position for i in order.items), default=0) + 1
        order.items.append(self._new_item(order, line, position, actor_id))
        self._recompute_value(order, actor_id)
        self._flush(_ENTITY, order.id)
        self._changed(ChangedEntity.SERVICE_ORDER, order.id)
        return order.to_dto()

    def update_item(
        self,
        item_id: UUID,
        actor_id: UUID,
        service_name: str | None = None,
        description: str | None = None,
        quantity: Decimal | int | str | None = None,
        unit_price: Decimal | int | str | None = None,
    ) -> ServiceOrder:
        item = self._get_item(item_id)
        order = self._get(item.order_id)

        if service_name is not None:
            item.service_name = validate_service_name(service_name)
        if description is not None:
            item.description = description.strip() or None
        if quantity is not None:
            item.quantity = validate_quantity(quantity)
        if unit_price is not None:
            item.unit_price = validate_unit_price(unit_price)
        item.total_price = line_total(item.quantity, item.unit_price)
        item.updated_by_id = actor_id

        self._recompute_value(order, actor_id)
        self._flush(_ENTITY, order.id)
        self._changed(ChangedEntity.SERVICE_ORDER, order.id)
        return order.to_dto()

    def remove_item(self, item_id: UUID, actor_id: UUID) -> ServiceOrder:
        item = self._get_item(item_id)
        order = self._get(item.order_id)
        order.items.remove(item)
        self._recompute_value(order, actor_id)
        self._flush(_ENTITY, order.id)
        self._changed(ChangedEntity.SERVICE_ORDER, order.id)
        return order.to_dto()

    def set_sale_value(
        self,
        order_id: UUID,
        value: Decimal | int | str,
        actor_id: UUID,
    ) -> ServiceOrder:
        """
        Set the manual price of an order without items.

        Raises:
            ValidationError: The order is itemized, or the value is negative.
        """
        order = self._get(order_id)
        if order.itemized:
            raise ValidationError("sale_value", "derived from items on an itemized order")
        amount = round_money(to_decimal(value, "sale_value"))
        if amount < 0:
            raise ValidationError("sale_value", f"must be >= 0, got {amount}")
        order.sale_value = amount
        order.updated_by_id = actor_id
        self._flush(_ENTITY, order.id)
        self._changed(ChangedEntity.SERVICE_ORDER, order.id)
        return order.to_dto()
