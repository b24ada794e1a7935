"""
WorkshopService -- transaction-owning facade over the fabshop modules.

Responsibility:
    One method per operation the presentation layer may call.  Each write
    method runs the module operation, commits, and only then publishes the
    buffered change events.  Any exception rolls the session back, drops the
    buffered events and re-raises the typed error unchanged.

Architecture position:
    Services layer.  Composes module services; module services never commit
    (they flush), so this is the single transaction boundary.

Composite operations:
    - Starting or stopping a timer also re-derives the order status from
      its tasks (``OrderLifecycleService.sync_status_from_work``) in the
      same transaction.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from fabshop_config import get_active_config
from fabshop_config.schema import ShopConfig
from fabshop_kernel.domain.clock import Clock, SystemClock
from fabshop_kernel.domain.notifications import ChangeNotifier, discard_pending
from fabshop_kernel.logging_config import LogContext, get_logger
from fabshop_kernel.models.party import PartyType, WorkerRole
from fabshop_kernel.services.party_service import PartyInfo, PartyService
from fabshop_modules.budgets import Budget, BudgetFilter, BudgetService, BudgetStatus
from fabshop_modules.invoicing import (
    BillableOrder,
    Invoice,
    InvoiceAggregationResult,
    InvoiceAggregator,
    InvoiceExtraInput,
)
from fabshop_modules.line_items import LineItemInput
from fabshop_modules.orders import (
    ConversionResult,
    HoldCall,
    OrderLifecycleService,
    OrderStatus,
    ServiceOrder,
    StatusChangeResult,
)
from fabshop_modules.reporting import ReportingSelector
from fabshop_modules.tasks import Task, TaskService, TaskStatus, TimeLog

logger = get_logger("services.workshop")

T = TypeVar("T")


class WorkshopService:
    """
    Facade for budgets, orders, tasks, invoices and reports.

    Transaction boundary: commits on success, rolls back on failure.
    Read methods do not end the transaction.
    """

    def __init__(
        self,
        session: Session,
        config: ShopConfig | None = None,
        clock: Clock | None = None,
        notifier: ChangeNotifier | None = None,
    ):
        self._session = session
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self.notifier = notifier or ChangeNotifier()

        self._parties = PartyService(session, self._clock)
        self._budgets = BudgetService(session, self._clock, self._config)
        self._orders = OrderLifecycleService(session, self._clock, self._config)
        self._tasks = TaskService(session, self._clock)
        self._invoices = InvoiceAggregator(session, self._clock, self._config)
        self.reports = ReportingSelector(session, self._config.reporting)

    @property
    def config(self) -> ShopConfig:
        return self._config

    def _commit(self, operation: str, work: Callable[[], T], **context: Any) -> T:
        with LogContext.bind(**context):
            try:
                result = work()
                self._session.commit()
            except Exception:
                self._session.rollback()
                dropped = discard_pending(self._session)
                logger.info(
                    "operation_rolled_back",
                    extra={"operation": operation, "discarded_events": dropped},
                )
                raise
            logger.debug("operation_committed", extra={"operation": operation})
            self.notifier.publish_pending(self._session)
            return result

    # =========================================================================
    # Parties
    # =========================================================================

    def create_client(
        self,
        name: str,
        actor_id: UUID,
        contact: str | None = None,
        address: str | None = None,
        email: str | None = None,
        document_id: str | None = None,
    ) -> PartyInfo:
        return self._commit(
            "create_client",
            lambda: self._parties.create_party(
                PartyType.CLIENT, name, actor_id,
                contact=contact, address=address, email=email, document_id=document_id,
            ),
            actor_id=actor_id,
        )

    def create_worker(
        self,
        name: str,
        actor_id: UUID,
        role: WorkerRole = WorkerRole.WORKER,
        contact: str | None = None,
        email: str | None = None,
    ) -> PartyInfo:
        return self._commit(
            "create_worker",
            lambda: self._parties.create_party(
                PartyType.WORKER, name, actor_id, contact=contact, email=email, role=role,
            ),
            actor_id=actor_id,
        )

    def update_party(self, party_id: UUID, actor_id: UUID, **fields: Any) -> PartyInfo:
        return self._commit(
            "update_party",
            lambda: self._parties.update_party(party_id, actor_id, **fields),
            actor_id=actor_id,
        )

    def deactivate_party(self, party_id: UUID, actor_id: UUID) -> PartyInfo:
        return self._commit(
            "deactivate_party",
            lambda: self._parties.deactivate(party_id, actor_id),
            actor_id=actor_id,
        )

    def get_party(self, party_id: UUID) -> PartyInfo:
        return self._parties.get_by_id(party_id)

    def list_clients(self, active_only: bool = True) -> list[PartyInfo]:
        return self._parties.list_by_type(PartyType.CLIENT, active_only)

    def list_workers(self, active_only: bool = True) -> list[PartyInfo]:
        return self._parties.list_by_type(PartyType.WORKER, active_only)

    # =========================================================================
    # Budgets
    # =========================================================================

    def create_budget(
        self,
        actor_id: UUID,
        items: Iterable[LineItemInput] = (),
        **fields: Any,
    ) -> Budget:
        """See ``BudgetService.create_budget`` for the accepted fields."""
        return self._commit(
            "create_budget",
            lambda: self._budgets.create_budget(actor_id, items=tuple(items), **fields),
            actor_id=actor_id,
        )

    def update_budget(self, budget_id: UUID, actor_id: UUID, **fields: Any) -> Budget:
        return self._commit(
            "update_budget",
            lambda: self._budgets.update_budget(budget_id, actor_id, **fields),
            actor_id=actor_id,
            budget_id=budget_id,
        )

    def delete_budget(self, budget_id: UUID, actor_id: UUID) -> None:
        return self._commit(
            "delete_budget",
            lambda: self._budgets.delete_budget(budget_id, actor_id),
            actor_id=actor_id,
            budget_id=budget_id,
        )

    def add_budget_item(self, budget_id: UUID, item: LineItemInput, actor_id: UUID) -> Budget:
        return self._commit(
            "add_budget_item",
            lambda: self._budgets.add_item(budget_id, item, actor_id),
            actor_id=actor_id,
            budget_id=budget_id,
        )

    def update_budget_item(self, item_id: UUID, actor_id: UUID, **fields: Any) -> Budget:
        return self._commit(
            "update_budget_item",
            lambda: self._budgets.update_item(item_id, actor_id, **fields),
            actor_id=actor_id,
        )

    def remove_budget_item(self, item_id: UUID, actor_id: UUID) -> Budget:
        return self._commit(
            "remove_budget_item",
            lambda: self._budgets.remove_item(item_id, actor_id),
            actor_id=actor_id,
        )

    def change_budget_status(
        self,
        budget_id: UUID,
        to_status: BudgetStatus | str,
        actor_id: UUID,
    ) -> Budget:
        return self._commit(
            "change_budget_status",
            lambda: self._budgets.change_status(budget_id, to_status, actor_id),
            actor_id=actor_id,
            budget_id=budget_id,
        )

    def expire_budgets(self, actor_id: UUID, as_of: date | None = None) -> list[UUID]:
        return self._commit(
            "expire_budgets",
            lambda: self._budgets.expire_overdue(actor_id, as_of),
            actor_id=actor_id,
        )

    def get_budget(self, budget_id: UUID) -> Budget:
        return self._budgets.get_budget(budget_id)

    def list_budgets(self, filters: BudgetFilter | None = None) -> list[Budget]:
        return self._budgets.list_budgets(filters)

    # =========================================================================
    # Orders
    # =========================================================================

    def convert_budget(self, budget_id: UUID, actor_id: UUID) -> ConversionResult:
        return self._commit(
            "convert_budget",
            lambda: self._orders.convert_budget(budget_id, actor_id),
            actor_id=actor_id,
            budget_id=budget_id,
        )

    def complete_item_migration(self, order_id: UUID, actor_id: UUID) -> int:
        return self._commit(
            "complete_item_migration",
            lambda: self._orders.complete_item_migration(order_id, actor_id),
            actor_id=actor_id,
            order_id=order_id,
        )

    def create_order(
        self,
        actor_id: UUID,
        items: Iterable[LineItemInput] = (),
        **fields: Any,
    ) -> ServiceOrder:
        """See ``OrderLifecycleService.create_order`` for the accepted fields."""
        return self._commit(
            "create_order",
            lambda: self._orders.create_order(actor_id, items=tuple(items), **fields),
            actor_id=actor_id,
        )

    def update_order(self, order_id: UUID, actor_id: UUID, **fields: Any) -> ServiceOrder:
        return self._commit(
            "update_order",
            lambda: self._orders.update_order(order_id, actor_id, **fields),
            actor_id=actor_id,
            order_id=order_id,
        )

    def assign_worker(
        self,
        order_id: UUID,
        worker_id: UUID | None,
        actor_id: UUID,
    ) -> ServiceOrder:
        return self._commit(
            "assign_worker",
            lambda: self._orders.assign_worker(order_id, worker_id, actor_id),
            actor_id=actor_id,
            order_id=order_id,
        )

    def change_order_status(
        self,
        order_id: UUID,
        to_status: OrderStatus | str,
        actor_id: UUID,
        reason: str | None = None,
        expected_status: OrderStatus | str | None = None,
    ) -> StatusChangeResult:
        return self._commit(
            "change_order_status",
            lambda: self._orders.change_status(
                order_id, to_status, actor_id, reason=reason, expected_status=expected_status
            ),
            actor_id=actor_id,
            order_id=order_id,
        )

    def resolve_call(self, call_id: UUID, actor_id: UUID) -> HoldCall:
        return self._commit(
            "resolve_call",
            lambda: self._orders.resolve_call(call_id, actor_id),
            actor_id=actor_id,
        )

    def add_order_item(self, order_id: UUID, item: LineItemInput, actor_id: UUID) -> ServiceOrder:
        return self._commit(
            "add_order_item",
            lambda: self._orders.add_item(order_id, item, actor_id),
            actor_id=actor_id,
            order_id=order_id,
        )

    def update_order_item(self, item_id: UUID, actor_id: UUID, **fields: Any) -> ServiceOrder:
        return self._commit(
            "update_order_item",
            lambda: self._orders.update_item(item_id, actor_id, **fields),
            actor_id=actor_id,
        )

    def remove_order_item(self, item_id: UUID, actor_id: UUID) -> ServiceOrder:
        return self._commit(
            "remove_order_item",
            lambda: self._orders.remove_item(item_id, actor_id),
            actor_id=actor_id,
        )

    def set_sale_value(
        self,
        order_id: UUID,
        value: Decimal | int | str,
        actor_id: UUID,
    ) -> ServiceOrder:
        return self._commit(
            "set_sale_value",
            lambda: self._orders.set_sale_value(order_id, value, actor_id),
            actor_id=actor_id,
            order_id=order_id,
        )

    def get_order(self, order_id: UUID) -> ServiceOrder:
        return self._orders.get_order(order_id)

    def list_orders(self, **filters: Any) -> list[ServiceOrder]:
        return self._orders.list_orders(**filters)

    def list_calls(
        self,
        order_id: UUID | None = None,
        resolved: bool | None = None,
    ) -> list[HoldCall]:
        return self._orders.list_calls(order_id=order_id, resolved=resolved)

    # =========================================================================
    # Tasks and time
    # =========================================================================

    def create_task(
        self,
        order_id: UUID,
        title: str,
        assigned_worker_id: UUID,
        actor_id: UUID,
        **fields: Any,
    ) -> Task:
        return self._commit(
            "create_task",
            lambda: self._tasks.create_task(order_id, title, assigned_worker_id, actor_id, **fields),
            actor_id=actor_id,
            order_id=order_id,
        )

    def update_task(self, task_id: UUID, actor_id: UUID, **fields: Any) -> Task:
        return self._commit(
            "update_task",
            lambda: self._tasks.update_task(task_id, actor_id, **fields),
            actor_id=actor_id,
        )

    def change_task_status(
        self,
        task_id: UUID,
        to_status: TaskStatus | str,
        actor_id: UUID,
        status_details: str | None = None,
    ) -> Task:
        def work() -> Task:
            task = self._tasks.change_task_status(task_id, to_status, actor_id, status_details)
            self._orders.sync_status_from_work(task.order_id, actor_id)
            return task

        return self._commit("change_task_status", work, actor_id=actor_id)

    def reassign_task(self, task_id: UUID, worker_id: UUID, actor_id: UUID) -> Task:
        return self._commit(
            "reassign_task",
            lambda: self._tasks.reassign_task(task_id, worker_id, actor_id),
            actor_id=actor_id,
        )

    def delete_task(self, task_id: UUID, actor_id: UUID) -> None:
        def work() -> None:
            order_id = self._tasks.delete_task(task_id, actor_id)
            self._orders.sync_status_from_work(order_id, actor_id)

        return self._commit("delete_task", work, actor_id=actor_id)

    def start_timer(
        self,
        task_id: UUID,
        worker_id: UUID,
        actor_id: UUID,
        start_time: datetime | None = None,
    ) -> TimeLog:
        """Open a time log and move the order into production when eligible."""
        def work() -> TimeLog:
            log = self._tasks.start_log(task_id, worker_id, actor_id, start_time)
            self._orders.sync_status_from_work(self._tasks.order_id_of_task(task_id), actor_id)
            return log

        return self._commit("start_timer", work, actor_id=actor_id)

    def stop_timer(
        self,
        time_log_id: UUID,
        actor_id: UUID,
        end_time: datetime | None = None,
        description: str | None = None,
    ) -> TimeLog:
        """Close a time log; a production order with no running timer stops."""
        def work() -> TimeLog:
            log = self._tasks.close_log(time_log_id, actor_id, end_time, description)
            self._orders.sync_status_from_work(self._tasks.order_id_of_task(log.task_id), actor_id)
            return log

        return self._commit("stop_timer", work, actor_id=actor_id)

    def record_time(
        self,
        task_id: UUID,
        worker_id: UUID,
        start_time: datetime,
        end_time: datetime,
        actor_id: UUID,
        description: str | None = None,
    ) -> TimeLog:
        return self._commit(
            "record_time",
            lambda: self._tasks.record_log(
                task_id, worker_id, start_time, end_time, actor_id, description
            ),
            actor_id=actor_id,
        )

    def remove_time_log(self, time_log_id: UUID, actor_id: UUID) -> None:
        def work() -> None:
            task_id = self._tasks.remove_log(time_log_id, actor_id)
            self._orders.sync_status_from_work(self._tasks.order_id_of_task(task_id), actor_id)

        return self._commit("remove_time_log", work, actor_id=actor_id)

    def get_task(self, task_id: UUID) -> Task:
        return self._tasks.get_task(task_id)

    def list_tasks(self, **filters: Any) -> list[Task]:
        return self._tasks.list_tasks(**filters)

    def worked_hours(
        self,
        order_id: UUID | None = None,
        task_id: UUID | None = None,
    ) -> Decimal:
        return self._tasks.worked_hours(order_id=order_id, task_id=task_id)

    # =========================================================================
    # Invoices
    # =========================================================================

    def select_billable(
        self,
        client_id: UUID,
        window_start: date,
        window_end: date,
    ) -> list[BillableOrder]:
        return self._invoices.select_billable(client_id, window_start, window_end)

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
        Aggregate billable orders into an invoice.

        A ``NO_BILLABLE_ORDERS`` result commits nothing but still ends the
        transaction normally; call ``result.unwrap()`` to get an exception.
        """
        extra_lines = tuple(extras)
        selection = tuple(order_ids) if order_ids is not None else None
        return self._commit(
            "create_invoice",
            lambda: self._invoices.create_invoice(
                client_id, window_start, window_end, actor_id,
                extras=extra_lines, order_ids=selection,
            ),
            actor_id=actor_id,
        )

    def void_invoice(self, invoice_id: UUID, actor_id: UUID, reason: str) -> Invoice:
        return self._commit(
            "void_invoice",
            lambda: self._invoices.void_invoice(invoice_id, actor_id, reason),
            actor_id=actor_id,
            invoice_id=invoice_id,
        )

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        return self._invoices.get_invoice(invoice_id)

    def list_invoices(
        self,
        client_id: UUID | None = None,
        include_void: bool = False,
    ) -> list[Invoice]:
        return self._invoices.list_invoices(client_id=client_id, include_void=include_void)

    def verify_invoice(self, invoice_id: UUID) -> Invoice:
        return self._invoices.verify_invoice(invoice_id)
