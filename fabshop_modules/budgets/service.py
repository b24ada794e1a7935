"""
Budget Store (``fabshop_modules.budgets.service``).

Responsibility
--------------
CRUD and status for quotes and their line items.

* Budget numbers come from a locked counter (``ORC-0001``, ``ORC-0002``...)
  unless the caller supplies one (imported or hand-numbered quotes).
* Item totals and the budget total are recomputed on every edit.
* Only the owning user may edit a budget, and only until it is approved.
* ``approved`` is reserved for conversion; see
  ``fabshop_modules.orders.service.OrderLifecycleService.convert_budget``.

This service flushes; the caller owns the transaction.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from fabshop_config.schema import ShopConfig
from fabshop_kernel.domain.clock import Clock, day_bounds
from fabshop_kernel.domain.notifications import ChangeAction, ChangedEntity
from fabshop_kernel.domain.workflow import state_key
from fabshop_kernel.exceptions import (
    BudgetItemNotFoundError,
    BudgetLockedError,
    BudgetNotFoundError,
    InvalidStatusTransitionError,
    OwnershipError,
    ValidationError,
)
from fabshop_kernel.logging_config import get_logger
from fabshop_kernel.services.base import BaseService
from fabshop_kernel.services.party_service import ClientSnapshot, PartyService
from fabshop_kernel.services.sequence_service import SequenceService, format_number
from fabshop_modules.budgets.models import (
    Budget,
    BudgetFilter,
    BudgetStatus,
    CONVERTIBLE_STATUSES,
)
from fabshop_modules.budgets.orm import BudgetItemModel, BudgetModel
from fabshop_modules.budgets.workflows import BUDGET_WORKFLOW
from fabshop_modules.line_items import (
    LineItemInput,
    items_total,
    line_total,
    validate_line,
    validate_quantity,
    validate_service_name,
    validate_unit_price,
)

logger = get_logger("modules.budgets.service")

_ENTITY = "budget"


class BudgetService(BaseService[BudgetModel]):
    """
    Write side of the Budget Store.

    Returns ``Budget`` DTOs.  Mutations verify ownership and lock state
    before touching any row.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: ShopConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or ShopConfig()
        self._parties = PartyService(session, self.clock)

    # =========================================================================
    # Lookups
    # =========================================================================

    def _get(self, budget_id: UUID, for_update: bool = False) -> BudgetModel:
        stmt = (
            select(BudgetModel)
            .where(BudgetModel.id == budget_id)
            .options(selectinload(BudgetModel.items))
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        budget = self.session.execute(stmt).scalar_one_or_none()
        if budget is None:
            raise BudgetNotFoundError(str(budget_id))
        return budget

    def _get_item(self, item_id: UUID) -> BudgetItemModel:
        item = self.session.get(BudgetItemModel, item_id)
        if item is None:
            raise BudgetItemNotFoundError(str(item_id))
        return item

    def _editable(self, budget_id: UUID, actor_id: UUID) -> BudgetModel:
        budget = self._get(budget_id)
        if budget.status == BudgetStatus.APPROVED.value:
            raise BudgetLockedError(str(budget.id), budget.status)
        if budget.created_by_id != actor_id:
            raise OwnershipError(_ENTITY, str(budget.id), str(actor_id), str(budget.created_by_id))
        return budget

    def lock_for_conversion(self, budget_id: UUID) -> BudgetModel:
        """Re-read the budget with a row lock for the conversion unit."""
        return self._get(budget_id, for_update=True)

    def get_budget(self, budget_id: UUID) -> Budget:
        return self._get(budget_id).to_dto()

    def list_budgets(self, filters: BudgetFilter | None = None) -> list[Budget]:
        """
        List budgets, newest first.

        ``search`` matches budget number or client name (case-insensitive);
        ``date_from`` / ``date_to`` bound the creation date, inclusive.
        """
        f = filters or BudgetFilter()
        stmt = select(BudgetModel).options(selectinload(BudgetModel.items))
        if f.search:
            pattern = f"%{f.search.strip()}%"
            stmt = stmt.where(
                or_(
                    BudgetModel.budget_number.ilike(pattern),
                    BudgetModel.client_name.ilike(pattern),
                )
            )
        if f.status is not None:
            stmt = stmt.where(BudgetModel.status == state_key(f.status))
        if f.client_name:
            stmt = stmt.where(BudgetModel.client_name.ilike(f"%{f.client_name.strip()}%"))
        if f.client_id is not None:
            stmt = stmt.where(BudgetModel.client_id == f.client_id)
        start, end = day_bounds(f.date_from, f.date_to)
        if start is not None:
            stmt = stmt.where(BudgetModel.created_at >= start)
        if end is not None:
            stmt = stmt.where(BudgetModel.created_at < end)
        stmt = stmt.order_by(BudgetModel.created_at.desc(), BudgetModel.budget_number.desc())
        return [b.to_dto() for b in self.session.execute(stmt).scalars()]

    # =========================================================================
    # Create / update
    # =========================================================================

    def _snapshot(
        self,
        client_id: UUID | None,
        client_name: str | None,
        client_contact: str | None,
        client_address: str | None,
    ) -> ClientSnapshot:
        return self._parties.resolve_snapshot(
            client_id, client_name, client_contact, client_address
        )

    def _next_number(self) -> str:
        numbering = self.config.numbering
        value = SequenceService(self.session).next_value(SequenceService.BUDGET)
        return format_number(
            numbering.quote_prefix, value, numbering.padding, numbering.separator
        )

    def create_budget(
        self,
        actor_id: UUID,
        client_id: UUID | None = None,
        client_name: str | None = None,
        client_contact: str | None = None,
        client_address: str | None = None,
        description: str | None = None,
        valid_until: date | None = None,
        items: Iterable[LineItemInput] = (),
        status: BudgetStatus | str | None = None,
        budget_number: str | None = None,
    ) -> Budget:
        """
        Create a budget with its items.

        Args:
            actor_id: Owning user.
            client_id: Optional client; its name/contact/address are copied.
                Explicit client_* arguments override the copied values.
            status: ``draft`` or ``pending``; defaults to configuration.
            budget_number: Explicit number; minted from the counter if omitted.

        Raises:
            ValidationError: Missing client name, bad item or start status.
            PartyNotFoundError: Unknown client_id.
        """
        start_status = BudgetStatus(state_key(status or self.config.budgets.default_status))
        if start_status not in (BudgetStatus.DRAFT, BudgetStatus.PENDING):
            raise ValidationError("status", "a budget starts as draft or pending")
        snapshot = self._snapshot(client_id, client_name, client_contact, client_address)
        lines = [validate_line(item) for item in items]
        if budget_number is not None:
            budget_number = budget_number.strip()
            if not budget_number.startswith(self.config.numbering.quote_prefix):
                raise ValidationError(
                    "budget_number",
                    f"must start with {self.config.numbering.quote_prefix!r}",
                )
        now = self._now()

        budget = BudgetModel(
            budget_number=budget_number or self._next_number(),
            client_id=snapshot.client_id,
            client_name=snapshot.name,
            client_contact=snapshot.contact,
            client_address=snapshot.address,
            description=description,
            valid_until=valid_until,
            status=start_status.value,
            total_value=items_total(line.total_price for line in lines),
            created_at=now,
            created_by_id=actor_id,
        )
        for position, line in enumerate(lines, start=1):
            budget.items.append(
                BudgetItemModel(
                    position=position,
                    service_name=line.service_name,
                    description=line.description,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total_price=line.total_price,
                    created_at=now,
                    created_by_id=actor_id,
                )
            )
        self.session.add(budget)
        self.session.flush()
        self._changed(ChangedEntity.BUDGET, budget.id, ChangeAction.CREATED)

        logger.info(
            "budget_created",
            extra={
                "budget_id": str(budget.id),
                "budget_number": budget.budget_number,
                "item_count": len(lines),
                "total_value": str(budget.total_value),
            },
        )
        return budget.to_dto()

    def update_budget(
        self,
        budget_id: UUID,
        actor_id: UUID,
        description: str | None = None,
        valid_until: date | None = None,
        client_id: UUID | None = None,
        client_name: str | None = None,
        client_contact: str | None = None,
        client_address: str | None = None,
    ) -> Budget:
        """Update header fields.  Passing ``client_id`` re-copies the snapshot."""
        budget = self._editable(budget_id, actor_id)

        if client_id is not None:
            snapshot = self._snapshot(client_id, client_name, client_contact, client_address)
            budget.client_id = snapshot.client_id
            budget.client_name = snapshot.name
            budget.client_contact = snapshot.contact
            budget.client_address = snapshot.address
        else:
            if client_name is not None:
                if not client_name.strip():
                    raise ValidationError("client_name", "must not be blank")
                budget.client_name = client_name.strip()
            if client_contact is not None:
                budget.client_contact = client_contact
            if client_address is not None:
                budget.client_address = client_address
        if description is not None:
            budget.description = description
        if valid_until is not None:
            budget.valid_until = valid_until

        budget.updated_by_id = actor_id
        self._flush(_ENTITY, budget.id)
        self._changed(ChangedEntity.BUDGET, budget.id)
        return budget.to_dto()

    def delete_budget(self, budget_id: UUID, actor_id: UUID) -> None:
        """Delete an unapproved budget owned by the actor."""
        budget = self._editable(budget_id, actor_id)
        self.session.delete(budget)
        self._flush(_ENTITY, budget_id)
        self._changed(ChangedEntity.BUDGET, budget_id, ChangeAction.DELETED)
        logger.info(
            "budget_deleted",
            extra={"budget_id": str(budget_id), "budget_number": budget.budget_number},
        )

    # =========================================================================
    # Items
    # =========================================================================

    def _recompute_total(self, budget: BudgetModel, actor_id: UUID) -> None:
        budget.total_value = items_total(item.total_price for item in budget.items)
        budget.updated_by_id = actor_id

    def add_item(self, budget_id: UUID, item: LineItemInput, actor_id: UUID) -> Budget:
        budget = self._editable(budget_id, actor_id)
        line = validate_line(item)
        position = max((i.position for i in budget.items), default=0) + 1
        budget.items.append(
            BudgetItemModel(
                position=position,
                service_name=line.service_name,
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
                created_at=self._now(),
                created_by_id=actor_id,
            )
        )
        self._recompute_total(budget, actor_id)
        self._flush(_ENTITY, budget.id)
        self._changed(ChangedEntity.BUDGET, budget.id)
        return budget.to_dto()

    def update_item(
        self,
        item_id: UUID,
        actor_id: UUID,
        service_name: str | None = None,
        description: str | None = None,
        quantity: Decimal | int | str | None = None,
        unit_price: Decimal | int | str | None = None,
    ) -> Budget:
        """Edit one item; its total and the budget total are recomputed."""
        item = self._get_item(item_id)
        budget = self._editable(item.budget_id, actor_id)

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

        self._recompute_total(budget, actor_id)
        self._flush(_ENTITY, budget.id)
        self._changed(ChangedEntity.BUDGET, budget.id)
        return budget.to_dto()

    def remove_item(self, item_id: UUID, actor_id: UUID) -> Budget:
        item = self._get_item(item_id)
        budget = self._editable(item.budget_id, actor_id)
        budget.items.remove(item)
        self._recompute_total(budget, actor_id)
        self._flush(_ENTITY, budget.id)
        self._changed(ChangedEntity.BUDGET, budget.id)
        return budget.to_dto()

    # =========================================================================
    # Status
    # =========================================================================

    def change_status(
        self,
        budget_id: UUID,
        to_status: BudgetStatus | str,
        actor_id: UUID,
    ) -> Budget:
        """
        Manual status change (send, reject, expire, reopen).

        Raises:
            InvalidStatusTransitionError: Not in the workflow, or ``approved``
                requested manually.
            BudgetLockedError / OwnershipError: See ``_editable``.
        """
        target = BudgetStatus(state_key(to_status))
        budget = self._editable(budget_id, actor_id)
        if budget.status == target.value:
            return budget.to_dto()

        transition = BUDGET_WORKFLOW.find(budget.status, target)
        if transition is None or transition.system_only:
            raise InvalidStatusTransitionError(_ENTITY, str(budget.id), budget.status, target.value)

        previous = budget.status
        budget.status = target.value
        budget.updated_by_id = actor_id
        self._flush(_ENTITY, budget.id)
        self._changed(ChangedEntity.BUDGET, budget.id)
        logger.info(
            "budget_status_changed",
            extra={
                "budget_id": str(budget.id),
                "from_status": previous,
                "to_status": target.value,
            },
        )
        return budget.to_dto()

    def mark_approved(self, budget: BudgetModel, actor_id: UUID) -> None:
        """Flip a locked budget to approved as the last step of conversion."""
        if BudgetStatus(budget.status) not in CONVERTIBLE_STATUSES:
            raise InvalidStatusTransitionError(
                _ENTITY, str(budget.id), budget.status, BudgetStatus.APPROVED.value
            )
        budget.status = BudgetStatus.APPROVED.value
        budget.updated_by_id = actor_id
        self._flush(_ENTITY, budget.id)
        self._changed(ChangedEntity.BUDGET, budget.id)

    def expire_overdue(self, actor_id: UUID, as_of: date | None = None) -> list[UUID]:
        """
        Move open budgets whose ``valid_until`` is before ``as_of`` (default
        today) to ``expired``.  Returns the ids that changed.
        """
        today = as_of or self.clock.today()
        stmt = select(BudgetModel).where(
            BudgetModel.status.in_([s.value for s in CONVERTIBLE_STATUSES]),
            BudgetModel.valid_until.is_not(None),
            BudgetModel.valid_until < today,
        )
        expired: list[UUID] = []
        for budget in self.session.execute(stmt).scalars():
            budget.status = BudgetStatus.EXPIRED.value
            budget.updated_by_id = actor_id
            expired.append(budget.id)
        if expired:
            self.session.flush()
            for budget_id in expired:
                self._changed(ChangedEntity.BUDGET, budget_id)
            logger.info(
                "budgets_expired",
                extra={"count": len(expired), "as_of": today.isoformat()},
            )
        return expired
