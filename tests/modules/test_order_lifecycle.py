"""
Tests for the Order Lifecycle Engine.

Validates:
- Budget conversion as one atomic unit (number, order, items, approval)
- Direct order creation rules
- The status state machine, including the on_hold hold record protocol
- Items as the source of truth for the sale value
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import SQLAlchemyError

from fabshop_config import ShopConfig
from fabshop_config.schema import BudgetsConfig, OrdersConfig
from fabshop_kernel.exceptions import (
    BudgetAlreadyConvertedError,
    BudgetExpiredError,
    BudgetNotFoundError,
    CallAlreadyResolvedError,
    CallNotFoundError,
    HoldReasonRequiredError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    PartyNotFoundError,
    StaleStateError,
    ValidationError,
)
from fabshop_modules.budgets import BudgetStatus
from fabshop_modules.line_items import LineItemInput
from fabshop_modules.orders import OrderLifecycleService, OrderStatus, Urgency
from fabshop_services import WorkshopService
from tests.factories import standard_items


class TestConvertBudget:

    def test_converted_order(self, workshop, make_budget, client, test_actor_id):
        budget = make_budget()
        result = workshop.convert_budget(budget.id, test_actor_id)
        order = result.order

        assert result.budget_number == "ORC-0001"
        assert result.migrated_items == 2
        assert order.order_number == "OS-0001"
        assert order.status == OrderStatus.PENDING
        assert order.budget_id == budget.id
        assert order.client_id == client.id
        assert order.client_name == "Metalurgica Horizonte"
        assert order.client_contact == "(31) 3333-0000"
        assert order.sale_value == Decimal("195.00")
        assert order.itemized is True
        assert order.urgency == Urgency.MEDIUM
        assert order.opening_date == date(2024, 1, 1)
        assert order.service_start_date == date(2024, 1, 1)
        assert order.invoice_id is None

    def test_items_copied_in_order(self, workshop, make_budget, test_actor_id):
        order = workshop.convert_budget(make_budget().id, test_actor_id).order
        assert [(i.position, i.service_name, i.total_price) for i in order.items] == [
            (1, "Corte a laser", Decimal("100.00")),
            (2, "Dobra", Decimal("95.00")),
        ]
        assert order.items[1].description == "chapa 3mm"

    def test_description_defaults_to_item_names(self, workshop, make_budget, test_actor_id):
        plain = workshop.convert_budget(make_budget().id, test_actor_id).order
        assert plain.service_description == "Corte a laser, Dobra"
        described = workshop.convert_budget(
            make_budget(description="Portao 3x2").id, test_actor_id
        ).order
        assert described.service_description == "Portao 3x2"

    def test_budget_becomes_approved(self, workshop, make_budget, test_actor_id):
        budget = make_budget()
        workshop.convert_budget(budget.id, test_actor_id)
        assert workshop.get_budget(budget.id).status == BudgetStatus.APPROVED

    def test_sent_budget_converts(self, workshop, make_budget, test_actor_id):
        budget = make_budget()
        workshop.change_budget_status(budget.id, "sent", test_actor_id)
        assert workshop.convert_budget(budget.id, test_actor_id).order.status == OrderStatus.PENDING

    def test_second_conversion_rejected(self, workshop, make_budget, test_actor_id):
        budget = make_budget()
        first = workshop.convert_budget(budget.id, test_actor_id)

        with pytest.raises(BudgetAlreadyConvertedError) as exc_info:
            workshop.convert_budget(budget.id, test_actor_id)

        assert exc_info.value.order_id == str(first.order.id)
        assert len(workshop.list_orders()) == 1

    @pytest.mark.parametrize("status", ["rejected", "expired"])
    def test_closed_budget_rejected(self, workshop, make_budget, test_actor_id, status):
        budget = make_budget()
        workshop.change_budget_status(budget.id, status, test_actor_id)
        with pytest.raises(InvalidStatusTransitionError):
            workshop.convert_budget(budget.id, test_actor_id)

    def test_past_validity_rejected(self, workshop, make_budget, test_actor_id):
        budget = make_budget(valid_until=date(2023, 12, 31))
        with pytest.raises(BudgetExpiredError) as exc_info:
            workshop.convert_budget(budget.id, test_actor_id)
        assert exc_info.value.valid_until == "2023-12-31"
        assert workshop.list_orders() == []

    def test_past_validity_allowed_when_configured(
        self, session, make_budget, deterministic_clock, test_actor_id
    ):
        budget = make_budget(valid_until=date(2023, 12, 31))
        lenient = WorkshopService(
            session,
            config=ShopConfig(budgets=BudgetsConfig(reject_expired=False)),
            clock=deterministic_clock,
        )
        assert lenient.convert_budget(budget.id, test_actor_id).order_number == "OS-0001"

    def test_budget_without_items_rejected(self, workshop, make_budget, test_actor_id):
        budget = make_budget(items=[])
        with pytest.raises(ValidationError) as exc_info:
            workshop.convert_budget(budget.id, test_actor_id)
        assert exc_info.value.field == "items"
        assert workshop.get_budget(budget.id).status == BudgetStatus.DRAFT

    def test_unknown_budget(self, workshop, test_actor_id):
        with pytest.raises(BudgetNotFoundError):
            workshop.convert_budget(uuid4(), test_actor_id)

    def test_conversion_logged(self, workshop, make_budget, test_actor_id, captured_logs):
        workshop.convert_budget(make_budget().id, test_actor_id)
        converted = [r for r in captured_logs() if r["message"] == "budget_converted"]
        assert converted[0]["order_number"] == "OS-0001"
        assert converted[0]["migrated_items"] == 2


class TestItemMigration:

    def test_noop_after_full_conversion(self, workshop, make_budget, test_actor_id):
        order = workshop.convert_budget(make_budget().id, test_actor_id).order
        assert workshop.complete_item_migration(order.id, test_actor_id) == 0

    def test_user_edits_survive_retry(self, workshop, make_budget, test_actor_id):
        order = workshop.convert_budget(make_budget().id, test_actor_id).order
        dobra = order.items[1]
        order = workshop.remove_order_item(dobra.id, test_actor_id)
        assert order.sale_value == Decimal("100.00")

        assert workshop.complete_item_migration(order.id, test_actor_id) == 0
        kept = workshop.get_order(order.id)
        assert [i.service_name for i in kept.items] == ["Corte a laser"]
        assert kept.sale_value == Decimal("100.00")

    def test_failed_copy_leaves_order_pending(
        self, workshop, make_budget, test_actor_id, captured_logs, monkeypatch
    ):
        budget = make_budget()

        def broken_copy(self, order, source_items, actor_id):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(OrderLifecycleService, "_migrate_items", broken_copy)
        result = workshop.convert_budget(budget.id, test_actor_id)
        monkeypatch.undo()

        assert result.items_pending is True
        assert result.migrated_items == 0
        assert result.order.items == ()
        assert result.order.sale_value == Decimal("195.00")
        assert workshop.get_budget(budget.id).status == BudgetStatus.APPROVED
        assert any(r["message"] == "order_items_pending" for r in captured_logs())

        assert workshop.complete_item_migration(result.order.id, test_actor_id) == 2
        completed = workshop.get_order(result.order.id)
        assert completed.items_pending is False
        assert [i.service_name for i in completed.items] == ["Corte a laser", "Dobra"]
        assert completed.sale_value == Decimal("195.00")

        assert workshop.complete_item_migration(result.order.id, test_actor_id) == 0
        assert len(workshop.get_order(result.order.id).items) == 2

    def test_direct_order_has_nothing_to_migrate(self, workshop, make_order, test_actor_id):
        assert workshop.complete_item_migration(make_order().id, test_actor_id) == 0


class TestCreateOrder:

    def test_defaults(self, make_order, client):
        order = make_order()
        assert order.order_number == "OS-0001"
        assert order.status == OrderStatus.RECEIVED
        assert order.budget_id is None
        assert order.sale_value == Decimal("100.00")
        assert order.itemized is False
        assert order.client_name == client.name
        assert order.service_start_date == date(2024, 1, 1)

    def test_start_status_limited(self, workshop, client, test_actor_id):
        pending = workshop.create_order(
            test_actor_id, client_id=client.id, service_description="Grade", status="pending"
        )
        assert pending.status == OrderStatus.PENDING
        with pytest.raises(ValidationError) as exc_info:
            workshop.create_order(
                test_actor_id, client_id=client.id, service_description="Grade", status="production"
            )
        assert exc_info.value.field == "status"

    def test_items_drive_value(self, workshop, client, test_actor_id):
        order = workshop.create_order(test_actor_id, items=standard_items(), client_id=client.id)
        assert order.itemized is True
        assert order.sale_value == Decimal("195.00")
        assert order.service_description == "Corte a laser, Dobra"
        assert [i.position for i in order.items] == [1, 2]

    def test_items_and_sale_value_conflict(self, workshop, client, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            workshop.create_order(
                test_actor_id, items=standard_items(), client_id=client.id, sale_value="10"
            )
        assert exc_info.value.field == "sale_value"

    def test_blank_description_without_items(self, workshop, client, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            workshop.create_order(test_actor_id, client_id=client.id, service_description="  ")
        assert exc_info.value.field == "service_description"

    def test_negative_value(self, make_order):
        with pytest.raises(ValidationError):
            make_order(sale_value="-1")

    def test_explicit_number_is_allocator_base(self, make_order):
        assert make_order(order_number="OS-LEGADO").order_number == "OS-LEGADO"
        assert make_order(order_number="OS-LEGADO").order_number == "OS-LEGADO-1"

    def test_unknown_worker(self, make_order, client):
        with pytest.raises(PartyNotFoundError):
            make_order(assigned_worker_id=client.id)

    def test_unknown_urgency(self, make_order):
        with pytest.raises(ValidationError) as exc_info:
            make_order(urgency="urgent")
        assert exc_info.value.field == "urgency"


class TestUpdateOrder:

    def test_header_fields(self, workshop, make_order, test_actor_id):
        order = make_order()
        updated = workshop.update_order(
            order.id,
            test_actor_id,
            urgency="high",
            deadline=date(2024, 2, 1),
            service_description="Portao deslizante",
        )
        assert updated.urgency == Urgency.HIGH
        assert updated.deadline == date(2024, 2, 1)
        assert updated.service_description == "Portao deslizante"

    def test_client_change_recopies_snapshot(self, workshop, make_order, other_client, test_actor_id):
        order = make_order()
        updated = workshop.update_order(order.id, test_actor_id, client_id=other_client.id)
        assert updated.client_name == "Serralheria Boa Vista"
        assert updated.client_address is None

    def test_assign_and_unassign_worker(self, workshop, make_order, worker, client, test_actor_id):
        order = make_order()
        assert workshop.assign_worker(order.id, worker.id, test_actor_id).assigned_worker_id == worker.id
        assert workshop.assign_worker(order.id, None, test_actor_id).assigned_worker_id is None
        with pytest.raises(PartyNotFoundError):
            workshop.assign_worker(order.id, client.id, test_actor_id)

    def test_unknown_order(self, workshop, test_actor_id):
        with pytest.raises(OrderNotFoundError):
            workshop.update_order(uuid4(), test_actor_id, urgency="low")
        with pytest.raises(OrderNotFoundError):
            workshop.get_order(uuid4())


class TestChangeStatus:

    def test_manual_change(self, workshop, make_order, test_actor_id):
        order = make_order()
        result = workshop.change_order_status(order.id, "production", test_actor_id)
        assert result.changed is True
        assert result.previous_status == OrderStatus.RECEIVED
        assert result.order.status == OrderStatus.PRODUCTION
        assert result.call is None

    def test_any_state_reachable_for_corrections(self, workshop, make_order, test_actor_id):
        order = make_order(status="delivered")
        result = workshop.change_order_status(order.id, OrderStatus.RECEIVED, test_actor_id)
        assert result.order.status == OrderStatus.RECEIVED

    def test_same_status_is_noop(self, workshop, make_order, test_actor_id, captured_logs):
        order = make_order(status="production")
        before = len(captured_logs())
        result = workshop.change_order_status(order.id, "production", test_actor_id)
        assert result.changed is False
        after = captured_logs()[before:]
        assert not [r for r in after if r["message"] == "order_status_changed"]

    def test_unknown_status(self, workshop, make_order, test_actor_id):
        with pytest.raises(ValidationError):
            workshop.change_order_status(make_order().id, "lost", test_actor_id)

    def test_expected_status_mismatch(self, workshop, make_order, test_actor_id):
        order = make_order(status="production")
        with pytest.raises(StaleStateError) as exc_info:
            workshop.change_order_status(
                order.id, "stopped", test_actor_id, expected_status="pending"
            )
        assert exc_info.value.expected == "pending"
        assert exc_info.value.actual == "production"
        assert workshop.get_order(order.id).status == OrderStatus.PRODUCTION

    def test_expected_status_match(self, workshop, make_order, test_actor_id):
        order = make_order(status="production")
        result = workshop.change_order_status(
            order.id, "stopped", test_actor_id, expected_status="production"
        )
        assert result.order.status == OrderStatus.STOPPED

    def test_invoiced_is_not_manual(self, workshop, make_order, test_actor_id):
        order = make_order(status="to_invoice")
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            workshop.change_order_status(order.id, "invoiced", test_actor_id)
        assert exc_info.value.to_status == "invoiced"
        assert workshop.get_order(order.id).status == OrderStatus.TO_INVOICE

    def test_terminal_reopen_allowed_by_default(self, workshop, make_order, test_actor_id):
        order = make_order(status="cancelled")
        assert workshop.change_order_status(order.id, "pending", test_actor_id).changed

    def test_strict_terminal_states(self, session, make_order, deterministic_clock, test_actor_id):
        order = make_order(status="completed")
        strict = WorkshopService(
            session,
            config=ShopConfig(orders=OrdersConfig(allow_reopen_terminal=False)),
            clock=deterministic_clock,
        )
        with pytest.raises(InvalidStatusTransitionError):
            strict.change_order_status(order.id, "production", test_actor_id)


class TestHoldProtocol:

    def test_reason_required(self, workshop, make_order, test_actor_id):
        order = make_order(status="production")
        with pytest.raises(HoldReasonRequiredError) as exc_info:
            workshop.change_order_status(order.id, "on_hold", test_actor_id)
        assert exc_info.value.field == "reason"
        with pytest.raises(HoldReasonRequiredError):
            workshop.change_order_status(order.id, "on_hold", test_actor_id, reason="   ")

        assert workshop.get_order(order.id).status == OrderStatus.PRODUCTION
        assert workshop.list_calls(order.id) == []

    def test_hold_creates_call(self, workshop, make_order, test_actor_id):
        order = make_order(status="production")
        result = workshop.change_order_status(
            order.id, "on_hold", test_actor_id, reason="  aguardando chapa  "
        )

        assert result.order.status == OrderStatus.ON_HOLD
        assert result.call.reason == "aguardando chapa"
        assert result.call.resolved is False
        assert result.call.order_number == order.order_number
        calls = workshop.list_calls(order.id)
        assert [c.id for c in calls] == [result.call.id]

    def test_repeated_hold_is_noop(self, workshop, make_order, test_actor_id):
        order = make_order(status="on_hold")
        result = workshop.change_order_status(order.id, "on_hold", test_actor_id, reason="again")
        assert result.changed is False
        assert result.call is None
        assert len(workshop.list_calls(order.id)) == 1

    def test_failed_status_write_discards_call(
        self, workshop, make_order, test_actor_id, monkeypatch
    ):
        order = make_order(status="production")

        def boom(self, order, target, actor_id):
            raise RuntimeError("status write failed")

        monkeypatch.setattr(OrderLifecycleService, "_set_status", boom)
        with pytest.raises(RuntimeError):
            workshop.change_order_status(order.id, "on_hold", test_actor_id, reason="sem energia")
        monkeypatch.undo()

        assert workshop.list_calls(order.id) == []
        assert workshop.get_order(order.id).status == OrderStatus.PRODUCTION

    def test_resolve_call(self, workshop, make_order, test_actor_id):
        order = make_order(status="on_hold")
        call = workshop.list_calls(order.id)[0]

        resolved = workshop.resolve_call(call.id, test_actor_id)
        assert resolved.resolved is True
        assert resolved.resolved_by_id == test_actor_id
        assert resolved.resolved_at is not None
        # resolving does not move the order
        assert workshop.get_order(order.id).status == OrderStatus.ON_HOLD

        with pytest.raises(CallAlreadyResolvedError):
            workshop.resolve_call(call.id, test_actor_id)

    def test_unknown_call(self, workshop, test_actor_id):
        with pytest.raises(CallNotFoundError):
            workshop.resolve_call(uuid4(), test_actor_id)

    def test_list_calls_by_resolution(self, workshop, make_order, test_actor_id):
        first = make_order(status="on_hold")
        make_order(status="on_hold")
        workshop.resolve_call(workshop.list_calls(first.id)[0].id, test_actor_id)

        assert len(workshop.list_calls()) == 2
        assert len(workshop.list_calls(resolved=False)) == 1
        assert [c.order_id for c in workshop.list_calls(resolved=True)] == [first.id]


class TestItemsAndValue:

    def test_item_edits_recompute_value(self, workshop, client, test_actor_id):
        order = workshop.create_order(test_actor_id, items=standard_items(), client_id=client.id)
        order = workshop.add_order_item(order.id, LineItemInput("Pintura", 2, "25.00"), test_actor_id)
        assert order.sale_value == Decimal("245.00")
        assert order.items[-1].position == 3

        order = workshop.update_order_item(order.items[0].id, test_actor_id, unit_price="60")
        assert order.sale_value == Decimal("265.00")

    def test_first_item_replaces_manual_value(self, workshop, make_order, test_actor_id):
        order = make_order(sale_value="500.00")
        order = workshop.add_order_item(order.id, LineItemInput("Solda", 1, "80"), test_actor_id)
        assert order.itemized is True
        assert order.sale_value == Decimal("80.00")

    def test_removing_last_item_keeps_value(self, workshop, make_order, test_actor_id):
        order = make_order()
        order = workshop.add_order_item(order.id, LineItemInput("Solda", 1, "80"), test_actor_id)
        order = workshop.remove_order_item(order.items[0].id, test_actor_id)
        assert order.items == ()
        assert order.itemized is False
        assert order.sale_value == Decimal("80.00")

    def test_manual_value(self, workshop, make_order, test_actor_id):
        order = make_order()
        assert workshop.set_sale_value(order.id, "350.5", test_actor_id).sale_value == Decimal("350.50")
        with pytest.raises(ValidationError):
            workshop.set_sale_value(order.id, "-0.01", test_actor_id)

    def test_manual_value_rejected_when_itemized(self, workshop, client, test_actor_id):
        order = workshop.create_order(test_actor_id, items=standard_items(), client_id=client.id)
        with pytest.raises(ValidationError) as exc_info:
            workshop.set_sale_value(order.id, "10", test_actor_id)
        assert exc_info.value.field == "sale_value"
        assert workshop.get_order(order.id).sale_value == Decimal("195.00")


class TestListOrders:

    def test_filters(self, workshop, make_order, other_client, worker, test_actor_id):
        first = make_order(status="production")
        second = make_order(client_id=other_client.id, assigned_worker_id=worker.id)

        assert [o.id for o in workshop.list_orders(status="production")] == [first.id]
        assert [o.id for o in workshop.list_orders(client_id=other_client.id)] == [second.id]
        assert [o.id for o in workshop.list_orders(assigned_worker_id=worker.id)] == [second.id]
        assert [o.id for o in workshop.list_orders(search="boa vista")] == [second.id]

    def test_newest_first(self, workshop, make_order, deterministic_clock):
        make_order()
        deterministic_clock.advance_hours(1)
        make_order()
        assert [o.order_number for o in workshop.list_orders()] == ["OS-0002", "OS-0001"]
