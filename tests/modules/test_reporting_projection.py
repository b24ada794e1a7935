"""
Tests for the Reporting Projection.

Validates:
- Zero-filled status histogram
- Open orders and open tasks (deadline first, undated last)
- Worker productivity figures
- Time entries and export rows recomputed from current rows
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from fabshop_kernel.exceptions import ValidationError
from fabshop_modules.orders import OrderStatus
from tests.factories import standard_items

T0 = datetime(2024, 1, 10, 8, 0, tzinfo=timezone.utc)


def _task(workshop, order, worker, actor_id, title="Soldar", **fields):
    return workshop.create_task(order.id, title, worker.id, actor_id, **fields)


def _hours(workshop, task, worker, actor_id, hours, start=T0):
    return workshop.record_time(task.id, worker.id, start, start + timedelta(hours=hours), actor_id)


class TestStatusHistogram:

    def test_zero_filled(self, workshop):
        histogram = workshop.reports.status_histogram()
        counts = histogram.as_dict()
        assert set(counts) == {s.value for s in OrderStatus}
        assert histogram.total == 0

    def test_counts(self, workshop, make_order):
        make_order()
        make_order(status="production")
        make_order(status="production")
        counts = workshop.reports.status_histogram().as_dict()
        assert counts["received"] == 1
        assert counts["production"] == 2
        assert counts["invoiced"] == 0

    def test_creation_window(self, workshop, make_order, deterministic_clock):
        make_order()
        deterministic_clock.advance_hours(48)
        make_order()
        histogram = workshop.reports.status_histogram(date_from=date(2024, 1, 2))
        assert histogram.total == 1
        assert histogram.date_from == date(2024, 1, 2)


class TestOpenOrders:

    def test_closed_states_excluded(self, workshop, make_order, worker):
        open_order = make_order(status="production", assigned_worker_id=worker.id)
        make_order(status="completed")
        make_order(status="delivered")
        make_order(status="cancelled")

        rows = workshop.reports.open_orders()
        assert [r.order_id for r in rows] == [open_order.id]
        assert rows[0].status == "production"
        assert rows[0].assigned_worker_name == "Joao Soldador"
        assert rows[0].sale_value == Decimal("100.00")


class TestOpenTasks:

    def test_deadline_order_with_undated_last(self, workshop, make_order, worker, test_actor_id):
        order = make_order()
        undated = _task(workshop, order, worker, test_actor_id, title="Sem prazo")
        late = _task(workshop, order, worker, test_actor_id, title="Tarde", deadline=date(2024, 2, 1))
        soon = _task(workshop, order, worker, test_actor_id, title="Logo", deadline=date(2024, 1, 5))
        done = _task(workshop, order, worker, test_actor_id, title="Feita")
        workshop.change_task_status(done.id, "completed", test_actor_id)

        rows = workshop.reports.open_tasks()
        assert [r.task_id for r in rows] == [soon.id, late.id, undated.id]
        assert rows[0].order_number == order.order_number
        assert rows[0].worker_name == "Joao Soldador"

    def test_worker_filter(self, workshop, make_order, worker, second_worker, test_actor_id):
        order = make_order()
        _task(workshop, order, worker, test_actor_id)
        theirs = _task(workshop, order, second_worker, test_actor_id, title="Tornear")
        rows = workshop.reports.open_tasks(worker_id=second_worker.id)
        assert [r.task_id for r in rows] == [theirs.id]


class TestWorkerProductivity:

    def test_figures(self, workshop, make_order, worker, second_worker, test_actor_id):
        order = make_order()
        first = _task(workshop, order, worker, test_actor_id)
        _task(workshop, order, worker, test_actor_id, title="Pintar")
        workshop.change_task_status(first.id, "completed", test_actor_id)
        _hours(workshop, first, worker, test_actor_id, 3)

        lathe = [_task(workshop, order, second_worker, test_actor_id, title=f"Peca {n}") for n in range(3)]
        workshop.change_task_status(lathe[0].id, "completed", test_actor_id)

        rows = {r.worker_name: r for r in workshop.reports.worker_productivity()}

        joao = rows["Joao Soldador"]
        assert joao.total_tasks == 2
        assert joao.completed_tasks == 1
        assert joao.total_hours == Decimal("3")
        assert joao.average_hours_per_task == Decimal("1.5")
        assert joao.completion_rate == Decimal("50.00")

        maria = rows["Maria Torneira"]
        assert maria.total_hours == Decimal("0")
        assert maria.completion_rate == Decimal("33.33")

    def test_open_logs_do_not_count(self, workshop, make_order, worker, test_actor_id):
        order = make_order()
        task = _task(workshop, order, worker, test_actor_id)
        workshop.start_timer(task.id, worker.id, test_actor_id)
        (row,) = workshop.reports.worker_productivity()
        assert row.total_hours == Decimal("0")

    def test_workers_without_activity_omitted(self, workshop, worker):
        assert workshop.reports.worker_productivity() == []

    def test_hours_window_uses_log_start(self, workshop, make_order, worker, test_actor_id):
        order = make_order()
        task = _task(workshop, order, worker, test_actor_id)
        _hours(workshop, task, worker, test_actor_id, 2)
        _hours(workshop, task, worker, test_actor_id, 5, start=T0 + timedelta(days=30))

        (row,) = workshop.reports.worker_productivity(date_from=date(2024, 1, 1), date_to=date(2024, 1, 31))
        assert row.total_hours == Decimal("2")


class TestTimeEntries:

    def test_closed_logs_only(self, workshop, make_order, worker, second_worker, test_actor_id):
        order = make_order()
        task = _task(workshop, order, worker, test_actor_id)
        log = _hours(workshop, task, worker, test_actor_id, 1.5)
        workshop.start_timer(task.id, second_worker.id, test_actor_id)

        entries = workshop.reports.time_entries()
        assert [e.time_log_id for e in entries] == [log.id]
        entry = entries[0]
        assert entry.order_number == order.order_number
        assert entry.task_title == "Soldar"
        assert entry.worker_name == "Joao Soldador"
        assert entry.hours_worked == Decimal("1.5")

    def test_worker_and_window_filters(self, workshop, make_order, worker, second_worker, test_actor_id):
        order = make_order()
        task = _task(workshop, order, worker, test_actor_id)
        _hours(workshop, task, worker, test_actor_id, 1)
        other = _hours(workshop, task, second_worker, test_actor_id, 1, start=T0 + timedelta(days=1))

        assert [e.time_log_id for e in workshop.reports.time_entries(worker_id=second_worker.id)] == [other.id]
        assert [e.time_log_id for e in workshop.reports.time_entries(date_from=date(2024, 1, 11))] == [other.id]


class TestOrderExportView:

    def test_resolved_rows(self, workshop, client, worker, test_actor_id):
        order = workshop.create_order(
            test_actor_id, items=standard_items(), client_id=client.id, assigned_worker_id=worker.id
        )
        task = _task(workshop, order, worker, test_actor_id)
        _hours(workshop, task, worker, test_actor_id, 2)

        (row,) = workshop.reports.order_export_view()
        assert row.order_number == "OS-0001"
        assert row.client_contact == "(31) 3333-0000"
        assert row.assigned_worker_name == "Joao Soldador"
        assert [i.service_name for i in row.items] == ["Corte a laser", "Dobra"]
        assert row.items_total == Decimal("195.00")
        assert row.sale_value == Decimal("195.00")
        assert row.worked_hours == Decimal("2")

    def test_status_filter(self, workshop, make_order):
        make_order()
        shipped = make_order(status="in_transit")
        rows = workshop.reports.order_export_view(status=OrderStatus.IN_TRANSIT)
        assert [r.order_id for r in rows] == [shipped.id]
        assert rows[0].items == ()
        assert rows[0].worked_hours == Decimal("0")

    def test_unknown_status_filter(self, workshop):
        with pytest.raises(ValidationError) as exc_info:
            workshop.reports.order_export_view(status="lost")
        assert exc_info.value.field == "status"

    def test_reflects_current_rows(self, workshop, make_order, test_actor_id):
        order = make_order()
        workshop.set_sale_value(order.id, "42.00", test_actor_id)
        (row,) = workshop.reports.order_export_view()
        assert row.sale_value == Decimal("42.00")
