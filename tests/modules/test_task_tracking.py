"""
Tests for Task & Time Tracking.

Validates:
- Task creation against existing orders and workers
- One open log per (task, worker); hours derived on close
- Closed logs protect a task from deletion
- Timer activity drives the order status
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from fabshop_kernel.exceptions import (
    InvalidTimeRangeError,
    OpenTimeLogExistsError,
    OrderNotFoundError,
    PartyNotFoundError,
    TaskHasTimeLogsError,
    TaskNotFoundError,
    TimeLogAlreadyClosedError,
    ValidationError,
)
from fabshop_modules.orders import OrderStatus
from fabshop_modules.tasks import TaskPriority, TaskService, TaskStatus

T0 = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def order(make_order):
    return make_order()


@pytest.fixture
def make_task(workshop, order, worker, test_actor_id):
    def _make(title="Soldar estrutura", order_id=None, worker_id=None, **fields):
        return workshop.create_task(
            order_id or order.id, title, worker_id or worker.id, test_actor_id, **fields
        )

    return _make


class TestCreateTask:

    def test_defaults(self, make_task, order, worker):
        task = make_task()
        assert task.order_id == order.id
        assert task.assigned_worker_id == worker.id
        assert task.status == TaskStatus.PENDING
        assert task.priority == TaskPriority.MEDIUM
        assert task.estimated_hours == Decimal("0")
        assert task.time_logs == ()

    def test_fields(self, make_task):
        task = make_task(title="  Pintar  ", priority="high", estimated_hours="2.5")
        assert task.title == "Pintar"
        assert task.priority == TaskPriority.HIGH
        assert task.estimated_hours == Decimal("2.5")

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"title": "   "}, "title"),
            ({"estimated_hours": "-1"}, "estimated_hours"),
            ({"priority": "urgent"}, "priority"),
        ],
    )
    def test_invalid_fields(self, make_task, kwargs, field):
        with pytest.raises(ValidationError) as exc_info:
            make_task(**kwargs)
        assert exc_info.value.field == field

    def test_unknown_order(self, make_task):
        with pytest.raises(OrderNotFoundError):
            make_task(order_id=uuid4())

    def test_worker_must_be_a_worker(self, make_task, client):
        with pytest.raises(PartyNotFoundError):
            make_task(worker_id=client.id)

    def test_update_and_reassign(self, workshop, make_task, second_worker, test_actor_id):
        task = make_task()
        task = workshop.update_task(task.id, test_actor_id, title="Soldar base", status_details="falta eletrodo")
        assert task.title == "Soldar base"
        assert task.status_details == "falta eletrodo"
        task = workshop.reassign_task(task.id, second_worker.id, test_actor_id)
        assert task.assigned_worker_id == second_worker.id

    def test_list_filters(self, workshop, make_task, second_worker, order, test_actor_id):
        first = make_task()
        second = make_task(title="Pintar", worker_id=second_worker.id)
        workshop.change_task_status(second.id, "completed", test_actor_id)

        # same creation instant: ordered by title
        assert [t.id for t in workshop.list_tasks(order_id=order.id)] == [second.id, first.id]
        assert [t.id for t in workshop.list_tasks(assigned_worker_id=second_worker.id)] == [second.id]
        assert [t.id for t in workshop.list_tasks(status="pending")] == [first.id]


class TestTimeLogs:

    def test_start_moves_pending_task_in_progress(self, workshop, make_task, worker, test_actor_id):
        task = make_task()
        log = workshop.start_timer(task.id, worker.id, test_actor_id, start_time=T0)
        assert log.is_open
        assert log.hours_worked is None
        assert workshop.get_task(task.id).status == TaskStatus.IN_PROGRESS

    def test_one_open_log_per_worker(self, workshop, make_task, worker, second_worker, test_actor_id):
        task = make_task()
        first = workshop.start_timer(task.id, worker.id, test_actor_id)
        with pytest.raises(OpenTimeLogExistsError) as exc_info:
            workshop.start_timer(task.id, worker.id, test_actor_id)
        assert exc_info.value.time_log_id == str(first.id)
        # another worker may run a timer on the same task
        assert workshop.start_timer(task.id, second_worker.id, test_actor_id).is_open

    def test_naive_start_rejected(self, workshop, make_task, worker, test_actor_id):
        task = make_task()
        with pytest.raises(ValidationError) as exc_info:
            workshop.start_timer(task.id, worker.id, test_actor_id, start_time=datetime(2024, 1, 1, 8))
        assert exc_info.value.field == "start_time"

    def test_stop_derives_hours(self, workshop, make_task, worker, deterministic_clock, test_actor_id):
        task = make_task()
        log = workshop.start_timer(task.id, worker.id, test_actor_id)
        deterministic_clock.advance_hours(2.5)
        closed = workshop.stop_timer(log.id, test_actor_id, description="base soldada")

        assert closed.hours_worked == Decimal("2.5")
        assert closed.description == "base soldada"
        assert workshop.worked_hours(task_id=task.id) == Decimal("2.5")

    def test_stop_at_explicit_time(self, workshop, make_task, worker, test_actor_id):
        task = make_task()
        log = workshop.start_timer(task.id, worker.id, test_actor_id, start_time=T0)
        closed = workshop.stop_timer(log.id, test_actor_id, end_time=T0 + timedelta(minutes=20))
        assert closed.hours_worked == Decimal("0.3333")

    def test_end_before_start(self, workshop, make_task, worker, test_actor_id):
        task = make_task()
        log = workshop.start_timer(task.id, worker.id, test_actor_id, start_time=T0)
        with pytest.raises(InvalidTimeRangeError):
            workshop.stop_timer(log.id, test_actor_id, end_time=T0 - timedelta(minutes=1))

    def test_close_twice(self, workshop, make_task, worker, test_actor_id):
        task = make_task()
        log = workshop.start_timer(task.id, worker.id, test_actor_id, start_time=T0)
        workshop.stop_timer(log.id, test_actor_id)
        with pytest.raises(TimeLogAlreadyClosedError):
            workshop.stop_timer(log.id, test_actor_id)

    def test_record_finished_interval(self, workshop, make_task, worker, test_actor_id):
        task = make_task()
        log = workshop.record_time(task.id, worker.id, T0, T0 + timedelta(hours=3), test_actor_id)
        assert log.hours_worked == Decimal("3")
        with pytest.raises(InvalidTimeRangeError):
            workshop.record_time(task.id, worker.id, T0, T0 - timedelta(hours=1), test_actor_id)

    def test_open_logs_count_zero(self, workshop, make_task, worker, second_worker, order, test_actor_id):
        task = make_task()
        workshop.record_time(task.id, worker.id, T0, T0 + timedelta(hours=1), test_actor_id)
        workshop.start_timer(task.id, second_worker.id, test_actor_id)

        assert workshop.worked_hours(order_id=order.id) == Decimal("1")
        assert workshop.get_task(task.id).worked_hours == Decimal("1")
        assert workshop.get_task(task.id).has_open_log

    def test_open_logs_and_hours_by_order(
        self, session, workshop, make_task, make_order, worker, second_worker, order,
        deterministic_clock, test_actor_id,
    ):
        task = make_task()
        idle = make_order()
        workshop.record_time(task.id, worker.id, T0, T0 + timedelta(hours=4), test_actor_id)
        workshop.start_timer(task.id, second_worker.id, test_actor_id)

        tasks = TaskService(session, deterministic_clock)
        assert [log.worker_id for log in tasks.open_logs()] == [second_worker.id]
        assert tasks.open_logs(worker_id=worker.id) == []
        assert tasks.hours_by_order([order.id, idle.id]) == {
            order.id: Decimal("4"),
            idle.id: Decimal("0"),
        }

    def test_remove_log(self, workshop, make_task, worker, test_actor_id):
        task = make_task()
        log = workshop.record_time(task.id, worker.id, T0, T0 + timedelta(hours=1), test_actor_id)
        workshop.remove_time_log(log.id, test_actor_id)
        assert workshop.get_task(task.id).time_logs == ()

    def test_last_open_log_cannot_be_removed(self, workshop, make_task, worker, test_actor_id):
        task = make_task()
        log = workshop.start_timer(task.id, worker.id, test_actor_id)
        with pytest.raises(InvalidTimeRangeError):
            workshop.remove_time_log(log.id, test_actor_id)
        assert workshop.get_task(task.id).has_open_log


class TestDeleteTask:

    def test_delete_without_logs(self, workshop, make_task, test_actor_id):
        task = make_task()
        workshop.delete_task(task.id, test_actor_id)
        with pytest.raises(TaskNotFoundError):
            workshop.get_task(task.id)

    def test_closed_logs_block_delete(self, workshop, make_task, worker, test_actor_id):
        task = make_task()
        workshop.record_time(task.id, worker.id, T0, T0 + timedelta(hours=1), test_actor_id)
        workshop.record_time(task.id, worker.id, T0 + timedelta(hours=2), T0 + timedelta(hours=3), test_actor_id)

        with pytest.raises(TaskHasTimeLogsError) as exc_info:
            workshop.delete_task(task.id, test_actor_id)
        assert exc_info.value.log_count == 2
        assert workshop.get_task(task.id).title == "Soldar estrutura"


class TestOrderStatusFromWork:

    def test_timer_moves_order_into_production_and_stopped(
        self, workshop, make_task, worker, order, deterministic_clock, test_actor_id
    ):
        task = make_task()
        log = workshop.start_timer(task.id, worker.id, test_actor_id)
        assert workshop.get_order(order.id).status == OrderStatus.PRODUCTION

        deterministic_clock.advance_hours(1)
        workshop.stop_timer(log.id, test_actor_id)
        assert workshop.get_order(order.id).status == OrderStatus.STOPPED

        workshop.start_timer(task.id, worker.id, test_actor_id)
        assert workshop.get_order(order.id).status == OrderStatus.PRODUCTION

    def test_other_running_timer_keeps_production(
        self, workshop, make_task, worker, second_worker, order, test_actor_id
    ):
        task = make_task()
        first = workshop.start_timer(task.id, worker.id, test_actor_id)
        workshop.start_timer(task.id, second_worker.id, test_actor_id)
        workshop.stop_timer(first.id, test_actor_id)
        assert workshop.get_order(order.id).status == OrderStatus.PRODUCTION

    def test_all_tasks_completed_moves_to_quality_control(
        self, workshop, make_task, order, test_actor_id
    ):
        first = make_task()
        second = make_task(title="Pintar")
        workshop.change_task_status(first.id, "completed", test_actor_id)
        assert workshop.get_order(order.id).status == OrderStatus.RECEIVED

        workshop.change_task_status(second.id, "cancelled", test_actor_id)
        assert workshop.get_order(order.id).status == OrderStatus.QUALITY_CONTROL

    def test_deleting_last_open_task_completes_work(self, workshop, make_task, order, test_actor_id):
        done = make_task()
        leftover = make_task(title="Pintar")
        workshop.change_task_status(done.id, "completed", test_actor_id)
        workshop.delete_task(leftover.id, test_actor_id)
        assert workshop.get_order(order.id).status == OrderStatus.QUALITY_CONTROL

    def test_orders_past_production_are_not_moved(
        self, workshop, make_order, make_task, worker, test_actor_id
    ):
        held = make_order(status="on_hold")
        task = make_task(order_id=held.id)
        workshop.start_timer(task.id, worker.id, test_actor_id)
        assert workshop.get_order(held.id).status == OrderStatus.ON_HOLD

    def test_recorded_time_does_not_move_order(self, workshop, make_task, worker, order, test_actor_id):
        task = make_task()
        workshop.record_time(task.id, worker.id, T0, T0 + timedelta(hours=1), test_actor_id)
        assert workshop.get_order(order.id).status == OrderStatus.RECEIVED
