"""
Concurrency tests: racing conversions and invoices.

Every worker thread owns its own session and really commits.  These tests
use only ``session_factory``; the per-test ``session`` fixture holds an open
transaction that would block the writers.

Validates:
- A budget converted concurrently yields exactly one order
- Racing writers for the same order number end up with distinct numbers
- Concurrent invoicing bills an order exactly once
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from threading import Barrier
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from fabshop_config import ShopConfig
from fabshop_kernel.domain.clock import DeterministicClock
from fabshop_kernel.exceptions import BudgetAlreadyConvertedError
from fabshop_modules.invoicing.orm import InvoiceModel
from fabshop_modules.orders.orm import ServiceOrderModel
from fabshop_services import WorkshopService
from tests.factories import standard_items

pytestmark = [pytest.mark.slow_locks]

ACTOR = uuid4()
THREADS = 4


def _service(session) -> WorkshopService:
    return WorkshopService(session, config=ShopConfig(), clock=DeterministicClock())


def _count(session_factory, model) -> int:
    session = session_factory()
    try:
        return session.execute(select(func.count()).select_from(model)).scalar_one()
    finally:
        session.close()


def _run(fn, args):
    with ThreadPoolExecutor(max_workers=len(args)) as pool:
        return [f.result() for f in [pool.submit(fn, a) for a in args]]


class TestConcurrentConversion:

    def test_same_budget_converted_once(self, session_factory):
        setup_session = session_factory()
        setup = _service(setup_session)
        client = setup.create_client("Metalurgica Horizonte", ACTOR)
        budget = setup.create_budget(ACTOR, items=standard_items(), client_id=client.id)
        setup_session.close()

        barrier = Barrier(THREADS)

        def convert(_):
            service = _service(session_factory())
            barrier.wait()
            try:
                return service.convert_budget(budget.id, ACTOR).order_number
            except BudgetAlreadyConvertedError:
                return None

        numbers = _run(convert, range(THREADS))

        assert [n for n in numbers if n is not None] == ["OS-0001"]
        assert numbers.count(None) == THREADS - 1
        assert _count(session_factory, ServiceOrderModel) == 1

    def test_racing_writers_get_distinct_numbers(self, session_factory):
        setup_session = session_factory()
        setup = _service(setup_session)
        client = setup.create_client("Metalurgica Horizonte", ACTOR)
        budget = setup.create_budget(ACTOR, items=standard_items(), client_id=client.id)
        setup_session.close()

        barrier = Barrier(THREADS)

        def write(n):
            service = _service(session_factory())
            barrier.wait()
            if n == 0:
                return service.convert_budget(budget.id, ACTOR).order_number
            # direct orders asking for the converted budget's number
            return service.create_order(
                ACTOR, client_id=client.id, service_description="Grade", order_number="OS-0001"
            ).order_number

        numbers = _run(write, range(THREADS))

        assert len(set(numbers)) == THREADS
        assert set(numbers) == {"OS-0001"} | {f"OS-0001-{n}" for n in range(1, THREADS)}


class TestConcurrentInvoicing:

    def test_order_billed_once(self, session_factory):
        setup_session = session_factory()
        setup = _service(setup_session)
        client = setup.create_client("Metalurgica Horizonte", ACTOR)
        order = setup.create_order(
            ACTOR, client_id=client.id, service_description="Portao", sale_value="100.00"
        )
        setup.change_order_status(order.id, "to_invoice", ACTOR)
        setup_session.close()

        barrier = Barrier(THREADS)

        def bill(_):
            service = _service(session_factory())
            barrier.wait()
            return service.create_invoice(client.id, date(2023, 12, 1), date(2024, 1, 31), ACTOR)

        results = _run(bill, range(THREADS))

        created = [r for r in results if r.created]
        assert len(created) == 1
        assert created[0].invoice.order_ids == (order.id,)
        assert _count(session_factory, InvoiceModel) == 1

        check = _service(session_factory())
        assert check.get_order(order.id).invoice_id == created[0].invoice.id
