"""
Property-based tests for the pure helpers: line arithmetic, invoice totals
and order number suffixes.
"""

from decimal import Decimal
from types import SimpleNamespace

from hypothesis import given, settings
from hypothesis import strategies as st

from fabshop_kernel.db.types import round_money
from fabshop_modules.invoicing import compute_invoice_totals
from fabshop_modules.line_items import LineItemInput, line_total, missing_items, validate_line
from fabshop_modules.orders.allocator import OrderNumberAllocator

quantities = st.integers(min_value=1, max_value=10_000).map(Decimal)
prices = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("100000"), places=2, allow_nan=False, allow_infinity=False
)
hours = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("500"), places=4, allow_nan=False, allow_infinity=False
)
bases = st.from_regex(r"OS-[0-9]{1,6}", fullmatch=True)


def _row(name, qty, price):
    return SimpleNamespace(
        service_name=name,
        description=None,
        quantity=qty,
        unit_price=price,
        total_price=line_total(qty, price),
    )


class TestLineProperties:

    @given(qty=quantities, price=prices)
    def test_total_is_rounded_product(self, qty, price):
        line = validate_line(LineItemInput("Corte", qty, price))
        assert line.total_price == round_money(qty * price)
        assert line.total_price >= 0

    @given(rows=st.lists(st.tuples(st.sampled_from(["Corte", "Dobra", "Solda"]), quantities, prices), max_size=8))
    def test_missing_items_against_itself_is_empty(self, rows):
        source = [_row(*r) for r in rows]
        assert missing_items(source, source) == []
        assert len(missing_items(source, [])) == len(source)

    @given(
        rows=st.lists(st.tuples(st.sampled_from(["Corte", "Dobra"]), quantities, prices), min_size=1, max_size=8),
        data=st.data(),
    )
    def test_missing_plus_present_covers_source(self, rows, data):
        source = [_row(*r) for r in rows]
        keep = data.draw(st.lists(st.sampled_from(source), unique_by=id, max_size=len(source)))
        assert len(missing_items(source, keep)) == len(source) - len(keep)


class TestInvoiceTotalProperties:

    @given(values=st.lists(prices, max_size=20), extras=st.lists(prices, max_size=5), times=st.lists(hours, max_size=20))
    def test_total_is_sum_of_parts(self, values, extras, times):
        totals = compute_invoice_totals(values, times, extras)
        assert totals.total_value == sum(values, Decimal("0")) + sum(extras, Decimal("0"))
        assert totals.total_value == totals.orders_value + totals.extras_value
        assert totals.total_time == sum(times, Decimal("0"))

    @given(values=st.lists(prices, max_size=20))
    def test_order_of_orders_irrelevant(self, values):
        forward = compute_invoice_totals(values, [])
        backward = compute_invoice_totals(list(reversed(values)), [])
        assert forward == backward


class TestSuffixProperties:

    allocator = OrderNumberAllocator(session=None)

    @given(base=bases, n=st.integers(min_value=0, max_value=10_000))
    def test_candidate_round_trips_through_suffix(self, base, n):
        assert self.allocator.suffix_of(base, self.allocator.candidate(base, n)) == n

    @settings(max_examples=50)
    @given(base=bases, start=st.integers(min_value=0, max_value=100))
    def test_candidates_are_distinct_and_ordered(self, base, start):
        gen = self.allocator.candidates(base, start)
        numbers = [next(gen) for _ in range(5)]
        assert len(set(numbers)) == 5
        assert [self.allocator.suffix_of(base, n) for n in numbers] == list(range(start, start + 5))

    @given(base=bases, other=bases)
    def test_other_bases_are_not_suffixes(self, base, other):
        if other != base:
            assert self.allocator.suffix_of(base, other) is None
