"""
Property-based tests for the allocation engine.

Hypothesis generates payment amounts and outstanding balances and checks
the engine's guarantees on every combination:

- total_allocated + unallocated == amount
- 0 < line amount <= target outstanding
- unallocated is never negative for a positive payment
- lines follow target order, at most one per target
- greedy: every line but the last clears its target
- the same input always yields the same lines
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from receivables_engines.allocation import AllocationEngine
from receivables_kernel.domain.dtos import OpenItem
from receivables_kernel.domain.types import TargetType

payment_amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

outstanding_amounts = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("500000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

PROPERTY_SETTINGS = settings(
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)


def open_items(outstandings: list[Decimal]) -> list[OpenItem]:
    issue_date = date(2026, 1, 1)
    return [
        OpenItem(
            target_id=uuid4(),
            target_type=TargetType.ADVANCE if index % 3 == 2 else TargetType.INVOICE,
            document_no=f"DOC-{index}",
            issue_date=issue_date + timedelta(days=index),
            due_date=issue_date + timedelta(days=index + 30),
            total_amount=outstanding,
            outstanding_amount=outstanding,
            seller_tax_code="S",
            customer_tax_code="C",
        )
        for index, outstanding in enumerate(outstandings)
    ]


class TestAllocationConservation:
    @given(amount=payment_amounts, outstandings=st.lists(outstanding_amounts, max_size=10))
    @PROPERTY_SETTINGS
    def test_allocated_plus_unallocated_is_amount(self, amount, outstandings):
        result = AllocationEngine().allocate(amount, open_items(outstandings))

        assert result.total_allocated + result.unallocated == amount
        assert sum((line.amount for line in result.lines), Decimal("0")) == result.total_allocated
        assert result.unallocated >= 0

    @given(amount=payment_amounts, outstandings=st.lists(outstanding_amounts, max_size=10))
    @PROPERTY_SETTINGS
    def test_unallocated_only_when_every_target_is_cleared(self, amount, outstandings):
        items = open_items(outstandings)

        result = AllocationEngine().allocate(amount, items)

        if result.unallocated > 0:
            assert result.total_allocated == sum((item.outstanding_amount for item in items), Decimal("0"))


class TestAllocationLines:
    @given(amount=payment_amounts, outstandings=st.lists(outstanding_amounts, max_size=10))
    @PROPERTY_SETTINGS
    def test_line_never_exceeds_outstanding(self, amount, outstandings):
        items = open_items(outstandings)
        by_id = {item.target_id: item for item in items}

        result = AllocationEngine().allocate(amount, items)

        for line in result.lines:
            target = by_id[line.target_id]
            assert 0 < line.amount <= target.outstanding_amount
            assert line.target_type == target.target_type

    @given(amount=payment_amounts, outstandings=st.lists(outstanding_amounts, max_size=10))
    @PROPERTY_SETTINGS
    def test_lines_follow_target_order(self, amount, outstandings):
        items = open_items(outstandings)
        position = {item.target_id: index for index, item in enumerate(items)}

        result = AllocationEngine().allocate(amount, items)

        indexes = [position[line.target_id] for line in result.lines]
        assert indexes == sorted(set(indexes))

    @given(amount=payment_amounts, outstandings=st.lists(outstanding_amounts, min_size=1, max_size=10))
    @PROPERTY_SETTINGS
    def test_every_line_but_the_last_clears_its_target(self, amount, outstandings):
        items = open_items(outstandings)
        by_id = {item.target_id: item for item in items}

        result = AllocationEngine().allocate(amount, items)

        for line in result.lines[:-1]:
            assert line.amount == by_id[line.target_id].outstanding_amount

    @given(amount=payment_amounts, outstandings=st.lists(outstanding_amounts, max_size=10))
    @PROPERTY_SETTINGS
    def test_same_input_same_lines(self, amount, outstandings):
        items = open_items(outstandings)
        engine = AllocationEngine()

        assert engine.allocate(amount, items).lines == engine.allocate(amount, items).lines
