"""
Tests for the open-item resolver.

Covers:
- Only open, non-deleted items with outstanding > 0 are returned
- Sort order with invoice-before-advance tie-break
- DUE_DATE priority using customer payment terms
- Grouped loading across several seller+customer pairs
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import event

from receivables_kernel.domain.dtos import OpenItem
from receivables_kernel.domain.types import AllocationPriority, DebtStatus, TargetType
from receivables_kernel.selectors.open_items import OpenItemSelector, sort_open_items
from tests.conftest import CUSTOMER, SELLER


def item(target_type, issue_date, due_date, document_no):
    return OpenItem(
        target_id=uuid4(),
        target_type=target_type,
        document_no=document_no,
        issue_date=issue_date,
        due_date=due_date,
        total_amount=Decimal("10"),
        outstanding_amount=Decimal("10"),
        seller_tax_code=SELLER,
        customer_tax_code=CUSTOMER,
    )


class TestSortOpenItems:
    def test_issue_date_then_invoice_before_advance(self):
        day = date(2026, 1, 10)
        advance = item(TargetType.ADVANCE, day, day, "A-1")
        invoice = item(TargetType.INVOICE, day, day, "Z-9")
        older = item(TargetType.ADVANCE, day - timedelta(days=1), day, "A-0")

        ordered = sort_open_items([advance, invoice, older], AllocationPriority.ISSUE_DATE)

        assert ordered == [older, invoice, advance]

    def test_document_number_breaks_remaining_ties(self):
        day = date(2026, 1, 10)
        second = item(TargetType.INVOICE, day, day, "INV-2")
        first = item(TargetType.INVOICE, day, day, "INV-1")

        assert sort_open_items([second, first], AllocationPriority.ISSUE_DATE) == [first, second]

    def test_due_date_priority(self):
        early_issue = item(TargetType.INVOICE, date(2026, 1, 1), date(2026, 3, 1), "INV-1")
        late_issue = item(TargetType.INVOICE, date(2026, 1, 5), date(2026, 2, 1), "INV-2")

        ordered = sort_open_items([early_issue, late_issue], AllocationPriority.DUE_DATE)

        assert ordered == [late_issue, early_issue]


class TestOpenItemSelector:
    """Loading open items from the database."""

    def test_filters_closed_and_void_documents(self, session, factory, parties):
        open_inv = factory.invoice("100", date(2026, 1, 2))
        partial = factory.invoice("100", date(2026, 1, 3), outstanding="40")
        factory.invoice("100", date(2026, 1, 4), outstanding="0")
        factory.invoice("100", date(2026, 1, 5), status=DebtStatus.VOID)
        factory.advance("50", date(2026, 1, 6), status=DebtStatus.DRAFT)
        advance = factory.advance("50", date(2026, 1, 7))

        items = OpenItemSelector(session).list_open_items(SELLER, CUSTOMER)

        assert [i.target_id for i in items] == [open_inv.id, partial.id, advance.id]
        assert items[1].outstanding_amount == Decimal("40")
        assert items[2].target_type == TargetType.ADVANCE

    def test_other_pairs_are_excluded(self, session, factory, parties):
        factory.customer("0300000002")
        factory.invoice("100", date(2026, 1, 2), customer="0300000002")

        assert OpenItemSelector(session).list_open_items(SELLER, CUSTOMER) == []

    def test_due_date_uses_customer_terms(self, session, factory, actors):
        factory.seller()
        factory.customer(owner_id=actors.owner.user_id, payment_terms_days=10)
        inv = factory.invoice("100", date(2026, 1, 2))

        [open_item] = OpenItemSelector(session, default_terms_days=30).list_open_items(
            SELLER, CUSTOMER, AllocationPriority.DUE_DATE
        )

        assert open_item.target_id == inv.id
        assert open_item.due_date == date(2026, 1, 12)

    def test_due_date_falls_back_to_default_terms(self, session, factory, parties):
        factory.invoice("100", date(2026, 1, 2))

        [open_item] = OpenItemSelector(session, default_terms_days=30).list_open_items(SELLER, CUSTOMER)

        assert open_item.due_date == date(2026, 2, 1)

    def test_load_grouped_uses_fixed_number_of_queries(self, session, factory, db_engine, parties):
        pairs = [(SELLER, CUSTOMER)]
        for n in range(2, 6):
            code = f"03000000{n:02d}"
            factory.customer(code)
            factory.invoice("100", date(2026, 1, n), customer=code)
            pairs.append((SELLER, code))
        factory.invoice("100", date(2026, 1, 1))

        statements: list[str] = []

        def count(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith("SELECT"):
                statements.append(statement)

        event.listen(db_engine, "before_cursor_execute", count)
        try:
            grouped = OpenItemSelector(session).load_grouped(pairs)
        finally:
            event.remove(db_engine, "before_cursor_execute", count)

        assert len(statements) == 3
        assert set(grouped) == set(pairs)
        assert all(len(items) == 1 for items in grouped.values())

    def test_load_grouped_empty(self, session):
        assert OpenItemSelector(session).load_grouped([]) == {}
