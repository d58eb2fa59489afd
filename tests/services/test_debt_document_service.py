"""
Tests for DebtDocumentService.

Covers:
- Invoice creation, duplicate numbers, period locks
- Advance draft -> approval, with open receipt credit applied
- Void / unvoid of invoices and advances, and what happens to the
  receipts that paid them
- Customer balance stays equal to the recomputed balance throughout
"""

from datetime import date
from decimal import Decimal

import pytest

from receivables_kernel.domain.types import AllocationStatus, DebtStatus, PeriodType, ReceiptStatus
from receivables_kernel.exceptions import (
    AccessDeniedError,
    InvalidAmountError,
    InvalidStatusTransitionError,
    MissingFieldError,
    OptimisticLockError,
    PeriodLockedError,
    ValidationError,
)
from receivables_services import AdvanceInput, InvoiceInput, LockOverride
from tests.conftest import CUSTOMER, SELLER, allocation_rows, audit_actions, customer_balance


def invoice_input(total="300", invoice_no="INV-100", issue_date=date(2026, 1, 10)) -> InvoiceInput:
    return InvoiceInput(
        seller_tax_code=SELLER,
        customer_tax_code=CUSTOMER,
        invoice_no=invoice_no,
        issue_date=issue_date,
        total_amount=Decimal(total),
    )


def advance_input(amount="500000") -> AdvanceInput:
    return AdvanceInput(
        seller_tax_code=SELLER,
        customer_tax_code=CUSTOMER,
        amount=Decimal(amount),
        advance_date=date(2026, 1, 12),
        advance_no="ADV-1",
    )


def assert_balance_consistent(reconcile_service):
    result = reconcile_service.run()
    assert result.drifted_customers == 0, result.top_drifts


class TestCreateInvoice:
    def test_create_open_invoice(self, session, debt_service, reconcile_service, actors, parties):
        result = debt_service.create_invoice(actors.owner, invoice_input("300"))

        invoice = result.document
        assert invoice.status == DebtStatus.OPEN
        assert invoice.outstanding_amount == Decimal("300")
        assert invoice.version == 0
        assert result.credit_applied.lines == ()
        assert customer_balance(session) == Decimal("300")
        assert audit_actions(session, invoice.id) == ["INVOICE_CREATE"]
        assert_balance_consistent(reconcile_service)

    def test_duplicate_invoice_number(self, debt_service, actors, parties):
        debt_service.create_invoice(actors.owner, invoice_input(invoice_no="INV-7"))

        with pytest.raises(ValidationError):
            debt_service.create_invoice(actors.owner, invoice_input(invoice_no="INV-7"))

    def test_missing_invoice_number(self, debt_service, actors, parties):
        with pytest.raises(MissingFieldError):
            debt_service.create_invoice(actors.owner, invoice_input(invoice_no=" "))

    def test_non_positive_total(self, debt_service, actors, parties):
        with pytest.raises(InvalidAmountError):
            debt_service.create_invoice(actors.owner, invoice_input(total="0"))

    def test_stranger_is_forbidden(self, debt_service, actors, parties):
        with pytest.raises(AccessDeniedError):
            debt_service.create_invoice(actors.stranger, invoice_input())

    def test_locked_issue_date(self, session, debt_service, factory, actors, parties):
        factory.lock(PeriodType.MONTH, "2026-01")

        with pytest.raises(PeriodLockedError):
            debt_service.create_invoice(actors.owner, invoice_input())

        assert customer_balance(session) == Decimal("0")

    def test_locked_issue_date_with_override(self, session, debt_service, factory, actors, parties):
        factory.lock(PeriodType.MONTH, "2026-01")

        result = debt_service.create_invoice(actors.admin, invoice_input(), override=LockOverride("late invoice"))

        assert audit_actions(session, result.document.id) == ["INVOICE_CREATE", "PERIOD_LOCK_OVERRIDE"]

    def test_new_invoice_is_paid_from_open_credit(
        self, session, debt_service, receipt_service, reconcile_service, factory, actors, parties
    ):
        receipt = factory.receipt("500", date(2026, 1, 5))
        receipt_service.approve(actors.owner, receipt.id, 0)

        result = debt_service.create_invoice(actors.owner, invoice_input("300"))

        assert result.credit_applied.total_applied == Decimal("300")
        assert result.document.status == DebtStatus.PAID
        assert result.document.version == 0
        current = receipt_service.get_receipt(receipt.id)
        assert current.unallocated_amount == Decimal("200")
        assert current.allocation_status == AllocationStatus.PARTIAL
        assert current.version == 2
        assert customer_balance(session) == Decimal("-200")
        assert_balance_consistent(reconcile_service)

    def test_oldest_receipt_credit_is_used_first(self, debt_service, receipt_service, factory, actors, parties):
        newer = factory.receipt("100", date(2026, 1, 8))
        older = factory.receipt("100", date(2026, 1, 3))
        receipt_service.approve(actors.owner, newer.id, 0)
        receipt_service.approve(actors.owner, older.id, 0)

        result = debt_service.create_invoice(actors.owner, invoice_input("150"))

        assert [(line.receipt_id, line.amount) for line in result.credit_applied.lines] == [
            (older.id, Decimal("100")),
            (newer.id, Decimal("50")),
        ]


class TestAdvances:
    def test_draft_advance_is_not_debt(self, session, debt_service, actors, parties):
        advance = debt_service.create_advance(actors.owner, advance_input())

        assert advance.status == DebtStatus.DRAFT
        assert customer_balance(session) == Decimal("0")

    def test_approve_spends_leftover_receipt_credit(
        self, session, debt_service, receipt_service, reconcile_service, factory, actors, parties
    ):
        receipt = factory.receipt("600000", date(2026, 1, 10))
        approved = receipt_service.approve(actors.owner, receipt.id, 0)
        assert approved.unallocated_amount == Decimal("600000")
        advance = debt_service.create_advance(actors.owner, advance_input("500000"))

        result = debt_service.approve_advance(actors.owner, advance.id, advance.version)

        assert result.document.status == DebtStatus.PAID
        assert result.document.outstanding_amount == Decimal("0")
        assert result.document.version == 1
        [row] = allocation_rows(session, receipt.id)
        assert row.amount == Decimal("500000")
        assert row.advance_id == advance.id
        current = receipt_service.get_receipt(receipt.id)
        assert current.unallocated_amount == Decimal("100000")
        assert current.allocation_status == AllocationStatus.PARTIAL
        assert customer_balance(session) == Decimal("-100000")
        assert_balance_consistent(reconcile_service)

    def test_approve_without_credit_leaves_advance_open(self, session, debt_service, actors, parties):
        advance = debt_service.create_advance(actors.owner, advance_input("1000"))

        result = debt_service.approve_advance(actors.owner, advance.id, advance.version)

        assert result.document.status == DebtStatus.OPEN
        assert result.credit_applied.total_applied == Decimal("0")
        assert customer_balance(session) == Decimal("1000")

    def test_approve_twice_is_rejected(self, debt_service, actors, parties):
        advance = debt_service.create_advance(actors.owner, advance_input("1000"))
        approved = debt_service.approve_advance(actors.owner, advance.id, advance.version).document

        with pytest.raises(InvalidStatusTransitionError):
            debt_service.approve_advance(actors.owner, advance.id, approved.version)

    def test_approve_with_stale_version(self, debt_service, actors, parties):
        advance = debt_service.create_advance(actors.owner, advance_input("1000"))

        with pytest.raises(OptimisticLockError):
            debt_service.approve_advance(actors.owner, advance.id, advance.version + 1)

    def test_void_draft_advance_keeps_balance(self, session, debt_service, actors, parties):
        advance = debt_service.create_advance(actors.owner, advance_input("1000"))

        result = debt_service.void_advance(actors.owner, advance.id, advance.version, "duplicate")

        assert result.document.status == DebtStatus.VOID
        assert result.reversed_allocations == 0
        assert customer_balance(session) == Decimal("0")

    def test_void_paid_advance_returns_credit(
        self, session, debt_service, receipt_service, reconcile_service, factory, actors, parties
    ):
        receipt = factory.receipt("600000", date(2026, 1, 10))
        receipt_service.approve(actors.owner, receipt.id, 0)
        advance = debt_service.create_advance(actors.owner, advance_input("500000"))
        paid = debt_service.approve_advance(actors.owner, advance.id, advance.version).document

        result = debt_service.void_advance(actors.owner, advance.id, paid.version, "entered twice")

        assert result.reversed_amount == Decimal("500000")
        assert allocation_rows(session, receipt.id) == []
        assert receipt_service.get_receipt(receipt.id).unallocated_amount == Decimal("600000")
        assert customer_balance(session) == Decimal("-600000")
        assert_balance_consistent(reconcile_service)

    def test_unvoid_advance_returns_to_draft(self, session, debt_service, actors, parties):
        advance = debt_service.create_advance(actors.owner, advance_input("1000"))
        approved = debt_service.approve_advance(actors.owner, advance.id, advance.version).document
        voided = debt_service.void_advance(actors.owner, advance.id, approved.version, "wrong").document

        view = debt_service.unvoid_advance(actors.owner, advance.id, voided.version)

        assert view.status == DebtStatus.DRAFT
        assert view.deleted_at is None
        assert view.version == voided.version + 1
        assert customer_balance(session) == Decimal("0")


class TestInvoiceVoid:
    def test_void_returns_money_to_receipt(
        self, session, debt_service, receipt_service, reconcile_service, factory, actors, parties
    ):
        invoice = factory.invoice("300", date(2026, 1, 2))
        receipt = factory.receipt("500", date(2026, 1, 15))
        receipt_service.approve(actors.owner, receipt.id, 0)
        assert customer_balance(session) == Decimal("-200")

        result = debt_service.void_invoice(actors.owner, invoice.id, 1, "issued in error")

        assert result.document.status == DebtStatus.VOID
        assert result.reversed_amount == Decimal("300")
        assert result.reversed_allocations == 1
        current = receipt_service.get_receipt(receipt.id)
        assert current.status == ReceiptStatus.APPROVED
        assert current.unallocated_amount == Decimal("500")
        assert current.allocation_status == AllocationStatus.PARTIAL
        assert customer_balance(session) == Decimal("-500")
        assert_balance_consistent(reconcile_service)

    def test_unvoid_reapplies_credit(
        self, session, debt_service, receipt_service, reconcile_service, factory, actors, parties
    ):
        invoice = factory.invoice("300", date(2026, 1, 2))
        receipt = factory.receipt("500", date(2026, 1, 15))
        receipt_service.approve(actors.owner, receipt.id, 0)
        voided = debt_service.void_invoice(actors.owner, invoice.id, 1, "issued in error").document

        result = debt_service.unvoid_invoice(actors.owner, invoice.id, voided.version)

        assert result.document.status == DebtStatus.PAID
        assert result.document.version == voided.version + 1
        assert result.credit_applied.total_applied == Decimal("300")
        assert receipt_service.get_receipt(receipt.id).unallocated_amount == Decimal("200")
        assert customer_balance(session) == Decimal("-200")
        assert_balance_consistent(reconcile_service)

    def test_void_requires_reason(self, debt_service, factory, actors, parties):
        invoice = factory.invoice("300", date(2026, 1, 2))

        with pytest.raises(MissingFieldError):
            debt_service.void_invoice(actors.owner, invoice.id, 0, "")

    def test_void_twice_is_rejected(self, debt_service, factory, actors, parties):
        invoice = factory.invoice("300", date(2026, 1, 2))
        voided = debt_service.void_invoice(actors.owner, invoice.id, 0, "x").document

        with pytest.raises(InvalidStatusTransitionError):
            debt_service.void_invoice(actors.owner, invoice.id, voided.version, "x")

    def test_unvoid_open_invoice_is_rejected(self, debt_service, factory, actors, parties):
        invoice = factory.invoice("300", date(2026, 1, 2))

        with pytest.raises(InvalidStatusTransitionError):
            debt_service.unvoid_invoice(actors.owner, invoice.id, 0)

    def test_void_in_locked_period(self, debt_service, factory, actors, parties):
        invoice = factory.invoice("300", date(2026, 1, 2))
        factory.lock(PeriodType.YEAR, "2026")

        with pytest.raises(PeriodLockedError):
            debt_service.void_invoice(actors.owner, invoice.id, 0, "x")

        assert debt_service.get_invoice(invoice.id).status == DebtStatus.OPEN
