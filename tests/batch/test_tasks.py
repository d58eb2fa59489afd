"""
Tests for the receivables batch tasks run through BatchExecutor.

Covers:
- receivables.suggest_allocations chunks by seller+customer pair
- receivables.apply_open_credits spends leftover receipt credit
- Default registry contents
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import select

from receivables_batch.domain.types import BatchItemStatus, BatchRunStatus
from receivables_batch.services.executor import BatchExecutor
from receivables_batch.tasks import BATCH_ACTOR_ID, default_task_registry
from receivables_kernel.domain.types import AllocationStatus, DebtStatus
from receivables_kernel.models import AuditLog, Invoice
from tests.conftest import CUSTOMER, allocation_rows, customer_balance


def executor(session, clock, config) -> BatchExecutor:
    return BatchExecutor(session, default_task_registry(clock, config), clock)


class TestDefaultRegistry:
    def test_registers_receivables_tasks(self):
        assert default_task_registry().list_tasks() == (
            "receivables.apply_open_credits",
            "receivables.suggest_allocations",
        )


class TestSuggestAllocationsTask:
    def test_one_item_per_chunk_of_pairs(
        self, session, deterministic_clock, config, receipt_service, factory, parties
    ):
        receipts = []
        for n in range(1, 4):
            code = f"03000000{n:02d}"
            if code != CUSTOMER:
                factory.customer(code)
            factory.invoice("100", date(2026, 1, 2), customer=code)
            receipts.append(factory.receipt("40", date(2026, 1, 10), customer=code))

        run = executor(session, deterministic_clock, config).run(
            "receivables.suggest_allocations", {"batch_size": 2}
        )

        assert run.status == BatchRunStatus.COMPLETED
        assert [r.item_key for r in run.item_results] == ["chunk-0", "chunk-1"]
        assert run.succeeded == 2
        assert run.item_results[0].result_data == {"receipts_scanned": 2, "receipts_suggested": 2}
        for receipt in receipts:
            view = receipt_service.get_receipt(receipt.id)
            assert view.allocation_status == AllocationStatus.SUGGESTED

    def test_chunk_with_nothing_to_suggest_is_skipped(self, session, deterministic_clock, config, factory, parties):
        factory.receipt("40", date(2026, 1, 10))

        run = executor(session, deterministic_clock, config).run("receivables.suggest_allocations")

        assert run.status == BatchRunStatus.COMPLETED
        assert [r.status for r in run.item_results] == [BatchItemStatus.SKIPPED]

    def test_suggestions_are_attributed_to_batch_actor(
        self, session, deterministic_clock, config, factory, parties
    ):
        factory.invoice("100", date(2026, 1, 2))
        receipt = factory.receipt("40", date(2026, 1, 10))

        executor(session, deterministic_clock, config).run("receivables.suggest_allocations")

        entry = session.scalars(select(AuditLog).where(AuditLog.entity_id == str(receipt.id))).one()
        assert entry.action == "RECEIPT_AUTO_ALLOCATE"
        assert entry.user_id == BATCH_ACTOR_ID


class TestApplyOpenCreditsTask:
    def test_sweeps_leftover_credit_onto_open_items(
        self, session, deterministic_clock, config, receipt_service, factory, actors, parties
    ):
        receipt = factory.receipt("500", date(2026, 1, 10))
        receipt_service.approve(actors.owner, receipt.id, 0)
        invoice = factory.invoice("300", date(2026, 1, 12))
        balance_before = customer_balance(session)

        run = executor(session, deterministic_clock, config).run("receivables.apply_open_credits")

        assert run.status == BatchRunStatus.COMPLETED
        [item] = run.item_results
        assert item.item_key == f"0100000001:{CUSTOMER}"
        assert item.result_data == {"receipts_updated": 1, "documents_updated": 1, "allocations_created": 1}
        [row] = allocation_rows(session, receipt.id)
        assert row.invoice_id == invoice.id
        assert row.amount == Decimal("300")
        assert session.get(Invoice, invoice.id, populate_existing=True).status == DebtStatus.PAID
        view = receipt_service.get_receipt(receipt.id)
        assert view.unallocated_amount == Decimal("200")
        assert view.allocation_status == AllocationStatus.PARTIAL
        assert customer_balance(session) == balance_before
        actions = session.scalars(select(AuditLog.action).where(AuditLog.entity_id == CUSTOMER)).all()
        assert actions == ["RECEIPT_AUTO_ALLOCATE"]

    def test_pair_without_open_items_is_skipped(
        self, session, deterministic_clock, config, receipt_service, factory, actors, parties
    ):
        receipt = factory.receipt("500", date(2026, 1, 10))
        receipt_service.approve(actors.owner, receipt.id, 0)

        run = executor(session, deterministic_clock, config).run("receivables.apply_open_credits")

        assert run.total_items == 1
        assert run.skipped == 1

    def test_no_open_credit_means_no_items(self, session, deterministic_clock, config, factory, parties):
        factory.invoice("300", date(2026, 1, 12))

        run = executor(session, deterministic_clock, config).run("receivables.apply_open_credits")

        assert run.total_items == 0
