"""
CreditApplicationService -- spends open receipt credit on debt documents.

Responsibility:
    When a debt document becomes open (invoice created or unvoided, advance
    approved) the customer may already have APPROVED receipts with money
    left over.  This service applies that credit to the document, oldest
    receipt first, and, for the batch sweep, applies every open credit of a
    seller+customer pair to that pair's open items.

Architecture position:
    Services -- flush-only.  Called inside the owning service's
    transaction (or the batch task's) and never commits.

Invariants enforced:
    - Receipt order: receipt_date, then created_at, then receipt_no.
    - Each receipt gives min(unallocated, document outstanding).  Touched
      receipts become ALLOCATED or PARTIAL and move version by one.
    - Customer balance is unchanged: existing credit meets existing debt.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from receivables_engines.allocation import AllocationEngine
from receivables_kernel.domain.types import AllocationPriority, ReceiptStatus
from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.debt_document import DebtDocumentMixin
from receivables_kernel.models.receipt import Receipt
from receivables_kernel.selectors.open_items import OpenItemSelector, to_open_item
from receivables_services.allocation_writer import AllocationWriter
from receivables_services.types import CreditApplicationLine, CreditApplicationResult

logger = get_logger("services.credit_application")


@dataclass(frozen=True)
class CreditSweepResult:
    """Counts from applying a pair's open credit to its open items."""

    receipts_updated: int = 0
    documents_updated: int = 0
    allocations_created: int = 0


class CreditApplicationService:
    """
    Mirror of receipt approval: the receipt is the source, the document
    the sink.

    Non-goals:
        - Does NOT check period locks or access; callers have done so for
          the document they are opening.
    """

    def __init__(self, session: Session, engine: AllocationEngine, selector: OpenItemSelector):
        self._session = session
        self._engine = engine
        self._selector = selector

    def open_credit_receipts(self, seller_tax_code: str, customer_tax_code: str) -> list[Receipt]:
        """APPROVED receipts of the pair with money left, oldest first."""
        return list(
            self._session.scalars(
                select(Receipt)
                .where(
                    Receipt.seller_tax_code == seller_tax_code,
                    Receipt.customer_tax_code == customer_tax_code,
                    Receipt.status == ReceiptStatus.APPROVED,
                    Receipt.deleted_at.is_(None),
                    Receipt.unallocated_amount > 0,
                )
                .order_by(Receipt.receipt_date, Receipt.created_at, Receipt.receipt_no)
                .execution_options(populate_existing=True)
            ).all()
        )

    def apply_receipt_credits(
        self,
        document: DebtDocumentMixin,
        actor_id: UUID,
        writer: AllocationWriter,
    ) -> CreditApplicationResult:
        """
        Pay ``document`` from open receipt credit of the same pair.

        Preconditions:
            ``document`` is flushed and OPEN/PARTIAL.
        """
        receipts = self.open_credit_receipts(document.seller_tax_code, document.customer_tax_code)
        lines: list[CreditApplicationLine] = []
        for receipt in receipts:
            if document.outstanding_amount <= 0:
                break
            target = to_open_item(document, self._selector.default_terms_days)
            result = self._engine.allocate(receipt.unallocated_amount, [target])
            for line in result.lines:
                writer.apply_credit(receipt, document, line.amount, actor_id)
                lines.append(CreditApplicationLine(receipt.id, line.amount))

        if lines:
            self._session.flush()
            logger.info(
                "receipt_credit_applied",
                extra={
                    "document_id": str(document.id),
                    "document_type": document.document_type.value,
                    "receipt_count": len(lines),
                    "total_applied": str(sum(line.amount for line in lines)),
                    "outstanding_amount": str(document.outstanding_amount),
                },
            )
        return CreditApplicationResult(document_id=document.id, lines=tuple(lines))

    def sweep_pair(
        self,
        seller_tax_code: str,
        customer_tax_code: str,
        actor_id: UUID,
        writer: AllocationWriter,
    ) -> CreditSweepResult:
        """
        Apply every open credit of the pair to its open items.

        Receipts are taken oldest first; each is allocated across the open
        items in its own priority order, against outstanding amounts already
        reduced by earlier receipts.
        """
        receipts = self.open_credit_receipts(seller_tax_code, customer_tax_code)
        if not receipts:
            return CreditSweepResult()
        items_by_priority = {
            priority: self._selector.list_open_items(seller_tax_code, customer_tax_code, priority)
            for priority in AllocationPriority
        }
        if not items_by_priority[AllocationPriority.ISSUE_DATE]:
            return CreditSweepResult()

        documents = writer.load_documents(
            (item.target_type, item.target_id) for item in items_by_priority[AllocationPriority.ISSUE_DATE]
        )
        receipts_updated = 0
        touched_documents: set = set()
        allocations = 0
        for receipt in receipts:
            candidates = [
                item.with_outstanding(documents[(item.target_type, item.target_id)].outstanding_amount)
                for item in items_by_priority[receipt.allocation_priority]
            ]
            result = self._engine.allocate(receipt.unallocated_amount, candidates)
            if not result.lines:
                continue
            for line in result.lines:
                key = (line.target_type, line.target_id)
                writer.apply_credit(receipt, documents[key], line.amount, actor_id)
                touched_documents.add(key)
                allocations += 1
            receipts_updated += 1

        self._session.flush()
        sweep = CreditSweepResult(
            receipts_updated=receipts_updated,
            documents_updated=len(touched_documents),
            allocations_created=allocations,
        )
        if allocations:
            logger.info(
                "open_credit_swept",
                extra={
                    "seller_tax_code": seller_tax_code,
                    "customer_tax_code": customer_tax_code,
                    "receipts_updated": sweep.receipts_updated,
                    "documents_updated": sweep.documents_updated,
                    "allocations_created": sweep.allocations_created,
                },
            )
        return sweep
