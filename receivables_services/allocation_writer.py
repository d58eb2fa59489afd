"""
AllocationWriter -- persists and reverses receipt allocations.

Responsibility:
    The only code that inserts or deletes ``ReceiptAllocation`` rows.  Keeps
    the receipt side (unallocated_amount, allocation_status) and the
    document side (outstanding_amount, status) in step with the rows, and
    claims one version bump per touched row per operation.

Architecture position:
    Services -- flush-only helper shared by the receipt lifecycle, the
    debt-document lifecycle and credit application.  Never commits.

Invariants enforced:
    - receipt.amount == unallocated_amount + sum(allocations).
    - document.outstanding_amount == total - sum(allocations), >= 0,
      status PAID iff outstanding == 0.
    - Every touched receipt/document moves version by exactly one through
      compare-and-swap; a concurrent change raises CONFLICT and the owning
      service rolls back.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from receivables_engines.allocation import AllocationLine
from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.domain.types import AllocationStatus, ReceiptStatus, TargetType
from receivables_kernel.exceptions import InvalidTargetError
from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.debt_document import Advance, DebtDocumentMixin, Invoice
from receivables_kernel.models.receipt import Receipt, ReceiptAllocation
from receivables_kernel.services.base import claim_version

logger = get_logger("services.allocation_writer")

DocumentKey = tuple[TargetType, UUID]

_MODELS: dict[TargetType, type] = {
    TargetType.INVOICE: Invoice,
    TargetType.ADVANCE: Advance,
}


def document_entity_type(target_type: TargetType) -> str:
    return _MODELS[target_type].__name__


class AllocationWriter:
    """
    Allocation row persistence for one unit of work.

    Contract:
        Create one writer per operation.  It remembers which rows it has
        already version-claimed so a document paid twice in one operation
        still moves by one version.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._claimed: set[tuple[str, UUID]] = set()

    def claim(self, entity, entity_type: str) -> None:
        """Bump ``entity.version`` once per writer."""
        marker = (entity_type, entity.id)
        if marker in self._claimed:
            return
        claim_version(self._session, entity, entity.version, entity_type)
        self._claimed.add(marker)

    def mark_claimed(self, entity, entity_type: str) -> None:
        """Record a version the caller already claimed itself."""
        self._claimed.add((entity_type, entity.id))

    # =========================================================================
    # Loading
    # =========================================================================

    def load_documents(self, keys: Iterable[DocumentKey]) -> dict[DocumentKey, DebtDocumentMixin]:
        """Load invoices and advances by key, one query per type."""
        ids_by_type: dict[TargetType, set[UUID]] = defaultdict(set)
        for target_type, target_id in keys:
            ids_by_type[target_type].add(target_id)

        found: dict[DocumentKey, DebtDocumentMixin] = {}
        for target_type, ids in ids_by_type.items():
            model = _MODELS[target_type]
            stmt = select(model).where(model.id.in_(ids)).execution_options(populate_existing=True)
            for doc in self._session.scalars(stmt).all():
                found[(target_type, doc.id)] = doc
        return found

    # =========================================================================
    # Writing
    # =========================================================================

    def apply_lines(
        self,
        receipt: Receipt,
        lines: Sequence[AllocationLine],
        actor_id: UUID,
        documents: dict[DocumentKey, DebtDocumentMixin],
    ) -> Decimal:
        """
        Insert one allocation row per line and reduce each document.

        Does not touch the receipt's own amounts; callers set
        unallocated_amount from the engine result.

        Raises:
            InvalidTargetError: a line exceeds what its document still owes.
        """
        total = Decimal("0")
        now = self._clock.now()
        for line in lines:
            doc = documents[(line.target_type, line.target_id)]
            if line.amount > doc.outstanding_amount:
                raise InvalidTargetError(
                    str(line.target_id), line.target_type.value, "allocation exceeds outstanding amount"
                )
            self.claim(doc, document_entity_type(line.target_type))
            doc.outstanding_amount = doc.outstanding_amount - line.amount
            doc.refresh_status()
            doc.updated_by_id = actor_id
            self._session.add(self._new_row(receipt.id, line.target_type, line.target_id, line.amount, actor_id, now))
            total += line.amount

        self._session.flush()
        logger.info(
            "allocations_written",
            extra={
                "receipt_id": str(receipt.id),
                "line_count": len(lines),
                "total_allocated": str(total),
            },
        )
        return total

    def apply_credit(
        self,
        receipt: Receipt,
        document: DebtDocumentMixin,
        amount: Decimal,
        actor_id: UUID,
    ) -> None:
        """Move ``amount`` of a receipt's open credit onto ``document``."""
        self.claim(receipt, "Receipt")
        self.claim(document, document_entity_type(document.document_type))
        receipt.unallocated_amount = receipt.unallocated_amount - amount
        receipt.allocation_status = AllocationStatus.for_approved(receipt.unallocated_amount)
        receipt.updated_by_id = actor_id
        document.outstanding_amount = document.outstanding_amount - amount
        document.refresh_status()
        document.updated_by_id = actor_id
        self._session.add(
            self._new_row(receipt.id, document.document_type, document.id, amount, actor_id, self._clock.now())
        )

    # =========================================================================
    # Reversal
    # =========================================================================

    def reverse_receipt(self, receipt: Receipt, actor_id: UUID) -> tuple[Decimal, int]:
        """
        Delete every allocation of ``receipt`` and give the money back to
        the documents it paid.

        Returns:
            (reversed amount, number of rows removed).
        """
        rows = self._session.scalars(
            select(ReceiptAllocation).where(ReceiptAllocation.receipt_id == receipt.id)
        ).all()
        if not rows:
            return Decimal("0"), 0

        documents = self.load_documents((row.target_type, row.target_id) for row in rows)
        total = Decimal("0")
        for row in rows:
            doc = documents[(row.target_type, row.target_id)]
            self.claim(doc, document_entity_type(row.target_type))
            doc.outstanding_amount = min(doc.total, doc.outstanding_amount + row.amount)
            if not doc.is_void:
                doc.refresh_status()
            doc.updated_by_id = actor_id
            total += row.amount
            self._session.delete(row)

        self._session.flush()
        logger.info(
            "receipt_allocations_reversed",
            extra={
                "receipt_id": str(receipt.id),
                "reversed_amount": str(total),
                "reversed_allocations": len(rows),
            },
        )
        return total, len(rows)

    def reverse_document(self, document: DebtDocumentMixin, actor_id: UUID) -> tuple[Decimal, int]:
        """
        Delete every allocation pointing at ``document`` and return the
        money to the receipts as open credit.

        Returns:
            (reversed amount, number of rows removed).
        """
        column = (
            ReceiptAllocation.invoice_id
            if document.document_type == TargetType.INVOICE
            else ReceiptAllocation.advance_id
        )
        rows = self._session.scalars(select(ReceiptAllocation).where(column == document.id)).all()
        if not rows:
            return Decimal("0"), 0

        receipt_ids = {row.receipt_id for row in rows}
        receipts = {
            r.id: r
            for r in self._session.scalars(select(Receipt).where(Receipt.id.in_(receipt_ids))).all()
        }
        total = Decimal("0")
        for row in rows:
            receipt = receipts[row.receipt_id]
            self.claim(receipt, "Receipt")
            receipt.unallocated_amount = min(receipt.amount, receipt.unallocated_amount + row.amount)
            if receipt.status == ReceiptStatus.APPROVED:
                receipt.allocation_status = AllocationStatus.for_approved(receipt.unallocated_amount)
            receipt.updated_by_id = actor_id
            total += row.amount
            self._session.delete(row)

        document.outstanding_amount = min(document.total, document.outstanding_amount + total)
        self._session.flush()
        logger.info(
            "document_allocations_reversed",
            extra={
                "document_id": str(document.id),
                "document_type": document.document_type.value,
                "reversed_amount": str(total),
                "reversed_allocations": len(rows),
            },
        )
        return total, len(rows)

    def count_for_receipt(self, receipt_id: UUID) -> int:
        return len(
            self._session.scalars(
                select(ReceiptAllocation.id).where(ReceiptAllocation.receipt_id == receipt_id)
            ).all()
        )

    @staticmethod
    def _new_row(
        receipt_id: UUID,
        target_type: TargetType,
        target_id: UUID,
        amount: Decimal,
        actor_id: UUID,
        now,
    ) -> ReceiptAllocation:
        return ReceiptAllocation(
            receipt_id=receipt_id,
            target_type=target_type,
            invoice_id=target_id if target_type == TargetType.INVOICE else None,
            advance_id=target_id if target_type == TargetType.ADVANCE else None,
            amount=amount,
            created_at=now,
            created_by_id=actor_id,
        )
