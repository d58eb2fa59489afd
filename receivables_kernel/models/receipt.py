"""
Module: receivables_kernel.models.receipt
Responsibility: ORM models for receipts (money received) and the allocation
    rows that link a receipt to the debt documents it pays.
Architecture position: Kernel > Models.  Imports db/ and domain/.

Invariants enforced:
    - receipt.amount == receipt.unallocated_amount + sum(allocation.amount)
      for every committed state (maintained by the lifecycle services).
    - unallocated_amount >= 0 (check constraint).
    - ReceiptAllocation.amount > 0 and exactly one of invoice_id /
      advance_id is set, matching target_type (check constraints).
    - Allocation rows are created only by a successful allocation run and
      deleted only by a void reversal.

Audit relevance:
    ``allocation_targets`` is the restore hint captured before void: unvoid
    rebuilds the SELECTED state from it instead of from deleted rows.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from receivables_kernel.db.base import Base, TrackedBase, UUIDString, VoidableMixin
from receivables_kernel.db.types import enum_column
from receivables_kernel.domain.dtos import ReceiptView, targets_from_json
from receivables_kernel.domain.types import (
    AllocationMode,
    AllocationPriority,
    AllocationSource,
    AllocationStatus,
    ReceiptMethod,
    ReceiptStatus,
    TargetType,
)


class Receipt(VoidableMixin, TrackedBase):
    """
    A payment received from a customer.

    Contract:
        DRAFT -> APPROVED -> VOID -> DRAFT.  Allocation rows exist only while
        APPROVED.  Drafts and void receipts carry unallocated == amount.

    Guarantees:
        - version starts at 0 and increases by exactly one per accepted
          mutation.
        - deleted_at / deleted_by are set iff status is VOID.
    """

    __tablename__ = "receipts"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_receipts_amount_positive"),
        CheckConstraint("unallocated_amount >= 0", name="ck_receipts_unallocated_non_negative"),
        Index("idx_receipts_pair_status", "seller_tax_code", "customer_tax_code", "status"),
        Index("idx_receipts_allocation_status", "status", "allocation_status"),
    )

    seller_tax_code: Mapped[str] = mapped_column(String(32), nullable=False)
    customer_tax_code: Mapped[str] = mapped_column(String(32), nullable=False)
    receipt_no: Mapped[str | None] = mapped_column(String(64), nullable=True)
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False)
    applied_period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    unallocated_amount: Mapped[Decimal] = mapped_column(nullable=False)
    method: Mapped[ReceiptMethod] = mapped_column(
        enum_column(ReceiptMethod), default=ReceiptMethod.BANK, nullable=False
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    allocation_mode: Mapped[AllocationMode] = mapped_column(
        enum_column(AllocationMode), default=AllocationMode.FIFO, nullable=False
    )
    allocation_priority: Mapped[AllocationPriority] = mapped_column(
        enum_column(AllocationPriority), default=AllocationPriority.ISSUE_DATE, nullable=False
    )
    allocation_status: Mapped[AllocationStatus] = mapped_column(
        enum_column(AllocationStatus), default=AllocationStatus.UNALLOCATED, nullable=False
    )
    allocation_source: Mapped[AllocationSource | None] = mapped_column(
        enum_column(AllocationSource), nullable=True
    )
    allocation_suggested_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # Serialized list of {"id", "target_type", "amount"?}
    allocation_targets: Mapped[list | None] = mapped_column(JSON, nullable=True)

    status: Mapped[ReceiptStatus] = mapped_column(
        enum_column(ReceiptStatus), default=ReceiptStatus.DRAFT, nullable=False
    )
    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> ReceiptView:
        return ReceiptView(
            id=self.id,
            seller_tax_code=self.seller_tax_code,
            customer_tax_code=self.customer_tax_code,
            receipt_no=self.receipt_no,
            receipt_date=self.receipt_date,
            applied_period_start=self.applied_period_start,
            amount=self.amount,
            unallocated_amount=self.unallocated_amount,
            method=self.method,
            description=self.description,
            allocation_mode=self.allocation_mode,
            allocation_priority=self.allocation_priority,
            allocation_status=self.allocation_status,
            allocation_source=self.allocation_source,
            allocation_suggested_at=self.allocation_suggested_at,
            allocation_targets=targets_from_json(self.allocation_targets),
            status=self.status,
            version=self.version,
            approved_at=self.approved_at,
            void_reason=self.void_reason,
            deleted_at=self.deleted_at,
        )

    def __repr__(self) -> str:
        return (
            f"<Receipt {self.receipt_no or self.id}: {self.amount} "
            f"{self.status.value}/{self.allocation_status.value} v{self.version}>"
        )


class ReceiptAllocation(Base):
    """
    Monetary link between a receipt and one invoice or advance.

    Guarantees:
        - amount > 0.
        - target_type INVOICE => invoice_id set, advance_id NULL; ADVANCE
          the other way round.
    Non-goals:
        - Rows are never updated; reversal deletes them.
    """

    __tablename__ = "receipt_allocations"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_receipt_allocations_amount_positive"),
        CheckConstraint(
            "(target_type = 'INVOICE' AND invoice_id IS NOT NULL AND advance_id IS NULL) OR "
            "(target_type = 'ADVANCE' AND advance_id IS NOT NULL AND invoice_id IS NULL)",
            name="ck_receipt_allocations_single_target",
        ),
        Index("idx_receipt_allocations_receipt", "receipt_id"),
        Index("idx_receipt_allocations_invoice", "invoice_id"),
        Index("idx_receipt_allocations_advance", "advance_id"),
    )

    receipt_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("receipts.id"), nullable=False
    )
    target_type: Mapped[TargetType] = mapped_column(enum_column(TargetType), nullable=False)
    invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=True
    )
    advance_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("advances.id"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    @property
    def target_id(self) -> UUID:
        return self.invoice_id if self.target_type == TargetType.INVOICE else self.advance_id

    def __repr__(self) -> str:
        return f"<ReceiptAllocation {self.receipt_id} -> {self.target_type.value} {self.target_id}: {self.amount}>"
