"""
Module: receivables_kernel.models.debt_document
Responsibility: ORM models for debt documents -- invoices and pay-on-behalf
    advances.  Both share one lifecycle (OPEN -> PARTIAL -> PAID, VOID as a
    restorable soft delete) through DebtDocumentMixin; advances additionally
    start as DRAFT and need approval.
Architecture position: Kernel > Models.  Imports db/ and domain/.

Invariants enforced:
    - outstanding_amount >= 0 and <= total (check constraints).
    - status is PAID iff outstanding_amount == 0 (maintained by services via
      ``refresh_status``).
    - version increases by one per accepted mutation (compare-and-swap in
      services/base.py).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from receivables_kernel.db.base import TrackedBase, UUIDString, VoidableMixin
from receivables_kernel.db.types import enum_column
from receivables_kernel.domain.dtos import DebtDocumentView
from receivables_kernel.domain.types import DebtStatus, TargetType


class DebtDocumentMixin(VoidableMixin):
    """
    Columns and behavior shared by invoices and advances.

    Subclasses provide ``document_no``, ``document_date`` and ``total`` as
    read-only views over their own columns.
    """

    seller_tax_code: Mapped[str] = mapped_column(String(32), nullable=False)
    customer_tax_code: Mapped[str] = mapped_column(String(32), nullable=False)
    outstanding_amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[DebtStatus] = mapped_column(enum_column(DebtStatus), nullable=False)

    document_type: ClassVar[TargetType]

    @property
    def is_void(self) -> bool:
        return self.status == DebtStatus.VOID

    def refresh_status(self) -> None:
        """Recompute OPEN / PARTIAL / PAID from the amounts."""
        self.status = DebtStatus.from_amounts(self.total, self.outstanding_amount)

    def to_dto(self) -> DebtDocumentView:
        return DebtDocumentView(
            id=self.id,
            document_type=self.document_type,
            document_no=self.document_no,
            seller_tax_code=self.seller_tax_code,
            customer_tax_code=self.customer_tax_code,
            document_date=self.document_date,
            total_amount=self.total,
            outstanding_amount=self.outstanding_amount,
            status=self.status,
            version=self.version,
            void_reason=self.void_reason,
            deleted_at=self.deleted_at,
        )


class Invoice(DebtDocumentMixin, TrackedBase):
    """
    A sales invoice owed by a customer to a seller.

    Guarantees:
        - invoice_no is unique per seller (uq_invoices_seller_no).
        - Created directly in OPEN status (no draft stage).
    """

    __tablename__ = "invoices"

    __table_args__ = (
        CheckConstraint("outstanding_amount >= 0", name="ck_invoices_outstanding_non_negative"),
        CheckConstraint("outstanding_amount <= total_amount", name="ck_invoices_outstanding_le_total"),
        Index("uq_invoices_seller_no", "seller_tax_code", "invoice_no", unique=True),
        Index("idx_invoices_pair_status", "seller_tax_code", "customer_tax_code", "status"),
    )

    document_type = TargetType.INVOICE

    invoice_no: Mapped[str] = mapped_column(String(64), nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def document_no(self) -> str:
        return self.invoice_no

    @property
    def document_date(self) -> date:
        return self.issue_date

    @property
    def total(self) -> Decimal:
        return self.total_amount

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_no}: {self.outstanding_amount}/{self.total_amount} {self.status.value}>"


class Advance(DebtDocumentMixin, TrackedBase):
    """
    A pay-on-behalf advance: money the seller paid for the customer.

    Contract:
        Created as DRAFT with outstanding == amount; only approved advances
        (OPEN / PARTIAL / PAID) count as debt and receive allocations.
    """

    __tablename__ = "advances"

    __table_args__ = (
        CheckConstraint("outstanding_amount >= 0", name="ck_advances_outstanding_non_negative"),
        CheckConstraint("outstanding_amount <= amount", name="ck_advances_outstanding_le_amount"),
        Index("idx_advances_pair_status", "seller_tax_code", "customer_tax_code", "status"),
    )

    document_type = TargetType.ADVANCE

    advance_no: Mapped[str | None] = mapped_column(String(64), nullable=True)
    advance_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def document_no(self) -> str:
        return self.advance_no or str(self.id)

    @property
    def document_date(self) -> date:
        return self.advance_date

    @property
    def total(self) -> Decimal:
        return self.amount

    def __repr__(self) -> str:
        return f"<Advance {self.document_no}: {self.outstanding_amount}/{self.amount} {self.status.value}>"
