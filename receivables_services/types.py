"""
Request and result types for the receivables lifecycle services.

All frozen; collections are tuples.  Results carry ``*View`` DTOs, never
ORM instances.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from receivables_engines.allocation import AllocationLine
from receivables_kernel.domain.dtos import (
    AllocationTargetRef,
    DebtDocumentView,
    ReceiptView,
)
from receivables_kernel.domain.types import (
    AllocationMode,
    AllocationPriority,
    ReceiptMethod,
)


@dataclass(frozen=True)
class LockOverride:
    """Request to commit into a locked period.  ``reason`` must be non-blank."""

    reason: str


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReceiptInput:
    """Fields of a receipt draft, as supplied by the caller."""

    seller_tax_code: str
    customer_tax_code: str
    amount: Decimal
    receipt_date: date
    receipt_no: str | None = None
    applied_period_start: date | None = None
    method: ReceiptMethod | str | None = None
    description: str | None = None
    allocation_mode: AllocationMode | str | None = None
    allocation_priority: AllocationPriority | str | None = None
    targets: tuple[AllocationTargetRef, ...] = ()


@dataclass(frozen=True)
class AllocationPreview:
    """Dry-run allocation: what approving now would write."""

    lines: tuple[AllocationLine, ...]
    unallocated_amount: Decimal

    @property
    def allocated_amount(self) -> Decimal:
        return sum((line.amount for line in self.lines), Decimal("0"))


@dataclass(frozen=True)
class ReceiptDraftResult:
    """A created or updated draft with its allocation preview."""

    receipt: ReceiptView
    preview: AllocationPreview


@dataclass(frozen=True)
class ReceiptVoidResult:
    receipt: ReceiptView
    reversed_amount: Decimal
    reversed_allocations: int


@dataclass(frozen=True)
class BulkApproveItem:
    receipt_id: UUID
    version: int
    targets: tuple[AllocationTargetRef, ...] | None = None
    override: LockOverride | None = None


@dataclass(frozen=True)
class BulkApproveItemResult:
    receipt_id: UUID
    result: str  # "APPROVED" | "FAILED"
    error_code: str | None = None
    error_message: str | None = None
    receipt: ReceiptView | None = None

    @property
    def is_approved(self) -> bool:
        return self.result == "APPROVED"


@dataclass(frozen=True)
class BulkApproveResult:
    total: int
    approved: int
    failed: int
    items: tuple[BulkApproveItemResult, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Debt documents
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvoiceInput:
    """Fields of a new invoice."""

    seller_tax_code: str
    customer_tax_code: str
    invoice_no: str
    issue_date: date
    total_amount: Decimal
    note: str | None = None


@dataclass(frozen=True)
class AdvanceInput:
    """Fields of a new pay-on-behalf advance."""

    seller_tax_code: str
    customer_tax_code: str
    amount: Decimal
    advance_date: date
    advance_no: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class CreditApplicationLine:
    """Credit moved from one receipt onto one document."""

    receipt_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class CreditApplicationResult:
    """Outcome of applying open receipt credit to one debt document."""

    document_id: UUID
    lines: tuple[CreditApplicationLine, ...] = ()

    @property
    def total_applied(self) -> Decimal:
        return sum((line.amount for line in self.lines), Decimal("0"))


@dataclass(frozen=True)
class DebtDocumentResult:
    """A debt document after a lifecycle operation."""

    document: DebtDocumentView
    credit_applied: CreditApplicationResult | None = None


@dataclass(frozen=True)
class DebtVoidResult:
    document: DebtDocumentView
    reversed_amount: Decimal
    reversed_allocations: int


# ---------------------------------------------------------------------------
# Balance reconcile
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalanceDrift:
    customer_tax_code: str
    current_balance: Decimal
    expected_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.current_balance - self.expected_balance

    @property
    def absolute_drift(self) -> Decimal:
        return abs(self.difference)


@dataclass(frozen=True)
class BalanceReconcileResult:
    checked_customers: int
    drifted_customers: int
    total_abs_drift: Decimal
    max_abs_drift: Decimal
    updated_customers: int
    top_drifts: tuple[BalanceDrift, ...] = ()
