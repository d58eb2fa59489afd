"""
receivables_kernel.domain.types -- Status and mode enums shared by every layer.

ZERO I/O.  Values are the upper-case codes stored in the database and
returned to callers.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


class TargetType(str, Enum):
    """Kind of debt document an allocation points at."""

    INVOICE = "INVOICE"
    ADVANCE = "ADVANCE"


class DebtStatus(str, Enum):
    """Lifecycle status of an invoice or advance.

    DRAFT is only used by advances awaiting approval.  OPEN/PARTIAL/PAID
    follow from outstanding vs. total; VOID is a soft delete.
    """

    DRAFT = "DRAFT"
    OPEN = "OPEN"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    VOID = "VOID"

    @classmethod
    def from_amounts(cls, total: Decimal, outstanding: Decimal) -> DebtStatus:
        """Derive OPEN / PARTIAL / PAID from the amounts."""
        if outstanding <= 0:
            return cls.PAID
        if outstanding < total:
            return cls.PARTIAL
        return cls.OPEN

    @property
    def is_open(self) -> bool:
        return self in (DebtStatus.OPEN, DebtStatus.PARTIAL)


class ReceiptStatus(str, Enum):
    """Receipt lifecycle: DRAFT -> APPROVED -> VOID -> DRAFT."""

    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    VOID = "VOID"


class AllocationMode(str, Enum):
    """How approval picks targets for a receipt."""

    MANUAL = "MANUAL"  # Caller-selected targets, in caller order
    FIFO = "FIFO"  # All open items, resolver order
    BY_INVOICE = "BY_INVOICE"  # Selected targets, FIFO fallback
    BY_PERIOD = "BY_PERIOD"  # Items of the applied month first

    @property
    def uses_selection(self) -> bool:
        return self in (AllocationMode.MANUAL, AllocationMode.BY_INVOICE)


class AllocationPriority(str, Enum):
    """Primary sort date for open items."""

    ISSUE_DATE = "ISSUE_DATE"
    DUE_DATE = "DUE_DATE"


class AllocationStatus(str, Enum):
    """Allocation state of a receipt."""

    UNALLOCATED = "UNALLOCATED"
    SELECTED = "SELECTED"
    SUGGESTED = "SUGGESTED"
    PARTIAL = "PARTIAL"
    ALLOCATED = "ALLOCATED"
    VOID = "VOID"

    @classmethod
    def for_approved(cls, unallocated: Decimal) -> AllocationStatus:
        """ALLOCATED when nothing is left over, PARTIAL otherwise."""
        return cls.ALLOCATED if unallocated <= 0 else cls.PARTIAL


class AllocationSource(str, Enum):
    """Who chose the stored allocation targets."""

    MANUAL = "MANUAL"
    AUTO = "AUTO"


class ReceiptMethod(str, Enum):
    BANK = "BANK"
    CASH = "CASH"
    OTHER = "OTHER"


class PeriodType(str, Enum):
    """Granularity of a period lock."""

    MONTH = "MONTH"
    QUARTER = "QUARTER"
    YEAR = "YEAR"


class AuditAction(str, Enum):
    """Actions written to the audit sink."""

    RECEIPT_CREATE = "RECEIPT_CREATE"
    RECEIPT_UPDATE_DRAFT = "RECEIPT_UPDATE_DRAFT"
    RECEIPT_APPROVE = "RECEIPT_APPROVE"
    RECEIPT_VOID = "RECEIPT_VOID"
    RECEIPT_UNVOID = "RECEIPT_UNVOID"
    RECEIPT_AUTO_ALLOCATE = "RECEIPT_AUTO_ALLOCATE"
    INVOICE_CREATE = "INVOICE_CREATE"
    INVOICE_VOID = "INVOICE_VOID"
    INVOICE_UNVOID = "INVOICE_UNVOID"
    ADVANCE_CREATE = "ADVANCE_CREATE"
    ADVANCE_APPROVE = "ADVANCE_APPROVE"
    ADVANCE_VOID = "ADVANCE_VOID"
    ADVANCE_UNVOID = "ADVANCE_UNVOID"
    PERIOD_LOCK = "PERIOD_LOCK"
    PERIOD_UNLOCK = "PERIOD_UNLOCK"
    PERIOD_LOCK_OVERRIDE = "PERIOD_LOCK_OVERRIDE"
    CUSTOMER_BALANCE_RECONCILE = "CUSTOMER_BALANCE_RECONCILE"
