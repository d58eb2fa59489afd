"""ORM models for the receivables kernel."""

from receivables_kernel.models.audit_log import AuditLog
from receivables_kernel.models.debt_document import Advance, DebtDocumentMixin, Invoice
from receivables_kernel.models.party import Customer, Seller
from receivables_kernel.models.period_lock import PeriodLock
from receivables_kernel.models.receipt import Receipt, ReceiptAllocation

__all__ = [
    "Seller",
    "Customer",
    "Invoice",
    "Advance",
    "DebtDocumentMixin",
    "Receipt",
    "ReceiptAllocation",
    "PeriodLock",
    "AuditLog",
    "import_all_models",
]


def import_all_models() -> tuple[type, ...]:
    """Return every mapped class so Base.metadata is complete."""
    return (Seller, Customer, Invoice, Advance, Receipt, ReceiptAllocation, PeriodLock, AuditLog)
