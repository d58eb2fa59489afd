"""
Receivables lifecycle services.

Each service owns the transaction boundary of its operations and builds on
the flush-only kernel services.
"""

from receivables_services.balance_reconcile_service import BalanceReconcileService
from receivables_services.credit_application import CreditApplicationService, CreditSweepResult
from receivables_services.debt_document_service import DebtDocumentService
from receivables_services.receipt_service import ReceiptService
from receivables_services.types import (
    AdvanceInput,
    AllocationPreview,
    BalanceDrift,
    BalanceReconcileResult,
    BulkApproveItem,
    BulkApproveItemResult,
    BulkApproveResult,
    CreditApplicationResult,
    DebtDocumentResult,
    DebtVoidResult,
    InvoiceInput,
    LockOverride,
    ReceiptDraftResult,
    ReceiptInput,
    ReceiptVoidResult,
)

__all__ = [
    "AdvanceInput",
    "AllocationPreview",
    "BalanceDrift",
    "BalanceReconcileResult",
    "BalanceReconcileService",
    "BulkApproveItem",
    "BulkApproveItemResult",
    "BulkApproveResult",
    "CreditApplicationResult",
    "CreditApplicationService",
    "CreditSweepResult",
    "DebtDocumentResult",
    "DebtDocumentService",
    "DebtVoidResult",
    "InvoiceInput",
    "LockOverride",
    "ReceiptDraftResult",
    "ReceiptInput",
    "ReceiptService",
    "ReceiptVoidResult",
]
