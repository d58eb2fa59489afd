"""
BalanceProjector -- keeps ``customer.current_balance`` in step with allocations.

Responsibility:
    Applies signed deltas to a customer's running balance as a side effect of
    committed approvals and reversals, and computes the balance a customer
    should have from the documents themselves.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - current_balance == sum(outstanding of approved, non-void debt)
                         - sum(unallocated of APPROVED receipts).
      Equivalently: sum(non-void invoice totals) + sum(approved advance
      amounts) - sum(APPROVED receipt amounts).
    - Deltas are applied with a single SQL-side increment
      (``current_balance = current_balance + :delta``) so concurrent
      transactions never lose each other's updates.

Delta rules:
    debt becomes open (invoice created/unvoided, advance approved) -> +total
    debt voided after approval                                      -> -total
    receipt approved                                                -> -amount
    APPROVED receipt voided                                         -> +amount
    allocating existing credit to existing debt                     ->  0
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from receivables_kernel.domain.clock import Clock
from receivables_kernel.domain.types import DebtStatus, ReceiptStatus
from receivables_kernel.exceptions import EntityNotFoundError
from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.debt_document import Advance, Invoice
from receivables_kernel.models.party import Customer
from receivables_kernel.models.receipt import Receipt
from receivables_kernel.services.base import BaseService

logger = get_logger("services.balance_projector")

_APPROVED_ADVANCE_STATUSES = (DebtStatus.OPEN, DebtStatus.PARTIAL, DebtStatus.PAID)


class BalanceProjector(BaseService):
    """
    Customer running-balance maintenance.

    Contract:
        ``apply_delta`` is called by lifecycle services in the same
        transaction as the allocation or reversal it accompanies, after
        target updates and before the audit write.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def apply_delta(self, customer_tax_code: str, delta: Decimal, reason: str) -> None:
        """Increment ``current_balance`` by ``delta`` (may be negative)."""
        if delta == 0:
            return
        result = self.session.execute(
            update(Customer)
            .where(Customer.tax_code == customer_tax_code)
            .values(current_balance=Customer.current_balance + delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise EntityNotFoundError("Customer", customer_tax_code)

        # Keep any loaded instance in step with the row
        for obj in self.session.identity_map.values():
            if isinstance(obj, Customer) and obj.tax_code == customer_tax_code:
                self.session.expire(obj, ["current_balance"])

        logger.info(
            "customer_balance_adjusted",
            extra={
                "customer_tax_code": customer_tax_code,
                "delta": str(delta),
                "reason": reason,
            },
        )

    def expected_balances(self, customer_tax_codes: Iterable[str] | None = None) -> dict[str, Decimal]:
        """
        Balance each customer should have, from three grouped aggregates.

        Customers with no documents are absent from the result (expected 0).
        """
        codes = list(customer_tax_codes) if customer_tax_codes is not None else None

        invoice_q = (
            select(Invoice.customer_tax_code, func.coalesce(func.sum(Invoice.total_amount), 0))
            .where(Invoice.status != DebtStatus.VOID)
            .group_by(Invoice.customer_tax_code)
        )
        advance_q = (
            select(Advance.customer_tax_code, func.coalesce(func.sum(Advance.amount), 0))
            .where(Advance.status.in_(_APPROVED_ADVANCE_STATUSES))
            .group_by(Advance.customer_tax_code)
        )
        receipt_q = (
            select(Receipt.customer_tax_code, func.coalesce(func.sum(Receipt.amount), 0))
            .where(Receipt.status == ReceiptStatus.APPROVED)
            .group_by(Receipt.customer_tax_code)
        )
        if codes is not None:
            invoice_q = invoice_q.where(Invoice.customer_tax_code.in_(codes))
            advance_q = advance_q.where(Advance.customer_tax_code.in_(codes))
            receipt_q = receipt_q.where(Receipt.customer_tax_code.in_(codes))

        expected: dict[str, Decimal] = {}
        for code, total in self.session.execute(invoice_q).all():
            expected[code] = expected.get(code, Decimal("0")) + Decimal(str(total))
        for code, total in self.session.execute(advance_q).all():
            expected[code] = expected.get(code, Decimal("0")) + Decimal(str(total))
        for code, total in self.session.execute(receipt_q).all():
            expected[code] = expected.get(code, Decimal("0")) - Decimal(str(total))
        return expected
