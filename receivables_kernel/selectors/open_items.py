"""
Module: receivables_kernel.selectors.open_items
Responsibility: Load the open invoices and advances a receipt may pay, for
    one seller+customer pair or for many pairs at once, sorted in payment
    order.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - An open item is an invoice or approved advance in OPEN / PARTIAL
      status, not soft-deleted, with outstanding_amount > 0.
    - Sort key: (priority date ascending, INVOICE before ADVANCE, document
      number).  The priority date is the document date for ISSUE_DATE and
      document date + customer payment-terms days for DUE_DATE.
    - ``load_grouped`` issues exactly three queries (customers, invoices,
      advances) regardless of how many pairs it is given.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta

from sqlalchemy import select

from receivables_kernel.domain.dtos import OpenItem
from receivables_kernel.domain.types import AllocationPriority, DebtStatus, TargetType
from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.debt_document import Advance, DebtDocumentMixin, Invoice
from receivables_kernel.models.party import Customer
from receivables_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.open_items")

Pair = tuple[str, str]

_OPEN_STATUSES = (DebtStatus.OPEN, DebtStatus.PARTIAL)
_TYPE_RANK = {TargetType.INVOICE: 0, TargetType.ADVANCE: 1}


def sort_open_items(items: Iterable[OpenItem], priority: AllocationPriority) -> list[OpenItem]:
    """Resolver order: oldest priority date first, invoices before advances."""

    def key(item: OpenItem):
        primary = item.due_date if priority == AllocationPriority.DUE_DATE else item.issue_date
        return (primary, _TYPE_RANK[item.target_type], item.document_no)

    return sorted(items, key=key)


def to_open_item(doc: DebtDocumentMixin, terms_days: int) -> OpenItem:
    """DTO view of a debt document; due date = document date + terms days."""
    return OpenItem(
        target_id=doc.id,
        target_type=doc.document_type,
        document_no=doc.document_no,
        issue_date=doc.document_date,
        due_date=doc.document_date + timedelta(days=terms_days),
        total_amount=doc.total,
        outstanding_amount=doc.outstanding_amount,
        seller_tax_code=doc.seller_tax_code,
        customer_tax_code=doc.customer_tax_code,
    )


class OpenItemSelector(BaseSelector):
    """
    Open-item resolver.

    Contract:
        Returns ``OpenItem`` DTOs sorted by ``sort_open_items``.

    Non-goals:
        - Does not lock rows; approvals guard targets with version CAS.
    """

    def __init__(self, session, default_terms_days: int = 30):
        super().__init__(session)
        self.default_terms_days = default_terms_days

    def list_open_items(
        self,
        seller_tax_code: str,
        customer_tax_code: str,
        priority: AllocationPriority = AllocationPriority.ISSUE_DATE,
    ) -> list[OpenItem]:
        """Open items of one seller+customer pair, in payment order."""
        pair = (seller_tax_code, customer_tax_code)
        return self.load_grouped([pair], priority).get(pair, [])

    def load_grouped(
        self,
        pairs: Iterable[Pair],
        priority: AllocationPriority = AllocationPriority.ISSUE_DATE,
    ) -> dict[Pair, list[OpenItem]]:
        """
        Open items for many pairs in three queries, grouped in memory.

        Returns:
            Mapping of (seller_tax_code, customer_tax_code) to sorted items.
            Pairs without open items map to an empty list.
        """
        wanted = set(pairs)
        if not wanted:
            return {}
        sellers = sorted({s for s, _ in wanted})
        customers = sorted({c for _, c in wanted})

        terms = {
            code: days
            for code, days in self.session.execute(
                select(Customer.tax_code, Customer.payment_terms_days).where(
                    Customer.tax_code.in_(customers)
                )
            ).all()
        }

        grouped: dict[Pair, list[OpenItem]] = {pair: [] for pair in wanted}
        for model in (Invoice, Advance):
            rows = self.session.scalars(
                select(model).where(
                    model.seller_tax_code.in_(sellers),
                    model.customer_tax_code.in_(customers),
                    model.status.in_(_OPEN_STATUSES),
                    model.deleted_at.is_(None),
                    model.outstanding_amount > 0,
                )
            ).all()
            for doc in rows:
                pair = (doc.seller_tax_code, doc.customer_tax_code)
                if pair not in grouped:
                    continue
                days = terms.get(doc.customer_tax_code)
                grouped[pair].append(
                    to_open_item(doc, days if days is not None else self.default_terms_days)
                )

        for pair, items in grouped.items():
            grouped[pair] = sort_open_items(items, priority)

        logger.debug(
            "open_items_loaded",
            extra={
                "pair_count": len(wanted),
                "item_count": sum(len(v) for v in grouped.values()),
            },
        )
        return grouped
