"""
SuggestionScanner -- proposes allocation targets for unallocated drafts.

Responsibility:
    Finds DRAFT receipts nobody has allocated yet, runs the allocation
    engine for them against their customer's open items and stores the
    result as a suggestion a person approves later.

Architecture position:
    Batch > Services.  Driven by the ``receivables.suggest_allocations``
    task; flush-only, the caller owns the transaction.

Invariants enforced:
    - Bounded reads: one candidate query, then three queries per chunk of
      up to ``scanner_batch_size`` seller+customer pairs, however many
      pairs a chunk holds.  No query per receipt or per pair.
    - Within a pair, receipts are processed oldest first against an
      in-memory copy of outstanding amounts, so two suggestions never
      claim the same money.
    - Writes only suggestion metadata (SUGGESTED / AUTO / targets with
      amounts / suggested_at, mode MANUAL) and version + 1.  Never writes
      allocation rows or balances.

Audit relevance:
    RECEIPT_AUTO_ALLOCATE per suggested receipt.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from receivables_config import ReceivablesConfig, get_active_config
from receivables_engines.allocation import AllocationEngine
from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.domain.dtos import targets_from_json, targets_to_json
from receivables_kernel.domain.types import (
    AllocationMode,
    AllocationSource,
    AllocationStatus,
    AuditAction,
    ReceiptStatus,
)
from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.receipt import Receipt
from receivables_kernel.selectors.open_items import OpenItemSelector, sort_open_items
from receivables_kernel.services.audit_service import AuditLogService, AuditTrail
from receivables_kernel.services.base import claim_version

logger = get_logger("batch.suggestion_scanner")

Pair = tuple[str, str]


@dataclass(frozen=True)
class SuggestionGroupResult:
    seller_tax_code: str
    customer_tax_code: str
    receipts_scanned: int
    receipts_suggested: int


@dataclass(frozen=True)
class SuggestionScanResult:
    """Totals of one scan, with a row per seller+customer pair."""

    receipts_scanned: int = 0
    receipts_suggested: int = 0
    groups: tuple[SuggestionGroupResult, ...] = ()

    def merge(self, other: SuggestionScanResult) -> SuggestionScanResult:
        return SuggestionScanResult(
            receipts_scanned=self.receipts_scanned + other.receipts_scanned,
            receipts_suggested=self.receipts_suggested + other.receipts_suggested,
            groups=self.groups + other.groups,
        )


def group_by_pair(receipts: Sequence[Receipt]) -> dict[Pair, list[Receipt]]:
    """Receipts keyed by (seller, customer), keeping input order."""
    groups: dict[Pair, list[Receipt]] = {}
    for receipt in receipts:
        groups.setdefault((receipt.seller_tax_code, receipt.customer_tax_code), []).append(receipt)
    return groups


def chunk_by_pairs(receipts: Sequence[Receipt], batch_size: int) -> list[list[Receipt]]:
    """Split receipts into chunks spanning at most ``batch_size`` pairs each."""
    pairs = list(group_by_pair(receipts).items())
    chunks: list[list[Receipt]] = []
    for start in range(0, len(pairs), batch_size):
        chunk: list[Receipt] = []
        for _, group in pairs[start:start + batch_size]:
            chunk.extend(group)
        chunks.append(chunk)
    return chunks


class SuggestionScanner:
    """
    Batch allocation suggestions.

    Contract:
        ``scan`` processes every candidate; ``scan_receipts`` processes one
        chunk the caller already loaded.

    Non-goals:
        - Does NOT approve anything and does NOT check period locks; a
          suggestion is only a stored preview.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: ReceivablesConfig | None = None,
        actor_id: UUID | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._actor_id = actor_id
        self._selector = OpenItemSelector(session, self._config.default_payment_terms_days)
        self._engine = AllocationEngine()
        self._audit = AuditTrail(AuditLogService(session, self._clock))

    def candidate_receipts(self, limit: int | None = None) -> list[Receipt]:
        """DRAFT, unallocated, not deleted receipts, oldest first."""
        stmt = (
            select(Receipt)
            .where(
                Receipt.status == ReceiptStatus.DRAFT,
                Receipt.allocation_status == AllocationStatus.UNALLOCATED,
                Receipt.deleted_at.is_(None),
            )
            .order_by(Receipt.receipt_date, Receipt.created_at, Receipt.id)
            .limit(limit if limit is not None else self._config.scanner_max_receipts)
            .execution_options(populate_existing=True)
        )
        return list(self._session.scalars(stmt).all())

    def scan(self, max_receipts: int | None = None, batch_size: int | None = None) -> SuggestionScanResult:
        size = batch_size or self._config.scanner_batch_size
        candidates = self.candidate_receipts(max_receipts)

        result = SuggestionScanResult()
        for chunk in chunk_by_pairs(candidates, size):
            result = result.merge(self.scan_receipts(chunk))

        logger.info(
            "suggestion_scan_completed",
            extra={
                "receipts_scanned": result.receipts_scanned,
                "receipts_suggested": result.receipts_suggested,
                "group_count": len(result.groups),
            },
        )
        return result

    def scan_receipts(self, receipts: Sequence[Receipt]) -> SuggestionScanResult:
        """
        Suggest targets for one chunk of candidate receipts.

        Reads the open items of every pair in the chunk with one grouped
        load, then allocates purely in memory.
        """
        groups = group_by_pair(receipts)
        if not groups:
            return SuggestionScanResult()
        open_items = self._selector.load_grouped(groups.keys())
        now = self._clock.now()

        group_results: list[SuggestionGroupResult] = []
        suggested_total = 0
        for pair, group in groups.items():
            items = open_items.get(pair, [])
            remaining: dict = {(i.target_type, i.target_id): i.outstanding_amount for i in items}
            suggested = 0
            for receipt in group:
                if self._suggest(receipt, items, remaining, now):
                    suggested += 1
            suggested_total += suggested
            group_results.append(SuggestionGroupResult(pair[0], pair[1], len(group), suggested))

        self._session.flush()
        return SuggestionScanResult(
            receipts_scanned=len(receipts),
            receipts_suggested=suggested_total,
            groups=tuple(group_results),
        )

    def _suggest(self, receipt: Receipt, items, remaining: dict, now) -> bool:
        candidates = [
            item.with_outstanding(remaining[(item.target_type, item.target_id)])
            for item in sort_open_items(items, receipt.allocation_priority)
            if remaining[(item.target_type, item.target_id)] > Decimal("0")
        ]
        if not candidates:
            return False
        ordered = self._engine.order_targets(
            candidates,
            receipt.allocation_mode,
            targets_from_json(receipt.allocation_targets),
            receipt.applied_period_start,
        )
        result = self._engine.allocate(receipt.amount, ordered)
        if not result.lines:
            return False

        for line in result.lines:
            remaining[(line.target_type, line.target_id)] -= line.amount

        claim_version(self._session, receipt, receipt.version, "Receipt")
        refs = [line.to_target_ref() for line in result.lines]
        receipt.allocation_status = AllocationStatus.SUGGESTED
        receipt.allocation_source = AllocationSource.AUTO
        receipt.allocation_suggested_at = now
        receipt.allocation_mode = AllocationMode.MANUAL
        receipt.allocation_targets = targets_to_json(refs)
        receipt.updated_by_id = self._actor_id

        self._audit.record(
            AuditAction.RECEIPT_AUTO_ALLOCATE,
            "Receipt",
            receipt.id,
            self._actor_id,
            after={
                "targets": [ref.to_json() for ref in refs],
                "unallocated_amount": result.unallocated,
            },
        )
        return True
