"""
Batch tasks: receipt allocation suggestions and open-credit sweeping.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from receivables_batch.domain.types import BatchItemStatus
from receivables_batch.services.suggestion_scanner import SuggestionScanner, chunk_by_pairs
from receivables_batch.tasks.base import BatchItemInput, BatchTaskResult
from receivables_config import ReceivablesConfig, get_active_config
from receivables_engines.allocation import AllocationEngine
from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.domain.types import AllocationStatus, AuditAction, ReceiptStatus
from receivables_kernel.exceptions import ReceivablesError
from receivables_kernel.models.receipt import Receipt
from receivables_kernel.selectors.open_items import OpenItemSelector
from receivables_kernel.services.audit_service import AuditLogService, AuditTrail
from receivables_services.allocation_writer import AllocationWriter
from receivables_services.credit_application import CreditApplicationService

# Attribution for rows written by scheduled runs
BATCH_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")


def _actor(parameters: dict[str, Any]) -> UUID:
    value = parameters.get("actor_id")
    return UUID(str(value)) if value else BATCH_ACTOR_ID


class SuggestAllocationsTask:
    """Batch task storing allocation suggestions on unallocated draft receipts.

    One item per chunk of up to ``batch_size`` seller+customer pairs.
    """

    def __init__(self, clock: Clock | None = None, config: ReceivablesConfig | None = None):
        self._clock = clock or SystemClock()
        self._config = config

    @property
    def task_type(self) -> str:
        return "receivables.suggest_allocations"

    @property
    def description(self) -> str:
        return "Suggest allocation targets for unallocated draft receipts"

    def _scanner(self, session: Session, parameters: dict[str, Any]) -> SuggestionScanner:
        return SuggestionScanner(
            session,
            clock=self._clock,
            config=self._config or get_active_config(),
            actor_id=_actor(parameters),
        )

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        config = self._config or get_active_config()
        scanner = self._scanner(session, parameters)
        receipts = scanner.candidate_receipts(parameters.get("max_receipts"))
        chunks = chunk_by_pairs(receipts, int(parameters.get("batch_size") or config.scanner_batch_size))
        return tuple(
            BatchItemInput(
                item_index=i,
                item_key=f"chunk-{i}",
                payload={"receipt_ids": [str(r.id) for r in chunk]},
            )
            for i, chunk in enumerate(chunks)
        )

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        ids = [UUID(value) for value in item.payload.get("receipt_ids", [])]
        # Receipts approved or edited since preparation drop out here
        receipts = session.scalars(
            select(Receipt)
            .where(
                Receipt.id.in_(ids),
                Receipt.status == ReceiptStatus.DRAFT,
                Receipt.allocation_status == AllocationStatus.UNALLOCATED,
                Receipt.deleted_at.is_(None),
            )
            .order_by(Receipt.receipt_date, Receipt.created_at, Receipt.id)
            .execution_options(populate_existing=True)
        ).all()
        try:
            result = self._scanner(session, parameters).scan_receipts(receipts)
        except ReceivablesError as exc:
            return BatchTaskResult(
                status=BatchItemStatus.FAILED,
                error_code=exc.code,
                error_message=str(exc),
            )
        if result.receipts_suggested == 0:
            return BatchTaskResult(status=BatchItemStatus.SKIPPED)
        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            result_data={
                "receipts_scanned": result.receipts_scanned,
                "receipts_suggested": result.receipts_suggested,
            },
        )


class ApplyOpenCreditsTask:
    """Batch task spending approved receipts' leftover credit on open items.

    One item per seller+customer pair holding open credit.
    """

    def __init__(self, clock: Clock | None = None, config: ReceivablesConfig | None = None):
        self._clock = clock or SystemClock()
        self._config = config

    @property
    def task_type(self) -> str:
        return "receivables.apply_open_credits"

    @property
    def description(self) -> str:
        return "Apply unallocated approved receipt credit to open invoices and advances"

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        pairs = session.execute(
            select(Receipt.seller_tax_code, Receipt.customer_tax_code)
            .where(
                Receipt.status == ReceiptStatus.APPROVED,
                Receipt.deleted_at.is_(None),
                Receipt.unallocated_amount > 0,
            )
            .distinct()
            .order_by(Receipt.seller_tax_code, Receipt.customer_tax_code)
        ).all()
        return tuple(
            BatchItemInput(
                item_index=i,
                item_key=f"{seller}:{customer}",
                payload={"seller_tax_code": seller, "customer_tax_code": customer},
            )
            for i, (seller, customer) in enumerate(pairs)
        )

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        config = self._config or get_active_config()
        seller = item.payload["seller_tax_code"]
        customer = item.payload["customer_tax_code"]
        actor_id = _actor(parameters)
        credits = CreditApplicationService(
            session,
            AllocationEngine(),
            OpenItemSelector(session, config.default_payment_terms_days),
        )
        try:
            sweep = credits.sweep_pair(seller, customer, actor_id, AllocationWriter(session, self._clock))
            if sweep.allocations_created == 0:
                return BatchTaskResult(status=BatchItemStatus.SKIPPED)
            AuditTrail(AuditLogService(session, self._clock)).record(
                AuditAction.RECEIPT_AUTO_ALLOCATE,
                "Customer",
                customer,
                actor_id,
                after={"seller_tax_code": seller, "sweep": sweep},
            )
        except ReceivablesError as exc:
            return BatchTaskResult(
                status=BatchItemStatus.FAILED,
                error_code=exc.code,
                error_message=str(exc),
            )
        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            result_data={
                "receipts_updated": sweep.receipts_updated,
                "documents_updated": sweep.documents_updated,
                "allocations_created": sweep.allocations_created,
            },
        )
