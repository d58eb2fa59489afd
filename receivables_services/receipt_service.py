"""
ReceiptService -- receipt lifecycle: create, edit, preview, approve, void,
unvoid, bulk approve.

Responsibility:
    Orchestrates the allocation engine, the open-item resolver and the
    kernel services for every receipt state change.  Owns the transaction
    boundary: each public mutation is one unit of work that commits on
    success and rolls back completely on any error.

Architecture position:
    Services -- imperative shell above receivables_kernel and
    receivables_engines.

Invariants enforced:
    - DRAFT -> APPROVED -> VOID -> DRAFT.  Unvoid never returns to APPROVED.
    - receipt.amount == unallocated_amount + sum(allocation rows) after every
      commit.  Drafts and void receipts hold no rows and unallocated ==
      amount.
    - A stale caller version raises CONFLICT before any write; accepted
      mutations move version by exactly one.
    - Validation, access and period lock checks run before the first write.
    - Within approval: allocation rows and target updates, then the
      balance delta, then the override audit entry, then the receipt audit
      entry.  An audit failure rolls everything back.

Failure modes:
    - VALIDATION, CONFLICT, LOCKED, FORBIDDEN, NOT_FOUND as typed
      ReceivablesError subclasses.
    - Anything else surfaces as InternalError after rollback.

Audit relevance:
    RECEIPT_CREATE, RECEIPT_UPDATE_DRAFT, RECEIPT_APPROVE, RECEIPT_VOID,
    RECEIPT_UNVOID, plus PERIOD_LOCK_OVERRIDE whenever an override is used.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TypeVar
from uuid import UUID

from receivables_engines.allocation import AllocationResult
from receivables_kernel.db.engine import transaction_scope
from receivables_kernel.domain.dtos import (
    AllocationTargetRef,
    OpenItem,
    ReceiptView,
    targets_from_json,
    targets_to_json,
)
from receivables_kernel.domain.periods import month_start
from receivables_kernel.domain.types import (
    AllocationMode,
    AllocationPriority,
    AllocationSource,
    AllocationStatus,
    AuditAction,
    ReceiptMethod,
    ReceiptStatus,
)
from receivables_kernel.exceptions import (
    InvalidStatusTransitionError,
    InvalidTargetError,
    MissingFieldError,
    OptimisticLockError,
    ReceivablesError,
    ValidationError,
)
from receivables_kernel.logging_config import LogContext, get_logger
from receivables_kernel.models.receipt import Receipt
from receivables_kernel.services.access_policy import ActorContext
from receivables_kernel.services.base import claim_version
from receivables_kernel.services.period_lock_service import PeriodLockCheck
from receivables_services.base import LifecycleService
from receivables_services.types import (
    AllocationPreview,
    BulkApproveItem,
    BulkApproveItemResult,
    BulkApproveResult,
    LockOverride,
    ReceiptDraftResult,
    ReceiptInput,
    ReceiptVoidResult,
)

logger = get_logger("services.receipt")

E = TypeVar("E", bound=Enum)


def parse_choice(enum_cls: type[E], value: E | str | None, default: E, field_name: str) -> E:
    """Normalize a caller-supplied enum value; blank means ``default``."""
    if value is None:
        return default
    if isinstance(value, enum_cls):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    try:
        return enum_cls(text)
    except ValueError as exc:
        raise ValidationError(f"Invalid {field_name}: {value!r}") from exc


@dataclass(frozen=True)
class _DraftFields:
    """Receipt input after normalization."""

    seller_tax_code: str
    customer_tax_code: str
    amount: Decimal
    receipt_date: date
    receipt_no: str | None
    applied_period_start: date | None
    method: ReceiptMethod
    description: str | None
    allocation_mode: AllocationMode
    allocation_priority: AllocationPriority
    targets: tuple[AllocationTargetRef, ...]


class ReceiptService(LifecycleService):
    """
    Receipt lifecycle orchestration.

    Contract:
        Every mutation takes the acting user and, except create, the
        version the caller last saw.  Results are ``ReceiptView`` snapshots.

    Non-goals:
        - Does NOT authenticate users; ``ActorContext`` is trusted input.
    """

    # =========================================================================
    # Drafts
    # =========================================================================

    def create(self, actor: ActorContext, data: ReceiptInput) -> ReceiptDraftResult:
        """
        Persist a DRAFT receipt and return it with its allocation preview.

        Selected targets must be open items of the pair and force MANUAL
        mode.  No allocation rows are written.
        """
        with LogContext.bind(actor_id=str(actor.user_id), operation="receipt_create"):
            with transaction_scope(self._session, "receipt_create"):
                fields = self._normalize(data)
                customer = self._get_customer(fields.customer_tax_code)
                self._ensure_seller(fields.seller_tax_code)
                self._access.ensure_can_manage(actor, customer, "create receipt")

                items = self._open_items.list_open_items(
                    fields.seller_tax_code, fields.customer_tax_code, fields.allocation_priority
                )
                self._validate_targets(fields.targets, items)
                preview = self._preview(fields.amount, fields.allocation_mode, fields.targets,
                                        fields.applied_period_start, items)

                receipt = Receipt(created_by_id=actor.user_id, version=0, status=ReceiptStatus.DRAFT)
                self._assign_draft_fields(receipt, fields)
                self._session.add(receipt)
                self._session.flush()

                self._audit.record(
                    AuditAction.RECEIPT_CREATE,
                    "Receipt",
                    receipt.id,
                    actor.user_id,
                    after=receipt.to_dto(),
                )
                view = receipt.to_dto()

            logger.info(
                "receipt_created",
                extra={
                    "receipt_id": str(view.id),
                    "amount": str(view.amount),
                    "allocation_mode": view.allocation_mode.value,
                    "allocation_status": view.allocation_status.value,
                },
            )
            return ReceiptDraftResult(receipt=view, preview=preview)

    def update_draft(
        self,
        actor: ActorContext,
        receipt_id: UUID,
        version: int,
        data: ReceiptInput,
    ) -> ReceiptDraftResult:
        """Replace the fields of a DRAFT receipt.  Version + 1."""
        with LogContext.bind(actor_id=str(actor.user_id), operation="receipt_update_draft",
                             entity_id=str(receipt_id)):
            with transaction_scope(self._session, "receipt_update_draft"):
                receipt = self._get_entity(Receipt, receipt_id)
                self._check_version(receipt, version)
                if receipt.status != ReceiptStatus.DRAFT:
                    raise InvalidStatusTransitionError(
                        "Receipt", str(receipt_id), receipt.status.value, "edit"
                    )
                fields = self._normalize(data)
                self._access.ensure_can_manage(
                    actor, self._get_customer(receipt.customer_tax_code), "edit receipt"
                )
                customer = self._get_customer(fields.customer_tax_code)
                self._ensure_seller(fields.seller_tax_code)
                self._access.ensure_can_manage(actor, customer, "edit receipt")

                items = self._open_items.list_open_items(
                    fields.seller_tax_code, fields.customer_tax_code, fields.allocation_priority
                )
                self._validate_targets(fields.targets, items)
                preview = self._preview(fields.amount, fields.allocation_mode, fields.targets,
                                        fields.applied_period_start, items)

                before = receipt.to_dto()
                self._claim(receipt, version)
                self._assign_draft_fields(receipt, fields)
                receipt.updated_by_id = actor.user_id
                self._session.flush()

                self._audit.record(
                    AuditAction.RECEIPT_UPDATE_DRAFT,
                    "Receipt",
                    receipt.id,
                    actor.user_id,
                    before=before,
                    after=receipt.to_dto(),
                )
                view = receipt.to_dto()

            logger.info("receipt_draft_updated", extra={"receipt_id": str(view.id), "version": view.version})
            return ReceiptDraftResult(receipt=view, preview=preview)

    def preview(
        self,
        seller_tax_code: str,
        customer_tax_code: str,
        amount: Decimal,
        mode: AllocationMode | str | None = None,
        targets: Sequence[AllocationTargetRef] | None = None,
        applied_period_start: date | None = None,
        priority: AllocationPriority | str | None = None,
    ) -> AllocationPreview:
        """
        Dry-run the allocation a receipt would get if approved now.

        Reads only.  Identical input over unchanged data gives identical
        output.
        """
        value = self._parse_amount(amount)
        if not seller_tax_code or not seller_tax_code.strip():
            raise MissingFieldError("seller_tax_code")
        if not customer_tax_code or not customer_tax_code.strip():
            raise MissingFieldError("customer_tax_code")
        selected = tuple(targets or ())
        alloc_mode = AllocationMode.MANUAL if selected else parse_choice(
            AllocationMode, mode, AllocationMode.FIFO, "allocation_mode"
        )
        alloc_priority = parse_choice(
            AllocationPriority, priority, self._config.default_allocation_priority, "allocation_priority"
        )
        applied = month_start(applied_period_start) if applied_period_start else None

        items = self._open_items.list_open_items(
            seller_tax_code.strip(), customer_tax_code.strip(), alloc_priority
        )
        self._validate_targets(selected, items)
        return self._preview(value, alloc_mode, selected, applied, items)

    # =========================================================================
    # Approval
    # =========================================================================

    def approve(
        self,
        actor: ActorContext,
        receipt_id: UUID,
        version: int,
        targets: Sequence[AllocationTargetRef] | None = None,
        override: LockOverride | None = None,
    ) -> ReceiptView:
        """
        DRAFT -> APPROVED: allocate the receipt and commit the allocation.

        Targets used, in order of precedence: ``targets`` (forces MANUAL),
        the stored selection for MANUAL / BY_INVOICE receipts, the mode's
        ordering of the customer's open items.

        Raises:
            OptimisticLockError, InvalidStatusTransitionError,
            AccessDeniedError, PeriodLockedError, OverrideNotPermittedError,
            OverrideReasonRequiredError, InvalidTargetError,
            EntityNotFoundError, InternalError.
        """
        with LogContext.bind(actor_id=str(actor.user_id), operation="receipt_approve",
                             entity_id=str(receipt_id)):
            logger.info("receipt_approve_started", extra={"receipt_id": str(receipt_id), "version": version})
            with transaction_scope(self._session, "receipt_approve"):
                view = self._approve(actor, receipt_id, version, targets, override)

            logger.info(
                "receipt_approved",
                extra={
                    "receipt_id": str(view.id),
                    "version": view.version,
                    "unallocated_amount": str(view.unallocated_amount),
                    "allocation_status": view.allocation_status.value,
                },
            )
            return view

    def _approve(
        self,
        actor: ActorContext,
        receipt_id: UUID,
        version: int,
        targets: Sequence[AllocationTargetRef] | None,
        override: LockOverride | None,
    ) -> ReceiptView:
        receipt = self._get_entity(Receipt, receipt_id)
        self._check_version(receipt, version)
        if receipt.status != ReceiptStatus.DRAFT:
            raise InvalidStatusTransitionError("Receipt", str(receipt_id), receipt.status.value, "approve")

        customer = self._get_customer(receipt.customer_tax_code)
        self._access.ensure_can_manage(actor, customer, "approve receipt")
        lock = self._check_lock(actor, receipt, "RECEIPT_APPROVE", override)

        items = self._open_items.list_open_items(
            receipt.seller_tax_code, receipt.customer_tax_code, receipt.allocation_priority
        )
        mode = receipt.allocation_mode
        explicit = tuple(targets) if targets else ()
        if explicit:
            self._validate_targets(explicit, items)
            mode = AllocationMode.MANUAL
            selected = explicit
        elif mode.uses_selection:
            selected = targets_from_json(receipt.allocation_targets)
        else:
            selected = ()

        ordered = self._engine.order_targets(items, mode, selected, receipt.applied_period_start)
        result = self._engine.allocate(receipt.amount, ordered)

        # Writes start here
        before = receipt.to_dto()
        writer = self._writer()
        self._claim(receipt, version)
        writer.mark_claimed(receipt, "Receipt")

        documents = writer.load_documents((line.target_type, line.target_id) for line in result.lines)
        writer.apply_lines(receipt, result.lines, actor.user_id, documents)
        self._balances.apply_delta(receipt.customer_tax_code, -receipt.amount, "receipt_approved")

        used = [line.to_target_ref() for line in result.lines]
        now = self._clock.now()
        receipt.unallocated_amount = result.unallocated
        receipt.allocation_status = AllocationStatus.for_approved(result.unallocated)
        receipt.allocation_mode = mode
        if explicit:
            receipt.allocation_source = AllocationSource.MANUAL
        if used:
            receipt.allocation_targets = targets_to_json(used)
        elif selected:
            receipt.allocation_targets = targets_to_json(selected)
        receipt.status = ReceiptStatus.APPROVED
        receipt.approved_at = now
        receipt.approved_by = actor.user_id
        receipt.updated_by_id = actor.user_id
        self._session.flush()

        self._locks.record_override(actor, lock, "Receipt", receipt.id, "RECEIPT_APPROVE")
        self._audit.record(
            AuditAction.RECEIPT_APPROVE,
            "Receipt",
            receipt.id,
            actor.user_id,
            before=before,
            after={
                "receipt": receipt.to_dto(),
                "allocations": [ref.to_json() for ref in used],
            },
        )
        return receipt.to_dto()

    def approve_bulk(
        self,
        actor: ActorContext,
        items: Sequence[BulkApproveItem],
        continue_on_error: bool = True,
    ) -> BulkApproveResult:
        """
        Approve several receipts, each in its own transaction.

        Failures are reported per item with their error code.  With
        ``continue_on_error=False`` processing stops at the first failure;
        items already approved stay committed, later items are not touched.
        """
        if not items:
            raise MissingFieldError("items")

        results: list[BulkApproveItemResult] = []
        approved = failed = 0
        with LogContext.bind(actor_id=str(actor.user_id), operation="receipt_approve_bulk"):
            for item in items:
                try:
                    view = self.approve(actor, item.receipt_id, item.version, item.targets, item.override)
                except ReceivablesError as exc:
                    failed += 1
                    results.append(
                        BulkApproveItemResult(
                            receipt_id=item.receipt_id,
                            result="FAILED",
                            error_code=exc.code,
                            error_message=str(exc),
                        )
                    )
                    logger.warning(
                        "receipt_bulk_item_failed",
                        extra={"receipt_id": str(item.receipt_id), "error_code": exc.code},
                    )
                    if not continue_on_error:
                        break
                else:
                    approved += 1
                    results.append(
                        BulkApproveItemResult(receipt_id=item.receipt_id, result="APPROVED", receipt=view)
                    )

            logger.info(
                "receipt_bulk_approve_completed",
                extra={"total": len(items), "approved": approved, "failed": failed},
            )
        return BulkApproveResult(total=len(items), approved=approved, failed=failed, items=tuple(results))

    # =========================================================================
    # Void / unvoid
    # =========================================================================

    def void(
        self,
        actor: ActorContext,
        receipt_id: UUID,
        version: int,
        reason: str,
        override: LockOverride | None = None,
    ) -> ReceiptVoidResult:
        """
        Void a DRAFT or APPROVED receipt, reversing every allocation.

        The stored allocation targets are kept so unvoid can restore the
        selection.
        """
        if not reason or not reason.strip():
            raise MissingFieldError("reason")

        with LogContext.bind(actor_id=str(actor.user_id), operation="receipt_void", entity_id=str(receipt_id)):
            with transaction_scope(self._session, "receipt_void"):
                receipt = self._get_entity(Receipt, receipt_id, include_deleted=True)
                self._check_version(receipt, version)
                if receipt.status not in (ReceiptStatus.DRAFT, ReceiptStatus.APPROVED):
                    raise InvalidStatusTransitionError("Receipt", str(receipt_id), receipt.status.value, "void")
                customer = self._get_customer(receipt.customer_tax_code)
                self._access.ensure_can_manage(actor, customer, "void receipt")
                lock = self._check_lock(actor, receipt, "RECEIPT_VOID", override)

                before = receipt.to_dto()
                was_approved = receipt.status == ReceiptStatus.APPROVED
                writer = self._writer()
                self._claim(receipt, version)
                writer.mark_claimed(receipt, "Receipt")

                reversed_amount, reversed_count = writer.reverse_receipt(receipt, actor.user_id)
                if was_approved:
                    self._balances.apply_delta(receipt.customer_tax_code, receipt.amount, "receipt_voided")

                now = self._clock.now()
                receipt.unallocated_amount = receipt.amount
                receipt.allocation_status = AllocationStatus.VOID
                receipt.status = ReceiptStatus.VOID
                receipt.void_reason = reason.strip()
                receipt.deleted_at = now
                receipt.deleted_by = actor.user_id
                receipt.updated_by_id = actor.user_id
                self._session.flush()

                self._locks.record_override(actor, lock, "Receipt", receipt.id, "RECEIPT_VOID")
                self._audit.record(
                    AuditAction.RECEIPT_VOID,
                    "Receipt",
                    receipt.id,
                    actor.user_id,
                    before=before,
                    after={
                        "receipt": receipt.to_dto(),
                        "reason": reason.strip(),
                        "reversed_amount": reversed_amount,
                        "reversed_allocations": reversed_count,
                    },
                )
                view = receipt.to_dto()

            logger.info(
                "receipt_voided",
                extra={
                    "receipt_id": str(view.id),
                    "reversed_amount": str(reversed_amount),
                    "reversed_allocations": reversed_count,
                },
            )
            return ReceiptVoidResult(view, reversed_amount, reversed_count)

    def unvoid(
        self,
        actor: ActorContext,
        receipt_id: UUID,
        version: int,
        override: LockOverride | None = None,
    ) -> ReceiptView:
        """
        VOID -> DRAFT, restoring SELECTED when targets were stored.

        Restored targets count as a MANUAL selection; without them the
        source is cleared.
        """
        with LogContext.bind(actor_id=str(actor.user_id), operation="receipt_unvoid", entity_id=str(receipt_id)):
            with transaction_scope(self._session, "receipt_unvoid"):
                receipt = self._get_entity(Receipt, receipt_id, include_deleted=True)
                self._check_version(receipt, version)
                if receipt.status != ReceiptStatus.VOID:
                    raise InvalidStatusTransitionError("Receipt", str(receipt_id), receipt.status.value, "unvoid")
                customer = self._get_customer(receipt.customer_tax_code)
                self._access.ensure_can_manage(actor, customer, "unvoid receipt")
                lock = self._check_lock(actor, receipt, "RECEIPT_UNVOID", override)

                writer = self._writer()
                if writer.count_for_receipt(receipt.id):
                    raise ValidationError(f"Receipt {receipt_id} still has allocations and cannot be unvoided")

                before = receipt.to_dto()
                self._claim(receipt, version)
                has_targets = bool(targets_from_json(receipt.allocation_targets))
                receipt.status = ReceiptStatus.DRAFT
                receipt.allocation_status = (
                    AllocationStatus.SELECTED if has_targets else AllocationStatus.UNALLOCATED
                )
                receipt.allocation_source = AllocationSource.MANUAL if has_targets else None
                receipt.unallocated_amount = receipt.amount
                receipt.approved_at = None
                receipt.approved_by = None
                receipt.void_reason = None
                receipt.deleted_at = None
                receipt.deleted_by = None
                receipt.updated_by_id = actor.user_id
                self._session.flush()

                self._locks.record_override(actor, lock, "Receipt", receipt.id, "RECEIPT_UNVOID")
                self._audit.record(
                    AuditAction.RECEIPT_UNVOID,
                    "Receipt",
                    receipt.id,
                    actor.user_id,
                    before=before,
                    after=receipt.to_dto(),
                )
                view = receipt.to_dto()

            logger.info("receipt_unvoided", extra={"receipt_id": str(view.id), "version": view.version})
            return view

    # =========================================================================
    # Reads
    # =========================================================================

    def get_receipt(self, receipt_id: UUID) -> ReceiptView:
        return self._get_entity(Receipt, receipt_id, include_deleted=True).to_dto()

    def list_open_items(
        self,
        seller_tax_code: str,
        customer_tax_code: str,
        priority: AllocationPriority | str | None = None,
    ) -> list[OpenItem]:
        """Open invoices and advances of the pair, in payment order."""
        return self._open_items.list_open_items(
            seller_tax_code,
            customer_tax_code,
            parse_choice(AllocationPriority, priority, self._config.default_allocation_priority,
                         "allocation_priority"),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_version(self, receipt: Receipt, version: int) -> None:
        if version is None:
            raise MissingFieldError("version")
        if receipt.version != version:
            logger.info(
                "receipt_version_conflict",
                extra={"receipt_id": str(receipt.id), "expected": version, "actual": receipt.version},
            )
            raise OptimisticLockError("Receipt", str(receipt.id), version, receipt.version)

    def _claim(self, receipt: Receipt, version: int) -> None:
        claim_version(self._session, receipt, version, "Receipt")

    def _check_lock(
        self,
        actor: ActorContext,
        receipt: Receipt,
        operation: str,
        override: LockOverride | None,
    ) -> PeriodLockCheck:
        return self._locks.check(
            actor,
            [receipt.receipt_date, receipt.applied_period_start],
            operation,
            override=override is not None,
            override_reason=override.reason if override is not None else None,
        )

    def _normalize(self, data: ReceiptInput) -> _DraftFields:
        amount = self._parse_amount(data.amount)
        if data.receipt_date is None:
            raise MissingFieldError("receipt_date")
        seller = (data.seller_tax_code or "").strip()
        customer = (data.customer_tax_code or "").strip()
        if not seller:
            raise MissingFieldError("seller_tax_code")
        if not customer:
            raise MissingFieldError("customer_tax_code")

        targets = tuple(data.targets or ())
        mode = parse_choice(AllocationMode, data.allocation_mode, AllocationMode.FIFO, "allocation_mode")
        if targets:
            mode = AllocationMode.MANUAL
        applied = data.applied_period_start
        if mode == AllocationMode.BY_PERIOD and applied is None:
            raise MissingFieldError("applied_period_start")
        if applied is not None:
            applied = month_start(applied)

        return _DraftFields(
            seller_tax_code=seller,
            customer_tax_code=customer,
            amount=amount,
            receipt_date=data.receipt_date,
            receipt_no=(data.receipt_no or "").strip() or None,
            applied_period_start=applied,
            method=parse_choice(ReceiptMethod, data.method, ReceiptMethod.BANK, "method"),
            description=data.description,
            allocation_mode=mode,
            allocation_priority=parse_choice(
                AllocationPriority,
                data.allocation_priority,
                self._config.default_allocation_priority,
                "allocation_priority",
            ),
            targets=targets,
        )

    @staticmethod
    def _assign_draft_fields(receipt: Receipt, fields: _DraftFields) -> None:
        receipt.seller_tax_code = fields.seller_tax_code
        receipt.customer_tax_code = fields.customer_tax_code
        receipt.amount = fields.amount
        receipt.unallocated_amount = fields.amount
        receipt.receipt_date = fields.receipt_date
        receipt.receipt_no = fields.receipt_no
        receipt.applied_period_start = fields.applied_period_start
        receipt.method = fields.method
        receipt.description = fields.description
        receipt.allocation_mode = fields.allocation_mode
        receipt.allocation_priority = fields.allocation_priority
        receipt.allocation_targets = targets_to_json(fields.targets) if fields.targets else None
        receipt.allocation_status = (
            AllocationStatus.SELECTED if fields.targets else AllocationStatus.UNALLOCATED
        )
        receipt.allocation_source = AllocationSource.MANUAL if fields.targets else None
        receipt.allocation_suggested_at = None

    @staticmethod
    def _validate_targets(targets: Sequence[AllocationTargetRef], items: Sequence[OpenItem]) -> None:
        """Every selected target must be an open item of the pair, once."""
        open_keys = {(item.target_type, item.target_id) for item in items}
        seen: set = set()
        for ref in targets:
            if ref.key in seen:
                raise InvalidTargetError(str(ref.target_id), ref.target_type.value, "selected twice")
            if ref.key not in open_keys:
                raise InvalidTargetError(str(ref.target_id), ref.target_type.value, "not an open item")
            seen.add(ref.key)

    def _preview(
        self,
        amount: Decimal,
        mode: AllocationMode,
        targets: Sequence[AllocationTargetRef],
        applied_period_start: date | None,
        items: Sequence[OpenItem],
    ) -> AllocationPreview:
        ordered = self._engine.order_targets(items, mode, targets, applied_period_start)
        result: AllocationResult = self._engine.allocate(amount, ordered)
        return AllocationPreview(lines=result.lines, unallocated_amount=result.unallocated)
