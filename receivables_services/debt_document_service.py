"""
DebtDocumentService -- invoice and advance lifecycle.

Responsibility:
    Creates, approves, voids and restores debt documents.  Whenever a
    document becomes open it is paid from the customer's existing receipt
    credit (see credit_application.py).  Voiding reverses every allocation
    against the document and gives the money back to the receipts.

Architecture position:
    Services -- owns the transaction boundary of each operation.

Invariants enforced:
    - Invoices: OPEN/PARTIAL/PAID <-> VOID.  Advances: DRAFT -> OPEN
      (approve) -> PARTIAL/PAID, any non-void -> VOID -> DRAFT.
    - customer.current_balance moves by +total when a document becomes open
      and by -total when an open document is voided.  Credit application
      does not move it.
    - The document being operated on moves version by exactly one; every
      receipt touched by credit application or reversal moves by one.

Failure modes:
    - VALIDATION (input, duplicate invoice number, illegal transition),
      CONFLICT, LOCKED, FORBIDDEN, NOT_FOUND, INTERNAL.

Audit relevance:
    INVOICE_CREATE, INVOICE_VOID, INVOICE_UNVOID, ADVANCE_CREATE,
    ADVANCE_APPROVE, ADVANCE_VOID, ADVANCE_UNVOID, PERIOD_LOCK_OVERRIDE.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from receivables_kernel.db.engine import transaction_scope
from receivables_kernel.domain.dtos import DebtDocumentView
from receivables_kernel.domain.types import AuditAction, DebtStatus
from receivables_kernel.exceptions import (
    InvalidStatusTransitionError,
    MissingFieldError,
    OptimisticLockError,
    ValidationError,
)
from receivables_kernel.logging_config import LogContext, get_logger
from receivables_kernel.models.debt_document import Advance, DebtDocumentMixin, Invoice
from receivables_kernel.services.access_policy import ActorContext
from receivables_kernel.services.period_lock_service import PeriodLockCheck
from receivables_services.base import LifecycleService
from receivables_services.credit_application import CreditApplicationService
from receivables_services.types import (
    AdvanceInput,
    DebtDocumentResult,
    DebtVoidResult,
    InvoiceInput,
    LockOverride,
)

logger = get_logger("services.debt_document")

_OPEN_STATUSES = (DebtStatus.OPEN, DebtStatus.PARTIAL, DebtStatus.PAID)


class DebtDocumentService(LifecycleService):
    """
    Lifecycle of invoices and pay-on-behalf advances.

    Contract:
        Same conventions as ReceiptService: acting user first, caller
        version for every mutation of an existing document, ``*View``
        snapshots out.
    """

    def __init__(self, session, *args, **kwargs):
        super().__init__(session, *args, **kwargs)
        self._credits = CreditApplicationService(session, self._engine, self._open_items)

    # =========================================================================
    # Invoices
    # =========================================================================

    def create_invoice(
        self,
        actor: ActorContext,
        data: InvoiceInput,
        override: LockOverride | None = None,
    ) -> DebtDocumentResult:
        """
        Record an OPEN invoice and pay it from open receipt credit.

        Raises:
            ValidationError: missing fields, non-positive total, or the
                invoice number is already used by the seller.
        """
        with LogContext.bind(actor_id=str(actor.user_id), operation="invoice_create"):
            with transaction_scope(self._session, "invoice_create"):
                seller = self._ensure_seller(data.seller_tax_code)
                customer = self._get_customer(data.customer_tax_code)
                total = self._parse_amount(data.total_amount, "total_amount")
                invoice_no = (data.invoice_no or "").strip()
                if not invoice_no:
                    raise MissingFieldError("invoice_no")
                if data.issue_date is None:
                    raise MissingFieldError("issue_date")
                self._access.ensure_can_manage(actor, customer, "create invoice")
                lock = self._check_lock(actor, data.issue_date, "INVOICE_CREATE", override)
                self._ensure_invoice_no_free(seller, invoice_no)

                invoice = Invoice(
                    seller_tax_code=seller,
                    customer_tax_code=customer.tax_code,
                    invoice_no=invoice_no,
                    issue_date=data.issue_date,
                    total_amount=total,
                    outstanding_amount=total,
                    status=DebtStatus.OPEN,
                    note=data.note,
                    version=0,
                    created_by_id=actor.user_id,
                )
                self._session.add(invoice)
                self._session.flush()

                self._balances.apply_delta(customer.tax_code, total, "invoice_created")
                writer = self._writer()
                writer.mark_claimed(invoice, "Invoice")
                credit = self._credits.apply_receipt_credits(invoice, actor.user_id, writer)

                self._locks.record_override(actor, lock, "Invoice", invoice.id, "INVOICE_CREATE")
                self._audit.record(
                    AuditAction.INVOICE_CREATE,
                    "Invoice",
                    invoice.id,
                    actor.user_id,
                    after={"invoice": invoice.to_dto(), "credit_applied": credit},
                )
                view = invoice.to_dto()

            logger.info(
                "invoice_created",
                extra={
                    "invoice_id": str(view.id),
                    "total_amount": str(view.total_amount),
                    "credit_applied": str(credit.total_applied),
                },
            )
            return DebtDocumentResult(view, credit)

    def void_invoice(
        self,
        actor: ActorContext,
        invoice_id: UUID,
        version: int,
        reason: str,
        override: LockOverride | None = None,
    ) -> DebtVoidResult:
        """Void an invoice; receipts that paid it regain the money as credit."""
        return self._void(actor, Invoice, invoice_id, version, reason, override)

    def unvoid_invoice(
        self,
        actor: ActorContext,
        invoice_id: UUID,
        version: int,
        override: LockOverride | None = None,
    ) -> DebtDocumentResult:
        """Restore a void invoice as OPEN and apply open receipt credit to it."""
        with LogContext.bind(actor_id=str(actor.user_id), operation="invoice_unvoid",
                             entity_id=str(invoice_id)):
            with transaction_scope(self._session, "invoice_unvoid"):
                invoice = self._load(Invoice, invoice_id, version, include_deleted=True)
                if invoice.status != DebtStatus.VOID:
                    raise InvalidStatusTransitionError("Invoice", str(invoice_id), invoice.status.value, "unvoid")
                self._access.ensure_can_manage(actor, self._get_customer(invoice.customer_tax_code),
                                               "unvoid invoice")
                lock = self._check_lock(actor, invoice.issue_date, "INVOICE_UNVOID", override)

                before = invoice.to_dto()
                writer = self._writer()
                writer.claim(invoice, "Invoice")
                invoice.outstanding_amount = invoice.total_amount
                invoice.status = DebtStatus.OPEN
                invoice.void_reason = None
                invoice.deleted_at = None
                invoice.deleted_by = None
                invoice.updated_by_id = actor.user_id
                self._session.flush()

                self._balances.apply_delta(invoice.customer_tax_code, invoice.total_amount, "invoice_unvoided")
                credit = self._credits.apply_receipt_credits(invoice, actor.user_id, writer)

                self._locks.record_override(actor, lock, "Invoice", invoice.id, "INVOICE_UNVOID")
                self._audit.record(
                    AuditAction.INVOICE_UNVOID,
                    "Invoice",
                    invoice.id,
                    actor.user_id,
                    before=before,
                    after={"invoice": invoice.to_dto(), "credit_applied": credit},
                )
                view = invoice.to_dto()

            logger.info("invoice_unvoided", extra={"invoice_id": str(view.id), "version": view.version})
            return DebtDocumentResult(view, credit)

    # =========================================================================
    # Advances
    # =========================================================================

    def create_advance(self, actor: ActorContext, data: AdvanceInput) -> DebtDocumentView:
        """Record a DRAFT advance.  Drafts are not debt yet."""
        with LogContext.bind(actor_id=str(actor.user_id), operation="advance_create"):
            with transaction_scope(self._session, "advance_create"):
                seller = self._ensure_seller(data.seller_tax_code)
                customer = self._get_customer(data.customer_tax_code)
                amount = self._parse_amount(data.amount)
                if data.advance_date is None:
                    raise MissingFieldError("advance_date")
                self._access.ensure_can_manage(actor, customer, "create advance")

                advance = Advance(
                    seller_tax_code=seller,
                    customer_tax_code=customer.tax_code,
                    advance_no=(data.advance_no or "").strip() or None,
                    advance_date=data.advance_date,
                    amount=amount,
                    outstanding_amount=amount,
                    status=DebtStatus.DRAFT,
                    description=data.description,
                    version=0,
                    created_by_id=actor.user_id,
                )
                self._session.add(advance)
                self._session.flush()

                self._audit.record(
                    AuditAction.ADVANCE_CREATE, "Advance", advance.id, actor.user_id, after=advance.to_dto()
                )
                view = advance.to_dto()

            logger.info("advance_created", extra={"advance_id": str(view.id), "amount": str(view.total_amount)})
            return view

    def approve_advance(
        self,
        actor: ActorContext,
        advance_id: UUID,
        version: int,
        override: LockOverride | None = None,
    ) -> DebtDocumentResult:
        """DRAFT -> OPEN, then pay the advance from open receipt credit."""
        with LogContext.bind(actor_id=str(actor.user_id), operation="advance_approve",
                             entity_id=str(advance_id)):
            with transaction_scope(self._session, "advance_approve"):
                advance = self._load(Advance, advance_id, version)
                if advance.status != DebtStatus.DRAFT:
                    raise InvalidStatusTransitionError("Advance", str(advance_id), advance.status.value, "approve")
                self._access.ensure_can_manage(actor, self._get_customer(advance.customer_tax_code),
                                               "approve advance")
                lock = self._check_lock(actor, advance.advance_date, "ADVANCE_APPROVE", override)

                before = advance.to_dto()
                writer = self._writer()
                writer.claim(advance, "Advance")
                advance.outstanding_amount = advance.amount
                advance.status = DebtStatus.OPEN
                advance.approved_at = self._clock.now()
                advance.approved_by = actor.user_id
                advance.updated_by_id = actor.user_id
                self._session.flush()

                self._balances.apply_delta(advance.customer_tax_code, advance.amount, "advance_approved")
                credit = self._credits.apply_receipt_credits(advance, actor.user_id, writer)

                self._locks.record_override(actor, lock, "Advance", advance.id, "ADVANCE_APPROVE")
                self._audit.record(
                    AuditAction.ADVANCE_APPROVE,
                    "Advance",
                    advance.id,
                    actor.user_id,
                    before=before,
                    after={"advance": advance.to_dto(), "credit_applied": credit},
                )
                view = advance.to_dto()

            logger.info(
                "advance_approved",
                extra={
                    "advance_id": str(view.id),
                    "status": view.status.value,
                    "credit_applied": str(credit.total_applied),
                },
            )
            return DebtDocumentResult(view, credit)

    def void_advance(
        self,
        actor: ActorContext,
        advance_id: UUID,
        version: int,
        reason: str,
        override: LockOverride | None = None,
    ) -> DebtVoidResult:
        """Void a draft or approved advance, reversing its allocations."""
        return self._void(actor, Advance, advance_id, version, reason, override)

    def unvoid_advance(
        self,
        actor: ActorContext,
        advance_id: UUID,
        version: int,
        override: LockOverride | None = None,
    ) -> DebtDocumentView:
        """VOID -> DRAFT.  The advance needs approval again to become debt."""
        with LogContext.bind(actor_id=str(actor.user_id), operation="advance_unvoid",
                             entity_id=str(advance_id)):
            with transaction_scope(self._session, "advance_unvoid"):
                advance = self._load(Advance, advance_id, version, include_deleted=True)
                if advance.status != DebtStatus.VOID:
                    raise InvalidStatusTransitionError("Advance", str(advance_id), advance.status.value, "unvoid")
                self._access.ensure_can_manage(actor, self._get_customer(advance.customer_tax_code),
                                               "unvoid advance")
                lock = self._check_lock(actor, advance.advance_date, "ADVANCE_UNVOID", override)

                before = advance.to_dto()
                self._writer().claim(advance, "Advance")
                advance.outstanding_amount = advance.amount
                advance.status = DebtStatus.DRAFT
                advance.approved_at = None
                advance.approved_by = None
                advance.void_reason = None
                advance.deleted_at = None
                advance.deleted_by = None
                advance.updated_by_id = actor.user_id
                self._session.flush()

                self._locks.record_override(actor, lock, "Advance", advance.id, "ADVANCE_UNVOID")
                self._audit.record(
                    AuditAction.ADVANCE_UNVOID,
                    "Advance",
                    advance.id,
                    actor.user_id,
                    before=before,
                    after=advance.to_dto(),
                )
                view = advance.to_dto()

            logger.info("advance_unvoided", extra={"advance_id": str(view.id), "version": view.version})
            return view

    # =========================================================================
    # Reads
    # =========================================================================

    def get_invoice(self, invoice_id: UUID) -> DebtDocumentView:
        return self._get_entity(Invoice, invoice_id, include_deleted=True).to_dto()

    def get_advance(self, advance_id: UUID) -> DebtDocumentView:
        return self._get_entity(Advance, advance_id, include_deleted=True).to_dto()

    # =========================================================================
    # Shared
    # =========================================================================

    def _void(
        self,
        actor: ActorContext,
        model: type,
        document_id: UUID,
        version: int,
        reason: str,
        override: LockOverride | None,
    ) -> DebtVoidResult:
        entity_type = model.__name__
        operation = f"{entity_type.upper()}_VOID"
        if not reason or not reason.strip():
            raise MissingFieldError("reason")

        with LogContext.bind(actor_id=str(actor.user_id), operation=operation.lower(),
                             entity_id=str(document_id)):
            with transaction_scope(self._session, operation.lower()):
                document: DebtDocumentMixin = self._load(model, document_id, version, include_deleted=True)
                if document.is_void:
                    raise InvalidStatusTransitionError(entity_type, str(document_id), document.status.value, "void")
                self._access.ensure_can_manage(actor, self._get_customer(document.customer_tax_code),
                                               f"void {entity_type.lower()}")
                lock = self._check_lock(actor, document.document_date, operation, override)

                before = document.to_dto()
                was_debt = document.status in _OPEN_STATUSES
                writer = self._writer()
                writer.claim(document, entity_type)
                reversed_amount, reversed_count = writer.reverse_document(document, actor.user_id)
                if was_debt:
                    self._balances.apply_delta(document.customer_tax_code, -document.total, f"{entity_type.lower()}_voided")

                document.status = DebtStatus.VOID
                document.void_reason = reason.strip()
                document.deleted_at = self._clock.now()
                document.deleted_by = actor.user_id
                document.updated_by_id = actor.user_id
                self._session.flush()

                self._locks.record_override(actor, lock, entity_type, document.id, operation)
                self._audit.record(
                    AuditAction(operation),
                    entity_type,
                    document.id,
                    actor.user_id,
                    before=before,
                    after={
                        entity_type.lower(): document.to_dto(),
                        "reason": reason.strip(),
                        "reversed_amount": reversed_amount,
                        "reversed_allocations": reversed_count,
                    },
                )
                view = document.to_dto()

            logger.info(
                f"{entity_type.lower()}_voided",
                extra={
                    "document_id": str(view.id),
                    "reversed_amount": str(reversed_amount),
                    "reversed_allocations": reversed_count,
                },
            )
            return DebtVoidResult(view, reversed_amount, reversed_count)

    def _load(self, model: type, document_id: UUID, version: int, include_deleted: bool = False):
        document = self._get_entity(model, document_id, include_deleted=include_deleted)
        if version is None:
            raise MissingFieldError("version")
        if document.version != version:
            raise OptimisticLockError(model.__name__, str(document_id), version, document.version)
        return document

    def _check_lock(self, actor, on, operation: str, override: LockOverride | None) -> PeriodLockCheck:
        return self._locks.check(
            actor,
            [on],
            operation,
            override=override is not None,
            override_reason=override.reason if override is not None else None,
        )

    def _ensure_invoice_no_free(self, seller_tax_code: str, invoice_no: str) -> None:
        taken = self._session.scalars(
            select(Invoice.id).where(
                Invoice.seller_tax_code == seller_tax_code,
                Invoice.invoice_no == invoice_no,
            )
        ).first()
        if taken is not None:
            raise ValidationError(f"Invoice number {invoice_no} already exists for seller {seller_tax_code}")
