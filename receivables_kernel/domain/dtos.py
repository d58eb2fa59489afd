"""
Frozen data transfer objects returned across layer boundaries.

ORM models convert themselves to these via ``to_dto()`` so that callers
never hold live, session-bound rows.  All collections are tuples.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from receivables_kernel.domain.types import (
    AllocationMode,
    AllocationPriority,
    AllocationSource,
    AllocationStatus,
    DebtStatus,
    ReceiptMethod,
    ReceiptStatus,
    TargetType,
)


@dataclass(frozen=True)
class AllocationTargetRef:
    """
    Reference to a debt document chosen as an allocation target.

    Serialized into ``receipt.allocation_targets`` so a voided receipt can
    be restored to its SELECTED state.  ``amount`` is set for suggestions
    and approved allocations and is informational only.
    """

    target_id: UUID
    target_type: TargetType
    amount: Decimal | None = None

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": str(self.target_id),
            "target_type": self.target_type.value,
        }
        if self.amount is not None:
            data["amount"] = str(self.amount)
        return data

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> AllocationTargetRef:
        amount = data.get("amount")
        return cls(
            target_id=UUID(str(data["id"])),
            target_type=TargetType(data["target_type"]),
            amount=Decimal(amount) if amount is not None else None,
        )

    @property
    def key(self) -> tuple[TargetType, UUID]:
        return (self.target_type, self.target_id)


def targets_to_json(targets: tuple[AllocationTargetRef, ...] | list[AllocationTargetRef]) -> list[dict[str, Any]]:
    return [t.to_json() for t in targets]


def targets_from_json(data: list[dict[str, Any]] | None) -> tuple[AllocationTargetRef, ...]:
    if not data:
        return ()
    return tuple(AllocationTargetRef.from_json(item) for item in data)


@dataclass(frozen=True)
class OpenItem:
    """An open invoice or advance, as seen by the allocation algorithm."""

    target_id: UUID
    target_type: TargetType
    document_no: str
    issue_date: date
    due_date: date
    total_amount: Decimal
    outstanding_amount: Decimal
    seller_tax_code: str
    customer_tax_code: str

    def with_outstanding(self, outstanding: Decimal) -> OpenItem:
        """Copy with a different outstanding amount (in-memory simulation)."""
        return OpenItem(
            target_id=self.target_id,
            target_type=self.target_type,
            document_no=self.document_no,
            issue_date=self.issue_date,
            due_date=self.due_date,
            total_amount=self.total_amount,
            outstanding_amount=outstanding,
            seller_tax_code=self.seller_tax_code,
            customer_tax_code=self.customer_tax_code,
        )


@dataclass(frozen=True)
class ReceiptView:
    """Immutable snapshot of a receipt."""

    id: UUID
    seller_tax_code: str
    customer_tax_code: str
    receipt_no: str | None
    receipt_date: date
    applied_period_start: date | None
    amount: Decimal
    unallocated_amount: Decimal
    method: ReceiptMethod
    description: str | None
    allocation_mode: AllocationMode
    allocation_priority: AllocationPriority
    allocation_status: AllocationStatus
    allocation_source: AllocationSource | None
    allocation_suggested_at: datetime | None
    allocation_targets: tuple[AllocationTargetRef, ...]
    status: ReceiptStatus
    version: int
    approved_at: datetime | None = None
    void_reason: str | None = None
    deleted_at: datetime | None = None


@dataclass(frozen=True)
class DebtDocumentView:
    """Immutable snapshot of an invoice or advance."""

    id: UUID
    document_type: TargetType
    document_no: str | None
    seller_tax_code: str
    customer_tax_code: str
    document_date: date
    total_amount: Decimal
    outstanding_amount: Decimal
    status: DebtStatus
    version: int
    void_reason: str | None = None
    deleted_at: datetime | None = None


@dataclass(frozen=True)
class PeriodLockView:
    id: UUID
    period_type: str
    period_key: str
    locked_at: datetime
    locked_by: UUID
    reason: str | None = None
