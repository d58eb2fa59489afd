"""
Declarative bases and column mixins for receivables models.

Architecture position:
    Kernel > DB.  Imported by every module in ``receivables_kernel.models``;
    imports nothing from the rest of the kernel.

Invariants enforced:
    - Primary keys are uuid4 values stored as 36-character strings so the
      same schema runs on PostgreSQL and SQLite.
    - ``Decimal`` columns are ``Numeric(18, 2)``: receivable amounts are
      whole currency units with at most two decimal places, never floats.
    - Mutable aggregates (receipts, invoices, advances, customers) carry a
      ``version`` counter that only ``claim_version`` advances.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in Python, ``VARCHAR(36)`` in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(18, 2),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Base for rows users create and edit.

    ``created_by_id`` is mandatory: batch jobs write under a fixed batch
    actor id rather than leaving it empty.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[UUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(nullable=True)


class VersionedMixin:
    """Optimistic-concurrency counter, starting at 0."""

    version: Mapped[int] = mapped_column(default=0, nullable=False)


class VoidableMixin(VersionedMixin):
    """
    Soft-delete columns for documents that can be voided and restored.

    All three are set by void and cleared by unvoid.
    """

    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deleted_by: Mapped[UUID | None] = mapped_column(nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
