"""
Module: receivables_kernel.models.period_lock
Responsibility: ORM model for administrative period locks.
Architecture position: Kernel > Models.

Invariants enforced:
    - (period_type, period_key) is unique; locking twice is a no-op.
    - Presence of a row blocks commits dated inside the period unless an
      audited override is supplied (see services/period_lock_service.py).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from receivables_kernel.db.base import Base, UUIDString
from receivables_kernel.db.types import enum_column
from receivables_kernel.domain.dtos import PeriodLockView
from receivables_kernel.domain.types import PeriodType


class PeriodLock(Base):
    """An accounting period frozen against new commits."""

    __tablename__ = "period_locks"

    __table_args__ = (
        UniqueConstraint("period_type", "period_key", name="uq_period_locks_type_key"),
    )

    # MONTH "2026-02", QUARTER "2026-Q1", YEAR "2026"
    period_type: Mapped[PeriodType] = mapped_column(enum_column(PeriodType), nullable=False)
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)
    locked_at: Mapped[datetime] = mapped_column(nullable=False)
    locked_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def to_dto(self) -> PeriodLockView:
        return PeriodLockView(
            id=self.id,
            period_type=self.period_type.value,
            period_key=self.period_key,
            locked_at=self.locked_at,
            locked_by=self.locked_by,
            reason=self.reason,
        )

    def __repr__(self) -> str:
        return f"<PeriodLock {self.period_type.value}:{self.period_key}>"
