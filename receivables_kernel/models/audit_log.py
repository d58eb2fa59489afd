"""
Module: receivables_kernel.models.audit_log
Responsibility: Append-only audit rows written by the default audit sink.
Architecture position: Kernel > Models.

Audit relevance:
    One row per audited action with JSON before/after snapshots.  Rows are
    written inside the transaction of the operation they describe, so an
    aborted operation leaves no audit row and a failed audit write aborts
    the operation.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from receivables_kernel.db.base import Base, UUIDString


class AuditLog(Base):
    """One audited action."""

    __tablename__ = "audit_logs"

    __table_args__ = (
        Index("idx_audit_logs_entity", "entity_type", "entity_id"),
        Index("idx_audit_logs_action", "action"),
    )

    user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    before_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.entity_type}:{self.entity_id}>"
