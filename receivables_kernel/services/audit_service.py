"""
Audit trail -- the engine's side of the audit sink boundary.

Responsibility:
    Defines the ``AuditSink`` protocol consumed by every lifecycle service,
    the default sink that writes ``AuditLog`` rows, and ``AuditTrail``, the
    wrapper services call.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - Audit writes happen inside the caller's transaction, after target and
      balance updates.  Any exception from the sink is re-raised as
      AuditWriteError (INTERNAL) so the owning service rolls back the whole
      operation.

Failure modes:
    - AuditWriteError wrapping whatever the sink raised.
"""

from __future__ import annotations

import dataclasses
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.domain.types import AuditAction
from receivables_kernel.exceptions import AuditWriteError
from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.audit_log import AuditLog

logger = get_logger("services.audit")


def to_audit_payload(value: Any) -> Any:
    """Convert DTOs and values to JSON-safe structures for audit storage."""
    if value is None or isinstance(value, (str, int, bool)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: to_audit_payload(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, dict):
        return {str(k): to_audit_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_audit_payload(v) for v in value]
    return str(value)


@runtime_checkable
class AuditSink(Protocol):
    """Where audit entries go.  Raising aborts the surrounding transaction."""

    def log(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        user_id: UUID | None,
    ) -> None: ...


class AuditLogService:
    """
    Default sink: one ``AuditLog`` row per entry, in the caller's session.

    Non-goals:
        - Does NOT commit; the row lives or dies with the operation.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def log(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        user_id: UUID | None,
    ) -> None:
        self._session.add(
            AuditLog(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                before_data=before,
                after_data=after,
                created_at=self._clock.now(),
            )
        )
        self._session.flush()


class AuditTrail:
    """
    Service-facing audit recorder.

    Contract:
        ``record`` serializes before/after snapshots and hands them to the
        sink.  Sink failures surface as AuditWriteError.
    """

    def __init__(self, sink: AuditSink):
        self._sink = sink

    def record(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: UUID | str,
        user_id: UUID | None,
        before: Any = None,
        after: Any = None,
    ) -> None:
        try:
            self._sink.log(
                action.value,
                entity_type,
                str(entity_id),
                to_audit_payload(before),
                to_audit_payload(after),
                user_id,
            )
        except Exception as exc:
            logger.error(
                "audit_write_failed",
                extra={
                    "action": action.value,
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                },
                exc_info=True,
            )
            raise AuditWriteError(action.value, entity_type, str(entity_id)) from exc

        logger.info(
            "audit_event_created",
            extra={
                "action": action.value,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
            },
        )
