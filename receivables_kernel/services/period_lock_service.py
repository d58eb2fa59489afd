"""
PeriodLockService -- period lock guard and lock administration.

Responsibility:
    Resolves the (type, key) periods covering a document date, refuses
    commits into locked periods unless an authorized override with a reason
    is supplied, records the override to the audit trail, and administers
    the locks themselves.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - A date is locked when any of its MONTH / QUARTER / YEAR keys has a
      PeriodLock row.
    - Override requires an override role (FORBIDDEN otherwise) and a
      non-blank reason (VALIDATION otherwise).  Both checks run before any
      write of the calling operation.
    - Locking is idempotent; unlocking requires a reason.

Failure modes:
    - PeriodLockedError (LOCKED) when locked and no override.
    - OverrideNotPermittedError (FORBIDDEN), OverrideReasonRequiredError
      (VALIDATION).
    - ValidationError for malformed period keys.

Audit relevance:
    PERIOD_LOCK_OVERRIDE entries carry the operation, the locked periods and
    the reason.  PERIOD_LOCK / PERIOD_UNLOCK record administration.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from receivables_kernel.domain.clock import Clock
from receivables_kernel.domain.dtos import PeriodLockView
from receivables_kernel.domain.periods import (
    is_valid_period_key,
    lock_label,
    period_keys_for,
)
from receivables_kernel.domain.types import AuditAction, PeriodType
from receivables_kernel.exceptions import (
    MissingFieldError,
    OverrideNotPermittedError,
    OverrideReasonRequiredError,
    PeriodLockedError,
    ValidationError,
)
from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.period_lock import PeriodLock
from receivables_kernel.services.access_policy import AccessPolicy, ActorContext
from receivables_kernel.services.audit_service import AuditTrail
from receivables_kernel.services.base import BaseService

logger = get_logger("services.period_lock")


@dataclass(frozen=True)
class PeriodLockCheck:
    """Outcome of a lock check that did not refuse the operation."""

    locked_periods: tuple[str, ...] = ()
    override_reason: str | None = None

    @property
    def is_override(self) -> bool:
        return bool(self.locked_periods)


class PeriodLockService(BaseService):
    """
    Guard and administration for period locks.

    Contract:
        ``check`` is read-only and raises before the caller writes anything.
        ``record_override`` is called by the caller inside its transaction
        once it has started writing.

    Non-goals:
        - Does NOT commit -- lock/unlock flush in the caller's transaction.
    """

    def __init__(
        self,
        session: Session,
        access_policy: AccessPolicy,
        audit: AuditTrail,
        clock: Clock | None = None,
        period_types: Iterable[PeriodType] = (PeriodType.MONTH, PeriodType.QUARTER, PeriodType.YEAR),
    ):
        super().__init__(session, clock)
        self._access = access_policy
        self._audit = audit
        self._period_types = tuple(period_types)

    # =========================================================================
    # Guard
    # =========================================================================

    def locked_periods_for(self, dates: Iterable[date | None]) -> list[str]:
        """Labels (``MONTH:2026-02``...) of locks covering any of ``dates``."""
        keys: set[tuple[PeriodType, str]] = set()
        for d in dates:
            if d is not None:
                keys.update(period_keys_for(d, self._period_types))
        if not keys:
            return []

        clauses = [
            and_(PeriodLock.period_type == pt, PeriodLock.period_key == key)
            for pt, key in sorted(keys)
        ]
        rows = self.session.execute(
            select(PeriodLock.period_type, PeriodLock.period_key).where(or_(*clauses))
        ).all()
        return sorted(lock_label(pt, key) for pt, key in rows)

    def check(
        self,
        actor: ActorContext,
        dates: Iterable[date | None],
        operation: str,
        override: bool = False,
        override_reason: str | None = None,
    ) -> PeriodLockCheck:
        """
        Refuse the operation if any of ``dates`` is locked and not overridden.

        Returns:
            PeriodLockCheck -- empty when nothing is locked, otherwise the
            locked labels and the trimmed override reason.

        Raises:
            PeriodLockedError, OverrideNotPermittedError,
            OverrideReasonRequiredError.
        """
        date_list = list(dates)
        locked = self.locked_periods_for(date_list)
        if not locked:
            return PeriodLockCheck()

        if not override:
            logger.info(
                "period_locked",
                extra={"operation": operation, "locked_periods": locked},
            )
            first = next(d for d in date_list if d is not None)
            raise PeriodLockedError(first.isoformat(), locked)

        if not self._access.can_override_period_lock(actor):
            raise OverrideNotPermittedError(str(actor.user_id), locked)

        reason = (override_reason or "").strip()
        if not reason:
            raise OverrideReasonRequiredError(locked)

        return PeriodLockCheck(locked_periods=tuple(locked), override_reason=reason)

    def record_override(
        self,
        actor: ActorContext,
        check: PeriodLockCheck,
        entity_type: str,
        entity_id: UUID,
        operation: str,
    ) -> None:
        """Write the PERIOD_LOCK_OVERRIDE audit entry when an override was used."""
        if not check.is_override:
            return
        self._audit.record(
            AuditAction.PERIOD_LOCK_OVERRIDE,
            entity_type,
            entity_id,
            actor.user_id,
            after={
                "operation": operation,
                "locked_periods": list(check.locked_periods),
                "reason": check.override_reason,
            },
        )
        logger.warning(
            "period_lock_override_used",
            extra={
                "operation": operation,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "locked_periods": list(check.locked_periods),
            },
        )

    # =========================================================================
    # Administration
    # =========================================================================

    def lock_period(
        self,
        actor: ActorContext,
        period_type: PeriodType,
        period_key: str,
        reason: str | None = None,
    ) -> PeriodLockView:
        """Lock a period.  Locking an already locked period returns the existing lock."""
        self._access.ensure_admin(actor, "lock period")
        key = self._normalize_key(period_type, period_key)

        existing = self._get_lock(period_type, key)
        if existing is not None:
            return existing.to_dto()

        lock = PeriodLock(
            period_type=period_type,
            period_key=key,
            locked_at=self.clock.now(),
            locked_by=actor.user_id,
            reason=(reason or "").strip() or None,
        )
        self.session.add(lock)
        self.session.flush()

        self._audit.record(
            AuditAction.PERIOD_LOCK,
            "PeriodLock",
            lock.id,
            actor.user_id,
            after=lock.to_dto(),
        )
        logger.info("period_locked_by_admin", extra={"period": lock_label(period_type, key)})
        return lock.to_dto()

    def unlock_period(
        self,
        actor: ActorContext,
        period_type: PeriodType,
        period_key: str,
        reason: str,
    ) -> bool:
        """Remove a lock.  Returns False when the period was not locked."""
        self._access.ensure_admin(actor, "unlock period")
        if not reason or not reason.strip():
            raise MissingFieldError("reason")
        key = self._normalize_key(period_type, period_key)

        lock = self._get_lock(period_type, key)
        if lock is None:
            return False

        before = lock.to_dto()
        self.session.delete(lock)
        self.session.flush()

        self._audit.record(
            AuditAction.PERIOD_UNLOCK,
            "PeriodLock",
            before.id,
            actor.user_id,
            before=before,
            after={"reason": reason.strip()},
        )
        logger.info("period_unlocked", extra={"period": lock_label(period_type, key)})
        return True

    def list_locks(self) -> list[PeriodLockView]:
        rows = self.session.scalars(
            select(PeriodLock).order_by(PeriodLock.period_type, PeriodLock.period_key)
        ).all()
        return [row.to_dto() for row in rows]

    def _get_lock(self, period_type: PeriodType, key: str) -> PeriodLock | None:
        return self.session.scalars(
            select(PeriodLock).where(
                PeriodLock.period_type == period_type,
                PeriodLock.period_key == key,
            )
        ).one_or_none()

    @staticmethod
    def _normalize_key(period_type: PeriodType, period_key: str) -> str:
        key = (period_key or "").strip().upper()
        if not is_valid_period_key(period_type, key):
            raise ValidationError(
                f"Invalid period key {period_key!r} for {period_type.value}"
            )
        return key
