"""Kernel services: flush-only building blocks used by the lifecycle services."""

from receivables_kernel.services.access_policy import AccessPolicy, ActorContext
from receivables_kernel.services.audit_service import AuditLogService, AuditSink, AuditTrail
from receivables_kernel.services.balance_projector import BalanceProjector
from receivables_kernel.services.base import BaseService, claim_version
from receivables_kernel.services.period_lock_service import PeriodLockCheck, PeriodLockService

__all__ = [
    "AccessPolicy",
    "ActorContext",
    "AuditLogService",
    "AuditSink",
    "AuditTrail",
    "BalanceProjector",
    "BaseService",
    "claim_version",
    "PeriodLockCheck",
    "PeriodLockService",
]
