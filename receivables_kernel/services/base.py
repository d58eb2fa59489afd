"""
BaseService -- abstract base for kernel services.

Responsibility:
    Common constructor and session contract for every kernel service, plus
    the compare-and-swap version claim used for optimistic concurrency.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: kernel services flush within the caller's
      transaction and never commit or roll back.
    - Versioning: ``claim_version`` is the only way a service bumps
      ``version``.  It runs ``UPDATE ... SET version = v + 1 WHERE id = :id
      AND version = :v`` and raises OptimisticLockError when the caller's
      version is stale or when zero rows match.

Failure modes:
    - OptimisticLockError (CONFLICT) from ``claim_version``.
"""

from abc import ABC
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.exceptions import OptimisticLockError
from receivables_kernel.logging_config import get_logger

logger = get_logger("services.base")


def claim_version(session: Session, entity: Any, expected_version: int, entity_type: str) -> int:
    """
    Atomically move ``entity`` from ``expected_version`` to the next version.

    Preconditions:
        - ``entity`` is a persistent ORM instance with ``id`` and ``version``.
    Postconditions:
        - The row and the in-memory instance both hold expected_version + 1.
        - Nothing else about the instance is flushed by this call beyond what
          autoflush already had pending.

    Raises:
        OptimisticLockError: stale caller version or concurrent update.
    """
    if entity.version != expected_version:
        raise OptimisticLockError(
            entity_type, str(entity.id), expected_version, entity.version
        )

    model = type(entity)
    result = session.execute(
        update(model)
        .where(model.id == entity.id, model.version == expected_version)
        .values(version=expected_version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(
            "version_claim_failed",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity.id),
                "expected_version": expected_version,
            },
        )
        raise OptimisticLockError(entity_type, str(entity.id), expected_version, None)

    set_committed_value(entity, "version", expected_version + 1)
    return expected_version + 1


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def claim_version(self, entity: Any, expected_version: int, entity_type: str) -> int:
        return claim_version(self.session, entity, expected_version, entity_type)
