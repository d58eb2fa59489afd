"""
BatchExecutor -- SAVEPOINT-per-item execution of a registered task.

Contract:
    ``run`` resolves the task, prepares its items and executes each one in
    its own SAVEPOINT.  A failing item is rolled back alone; the others
    keep their writes.

Architecture: receivables_batch/services.  Imports receivables_batch.domain,
    receivables_batch.tasks and kernel infrastructure.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
    - Does NOT persist job history; results are returned to the caller.
"""

from __future__ import annotations

import time
from typing import Any

from sqlalchemy.orm import Session

from receivables_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchRunResult,
    BatchRunStatus,
)
from receivables_batch.tasks.base import TaskRegistry
from receivables_config.schema import BatchScheduleDef
from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.executor")


class BatchExecutor:
    """Runs one task over its items with per-item isolation."""

    def __init__(self, session: Session, registry: TaskRegistry, clock: Clock | None = None):
        self._session = session
        self._registry = registry
        self._clock = clock or SystemClock()

    def run_schedule(self, schedule: BatchScheduleDef) -> BatchRunResult:
        """Run the task a schedule definition names, with its parameters."""
        return self.run(schedule.task_type, dict(schedule.parameters))

    def run(self, task_type: str, parameters: dict[str, Any] | None = None) -> BatchRunResult:
        """
        Execute every item of ``task_type``.

        Raises:
            KeyError: ``task_type`` is not registered.
        """
        params = parameters or {}
        task = self._registry.get(task_type)
        start_time = time.monotonic()
        started_at = self._clock.now()

        with LogContext.bind(operation=task_type):
            logger.info("batch_run_started", extra={"task_type": task_type})
            try:
                items = task.prepare_items(params, self._session, started_at)
            except Exception as exc:
                logger.error("batch_prepare_failed", extra={"task_type": task_type}, exc_info=True)
                return BatchRunResult(
                    task_type=task_type,
                    status=BatchRunStatus.FAILED,
                    total_items=0,
                    succeeded=0,
                    failed=0,
                    skipped=0,
                    started_at=started_at,
                    completed_at=self._clock.now(),
                    duration_ms=int((time.monotonic() - start_time) * 1000),
                    error_summary=f"prepare_items failed: {exc}",
                )

            succeeded = failed = skipped = 0
            results: list[BatchItemResult] = []
            for item in items:
                item_start = time.monotonic()
                savepoint = self._session.begin_nested()
                try:
                    outcome = task.execute_item(item, params, self._session, started_at)
                except Exception as exc:
                    savepoint.rollback()
                    failed += 1
                    logger.error(
                        "batch_item_failed",
                        extra={"task_type": task_type, "item_key": item.item_key},
                        exc_info=True,
                    )
                    results.append(
                        BatchItemResult(
                            item_index=item.item_index,
                            item_key=item.item_key,
                            status=BatchItemStatus.FAILED,
                            error_code="UNHANDLED_EXCEPTION",
                            error_message=str(exc),
                            duration_ms=int((time.monotonic() - item_start) * 1000),
                        )
                    )
                    continue

                if outcome.status == BatchItemStatus.SUCCEEDED:
                    savepoint.commit()
                    succeeded += 1
                elif outcome.status == BatchItemStatus.SKIPPED:
                    savepoint.rollback()
                    skipped += 1
                else:
                    savepoint.rollback()
                    failed += 1
                    logger.warning(
                        "batch_item_failed",
                        extra={
                            "task_type": task_type,
                            "item_key": item.item_key,
                            "error_code": outcome.error_code,
                        },
                    )
                results.append(
                    BatchItemResult(
                        item_index=item.item_index,
                        item_key=item.item_key,
                        status=outcome.status,
                        error_code=outcome.error_code,
                        error_message=outcome.error_message,
                        result_data=outcome.result_data,
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                    )
                )

            if failed == 0:
                status = BatchRunStatus.COMPLETED
            elif succeeded == 0:
                status = BatchRunStatus.FAILED
            else:
                status = BatchRunStatus.PARTIALLY_COMPLETED

            run = BatchRunResult(
                task_type=task_type,
                status=status,
                total_items=len(items),
                succeeded=succeeded,
                failed=failed,
                skipped=skipped,
                item_results=tuple(results),
                started_at=started_at,
                completed_at=self._clock.now(),
                duration_ms=int((time.monotonic() - start_time) * 1000),
            )
            logger.info(
                "batch_run_completed",
                extra={
                    "task_type": task_type,
                    "status": status.value,
                    "total_items": run.total_items,
                    "succeeded": succeeded,
                    "failed": failed,
                    "skipped": skipped,
                },
            )
            return run
