"""
receivables_batch.domain.types -- Pure frozen dataclasses for batch runs.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
collections.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class BatchRunStatus(str, Enum):
    """Outcome of one batch run."""

    COMPLETED = "completed"  # Every item succeeded or was skipped
    PARTIALLY_COMPLETED = "partially_completed"  # Some items failed
    FAILED = "failed"  # No item succeeded, or preparation failed


class BatchItemStatus(str, Enum):
    """Per-item outcome within a batch run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Nothing to do for this item


@dataclass(frozen=True)
class BatchItemResult:
    """Immutable result of processing one batch item in its own SAVEPOINT."""

    item_index: int
    item_key: str
    status: BatchItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class BatchRunResult:
    """Immutable result of running one task over all its items."""

    task_type: str
    status: BatchRunStatus
    total_items: int
    succeeded: int
    failed: int
    skipped: int
    item_results: tuple[BatchItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    error_summary: str | None = None
