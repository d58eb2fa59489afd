"""
Batch task protocol and registry.

A receivables batch job is split into items (a chunk of seller+customer
pairs, or one pair) so the executor can isolate each one in a SAVEPOINT.
Tasks describe how to find their items and how to process one of them;
they never open or close transactions themselves.

Architecture position:
    receivables_batch/tasks.  This module depends only on the batch domain
    types and SQLAlchemy's ``Session``; concrete tasks in
    ``receipt_tasks`` pull in the services they drive.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from receivables_batch.domain.types import BatchItemStatus


@dataclass(frozen=True)
class BatchItemInput:
    """
    One unit of batch work.

    ``item_key`` is what operators see in run results ("chunk-0",
    "0100000001:0300000001"); ``payload`` carries the ids or tax codes the
    task needs to reload its rows inside the item's SAVEPOINT.
    """

    item_index: int
    item_key: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchTaskResult:
    status: BatchItemStatus
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None


@runtime_checkable
class BatchTask(Protocol):
    """
    What the executor expects from a receivables batch task.

    Contract:
        ``prepare_items`` reads only; it returns the full item list before
        any item runs.  ``execute_item`` handles exactly one item and may
        raise or return a FAILED result; either way the executor rolls the
        item's SAVEPOINT back and carries on with the next one.
    """

    @property
    def task_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]: ...

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult: ...


class TaskRegistry:
    """
    Tasks keyed by ``task_type``.

    Raises:
        ValueError: registering a second task under an existing type.
        KeyError: looking up a type nobody registered.
    """

    def __init__(self) -> None:
        self._by_type: dict[str, BatchTask] = {}

    def register(self, task: BatchTask) -> None:
        if task.task_type in self._by_type:
            raise ValueError(f"Batch task {task.task_type!r} already registered")
        self._by_type[task.task_type] = task

    def get(self, task_type: str) -> BatchTask:
        task = self._by_type.get(task_type)
        if task is None:
            known = ", ".join(sorted(self._by_type)) or "none"
            raise KeyError(f"Unknown batch task {task_type!r} (registered: {known})")
        return task

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._by_type))

    def __len__(self) -> int:
        return len(self._by_type)

    def __contains__(self, task_type: str) -> bool:
        return task_type in self._by_type
