"""
receivables_batch.tasks -- Task protocol, registry, and receivables tasks.

base.py imports no kernel/service code; receipt_tasks.py drives the
receivables services.
"""

from receivables_batch.tasks.base import (
    BatchItemInput,
    BatchTask,
    BatchTaskResult,
    TaskRegistry,
)
from receivables_batch.tasks.receipt_tasks import (
    BATCH_ACTOR_ID,
    ApplyOpenCreditsTask,
    SuggestAllocationsTask,
)


def default_task_registry(clock=None, config=None) -> TaskRegistry:
    """Registry holding every receivables task."""
    registry = TaskRegistry()
    registry.register(SuggestAllocationsTask(clock, config))
    registry.register(ApplyOpenCreditsTask(clock, config))
    return registry


__all__ = [
    "ApplyOpenCreditsTask",
    "BATCH_ACTOR_ID",
    "BatchItemInput",
    "BatchTask",
    "BatchTaskResult",
    "SuggestAllocationsTask",
    "TaskRegistry",
    "default_task_registry",
]
