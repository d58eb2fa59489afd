"""
Tests for BatchExecutor and the task registry.

Covers:
- Registry register / get / duplicates
- Per-item SAVEPOINT isolation (failed item rolled back, others kept)
- Run status aggregation
- prepare_items failure
"""

from datetime import datetime
from typing import Any

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from receivables_batch.domain.types import BatchItemStatus, BatchRunStatus
from receivables_batch.services.executor import BatchExecutor
from receivables_batch.tasks.base import BatchItemInput, BatchTaskResult, TaskRegistry
from receivables_config.schema import BatchScheduleDef
from receivables_kernel.models import Seller
from tests.conftest import TEST_ACTOR_ID


class SellerSeedTask:
    """Adds one seller per item; items whose key is in ``fail_keys`` fail."""

    def __init__(self, keys, fail_keys=(), raise_keys=(), skip_keys=()):
        self.keys = keys
        self.fail_keys = set(fail_keys)
        self.raise_keys = set(raise_keys)
        self.skip_keys = set(skip_keys)

    @property
    def task_type(self) -> str:
        return "test.seed_sellers"

    @property
    def description(self) -> str:
        return "Seed sellers"

    def prepare_items(self, parameters: dict[str, Any], session: Session, as_of: datetime):
        return tuple(BatchItemInput(item_index=i, item_key=key) for i, key in enumerate(self.keys))

    def execute_item(self, item, parameters, session, as_of) -> BatchTaskResult:
        session.add(Seller(seller_tax_code=item.item_key, name=item.item_key, created_by_id=TEST_ACTOR_ID))
        session.flush()
        if item.item_key in self.raise_keys:
            raise RuntimeError("boom")
        if item.item_key in self.fail_keys:
            return BatchTaskResult(status=BatchItemStatus.FAILED, error_code="VALIDATION", error_message="bad")
        if item.item_key in self.skip_keys:
            return BatchTaskResult(status=BatchItemStatus.SKIPPED)
        return BatchTaskResult(status=BatchItemStatus.SUCCEEDED, result_data={"seller": item.item_key})


class BrokenPrepareTask(SellerSeedTask):
    def prepare_items(self, parameters, session, as_of):
        raise RuntimeError("cannot prepare")


def seller_codes(session) -> set[str]:
    return set(session.scalars(select(Seller.seller_tax_code)).all())


def registry_with(task) -> TaskRegistry:
    registry = TaskRegistry()
    registry.register(task)
    return registry


class TestTaskRegistry:
    def test_register_and_get(self):
        task = SellerSeedTask(["a"])
        registry = registry_with(task)

        assert registry.get("test.seed_sellers") is task
        assert "test.seed_sellers" in registry
        assert len(registry) == 1
        assert registry.list_tasks() == ("test.seed_sellers",)

    def test_duplicate_registration(self):
        registry = registry_with(SellerSeedTask(["a"]))

        with pytest.raises(ValueError):
            registry.register(SellerSeedTask(["b"]))

    def test_unknown_task(self):
        with pytest.raises(KeyError):
            TaskRegistry().get("missing")


class TestBatchExecutor:
    def test_all_items_succeed(self, session, deterministic_clock):
        executor = BatchExecutor(session, registry_with(SellerSeedTask(["S1", "S2"])), deterministic_clock)

        run = executor.run("test.seed_sellers")

        assert run.status == BatchRunStatus.COMPLETED
        assert (run.total_items, run.succeeded, run.failed, run.skipped) == (2, 2, 0, 0)
        assert [r.result_data for r in run.item_results] == [{"seller": "S1"}, {"seller": "S2"}]
        assert seller_codes(session) == {"S1", "S2"}

    def test_failed_item_is_rolled_back_alone(self, session, deterministic_clock, captured_logs):
        task = SellerSeedTask(["S1", "S2", "S3"], fail_keys={"S2"}, raise_keys={"S3"})
        executor = BatchExecutor(session, registry_with(task), deterministic_clock)

        run = executor.run("test.seed_sellers")

        assert run.status == BatchRunStatus.PARTIALLY_COMPLETED
        assert (run.succeeded, run.failed) == (1, 2)
        statuses = {r.item_key: (r.status, r.error_code) for r in run.item_results}
        assert statuses["S2"] == (BatchItemStatus.FAILED, "VALIDATION")
        assert statuses["S3"] == (BatchItemStatus.FAILED, "UNHANDLED_EXCEPTION")
        assert seller_codes(session) == {"S1"}
        assert sum(1 for r in captured_logs() if r["message"] == "batch_item_failed") == 2

    def test_skipped_items_leave_no_writes(self, session, deterministic_clock):
        task = SellerSeedTask(["S1", "S2"], skip_keys={"S1"})
        run = BatchExecutor(session, registry_with(task), deterministic_clock).run("test.seed_sellers")

        assert run.status == BatchRunStatus.COMPLETED
        assert run.skipped == 1
        assert seller_codes(session) == {"S2"}

    def test_every_item_failing(self, session, deterministic_clock):
        task = SellerSeedTask(["S1"], fail_keys={"S1"})

        run = BatchExecutor(session, registry_with(task), deterministic_clock).run("test.seed_sellers")

        assert run.status == BatchRunStatus.FAILED

    def test_no_items(self, session, deterministic_clock):
        run = BatchExecutor(session, registry_with(SellerSeedTask([])), deterministic_clock).run("test.seed_sellers")

        assert run.status == BatchRunStatus.COMPLETED
        assert run.total_items == 0

    def test_prepare_failure(self, session, deterministic_clock):
        executor = BatchExecutor(session, registry_with(BrokenPrepareTask(["S1"])), deterministic_clock)

        run = executor.run("test.seed_sellers")

        assert run.status == BatchRunStatus.FAILED
        assert "cannot prepare" in run.error_summary
        assert seller_codes(session) == set()

    def test_unknown_task_type(self, session):
        with pytest.raises(KeyError):
            BatchExecutor(session, TaskRegistry()).run("missing")

    def test_run_schedule(self, session, deterministic_clock):
        deterministic_clock.advance(3600)
        executor = BatchExecutor(session, registry_with(SellerSeedTask(["S9"])), deterministic_clock)
        schedule = BatchScheduleDef(name="seed", task_type="test.seed_sellers", frequency="daily")

        run = executor.run_schedule(schedule)

        assert run.task_type == "test.seed_sellers"
        assert run.succeeded == 1
        assert run.started_at == deterministic_clock.now()

    def test_executor_does_not_commit(self, session, deterministic_clock):
        BatchExecutor(session, registry_with(SellerSeedTask(["S1"])), deterministic_clock).run(
            "test.seed_sellers"
        )

        session.rollback()

        assert session.scalar(select(func.count()).select_from(Seller)) == 0
