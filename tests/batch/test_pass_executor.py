"""
Tests for PassExecutor.

Covers:
- Status rollup: COMPLETED, PARTIALLY_COMPLETED, FAILED
- SAVEPOINT isolation per item
- Typed failures, concurrency conflicts, unhandled exceptions
- Whole-pass retry on infrastructure errors
- Cooperative cancellation
- Run and item persistence

Fake tasks write one outbox row per item so SAVEPOINT behaviour is visible
in the database.  Runs use a file-backed SQLite database and one worker.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from compliance_batch.domain.types import CANCELLED_CODE, CancellationToken, PassItemStatus, PassStatus
from compliance_batch.services.executor import UNHANDLED_EXCEPTION, PassExecutor
from compliance_batch.tasks.base import (
    PassItemInput,
    PassTask,
    PassTaskResult,
    TaskRegistry,
    partition_items,
)
from compliance_kernel.domain.settings import EngineSettings
from compliance_kernel.exceptions import (
    ConcurrencyConflictError,
    EntryNotFoundError,
    ReferenceDataNotFoundError,
    TaskNotRegisteredError,
)
from compliance_kernel.models.event import ComplianceEventModel
from compliance_services.events import EventPublisher, EventType
from tests.conftest import TEST_ACTOR_ID


# =============================================================================
# Test fixtures
# =============================================================================


def _items(count: int, partitions: tuple[str, ...] = ("client-a",)) -> tuple[PassItemInput, ...]:
    return tuple(
        PassItemInput(
            item_index=i,
            item_key=f"item-{i}",
            partition_key=partitions[i % len(partitions)],
        )
        for i in range(count)
    )


class _RecordingTask:
    """Base fake: ``count`` items, each writing one outbox row before ``outcome``."""

    task_type = "test.recording"
    description = "Writes one event per item"

    def __init__(self, count: int = 3, partitions: tuple[str, ...] = ("client-a",)):
        self.count = count
        self.partitions = partitions
        self.calls = 0

    def prepare_items(self, parameters, session, context):
        return _items(self.count, self.partitions)

    def execute_item(self, item, parameters, session, context):
        self.calls += 1
        EventPublisher(session, context.bus, context.actor_id).publish(
            EventType.ENTRY_CREATED, uuid4(), context.as_of, {"item_key": item.item_key},
        )
        return self.outcome(item)

    def outcome(self, item: PassItemInput) -> PassTaskResult:
        return PassTaskResult(status=PassItemStatus.SUCCEEDED, result_data={"key": item.item_key})


class SuccessTask(_RecordingTask):
    task_type = "test.success"


class PartialFailTask(_RecordingTask):
    """Odd items raise a typed error after writing."""

    task_type = "test.partial"

    def outcome(self, item):
        if item.item_index % 2:
            raise EntryNotFoundError(item.item_key)
        return super().outcome(item)


class AllFailTask(_RecordingTask):
    task_type = "test.all_fail"

    def outcome(self, item):
        return PassTaskResult(
            status=PassItemStatus.FAILED, error_code="NOT_READY", error_message="not ready",
        )


class ConflictTask(_RecordingTask):
    task_type = "test.conflict"

    def outcome(self, item):
        if item.item_index == 0:
            raise ConcurrencyConflictError(item.item_key, 1, 2)
        return super().outcome(item)


class ExplodingTask(_RecordingTask):
    task_type = "test.exploding"

    def outcome(self, item):
        if item.item_index == 1:
            raise KeyError("surprise")
        return super().outcome(item)


class FlakyTask(_RecordingTask):
    """The first execute_item call loses its connection."""

    task_type = "test.flaky"

    def outcome(self, item):
        if self.calls == 1:
            raise OperationalError("SELECT 1", {}, Exception("connection lost"))
        return super().outcome(item)


class DatabaseDownTask(_RecordingTask):
    task_type = "test.db_down"

    def outcome(self, item):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


class CancellingTask(_RecordingTask):
    """Cancels the pass while processing the first item."""

    task_type = "test.cancelling"

    def __init__(self, token: CancellationToken, **kwargs):
        super().__init__(**kwargs)
        self.token = token

    def outcome(self, item):
        if item.item_index == 0:
            self.token.cancel("operator stop")
        return super().outcome(item)


class EmptyTask(_RecordingTask):
    task_type = "test.empty"

    def prepare_items(self, parameters, session, context):
        return ()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(max_workers=1)


def _executor(file_session_factory, clock, settings, *tasks) -> PassExecutor:
    registry = TaskRegistry()
    for task in tasks:
        registry.register(task)
    return PassExecutor(
        file_session_factory, registry, clock=clock, settings=settings, actor_id=TEST_ACTOR_ID,
    )


def _event_count(session_factory) -> int:
    with session_factory() as session:
        return session.execute(select(func.count(ComplianceEventModel.id))).scalar_one()


# =============================================================================
# Status rollup
# =============================================================================


class TestStatusRollup:
    """Tests for pass-level status."""

    def test_all_succeed(self, file_session_factory, clock, settings):
        executor = _executor(file_session_factory, clock, settings, SuccessTask())

        result = executor.run_pass("test.success")

        assert result.status == PassStatus.COMPLETED
        assert (result.total_items, result.succeeded, result.failed) == (3, 3, 0)
        assert result.attempts == 1
        assert result.error_summary is None
        assert _event_count(file_session_factory) == 3

    def test_partial_failure(self, file_session_factory, clock, settings):
        executor = _executor(file_session_factory, clock, settings, PartialFailTask(count=4))

        result = executor.run_pass("test.partial")

        assert result.status == PassStatus.PARTIALLY_COMPLETED
        assert (result.succeeded, result.failed) == (2, 2)
        assert [r.item_key for r in result.items_with_code("ENTRY_NOT_FOUND")] == ["item-1", "item-3"]
        assert result.error_summary == "2 item(s) failed"

    def test_failed_items_roll_back_their_writes(self, file_session_factory, clock, settings):
        """Writes made before a failure are undone by the item's SAVEPOINT."""
        executor = _executor(file_session_factory, clock, settings, PartialFailTask(count=4))

        executor.run_pass("test.partial")

        assert _event_count(file_session_factory) == 2

    def test_task_reported_failure_rolls_back(self, file_session_factory, clock, settings):
        executor = _executor(file_session_factory, clock, settings, AllFailTask())

        result = executor.run_pass("test.all_fail")

        assert result.status == PassStatus.FAILED
        assert {r.error_code for r in result.item_results} == {"NOT_READY"}
        assert _event_count(file_session_factory) == 0

    def test_no_items_is_completed(self, file_session_factory, clock, settings):
        executor = _executor(file_session_factory, clock, settings, EmptyTask())

        result = executor.run_pass("test.empty")

        assert result.status == PassStatus.COMPLETED
        assert result.total_items == 0

    def test_multiple_partitions(self, file_session_factory, clock, settings):
        task = SuccessTask(count=5, partitions=("client-a", "client-b"))
        executor = _executor(file_session_factory, clock, settings, task)

        result = executor.run_pass("test.success")

        assert [r.item_index for r in result.item_results] == [0, 1, 2, 3, 4]
        assert {r.partition_key for r in result.item_results} == {"client-a", "client-b"}


class TestItemErrors:
    """Tests for per-item error classification."""

    def test_concurrency_conflict_code(self, file_session_factory, clock, settings, captured_logs):
        executor = _executor(file_session_factory, clock, settings, ConflictTask())

        result = executor.run_pass("test.conflict")

        (conflict,) = result.items_with_code("CONCURRENCY_CONFLICT")
        assert conflict.item_key == "item-0"
        assert result.succeeded == 2
        assert any(r["message"] == "pass_item_concurrency_conflict" for r in captured_logs())

    def test_unhandled_exception(self, file_session_factory, clock, settings, captured_logs):
        executor = _executor(file_session_factory, clock, settings, ExplodingTask())

        result = executor.run_pass("test.exploding")

        (failed,) = result.items_with_code(UNHANDLED_EXCEPTION)
        assert failed.item_key == "item-1"
        assert result.status == PassStatus.PARTIALLY_COMPLETED
        (record,) = [r for r in captured_logs() if r["message"] == "pass_item_unhandled_exception"]
        assert record["exc_type"] == "KeyError"


class TestRetry:
    """Tests for whole-pass retry on infrastructure errors."""

    def test_transient_failure_retried(self, file_session_factory, clock, settings):
        task = FlakyTask()
        executor = _executor(file_session_factory, clock, settings, task)

        result = executor.run_pass("test.flaky")

        assert result.status == PassStatus.COMPLETED
        assert result.attempts == 2
        assert result.succeeded == 3
        assert _event_count(file_session_factory) == 3

    def test_retries_exhausted(self, file_session_factory, clock, settings, captured_logs):
        executor = _executor(file_session_factory, clock, settings, DatabaseDownTask())

        result = executor.run_pass("test.db_down")

        assert result.status == PassStatus.FAILED
        assert result.attempts == settings.max_pass_retries + 1
        assert result.error_summary.startswith("Attempt 3 failed")
        attempts = [r for r in captured_logs() if r["message"] == "pass_attempt_failed"]
        assert len(attempts) == 3


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_remaining_items_skipped(self, file_session_factory, clock, settings):
        token = CancellationToken()
        executor = _executor(file_session_factory, clock, settings, CancellingTask(token, count=4))

        result = executor.run_pass("test.cancelling", cancel_token=token)

        assert result.status == PassStatus.CANCELLED
        assert result.succeeded == 1
        assert result.skipped == 3
        skipped = result.items_with_code(CANCELLED_CODE)
        assert all(r.status == PassItemStatus.SKIPPED for r in skipped)
        assert skipped[0].error_message == "operator stop"

    def test_cancelled_before_start(self, file_session_factory, clock, settings):
        token = CancellationToken()
        token.cancel()
        executor = _executor(file_session_factory, clock, settings, SuccessTask())

        result = executor.run_pass("test.success", cancel_token=token)

        assert result.status == PassStatus.CANCELLED
        assert result.skipped == 3
        assert _event_count(file_session_factory) == 0


class TestPersistence:
    """Tests for pass run and item rows."""

    def test_run_row(self, file_session_factory, clock, settings):
        executor = _executor(file_session_factory, clock, settings, PartialFailTask(count=4))

        result = executor.run_pass("test.partial", correlation_id="ops-7")

        run = executor.get_pass(result.pass_id)
        assert run.status == PassStatus.PARTIALLY_COMPLETED
        assert (run.total_items, run.succeeded_items, run.failed_items) == (4, 2, 2)
        assert run.correlation_id == "ops-7"
        assert run.started_at == clock.now()

    def test_item_rows_per_attempt(self, file_session_factory, clock, settings):
        executor = _executor(file_session_factory, clock, settings, FlakyTask())

        result = executor.run_pass("test.flaky")

        assert executor.get_pass_items(result.pass_id, attempt=1) == ()
        items = executor.get_pass_items(result.pass_id)
        assert [i.status for i in items] == [PassItemStatus.SUCCEEDED] * 3
        assert items[0].result_data == {"key": "item-0"}

    def test_unknown_pass(self, file_session_factory, clock, settings):
        executor = _executor(file_session_factory, clock, settings)

        with pytest.raises(ReferenceDataNotFoundError):
            executor.get_pass(uuid4())


class TestTaskRegistry:
    """Tests for TaskRegistry and partitioning."""

    def test_register_and_get(self):
        registry = TaskRegistry()
        task = SuccessTask()

        registry.register(task)

        assert registry.get("test.success") is task
        assert "test.success" in registry
        assert len(registry) == 1
        assert isinstance(task, PassTask)

    def test_duplicate_rejected(self):
        registry = TaskRegistry()
        registry.register(SuccessTask())

        with pytest.raises(ValueError):
            registry.register(SuccessTask())

    def test_unknown_task(self):
        registry = TaskRegistry()
        registry.register(SuccessTask())

        with pytest.raises(TaskNotRegisteredError) as exc_info:
            registry.get("test.missing")

        assert exc_info.value.code == "TASK_NOT_REGISTERED"
        assert exc_info.value.available == ("test.success",)

    def test_run_unknown_task(self, file_session_factory, clock, settings):
        executor = _executor(file_session_factory, clock, settings)

        with pytest.raises(TaskNotRegisteredError):
            executor.run_pass("test.missing")

    def test_partition_preserves_order(self):
        grouped = partition_items(_items(5, ("a", "b")))

        assert [i.item_index for i in grouped["a"]] == [0, 2, 4]
        assert [i.item_index for i in grouped["b"]] == [1, 3]
