"""
PassExecutor -- partitioned, SAVEPOINT-per-item pass execution.

Contract:
    ``run_pass(task_type, parameters)`` prepares the task's items, groups
    them by partition key (client), and runs each partition on a worker
    of a ThreadPoolExecutor.  Every worker opens its own session from the
    session factory.

Architecture: compliance_batch/services.  Imports from compliance_batch
    domain, models and tasks, plus kernel infrastructure.

Invariants enforced:
    - SAVEPOINT isolation per item: one failed item never aborts the pass.
    - One commit per partition, after its last item.
    - Per-entry optimistic concurrency only; a losing writer's item is
      reported with code CONCURRENCY_CONFLICT.  No global lock.
    - Retry the batch: an infrastructure failure (SQLAlchemyError escaping
      an item or a commit) re-runs the whole pass, up to
      ``max_pass_retries`` extra attempts.  Generation and re-evaluation
      are idempotent, so partitions committed by a failed attempt are
      simply revisited.
    - Cooperative cancellation: the token is checked between items;
      remaining items are SKIPPED with code CANCELLED.
    - All timestamps from the injected Clock.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from compliance_batch.domain.types import (
    CANCELLED_CODE,
    CancellationToken,
    PassItemResult,
    PassItemStatus,
    PassRun,
    PassRunResult,
    PassStatus,
)
from compliance_batch.models.pass_run import PassItemModel, PassRunModel
from compliance_batch.tasks.base import (
    PassContext,
    PassItemInput,
    PassTask,
    TaskRegistry,
    partition_items,
)
from compliance_kernel.db.base import SYSTEM_ACTOR_ID
from compliance_kernel.db.engine import session_scope
from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.settings import EngineSettings
from compliance_kernel.exceptions import (
    ComplianceEngineError,
    ConcurrencyConflictError,
    ReferenceDataNotFoundError,
)
from compliance_kernel.logging_config import LogContext, get_logger
from compliance_services.events import EventBus

logger = get_logger("batch.executor")

UNHANDLED_EXCEPTION = "UNHANDLED_EXCEPTION"


class PassExecutor:
    """
    Runs passes over a session factory.

    Contract:
        - ``run_pass()`` returns a PassRunResult and persists the run and
          one item row per processed item and attempt.
        - ``get_pass()`` / ``get_pass_items()`` for queries.

    Non-goals:
        - Does NOT schedule; that is PassScheduler's job.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        task_registry: TaskRegistry,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        bus: EventBus | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ):
        self._session_factory = session_factory
        self._task_registry = task_registry
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()
        self._bus = bus or EventBus()
        self._actor_id = actor_id

    @property
    def bus(self) -> EventBus:
        return self._bus

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run_pass(
        self,
        task_type: str,
        parameters: dict[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
        correlation_id: str | None = None,
    ) -> PassRunResult:
        """Run one pass of ``task_type``.

        Raises:
            TaskNotRegisteredError: If task_type is not in the registry.
        """
        task = self._task_registry.get(task_type)
        parameters = dict(parameters or {})
        token = cancel_token or CancellationToken()
        pass_id = uuid4()
        correlation_id = correlation_id or str(pass_id)
        started_at = self._clock.now()
        start = time.monotonic()

        with LogContext.bind(pass_id=str(pass_id), correlation_id=correlation_id):
            self._open_run(pass_id, task_type, parameters, started_at, correlation_id)
            logger.info(
                "pass_started",
                extra={"task_type": task_type, "parameters": parameters},
            )

            context = PassContext(
                pass_id=pass_id,
                as_of=started_at,
                clock=self._clock,
                settings=self._settings,
                bus=self._bus,
                actor_id=self._actor_id,
            )
            max_attempts = self._settings.max_pass_retries + 1
            results: tuple[PassItemResult, ...] = ()
            error_summary: str | None = None
            attempt = 0
            while attempt < max_attempts:
                attempt += 1
                try:
                    results = self._run_attempt(task, parameters, context, token, attempt)
                    error_summary = None
                    break
                except SQLAlchemyError as exc:
                    error_summary = f"Attempt {attempt} failed: {exc}"
                    logger.warning(
                        "pass_attempt_failed",
                        extra={"attempt": attempt, "max_attempts": max_attempts, "error": str(exc)},
                    )
                    if token.is_cancelled:
                        break

            succeeded = _count(results, PassItemStatus.SUCCEEDED)
            failed = _count(results, PassItemStatus.FAILED)
            skipped = _count(results, PassItemStatus.SKIPPED)
            if error_summary is not None:
                status = PassStatus.FAILED
            elif token.is_cancelled:
                status = PassStatus.CANCELLED
            elif failed == 0:
                status = PassStatus.COMPLETED
            elif succeeded == 0:
                status = PassStatus.FAILED
            else:
                status = PassStatus.PARTIALLY_COMPLETED
            if error_summary is None and failed:
                error_summary = f"{failed} item(s) failed"

            result = PassRunResult(
                pass_id=pass_id,
                task_type=task_type,
                status=status,
                total_items=len(results),
                succeeded=succeeded,
                failed=failed,
                skipped=skipped,
                attempts=attempt,
                item_results=results,
                started_at=started_at,
                completed_at=self._clock.now(),
                duration_ms=int((time.monotonic() - start) * 1000),
                correlation_id=correlation_id,
                error_summary=error_summary,
            )
            self._close_run(result)
            log = logger.error if status == PassStatus.FAILED else logger.info
            log(
                "pass_completed",
                extra={
                    "task_type": task_type,
                    "status": status.value,
                    "total_items": result.total_items,
                    "succeeded": succeeded,
                    "failed": failed,
                    "skipped": skipped,
                    "attempts": attempt,
                    "duration_ms": result.duration_ms,
                },
            )
        return result

    def _run_attempt(
        self,
        task: PassTask,
        parameters: dict[str, Any],
        context: PassContext,
        token: CancellationToken,
        attempt: int,
    ) -> tuple[PassItemResult, ...]:
        session = self._session_factory()
        try:
            items = task.prepare_items(parameters, session, context)
        finally:
            session.close()

        partitions = partition_items(items)
        logger.info(
            "pass_items_prepared",
            extra={"attempt": attempt, "total_items": len(items), "partitions": len(partitions)},
        )
        if not partitions:
            return ()

        results: list[PassItemResult] = []
        failure: SQLAlchemyError | None = None
        workers = min(self._settings.max_workers, len(partitions))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="compliance-pass") as pool:
            futures = [
                pool.submit(
                    self._run_partition, task, key, group, parameters, context, token, attempt,
                    LogContext.get_all().get("correlation_id"),
                )
                for key, group in partitions.items()
            ]
            for future in as_completed(futures):
                try:
                    results.extend(future.result())
                except SQLAlchemyError as exc:
                    failure = failure or exc
        if failure is not None:
            raise failure
        return tuple(sorted(results, key=lambda r: r.item_index))

    def _run_partition(
        self,
        task: PassTask,
        partition_key: str,
        items: tuple[PassItemInput, ...],
        parameters: dict[str, Any],
        context: PassContext,
        token: CancellationToken,
        attempt: int,
        correlation_id: str | None,
    ) -> list[PassItemResult]:
        results: list[PassItemResult] = []
        session = self._session_factory()
        with LogContext.bind(
            pass_id=str(context.pass_id),
            correlation_id=correlation_id,
            client_id=partition_key,
        ):
            try:
                for item in items:
                    if token.is_cancelled:
                        result = PassItemResult(
                            item_index=item.item_index,
                            item_key=item.item_key,
                            partition_key=partition_key,
                            status=PassItemStatus.SKIPPED,
                            error_code=CANCELLED_CODE,
                            error_message=token.reason or "Pass cancelled",
                        )
                    else:
                        result = self._execute_item(task, item, parameters, session, context)
                    session.add(PassItemModel.from_result(
                        result, context.pass_id, attempt, context.actor_id,
                    ))
                    results.append(result)
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
        return results

    def _execute_item(
        self,
        task: PassTask,
        item: PassItemInput,
        parameters: dict[str, Any],
        session: Session,
        context: PassContext,
    ) -> PassItemResult:
        start = time.monotonic()
        savepoint = session.begin_nested()
        try:
            outcome = task.execute_item(item, parameters, session, context)
        except (OperationalError, InterfaceError):
            # Lost connection or similar; the whole attempt is retried.
            raise
        except ComplianceEngineError as exc:
            savepoint.rollback()
            if isinstance(exc, ConcurrencyConflictError):
                logger.warning(
                    "pass_item_concurrency_conflict",
                    extra={"item_key": item.item_key, "error": str(exc)},
                )
            else:
                logger.warning(
                    "pass_item_failed",
                    extra={"item_key": item.item_key, "error_code": exc.code, "error": str(exc)},
                )
            return _item_result(item, PassItemStatus.FAILED, start, exc.code, str(exc))
        except Exception as exc:
            savepoint.rollback()
            logger.exception("pass_item_unhandled_exception", extra={"item_key": item.item_key})
            return _item_result(item, PassItemStatus.FAILED, start, UNHANDLED_EXCEPTION, str(exc))

        if outcome.status == PassItemStatus.SUCCEEDED:
            savepoint.commit()
        else:
            savepoint.rollback()
        return _item_result(
            item, outcome.status, start,
            outcome.error_code, outcome.error_message, outcome.result_data,
        )

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _open_run(
        self,
        pass_id: UUID,
        task_type: str,
        parameters: dict[str, Any],
        started_at: datetime,
        correlation_id: str,
    ) -> None:
        with session_scope(self._session_factory) as session:
            session.add(PassRunModel(
                id=pass_id,
                task_type=task_type,
                status=PassStatus.RUNNING.value,
                parameters=parameters or None,
                started_at=started_at,
                correlation_id=correlation_id,
                created_by_id=self._actor_id,
            ))

    def _close_run(self, result: PassRunResult) -> None:
        with session_scope(self._session_factory) as session:
            row = session.get(PassRunModel, result.pass_id)
            row.status = result.status.value
            row.total_items = result.total_items
            row.succeeded_items = result.succeeded
            row.failed_items = result.failed
            row.skipped_items = result.skipped
            row.attempts = result.attempts
            row.completed_at = result.completed_at
            row.error_summary = result.error_summary
            row.updated_by_id = self._actor_id

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_pass(self, pass_id: UUID) -> PassRun:
        session = self._session_factory()
        try:
            row = session.get(PassRunModel, pass_id)
            if row is None:
                raise ReferenceDataNotFoundError("PassRun", str(pass_id))
            return row.to_dto()
        finally:
            session.close()

    def get_pass_items(
        self, pass_id: UUID, attempt: int | None = None,
    ) -> tuple[PassItemResult, ...]:
        """Item results of a pass; the last attempt unless ``attempt`` is given."""
        session = self._session_factory()
        try:
            if attempt is None:
                run = session.get(PassRunModel, pass_id)
                attempt = run.attempts if run is not None else 1
            rows = session.execute(
                select(PassItemModel)
                .where(PassItemModel.pass_run_id == pass_id, PassItemModel.attempt == attempt)
                .order_by(PassItemModel.item_index)
            ).scalars().all()
            return tuple(row.to_dto() for row in rows)
        finally:
            session.close()


def _count(results: tuple[PassItemResult, ...], status: PassItemStatus) -> int:
    return sum(1 for r in results if r.status == status)


def _item_result(
    item: PassItemInput,
    status: PassItemStatus,
    start: float,
    error_code: str | None = None,
    error_message: str | None = None,
    result_data: dict[str, Any] | None = None,
) -> PassItemResult:
    return PassItemResult(
        item_index=item.item_index,
        item_key=item.item_key,
        partition_key=item.partition_key,
        status=status,
        error_code=error_code,
        error_message=error_message,
        result_data=result_data,
        duration_ms=int((time.monotonic() - start) * 1000),
    )
