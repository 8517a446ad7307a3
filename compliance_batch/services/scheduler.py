"""
PassScheduler -- in-process polling scheduler for recurring passes.

Contract:
    Polls ``compliance_pass_schedules`` every ``tick_interval_seconds`` on
    a background thread, evaluates ``should_fire()`` (pure), and runs due
    passes through PassExecutor.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Graceful shutdown: the threading.Event stop flag is checked between
      schedules; a pass already running finishes.
    - Schedules are read and updated in short transactions of their own,
      never held open while a pass writes.

Non-goals:
    - NOT a distributed scheduler (no leader election).
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from compliance_batch.domain.schedule import compute_next_run, should_fire
from compliance_batch.domain.types import PassRunResult, PassSchedule, ScheduleFrequency
from compliance_batch.models.pass_run import PassScheduleModel
from compliance_batch.services.executor import PassExecutor
from compliance_kernel.db.base import SYSTEM_ACTOR_ID
from compliance_kernel.db.engine import session_scope
from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.logging_config import get_logger

logger = get_logger("batch.scheduler")


class PassScheduler:
    """
    Polling scheduler.

    Contract:
        - ``add_schedule()`` registers a recurring pass.
        - ``tick()`` evaluates all active schedules and fires due ones.
        - ``start()`` / ``stop()`` for background thread operation.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor: PassExecutor,
        clock: Clock | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        tick_interval_seconds: int = 60,
    ):
        self._session_factory = session_factory
        self._executor = executor
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def add_schedule(
        self,
        name: str,
        task_type: str,
        frequency: ScheduleFrequency,
        parameters: dict[str, Any] | None = None,
        next_run_at: datetime | None = None,
    ) -> PassSchedule:
        with session_scope(self._session_factory) as session:
            row = PassScheduleModel(
                name=name,
                task_type=task_type,
                frequency=frequency.value,
                parameters=parameters or None,
                next_run_at=next_run_at,
                is_active=True,
                created_by_id=self._actor_id,
            )
            session.add(row)
            session.flush()
            schedule = row.to_dto()
        logger.info(
            "pass_schedule_added",
            extra={"schedule_id": str(schedule.schedule_id), "name": name, "task_type": task_type},
        )
        return schedule

    def tick(self) -> int:
        """Evaluate and fire due schedules.  Returns the number fired."""
        try:
            due = self._due_schedules(self._clock.now())
        except Exception:
            logger.exception("scheduler_tick_failed")
            return 0

        fired = 0
        for schedule in due:
            if self._stop_event.is_set():
                break
            try:
                result = self._executor.run_pass(schedule.task_type, schedule.parameters)
                self._record_run(schedule, result)
                fired += 1
            except Exception:
                logger.exception(
                    "schedule_fire_failed",
                    extra={"schedule_id": str(schedule.schedule_id), "name": schedule.name},
                )
        return fired

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="compliance-pass-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._tick_interval)

    def _due_schedules(self, now: datetime) -> list[PassSchedule]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                select(PassScheduleModel)
                .where(PassScheduleModel.is_active.is_(True))
                .order_by(PassScheduleModel.name)
            ).scalars().all()
            schedules = [row.to_dto() for row in rows]
        return [s for s in schedules if should_fire(s, now)]

    def _record_run(self, schedule: PassSchedule, result: PassRunResult) -> None:
        ran_at = result.started_at or self._clock.now()
        next_run = compute_next_run(schedule.frequency, ran_at)
        with session_scope(self._session_factory) as session:
            row = session.get(PassScheduleModel, schedule.schedule_id)
            row.last_run_at = ran_at
            row.last_run_status = result.status.value
            row.next_run_at = next_run
            row.updated_by_id = self._actor_id
        logger.info(
            "schedule_fired",
            extra={
                "schedule_id": str(schedule.schedule_id),
                "name": schedule.name,
                "pass_id": str(result.pass_id),
                "status": result.status.value,
                "next_run_at": next_run,
            },
        )
