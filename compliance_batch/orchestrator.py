"""
ComplianceOrchestrator -- DI container for passes and the calendar service.

Contract:
    Wires the TaskRegistry with the calendar tasks, and builds PassExecutor,
    PassScheduler, and ComplianceCalendarService instances that share one
    Clock, one EngineSettings, and one EventBus.  Single place where all
    pass dependencies are composed.

Invariants enforced:
    - Clock injection: every component receives the same Clock.
    - Nothing in kernel/, engines/, or services/ imports from here.
"""

from __future__ import annotations

from datetime import date
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from compliance_batch.domain.types import CancellationToken, PassRunResult
from compliance_batch.services.executor import PassExecutor
from compliance_batch.services.scheduler import PassScheduler
from compliance_batch.tasks.base import TaskRegistry
from compliance_batch.tasks.calendar_tasks import (
    GENERATE_CALENDAR,
    REEVALUATE_ENTRIES,
    GenerateCalendarTask,
    ReevaluateEntriesTask,
)
from compliance_kernel.db.base import SYSTEM_ACTOR_ID
from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.settings import EngineSettings
from compliance_kernel.logging_config import get_logger
from compliance_services.calendar_service import ComplianceCalendarService
from compliance_services.events import EventBus, EventPublisher

logger = get_logger("batch.orchestrator")


def default_task_registry() -> TaskRegistry:
    """A TaskRegistry pre-loaded with the calendar tasks."""
    registry = TaskRegistry()
    registry.register(GenerateCalendarTask())
    registry.register(ReevaluateEntriesTask())
    return registry


class ComplianceOrchestrator:
    """
    DI container for the compliance engine.

    Contract:
        - ``from_session_factory()`` creates a fully wired orchestrator.
        - ``calendar_service(session)`` for commands (filing, extensions).
        - ``run_generation()`` / ``run_reevaluation()`` run one pass.
        - ``create_scheduler()`` returns a PassScheduler for background use.

    Non-goals:
        - Does NOT start the scheduler automatically; the caller decides.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        task_registry: TaskRegistry,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        bus: EventBus | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> None:
        self._session_factory = session_factory
        self._task_registry = task_registry
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()
        self._bus = bus or EventBus()
        self._actor_id = actor_id
        self._executor = PassExecutor(
            session_factory=session_factory,
            task_registry=task_registry,
            clock=self._clock,
            settings=self._settings,
            bus=self._bus,
            actor_id=actor_id,
        )

    @classmethod
    def from_session_factory(
        cls,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        task_registry: TaskRegistry | None = None,
    ) -> ComplianceOrchestrator:
        registry = task_registry if task_registry is not None else default_task_registry()
        orchestrator = cls(
            session_factory=session_factory,
            task_registry=registry,
            clock=clock,
            settings=settings,
            actor_id=actor_id,
        )
        logger.info(
            "orchestrator_created",
            extra={"tasks": list(registry.list_tasks()), "max_workers": orchestrator.settings.max_workers},
        )
        return orchestrator

    # -------------------------------------------------------------------------
    # Services
    # -------------------------------------------------------------------------

    def calendar_service(self, session: Session) -> ComplianceCalendarService:
        return ComplianceCalendarService(
            session,
            clock=self._clock,
            settings=self._settings,
            publisher=EventPublisher(session, bus=self._bus, actor_id=self._actor_id),
            actor_id=self._actor_id,
        )

    def create_scheduler(self, tick_interval_seconds: int = 60) -> PassScheduler:
        return PassScheduler(
            session_factory=self._session_factory,
            executor=self._executor,
            clock=self._clock,
            actor_id=self._actor_id,
            tick_interval_seconds=tick_interval_seconds,
        )

    # -------------------------------------------------------------------------
    # Passes
    # -------------------------------------------------------------------------

    def run_generation(
        self,
        client_id: UUID | None = None,
        as_of: date | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> PassRunResult:
        parameters: dict[str, str] = {}
        if client_id is not None:
            parameters["client_id"] = str(client_id)
        if as_of is not None:
            parameters["as_of"] = as_of.isoformat()
        return self._executor.run_pass(GENERATE_CALENDAR, parameters, cancel_token)

    def run_reevaluation(
        self,
        client_id: UUID | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> PassRunResult:
        parameters = {"client_id": str(client_id)} if client_id is not None else {}
        return self._executor.run_pass(REEVALUATE_ENTRIES, parameters, cancel_token)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def executor(self) -> PassExecutor:
        return self._executor

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry
