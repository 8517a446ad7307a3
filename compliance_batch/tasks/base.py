"""
PassTask protocol, supporting types, and TaskRegistry.

Contract:
    ``PassTask`` defines the interface every pass task implements.
    ``TaskRegistry`` stores registered tasks keyed by ``task_type``.

Architecture:
    compliance_batch/tasks.  Tasks call services; the executor owns
    sessions, SAVEPOINTs, and commits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from compliance_batch.domain.types import PassItemStatus
from compliance_kernel.db.base import SYSTEM_ACTOR_ID
from compliance_kernel.domain.clock import Clock
from compliance_kernel.domain.settings import EngineSettings
from compliance_kernel.exceptions import TaskNotRegisteredError
from compliance_services.events import EventBus


# =============================================================================
# Supporting DTOs
# =============================================================================


@dataclass(frozen=True)
class PassItemInput:
    """One unit of work.  Items sharing a ``partition_key`` run on one worker."""

    item_index: int
    item_key: str
    partition_key: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PassTaskResult:
    status: PassItemStatus
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class PassContext:
    """Shared dependencies handed to every ``execute_item`` call of a pass.

    ``as_of`` is the clock reading taken once when the pass started, so
    every item of the pass is evaluated at the same instant.
    """

    pass_id: UUID
    as_of: datetime
    clock: Clock
    settings: EngineSettings
    bus: EventBus
    actor_id: UUID = SYSTEM_ACTOR_ID


# =============================================================================
# PassTask Protocol
# =============================================================================


@runtime_checkable
class PassTask(Protocol):
    """
    Interface for pass task implementations.

    Contract:
        - ``task_type``: unique key registered in TaskRegistry.
        - ``prepare_items()``: queries eligible work, returns an immutable tuple.
        - ``execute_item()``: processes ONE item inside a SAVEPOINT.  Typed
          ComplianceEngineError subclasses propagate; the executor turns
          them into item failures carrying the error's code.

    Non-goals:
        - Does NOT manage transactions or retries.
    """

    @property
    def task_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        context: PassContext,
    ) -> tuple[PassItemInput, ...]: ...

    def execute_item(
        self,
        item: PassItemInput,
        parameters: dict[str, Any],
        session: Session,
        context: PassContext,
    ) -> PassTaskResult: ...


def partition_items(
    items: tuple[PassItemInput, ...],
) -> dict[str, tuple[PassItemInput, ...]]:
    """Group items by partition key, preserving item order within each group."""
    grouped: dict[str, list[PassItemInput]] = {}
    for item in items:
        grouped.setdefault(item.partition_key, []).append(item)
    return {key: tuple(group) for key, group in grouped.items()}


# =============================================================================
# TaskRegistry
# =============================================================================


class TaskRegistry:
    """Registry mapping task_type strings to PassTask implementations."""

    def __init__(self) -> None:
        self._tasks: dict[str, PassTask] = {}

    def register(self, task: PassTask) -> None:
        """Raises ValueError if the task_type is already registered."""
        if task.task_type in self._tasks:
            raise ValueError(f"Task type '{task.task_type}' is already registered")
        self._tasks[task.task_type] = task

    def get(self, task_type: str) -> PassTask:
        try:
            return self._tasks[task_type]
        except KeyError:
            raise TaskNotRegisteredError(task_type, self.list_tasks()) from None

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._tasks))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_type: str) -> bool:
        return task_type in self._tasks
