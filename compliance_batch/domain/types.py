"""
compliance_batch.domain.types -- Pure frozen dataclasses for passes.

Invariants enforced:
    - All DTOs are frozen; collections are tuples.
    - A pass result's counters always sum to ``total_items``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class PassStatus(str, Enum):
    """Pass-level lifecycle status."""

    RUNNING = "running"
    COMPLETED = "completed"  # Every item succeeded
    PARTIALLY_COMPLETED = "partially_completed"  # Some items failed
    FAILED = "failed"  # No item succeeded, or retries exhausted
    CANCELLED = "cancelled"


class PassItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class ScheduleFrequency(str, Enum):
    """Recurrence frequency for scheduled passes."""

    ONCE = "once"  # Fire once, no recurrence
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"  # Same day next calendar month, clamped to month end
    ON_DEMAND = "on_demand"  # Manual trigger only


# Error code for items skipped because the pass was cancelled.
CANCELLED_CODE = "CANCELLED"


# =============================================================================
# Cancellation
# =============================================================================


class CancellationToken:
    """Cooperative cancellation flag shared by every worker of one pass.

    Checked between items; an item already executing always finishes.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason


# =============================================================================
# Pass DTOs
# =============================================================================


@dataclass(frozen=True)
class PassItemResult:
    """Outcome of one item.  ``partition_key`` is the owning client id."""

    item_index: int
    item_key: str
    partition_key: str
    status: PassItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class PassRun:
    """Snapshot of a persisted pass run."""

    pass_id: UUID
    task_type: str
    status: PassStatus
    parameters: dict[str, Any] = field(default_factory=dict)
    total_items: int = 0
    succeeded_items: int = 0
    failed_items: int = 0
    skipped_items: int = 0
    attempts: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    correlation_id: str | None = None
    error_summary: str | None = None


@dataclass(frozen=True)
class PassRunResult:
    """Returned by ``PassExecutor.run_pass()``."""

    pass_id: UUID
    task_type: str
    status: PassStatus
    total_items: int
    succeeded: int
    failed: int
    skipped: int
    attempts: int
    item_results: tuple[PassItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    correlation_id: str | None = None
    error_summary: str | None = None

    def items_with_code(self, error_code: str) -> tuple[PassItemResult, ...]:
        return tuple(r for r in self.item_results if r.error_code == error_code)


# =============================================================================
# Schedule DTOs
# =============================================================================


@dataclass(frozen=True)
class PassSchedule:
    """Snapshot of a recurring pass schedule."""

    schedule_id: UUID
    name: str
    task_type: str
    frequency: ScheduleFrequency
    parameters: dict[str, Any] = field(default_factory=dict)
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_run_status: PassStatus | None = None
    is_active: bool = True
