"""
compliance_engines.lifecycle -- Calendar entry lifecycle state machine.

Responsibility:
    Derives the status of a calendar entry from the jurisdiction-local
    "now" and the effective due date, and decides which status changes are
    legal (ticks, filing, extension).

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Never reads the clock;
    the caller passes ``now``.

Invariants enforced:
    - ``ENTRY_TRANSITIONS`` defines the only valid transitions.  Terminal
      states (COMPLETED, EXEMPTED, NOT_APPLICABLE) have no outgoing edges.
    - Ticks only move forward: UPCOMING < DUE_SOON < DUE_TODAY < OVERDUE.
    - The one sanctioned backwards move is an extension, which re-derives
      the status against the new due date.
    - "Today" is the local date in the jurisdiction's timezone.

Failure modes:
    - InvalidTransitionError for an edge not in the table.
    - ZoneInfoNotFoundError (from zoneinfo) for an unknown timezone name.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from uuid import UUID
from zoneinfo import ZoneInfo

from compliance_kernel.domain.types import ComplianceStatus, TERMINAL_STATUSES
from compliance_kernel.exceptions import InvalidTransitionError

_S = ComplianceStatus

ENTRY_TRANSITIONS: dict[ComplianceStatus, frozenset[ComplianceStatus]] = {
    _S.UPCOMING: frozenset({_S.DUE_SOON, _S.DUE_TODAY, _S.OVERDUE, _S.COMPLETED}),
    _S.DUE_SOON: frozenset({_S.DUE_TODAY, _S.OVERDUE, _S.COMPLETED}),
    _S.DUE_TODAY: frozenset({_S.OVERDUE, _S.COMPLETED}),
    _S.OVERDUE: frozenset({_S.COMPLETED}),
    _S.COMPLETED: frozenset(),
    _S.EXEMPTED: frozenset(),
    _S.NOT_APPLICABLE: frozenset(),
}

# Extension may re-derive any time-driven status from any non-terminal one.
_TIME_DRIVEN: frozenset[ComplianceStatus] = frozenset({
    _S.UPCOMING, _S.DUE_SOON, _S.DUE_TODAY, _S.OVERDUE,
})

_TICK_ORDER: dict[ComplianceStatus, int] = {
    _S.UPCOMING: 0,
    _S.DUE_SOON: 1,
    _S.DUE_TODAY: 2,
    _S.OVERDUE: 3,
}


def local_now(now: datetime, tz_name: str) -> datetime:
    """``now`` in the jurisdiction's timezone.  Naive datetimes are UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name))


def local_today(now: datetime, tz_name: str) -> date:
    return local_now(now, tz_name).date()


def derive_status(
    due_date: date,
    now: datetime,
    tz_name: str,
    due_soon_threshold_hours: int = 24,
) -> ComplianceStatus:
    """Time-driven status of an open entry.

    OVERDUE after the due date, DUE_TODAY on it, DUE_SOON when the start
    of the due date is at most ``due_soon_threshold_hours`` away,
    UPCOMING otherwise.
    """
    here = local_now(now, tz_name)
    today = here.date()
    if today > due_date:
        return _S.OVERDUE
    if today == due_date:
        return _S.DUE_TODAY
    due_start = datetime.combine(due_date, time.min, tzinfo=here.tzinfo)
    hours_left = (due_start - here).total_seconds() / 3600
    if hours_left <= due_soon_threshold_hours:
        return _S.DUE_SOON
    return _S.UPCOMING


def days_overdue(due_date: date, as_of: date) -> int:
    return max(0, (as_of - due_date).days)


def days_until_due(due_date: date, as_of: date) -> int:
    return (due_date - as_of).days


def next_status(current: ComplianceStatus, derived: ComplianceStatus) -> ComplianceStatus:
    """Forward-only tick.  Terminal states and backwards moves keep ``current``."""
    if current in TERMINAL_STATUSES:
        return current
    if _TICK_ORDER[derived] > _TICK_ORDER[current]:
        return derived
    return current


def can_transition(
    from_status: ComplianceStatus,
    to_status: ComplianceStatus,
    *,
    extension: bool = False,
) -> bool:
    if from_status == to_status:
        return True
    if extension:
        return from_status in _TIME_DRIVEN and to_status in _TIME_DRIVEN
    return to_status in ENTRY_TRANSITIONS[from_status]


def assert_transition(
    entry_id: UUID | str,
    from_status: ComplianceStatus,
    to_status: ComplianceStatus,
    *,
    extension: bool = False,
) -> None:
    if not can_transition(from_status, to_status, extension=extension):
        raise InvalidTransitionError(str(entry_id), from_status.value, to_status.value)


@dataclass(frozen=True)
class StatusEvaluation:
    """Result of evaluating one entry at one instant."""

    previous_status: ComplianceStatus
    status: ComplianceStatus
    local_today: date
    days_overdue: int
    days_until_due: int

    @property
    def changed(self) -> bool:
        return self.status != self.previous_status


def evaluate_status(
    current: ComplianceStatus,
    due_date: date,
    now: datetime,
    tz_name: str,
    due_soon_threshold_hours: int = 24,
) -> StatusEvaluation:
    """One tick: derive, apply forward-only rule, report days overdue."""
    today = local_today(now, tz_name)
    derived = derive_status(due_date, now, tz_name, due_soon_threshold_hours)
    status = next_status(current, derived)
    overdue = days_overdue(due_date, today) if status == _S.OVERDUE else 0
    return StatusEvaluation(
        previous_status=current,
        status=status,
        local_today=today,
        days_overdue=overdue,
        days_until_due=days_until_due(due_date, today),
    )


def evaluate_extension(
    current: ComplianceStatus,
    extended_due_date: date,
    now: datetime,
    tz_name: str,
    due_soon_threshold_hours: int = 24,
) -> StatusEvaluation:
    """Re-derive status against a new due date, allowing backwards moves."""
    today = local_today(now, tz_name)
    status = derive_status(extended_due_date, now, tz_name, due_soon_threshold_hours)
    return StatusEvaluation(
        previous_status=current,
        status=status,
        local_today=today,
        days_overdue=days_overdue(extended_due_date, today) if status == _S.OVERDUE else 0,
        days_until_due=days_until_due(extended_due_date, today),
    )
