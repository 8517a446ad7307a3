"""
Pure schedule evaluation.

Contract:
    ``should_fire(schedule, as_of)`` and ``compute_next_run()`` take every
    timestamp from the caller and perform no I/O.  The scheduler persists
    what they return.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from compliance_batch.domain.types import PassSchedule, ScheduleFrequency

_FIXED_INTERVALS = {
    ScheduleFrequency.HOURLY: timedelta(hours=1),
    ScheduleFrequency.DAILY: timedelta(days=1),
    ScheduleFrequency.WEEKLY: timedelta(weeks=1),
}


def should_fire(schedule: PassSchedule, as_of: datetime) -> bool:
    """Whether ``schedule`` is due at ``as_of``.

    Rules:
        - Inactive and ON_DEMAND schedules never fire.
        - ONCE fires only if it has never run.
        - Recurring schedules fire once ``as_of >= next_run_at``; a schedule
          with no ``next_run_at`` yet is due immediately.
    """
    if not schedule.is_active:
        return False
    if schedule.frequency == ScheduleFrequency.ON_DEMAND:
        return False
    if schedule.frequency == ScheduleFrequency.ONCE:
        return schedule.last_run_at is None
    if schedule.next_run_at is None:
        return True
    return as_of >= schedule.next_run_at


def compute_next_run(
    frequency: ScheduleFrequency,
    last_run_at: datetime | None,
) -> datetime | None:
    """Next fire time after a run at ``last_run_at``.

    None for ONCE and ON_DEMAND, or when the schedule has never run.
    """
    if last_run_at is None:
        return None
    if frequency == ScheduleFrequency.MONTHLY:
        return _add_month(last_run_at)
    delta = _FIXED_INTERVALS.get(frequency)
    if delta is None:
        return None
    return last_run_at + delta


def _add_month(moment: datetime) -> datetime:
    year = moment.year + moment.month // 12
    month = moment.month % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)
