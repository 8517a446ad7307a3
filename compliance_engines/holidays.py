"""
compliance_engines.holidays -- Working-day resolution per jurisdiction.

Responsibility:
    Answers "is date D a working day in jurisdiction J" and "what is the
    next / previous working day".  Weekend sets come from the jurisdiction
    itself; holidays are the union of the jurisdiction's calendar and
    every ancestor's calendar (national holidays apply to every state).

Architecture position:
    Engines -- pure calculation layer.  Reads reference data through the
    ``ReferenceSource`` protocol; never opens a session.

Invariants enforced:
    - ``adjust`` never returns a date earlier than its input for NEXT, nor
      later for PREVIOUS, and always returns a working day.
    - ``adjust`` terminates: at most ``max_iterations`` steps.
    - Optional holidays do not block working-day status by default.

Failure modes:
    - ConfigurationError when no working day is found within
      ``max_iterations`` steps (signals bad calendar data).
    - A missing calendar for a (jurisdiction, year) is NOT fatal: the
      resolver falls back to weekends only, logs
      ``holiday_calendar_missing`` and records the gap in
      ``degraded_calendars``.

Audit relevance:
    Degraded lookups surface on the calendar entry as ``calendar_warning``
    so an adjusted due date computed without holiday data is visible.
"""

from __future__ import annotations

from datetime import date, timedelta
from uuid import UUID

from compliance_kernel.domain.reference import ReferenceSource, jurisdiction_chain
from compliance_kernel.domain.types import AdjustDirection, Jurisdiction
from compliance_kernel.exceptions import ConfigurationError
from compliance_kernel.logging_config import get_logger

logger = get_logger("engines.holidays")

DEFAULT_MAX_ITERATIONS = 30


class HolidayCalendarResolver:
    """
    Working-day oracle for one pass.

    Contract:
        Instances cache jurisdiction chains and holiday sets; build one per
        pass (or per worker) so reference data changes are picked up on
        the next pass.

    Non-goals:
        Does not invent holidays; only reads what the source provides.
    """

    def __init__(
        self,
        source: ReferenceSource,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        ignore_optional: bool = True,
    ):
        self._source = source
        self._max_iterations = max_iterations
        self._ignore_optional = ignore_optional
        self._chains: dict[UUID, tuple[Jurisdiction, ...]] = {}
        self._holidays: dict[tuple[UUID, int], frozenset[date]] = {}
        self._degraded: set[tuple[UUID, int]] = set()

    @property
    def degraded_calendars(self) -> frozenset[tuple[UUID, int]]:
        """(jurisdiction_id, year) pairs that fell back to weekends only."""
        return frozenset(self._degraded)

    def is_degraded(self, jurisdiction_id: UUID, year: int) -> bool:
        return (jurisdiction_id, year) in self._degraded

    def jurisdiction(self, jurisdiction_id: UUID) -> Jurisdiction:
        return self._chain(jurisdiction_id)[-1]

    def is_working_day(
        self,
        jurisdiction_id: UUID,
        day: date,
        *,
        exclude_weekends: bool = True,
        exclude_holidays: bool = True,
    ) -> bool:
        """True iff ``day`` is neither an excluded weekend day nor a holiday."""
        if exclude_weekends and day.weekday() in self.jurisdiction(jurisdiction_id).weekend_days:
            return False
        if exclude_holidays and day in self.holidays_for(jurisdiction_id, day.year):
            return False
        return True

    def adjust(
        self,
        day: date,
        jurisdiction_id: UUID,
        direction: AdjustDirection,
        *,
        exclude_weekends: bool = True,
        exclude_holidays: bool = True,
    ) -> date:
        """Walk one day at a time in ``direction`` until a working day.

        Raises:
            ConfigurationError: if no working day is found within
                ``max_iterations`` steps.
        """
        step = timedelta(days=1 if direction == AdjustDirection.NEXT else -1)
        candidate = day
        for _ in range(self._max_iterations + 1):
            if self.is_working_day(
                jurisdiction_id,
                candidate,
                exclude_weekends=exclude_weekends,
                exclude_holidays=exclude_holidays,
            ):
                return candidate
            candidate += step

        logger.error(
            "working_day_adjustment_exhausted",
            extra={
                "jurisdiction_id": str(jurisdiction_id),
                "start_date": day.isoformat(),
                "direction": direction.value,
                "max_iterations": self._max_iterations,
            },
        )
        raise ConfigurationError(
            f"No working day within {self._max_iterations} days of {day.isoformat()} "
            f"({direction.value}) for jurisdiction {jurisdiction_id}",
            subject=str(jurisdiction_id),
        )

    def holidays_for(self, jurisdiction_id: UUID, year: int) -> frozenset[date]:
        """Blocking holiday dates for the jurisdiction and its ancestors."""
        key = (jurisdiction_id, year)
        cached = self._holidays.get(key)
        if cached is not None:
            return cached

        dates: set[date] = set()
        found_any = False
        for node in self._chain(jurisdiction_id):
            calendar = self._source.get_holiday_calendar(node.jurisdiction_id, year)
            if calendar is None:
                continue
            found_any = True
            for holiday in calendar.holidays:
                if holiday.is_optional and self._ignore_optional:
                    continue
                dates.add(holiday.holiday_date)

        if not found_any:
            self._degraded.add(key)
            logger.warning(
                "holiday_calendar_missing",
                extra={
                    "jurisdiction_id": str(jurisdiction_id),
                    "year": year,
                    "fallback": "weekends_only",
                },
            )

        result = frozenset(dates)
        self._holidays[key] = result
        return result

    def _chain(self, jurisdiction_id: UUID) -> tuple[Jurisdiction, ...]:
        chain = self._chains.get(jurisdiction_id)
        if chain is None:
            chain = jurisdiction_chain(self._source, jurisdiction_id)
            self._chains[jurisdiction_id] = chain
        return chain
