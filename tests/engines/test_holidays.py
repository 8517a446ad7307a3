"""
Tests for the working-day resolver.

Covers:
- Weekend and holiday detection
- Ancestor calendars (national holidays apply to states)
- NEXT / PREVIOUS adjustment
- Optional holidays
- Weekends-only fallback for missing calendars
- Iteration bound
"""

from datetime import date, timedelta
from uuid import uuid4

import pytest
from hypothesis import given, settings, strategies as st

from compliance_engines.holidays import HolidayCalendarResolver
from compliance_kernel.domain.reference import InMemoryReferenceSource
from compliance_kernel.domain.types import (
    AdjustDirection,
    Holiday,
    HolidayCalendar,
    Jurisdiction,
)
from compliance_kernel.exceptions import ConfigurationError

INDIA = Jurisdiction(jurisdiction_id=uuid4(), code="IN", name="India", level=0, path="IN")
MAHARASHTRA = Jurisdiction(
    jurisdiction_id=uuid4(), code="IN-MH", name="Maharashtra", level=1,
    path="IN/IN-MH", parent_id=INDIA.jurisdiction_id, gst_state_code="27",
)
KARNATAKA = Jurisdiction(
    jurisdiction_id=uuid4(), code="IN-KA", name="Karnataka", level=1,
    path="IN/IN-KA", parent_id=INDIA.jurisdiction_id, gst_state_code="29",
)
UAE = Jurisdiction(
    jurisdiction_id=uuid4(), code="AE", name="UAE", level=0, path="AE",
    timezone="Asia/Dubai", weekend_days=frozenset({5, 6}),
)

INDIA_2025 = HolidayCalendar(
    jurisdiction_id=INDIA.jurisdiction_id,
    year=2025,
    holidays=(
        Holiday(date(2025, 1, 26), "Republic Day"),
        Holiday(date(2025, 8, 15), "Independence Day"),
        Holiday(date(2025, 11, 5), "Guru Nanak Jayanti", is_optional=True),
    ),
)
MAHARASHTRA_2025 = HolidayCalendar(
    jurisdiction_id=MAHARASHTRA.jurisdiction_id,
    year=2025,
    holidays=(Holiday(date(2025, 5, 1), "Maharashtra Day"),),
)


def _source(*calendars: HolidayCalendar) -> InMemoryReferenceSource:
    return InMemoryReferenceSource(
        jurisdictions=[INDIA, MAHARASHTRA, KARNATAKA, UAE],
        calendars=calendars or (INDIA_2025, MAHARASHTRA_2025),
    )


class TestWorkingDay:
    """Tests for is_working_day."""

    def setup_method(self):
        self.resolver = HolidayCalendarResolver(_source())

    def test_weekday_is_working(self):
        assert self.resolver.is_working_day(INDIA.jurisdiction_id, date(2025, 8, 14))

    def test_weekend_is_not_working(self):
        assert not self.resolver.is_working_day(INDIA.jurisdiction_id, date(2025, 8, 16))

    def test_national_holiday(self):
        assert not self.resolver.is_working_day(INDIA.jurisdiction_id, date(2025, 8, 15))

    def test_state_inherits_national_holidays(self):
        """A state's holiday set is the union with its ancestors."""
        assert not self.resolver.is_working_day(MAHARASHTRA.jurisdiction_id, date(2025, 8, 15))

    def test_regional_holiday_only_in_its_state(self):
        assert not self.resolver.is_working_day(MAHARASHTRA.jurisdiction_id, date(2025, 5, 1))
        assert self.resolver.is_working_day(INDIA.jurisdiction_id, date(2025, 5, 1))
        assert self.resolver.is_working_day(KARNATAKA.jurisdiction_id, date(2025, 5, 1))

    def test_flags_disable_checks(self):
        saturday = date(2025, 8, 16)
        assert self.resolver.is_working_day(
            INDIA.jurisdiction_id, saturday, exclude_weekends=False,
        )
        assert self.resolver.is_working_day(
            INDIA.jurisdiction_id, date(2025, 8, 15), exclude_holidays=False,
        )

    def test_optional_holiday_ignored_by_default(self):
        assert self.resolver.is_working_day(INDIA.jurisdiction_id, date(2025, 11, 5))

    def test_optional_holiday_blocks_when_configured(self):
        resolver = HolidayCalendarResolver(_source(), ignore_optional=False)

        assert not resolver.is_working_day(INDIA.jurisdiction_id, date(2025, 11, 5))

    def test_jurisdiction_weekend_set(self):
        """Weekend days come from the jurisdiction, not a global constant."""
        friday = date(2025, 8, 22)
        source = InMemoryReferenceSource(
            jurisdictions=[Jurisdiction(
                jurisdiction_id=UAE.jurisdiction_id, code="AE", name="UAE", level=0,
                path="AE", weekend_days=frozenset({4, 5}),
            )],
        )
        resolver = HolidayCalendarResolver(source)

        assert not resolver.is_working_day(UAE.jurisdiction_id, friday)
        assert resolver.is_working_day(UAE.jurisdiction_id, friday + timedelta(days=2))


class TestAdjust:
    """Tests for next / previous working-day adjustment."""

    def setup_method(self):
        self.resolver = HolidayCalendarResolver(_source())

    def test_next_skips_holiday_and_weekend(self):
        """Friday holiday rolls to Monday."""
        adjusted = self.resolver.adjust(
            date(2025, 8, 15), INDIA.jurisdiction_id, AdjustDirection.NEXT,
        )

        assert adjusted == date(2025, 8, 18)

    def test_previous_moves_back(self):
        adjusted = self.resolver.adjust(
            date(2025, 8, 15), INDIA.jurisdiction_id, AdjustDirection.PREVIOUS,
        )

        assert adjusted == date(2025, 8, 14)

    def test_working_day_is_unchanged(self):
        day = date(2025, 8, 14)

        assert self.resolver.adjust(day, INDIA.jurisdiction_id, AdjustDirection.NEXT) == day

    def test_exhausted_iterations_raise(self):
        """Bad calendar data that never yields a working day is a ConfigurationError."""
        everyday = HolidayCalendar(
            jurisdiction_id=INDIA.jurisdiction_id,
            year=2025,
            holidays=tuple(
                Holiday(date(2025, 3, 1) + timedelta(days=i), "Blocked") for i in range(30)
            ),
        )
        resolver = HolidayCalendarResolver(_source(everyday), max_iterations=10)

        with pytest.raises(ConfigurationError):
            resolver.adjust(date(2025, 3, 1), INDIA.jurisdiction_id, AdjustDirection.NEXT)

    @settings(max_examples=60)
    @given(st.dates(min_value=date(2025, 1, 1), max_value=date(2025, 12, 20)))
    def test_next_is_never_earlier_and_always_working(self, day):
        resolver = HolidayCalendarResolver(_source())

        adjusted = resolver.adjust(day, MAHARASHTRA.jurisdiction_id, AdjustDirection.NEXT)

        assert adjusted >= day
        assert resolver.is_working_day(MAHARASHTRA.jurisdiction_id, adjusted)

    @settings(max_examples=60)
    @given(st.dates(min_value=date(2025, 1, 10), max_value=date(2025, 12, 31)))
    def test_previous_is_never_later_and_always_working(self, day):
        resolver = HolidayCalendarResolver(_source())

        adjusted = resolver.adjust(day, MAHARASHTRA.jurisdiction_id, AdjustDirection.PREVIOUS)

        assert adjusted <= day
        assert resolver.is_working_day(MAHARASHTRA.jurisdiction_id, adjusted)


class TestMissingCalendar:
    """Tests for the weekends-only fallback."""

    def test_missing_year_falls_back_to_weekends(self, captured_logs):
        resolver = HolidayCalendarResolver(_source())

        # 2026-01-26 is a Monday; with no 2026 calendar it counts as working
        assert resolver.is_working_day(INDIA.jurisdiction_id, date(2026, 1, 26))
        assert resolver.is_degraded(INDIA.jurisdiction_id, 2026)
        assert (INDIA.jurisdiction_id, 2026) in resolver.degraded_calendars

        logs = captured_logs()
        missing = [r for r in logs if r["message"] == "holiday_calendar_missing"]
        assert len(missing) == 1
        assert missing[0]["year"] == 2026
        assert missing[0]["fallback"] == "weekends_only"

    def test_ancestor_calendar_is_enough(self):
        """A state without its own calendar is not degraded if the country has one."""
        resolver = HolidayCalendarResolver(_source())

        resolver.holidays_for(KARNATAKA.jurisdiction_id, 2025)

        assert not resolver.is_degraded(KARNATAKA.jurisdiction_id, 2025)

    def test_unknown_jurisdiction_is_configuration_error(self):
        resolver = HolidayCalendarResolver(_source())

        with pytest.raises(ConfigurationError):
            resolver.is_working_day(uuid4(), date(2025, 1, 2))
