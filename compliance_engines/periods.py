"""
compliance_engines.periods -- Fiscal-year aware compliance periods.

Responsibility:
    Enumerates the monthly / quarterly / half-yearly / annual periods an
    obligation recurs over, labels them with stable period codes, and
    provides the month arithmetic (with month-end clamping) used by the
    deadline resolver.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Period codes are deterministic: ``MAR-2024``, ``Q1-2024-25``,
      ``H1-2024-25``, ``FY2024-25``; one-time periods use ``ONCE`` or
      ``TXN-<iso date>``.
    - Fiscal quarters and halves are counted from ``fiscal_year_start_month``
      (April by default).
    - ``add_months`` clamps to month end (Jan 31 + 1 month = Feb 28/29).

Failure modes:
    - ValueError for ONE_TIME in ``periods_between`` (one-time periods are
      anchored, not enumerated).
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta

from compliance_kernel.domain.types import CompliancePeriod, PeriodType

_MONTH_ABBR = ("JAN", "FEB", "MAR", "APR", "MAY", "JUN",
               "JUL", "AUG", "SEP", "OCT", "NOV", "DEC")

_MONTHS_PER_PERIOD = {
    PeriodType.MONTHLY: 1,
    PeriodType.QUARTERLY: 3,
    PeriodType.HALF_YEARLY: 6,
    PeriodType.ANNUAL: 12,
}


def add_months(day: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length."""
    total = day.year * 12 + (day.month - 1) + months
    year, month_index = divmod(total, 12)
    month = month_index + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def month_end(day: date) -> date:
    return date(day.year, day.month, calendar.monthrange(day.year, day.month)[1])


def fiscal_year_start(day: date, start_month: int = 4) -> date:
    year = day.year if day.month >= start_month else day.year - 1
    return date(year, start_month, 1)


def fiscal_year_end(day: date, start_month: int = 4) -> date:
    return add_months(fiscal_year_start(day, start_month), 12) - timedelta(days=1)


def fiscal_year_label(day: date, start_month: int = 4) -> str:
    """``2024-25`` for an April-March year; ``2024`` for a calendar year."""
    start = fiscal_year_start(day, start_month)
    if start_month == 1:
        return str(start.year)
    return f"{start.year}-{(start.year + 1) % 100:02d}"


def fiscal_quarter_end(day: date, start_month: int = 4) -> date:
    """Last day of the fiscal quarter containing ``day``."""
    return period_containing(PeriodType.QUARTERLY, day, start_month).period_end


def period_containing(
    period_type: PeriodType, day: date, start_month: int = 4,
) -> CompliancePeriod:
    """The recurring period of ``period_type`` that contains ``day``."""
    if period_type == PeriodType.ONE_TIME:
        return one_time_period(day)

    span = _MONTHS_PER_PERIOD[period_type]
    if period_type == PeriodType.MONTHLY:
        start = date(day.year, day.month, 1)
        index = 0
    else:
        fy_start = fiscal_year_start(day, start_month)
        months_in = (day.year - fy_start.year) * 12 + day.month - fy_start.month
        index = months_in // span
        start = add_months(fy_start, index * span)
    end = add_months(start, span) - timedelta(days=1)

    label = fiscal_year_label(start, start_month)
    if period_type == PeriodType.MONTHLY:
        code = f"{_MONTH_ABBR[start.month - 1]}-{start.year}"
    elif period_type == PeriodType.QUARTERLY:
        code = f"Q{index + 1}-{label}"
    elif period_type == PeriodType.HALF_YEARLY:
        code = f"H{index + 1}-{label}"
    else:
        code = f"FY{label}"

    return CompliancePeriod(
        period_type=period_type,
        period_code=code,
        period_start=start,
        period_end=end,
        fiscal_year=label,
    )


def periods_between(
    period_type: PeriodType, start: date, end: date, start_month: int = 4,
) -> list[CompliancePeriod]:
    """All periods whose end date falls within ``[start, end]``, in order."""
    if period_type == PeriodType.ONE_TIME:
        raise ValueError("ONE_TIME periods are anchored to a date, not enumerated")
    if end < start:
        return []

    periods: list[CompliancePeriod] = []
    current = period_containing(period_type, start, start_month)
    while current.period_end <= end:
        if current.period_end >= start:
            periods.append(current)
        current = period_containing(
            period_type, current.period_end + timedelta(days=1), start_month,
        )
    return periods


def one_time_period(
    anchor: date, code: str = "ONCE", start_month: int = 4,
) -> CompliancePeriod:
    return CompliancePeriod(
        period_type=PeriodType.ONE_TIME,
        period_code=code,
        period_start=anchor,
        period_end=anchor,
        fiscal_year=fiscal_year_label(anchor, start_month),
    )


def transaction_period(transaction_date: date, start_month: int = 4) -> CompliancePeriod:
    return one_time_period(
        transaction_date, code=f"TXN-{transaction_date.isoformat()}", start_month=start_month,
    )


def previous_period(period: CompliancePeriod, start_month: int = 4) -> CompliancePeriod | None:
    """The period immediately before ``period`` (None for one-time periods)."""
    if period.period_type == PeriodType.ONE_TIME:
        return None
    return period_containing(
        period.period_type, period.period_start - timedelta(days=1), start_month,
    )
