"""
compliance_engines.deadlines -- Deadline formula resolution.

Responsibility:
    Turns a (formula, base date, jurisdiction) into a nominal and an
    adjusted due date, and picks the base date a formula counts from.

Architecture position:
    Engines -- pure calculation layer.  Depends on HolidayCalendarResolver
    for working-day adjustment.

Invariants enforced:
    - ``adjustment_rule == NONE`` implies adjusted_due == nominal_due,
      regardless of holiday data.
    - Adjustment happens only if ``exclude_weekends or exclude_holidays``;
      the flags gate adjustment, the rule picks the direction.
    - Offsets are applied as total months (years * 12 + months) with
      month-end clamping, then days.

Failure modes:
    - MissingPredecessorError for PREVIOUS_FILING_DATE when the prior
      period's filing date is not known.
    - ConfigurationError when a transaction or registration date is needed
      but absent, or when holiday adjustment cannot terminate.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from uuid import UUID

from compliance_kernel.domain.types import (
    AdjustDirection,
    AdjustmentRule,
    BaseDateType,
    CompliancePeriod,
    DeadlineFormula,
)
from compliance_kernel.exceptions import ConfigurationError, MissingPredecessorError
from compliance_engines.holidays import HolidayCalendarResolver
from compliance_engines.periods import add_months, fiscal_quarter_end, fiscal_year_end
from compliance_engines.tracer import traced_engine


@dataclass(frozen=True)
class ResolvedDeadline:
    nominal_due: date
    adjusted_due: date
    degraded: bool = False  # Holiday data was missing; weekends-only fallback


@dataclass(frozen=True)
class BaseDateContext:
    """Inputs a formula may need beyond the period itself."""

    rule_code: str = ""
    registration_date: date | None = None
    transaction_date: date | None = None
    previous_filing_date: date | None = None
    previous_period_code: str | None = None
    fiscal_year_start_month: int = 4


def nominal_due_date(formula: DeadlineFormula, base_date: date) -> date:
    """``base + years + months`` (month-end clamped), then ``+ days``."""
    months = formula.offset_years * 12 + formula.offset_months
    shifted = add_months(base_date, months) if months else base_date
    return shifted + timedelta(days=formula.offset_days)


def base_date_for(
    formula: DeadlineFormula,
    period: CompliancePeriod,
    context: BaseDateContext,
) -> date:
    """Select the date ``formula`` counts from for ``period``."""
    kind = formula.base_date_type
    if kind == BaseDateType.PERIOD_END:
        return period.period_end
    if kind == BaseDateType.QUARTER_END:
        return fiscal_quarter_end(period.period_end, context.fiscal_year_start_month)
    if kind == BaseDateType.FISCAL_YEAR_END:
        return fiscal_year_end(period.period_end, context.fiscal_year_start_month)
    if kind == BaseDateType.TRANSACTION_DATE:
        if context.transaction_date is None:
            raise ConfigurationError(
                f"Formula {formula.formula_code} needs a transaction date",
                subject=formula.formula_code,
            )
        return context.transaction_date
    if kind == BaseDateType.REGISTRATION_DATE:
        if context.registration_date is None:
            raise ConfigurationError(
                f"Formula {formula.formula_code} needs the entity registration date",
                subject=formula.formula_code,
            )
        return context.registration_date
    if kind == BaseDateType.PREVIOUS_FILING_DATE:
        if context.previous_filing_date is None:
            raise MissingPredecessorError(
                context.rule_code or formula.formula_code,
                period.period_code,
                context.previous_period_code,
            )
        return context.previous_filing_date
    raise ConfigurationError(f"Unknown base date type {kind!r}", subject=formula.formula_code)


class DeadlineFormulaResolver:
    """
    Computes nominal and adjusted due dates.

    Contract:
        ``resolve`` is a pure function of (formula, base_date, jurisdiction
        reference data).

    Guarantees:
        - ``adjusted_due`` is a working day whenever adjustment ran.
        - ``degraded`` is True if holiday data for the adjusted year was
          missing and the weekends-only fallback was used.
    """

    def __init__(self, holidays: HolidayCalendarResolver):
        self._holidays = holidays

    @traced_engine(
        "deadline_formula", "1.0",
        fingerprint_fields=("formula", "base_date", "jurisdiction_id"),
    )
    def resolve(
        self,
        *,
        formula: DeadlineFormula,
        base_date: date,
        jurisdiction_id: UUID,
    ) -> ResolvedDeadline:
        nominal = nominal_due_date(formula, base_date)

        if formula.adjustment_rule == AdjustmentRule.NONE:
            return ResolvedDeadline(nominal_due=nominal, adjusted_due=nominal)

        if not (formula.exclude_weekends or formula.exclude_holidays):
            return ResolvedDeadline(nominal_due=nominal, adjusted_due=nominal)

        direction = (
            AdjustDirection.NEXT
            if formula.adjustment_rule == AdjustmentRule.NEXT_WORKING_DAY
            else AdjustDirection.PREVIOUS
        )
        adjusted = self._holidays.adjust(
            nominal,
            jurisdiction_id,
            direction,
            exclude_weekends=formula.exclude_weekends,
            exclude_holidays=formula.exclude_holidays,
        )
        degraded = formula.exclude_holidays and any(
            self._holidays.is_degraded(jurisdiction_id, year)
            for year in {nominal.year, adjusted.year}
        )
        return ResolvedDeadline(nominal_due=nominal, adjusted_due=adjusted, degraded=degraded)
