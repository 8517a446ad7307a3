"""
compliance_engines.penalty -- Penalty and interest liability calculator.

Responsibility:
    Computes the itemized late-filing liability (penalty, interest, total)
    for a penalty rule and a number of days overdue.  Supports flat,
    daily, slab (cumulative bands), simple interest, compound interest and
    mixed rules with independent caps, a minimum floor, and a hard cap.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Decimal only; floats never enter the calculation.
    - Intermediate values keep full precision; penalty and interest are
      rounded once, at the end, through ``round_money`` (ROUND_HALF_UP to
      the currency's minor unit).
    - ``days_overdue <= 0`` yields a zero liability.
    - PER_DAY slab liability is monotonically non-decreasing in days.
    - Penalty components use ``min(days, max_penalty_days)``; interest
      accrues on the actual days overdue.
    - MIXED caps the penalty component at ``max_penalty`` and interest at
      ``max_interest``; then every type hard-caps the total at
      ``max_penalty``, taking the excess from interest first.
    - A FIXED slab may only follow FIXED slabs of no greater amount.

Failure modes:
    - PenaltyConfigurationError for unsorted / overlapping /
      non-contiguous slabs, an open-ended slab that is not last, missing
      required amounts, or negative values.

Audit relevance:
    The returned LiabilityBreakdown lists every component (FLAT, DAILY,
    SLAB, INTEREST, CAP_APPLIED, MIN_APPLIED) so a statutory penalty can
    be explained line by line.
"""

from __future__ import annotations

from decimal import Decimal, localcontext

from compliance_kernel.db.types import decimal_places_for, round_money
from compliance_kernel.domain.types import (
    CompoundingFrequency,
    LiabilityBreakdown,
    LiabilityLine,
    LiabilityLineKind,
    PenaltyRule,
    PenaltyType,
    SlabMode,
)
from compliance_kernel.exceptions import PenaltyConfigurationError
from compliance_engines.tracer import traced_engine

ZERO = Decimal("0")
DAYS_PER_YEAR = Decimal("365")
# Compounding periods use fixed day counts, not calendar months.
DAYS_PER_MONTH = 30
DAYS_PER_QUARTER = 90


def _fmt(value: Decimal) -> str:
    """Scale-independent rendering, so descriptions survive a database round trip."""
    return format(value.normalize(), "f")


def validate_penalty_rule(rule: PenaltyRule) -> None:
    """Raise PenaltyConfigurationError if ``rule`` cannot be evaluated."""
    code = rule.rule_code

    for name in ("flat_amount", "daily_amount", "interest_rate_annual",
                 "max_penalty", "min_penalty", "max_interest"):
        value = getattr(rule, name)
        if value is not None and value < ZERO:
            raise PenaltyConfigurationError(code, f"{name} must not be negative")
    if rule.max_penalty_days is not None and rule.max_penalty_days < 0:
        raise PenaltyConfigurationError(code, "max_penalty_days must not be negative")
    if (rule.min_penalty is not None and rule.max_penalty is not None
            and rule.min_penalty > rule.max_penalty):
        raise PenaltyConfigurationError(code, "min_penalty exceeds max_penalty")

    kind = rule.penalty_type
    if kind == PenaltyType.FLAT and rule.flat_amount is None:
        raise PenaltyConfigurationError(code, "FLAT rule needs flat_amount")
    if kind == PenaltyType.DAILY and rule.daily_amount is None:
        raise PenaltyConfigurationError(code, "DAILY rule needs daily_amount")
    if kind == PenaltyType.SLAB and not rule.slabs:
        raise PenaltyConfigurationError(code, "SLAB rule needs at least one slab")
    if kind in (PenaltyType.INTEREST, PenaltyType.COMPOUND) and rule.interest_rate_annual is None:
        raise PenaltyConfigurationError(code, f"{kind.value.upper()} rule needs interest_rate_annual")
    if kind == PenaltyType.MIXED and not (
        rule.flat_amount is not None or rule.daily_amount is not None
        or rule.slabs or rule.interest_rate_annual is not None
    ):
        raise PenaltyConfigurationError(code, "MIXED rule has no components")

    previous = None
    for index, slab in enumerate(rule.slabs):
        if slab.amount < ZERO:
            raise PenaltyConfigurationError(code, f"slab {index} amount is negative")
        if slab.from_day < 1:
            raise PenaltyConfigurationError(code, f"slab {index} starts before day 1")
        if slab.to_day is not None and slab.to_day < slab.from_day:
            raise PenaltyConfigurationError(code, f"slab {index} ends before it starts")
        if previous is not None:
            if previous.to_day is None:
                raise PenaltyConfigurationError(code, "only the last slab may be open-ended")
            if slab.from_day != previous.to_day + 1:
                raise PenaltyConfigurationError(
                    code,
                    f"slabs must be sorted, contiguous and non-overlapping "
                    f"(slab {index} starts at {slab.from_day}, previous ends at {previous.to_day})",
                )
            # A FIXED slab replaces everything accrued before it, so it may
            # only follow FIXED slabs of no greater amount.
            if slab.mode == SlabMode.FIXED:
                if previous.mode == SlabMode.PER_DAY:
                    raise PenaltyConfigurationError(
                        code, f"fixed slab {index} follows a per-day slab",
                    )
                if slab.amount < previous.amount:
                    raise PenaltyConfigurationError(
                        code, f"fixed slab {index} is smaller than the slab before it",
                    )
        previous = slab


def slab_penalty(rule: PenaltyRule, days: int) -> tuple[Decimal, list[LiabilityLine]]:
    """Slab liability for ``days`` (already capped by max_penalty_days)."""
    slabs = rule.slabs
    if days < slabs[0].from_day:
        return ZERO, []

    containing = next(
        (s for s in slabs if s.from_day <= days and (s.to_day is None or days <= s.to_day)),
        None,
    )
    if containing is None:
        # Past a closed last slab
        last = slabs[-1]
        if last.mode == SlabMode.FIXED:
            return last.amount, [LiabilityLine(
                LiabilityLineKind.SLAB,
                f"Fixed slab {last.from_day}-{last.to_day}",
                last.amount, days,
            )]
    elif containing.mode == SlabMode.FIXED:
        band = f"{containing.from_day}-{containing.to_day or '+'}"
        return containing.amount, [LiabilityLine(
            LiabilityLineKind.SLAB, f"Fixed slab {band}", containing.amount, days,
        )]

    total = ZERO
    lines: list[LiabilityLine] = []
    for slab in slabs:
        if slab.from_day > days:
            break
        band_end = days if slab.to_day is None else min(slab.to_day, days)
        days_in_band = band_end - slab.from_day + 1
        band = f"{slab.from_day}-{slab.to_day or '+'}"
        if slab.mode == SlabMode.PER_DAY:
            amount = slab.amount * days_in_band
            description = f"Slab {band}: {days_in_band} days x {_fmt(slab.amount)}/day"
        else:
            amount = slab.amount
            description = f"Fixed slab {band} passed"
        total += amount
        lines.append(LiabilityLine(LiabilityLineKind.SLAB, description, amount, days_in_band))
    return total, lines


def interest_amount(
    principal: Decimal | None,
    rate_percent: Decimal | None,
    days: int,
    frequency: CompoundingFrequency | None,
) -> Decimal:
    """Simple interest when ``frequency`` is None, otherwise compound."""
    if principal is None or principal <= ZERO or not rate_percent or days <= 0:
        return ZERO

    with localcontext() as ctx:
        ctx.prec = 34
        rate = rate_percent / Decimal(100)
        if frequency is None:
            return principal * rate * days / DAYS_PER_YEAR
        if frequency == CompoundingFrequency.DAILY:
            return principal * ((1 + rate / DAYS_PER_YEAR) ** days - 1)

        if frequency == CompoundingFrequency.MONTHLY:
            periods, remainder = divmod(days, DAYS_PER_MONTH)
            per_period = rate / 12
        else:
            periods, remainder = divmod(days, DAYS_PER_QUARTER)
            per_period = rate / 4
        compounded = principal * (1 + per_period) ** periods
        return compounded - principal + compounded * rate * remainder / DAYS_PER_YEAR


class PenaltyCalculator:
    """
    Penalty / interest calculator.

    Contract:
        ``compute_liability`` is a pure function of (rule, days_overdue,
        base_tax_liability).  Callers pass the unpaid tax as the interest
        principal.

    Guarantees:
        - total == penalty + interest, each rounded to the currency's
          minor unit.
        - Same inputs always produce an equal LiabilityBreakdown.

    Non-goals:
        Does not decide whether an entry is overdue; the lifecycle does.
    """

    @traced_engine(
        "penalty", "1.0",
        fingerprint_fields=("penalty_rule", "days_overdue", "base_tax_liability"),
    )
    def compute_liability(
        self,
        *,
        penalty_rule: PenaltyRule,
        days_overdue: int,
        base_tax_liability: Decimal | None = None,
    ) -> LiabilityBreakdown:
        rule = penalty_rule
        validate_penalty_rule(rule)
        places = decimal_places_for(rule.currency)

        if days_overdue <= 0:
            return LiabilityBreakdown.zero(rule.currency)

        effective_days = days_overdue
        if rule.max_penalty_days is not None:
            effective_days = min(days_overdue, rule.max_penalty_days)

        lines: list[LiabilityLine] = []
        penalty = ZERO
        interest = ZERO
        kind = rule.penalty_type

        if kind in (PenaltyType.FLAT, PenaltyType.MIXED) and rule.flat_amount is not None:
            penalty += rule.flat_amount
            lines.append(LiabilityLine(LiabilityLineKind.FLAT, "Flat late fee", rule.flat_amount))

        if kind in (PenaltyType.DAILY, PenaltyType.MIXED) and rule.daily_amount is not None:
            daily_total = rule.daily_amount * effective_days
            penalty += daily_total
            lines.append(LiabilityLine(
                LiabilityLineKind.DAILY,
                f"{effective_days} days x {_fmt(rule.daily_amount)}/day",
                daily_total, effective_days,
            ))

        if kind in (PenaltyType.SLAB, PenaltyType.MIXED) and rule.slabs:
            slab_total, slab_lines = slab_penalty(rule, effective_days)
            penalty += slab_total
            lines.extend(slab_lines)

        if kind != PenaltyType.FLAT:
            penalty = self._cap(penalty, rule.max_penalty, "penalty", lines)

        if kind in (PenaltyType.INTEREST, PenaltyType.COMPOUND, PenaltyType.MIXED):
            frequency = rule.compounding_frequency
            if kind == PenaltyType.COMPOUND and frequency is None:
                frequency = CompoundingFrequency.MONTHLY
            interest = interest_amount(
                base_tax_liability, rule.interest_rate_annual, days_overdue, frequency,
            )
            if interest > ZERO:
                basis = "simple" if frequency is None else f"compounded {frequency.value}"
                lines.append(LiabilityLine(
                    LiabilityLineKind.INTEREST,
                    f"{_fmt(rule.interest_rate_annual)}% p.a. {basis} on {_fmt(base_tax_liability)} "
                    f"for {days_overdue} days",
                    interest, days_overdue,
                ))
            interest = self._cap(interest, rule.max_interest, "interest", lines)

        if rule.min_penalty is not None and penalty + interest < rule.min_penalty:
            shortfall = rule.min_penalty - (penalty + interest)
            penalty += shortfall
            lines.append(LiabilityLine(
                LiabilityLineKind.MIN_APPLIED,
                f"Raised to minimum {_fmt(rule.min_penalty)}", shortfall,
            ))

        if rule.max_penalty is not None:
            excess = penalty + interest - rule.max_penalty
            if excess > ZERO:
                from_interest = min(interest, excess)
                interest -= from_interest
                penalty -= excess - from_interest
                lines.append(LiabilityLine(
                    LiabilityLineKind.CAP_APPLIED,
                    f"Total capped at {_fmt(rule.max_penalty)}", -excess,
                ))

        penalty = round_money(penalty, places)
        interest = round_money(interest, places)
        return LiabilityBreakdown(
            penalty=penalty,
            interest=interest,
            total=penalty + interest,
            effective_days=effective_days,
            currency=rule.currency,
            lines=tuple(lines),
        )

    @staticmethod
    def _cap(
        amount: Decimal, cap: Decimal | None, component: str, lines: list[LiabilityLine],
    ) -> Decimal:
        if cap is None or amount <= cap:
            return amount
        lines.append(LiabilityLine(
            LiabilityLineKind.CAP_APPLIED,
            f"{component.capitalize()} capped at {_fmt(cap)}", cap - amount,
        ))
        return cap


_default_calculator = PenaltyCalculator()


def compute_liability(
    penalty_rule: PenaltyRule,
    days_overdue: int,
    base_tax_liability: Decimal | None = None,
) -> LiabilityBreakdown:
    """Module-level convenience wrapper around a shared PenaltyCalculator."""
    return _default_calculator.compute_liability(
        penalty_rule=penalty_rule,
        days_overdue=days_overdue,
        base_tax_liability=base_tax_liability,
    )
