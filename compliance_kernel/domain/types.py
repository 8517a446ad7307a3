"""
compliance_kernel.domain.types -- Frozen DTOs and enums shared across layers.

ZERO I/O.  Models convert to and from these types; engines consume and
produce them; selectors return them.

Invariants enforced:
    - All DTOs are frozen dataclasses (immutable).
    - Monetary fields are Decimal, never float.
    - Weekend days use Python weekday numbering (0=Monday ... 6=Sunday).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class BaseDateType(str, Enum):
    """Which date a deadline formula counts from."""

    PERIOD_END = "period_end"
    QUARTER_END = "quarter_end"
    FISCAL_YEAR_END = "fiscal_year_end"
    TRANSACTION_DATE = "transaction_date"
    REGISTRATION_DATE = "registration_date"
    PREVIOUS_FILING_DATE = "previous_filing_date"


class AdjustmentRule(str, Enum):
    """Direction to move a due date that lands on a non-working day."""

    NEXT_WORKING_DAY = "next_working_day"
    PREVIOUS_WORKING_DAY = "previous_working_day"
    NONE = "none"


class AdjustDirection(str, Enum):
    NEXT = "next"
    PREVIOUS = "previous"


class HolidayType(str, Enum):
    NATIONAL = "national"
    REGIONAL = "regional"
    BANK = "bank"


class PenaltyType(str, Enum):
    FLAT = "flat"
    DAILY = "daily"
    SLAB = "slab"
    INTEREST = "interest"
    COMPOUND = "compound"
    MIXED = "mixed"


class CompoundingFrequency(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class SlabMode(str, Enum):
    FIXED = "fixed"  # Slab amount is the whole liability
    PER_DAY = "per_day"  # Slab amount is charged per day in band


class OverrideType(str, Enum):
    """Kinds of jurisdiction-level rule overrides."""

    DEADLINE_OVERRIDE = "deadline_override"
    EXEMPTION = "exemption"
    ADDITIONAL_REQUIREMENT = "additional_requirement"
    RATE_OVERRIDE = "rate_override"
    FORM_OVERRIDE = "form_override"


class PeriodType(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half_yearly"
    ANNUAL = "annual"
    ONE_TIME = "one_time"


class ComplianceStatus(str, Enum):
    """Lifecycle status of a calendar entry."""

    UPCOMING = "upcoming"
    DUE_SOON = "due_soon"
    DUE_TODAY = "due_today"
    OVERDUE = "overdue"
    COMPLETED = "completed"
    EXEMPTED = "exempted"
    NOT_APPLICABLE = "not_applicable"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[ComplianceStatus] = frozenset({
    ComplianceStatus.COMPLETED,
    ComplianceStatus.EXEMPTED,
    ComplianceStatus.NOT_APPLICABLE,
})


class LiabilityLineKind(str, Enum):
    FLAT = "flat"
    DAILY = "daily"
    SLAB = "slab"
    INTEREST = "interest"
    CAP_APPLIED = "cap_applied"
    MIN_APPLIED = "min_applied"


# =============================================================================
# Reference data
# =============================================================================


@dataclass(frozen=True)
class Jurisdiction:
    """Node in the country -> state -> city hierarchy."""

    jurisdiction_id: UUID
    code: str
    name: str
    level: int
    path: str  # Ancestor codes joined with "/", e.g. "IN/IN-MH/IN-MH-MUM"
    parent_id: UUID | None = None
    timezone: str = "Asia/Kolkata"
    weekend_days: frozenset[int] = frozenset({5, 6})
    gst_state_code: str | None = None

    @property
    def path_codes(self) -> tuple[str, ...]:
        return tuple(self.path.split("/"))


@dataclass(frozen=True)
class Holiday:
    holiday_date: date
    name: str
    holiday_type: HolidayType = HolidayType.NATIONAL
    is_optional: bool = False


@dataclass(frozen=True)
class HolidayCalendar:
    """Holidays for one (jurisdiction, year)."""

    jurisdiction_id: UUID
    year: int
    holidays: tuple[Holiday, ...] = ()


@dataclass(frozen=True)
class DeadlineFormula:
    """Versioned, append-only rule for deriving a due date."""

    formula_id: UUID
    formula_code: str
    version: int
    base_date_type: BaseDateType
    offset_days: int = 0
    offset_months: int = 0
    offset_years: int = 0
    adjustment_rule: AdjustmentRule = AdjustmentRule.NONE
    exclude_weekends: bool = True
    exclude_holidays: bool = True
    effective_from: date | None = None
    effective_until: date | None = None


@dataclass(frozen=True)
class PenaltySlab:
    from_day: int
    to_day: int | None  # None = open-ended
    amount: Decimal
    mode: SlabMode = SlabMode.PER_DAY


@dataclass(frozen=True)
class PenaltyRule:
    """Versioned, append-only penalty / interest configuration."""

    penalty_rule_id: UUID
    rule_code: str
    version: int
    penalty_type: PenaltyType
    flat_amount: Decimal | None = None
    daily_amount: Decimal | None = None
    interest_rate_annual: Decimal | None = None  # Percent per annum
    compounding_frequency: CompoundingFrequency | None = None
    slabs: tuple[PenaltySlab, ...] = ()
    max_penalty: Decimal | None = None
    max_penalty_days: int | None = None
    min_penalty: Decimal | None = None
    max_interest: Decimal | None = None
    currency: str = "INR"
    legal_section: str | None = None
    effective_from: date | None = None
    effective_until: date | None = None


@dataclass(frozen=True)
class JurisdictionOverride:
    """One jurisdiction rule row (override of a base compliance rule)."""

    override_id: UUID
    jurisdiction_id: UUID
    rule_type: OverrideType
    effective_from: date
    priority: int = 0
    blueprint_id: UUID | None = None
    applies_when: dict[str, Any] = field(default_factory=dict)
    effective_until: date | None = None
    is_active: bool = True
    deadline_offset_days: int | None = None
    rate_override: Decimal | None = None
    form_override: str | None = None
    additional_documents: tuple[str, ...] = ()
    reason: str | None = None


@dataclass(frozen=True)
class BusinessEntity:
    """Read-only view of a client's business entity."""

    entity_id: UUID
    client_id: UUID
    name: str
    entity_type: str
    jurisdiction_id: UUID
    annual_turnover: Decimal | None = None
    registration_date: date | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    def attribute_view(self) -> dict[str, Any]:
        """Flattened attributes used by ``applies_when`` predicates."""
        view = dict(self.attributes)
        view.setdefault("entity_type", self.entity_type)
        if self.annual_turnover is not None:
            view.setdefault("annual_turnover", self.annual_turnover)
        return view


@dataclass(frozen=True)
class Blueprint:
    blueprint_id: UUID
    code: str
    name: str
    applicable_entity_types: tuple[str, ...] = ()  # Empty = every entity type

    def applies_to(self, entity_type: str) -> bool:
        return not self.applicable_entity_types or entity_type in self.applicable_entity_types


@dataclass(frozen=True)
class ServiceSubscription:
    """A client entity enrolled in a blueprint."""

    subscription_id: UUID
    client_id: UUID
    entity_id: UUID
    blueprint_id: UUID
    start_date: date
    end_date: date | None = None
    is_active: bool = True


# =============================================================================
# Rule resolution
# =============================================================================


@dataclass(frozen=True)
class BaseRule:
    """Compliance rule joined with the formula and penalty versions in force."""

    compliance_rule_id: UUID
    rule_code: str
    version: int
    formula: DeadlineFormula
    blueprint_id: UUID | None = None
    period_type: PeriodType = PeriodType.MONTHLY
    form_code: str | None = None
    penalty_rule: PenaltyRule | None = None
    required_documents: tuple[str, ...] = ()


@dataclass(frozen=True)
class EffectiveRule:
    """Fully resolved rule for one entity after jurisdiction overrides."""

    base_rule: BaseRule
    formula: DeadlineFormula
    penalty_rule: PenaltyRule | None
    form_code: str | None
    required_documents: tuple[str, ...] = ()
    exempt: bool = False
    exemption_reason: str | None = None
    applied_override_ids: tuple[UUID, ...] = ()
    fingerprint: str = ""


@dataclass(frozen=True)
class CompliancePeriod:
    period_type: PeriodType
    period_code: str
    period_start: date
    period_end: date
    fiscal_year: str  # e.g. "2024-25"


# =============================================================================
# Liability
# =============================================================================


@dataclass(frozen=True)
class LiabilityLine:
    kind: LiabilityLineKind
    description: str
    amount: Decimal
    days: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "description": self.description,
            "amount": format(self.amount.normalize(), "f"),
            "days": self.days,
        }


@dataclass(frozen=True)
class LiabilityBreakdown:
    """Itemized penalty + interest result.  Never just a scalar."""

    penalty: Decimal
    interest: Decimal
    total: Decimal
    effective_days: int
    currency: str = "INR"
    lines: tuple[LiabilityLine, ...] = ()

    @classmethod
    def zero(cls, currency: str = "INR") -> LiabilityBreakdown:
        nil = Decimal("0.00")
        return cls(penalty=nil, interest=nil, total=nil, effective_days=0, currency=currency)

    def to_payload(self) -> dict[str, Any]:
        return {
            "penalty": str(self.penalty),
            "interest": str(self.interest),
            "total": str(self.total),
            "effective_days": self.effective_days,
            "currency": self.currency,
            "lines": [line.to_payload() for line in self.lines],
        }


# =============================================================================
# Calendar entry
# =============================================================================


@dataclass(frozen=True)
class CalendarEntry:
    """Immutable snapshot of a materialized compliance obligation."""

    entry_id: UUID
    client_id: UUID
    entity_id: UUID
    blueprint_id: UUID
    compliance_rule_id: UUID
    rule_code: str
    period_type: PeriodType
    period_code: str
    period_start: date
    period_end: date
    fiscal_year: str
    status: ComplianceStatus
    status_reason: str | None = None
    jurisdiction_id: UUID | None = None
    formula_id: UUID | None = None
    penalty_rule_id: UUID | None = None
    interest_rate_override: Decimal | None = None
    original_due_date: date | None = None
    adjusted_due_date: date | None = None
    extended_due_date: date | None = None
    extension_reason: str | None = None
    filed_date: date | None = None
    filing_reference: str | None = None
    days_overdue: int = 0
    penalty_amount: Decimal = Decimal("0")
    interest_amount: Decimal = Decimal("0")
    total_liability: Decimal = Decimal("0")
    penalty_paid: Decimal = Decimal("0")
    tax_liability: Decimal | None = None
    tax_paid: Decimal | None = None
    form_code: str | None = None
    required_documents: tuple[str, ...] = ()
    penalty_breakdown: tuple[dict[str, Any], ...] = ()
    notifications_sent: tuple[str, ...] = ()
    liability_warning: str | None = None
    calendar_warning: str | None = None
    override_fingerprint: str | None = None
    entry_version: int = 1
    is_current: bool = True
    superseded_by_id: UUID | None = None
    row_version: int = 1
    last_evaluated_at: datetime | None = None

    @property
    def effective_due_date(self) -> date | None:
        """Extended due date when granted, otherwise the adjusted due date."""
        return self.extended_due_date or self.adjusted_due_date

    @property
    def unpaid_tax(self) -> Decimal | None:
        if self.tax_liability is None:
            return None
        return self.tax_liability - (self.tax_paid or Decimal("0"))
