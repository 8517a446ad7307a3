"""
Configuration schema -- frozen dataclasses for one configuration set.

A configuration set is declarative data only: engine tunables plus the
reference data (jurisdictions, holiday calendars, deadline formulas,
penalty rules, blueprints with their compliance rules, and jurisdiction
overrides) that ``bridges.seed_reference_data`` writes to the database.
Cross references are by code, never by database id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from compliance_kernel.domain.types import (
    AdjustmentRule,
    BaseDateType,
    CompoundingFrequency,
    HolidayType,
    OverrideType,
    PenaltyType,
    PeriodType,
    SlabMode,
)


@dataclass(frozen=True)
class ConfigScope:
    """Scope of applicability for a configuration set."""

    jurisdiction: str  # Root jurisdiction code, or "*"
    regulatory_regime: str  # GST, TDS, ROC, ...
    currency: str
    effective_from: date
    effective_to: date | None = None

    def covers(self, jurisdiction: str, as_of: date) -> bool:
        if self.jurisdiction not in (jurisdiction, "*"):
            return False
        if as_of < self.effective_from:
            return False
        return self.effective_to is None or as_of <= self.effective_to


@dataclass(frozen=True)
class EngineParams:
    due_soon_threshold_hours: int = 24
    notification_offsets: tuple[int, ...] = (7, 3, 1, 0)
    escalation_days: int = 7
    admin_escalation_days: int = 15
    max_adjustment_iterations: int = 30
    fiscal_year_start_month: int = 4
    generation_horizon_days: int = 90
    default_timezone: str = "Asia/Kolkata"
    ignore_optional_holidays: bool = True
    max_workers: int = 4
    max_pass_retries: int = 2


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JurisdictionDef:
    code: str
    name: str
    parent_code: str | None = None
    timezone: str = "Asia/Kolkata"
    weekend_days: tuple[int, ...] = (5, 6)  # Monday = 0
    gst_state_code: str | None = None


@dataclass(frozen=True)
class HolidayDef:
    holiday_date: date
    name: str
    holiday_type: HolidayType = HolidayType.NATIONAL
    is_optional: bool = False


@dataclass(frozen=True)
class HolidayCalendarDef:
    jurisdiction_code: str
    year: int
    holidays: tuple[HolidayDef, ...] = ()


@dataclass(frozen=True)
class DeadlineFormulaDef:
    formula_code: str
    base_date_type: BaseDateType
    version: int = 1
    offset_days: int = 0
    offset_months: int = 0
    offset_years: int = 0
    adjustment_rule: AdjustmentRule = AdjustmentRule.NONE
    exclude_weekends: bool = True
    exclude_holidays: bool = True
    effective_from: date | None = None
    effective_until: date | None = None


@dataclass(frozen=True)
class PenaltySlabDef:
    from_day: int
    amount: Decimal
    to_day: int | None = None
    mode: SlabMode = SlabMode.PER_DAY


@dataclass(frozen=True)
class PenaltyRuleDef:
    rule_code: str
    penalty_type: PenaltyType
    version: int = 1
    flat_amount: Decimal | None = None
    daily_amount: Decimal | None = None
    interest_rate_annual: Decimal | None = None
    compounding_frequency: CompoundingFrequency | None = None
    slabs: tuple[PenaltySlabDef, ...] = ()
    max_penalty: Decimal | None = None
    max_penalty_days: int | None = None
    min_penalty: Decimal | None = None
    max_interest: Decimal | None = None
    currency: str = "INR"
    legal_section: str | None = None
    effective_from: date | None = None
    effective_until: date | None = None


@dataclass(frozen=True)
class ComplianceRuleDef:
    rule_code: str
    name: str
    formula_code: str
    period_type: PeriodType = PeriodType.MONTHLY
    version: int = 1
    form_code: str | None = None
    penalty_rule_code: str | None = None
    required_documents: tuple[str, ...] = ()
    effective_from: date | None = None
    effective_until: date | None = None


@dataclass(frozen=True)
class BlueprintDef:
    code: str
    name: str
    applicable_entity_types: tuple[str, ...] = ()
    rules: tuple[ComplianceRuleDef, ...] = ()


@dataclass(frozen=True)
class OverrideDef:
    jurisdiction_code: str
    rule_type: OverrideType
    effective_from: date
    blueprint_code: str | None = None
    applies_when: dict[str, Any] = field(default_factory=dict)
    priority: int = 0
    effective_until: date | None = None
    deadline_offset_days: int | None = None
    rate_override: Decimal | None = None
    form_override: str | None = None
    additional_documents: tuple[str, ...] = ()
    reason: str | None = None


# ---------------------------------------------------------------------------
# Configuration set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ComplianceConfigurationSet:
    """One assembled configuration set.  ``checksum`` covers every fragment."""

    config_id: str
    version: int
    name: str
    scope: ConfigScope
    engine_params: EngineParams = field(default_factory=EngineParams)
    jurisdictions: tuple[JurisdictionDef, ...] = ()
    holiday_calendars: tuple[HolidayCalendarDef, ...] = ()
    formulas: tuple[DeadlineFormulaDef, ...] = ()
    penalty_rules: tuple[PenaltyRuleDef, ...] = ()
    blueprints: tuple[BlueprintDef, ...] = ()
    overrides: tuple[OverrideDef, ...] = ()
    checksum: str = ""

    def blueprint(self, code: str) -> BlueprintDef | None:
        for bp in self.blueprints:
            if bp.code == code:
                return bp
        return None
