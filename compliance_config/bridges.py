"""
Config -> Kernel bridges.

Functions that convert a ComplianceConfigurationSet into kernel inputs.
They live here (the producer) because the kernel must NEVER import
compliance_config.

Usage:
    from compliance_config import get_active_config
    from compliance_config.bridges import engine_settings_from_config, seed_reference_data

    config = get_active_config("IN", date(2025, 1, 1))
    settings = engine_settings_from_config(config)
    seeded = seed_reference_data(session, config)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID, uuid5

from sqlalchemy.orm import Session

from compliance_config.schema import (
    ComplianceConfigurationSet,
    ComplianceRuleDef,
    JurisdictionDef,
    OverrideDef,
    PenaltyRuleDef,
)
from compliance_kernel.db.base import SYSTEM_ACTOR_ID
from compliance_kernel.domain.settings import EngineSettings
from compliance_kernel.logging_config import get_logger
from compliance_kernel.models.jurisdiction import HolidayCalendarModel, JurisdictionModel
from compliance_kernel.models.rules import (
    BlueprintModel,
    ComplianceRuleModel,
    DeadlineFormulaModel,
    JurisdictionRuleModel,
    PenaltyRuleModel,
)

logger = get_logger("config.bridges")

# Fixed namespace for deterministic reference-data ids, so reseeding the
# same configuration set finds the rows it wrote before.
_REFERENCE_UUID_NAMESPACE = UUID("6f1c2d3e-4b5a-4c6d-8e7f-90a1b2c3d4e5")


def reference_id(kind: str, *key: object) -> UUID:
    return uuid5(_REFERENCE_UUID_NAMESPACE, ":".join([kind, *(str(k) for k in key)]))


def engine_settings_from_config(config: ComplianceConfigurationSet) -> EngineSettings:
    params = config.engine_params
    return EngineSettings(
        due_soon_threshold_hours=params.due_soon_threshold_hours,
        notification_offsets=params.notification_offsets,
        escalation_days=params.escalation_days,
        admin_escalation_days=params.admin_escalation_days,
        max_adjustment_iterations=params.max_adjustment_iterations,
        fiscal_year_start_month=params.fiscal_year_start_month,
        generation_horizon_days=params.generation_horizon_days,
        default_currency=config.scope.currency,
        default_timezone=params.default_timezone,
        ignore_optional_holidays=params.ignore_optional_holidays,
        max_workers=params.max_workers,
        max_pass_retries=params.max_pass_retries,
    )


@dataclass
class SeedResult:
    """Ids by code for the seeded rows; ``created`` counts new rows only."""

    jurisdiction_ids: dict[str, UUID] = field(default_factory=dict)
    blueprint_ids: dict[str, UUID] = field(default_factory=dict)
    created: int = 0


def seed_reference_data(
    session: Session,
    config: ComplianceConfigurationSet,
    actor_id: UUID = SYSTEM_ACTOR_ID,
) -> SeedResult:
    """Write the set's reference data.  Idempotent; flushes, never commits.

    Rows are keyed by deterministic ids, so an existing row is left as is.
    Reference rows are versioned, never edited: a changed rule ships as a
    new ``version`` in the YAML.
    """
    result = SeedResult()

    def add(model_cls, row_id: UUID, **values) -> None:
        if session.get(model_cls, row_id) is None:
            session.add(model_cls(id=row_id, created_by_id=actor_id, **values))
            result.created += 1

    by_code = {j.code: j for j in config.jurisdictions}
    for j in _parents_first(config.jurisdictions):
        path = _path(j, by_code)
        jurisdiction_id = reference_id("jurisdiction", j.code)
        result.jurisdiction_ids[j.code] = jurisdiction_id
        add(
            JurisdictionModel, jurisdiction_id,
            code=j.code,
            name=j.name,
            level=len(path) - 1,
            parent_id=reference_id("jurisdiction", j.parent_code) if j.parent_code else None,
            path="/".join(path),
            timezone=j.timezone,
            weekend_days=list(j.weekend_days),
            gst_state_code=j.gst_state_code,
            is_active=True,
        )
    session.flush()

    for cal in config.holiday_calendars:
        add(
            HolidayCalendarModel, reference_id("holiday_calendar", cal.jurisdiction_code, cal.year),
            jurisdiction_id=result.jurisdiction_ids[cal.jurisdiction_code],
            year=cal.year,
            holidays=[
                {
                    "date": h.holiday_date.isoformat(),
                    "name": h.name,
                    "type": h.holiday_type.value,
                    "is_optional": h.is_optional,
                }
                for h in cal.holidays
            ],
        )

    for f in config.formulas:
        add(
            DeadlineFormulaModel, reference_id("formula", f.formula_code, f.version),
            formula_code=f.formula_code,
            version=f.version,
            base_date_type=f.base_date_type.value,
            offset_days=f.offset_days,
            offset_months=f.offset_months,
            offset_years=f.offset_years,
            adjustment_rule=f.adjustment_rule.value,
            exclude_weekends=f.exclude_weekends,
            exclude_holidays=f.exclude_holidays,
            effective_from=f.effective_from,
            effective_until=f.effective_until,
        )

    for p in config.penalty_rules:
        add(PenaltyRuleModel, reference_id("penalty_rule", p.rule_code, p.version), **_penalty_values(p))

    for bp in config.blueprints:
        blueprint_id = reference_id("blueprint", bp.code)
        result.blueprint_ids[bp.code] = blueprint_id
        add(
            BlueprintModel, blueprint_id,
            code=bp.code,
            name=bp.name,
            applicable_entity_types=list(bp.applicable_entity_types),
            is_active=True,
        )
        session.flush()
        for rule in bp.rules:
            add(
                ComplianceRuleModel, reference_id("compliance_rule", rule.rule_code, rule.version),
                **_rule_values(rule, blueprint_id),
            )

    for index, o in enumerate(config.overrides):
        add(
            JurisdictionRuleModel,
            reference_id("override", config.config_id, index, o.jurisdiction_code, o.rule_type.value),
            **_override_values(o, result),
        )

    session.flush()
    logger.info(
        "reference_data_seeded",
        extra={
            "config_set_id": config.config_id,
            "checksum": config.checksum,
            "created": result.created,
        },
    )
    return result


def _parents_first(jurisdictions: tuple[JurisdictionDef, ...]) -> list[JurisdictionDef]:
    by_code = {j.code: j for j in jurisdictions}
    return sorted(jurisdictions, key=lambda j: (len(_path(j, by_code)), j.code))


def _path(j: JurisdictionDef, by_code: dict[str, JurisdictionDef]) -> list[str]:
    chain = [j.code]
    node = j
    while node.parent_code is not None:
        if node.parent_code in chain:
            raise ValueError(f"Jurisdiction cycle through {node.parent_code}")
        node = by_code[node.parent_code]
        chain.append(node.code)
    return list(reversed(chain))


def _penalty_values(p: PenaltyRuleDef) -> dict:
    return {
        "rule_code": p.rule_code,
        "version": p.version,
        "penalty_type": p.penalty_type.value,
        "flat_amount": p.flat_amount,
        "daily_amount": p.daily_amount,
        "interest_rate_annual": p.interest_rate_annual,
        "compounding_frequency": p.compounding_frequency.value if p.compounding_frequency else None,
        "slabs": PenaltyRuleModel.slabs_payload(p.slabs),
        "max_penalty": p.max_penalty,
        "max_penalty_days": p.max_penalty_days,
        "min_penalty": p.min_penalty,
        "max_interest": p.max_interest,
        "currency": p.currency,
        "legal_section": p.legal_section,
        "effective_from": p.effective_from,
        "effective_until": p.effective_until,
    }


def _rule_values(rule: ComplianceRuleDef, blueprint_id: UUID) -> dict:
    return {
        "rule_code": rule.rule_code,
        "version": rule.version,
        "blueprint_id": blueprint_id,
        "name": rule.name,
        "form_code": rule.form_code,
        "period_type": rule.period_type.value,
        "formula_code": rule.formula_code,
        "penalty_rule_code": rule.penalty_rule_code,
        "required_documents": list(rule.required_documents),
        "effective_from": rule.effective_from,
        "effective_until": rule.effective_until,
        "is_active": True,
    }


def _override_values(o: OverrideDef, seeded: SeedResult) -> dict:
    return {
        "jurisdiction_id": seeded.jurisdiction_ids[o.jurisdiction_code],
        "blueprint_id": seeded.blueprint_ids[o.blueprint_code] if o.blueprint_code else None,
        "rule_type": o.rule_type.value,
        "applies_when": dict(o.applies_when),
        "priority": o.priority,
        "effective_from": o.effective_from,
        "effective_until": o.effective_until,
        "is_active": True,
        "deadline_offset_days": o.deadline_offset_days,
        "rate_override": o.rate_override,
        "form_override": o.form_override,
        "additional_documents": list(o.additional_documents),
        "reason": o.reason,
    }
