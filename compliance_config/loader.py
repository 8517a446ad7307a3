"""
Configuration loader (``compliance_config.loader``).

Responsibility
--------------
Loads individual YAML fragment files and parses their mappings into the
frozen dataclasses of ``compliance_config.schema``.  Build/test tooling:
the runtime entry point is ``compliance_config.get_active_config()``.

Invariants enforced
-------------------
* YAML is read with ``yaml.safe_load`` only.
* Money and rates become Decimal; YAML floats are converted through
  ``str`` so 0.18 stays ``Decimal("0.18")``.
* Enum-valued fields are validated against the kernel enums at parse time.
* ``compute_checksum`` is a deterministic SHA-256 over canonical JSON.

Failure modes
-------------
* Missing YAML file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
* Missing required keys -> ``KeyError``; bad values -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from compliance_config.schema import (
    BlueprintDef,
    ComplianceRuleDef,
    ConfigScope,
    DeadlineFormulaDef,
    EngineParams,
    HolidayCalendarDef,
    HolidayDef,
    JurisdictionDef,
    OverrideDef,
    PenaltyRuleDef,
    PenaltySlabDef,
)
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


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file yields an empty dict."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def _optional_date(data: dict[str, Any], key: str) -> date | None:
    value = data.get(key)
    return parse_date(value) if value is not None else None


def parse_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse decimal from {value!r}")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def parse_scope(data: dict[str, Any]) -> ConfigScope:
    return ConfigScope(
        jurisdiction=data["jurisdiction"],
        regulatory_regime=data["regulatory_regime"],
        currency=data.get("currency", "INR"),
        effective_from=parse_date(data["effective_from"]),
        effective_to=_optional_date(data, "effective_to"),
    )


def parse_engine_params(data: dict[str, Any]) -> EngineParams:
    """Unknown keys are rejected so a typo cannot silently fall back to a default."""
    defaults = EngineParams()
    known = set(EngineParams.__dataclass_fields__)
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown engine parameter(s): {sorted(unknown)}")
    values = {name: data.get(name, getattr(defaults, name)) for name in known}
    values["notification_offsets"] = tuple(int(v) for v in values["notification_offsets"])
    return EngineParams(**values)


def parse_jurisdiction(data: dict[str, Any]) -> JurisdictionDef:
    return JurisdictionDef(
        code=data["code"],
        name=data["name"],
        parent_code=data.get("parent"),
        timezone=data.get("timezone", "Asia/Kolkata"),
        weekend_days=tuple(int(d) for d in data.get("weekend_days", (5, 6))),
        gst_state_code=(
            str(data["gst_state_code"]) if data.get("gst_state_code") is not None else None
        ),
    )


def parse_holiday_calendar(data: dict[str, Any]) -> HolidayCalendarDef:
    return HolidayCalendarDef(
        jurisdiction_code=data["jurisdiction"],
        year=int(data["year"]),
        holidays=tuple(
            HolidayDef(
                holiday_date=parse_date(h["date"]),
                name=h["name"],
                holiday_type=HolidayType(h.get("type", HolidayType.NATIONAL.value)),
                is_optional=bool(h.get("is_optional", False)),
            )
            for h in data.get("holidays", [])
        ),
    )


def parse_formula(data: dict[str, Any]) -> DeadlineFormulaDef:
    return DeadlineFormulaDef(
        formula_code=data["code"],
        base_date_type=BaseDateType(data["base_date"]),
        version=int(data.get("version", 1)),
        offset_days=int(data.get("offset_days", 0)),
        offset_months=int(data.get("offset_months", 0)),
        offset_years=int(data.get("offset_years", 0)),
        adjustment_rule=AdjustmentRule(data.get("adjustment", AdjustmentRule.NONE.value)),
        exclude_weekends=bool(data.get("exclude_weekends", True)),
        exclude_holidays=bool(data.get("exclude_holidays", True)),
        effective_from=_optional_date(data, "effective_from"),
        effective_until=_optional_date(data, "effective_until"),
    )


def parse_penalty_rule(data: dict[str, Any]) -> PenaltyRuleDef:
    compounding = data.get("compounding_frequency")
    return PenaltyRuleDef(
        rule_code=data["code"],
        penalty_type=PenaltyType(data["type"]),
        version=int(data.get("version", 1)),
        flat_amount=parse_decimal(data.get("flat_amount")),
        daily_amount=parse_decimal(data.get("daily_amount")),
        interest_rate_annual=parse_decimal(data.get("interest_rate_annual")),
        compounding_frequency=CompoundingFrequency(compounding) if compounding else None,
        slabs=tuple(
            PenaltySlabDef(
                from_day=int(s["from_day"]),
                to_day=int(s["to_day"]) if s.get("to_day") is not None else None,
                amount=parse_decimal(s["amount"]),
                mode=SlabMode(s.get("mode", SlabMode.PER_DAY.value)),
            )
            for s in data.get("slabs", [])
        ),
        max_penalty=parse_decimal(data.get("max_penalty")),
        max_penalty_days=int(data["max_penalty_days"]) if data.get("max_penalty_days") else None,
        min_penalty=parse_decimal(data.get("min_penalty")),
        max_interest=parse_decimal(data.get("max_interest")),
        currency=data.get("currency", "INR"),
        legal_section=data.get("legal_section"),
        effective_from=_optional_date(data, "effective_from"),
        effective_until=_optional_date(data, "effective_until"),
    )


def parse_compliance_rule(data: dict[str, Any]) -> ComplianceRuleDef:
    return ComplianceRuleDef(
        rule_code=data["code"],
        name=data["name"],
        formula_code=data["formula"],
        period_type=PeriodType(data.get("period", PeriodType.MONTHLY.value)),
        version=int(data.get("version", 1)),
        form_code=data.get("form"),
        penalty_rule_code=data.get("penalty"),
        required_documents=tuple(data.get("required_documents", ())),
        effective_from=_optional_date(data, "effective_from"),
        effective_until=_optional_date(data, "effective_until"),
    )


def parse_blueprint(data: dict[str, Any]) -> BlueprintDef:
    return BlueprintDef(
        code=data["code"],
        name=data["name"],
        applicable_entity_types=tuple(data.get("applicable_entity_types", ())),
        rules=tuple(parse_compliance_rule(r) for r in data.get("rules", [])),
    )


def parse_override(data: dict[str, Any]) -> OverrideDef:
    return OverrideDef(
        jurisdiction_code=data["jurisdiction"],
        rule_type=OverrideType(data["type"]),
        effective_from=parse_date(data["effective_from"]),
        blueprint_code=data.get("blueprint"),
        applies_when=dict(data.get("applies_when") or {}),
        priority=int(data.get("priority", 0)),
        effective_until=_optional_date(data, "effective_until"),
        deadline_offset_days=(
            int(data["deadline_offset_days"])
            if data.get("deadline_offset_days") is not None else None
        ),
        rate_override=parse_decimal(data.get("rate_override")),
        form_override=data.get("form_override"),
        additional_documents=tuple(data.get("additional_documents", ())),
        reason=data.get("reason"),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of canonical JSON; identical data always gives identical checksums."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
