"""
compliance_config.assembler -- composes YAML fragments into one configuration set.

Fragment structure::

    sets/IN-GST-2024-v1/
    +-- root.yaml              # Identity and scope
    +-- engine_params.yaml     # EngineSettings tunables (optional)
    +-- reference/             # Reference data, any number of files
        +-- jurisdictions.yaml
        +-- holidays.yaml
        +-- ...

Every file under ``reference/`` may carry any of the top-level keys
``jurisdictions``, ``holiday_calendars``, ``formulas``, ``penalty_rules``,
``blueprints`` and ``overrides``; lists from all files are concatenated in
file-name order.

Invariants enforced:
    - ``root.yaml`` must exist in every fragment directory.
    - Every code reference (parent jurisdiction, formula, penalty rule,
      override jurisdiction / blueprint) resolves inside the set.
    - A deterministic SHA-256 checksum covers all raw fragment data.

Failure modes:
    - ``AssemblyError`` -- missing root.yaml, missing mandatory fields, or a
      dangling code reference.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from compliance_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_blueprint,
    parse_engine_params,
    parse_formula,
    parse_holiday_calendar,
    parse_jurisdiction,
    parse_override,
    parse_penalty_rule,
    parse_scope,
)
from compliance_config.schema import ComplianceConfigurationSet, EngineParams
from compliance_kernel.exceptions import ConfigurationError

_REFERENCE_KEYS = (
    "jurisdictions",
    "holiday_calendars",
    "formulas",
    "penalty_rules",
    "blueprints",
    "overrides",
)


class AssemblyError(ConfigurationError):
    """A fragment directory could not be assembled into a configuration set."""

    code: str = "ASSEMBLY_FAILED"


def assemble_from_directory(fragment_dir: Path) -> ComplianceConfigurationSet:
    if not fragment_dir.is_dir():
        raise AssemblyError(f"Fragment directory not found: {fragment_dir}")

    root_path = fragment_dir / "root.yaml"
    if not root_path.exists():
        raise AssemblyError(f"root.yaml not found in {fragment_dir}")
    root_data = load_yaml_file(root_path)

    params_path = fragment_dir / "engine_params.yaml"
    params_data = load_yaml_file(params_path) if params_path.exists() else {}

    reference: dict[str, list[dict[str, Any]]] = {key: [] for key in _REFERENCE_KEYS}
    reference_dir = fragment_dir / "reference"
    if reference_dir.is_dir():
        for path in sorted(reference_dir.glob("*.yaml")):
            data = load_yaml_file(path)
            unknown = set(data) - set(_REFERENCE_KEYS)
            if unknown:
                raise AssemblyError(f"{path.name}: unknown section(s) {sorted(unknown)}")
            for key in _REFERENCE_KEYS:
                reference[key].extend(data.get(key) or [])

    try:
        config = ComplianceConfigurationSet(
            config_id=root_data["config_id"],
            version=int(root_data.get("version", 1)),
            name=root_data.get("name", root_data["config_id"]),
            scope=parse_scope(root_data["scope"]),
            engine_params=parse_engine_params(params_data) if params_data else EngineParams(),
            jurisdictions=tuple(parse_jurisdiction(d) for d in reference["jurisdictions"]),
            holiday_calendars=tuple(
                parse_holiday_calendar(d) for d in reference["holiday_calendars"]
            ),
            formulas=tuple(parse_formula(d) for d in reference["formulas"]),
            penalty_rules=tuple(parse_penalty_rule(d) for d in reference["penalty_rules"]),
            blueprints=tuple(parse_blueprint(d) for d in reference["blueprints"]),
            overrides=tuple(parse_override(d) for d in reference["overrides"]),
            checksum=compute_checksum(
                {"root": root_data, "engine_params": params_data, "reference": reference}
            ),
        )
    except (KeyError, ValueError, TypeError) as exc:
        raise AssemblyError(f"{fragment_dir.name}: malformed fragment: {exc!r}") from exc

    _check_references(config)
    return config


def _check_references(config: ComplianceConfigurationSet) -> None:
    jurisdictions = {j.code for j in config.jurisdictions}
    formulas = {f.formula_code for f in config.formulas}
    penalties = {p.rule_code for p in config.penalty_rules}
    blueprints = {b.code for b in config.blueprints}

    problems: list[str] = []
    for j in config.jurisdictions:
        if j.parent_code is not None and j.parent_code not in jurisdictions:
            problems.append(f"jurisdiction {j.code}: unknown parent {j.parent_code}")
    for cal in config.holiday_calendars:
        if cal.jurisdiction_code not in jurisdictions:
            problems.append(f"holiday calendar {cal.year}: unknown jurisdiction {cal.jurisdiction_code}")
    for bp in config.blueprints:
        for rule in bp.rules:
            if rule.formula_code not in formulas:
                problems.append(f"rule {rule.rule_code}: unknown formula {rule.formula_code}")
            if rule.penalty_rule_code and rule.penalty_rule_code not in penalties:
                problems.append(f"rule {rule.rule_code}: unknown penalty rule {rule.penalty_rule_code}")
    for o in config.overrides:
        if o.jurisdiction_code not in jurisdictions:
            problems.append(f"override {o.rule_type.value}: unknown jurisdiction {o.jurisdiction_code}")
        if o.blueprint_code and o.blueprint_code not in blueprints:
            problems.append(f"override {o.rule_type.value}: unknown blueprint {o.blueprint_code}")

    if problems:
        raise AssemblyError(
            f"{config.config_id}: dangling references:\n"
            + "\n".join(f"  - {p}" for p in problems)
        )
