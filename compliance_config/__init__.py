"""
compliance_config -- single public entrypoint for compliance configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime, through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- YAML fragment sets under ``sets/``.  Sits above
    ``compliance_kernel``; the kernel MUST NEVER import from this package.
    ``bridges`` translates a configuration set into kernel inputs
    (EngineSettings, reference-table rows).

Invariants enforced:
    - Single entrypoint: runtime config flows through ``get_active_config()``.
    - Deterministic assembly: the same fragments always produce the same
      checksum.

Failure modes:
    - ``FileNotFoundError`` -- no set matches the jurisdiction and date.
    - ``AssemblyError`` -- a matching set is malformed.

Audit relevance:
    Every successful call emits ``COMPLIANCE_CONFIG_TRACE`` with the
    config id, version, checksum and scope, tying generated calendars to
    the configuration version that seeded their rules.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path

from compliance_config.assembler import AssemblyError, assemble_from_directory
from compliance_config.schema import ComplianceConfigurationSet
from compliance_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

__all__ = [
    "AssemblyError",
    "ComplianceConfigurationSet",
    "get_active_config",
]


def get_active_config(
    jurisdiction: str,
    as_of_date: date,
    config_dir: Path | None = None,
) -> ComplianceConfigurationSet:
    """The ONLY public configuration entrypoint.

    Scans every set under ``config_dir`` (default: ``compliance_config/sets``)
    and returns the highest-version set whose scope covers ``jurisdiction``
    (or ``"*"``) at ``as_of_date``.

    Raises:
        FileNotFoundError: If the directory is missing or no set matches.
        AssemblyError: If a set is malformed.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    config = _find_matching_config(sets_dir, jurisdiction, as_of_date)

    _logger.info(
        "COMPLIANCE_CONFIG_TRACE",
        extra={
            "trace_type": "COMPLIANCE_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "scope_jurisdiction": config.scope.jurisdiction,
            "scope_regime": config.scope.regulatory_regime,
            "requested_jurisdiction": jurisdiction,
            "as_of_date": as_of_date,
            "blueprint_count": len(config.blueprints),
            "penalty_rule_count": len(config.penalty_rules),
        },
    )
    return config


def _find_matching_config(
    sets_dir: Path, jurisdiction: str, as_of_date: date,
) -> ComplianceConfigurationSet:
    if not sets_dir.is_dir():
        raise FileNotFoundError(f"Configuration sets directory not found: {sets_dir}")

    candidates: list[ComplianceConfigurationSet] = []
    for subdir in sorted(sets_dir.iterdir()):
        if not subdir.is_dir() or not (subdir / "root.yaml").exists():
            continue
        config = assemble_from_directory(subdir)
        if config.scope.covers(jurisdiction, as_of_date):
            candidates.append(config)

    if not candidates:
        raise FileNotFoundError(
            f"No configuration set found for jurisdiction='{jurisdiction}' "
            f"as_of_date={as_of_date} in {sets_dir}"
        )
    return max(candidates, key=lambda c: c.version)
