"""
Tests for compliance_config: assembly, the runtime entrypoint and the
config -> kernel bridges.

Covers:
- get_active_config() selects the shipped IN-GST set by scope
- Deterministic checksums over fragment data
- AssemblyError for malformed or dangling fragments
- Loader parsing of decimals, dates and engine parameters
- engine_settings_from_config() and idempotent seed_reference_data()
- Shipped reference data driving real calendar generation
"""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from compliance_config import AssemblyError, get_active_config
from compliance_config.assembler import assemble_from_directory
from compliance_config.bridges import (
    engine_settings_from_config,
    reference_id,
    seed_reference_data,
)
from compliance_config.loader import compute_checksum, parse_decimal, parse_engine_params
from compliance_kernel.domain.types import ComplianceStatus, PenaltyType
from compliance_kernel.exceptions import ConfigurationError
from compliance_kernel.models.jurisdiction import JurisdictionModel
from compliance_kernel.models.rules import BlueprintModel
from compliance_kernel.selectors.calendar_selector import CalendarSelector
from compliance_services.calendar_service import ComplianceCalendarService
from tests.conftest import TEST_ACTOR_ID, ReferenceBuilder

SHIPPED_SET = Path(__file__).parents[2] / "compliance_config" / "sets" / "IN-GST-2024-v1"


def _write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


def _minimal_set(root: Path, **reference) -> Path:
    _write(root / "root.yaml", {
        "config_id": root.name,
        "version": 1,
        "scope": {
            "jurisdiction": "IN",
            "regulatory_regime": "GST",
            "effective_from": "2024-04-01",
        },
    })
    if reference:
        _write(root / "reference" / "data.yaml", reference)
    return root


# =============================================================================
# Entrypoint
# =============================================================================


class TestGetActiveConfig:
    """Tests for set selection by jurisdiction and date."""

    def test_loads_shipped_set(self):
        config = get_active_config("IN", date(2025, 2, 10))

        assert config.config_id == "IN-GST-2024-v1"
        assert config.scope.regulatory_regime == "GST"
        assert {b.code for b in config.blueprints} == {"GST_REGULAR", "GST_QRMP", "GST_ANNUAL"}

    def test_emits_trace(self, captured_logs):
        get_active_config("IN", date(2025, 2, 10))

        (record,) = [r for r in captured_logs() if r["message"] == "COMPLIANCE_CONFIG_TRACE"]
        assert record["config_set_id"] == "IN-GST-2024-v1"

    def test_before_scope_raises(self):
        with pytest.raises(FileNotFoundError):
            get_active_config("IN", date(2024, 3, 31))

    def test_other_jurisdiction_raises(self):
        with pytest.raises(FileNotFoundError):
            get_active_config("SG", date(2025, 2, 10))

    def test_highest_version_wins(self, tmp_path):
        _minimal_set(tmp_path / "a")
        newer = _minimal_set(tmp_path / "b")
        root = yaml.safe_load((newer / "root.yaml").read_text())
        root["version"] = 2
        _write(newer / "root.yaml", root)

        config = get_active_config("IN", date(2025, 1, 1), config_dir=tmp_path)

        assert config.config_id == "b"
        assert config.version == 2

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config("IN", date(2025, 1, 1), config_dir=tmp_path / "absent")


# =============================================================================
# Assembly
# =============================================================================


class TestAssembly:
    """Tests for fragment assembly and reference checks."""

    def test_checksum_is_deterministic(self):
        first = assemble_from_directory(SHIPPED_SET)
        second = assemble_from_directory(SHIPPED_SET)

        assert first.checksum == second.checksum
        assert len(first.checksum) == 64

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": [1, 2]}) == compute_checksum({"b": [1, 2], "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})

    def test_missing_root(self, tmp_path):
        (tmp_path / "empty").mkdir()

        with pytest.raises(AssemblyError, match="root.yaml"):
            assemble_from_directory(tmp_path / "empty")

    def test_assembly_error_is_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            assemble_from_directory(tmp_path / "absent")

        assert exc_info.value.code == "ASSEMBLY_FAILED"

    def test_unknown_section(self, tmp_path):
        root = _minimal_set(tmp_path / "s", widgets=[{"code": "X"}])

        with pytest.raises(AssemblyError, match="widgets"):
            assemble_from_directory(root)

    def test_dangling_formula(self, tmp_path):
        root = _minimal_set(
            tmp_path / "s",
            blueprints=[{
                "code": "BP",
                "name": "Blueprint",
                "rules": [{"code": "R1", "name": "Rule", "formula": "MISSING"}],
            }],
        )

        with pytest.raises(AssemblyError, match="unknown formula MISSING"):
            assemble_from_directory(root)

    def test_dangling_parent(self, tmp_path):
        root = _minimal_set(
            tmp_path / "s",
            jurisdictions=[{"code": "IN-MH", "name": "Maharashtra", "parent": "IN"}],
        )

        with pytest.raises(AssemblyError, match="unknown parent IN"):
            assemble_from_directory(root)

    def test_malformed_value(self, tmp_path):
        root = _minimal_set(
            tmp_path / "s",
            formulas=[{"code": "F", "base_date": "someday"}],
        )

        with pytest.raises(AssemblyError, match="malformed"):
            assemble_from_directory(root)


class TestLoader:
    """Tests for individual value parsers."""

    def test_float_decimal_keeps_literal(self):
        assert parse_decimal(0.18) == Decimal("0.18")
        assert parse_decimal(None) is None

    def test_bool_is_not_decimal(self):
        with pytest.raises(ValueError):
            parse_decimal(True)

    def test_unknown_engine_param_rejected(self):
        with pytest.raises(ValueError, match="escalation_dayz"):
            parse_engine_params({"escalation_dayz": 3})

    def test_engine_params_defaults(self):
        params = parse_engine_params({"notification_offsets": [5, 0]})

        assert params.notification_offsets == (5, 0)
        assert params.escalation_days == 7

    def test_shipped_penalty_parsed(self):
        config = assemble_from_directory(SHIPPED_SET)
        (late_fee,) = [p for p in config.penalty_rules if p.rule_code == "GST_LATE_FEE_3B"]

        assert late_fee.penalty_type == PenaltyType.MIXED
        assert late_fee.daily_amount == Decimal("50")
        assert late_fee.interest_rate_annual == Decimal("18")
        assert config.blueprint("GST_ANNUAL").rules[0].formula_code == "GSTR9_ANNUAL"
        assert config.blueprint("NOPE") is None


# =============================================================================
# Bridges
# =============================================================================


class TestBridges:
    """Tests for EngineSettings and reference seeding."""

    def setup_method(self):
        self.config = assemble_from_directory(SHIPPED_SET)

    def test_engine_settings(self):
        settings = engine_settings_from_config(self.config)

        assert settings.default_currency == "INR"
        assert settings.default_timezone == "Asia/Kolkata"
        assert settings.notification_offsets == (7, 3, 1, 0)
        assert settings.fiscal_year_start_month == 4

    def test_reference_ids_are_stable(self):
        assert reference_id("jurisdiction", "IN") == reference_id("jurisdiction", "IN")
        assert reference_id("jurisdiction", "IN") != reference_id("jurisdiction", "IN-MH")

    def test_seed_builds_hierarchy(self, session):
        result = seed_reference_data(session, self.config, actor_id=TEST_ACTOR_ID)

        mumbai = session.get(JurisdictionModel, result.jurisdiction_ids["IN-MH-MUM"])
        assert mumbai.level == 2
        assert mumbai.path == "IN/IN-MH/IN-MH-MUM"
        assert mumbai.parent_id == result.jurisdiction_ids["IN-MH"]
        assert mumbai.created_by_id == TEST_ACTOR_ID

    def test_reseed_is_idempotent(self, session):
        first = seed_reference_data(session, self.config)
        second = seed_reference_data(session, self.config)

        assert first.created > 0
        assert second.created == 0
        assert second.blueprint_ids == first.blueprint_ids


class TestShippedConfigGeneration:
    """Shipped reference data driving the calendar service."""

    @pytest.fixture
    def seeded(self, session):
        config = assemble_from_directory(SHIPPED_SET)
        return config, seed_reference_data(session, config)

    def _generate(self, session, clock, seeded, jurisdiction_code, blueprint_code, **entity):
        config, result = seeded
        builder = ReferenceBuilder(session)
        jurisdiction = session.get(JurisdictionModel, result.jurisdiction_ids[jurisdiction_code])
        business = builder.add_entity(jurisdiction, **entity)
        blueprint = session.get(BlueprintModel, result.blueprint_ids[blueprint_code])
        subscription = builder.add_subscription(business, blueprint)
        service = ComplianceCalendarService(
            session, clock=clock, settings=engine_settings_from_config(config),
            actor_id=TEST_ACTOR_ID,
        )
        service.generate_for_subscription(subscription.id, date(2025, 2, 10))
        return business

    def test_karnataka_qrmp_staggered_date(self, session, clock, seeded):
        business = self._generate(session, clock, seeded, "IN-KA", "GST_QRMP")

        entry = CalendarSelector(session).get_current_entry(
            business.client_id, business.id, "GSTR3B_QUARTERLY", "Q4-2024-25",
        )

        # 31 March + 22 days + 2 days Karnataka offset
        assert entry.adjusted_due_date == date(2025, 4, 24)

    def test_small_taxpayer_exempt_from_annual_return(self, session, clock, seeded):
        business = self._generate(
            session, clock, seeded, "IN-MH", "GST_ANNUAL", annual_turnover=Decimal("10000000"),
        )

        entry = CalendarSelector(session).get_current_entry(
            business.client_id, business.id, "GSTR9", "FY2024-25",
        )

        assert entry.status == ComplianceStatus.EXEMPTED
        assert "below Rs 2 crore" in entry.status_reason

    def test_large_taxpayer_files_annual_return(self, session, clock, seeded):
        business = self._generate(
            session, clock, seeded, "IN-MH", "GST_ANNUAL", annual_turnover=Decimal("50000000"),
        )

        entry = CalendarSelector(session).get_current_entry(
            business.client_id, business.id, "GSTR9", "FY2024-25",
        )

        assert entry.status == ComplianceStatus.UPCOMING
        assert entry.adjusted_due_date == date(2025, 12, 31)
