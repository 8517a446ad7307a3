"""
Pytest fixtures for the compliance engine test suite.

Provides:
- Structured logging configured once per session, plus a log capture fixture
- SQLite sessions (in-memory for unit work, file-backed for threaded passes)
- A DeterministicClock pinned inside the February 2025 GST cycle
- ReferenceBuilder for jurisdictions, holidays, rules, entities and subscriptions

Environment Variables:
- DATABASE_URL: optional PostgreSQL URL; tests marked ``postgres`` are skipped
  when it is not set.
"""

import json
import logging
import os
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

import compliance_batch.models  # noqa: F401  (registers pass tables)
from compliance_kernel.db.engine import build_engine, create_tables
from compliance_kernel.domain.clock import DeterministicClock
from compliance_kernel.domain.types import (
    AdjustmentRule,
    BaseDateType,
    OverrideType,
    PenaltySlab,
    PenaltyType,
    PeriodType,
)
from compliance_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from compliance_kernel.models.entity import BusinessEntityModel, ServiceSubscriptionModel
from compliance_kernel.models.jurisdiction import HolidayCalendarModel, JurisdictionModel
from compliance_kernel.models.rules import (
    BlueprintModel,
    ComplianceRuleModel,
    DeadlineFormulaModel,
    JurisdictionRuleModel,
    PenaltyRuleModel,
)

TEST_ACTOR_ID = UUID("00000000-0000-0000-0000-0000000000aa")

# 12:00 IST on Monday 2025-02-10
DEFAULT_NOW = datetime(2025, 2, 10, 6, 30, tzinfo=timezone.utc)

RULES_EFFECTIVE_FROM = date(2024, 4, 1)

HOLIDAYS_IN_2025 = {
    date(2025, 1, 26): "Republic Day",
    date(2025, 3, 14): "Holi",
    date(2025, 8, 15): "Independence Day",
    date(2025, 10, 2): "Gandhi Jayanti",
    date(2025, 10, 21): "Diwali",
    date(2025, 12, 25): "Christmas",
}


def pytest_collection_modifyitems(config, items):
    if os.environ.get("DATABASE_URL"):
        return
    skip = pytest.mark.skip(reason="DATABASE_URL not set")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture compliance_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, calendar_service):
            calendar_service.generate_for_subscription(...)
            logs = captured_logs()
            assert any(r["message"] == "entry_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("compliance_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database with every table created."""
    eng = build_engine("sqlite://")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Session:
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def file_session_factory(tmp_path) -> sessionmaker:
    """File-backed SQLite so pass workers open independent connections."""
    eng = build_engine(f"sqlite:///{tmp_path / 'compliance.db'}")
    create_tables(eng)
    yield sessionmaker(bind=eng, expire_on_commit=False)
    eng.dispose()


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(DEFAULT_NOW)


# =============================================================================
# Reference data
# =============================================================================


class ReferenceBuilder:
    """Adds reference rows through a session and flushes after each one."""

    def __init__(self, session: Session, actor_id: UUID = TEST_ACTOR_ID):
        self.session = session
        self.actor_id = actor_id

    def _add(self, row):
        self.session.add(row)
        self.session.flush()
        return row

    def add_jurisdiction(
        self,
        code: str,
        parent: JurisdictionModel | None = None,
        name: str | None = None,
        timezone: str = "Asia/Kolkata",
        weekend_days: tuple[int, ...] = (5, 6),
        gst_state_code: str | None = None,
    ) -> JurisdictionModel:
        return self._add(JurisdictionModel(
            id=uuid4(),
            code=code,
            name=name or code,
            level=(parent.level + 1) if parent else 0,
            parent_id=parent.id if parent else None,
            path=f"{parent.path}/{code}" if parent else code,
            timezone=timezone,
            weekend_days=list(weekend_days),
            gst_state_code=gst_state_code,
            is_active=True,
            created_by_id=self.actor_id,
        ))

    def add_holidays(
        self,
        jurisdiction: JurisdictionModel,
        year: int,
        holidays: dict[date, str],
        optional: tuple[date, ...] = (),
    ) -> HolidayCalendarModel:
        payload = [
            {"date": d.isoformat(), "name": name, "type": "national", "is_optional": False}
            for d, name in sorted(holidays.items())
        ]
        payload.extend(
            {"date": d.isoformat(), "name": "Optional", "type": "national", "is_optional": True}
            for d in optional
        )
        return self._add(HolidayCalendarModel(
            id=uuid4(),
            jurisdiction_id=jurisdiction.id,
            year=year,
            holidays=payload,
            created_by_id=self.actor_id,
        ))

    def add_formula(
        self,
        formula_code: str,
        base_date_type: BaseDateType = BaseDateType.PERIOD_END,
        offset_days: int = 20,
        offset_months: int = 0,
        offset_years: int = 0,
        adjustment_rule: AdjustmentRule = AdjustmentRule.NEXT_WORKING_DAY,
        version: int = 1,
        effective_from: date | None = RULES_EFFECTIVE_FROM,
        effective_until: date | None = None,
    ) -> DeadlineFormulaModel:
        return self._add(DeadlineFormulaModel(
            id=uuid4(),
            formula_code=formula_code,
            version=version,
            base_date_type=base_date_type.value,
            offset_days=offset_days,
            offset_months=offset_months,
            offset_years=offset_years,
            adjustment_rule=adjustment_rule.value,
            exclude_weekends=True,
            exclude_holidays=True,
            effective_from=effective_from,
            effective_until=effective_until,
            created_by_id=self.actor_id,
        ))

    def add_penalty(
        self,
        rule_code: str,
        penalty_type: PenaltyType = PenaltyType.DAILY,
        slabs: tuple[PenaltySlab, ...] = (),
        version: int = 1,
        effective_from: date | None = RULES_EFFECTIVE_FROM,
        **amounts,
    ) -> PenaltyRuleModel:
        return self._add(PenaltyRuleModel(
            id=uuid4(),
            rule_code=rule_code,
            version=version,
            penalty_type=penalty_type.value,
            slabs=PenaltyRuleModel.slabs_payload(slabs),
            currency="INR",
            effective_from=effective_from,
            created_by_id=self.actor_id,
            **amounts,
        ))

    def add_blueprint(self, code: str, entity_types: tuple[str, ...] = ()) -> BlueprintModel:
        return self._add(BlueprintModel(
            id=uuid4(),
            code=code,
            name=code.replace("_", " ").title(),
            applicable_entity_types=list(entity_types),
            is_active=True,
            created_by_id=self.actor_id,
        ))

    def add_rule(
        self,
        blueprint: BlueprintModel,
        rule_code: str,
        formula_code: str,
        penalty_rule_code: str | None = None,
        period_type: PeriodType = PeriodType.MONTHLY,
        version: int = 1,
        effective_from: date | None = RULES_EFFECTIVE_FROM,
        effective_until: date | None = None,
        form_code: str | None = None,
        required_documents: tuple[str, ...] = (),
    ) -> ComplianceRuleModel:
        return self._add(ComplianceRuleModel(
            id=uuid4(),
            rule_code=rule_code,
            version=version,
            blueprint_id=blueprint.id,
            name=rule_code,
            form_code=form_code or rule_code,
            period_type=period_type.value,
            formula_code=formula_code,
            penalty_rule_code=penalty_rule_code,
            required_documents=list(required_documents),
            effective_from=effective_from,
            effective_until=effective_until,
            is_active=True,
            created_by_id=self.actor_id,
        ))

    def add_override(
        self,
        jurisdiction: JurisdictionModel,
        rule_type: OverrideType,
        blueprint: BlueprintModel | None = None,
        priority: int = 0,
        effective_from: date = date(2024, 1, 1),
        applies_when: dict | None = None,
        **values,
    ) -> JurisdictionRuleModel:
        return self._add(JurisdictionRuleModel(
            id=uuid4(),
            jurisdiction_id=jurisdiction.id,
            blueprint_id=blueprint.id if blueprint else None,
            rule_type=rule_type.value,
            applies_when=applies_when or {},
            priority=priority,
            effective_from=effective_from,
            is_active=True,
            additional_documents=list(values.pop("additional_documents", ())),
            created_by_id=self.actor_id,
            **values,
        ))

    def add_entity(
        self,
        jurisdiction: JurisdictionModel,
        client_id: UUID | None = None,
        entity_type: str = "private_limited",
        annual_turnover: Decimal | None = None,
        registration_date: date | None = None,
        attributes: dict | None = None,
    ) -> BusinessEntityModel:
        return self._add(BusinessEntityModel(
            id=uuid4(),
            client_id=client_id or uuid4(),
            name="Acme Traders",
            entity_type=entity_type,
            jurisdiction_id=jurisdiction.id,
            annual_turnover=annual_turnover,
            registration_date=registration_date,
            attributes=attributes or {},
            created_by_id=self.actor_id,
        ))

    def add_subscription(
        self,
        entity: BusinessEntityModel,
        blueprint: BlueprintModel,
        start_date: date = date(2025, 1, 1),
        end_date: date | None = None,
        is_active: bool = True,
    ) -> ServiceSubscriptionModel:
        return self._add(ServiceSubscriptionModel(
            id=uuid4(),
            client_id=entity.client_id,
            entity_id=entity.id,
            blueprint_id=blueprint.id,
            start_date=start_date,
            end_date=end_date,
            is_active=is_active,
            created_by_id=self.actor_id,
        ))


@pytest.fixture
def ref(session) -> ReferenceBuilder:
    return ReferenceBuilder(session)


def build_gst_setup(builder: ReferenceBuilder) -> SimpleNamespace:
    """
    One Maharashtra company filing monthly GSTR-3B from January 2025.

    GSTR3B is due 20 days after month end, moved to the next working day;
    late filing costs 50/day (capped at 5000) plus 18% simple interest.
    """
    india = builder.add_jurisdiction("IN", name="India")
    maharashtra = builder.add_jurisdiction("IN-MH", parent=india, gst_state_code="27")
    builder.add_holidays(india, 2025, HOLIDAYS_IN_2025)
    builder.add_holidays(maharashtra, 2025, {date(2025, 5, 1): "Maharashtra Day"})
    formula = builder.add_formula("GSTR3B_MONTHLY")
    penalty = builder.add_penalty(
        "GST_LATE_FEE_3B",
        penalty_type=PenaltyType.MIXED,
        daily_amount=Decimal("50"),
        max_penalty=Decimal("5000"),
        interest_rate_annual=Decimal("18"),
    )
    blueprint = builder.add_blueprint("GST_REGULAR", ("private_limited", "llp"))
    rule = builder.add_rule(
        blueprint, "GSTR3B", "GSTR3B_MONTHLY", "GST_LATE_FEE_3B",
        required_documents=("sales_register", "purchase_register"),
    )
    entity = builder.add_entity(maharashtra)
    subscription = builder.add_subscription(entity, blueprint)
    return SimpleNamespace(
        india=india,
        maharashtra=maharashtra,
        formula=formula,
        penalty=penalty,
        blueprint=blueprint,
        rule=rule,
        entity=entity,
        client_id=entity.client_id,
        subscription=subscription,
    )


@pytest.fixture
def gst(ref) -> SimpleNamespace:
    return build_gst_setup(ref)
