"""
Tests for jurisdiction override precedence.

Covers:
- The precedence comparator (priority, level, effective_from)
- Exemption short-circuit
- Deadline, rate and form overrides
- Accumulating additional requirements
- applies_when predicates
- Ambiguous ties
- Deterministic fingerprints
"""

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from compliance_engines.overrides import (
    JurisdictionRuleResolver,
    OverrideCandidate,
    compare_overrides,
    matches_applies_when,
)
from compliance_kernel.domain.reference import InMemoryReferenceSource
from compliance_kernel.domain.types import (
    AdjustmentRule,
    BaseDateType,
    BaseRule,
    DeadlineFormula,
    Jurisdiction,
    JurisdictionOverride,
    OverrideType,
    PenaltyRule,
    PenaltyType,
)
from compliance_kernel.exceptions import AmbiguousOverrideError, ConfigurationError

AS_OF = date(2025, 2, 10)
BLUEPRINT_ID = uuid4()

INDIA = Jurisdiction(jurisdiction_id=uuid4(), code="IN", name="India", level=0, path="IN")
MAHARASHTRA = Jurisdiction(
    jurisdiction_id=uuid4(), code="IN-MH", name="Maharashtra", level=1,
    path="IN/IN-MH", parent_id=INDIA.jurisdiction_id,
)
MUMBAI = Jurisdiction(
    jurisdiction_id=uuid4(), code="IN-MH-MUM", name="Mumbai", level=2,
    path="IN/IN-MH/IN-MH-MUM", parent_id=MAHARASHTRA.jurisdiction_id,
)

BASE_RULE = BaseRule(
    compliance_rule_id=uuid4(),
    rule_code="GSTR3B",
    version=1,
    formula=DeadlineFormula(
        formula_id=uuid4(),
        formula_code="GSTR3B_MONTHLY",
        version=1,
        base_date_type=BaseDateType.PERIOD_END,
        offset_days=20,
        adjustment_rule=AdjustmentRule.NEXT_WORKING_DAY,
    ),
    blueprint_id=BLUEPRINT_ID,
    form_code="GSTR-3B",
    penalty_rule=PenaltyRule(
        penalty_rule_id=uuid4(),
        rule_code="GST_LATE_FEE_3B",
        version=1,
        penalty_type=PenaltyType.MIXED,
        daily_amount=Decimal("50"),
        interest_rate_annual=Decimal("18"),
    ),
    required_documents=("sales_register",),
)

COMPANY = {"entity_type": "private_limited", "annual_turnover": Decimal("60000000")}


def _override(
    jurisdiction: Jurisdiction,
    rule_type: OverrideType,
    priority: int = 0,
    effective_from: date = date(2024, 4, 1),
    override_id: UUID | None = None,
    **values,
) -> JurisdictionOverride:
    return JurisdictionOverride(
        override_id=override_id or uuid4(),
        jurisdiction_id=jurisdiction.jurisdiction_id,
        rule_type=rule_type,
        effective_from=effective_from,
        priority=priority,
        **values,
    )


def _resolve(*overrides: JurisdictionOverride, jurisdiction=MUMBAI, attributes=COMPANY):
    source = InMemoryReferenceSource(
        jurisdictions=[INDIA, MAHARASHTRA, MUMBAI], overrides=overrides,
    )
    return JurisdictionRuleResolver(source).effective_rule(
        base_rule=BASE_RULE,
        entity_attributes=attributes,
        jurisdiction_id=jurisdiction.jurisdiction_id,
        as_of_date=AS_OF,
    )


# =============================================================================
# Comparator
# =============================================================================


class TestCompareOverrides:
    """Tests for the single precedence comparator."""

    def test_priority_wins_over_level(self):
        national = OverrideCandidate(_override(INDIA, OverrideType.DEADLINE_OVERRIDE, priority=10), 0)
        city = OverrideCandidate(_override(MUMBAI, OverrideType.DEADLINE_OVERRIDE, priority=1), 2)

        assert compare_overrides(national, city) < 0
        assert compare_overrides(city, national) > 0

    def test_deeper_level_wins_on_equal_priority(self):
        state = OverrideCandidate(_override(MAHARASHTRA, OverrideType.DEADLINE_OVERRIDE), 1)
        national = OverrideCandidate(_override(INDIA, OverrideType.DEADLINE_OVERRIDE), 0)

        assert compare_overrides(state, national) < 0

    def test_newer_effective_from_breaks_level_tie(self):
        older = OverrideCandidate(
            _override(INDIA, OverrideType.DEADLINE_OVERRIDE, effective_from=date(2024, 1, 1)), 0,
        )
        newer = OverrideCandidate(
            _override(INDIA, OverrideType.DEADLINE_OVERRIDE, effective_from=date(2024, 7, 1)), 0,
        )

        assert compare_overrides(newer, older) < 0

    def test_identical_precedence_is_a_tie(self):
        a = OverrideCandidate(_override(INDIA, OverrideType.DEADLINE_OVERRIDE), 0)
        b = OverrideCandidate(_override(INDIA, OverrideType.DEADLINE_OVERRIDE), 0)

        assert compare_overrides(a, b) == 0


# =============================================================================
# Resolution
# =============================================================================


class TestEffectiveRule:
    """Tests for JurisdictionRuleResolver.effective_rule."""

    def test_no_overrides_returns_base(self):
        effective = _resolve()

        assert effective.exempt is False
        assert effective.formula == BASE_RULE.formula
        assert effective.penalty_rule == BASE_RULE.penalty_rule
        assert effective.applied_override_ids == ()
        assert effective.fingerprint

    def test_deadline_override_shifts_offset(self):
        extra = _override(MAHARASHTRA, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=2)

        effective = _resolve(extra)

        assert effective.formula.offset_days == 22
        assert effective.formula.formula_id == BASE_RULE.formula.formula_id
        assert effective.applied_override_ids == (extra.override_id,)

    def test_city_override_beats_state(self):
        state = _override(MAHARASHTRA, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=2)
        city = _override(MUMBAI, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=5)

        effective = _resolve(state, city)

        assert effective.formula.offset_days == 25
        assert effective.applied_override_ids == (city.override_id,)

    def test_exemption_short_circuits(self):
        exemption = _override(INDIA, OverrideType.EXEMPTION, reason="Below threshold")
        deadline = _override(MUMBAI, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=5)

        effective = _resolve(exemption, deadline)

        assert effective.exempt is True
        assert effective.exemption_reason == "Below threshold"
        assert effective.formula == BASE_RULE.formula
        assert effective.applied_override_ids == (exemption.override_id,)

    def test_exemption_filtered_by_applies_when(self):
        exemption = _override(
            INDIA, OverrideType.EXEMPTION,
            applies_when={"annual_turnover": {"lt": 20000000}},
        )

        assert _resolve(exemption).exempt is False
        small = {"entity_type": "proprietorship", "annual_turnover": Decimal("10000000")}
        assert _resolve(exemption, attributes=small).exempt is True

    def test_rate_override_replaces_interest_rate(self):
        rate = _override(MAHARASHTRA, OverrideType.RATE_OVERRIDE, rate_override=Decimal("24"))

        effective = _resolve(rate)

        assert effective.penalty_rule.interest_rate_annual == Decimal("24")
        assert effective.penalty_rule.penalty_rule_id == BASE_RULE.penalty_rule.penalty_rule_id

    def test_form_override(self):
        form = _override(MUMBAI, OverrideType.FORM_OVERRIDE, form_override="GSTR-3B-MUM")

        assert _resolve(form).form_code == "GSTR-3B-MUM"

    def test_additional_requirements_accumulate(self):
        """Every matching AdditionalRequirement adds documents, without duplicates."""
        national = _override(
            INDIA, OverrideType.ADDITIONAL_REQUIREMENT,
            additional_documents=("e_way_bills",),
        )
        state = _override(
            MAHARASHTRA, OverrideType.ADDITIONAL_REQUIREMENT,
            additional_documents=("profession_tax_receipt", "sales_register"),
        )

        effective = _resolve(national, state)

        assert effective.required_documents == (
            "sales_register", "profession_tax_receipt", "e_way_bills",
        )
        assert set(effective.applied_override_ids) == {national.override_id, state.override_id}

    def test_other_blueprint_ignored(self):
        foreign = _override(
            INDIA, OverrideType.DEADLINE_OVERRIDE,
            deadline_offset_days=2, blueprint_id=uuid4(),
        )

        assert _resolve(foreign).formula.offset_days == 20

    def test_inactive_and_future_ignored(self):
        inactive = _override(INDIA, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=2, is_active=False)
        future = _override(
            MAHARASHTRA, OverrideType.DEADLINE_OVERRIDE,
            deadline_offset_days=3, effective_from=date(2025, 4, 1),
        )
        expired = _override(
            MUMBAI, OverrideType.DEADLINE_OVERRIDE,
            deadline_offset_days=4, effective_until=date(2024, 12, 31),
        )

        assert _resolve(inactive, future, expired).formula.offset_days == 20

    def test_sibling_jurisdiction_ignored(self):
        karnataka = Jurisdiction(
            jurisdiction_id=uuid4(), code="IN-KA", name="Karnataka", level=1,
            path="IN/IN-KA", parent_id=INDIA.jurisdiction_id,
        )
        other = JurisdictionOverride(
            override_id=uuid4(),
            jurisdiction_id=karnataka.jurisdiction_id,
            rule_type=OverrideType.DEADLINE_OVERRIDE,
            effective_from=date(2024, 4, 1),
            deadline_offset_days=2,
        )

        assert _resolve(other).formula.offset_days == 20

    def test_tie_raises_ambiguous(self, captured_logs):
        a = _override(MAHARASHTRA, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=2)
        b = _override(MAHARASHTRA, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=3)

        with pytest.raises(AmbiguousOverrideError) as exc_info:
            _resolve(a, b)

        assert exc_info.value.code == "AMBIGUOUS_OVERRIDE"
        assert set(exc_info.value.override_ids) == {str(a.override_id), str(b.override_id)}
        assert any(r["message"] == "override_precedence_unresolved" for r in captured_logs())

    def test_exemption_wins_over_tied_deadline_overrides(self):
        """A tie in a non-exemption group does not block an exemption."""
        exemption = _override(MUMBAI, OverrideType.EXEMPTION, priority=100)
        a = _override(INDIA, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=2)
        b = _override(INDIA, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=3)

        result = _resolve(exemption, a, b)

        assert result.exempt is True
        assert result.applied_override_ids == (exemption.override_id,)

    def test_tied_exemptions_raise_ambiguous(self):
        a = _override(MUMBAI, OverrideType.EXEMPTION)
        b = _override(MUMBAI, OverrideType.EXEMPTION)

        with pytest.raises(AmbiguousOverrideError):
            _resolve(a, b)

    def test_tie_below_winner_is_not_ambiguous(self):
        """Only a tie for first place is ambiguous."""
        winner = _override(MUMBAI, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=1)
        a = _override(INDIA, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=2)
        b = _override(INDIA, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=3)

        assert _resolve(winner, a, b).formula.offset_days == 21

    def test_deterministic(self):
        """Same inputs give an equal result and fingerprint in any input order."""
        deadline = _override(MAHARASHTRA, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=2)
        docs = _override(INDIA, OverrideType.ADDITIONAL_REQUIREMENT, additional_documents=("x",))

        first = _resolve(deadline, docs)
        second = _resolve(docs, deadline)

        assert first == second
        assert first.fingerprint == second.fingerprint

    def test_fingerprint_changes_with_override(self):
        plain = _resolve()
        shifted = _resolve(_override(INDIA, OverrideType.DEADLINE_OVERRIDE, deadline_offset_days=2))

        assert plain.fingerprint != shifted.fingerprint


# =============================================================================
# applies_when
# =============================================================================


class TestAppliesWhen:
    """Tests for override predicates."""

    def test_empty_predicate_matches(self):
        assert matches_applies_when({}, COMPANY)

    def test_literal_equality(self):
        assert matches_applies_when({"entity_type": "private_limited"}, COMPANY)
        assert not matches_applies_when({"entity_type": "llp"}, COMPANY)

    def test_list_membership(self):
        assert matches_applies_when({"entity_type": ["llp", "private_limited"]}, COMPANY)

    def test_numeric_operators_across_types(self):
        """Decimal attributes compare numerically with int and str thresholds."""
        assert matches_applies_when({"annual_turnover": {"gte": 50000000}}, COMPANY)
        assert matches_applies_when({"annual_turnover": {"gt": "50000000", "lte": 60000000}}, COMPANY)
        assert not matches_applies_when({"annual_turnover": {"lt": 20000000}}, COMPANY)

    def test_in_and_not_in(self):
        assert matches_applies_when({"entity_type": {"not_in": ["llp"]}}, COMPANY)
        assert not matches_applies_when({"entity_type": {"in": ["llp"]}}, COMPANY)

    def test_missing_attribute_fails(self):
        assert not matches_applies_when({"gst_registered": True}, COMPANY)

    def test_incomparable_types_fail(self):
        assert not matches_applies_when({"entity_type": {"gt": 5}}, COMPANY)

    def test_unknown_operator_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            matches_applies_when({"annual_turnover": {"between": [1, 2]}}, COMPANY)
