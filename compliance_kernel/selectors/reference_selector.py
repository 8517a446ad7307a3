"""
Module: compliance_kernel.selectors.reference_selector
Responsibility: Read-only access to reference data: jurisdictions, holiday
    calendars, override rows, blueprints, entities, subscriptions, and the
    compliance rule / formula / penalty versions in force at a date.
Architecture position: Kernel > Selectors.  Implements the engines'
    ``ReferenceSource`` protocol over SQLAlchemy.

Invariants enforced:
    - Version resolution: for a code, the highest version whose effective
      window covers the as-of date wins.  Rows are never edited in place.
    - Returns DTOs only.

Failure modes:
    - ReferenceDataNotFoundError when a code or id has no row in force.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from compliance_kernel.domain.types import (
    BaseRule,
    Blueprint,
    BusinessEntity,
    DeadlineFormula,
    HolidayCalendar,
    Jurisdiction,
    JurisdictionOverride,
    PenaltyRule,
    PeriodType,
    ServiceSubscription,
)
from compliance_kernel.exceptions import ReferenceDataNotFoundError
from compliance_kernel.models.entity import BusinessEntityModel, ServiceSubscriptionModel
from compliance_kernel.models.jurisdiction import HolidayCalendarModel, JurisdictionModel
from compliance_kernel.models.rules import (
    BlueprintModel,
    ComplianceRuleModel,
    DeadlineFormulaModel,
    JurisdictionRuleModel,
    PenaltyRuleModel,
    covers,
)
from compliance_kernel.selectors.base import BaseSelector


def _latest_covering(rows, as_of: date):
    """Highest-version row whose effective window covers ``as_of``."""
    in_force = [r for r in rows if covers(r.effective_from, r.effective_until, as_of)]
    if not in_force:
        return None
    return max(in_force, key=lambda r: r.version)


class ReferenceSelector(BaseSelector[JurisdictionModel]):
    """
    Reference-data reader.

    Contract:
        Satisfies ``ReferenceSource`` (get_jurisdiction,
        get_holiday_calendar, list_overrides) and adds the rule-version
        lookups the calendar service needs.

    Non-goals:
        No caching across sessions; HolidayCalendarResolver caches per pass.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    # ReferenceSource ---------------------------------------------------------

    def get_jurisdiction(self, jurisdiction_id: UUID) -> Jurisdiction | None:
        row = self.session.get(JurisdictionModel, jurisdiction_id)
        return row.to_dto() if row is not None else None

    def get_holiday_calendar(self, jurisdiction_id: UUID, year: int) -> HolidayCalendar | None:
        row = self.session.execute(
            select(HolidayCalendarModel).where(
                HolidayCalendarModel.jurisdiction_id == jurisdiction_id,
                HolidayCalendarModel.year == year,
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def list_overrides(
        self, jurisdiction_ids: tuple[UUID, ...],
    ) -> tuple[JurisdictionOverride, ...]:
        if not jurisdiction_ids:
            return ()
        rows = self.session.execute(
            select(JurisdictionRuleModel)
            .where(JurisdictionRuleModel.jurisdiction_id.in_(jurisdiction_ids))
            .order_by(JurisdictionRuleModel.id)
        ).scalars().all()
        return tuple(row.to_dto() for row in rows)

    # Lookups by code ---------------------------------------------------------

    def get_jurisdiction_by_code(self, code: str) -> Jurisdiction:
        row = self.session.execute(
            select(JurisdictionModel).where(JurisdictionModel.code == code)
        ).scalar_one_or_none()
        if row is None:
            raise ReferenceDataNotFoundError("Jurisdiction", code)
        return row.to_dto()

    def get_blueprint(self, blueprint_id: UUID) -> Blueprint:
        row = self.session.get(BlueprintModel, blueprint_id)
        if row is None:
            raise ReferenceDataNotFoundError("Blueprint", str(blueprint_id))
        return row.to_dto()

    def get_entity(self, entity_id: UUID) -> BusinessEntity:
        row = self.session.get(BusinessEntityModel, entity_id)
        if row is None:
            raise ReferenceDataNotFoundError("BusinessEntity", str(entity_id))
        return row.to_dto()

    def get_subscription(self, subscription_id: UUID) -> ServiceSubscription:
        row = self.session.get(ServiceSubscriptionModel, subscription_id)
        if row is None:
            raise ReferenceDataNotFoundError("ServiceSubscription", str(subscription_id))
        return row.to_dto()

    def list_subscriptions(
        self, client_id: UUID | None = None, active_only: bool = True,
    ) -> list[ServiceSubscription]:
        query = select(ServiceSubscriptionModel)
        if client_id is not None:
            query = query.where(ServiceSubscriptionModel.client_id == client_id)
        if active_only:
            query = query.where(ServiceSubscriptionModel.is_active.is_(True))
        query = query.order_by(ServiceSubscriptionModel.client_id, ServiceSubscriptionModel.id)
        return [row.to_dto() for row in self.session.execute(query).scalars()]

    # Versioned rules ---------------------------------------------------------

    def get_formula(self, formula_code: str, as_of: date) -> DeadlineFormula:
        rows = self.session.execute(
            select(DeadlineFormulaModel).where(DeadlineFormulaModel.formula_code == formula_code)
        ).scalars().all()
        row = _latest_covering(rows, as_of)
        if row is None:
            raise ReferenceDataNotFoundError("DeadlineFormula", f"{formula_code}@{as_of}")
        return row.to_dto()

    def get_penalty_rule(self, rule_code: str, as_of: date) -> PenaltyRule:
        rows = self.session.execute(
            select(PenaltyRuleModel).where(PenaltyRuleModel.rule_code == rule_code)
        ).scalars().all()
        row = _latest_covering(rows, as_of)
        if row is None:
            raise ReferenceDataNotFoundError("PenaltyRule", f"{rule_code}@{as_of}")
        return row.to_dto()

    def list_rule_codes(self, blueprint_id: UUID, as_of: date) -> list[str]:
        """Codes of active compliance rules of a blueprint in force at ``as_of``."""
        rows = self.session.execute(
            select(ComplianceRuleModel).where(
                ComplianceRuleModel.blueprint_id == blueprint_id,
                ComplianceRuleModel.is_active.is_(True),
            )
        ).scalars().all()
        codes = {
            r.rule_code for r in rows
            if covers(r.effective_from, r.effective_until, as_of)
        }
        return sorted(codes)

    def get_base_rule(self, rule_code: str, as_of: date) -> BaseRule:
        """Compliance rule joined with the formula and penalty versions in force."""
        rows = self.session.execute(
            select(ComplianceRuleModel).where(
                ComplianceRuleModel.rule_code == rule_code,
                ComplianceRuleModel.is_active.is_(True),
            )
        ).scalars().all()
        rule = _latest_covering(rows, as_of)
        if rule is None:
            raise ReferenceDataNotFoundError("ComplianceRule", f"{rule_code}@{as_of}")

        formula = self.get_formula(rule.formula_code, as_of)
        penalty = (
            self.get_penalty_rule(rule.penalty_rule_code, as_of)
            if rule.penalty_rule_code else None
        )
        return BaseRule(
            compliance_rule_id=rule.id,
            rule_code=rule.rule_code,
            version=rule.version,
            formula=formula,
            blueprint_id=rule.blueprint_id,
            period_type=PeriodType(rule.period_type),
            form_code=rule.form_code,
            penalty_rule=penalty,
            required_documents=tuple(rule.required_documents or ()),
        )

    def get_penalty_rule_by_id(self, penalty_rule_id: UUID) -> PenaltyRule:
        row = self.session.get(PenaltyRuleModel, penalty_rule_id)
        if row is None:
            raise ReferenceDataNotFoundError("PenaltyRule", str(penalty_rule_id))
        return row.to_dto()
