"""
ORM models for blueprints, compliance rules, deadline formulas, penalty
rules, and jurisdiction override rules.

Contract:
    Formulas, penalty rules and compliance rules are versioned, append-only
    records: a regulatory change inserts a new ``version`` row with its own
    effective window, never an UPDATE.  Consumers resolve "what applied"
    through ``effective_from`` / ``effective_until`` at generation time.

Invariants enforced:
    - (formula_code, version), (rule_code, version) are UNIQUE.
    - Penalty slabs are stored as JSON and validated by the penalty engine.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import TrackedBase, UUIDString
from compliance_kernel.db.types import to_decimal
from compliance_kernel.domain.types import (
    AdjustmentRule,
    BaseDateType,
    Blueprint,
    CompoundingFrequency,
    DeadlineFormula,
    JurisdictionOverride,
    OverrideType,
    PenaltyRule,
    PenaltySlab,
    PenaltyType,
    PeriodType,
    SlabMode,
)


def covers(effective_from: date | None, effective_until: date | None, as_of: date) -> bool:
    """True if ``as_of`` falls inside an inclusive, possibly open, window."""
    if effective_from is not None and as_of < effective_from:
        return False
    if effective_until is not None and as_of > effective_until:
        return False
    return True


class BlueprintModel(TrackedBase):
    """Reusable obligation definition (what must be filed, for whom)."""

    __tablename__ = "blueprints"

    code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # Empty list = applicable to every entity type
    applicable_entity_types: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> Blueprint:
        return Blueprint(
            blueprint_id=self.id,
            code=self.code,
            name=self.name,
            applicable_entity_types=tuple(self.applicable_entity_types or ()),
        )


class DeadlineFormulaModel(TrackedBase):
    """Versioned due-date formula."""

    __tablename__ = "deadline_formulas"

    __table_args__ = (
        UniqueConstraint("formula_code", "version", name="uq_deadline_formula_code_version"),
    )

    formula_code: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    base_date_type: Mapped[str] = mapped_column(String(50), nullable=False)
    offset_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    offset_months: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    offset_years: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    adjustment_rule: Mapped[str] = mapped_column(
        String(50), nullable=False, default=AdjustmentRule.NONE.value,
    )
    exclude_weekends: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    exclude_holidays: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    effective_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    effective_until: Mapped[date | None] = mapped_column(Date, nullable=True)

    def to_dto(self) -> DeadlineFormula:
        return DeadlineFormula(
            formula_id=self.id,
            formula_code=self.formula_code,
            version=self.version,
            base_date_type=BaseDateType(self.base_date_type),
            offset_days=self.offset_days,
            offset_months=self.offset_months,
            offset_years=self.offset_years,
            adjustment_rule=AdjustmentRule(self.adjustment_rule),
            exclude_weekends=self.exclude_weekends,
            exclude_holidays=self.exclude_holidays,
            effective_from=self.effective_from,
            effective_until=self.effective_until,
        )


class PenaltyRuleModel(TrackedBase):
    """Versioned penalty / interest rule."""

    __tablename__ = "penalty_rules"

    __table_args__ = (
        UniqueConstraint("rule_code", "version", name="uq_penalty_rule_code_version"),
    )

    rule_code: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    penalty_type: Mapped[str] = mapped_column(String(50), nullable=False)
    flat_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    daily_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    interest_rate_annual: Mapped[Decimal | None] = mapped_column(Numeric(12, 6), nullable=True)
    compounding_frequency: Mapped[str | None] = mapped_column(String(20), nullable=True)
    # [{"from_day": 1, "to_day": 15, "amount": "50", "mode": "per_day"}]
    slabs: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    max_penalty: Mapped[Decimal | None] = mapped_column(nullable=True)
    max_penalty_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_penalty: Mapped[Decimal | None] = mapped_column(nullable=True)
    max_interest: Mapped[Decimal | None] = mapped_column(nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    legal_section: Mapped[str | None] = mapped_column(String(200), nullable=True)
    effective_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    effective_until: Mapped[date | None] = mapped_column(Date, nullable=True)

    def to_dto(self) -> PenaltyRule:
        return PenaltyRule(
            penalty_rule_id=self.id,
            rule_code=self.rule_code,
            version=self.version,
            penalty_type=PenaltyType(self.penalty_type),
            flat_amount=self.flat_amount,
            daily_amount=self.daily_amount,
            interest_rate_annual=self.interest_rate_annual,
            compounding_frequency=(
                CompoundingFrequency(self.compounding_frequency)
                if self.compounding_frequency else None
            ),
            slabs=tuple(
                PenaltySlab(
                    from_day=int(s["from_day"]),
                    to_day=int(s["to_day"]) if s.get("to_day") is not None else None,
                    amount=to_decimal(s["amount"]),
                    mode=SlabMode(s.get("mode", SlabMode.PER_DAY.value)),
                )
                for s in (self.slabs or [])
            ),
            max_penalty=self.max_penalty,
            max_penalty_days=self.max_penalty_days,
            min_penalty=self.min_penalty,
            max_interest=self.max_interest,
            currency=self.currency,
            legal_section=self.legal_section,
            effective_from=self.effective_from,
            effective_until=self.effective_until,
        )

    @staticmethod
    def slabs_payload(slabs: tuple[PenaltySlab, ...]) -> list[dict[str, Any]]:
        return [
            {
                "from_day": s.from_day,
                "to_day": s.to_day,
                "amount": str(s.amount),
                "mode": s.mode.value,
            }
            for s in slabs
        ]


class ComplianceRuleModel(TrackedBase):
    """Versioned obligation rule linking a blueprint to formula and penalty codes."""

    __tablename__ = "compliance_rules"

    __table_args__ = (
        UniqueConstraint("rule_code", "version", name="uq_compliance_rule_code_version"),
        Index("ix_compliance_rules_blueprint", "blueprint_id"),
    )

    rule_code: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    blueprint_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("blueprints.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    form_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    period_type: Mapped[str] = mapped_column(String(20), nullable=False, default=PeriodType.MONTHLY.value)
    formula_code: Mapped[str] = mapped_column(String(100), nullable=False)
    penalty_rule_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    required_documents: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    effective_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    effective_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class JurisdictionRuleModel(TrackedBase):
    """Jurisdiction-level override of a base compliance rule."""

    __tablename__ = "jurisdiction_rules"

    __table_args__ = (
        Index("ix_jurisdiction_rules_jurisdiction", "jurisdiction_id", "is_active"),
    )

    jurisdiction_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("jurisdictions.id"), nullable=False,
    )
    blueprint_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("blueprints.id"), nullable=True,
    )
    rule_type: Mapped[str] = mapped_column(String(50), nullable=False)
    applies_when: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deadline_offset_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rate_override: Mapped[Decimal | None] = mapped_column(Numeric(12, 6), nullable=True)
    form_override: Mapped[str | None] = mapped_column(String(50), nullable=True)
    additional_documents: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> JurisdictionOverride:
        return JurisdictionOverride(
            override_id=self.id,
            jurisdiction_id=self.jurisdiction_id,
            rule_type=OverrideType(self.rule_type),
            effective_from=self.effective_from,
            priority=self.priority,
            blueprint_id=self.blueprint_id,
            applies_when=dict(self.applies_when or {}),
            effective_until=self.effective_until,
            is_active=self.is_active,
            deadline_offset_days=self.deadline_offset_days,
            rate_override=self.rate_override,
            form_override=self.form_override,
            additional_documents=tuple(self.additional_documents or ()),
            reason=self.reason,
        )
