"""
ORM model for materialized compliance calendar entries.

Contract:
    One row per (client, entity, rule_code, period_code, entry_version).
    Rows are never deleted.  A formula or rule change produces a new
    ``entry_version`` row and flags the previous one ``is_current=False``.

Invariants enforced:
    - Optimistic concurrency: ``row_version`` is the SQLAlchemy
      ``version_id_col``; a stale UPDATE raises StaleDataError, which the
      service layer translates into ConcurrencyConflictError.
    - Status is written only by ComplianceCalendarService (generation,
      re-evaluation, filing, extension).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
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
from compliance_kernel.db.types import as_aware_utc
from compliance_kernel.domain.types import CalendarEntry, ComplianceStatus, PeriodType


class CalendarEntryModel(TrackedBase):
    """Persistent compliance obligation instance."""

    __tablename__ = "compliance_calendar_entries"

    __table_args__ = (
        UniqueConstraint(
            "client_id", "entity_id", "rule_code", "period_code", "entry_version",
            name="uq_calendar_entry_period_version",
        ),
        Index("ix_calendar_entries_client_status", "client_id", "status"),
        Index("ix_calendar_entries_current_status", "is_current", "status"),
        Index("ix_calendar_entries_due", "adjusted_due_date"),
    )

    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("business_entities.id"), nullable=False,
    )
    blueprint_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("blueprints.id"), nullable=False,
    )
    compliance_rule_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("compliance_rules.id"), nullable=False,
    )
    rule_code: Mapped[str] = mapped_column(String(100), nullable=False)
    jurisdiction_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    formula_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    penalty_rule_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    # Rate from a RateOverride, applied over the penalty rule at evaluation
    interest_rate_override: Mapped[Decimal | None] = mapped_column(Numeric(12, 6), nullable=True)

    period_type: Mapped[str] = mapped_column(String(20), nullable=False)
    period_code: Mapped[str] = mapped_column(String(40), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    fiscal_year: Mapped[str] = mapped_column(String(10), nullable=False)

    # Nullable: EXEMPTED / NOT_APPLICABLE entries never compute a due date
    original_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    adjusted_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    extended_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    extension_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    # Why an entry is EXEMPTED or NOT_APPLICABLE
    status_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    filed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    filing_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)

    days_overdue: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    penalty_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    interest_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_liability: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    penalty_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_liability: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_paid: Mapped[Decimal | None] = mapped_column(nullable=True)
    penalty_breakdown: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    form_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    required_documents: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    notifications_sent: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    liability_warning: Mapped[str | None] = mapped_column(Text, nullable=True)
    calendar_warning: Mapped[str | None] = mapped_column(Text, nullable=True)
    override_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)

    entry_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    superseded_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    last_evaluated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    row_version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": row_version}

    def to_dto(self) -> CalendarEntry:
        return CalendarEntry(
            entry_id=self.id,
            client_id=self.client_id,
            entity_id=self.entity_id,
            blueprint_id=self.blueprint_id,
            compliance_rule_id=self.compliance_rule_id,
            rule_code=self.rule_code,
            period_type=PeriodType(self.period_type),
            period_code=self.period_code,
            period_start=self.period_start,
            period_end=self.period_end,
            fiscal_year=self.fiscal_year,
            status=ComplianceStatus(self.status),
            status_reason=self.status_reason,
            jurisdiction_id=self.jurisdiction_id,
            formula_id=self.formula_id,
            penalty_rule_id=self.penalty_rule_id,
            interest_rate_override=self.interest_rate_override,
            original_due_date=self.original_due_date,
            adjusted_due_date=self.adjusted_due_date,
            extended_due_date=self.extended_due_date,
            extension_reason=self.extension_reason,
            filed_date=self.filed_date,
            filing_reference=self.filing_reference,
            days_overdue=self.days_overdue,
            penalty_amount=self.penalty_amount,
            interest_amount=self.interest_amount,
            total_liability=self.total_liability,
            penalty_paid=self.penalty_paid,
            tax_liability=self.tax_liability,
            tax_paid=self.tax_paid,
            form_code=self.form_code,
            required_documents=tuple(self.required_documents or ()),
            penalty_breakdown=tuple(self.penalty_breakdown or ()),
            notifications_sent=tuple(self.notifications_sent or ()),
            liability_warning=self.liability_warning,
            calendar_warning=self.calendar_warning,
            override_fingerprint=self.override_fingerprint,
            entry_version=self.entry_version,
            is_current=self.is_current,
            superseded_by_id=self.superseded_by_id,
            row_version=self.row_version,
            last_evaluated_at=as_aware_utc(self.last_evaluated_at),
        )
