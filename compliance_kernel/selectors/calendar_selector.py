"""
Module: compliance_kernel.selectors.calendar_selector
Responsibility: Read-only queries over compliance calendar entries: filtered
    listings, upcoming and overdue views, status counts with liability
    totals, and a per-client compliance score.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Superseded rows (``is_current=False``) are excluded unless asked for.
    - Money totals are Decimal sums of stored, already-rounded amounts.

Audit relevance:
    This is the read path consumers use instead of touching the table; the
    entries it returns carry the exact formula / penalty / rule version
    ids and override fingerprint that produced them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from compliance_kernel.db.types import round_money
from compliance_kernel.domain.types import CalendarEntry, ComplianceStatus
from compliance_kernel.models.calendar_entry import CalendarEntryModel
from compliance_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")

_OPEN_STATUSES = (
    ComplianceStatus.UPCOMING.value,
    ComplianceStatus.DUE_SOON.value,
    ComplianceStatus.DUE_TODAY.value,
    ComplianceStatus.OVERDUE.value,
)


@dataclass(frozen=True)
class DashboardStats:
    """Counts by status and liability totals over current entries."""

    total_entries: int
    by_status: dict[str, int] = field(default_factory=dict)
    total_penalty: Decimal = _ZERO
    total_interest: Decimal = _ZERO
    total_liability: Decimal = _ZERO


@dataclass(frozen=True)
class ClientComplianceSummary:
    client_id: UUID
    applicable_total: int
    completed: int
    overdue: int
    upcoming: int
    compliance_score: Decimal  # Percent of applicable entries completed
    total_liability: Decimal


class CalendarSelector(BaseSelector[CalendarEntryModel]):
    """
    Selector for calendar entries.

    Contract:
        Every method returns CalendarEntry DTOs or frozen summaries, ordered
        by effective due date then period code where a listing is returned.

    Non-goals:
        Does not recompute status; it reports what the last pass stored.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def get_entry(self, entry_id: UUID) -> CalendarEntry | None:
        row = self.session.get(CalendarEntryModel, entry_id)
        return row.to_dto() if row is not None else None

    def get_current_entry(
        self, client_id: UUID, entity_id: UUID, rule_code: str, period_code: str,
    ) -> CalendarEntry | None:
        row = self.session.execute(
            select(CalendarEntryModel).where(
                CalendarEntryModel.client_id == client_id,
                CalendarEntryModel.entity_id == entity_id,
                CalendarEntryModel.rule_code == rule_code,
                CalendarEntryModel.period_code == period_code,
                CalendarEntryModel.is_current.is_(True),
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def get_calendar_entries(
        self,
        client_id: UUID | None = None,
        entity_id: UUID | None = None,
        status: ComplianceStatus | None = None,
        period_from: date | None = None,
        period_to: date | None = None,
        include_superseded: bool = False,
    ) -> list[CalendarEntry]:
        """Filtered listing.  ``period_from`` / ``period_to`` bound the period end."""
        query = select(CalendarEntryModel)
        if client_id is not None:
            query = query.where(CalendarEntryModel.client_id == client_id)
        if entity_id is not None:
            query = query.where(CalendarEntryModel.entity_id == entity_id)
        if status is not None:
            query = query.where(CalendarEntryModel.status == status.value)
        if period_from is not None:
            query = query.where(CalendarEntryModel.period_end >= period_from)
        if period_to is not None:
            query = query.where(CalendarEntryModel.period_end <= period_to)
        if not include_superseded:
            query = query.where(CalendarEntryModel.is_current.is_(True))
        query = query.order_by(
            CalendarEntryModel.period_end,
            CalendarEntryModel.rule_code,
            CalendarEntryModel.entry_version,
        )
        entries = [row.to_dto() for row in self.session.execute(query).scalars()]
        return sorted(entries, key=_due_sort_key)

    def get_open_entry_ids(self, client_id: UUID | None = None) -> list[tuple[UUID, UUID]]:
        """(client_id, entry_id) for every current, non-terminal entry."""
        query = select(CalendarEntryModel.client_id, CalendarEntryModel.id).where(
            CalendarEntryModel.is_current.is_(True),
            CalendarEntryModel.status.in_(_OPEN_STATUSES),
        )
        if client_id is not None:
            query = query.where(CalendarEntryModel.client_id == client_id)
        query = query.order_by(CalendarEntryModel.client_id, CalendarEntryModel.id)
        return [(row[0], row[1]) for row in self.session.execute(query)]

    def get_upcoming_deadlines(
        self, client_id: UUID, today: date, days_ahead: int = 30,
    ) -> list[CalendarEntry]:
        """Open entries due between ``today`` and ``today + days_ahead``."""
        horizon = today + timedelta(days=days_ahead)
        rows = self.session.execute(
            select(CalendarEntryModel).where(
                CalendarEntryModel.client_id == client_id,
                CalendarEntryModel.is_current.is_(True),
                CalendarEntryModel.status.in_(_OPEN_STATUSES[:3]),
            )
        ).scalars()
        entries = [
            row.to_dto() for row in rows
        ]
        upcoming = [
            e for e in entries
            if e.effective_due_date is not None and today <= e.effective_due_date <= horizon
        ]
        return sorted(upcoming, key=_due_sort_key)

    def get_overdue_entries(self, client_id: UUID | None = None) -> list[CalendarEntry]:
        query = select(CalendarEntryModel).where(
            CalendarEntryModel.is_current.is_(True),
            CalendarEntryModel.status == ComplianceStatus.OVERDUE.value,
        )
        if client_id is not None:
            query = query.where(CalendarEntryModel.client_id == client_id)
        entries = [row.to_dto() for row in self.session.execute(query).scalars()]
        return sorted(entries, key=_due_sort_key)

    def get_dashboard_stats(self, client_id: UUID | None = None) -> DashboardStats:
        query = select(
            CalendarEntryModel.status,
            func.count(CalendarEntryModel.id),
        ).where(CalendarEntryModel.is_current.is_(True))
        if client_id is not None:
            query = query.where(CalendarEntryModel.client_id == client_id)
        query = query.group_by(CalendarEntryModel.status)
        by_status = {status: count for status, count in self.session.execute(query)}

        # Summed in Python so SQLite and PostgreSQL agree on Decimal results.
        amounts = select(
            CalendarEntryModel.penalty_amount,
            CalendarEntryModel.interest_amount,
            CalendarEntryModel.total_liability,
        ).where(CalendarEntryModel.is_current.is_(True))
        if client_id is not None:
            amounts = amounts.where(CalendarEntryModel.client_id == client_id)
        penalty = interest = total = _ZERO
        for row_penalty, row_interest, row_total in self.session.execute(amounts):
            penalty += row_penalty or _ZERO
            interest += row_interest or _ZERO
            total += row_total or _ZERO

        return DashboardStats(
            total_entries=sum(by_status.values()),
            by_status={s.value: by_status.get(s.value, 0) for s in ComplianceStatus},
            total_penalty=round_money(penalty),
            total_interest=round_money(interest),
            total_liability=round_money(total),
        )

    def get_client_compliance_summary(self, client_id: UUID) -> ClientComplianceSummary:
        """Score = completed / applicable x 100, two places.  NOT_APPLICABLE
        and EXEMPTED entries are not applicable."""
        stats = self.get_dashboard_stats(client_id)
        counts = stats.by_status
        applicable = (
            stats.total_entries
            - counts[ComplianceStatus.NOT_APPLICABLE.value]
            - counts[ComplianceStatus.EXEMPTED.value]
        )
        completed = counts[ComplianceStatus.COMPLETED.value]
        if applicable > 0:
            score = round_money(Decimal(completed) * 100 / Decimal(applicable))
        else:
            score = round_money(_ZERO)
        return ClientComplianceSummary(
            client_id=client_id,
            applicable_total=applicable,
            completed=completed,
            overdue=counts[ComplianceStatus.OVERDUE.value],
            upcoming=(
                counts[ComplianceStatus.UPCOMING.value]
                + counts[ComplianceStatus.DUE_SOON.value]
                + counts[ComplianceStatus.DUE_TODAY.value]
            ),
            compliance_score=score,
            total_liability=stats.total_liability,
        )


def _due_sort_key(entry: CalendarEntry) -> tuple:
    due = entry.effective_due_date or entry.period_end
    return (due, entry.period_code, entry.rule_code, entry.entry_version)
