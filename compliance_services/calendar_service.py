"""
compliance_services.calendar_service -- Compliance calendar generation and commands.

Responsibility:
    Materializes calendar entries for subscriptions (one per rule and
    period), re-evaluates their lifecycle status and liability on each
    tick, and exposes the filing, extension and tax-liability commands.
    This service is the only writer of ``compliance_calendar_entries``.

Architecture position:
    Services -- imperative shell.  Reads through ReferenceSelector and
    CalendarSelector, computes with the pure engines, flushes through the
    caller's session.  Never commits.

Invariants enforced:
    - Generation is idempotent per (client, entity, rule_code, period_code).
      A changed formula / penalty / rule version or override fingerprint
      supersedes a non-terminal entry with ``entry_version + 1``; the old
      row stays, flagged ``is_current=False``.  COMPLETED entries are never
      superseded.
    - EXEMPTED / NOT_APPLICABLE are assigned only at generation time.
    - Re-evaluation overwrites days overdue and liability (never
      accumulates) and writes the row only when something changed.
    - A liability error keeps the last values and sets
      ``liability_warning``.
    - Optimistic concurrency: ``expected_version`` mismatches and
      StaleDataError surface as ConcurrencyConflictError.

Failure modes:
    - MissingPredecessorError -> entry deferred (generation outcome).
    - AmbiguousOverrideError / ConfigurationError -> that entry fails,
      logged at ERROR; the rest of the subscription proceeds.
    - EntryNotFoundError, EntryAlreadyCompletedError,
      InvalidTransitionError, ConcurrencyConflictError from commands.

Audit relevance:
    Every entry records the rule, formula and penalty version ids plus the
    override fingerprint that produced it; every change is published to
    the event outbox.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from compliance_kernel.db.base import SYSTEM_ACTOR_ID
from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.settings import EngineSettings
from compliance_kernel.domain.types import (
    BaseDateType,
    BaseRule,
    Blueprint,
    BusinessEntity,
    CalendarEntry,
    ComplianceStatus,
    CompliancePeriod,
    LiabilityBreakdown,
    PeriodType,
    ServiceSubscription,
)
from compliance_kernel.exceptions import (
    AmbiguousOverrideError,
    ComplianceEngineError,
    ConcurrencyConflictError,
    ConfigurationError,
    EntryAlreadyCompletedError,
    EntryNotFoundError,
    InvalidTransitionError,
    MissingPredecessorError,
)
from compliance_kernel.logging_config import LogContext, get_logger
from compliance_kernel.models.calendar_entry import CalendarEntryModel
from compliance_kernel.selectors.calendar_selector import CalendarSelector
from compliance_kernel.selectors.reference_selector import ReferenceSelector
from compliance_engines.deadlines import BaseDateContext, DeadlineFormulaResolver, base_date_for
from compliance_engines.holidays import HolidayCalendarResolver
from compliance_engines.lifecycle import (
    assert_transition,
    days_overdue,
    evaluate_extension,
    evaluate_status,
    local_today,
)
from compliance_engines.notifications import NotificationScheduler, without_reminders
from compliance_engines.overrides import JurisdictionRuleResolver
from compliance_engines.penalty import PenaltyCalculator
from compliance_engines.periods import (
    one_time_period,
    periods_between,
    previous_period,
    transaction_period,
)
from compliance_services.events import EventPublisher, EventType

logger = get_logger("services.calendar")

_ZERO = Decimal("0")


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class DeferredEntry:
    rule_code: str
    period_code: str
    reason: str


@dataclass(frozen=True)
class FailedEntry:
    rule_code: str
    period_code: str
    error_code: str
    message: str


@dataclass
class GenerationOutcome:
    """What one generation run did, entry by entry."""

    created: list[UUID] = field(default_factory=list)
    superseded: list[UUID] = field(default_factory=list)
    unchanged: list[UUID] = field(default_factory=list)
    deferred: list[DeferredEntry] = field(default_factory=list)
    failed: list[FailedEntry] = field(default_factory=list)

    def merge(self, other: GenerationOutcome) -> None:
        self.created.extend(other.created)
        self.superseded.extend(other.superseded)
        self.unchanged.extend(other.unchanged)
        self.deferred.extend(other.deferred)
        self.failed.extend(other.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": len(self.created),
            "superseded": len(self.superseded),
            "unchanged": len(self.unchanged),
            "deferred": len(self.deferred),
            "failed": len(self.failed),
        }


@dataclass(frozen=True)
class ReevaluationResult:
    entry_id: UUID
    changed: bool
    previous_status: ComplianceStatus
    status: ComplianceStatus
    days_overdue: int
    total_liability: Decimal
    triggered: tuple[str, ...] = ()


@dataclass(frozen=True)
class _EntryPlan:
    """Everything generation decides about one (rule, period) before writing."""

    rule_code: str
    status: ComplianceStatus
    status_reason: str | None
    compliance_rule_id: UUID
    formula_id: UUID | None
    penalty_rule_id: UUID | None
    interest_rate_override: Decimal | None
    fingerprint: str
    form_code: str | None
    required_documents: tuple[str, ...]
    original_due_date: date | None = None
    adjusted_due_date: date | None = None
    calendar_warning: str | None = None

    def identity(self) -> tuple:
        return (self.compliance_rule_id, self.formula_id, self.penalty_rule_id, self.fingerprint)


# =============================================================================
# Service
# =============================================================================


class ComplianceCalendarService:
    """
    Calendar generator and entry command handler.

    Contract:
        Construct one per session (per worker in a pass).  All writes are
        flushed into the caller's transaction.

    Non-goals:
        Does not deliver notifications or commit transactions.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        publisher: EventPublisher | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()
        self._actor_id = actor_id
        self._publisher = publisher or EventPublisher(session, actor_id=actor_id)
        self._reference = ReferenceSelector(session)
        self._calendar = CalendarSelector(session)
        self._holidays = HolidayCalendarResolver(
            self._reference,
            max_iterations=self._settings.max_adjustment_iterations,
            ignore_optional=self._settings.ignore_optional_holidays,
        )
        self._deadlines = DeadlineFormulaResolver(self._holidays)
        self._overrides = JurisdictionRuleResolver(self._reference)
        self._penalty = PenaltyCalculator()
        self._notifications = NotificationScheduler.from_settings(self._settings)

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def generate_for_client(self, client_id: UUID, as_of: date | None = None) -> GenerationOutcome:
        outcome = GenerationOutcome()
        for subscription in self._reference.list_subscriptions(client_id):
            outcome.merge(self.generate_for_subscription(subscription.subscription_id, as_of))
        return outcome

    def generate_for_subscription(
        self, subscription_id: UUID, as_of: date | None = None,
    ) -> GenerationOutcome:
        """Materialize entries for every rule and period of a subscription.

        Periods are those ending between the subscription start and
        ``as_of + generation_horizon_days`` (not after the subscription end).
        """
        subscription = self._reference.get_subscription(subscription_id)
        outcome = GenerationOutcome()
        if not subscription.is_active:
            logger.info(
                "generation_skipped_inactive_subscription",
                extra={"subscription_id": str(subscription_id)},
            )
            return outcome

        entity = self._reference.get_entity(subscription.entity_id)
        blueprint = self._reference.get_blueprint(subscription.blueprint_id)
        if as_of is None:
            as_of = self._local_today(entity.jurisdiction_id)

        horizon_end = as_of + timedelta(days=self._settings.generation_horizon_days)
        if subscription.end_date is not None:
            horizon_end = min(horizon_end, subscription.end_date)

        with LogContext.bind(client_id=str(subscription.client_id)):
            for rule_code in self._reference.list_rule_codes(blueprint.blueprint_id, as_of):
                try:
                    base_rule = self._reference.get_base_rule(rule_code, as_of)
                except ConfigurationError as exc:
                    self._record_failure(outcome, rule_code, "*", exc)
                    continue

                for period in self._periods_for(base_rule, subscription, entity, horizon_end):
                    self._generate_one(
                        outcome, subscription, entity, blueprint, base_rule, period, as_of,
                    )

        logger.info(
            "calendar_generation_completed",
            extra={
                "subscription_id": str(subscription_id),
                "client_id": str(subscription.client_id),
                "as_of": as_of.isoformat(),
                **outcome.to_dict(),
            },
        )
        return outcome

    def generate_event_entry(
        self,
        subscription_id: UUID,
        rule_code: str,
        transaction_date: date,
        reference: str | None = None,
    ) -> CalendarEntry:
        """Materialize the ONE_TIME entry a transaction triggers.

        Raises the underlying error instead of recording it in an outcome.
        """
        subscription = self._reference.get_subscription(subscription_id)
        entity = self._reference.get_entity(subscription.entity_id)
        blueprint = self._reference.get_blueprint(subscription.blueprint_id)
        base_rule = self._reference.get_base_rule(rule_code, transaction_date)
        period = transaction_period(transaction_date, self._settings.fiscal_year_start_month)

        _, entry_id = self._materialize(
            subscription, entity, blueprint, base_rule, period, transaction_date,
            transaction_date=transaction_date,
        )
        logger.info(
            "event_entry_generated",
            extra={
                "entry_id": str(entry_id),
                "rule_code": rule_code,
                "transaction_date": transaction_date.isoformat(),
                "reference": reference,
            },
        )
        return self._load_row(entry_id).to_dto()

    def _periods_for(
        self,
        base_rule: BaseRule,
        subscription: ServiceSubscription,
        entity: BusinessEntity,
        horizon_end: date,
    ) -> list[CompliancePeriod]:
        start_month = self._settings.fiscal_year_start_month
        if base_rule.period_type == PeriodType.ONE_TIME:
            if base_rule.formula.base_date_type == BaseDateType.TRANSACTION_DATE:
                return []  # Event-driven; see generate_event_entry
            anchor = entity.registration_date or subscription.start_date
            return [one_time_period(anchor, start_month=start_month)]
        return periods_between(
            base_rule.period_type, subscription.start_date, horizon_end, start_month,
        )

    def _generate_one(
        self,
        outcome: GenerationOutcome,
        subscription: ServiceSubscription,
        entity: BusinessEntity,
        blueprint: Blueprint,
        base_rule: BaseRule,
        period: CompliancePeriod,
        as_of: date,
    ) -> None:
        try:
            result, entry_id = self._materialize(
                subscription, entity, blueprint, base_rule, period, as_of,
            )
        except MissingPredecessorError as exc:
            logger.info(
                "entry_generation_deferred",
                extra={
                    "rule_code": base_rule.rule_code,
                    "period_code": period.period_code,
                    "predecessor_period": exc.predecessor_period,
                },
            )
            outcome.deferred.append(DeferredEntry(base_rule.rule_code, period.period_code, str(exc)))
            return
        except (AmbiguousOverrideError, ConfigurationError) as exc:
            self._record_failure(outcome, base_rule.rule_code, period.period_code, exc)
            return

        getattr(outcome, result).append(entry_id)

    def _record_failure(
        self,
        outcome: GenerationOutcome,
        rule_code: str,
        period_code: str,
        exc: ComplianceEngineError,
    ) -> None:
        logger.error(
            "entry_generation_failed",
            extra={
                "rule_code": rule_code,
                "period_code": period_code,
                "error_code": exc.code,
                "error": str(exc),
            },
        )
        outcome.failed.append(FailedEntry(rule_code, period_code, exc.code, str(exc)))

    def _materialize(
        self,
        subscription: ServiceSubscription,
        entity: BusinessEntity,
        blueprint: Blueprint,
        base_rule: BaseRule,
        period: CompliancePeriod,
        as_of: date,
        transaction_date: date | None = None,
    ) -> tuple[str, UUID]:
        """Create, supersede, or keep the entry for one (rule, period).

        Returns ("created" | "superseded" | "unchanged", current entry id).
        """
        existing = self._current_row(
            subscription.client_id, entity.entity_id, base_rule.rule_code, period.period_code,
        )
        if existing is not None and ComplianceStatus(existing.status).is_terminal:
            return "unchanged", existing.id

        plan = self._plan_entry(
            entity, blueprint, base_rule, period, as_of, transaction_date,
            subscription_start=subscription.start_date,
        )

        if existing is not None:
            current = (
                existing.compliance_rule_id,
                existing.formula_id,
                existing.penalty_rule_id,
                existing.override_fingerprint,
            )
            if current == plan.identity():
                return "unchanged", existing.id

        row = self._insert_entry(subscription, entity, period, plan, previous=existing)
        now = self._clock.now()

        if existing is not None:
            existing.is_current = False
            existing.superseded_by_id = row.id
            existing.updated_by_id = self._actor_id
            self._flush(existing.id)
            self._publisher.publish(
                EventType.ENTRY_SUPERSEDED, existing.id, now,
                {
                    "superseded_by_id": str(row.id),
                    "rule_code": base_rule.rule_code,
                    "period_code": period.period_code,
                    "previous_version": existing.entry_version,
                    "new_version": row.entry_version,
                },
            )
            logger.info(
                "entry_superseded",
                extra={
                    "entry_id": str(existing.id),
                    "superseded_by_id": str(row.id),
                    "rule_code": base_rule.rule_code,
                    "period_code": period.period_code,
                },
            )

        self._publisher.publish(
            EventType.ENTRY_CREATED, row.id, now,
            {
                "rule_code": row.rule_code,
                "period_code": row.period_code,
                "status": row.status,
                "adjusted_due_date": (
                    row.adjusted_due_date.isoformat() if row.adjusted_due_date else None
                ),
                "entry_version": row.entry_version,
            },
        )
        return ("superseded" if existing is not None else "created"), row.id

    def _plan_entry(
        self,
        entity: BusinessEntity,
        blueprint: Blueprint,
        base_rule: BaseRule,
        period: CompliancePeriod,
        as_of: date,
        transaction_date: date | None,
        subscription_start: date | None = None,
    ) -> _EntryPlan:
        penalty = base_rule.penalty_rule
        if not blueprint.applies_to(entity.entity_type):
            return _EntryPlan(
                rule_code=base_rule.rule_code,
                status=ComplianceStatus.NOT_APPLICABLE,
                status_reason=f"Blueprint {blueprint.code} does not apply to {entity.entity_type}",
                compliance_rule_id=base_rule.compliance_rule_id,
                formula_id=base_rule.formula.formula_id,
                penalty_rule_id=penalty.penalty_rule_id if penalty else None,
                interest_rate_override=None,
                fingerprint="not_applicable",
                form_code=base_rule.form_code,
                required_documents=base_rule.required_documents,
            )

        effective = self._overrides.effective_rule(
            base_rule=base_rule,
            entity_attributes=entity.attribute_view(),
            jurisdiction_id=entity.jurisdiction_id,
            as_of_date=as_of,
        )
        if effective.exempt:
            return _EntryPlan(
                rule_code=base_rule.rule_code,
                status=ComplianceStatus.EXEMPTED,
                status_reason=effective.exemption_reason or "Exempt by jurisdiction override",
                compliance_rule_id=base_rule.compliance_rule_id,
                formula_id=base_rule.formula.formula_id,
                penalty_rule_id=penalty.penalty_rule_id if penalty else None,
                interest_rate_override=None,
                fingerprint=effective.fingerprint,
                form_code=effective.form_code,
                required_documents=effective.required_documents,
            )

        context = BaseDateContext(
            rule_code=base_rule.rule_code,
            registration_date=entity.registration_date,
            transaction_date=transaction_date,
            fiscal_year_start_month=self._settings.fiscal_year_start_month,
        )
        if effective.formula.base_date_type == BaseDateType.PREVIOUS_FILING_DATE:
            prior = previous_period(period, self._settings.fiscal_year_start_month)
            prior_entry = (
                self._calendar.get_current_entry(
                    entity.client_id, entity.entity_id, base_rule.rule_code, prior.period_code,
                )
                if prior is not None else None
            )
            previous_filing = prior_entry.filed_date if prior_entry else None
            if prior is not None and subscription_start is not None and prior.period_end < subscription_start:
                # First period of the subscription: nothing earlier to chain from
                previous_filing = period.period_end
            context = BaseDateContext(
                rule_code=context.rule_code,
                registration_date=context.registration_date,
                transaction_date=context.transaction_date,
                previous_filing_date=previous_filing,
                previous_period_code=prior.period_code if prior else None,
                fiscal_year_start_month=context.fiscal_year_start_month,
            )

        base_date = base_date_for(effective.formula, period, context)
        resolved = self._deadlines.resolve(
            formula=effective.formula,
            base_date=base_date,
            jurisdiction_id=entity.jurisdiction_id,
        )

        warning = None
        if resolved.degraded:
            years = sorted({resolved.nominal_due.year, resolved.adjusted_due.year})
            warning = (
                f"No holiday calendar for {', '.join(str(y) for y in years)}; "
                f"due date adjusted for weekends only"
            )

        rate_override = None
        if (
            effective.penalty_rule is not None and penalty is not None
            and effective.penalty_rule.interest_rate_annual != penalty.interest_rate_annual
        ):
            rate_override = effective.penalty_rule.interest_rate_annual

        return _EntryPlan(
            rule_code=base_rule.rule_code,
            status=ComplianceStatus.UPCOMING,
            status_reason=None,
            compliance_rule_id=base_rule.compliance_rule_id,
            formula_id=effective.formula.formula_id,
            penalty_rule_id=penalty.penalty_rule_id if penalty else None,
            interest_rate_override=rate_override,
            fingerprint=effective.fingerprint,
            form_code=effective.form_code,
            required_documents=effective.required_documents,
            original_due_date=resolved.nominal_due,
            adjusted_due_date=resolved.adjusted_due,
            calendar_warning=warning,
        )

    def _insert_entry(
        self,
        subscription: ServiceSubscription,
        entity: BusinessEntity,
        period: CompliancePeriod,
        plan: _EntryPlan,
        previous: CalendarEntryModel | None,
    ) -> CalendarEntryModel:
        row = CalendarEntryModel(
            id=uuid4(),
            client_id=subscription.client_id,
            entity_id=entity.entity_id,
            blueprint_id=subscription.blueprint_id,
            compliance_rule_id=plan.compliance_rule_id,
            rule_code=plan.rule_code,
            jurisdiction_id=entity.jurisdiction_id,
            formula_id=plan.formula_id,
            penalty_rule_id=plan.penalty_rule_id,
            interest_rate_override=plan.interest_rate_override,
            period_type=period.period_type.value,
            period_code=period.period_code,
            period_start=period.period_start,
            period_end=period.period_end,
            fiscal_year=period.fiscal_year,
            original_due_date=plan.original_due_date,
            adjusted_due_date=plan.adjusted_due_date,
            status=plan.status.value,
            status_reason=plan.status_reason,
            days_overdue=0,
            penalty_amount=_ZERO,
            interest_amount=_ZERO,
            total_liability=_ZERO,
            penalty_paid=previous.penalty_paid if previous is not None else _ZERO,
            tax_liability=previous.tax_liability if previous is not None else None,
            tax_paid=previous.tax_paid if previous is not None else None,
            penalty_breakdown=[],
            form_code=plan.form_code,
            required_documents=list(plan.required_documents),
            notifications_sent=_carried_notifications(previous, plan.adjusted_due_date),
            calendar_warning=plan.calendar_warning,
            override_fingerprint=plan.fingerprint,
            entry_version=(previous.entry_version + 1) if previous is not None else 1,
            is_current=True,
            created_by_id=self._actor_id,
        )
        if previous is not None and previous.extended_due_date is not None:
            row.extended_due_date = previous.extended_due_date
            row.extension_reason = previous.extension_reason
        self._session.add(row)

        if not plan.status.is_terminal:
            evaluation = evaluate_status(
                plan.status,
                row.extended_due_date or row.adjusted_due_date,
                self._clock.now(),
                self._timezone(entity.jurisdiction_id),
                self._settings.due_soon_threshold_hours,
            )
            row.status = evaluation.status.value
            if evaluation.status == ComplianceStatus.OVERDUE:
                row.days_overdue = evaluation.days_overdue
                _apply(row, self._liability_values(row, evaluation.days_overdue))

        self._flush(row.id)
        logger.info(
            "entry_created",
            extra={
                "entry_id": str(row.id),
                "rule_code": row.rule_code,
                "period_code": row.period_code,
                "status": row.status,
                "adjusted_due_date": row.adjusted_due_date,
                "entry_version": row.entry_version,
            },
        )
        return row

    # -------------------------------------------------------------------------
    # Re-evaluation
    # -------------------------------------------------------------------------

    def reevaluate_entry(self, entry_id: UUID, now: datetime | None = None) -> ReevaluationResult:
        """One lifecycle tick: status, days overdue, liability, notifications.

        Values are computed first and written only if one of them differs,
        so repeated ticks at the same instant leave the row (and its
        ``row_version``) untouched.
        """
        row = self._load_row(entry_id)
        entry = row.to_dto()
        now = now or self._clock.now()
        unchanged = ReevaluationResult(
            entry_id=entry.entry_id,
            changed=False,
            previous_status=entry.status,
            status=entry.status,
            days_overdue=entry.days_overdue,
            total_liability=entry.total_liability,
        )

        due = entry.effective_due_date
        if entry.status.is_terminal or not entry.is_current or due is None:
            return unchanged

        with LogContext.bind(entry_id=str(entry_id), client_id=str(entry.client_id)):
            evaluation = evaluate_status(
                entry.status, due, now, self._timezone(entry.jurisdiction_id),
                self._settings.due_soon_threshold_hours,
            )
            updates: dict[str, Any] = {
                "status": evaluation.status.value,
                "days_overdue": evaluation.days_overdue,
            }
            if evaluation.status == ComplianceStatus.OVERDUE:
                updates.update(self._liability_values(row, evaluation.days_overdue))

            triggers = self._notifications.evaluate(
                replace(entry, status=evaluation.status),
                evaluation.local_today,
                entry.notifications_sent,
            )
            if triggers:
                sent = list(entry.notifications_sent)
                for trigger in triggers:
                    sent.extend(k for k in trigger.marks_sent if k not in sent)
                updates["notifications_sent"] = sent

            if not _differs(row, updates):
                return unchanged

            before = _snapshot(row)
            _apply(row, updates)
            row.last_evaluated_at = now
            row.updated_by_id = self._actor_id
            self._flush(entry_id)
            self._publish_changes(row, before, now)
            for trigger in triggers:
                self._publisher.publish(
                    EventType.NOTIFICATION_TRIGGERED, trigger.entry_id, now, trigger.to_payload(),
                )

            return ReevaluationResult(
                entry_id=entry.entry_id,
                changed=True,
                previous_status=entry.status,
                status=evaluation.status,
                days_overdue=row.days_overdue,
                total_liability=row.total_liability,
                triggered=tuple(t.key for t in triggers),
            )

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def file_compliance(
        self,
        entry_id: UUID,
        filed_date: date,
        filing_reference: str | None = None,
        expected_version: int | None = None,
    ) -> CalendarEntry:
        """Mark an entry COMPLETED; freezes days overdue and liability at filing."""
        row = self._load_row(entry_id)
        self._check_version(row, expected_version)
        status = ComplianceStatus(row.status)
        if status == ComplianceStatus.COMPLETED:
            raise EntryAlreadyCompletedError(
                str(entry_id), row.filed_date.isoformat() if row.filed_date else None,
            )
        if not row.is_current:
            raise InvalidTransitionError(str(entry_id), "superseded", ComplianceStatus.COMPLETED.value)
        assert_transition(entry_id, status, ComplianceStatus.COMPLETED)

        due = row.extended_due_date or row.adjusted_due_date
        frozen_days = days_overdue(due, filed_date) if due is not None else 0
        updates: dict[str, Any] = {
            "status": ComplianceStatus.COMPLETED.value,
            "filed_date": filed_date,
            "filing_reference": filing_reference,
            "days_overdue": frozen_days,
        }
        if frozen_days > 0:
            updates.update(self._liability_values(row, frozen_days))
        else:
            updates.update(self._zero_liability())

        now = self._clock.now()
        before = _snapshot(row)
        _apply(row, updates)
        row.updated_by_id = self._actor_id
        row.last_evaluated_at = now
        self._flush(entry_id)

        logger.info(
            "entry_filed",
            extra={
                "entry_id": str(entry_id),
                "filed_date": filed_date,
                "days_overdue": frozen_days,
                "total_liability": row.total_liability,
                "filing_reference": filing_reference,
            },
        )
        self._publish_changes(row, before, now)
        return row.to_dto()

    def grant_extension(
        self,
        entry_id: UUID,
        extended_due_date: date,
        reason: str,
        expected_version: int | None = None,
    ) -> CalendarEntry:
        """Move the effective due date and re-derive status against it.

        The one sanctioned backwards status move (e.g. OVERDUE -> UPCOMING).
        """
        row = self._load_row(entry_id)
        self._check_version(row, expected_version)
        status = ComplianceStatus(row.status)
        if status.is_terminal or not row.is_current:
            raise InvalidTransitionError(str(entry_id), status.value, "extension")
        if row.adjusted_due_date is not None and extended_due_date < row.adjusted_due_date:
            raise ValueError(
                f"Extended due date {extended_due_date} is before the adjusted "
                f"due date {row.adjusted_due_date}"
            )

        now = self._clock.now()
        evaluation = evaluate_extension(
            status, extended_due_date, now, self._timezone(row.jurisdiction_id),
            self._settings.due_soon_threshold_hours,
        )
        assert_transition(entry_id, status, evaluation.status, extension=True)

        updates: dict[str, Any] = {
            "extended_due_date": extended_due_date,
            "extension_reason": reason,
            "notifications_sent": without_reminders(row.notifications_sent or []),
            "status": evaluation.status.value,
            "days_overdue": evaluation.days_overdue,
        }
        if evaluation.status == ComplianceStatus.OVERDUE:
            updates.update(self._liability_values(row, evaluation.days_overdue))
        else:
            updates.update(self._zero_liability())

        before = _snapshot(row)
        _apply(row, updates)
        row.updated_by_id = self._actor_id
        row.last_evaluated_at = now
        self._flush(entry_id)

        logger.info(
            "entry_extension_granted",
            extra={
                "entry_id": str(entry_id),
                "extended_due_date": extended_due_date,
                "from_status": status.value,
                "to_status": row.status,
            },
        )
        self._publisher.publish(
            EventType.ENTRY_EXTENSION_GRANTED, row.id, now,
            {
                "extended_due_date": extended_due_date.isoformat(),
                "reason": reason,
                "transition": "extension",
                "from_status": status.value,
                "to_status": row.status,
            },
        )
        self._publish_changes(row, before, now)
        return row.to_dto()

    def record_tax_liability(
        self,
        entry_id: UUID,
        tax_liability: Decimal,
        tax_paid: Decimal | None = None,
        expected_version: int | None = None,
    ) -> CalendarEntry:
        """Set the interest principal inputs; recomputes liability if overdue."""
        row = self._load_row(entry_id)
        self._check_version(row, expected_version)
        if ComplianceStatus(row.status) == ComplianceStatus.COMPLETED:
            raise EntryAlreadyCompletedError(
                str(entry_id), row.filed_date.isoformat() if row.filed_date else None,
            )

        before = _snapshot(row)
        row.tax_liability = tax_liability
        row.tax_paid = tax_paid
        if ComplianceStatus(row.status) == ComplianceStatus.OVERDUE:
            _apply(row, self._liability_values(row, row.days_overdue))
        row.updated_by_id = self._actor_id
        self._flush(entry_id)
        self._publish_changes(row, before, self._clock.now())
        return row.to_dto()

    # -------------------------------------------------------------------------
    # Liability
    # -------------------------------------------------------------------------

    def _liability_values(self, row: CalendarEntryModel, days: int) -> dict[str, Any]:
        """Liability columns for ``days`` overdue.

        On a configuration error only ``liability_warning`` is returned, so
        the last known amounts stay in place.
        """
        if row.penalty_rule_id is None:
            return self._zero_liability()
        try:
            rule = self._reference.get_penalty_rule_by_id(row.penalty_rule_id)
            if row.interest_rate_override is not None:
                rule = replace(rule, interest_rate_annual=row.interest_rate_override)
            principal = None
            if row.tax_liability is not None:
                principal = row.tax_liability - (row.tax_paid or _ZERO)
            breakdown = self._penalty.compute_liability(
                penalty_rule=rule,
                days_overdue=days,
                base_tax_liability=principal,
            )
        except ConfigurationError as exc:
            logger.error(
                "liability_computation_failed",
                extra={
                    "entry_id": str(row.id),
                    "penalty_rule_id": str(row.penalty_rule_id),
                    "error_code": exc.code,
                    "error": str(exc),
                },
            )
            return {"liability_warning": str(exc)}
        return _breakdown_values(breakdown)

    def _zero_liability(self) -> dict[str, Any]:
        return _breakdown_values(LiabilityBreakdown.zero(self._settings.default_currency))

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def _publish_changes(self, row: CalendarEntryModel, before: dict[str, Any], now: datetime) -> None:
        if row.status != before["status"]:
            self._publisher.publish(
                EventType.ENTRY_STATUS_CHANGED, row.id, now,
                {
                    "old_status": before["status"],
                    "new_status": row.status,
                    "days_overdue": row.days_overdue,
                    "penalty": str(row.penalty_amount),
                    "interest": str(row.interest_amount),
                    "total_liability": str(row.total_liability),
                },
            )
            logger.info(
                "entry_status_changed",
                extra={
                    "entry_id": str(row.id),
                    "old_status": before["status"],
                    "new_status": row.status,
                },
            )
        if row.total_liability != before["total_liability"] and row.total_liability > _ZERO:
            self._publisher.publish(
                EventType.ENTRY_PENALTY_ACCRUED, row.id, now,
                {
                    "days_overdue": row.days_overdue,
                    "penalty": str(row.penalty_amount),
                    "interest": str(row.interest_amount),
                    "total": str(row.total_liability),
                    "lines": list(row.penalty_breakdown or []),
                },
            )
            logger.info(
                "entry_penalty_accrued",
                extra={
                    "entry_id": str(row.id),
                    "days_overdue": row.days_overdue,
                    "total_liability": row.total_liability,
                },
            )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _load_row(self, entry_id: UUID) -> CalendarEntryModel:
        row = self._session.get(CalendarEntryModel, entry_id)
        if row is None:
            raise EntryNotFoundError(str(entry_id))
        return row

    def _current_row(
        self, client_id: UUID, entity_id: UUID, rule_code: str, period_code: str,
    ) -> CalendarEntryModel | None:
        return self._session.execute(
            select(CalendarEntryModel).where(
                CalendarEntryModel.client_id == client_id,
                CalendarEntryModel.entity_id == entity_id,
                CalendarEntryModel.rule_code == rule_code,
                CalendarEntryModel.period_code == period_code,
                CalendarEntryModel.is_current.is_(True),
            )
        ).scalar_one_or_none()

    @staticmethod
    def _check_version(row: CalendarEntryModel, expected_version: int | None) -> None:
        if expected_version is not None and row.row_version != expected_version:
            raise ConcurrencyConflictError(str(row.id), expected_version, row.row_version)

    def _flush(self, entry_id: UUID) -> None:
        try:
            self._session.flush()
        except StaleDataError as exc:
            logger.warning("entry_concurrency_conflict", extra={"entry_id": str(entry_id)})
            raise ConcurrencyConflictError(str(entry_id)) from exc

    def _timezone(self, jurisdiction_id: UUID | None) -> str:
        if jurisdiction_id is None:
            return self._settings.default_timezone
        return self._holidays.jurisdiction(jurisdiction_id).timezone

    def _local_today(self, jurisdiction_id: UUID | None) -> date:
        return local_today(self._clock.now(), self._timezone(jurisdiction_id))


# =============================================================================
# Row helpers
# =============================================================================


def _breakdown_values(breakdown: LiabilityBreakdown) -> dict[str, Any]:
    return {
        "penalty_amount": breakdown.penalty,
        "interest_amount": breakdown.interest,
        "total_liability": breakdown.total,
        "penalty_breakdown": [line.to_payload() for line in breakdown.lines],
        "liability_warning": None,
    }


def _carried_notifications(
    previous: CalendarEntryModel | None, adjusted_due_date: date | None,
) -> list[str]:
    """Sent keys for a superseding row; reminders reset when the due date moves."""
    if previous is None:
        return []
    sent = list(previous.notifications_sent or [])
    if previous.extended_due_date is None and previous.adjusted_due_date != adjusted_due_date:
        return without_reminders(sent)
    return sent


def _apply(row: CalendarEntryModel, values: dict[str, Any]) -> None:
    for name, value in values.items():
        setattr(row, name, value)


def _line_key(line: dict[str, Any]) -> tuple:
    return (line.get("kind"), line.get("description"), Decimal(str(line.get("amount", "0"))))


def _differs(row: CalendarEntryModel, values: dict[str, Any]) -> bool:
    """True if any value differs from the row.  Decimals compare numerically."""
    for name, value in values.items():
        current = getattr(row, name)
        if name == "penalty_breakdown":
            if [_line_key(x) for x in current or ()] != [_line_key(x) for x in value]:
                return True
        elif name == "notifications_sent":
            if list(current or ()) != list(value):
                return True
        elif current != value:
            return True
    return False


def _snapshot(row: CalendarEntryModel) -> dict[str, Any]:
    return {"status": row.status, "total_liability": row.total_liability}
