"""
Module: compliance_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the import surface for higher layers
    (compliance_services, compliance_batch).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import compliance_kernel.domain, compliance_kernel.db.types,
    compliance_kernel.exceptions and compliance_kernel.logging_config.
    MUST NOT import compliance_services or compliance_batch.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()`` or ``date.today()``.
      Callers pass the instant or local date explicitly.
    - Decimal-only arithmetic for money.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine entry points are wrapped in ``@traced_engine`` and emit
    COMPLIANCE_ENGINE_TRACE records with an input fingerprint and duration.

Usage:
    from compliance_engines import PenaltyCalculator, DeadlineFormulaResolver
    from compliance_engines.lifecycle import derive_status
"""

from compliance_kernel.logging_config import get_logger

logger = get_logger("engines")

from compliance_engines.deadlines import (
    BaseDateContext,
    DeadlineFormulaResolver,
    ResolvedDeadline,
    base_date_for,
    nominal_due_date,
)
from compliance_engines.holidays import HolidayCalendarResolver
from compliance_engines.lifecycle import (
    ENTRY_TRANSITIONS,
    StatusEvaluation,
    assert_transition,
    can_transition,
    derive_status,
    evaluate_extension,
    evaluate_status,
    next_status,
)
from compliance_engines.notifications import (
    NotificationPriority,
    NotificationScheduler,
    NotificationTrigger,
    NotificationType,
)
from compliance_engines.overrides import (
    JurisdictionRuleResolver,
    OverrideCandidate,
    compare_overrides,
    matches_applies_when,
)
from compliance_engines.penalty import (
    PenaltyCalculator,
    compute_liability,
    validate_penalty_rule,
)
from compliance_engines.periods import (
    add_months,
    fiscal_year_label,
    period_containing,
    periods_between,
    transaction_period,
)
from compliance_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "BaseDateContext",
    "DeadlineFormulaResolver",
    "ENTRY_TRANSITIONS",
    "HolidayCalendarResolver",
    "JurisdictionRuleResolver",
    "NotificationPriority",
    "NotificationScheduler",
    "NotificationTrigger",
    "NotificationType",
    "OverrideCandidate",
    "PenaltyCalculator",
    "ResolvedDeadline",
    "StatusEvaluation",
    "add_months",
    "assert_transition",
    "base_date_for",
    "can_transition",
    "compare_overrides",
    "compute_input_fingerprint",
    "compute_liability",
    "derive_status",
    "evaluate_extension",
    "evaluate_status",
    "fiscal_year_label",
    "matches_applies_when",
    "next_status",
    "nominal_due_date",
    "period_containing",
    "periods_between",
    "traced_engine",
    "transaction_period",
    "validate_penalty_rule",
]
