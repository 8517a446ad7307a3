"""
Typed Exception Hierarchy for the Compliance Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Statutory deadlines and penalties are legally significant.  Callers must be
able to tell a missing predecessor filing (defer and retry next pass) from an
ambiguous override (data-integrity bug, fail loudly) without parsing messages.

Every exception:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA (not just a message string)

Example:
    try:
        service.file_compliance(entry_id, filed_date, "ARN-123")
    except EntryAlreadyCompletedError as e:
        api_response(code=e.code, entry=e.entry_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ComplianceEngineError (base)
    |
    +-- ConfigurationError
    |   +-- PenaltyConfigurationError
    |   +-- ReferenceDataNotFoundError
    |
    +-- MissingPredecessorError
    +-- AmbiguousOverrideError
    +-- ConcurrencyConflictError
    |
    +-- EntryError
    |   +-- EntryNotFoundError
    |   +-- EntryAlreadyCompletedError
    |   +-- InvalidTransitionError
    |
    +-- TaskNotRegisteredError

===============================================================================
RECOVERY
===============================================================================

   - ConfigurationError -> logged; weekend-only fallback where possible
   - MissingPredecessorError -> entry deferred, retried on next pass
   - AmbiguousOverrideError -> entry generation fails, never guessed
   - ConcurrencyConflictError -> caller reloads and retries

===============================================================================
"""


class ComplianceEngineError(Exception):
    """
    Base exception for all compliance engine errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "COMPLIANCE_ENGINE_ERROR"


# Configuration exceptions


class ConfigurationError(ComplianceEngineError):
    """Bad or missing holiday, formula, or rule data."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, subject: str | None = None):
        self.subject = subject
        super().__init__(message)


class PenaltyConfigurationError(ConfigurationError):
    """Penalty rule is malformed (slabs, caps, or missing amounts)."""

    code: str = "PENALTY_CONFIGURATION_ERROR"

    def __init__(self, rule_code: str, reason: str):
        self.rule_code = rule_code
        self.reason = reason
        super().__init__(
            f"Penalty rule {rule_code} is misconfigured: {reason}",
            subject=rule_code,
        )


class ReferenceDataNotFoundError(ConfigurationError):
    """A jurisdiction, blueprint, formula, or rule referenced by code is missing."""

    code: str = "REFERENCE_DATA_NOT_FOUND"

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}", subject=key)


# Generation exceptions


class MissingPredecessorError(ComplianceEngineError):
    """The previous period's entry is absent or has not been filed yet."""

    code: str = "MISSING_PREDECESSOR"

    def __init__(self, rule_code: str, period_code: str, predecessor_period: str | None):
        self.rule_code = rule_code
        self.period_code = period_code
        self.predecessor_period = predecessor_period
        super().__init__(
            f"Cannot compute {rule_code} {period_code}: predecessor "
            f"{predecessor_period or '<none>'} has no filing date"
        )


class AmbiguousOverrideError(ComplianceEngineError):
    """Two jurisdiction overrides tie on priority, level, and effective date."""

    code: str = "AMBIGUOUS_OVERRIDE"

    def __init__(self, rule_type: str, override_ids: list[str]):
        self.rule_type = rule_type
        self.override_ids = override_ids
        super().__init__(
            f"Ambiguous {rule_type} overrides (identical precedence): "
            f"{', '.join(override_ids)}"
        )


class ConcurrencyConflictError(ComplianceEngineError):
    """Optimistic version mismatch on a calendar entry mutation."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(
        self,
        entry_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entry_id = entry_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Calendar entry {entry_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


# Entry exceptions


class EntryError(ComplianceEngineError):
    """Base exception for calendar entry errors."""

    code: str = "ENTRY_ERROR"


class EntryNotFoundError(EntryError):
    """Calendar entry does not exist."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Calendar entry not found: {entry_id}")


class EntryAlreadyCompletedError(EntryError):
    """Filing was attempted on an entry that is already COMPLETED."""

    code: str = "ENTRY_ALREADY_COMPLETED"

    def __init__(self, entry_id: str, filed_date: str | None):
        self.entry_id = entry_id
        self.filed_date = filed_date
        super().__init__(
            f"Calendar entry {entry_id} was already filed on {filed_date}"
        )


class InvalidTransitionError(EntryError):
    """Requested status transition is not allowed from the current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entry_id: str, from_status: str, to_status: str):
        self.entry_id = entry_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Calendar entry {entry_id} cannot move from {from_status} to {to_status}"
        )


# Batch exceptions


class TaskNotRegisteredError(ComplianceEngineError):
    """Pass task type is not present in the task registry."""

    code: str = "TASK_NOT_REGISTERED"

    def __init__(self, task_type: str, available: tuple[str, ...] = ()):
        self.task_type = task_type
        self.available = available
        super().__init__(
            f"No pass task registered for '{task_type}'. "
            f"Available: {list(available)}"
        )
