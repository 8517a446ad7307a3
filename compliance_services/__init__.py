"""
compliance_services -- Package init and public API.

Responsibility:
    Stateful services that compose the pure engines (compliance_engines/)
    with database sessions, the injected clock, and the event outbox.  This
    is the only layer besides compliance_batch that holds sessions and
    writes calendar entries.

Architecture position:
    Services -- imperative shell over engines + kernel.

    Dependency direction:
        compliance_services/ -> compliance_engines/  (allowed)
        compliance_services/ -> compliance_kernel/   (allowed)
        compliance_engines/  -> compliance_services/ (FORBIDDEN)
        compliance_kernel/   -> compliance_services/ (FORBIDDEN)

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from compliance_kernel.logging_config import get_logger

logger = get_logger("services")

from compliance_services.calendar_service import (  # noqa: E402
    ComplianceCalendarService,
    DeferredEntry,
    FailedEntry,
    GenerationOutcome,
    ReevaluationResult,
)
from compliance_services.events import (  # noqa: E402
    DomainEvent,
    EventBus,
    EventPublisher,
    EventType,
)

__all__ = [
    "ComplianceCalendarService",
    "DeferredEntry",
    "DomainEvent",
    "EventBus",
    "EventPublisher",
    "EventType",
    "FailedEntry",
    "GenerationOutcome",
    "ReevaluationResult",
]
