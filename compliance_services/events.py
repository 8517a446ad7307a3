"""
compliance_services.events -- Domain events: outbox write plus in-process dispatch.

Responsibility:
    Records every status transition, liability change, supersession,
    extension, and notification trigger as a ``compliance_events`` row in
    the caller's transaction, then hands the event to in-process
    subscribers.

Architecture position:
    Services -- imperative shell.  Flushes, never commits.

Invariants enforced:
    - The outbox row is added before subscribers run; a failing subscriber
      never prevents the row from being written.
    - A subscriber exception is logged (``event_subscriber_failed``) and
      swallowed so one bad consumer cannot stall a pass.

Audit relevance:
    The outbox is the durable history of every lifecycle change;
    delivery channels (email, SMS, WhatsApp) consume it downstream.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from compliance_kernel.db.base import SYSTEM_ACTOR_ID
from compliance_kernel.logging_config import LogContext, get_logger
from compliance_kernel.models.event import ComplianceEventModel

logger = get_logger("services.events")


class EventType:
    ENTRY_CREATED = "entry.created"
    ENTRY_SUPERSEDED = "entry.superseded"
    ENTRY_STATUS_CHANGED = "entry.status_changed"
    ENTRY_PENALTY_ACCRUED = "entry.penalty_accrued"
    ENTRY_EXTENSION_GRANTED = "entry.extension_granted"
    NOTIFICATION_TRIGGERED = "notification.triggered"


@dataclass(frozen=True)
class DomainEvent:
    event_type: str
    aggregate_id: UUID
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    correlation_id: str | None = None
    event_id: UUID = field(default_factory=uuid4)


Subscriber = Callable[[DomainEvent], None]

WILDCARD = "*"


class EventBus:
    """In-process subscriber registry shared by every publisher."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscriber]] = {}

    def subscribe(self, event_type: str, handler: Subscriber) -> None:
        """Register ``handler`` for ``event_type`` (or ``"*"`` for all)."""
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: str, handler: Subscriber) -> None:
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def handlers_for(self, event_type: str) -> list[Subscriber]:
        with self._lock:
            return [
                *self._subscribers.get(event_type, ()),
                *self._subscribers.get(WILDCARD, ()),
            ]

    def dispatch(self, event: DomainEvent) -> None:
        for handler in self.handlers_for(event.event_type):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "event_subscriber_failed",
                    extra={
                        "event_type": event.event_type,
                        "aggregate_id": str(event.aggregate_id),
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                    },
                )


class EventPublisher:
    """
    Writes outbox rows in the caller's session and dispatches to the bus.

    Contract:
        ``publish`` adds a ComplianceEventModel and flushes nothing itself;
        the owning service flushes with the entry mutation.
    """

    def __init__(
        self,
        session: Session,
        bus: EventBus | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ):
        self._session = session
        self._bus = bus or EventBus()
        self._actor_id = actor_id

    @property
    def bus(self) -> EventBus:
        return self._bus

    def publish(
        self,
        event_type: str,
        aggregate_id: UUID,
        occurred_at: datetime,
        payload: dict[str, Any] | None = None,
    ) -> DomainEvent:
        event = DomainEvent(
            event_type=event_type,
            aggregate_id=aggregate_id,
            occurred_at=occurred_at,
            payload=dict(payload or {}),
            correlation_id=LogContext.get_all().get("correlation_id"),
        )
        self._session.add(ComplianceEventModel(
            id=event.event_id,
            event_type=event.event_type,
            aggregate_id=event.aggregate_id,
            payload=event.payload,
            occurred_at=event.occurred_at,
            correlation_id=event.correlation_id,
            created_by_id=self._actor_id,
        ))
        logger.debug(
            "domain_event_published",
            extra={"event_type": event_type, "aggregate_id": str(aggregate_id)},
        )
        self._bus.dispatch(event)
        return event
