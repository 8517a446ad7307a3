"""
compliance_engines.notifications -- Reminder and escalation triggers.

Responsibility:
    Decides which notification triggers a calendar entry should emit on a
    given local date.  Emits triggers only; delivery belongs to whatever
    consumes the ``notification.triggered`` events.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Each trigger key fires at most once per entry (``already_sent``).
    - A late tick fires only the smallest reached reminder offset; larger
      offsets skipped in the same tick are marked sent with it.
    - Terminal entries never trigger.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable
from uuid import UUID

from compliance_kernel.domain.settings import EngineSettings
from compliance_kernel.domain.types import CalendarEntry, TERMINAL_STATUSES

ALL_CHANNELS: tuple[str, ...] = ("email", "sms", "whatsapp", "in_app")
DIGEST_CHANNELS: tuple[str, ...] = ("email", "in_app")

OVERDUE_KEY = "overdue"
CRITICAL_OVERDUE_KEY = "critical_overdue"
ADMIN_ESCALATION_KEY = "admin_escalation"


def reminder_key(offset: int) -> str:
    return f"reminder:{offset}"


def without_reminders(sent: Iterable[str]) -> list[str]:
    """Sent keys minus reminders, for an entry whose due date has moved."""
    return [key for key in sent if not key.startswith("reminder:")]


class NotificationType(str, Enum):
    COMPLIANCE_REMINDER = "COMPLIANCE_REMINDER"
    COMPLIANCE_DUE_TOMORROW = "COMPLIANCE_DUE_TOMORROW"
    COMPLIANCE_DUE_TODAY = "COMPLIANCE_DUE_TODAY"
    COMPLIANCE_OVERDUE = "COMPLIANCE_OVERDUE"
    COMPLIANCE_CRITICAL_OVERDUE = "COMPLIANCE_CRITICAL_OVERDUE"
    COMPLIANCE_ADMIN_ESCALATION = "COMPLIANCE_ADMIN_ESCALATION"


class NotificationPriority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


@dataclass(frozen=True)
class NotificationTrigger:
    """One notification the entry should emit now."""

    entry_id: UUID
    key: str
    notification_type: NotificationType
    priority: NotificationPriority
    channels: tuple[str, ...]
    audience: str  # client, relationship_manager or admin
    due_date: date
    days_until_due: int
    days_overdue: int = 0
    # Keys this trigger marks sent, its own key included.
    marks_sent: tuple[str, ...] = ()

    def to_payload(self) -> dict:
        return {
            "entry_id": str(self.entry_id),
            "key": self.key,
            "notification_type": self.notification_type.value,
            "priority": self.priority.value,
            "channels": list(self.channels),
            "audience": self.audience,
            "due_date": self.due_date.isoformat(),
            "days_until_due": self.days_until_due,
            "days_overdue": self.days_overdue,
        }


class NotificationScheduler:
    """
    Reminder / escalation trigger evaluation.

    Contract:
        ``evaluate(entry, today, already_sent)`` returns the triggers due
        on ``today`` (the jurisdiction-local date).  The caller persists
        every key in each trigger's ``marks_sent``.

    Non-goals:
        No delivery, no templating, no recipient lookup.
    """

    def __init__(
        self,
        offsets: Iterable[int] = (7, 3, 1, 0),
        escalation_days: int = 7,
        admin_escalation_days: int = 15,
    ):
        self._offsets = tuple(sorted(set(offsets), reverse=True))
        self._escalation_days = escalation_days
        self._admin_escalation_days = admin_escalation_days

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> NotificationScheduler:
        return cls(
            offsets=settings.notification_offsets,
            escalation_days=settings.escalation_days,
            admin_escalation_days=settings.admin_escalation_days,
        )

    def evaluate(
        self,
        entry: CalendarEntry,
        today: date,
        already_sent: Iterable[str] = (),
    ) -> tuple[NotificationTrigger, ...]:
        if entry.status in TERMINAL_STATUSES:
            return ()
        due = entry.effective_due_date
        if due is None:
            return ()

        sent = set(already_sent)
        days_left = (due - today).days
        pending_reminders = [
            reminder_key(o) for o in self._offsets
            if o >= days_left and reminder_key(o) not in sent
        ]

        if days_left >= 0:
            reached = [o for o in self._offsets if o >= days_left]
            if not reached:
                return ()
            smallest = min(reached)
            if reminder_key(smallest) in sent:
                return ()
            return (self._reminder(entry, due, smallest, days_left, tuple(pending_reminders)),)

        overdue = -days_left
        triggers: list[NotificationTrigger] = []
        if OVERDUE_KEY not in sent:
            triggers.append(NotificationTrigger(
                entry_id=entry.entry_id,
                key=OVERDUE_KEY,
                notification_type=NotificationType.COMPLIANCE_OVERDUE,
                priority=NotificationPriority.URGENT,
                channels=ALL_CHANNELS,
                audience="client",
                due_date=due,
                days_until_due=days_left,
                days_overdue=overdue,
                marks_sent=(OVERDUE_KEY, *pending_reminders),
            ))
        if overdue > self._escalation_days and CRITICAL_OVERDUE_KEY not in sent:
            triggers.append(NotificationTrigger(
                entry_id=entry.entry_id,
                key=CRITICAL_OVERDUE_KEY,
                notification_type=NotificationType.COMPLIANCE_CRITICAL_OVERDUE,
                priority=NotificationPriority.URGENT,
                channels=DIGEST_CHANNELS,
                audience="relationship_manager",
                due_date=due,
                days_until_due=days_left,
                days_overdue=overdue,
                marks_sent=(CRITICAL_OVERDUE_KEY,),
            ))
        if overdue > self._admin_escalation_days and ADMIN_ESCALATION_KEY not in sent:
            triggers.append(NotificationTrigger(
                entry_id=entry.entry_id,
                key=ADMIN_ESCALATION_KEY,
                notification_type=NotificationType.COMPLIANCE_ADMIN_ESCALATION,
                priority=NotificationPriority.URGENT,
                channels=DIGEST_CHANNELS,
                audience="admin",
                due_date=due,
                days_until_due=days_left,
                days_overdue=overdue,
                marks_sent=(ADMIN_ESCALATION_KEY,),
            ))
        return tuple(triggers)

    @staticmethod
    def _reminder(
        entry: CalendarEntry,
        due: date,
        offset: int,
        days_left: int,
        marks_sent: tuple[str, ...],
    ) -> NotificationTrigger:
        if offset == 0:
            kind = NotificationType.COMPLIANCE_DUE_TODAY
        elif offset == 1:
            kind = NotificationType.COMPLIANCE_DUE_TOMORROW
        else:
            kind = NotificationType.COMPLIANCE_REMINDER

        if offset == 0:
            priority = NotificationPriority.URGENT
        elif offset <= 3:
            priority = NotificationPriority.HIGH
        else:
            priority = NotificationPriority.NORMAL

        return NotificationTrigger(
            entry_id=entry.entry_id,
            key=reminder_key(offset),
            notification_type=kind,
            priority=priority,
            channels=ALL_CHANNELS if offset <= 1 else DIGEST_CHANNELS,
            audience="client",
            due_date=due,
            days_until_due=days_left,
            marks_sent=marks_sent,
        )
