"""
Pass tasks: calendar generation and lifecycle re-evaluation.

Both wrap ComplianceCalendarService.  Items are partitioned by client so a
client's entries are always processed by one worker, in order.

Parameters (JSON, as persisted on the pass run):
    client_id   -- optional; restrict the pass to one client.
    as_of       -- optional ISO date; generation date (default: local today).
"""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from compliance_batch.domain.types import PassItemStatus
from compliance_batch.tasks.base import PassContext, PassItemInput, PassTaskResult
from compliance_kernel.selectors.calendar_selector import CalendarSelector
from compliance_kernel.selectors.reference_selector import ReferenceSelector
from compliance_services.calendar_service import ComplianceCalendarService
from compliance_services.events import EventPublisher

GENERATE_CALENDAR = "compliance.generate_calendar"
REEVALUATE_ENTRIES = "compliance.reevaluate_entries"


def _client_filter(parameters: dict[str, Any]) -> UUID | None:
    value = parameters.get("client_id")
    return UUID(str(value)) if value else None


def _calendar_service(session: Session, context: PassContext) -> ComplianceCalendarService:
    return ComplianceCalendarService(
        session,
        clock=context.clock,
        settings=context.settings,
        publisher=EventPublisher(session, bus=context.bus, actor_id=context.actor_id),
        actor_id=context.actor_id,
    )


class GenerateCalendarTask:
    """Generates missing calendar entries for every active subscription."""

    @property
    def task_type(self) -> str:
        return GENERATE_CALENDAR

    @property
    def description(self) -> str:
        return "Generate compliance calendar entries for active subscriptions"

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        context: PassContext,
    ) -> tuple[PassItemInput, ...]:
        subscriptions = ReferenceSelector(session).list_subscriptions(
            client_id=_client_filter(parameters),
        )
        return tuple(
            PassItemInput(
                item_index=i,
                item_key=str(sub.subscription_id),
                partition_key=str(sub.client_id),
                payload={"subscription_id": str(sub.subscription_id)},
            )
            for i, sub in enumerate(subscriptions)
        )

    def execute_item(
        self,
        item: PassItemInput,
        parameters: dict[str, Any],
        session: Session,
        context: PassContext,
    ) -> PassTaskResult:
        as_of = date.fromisoformat(parameters["as_of"]) if parameters.get("as_of") else None
        outcome = _calendar_service(session, context).generate_for_subscription(
            UUID(item.payload["subscription_id"]), as_of,
        )
        # Entries that failed are already logged; the rest of the
        # subscription's entries still commit.
        data = outcome.to_dict()
        data["failed_entries"] = [
            {"rule_code": f.rule_code, "period_code": f.period_code, "error_code": f.error_code}
            for f in outcome.failed
        ]
        return PassTaskResult(status=PassItemStatus.SUCCEEDED, result_data=data)


class ReevaluateEntriesTask:
    """Re-evaluates every current, non-terminal calendar entry."""

    @property
    def task_type(self) -> str:
        return REEVALUATE_ENTRIES

    @property
    def description(self) -> str:
        return "Recompute status, liability, and notifications for open entries"

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        context: PassContext,
    ) -> tuple[PassItemInput, ...]:
        open_entries = CalendarSelector(session).get_open_entry_ids(_client_filter(parameters))
        return tuple(
            PassItemInput(
                item_index=i,
                item_key=str(entry_id),
                partition_key=str(client_id),
            )
            for i, (client_id, entry_id) in enumerate(open_entries)
        )

    def execute_item(
        self,
        item: PassItemInput,
        parameters: dict[str, Any],
        session: Session,
        context: PassContext,
    ) -> PassTaskResult:
        result = _calendar_service(session, context).reevaluate_entry(
            UUID(item.item_key), now=context.as_of,
        )
        return PassTaskResult(
            status=PassItemStatus.SUCCEEDED,
            result_data={
                "changed": result.changed,
                "status": result.status.value,
                "days_overdue": result.days_overdue,
                "total_liability": str(result.total_liability),
                "triggered": list(result.triggered),
            },
        )
