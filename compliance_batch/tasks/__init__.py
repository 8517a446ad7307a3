"""Pass task implementations and the task registry."""

from compliance_batch.tasks.base import (
    PassContext,
    PassItemInput,
    PassTask,
    PassTaskResult,
    TaskRegistry,
    partition_items,
)
from compliance_batch.tasks.calendar_tasks import (
    GENERATE_CALENDAR,
    REEVALUATE_ENTRIES,
    GenerateCalendarTask,
    ReevaluateEntriesTask,
)

__all__ = [
    "GENERATE_CALENDAR",
    "REEVALUATE_ENTRIES",
    "GenerateCalendarTask",
    "PassContext",
    "PassItemInput",
    "PassTask",
    "PassTaskResult",
    "ReevaluateEntriesTask",
    "TaskRegistry",
    "partition_items",
]
