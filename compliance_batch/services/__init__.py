"""Pass execution and scheduling services."""

from compliance_batch.services.executor import PassExecutor
from compliance_batch.services.scheduler import PassScheduler

__all__ = ["PassExecutor", "PassScheduler"]
