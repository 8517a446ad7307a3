"""
compliance_batch.models -- ORM models for pass persistence.

Importing this package registers the pass tables on Base.metadata.
"""

from compliance_batch.models.pass_run import (
    PassItemModel,
    PassRunModel,
    PassScheduleModel,
)

__all__ = [
    "PassItemModel",
    "PassRunModel",
    "PassScheduleModel",
]
