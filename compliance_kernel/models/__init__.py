"""ORM models.  Importing this package registers every kernel table on Base.metadata."""

from compliance_kernel.models.calendar_entry import CalendarEntryModel
from compliance_kernel.models.entity import BusinessEntityModel, ServiceSubscriptionModel
from compliance_kernel.models.event import ComplianceEventModel
from compliance_kernel.models.jurisdiction import HolidayCalendarModel, JurisdictionModel
from compliance_kernel.models.rules import (
    BlueprintModel,
    ComplianceRuleModel,
    DeadlineFormulaModel,
    JurisdictionRuleModel,
    PenaltyRuleModel,
)

__all__ = [
    "BlueprintModel",
    "BusinessEntityModel",
    "CalendarEntryModel",
    "ComplianceEventModel",
    "ComplianceRuleModel",
    "DeadlineFormulaModel",
    "HolidayCalendarModel",
    "JurisdictionModel",
    "JurisdictionRuleModel",
    "PenaltyRuleModel",
    "ServiceSubscriptionModel",
]
