"""Selectors for the compliance kernel (read side)."""

from compliance_kernel.selectors.calendar_selector import (
    CalendarSelector,
    ClientComplianceSummary,
    DashboardStats,
)
from compliance_kernel.selectors.reference_selector import ReferenceSelector

__all__ = [
    "CalendarSelector",
    "ClientComplianceSummary",
    "DashboardStats",
    "ReferenceSelector",
]
