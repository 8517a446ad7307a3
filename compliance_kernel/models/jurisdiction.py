"""
ORM models for the jurisdiction hierarchy and holiday calendars.

Invariants enforced:
    - ``code`` is UNIQUE; ``path`` is the parent's path plus this node's code.
    - One HolidayCalendar per (jurisdiction_id, year) (UNIQUE constraint).
    - Holiday data is ingested by an external admin process; the engine
      only reads it.
"""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import TrackedBase, UUIDString
from compliance_kernel.domain.types import (
    Holiday,
    HolidayCalendar,
    HolidayType,
    Jurisdiction,
)


class JurisdictionModel(TrackedBase):
    """Country / state / city node with a materialized ancestor path."""

    __tablename__ = "jurisdictions"

    __table_args__ = (
        Index("ix_jurisdictions_parent", "parent_id"),
        Index("ix_jurisdictions_path", "path"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("jurisdictions.id"), nullable=True,
    )
    path: Mapped[str] = mapped_column(String(500), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="Asia/Kolkata")
    weekend_days: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=lambda: [5, 6])
    gst_state_code: Mapped[str | None] = mapped_column(String(4), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> Jurisdiction:
        return Jurisdiction(
            jurisdiction_id=self.id,
            code=self.code,
            name=self.name,
            level=self.level,
            path=self.path,
            parent_id=self.parent_id,
            timezone=self.timezone,
            weekend_days=frozenset(int(d) for d in (self.weekend_days or [])),
            gst_state_code=self.gst_state_code,
        )


class HolidayCalendarModel(TrackedBase):
    """Holidays for one jurisdiction and calendar year."""

    __tablename__ = "holiday_calendars"

    __table_args__ = (
        UniqueConstraint("jurisdiction_id", "year", name="uq_holiday_calendar_jurisdiction_year"),
    )

    jurisdiction_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("jurisdictions.id"), nullable=False,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    # [{"date": "2025-01-26", "name": "Republic Day", "type": "national", "is_optional": false}]
    holidays: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    def to_dto(self) -> HolidayCalendar:
        parsed = tuple(
            sorted(
                (
                    Holiday(
                        holiday_date=date.fromisoformat(h["date"]),
                        name=h.get("name", ""),
                        holiday_type=HolidayType(h.get("type", HolidayType.NATIONAL.value)),
                        is_optional=bool(h.get("is_optional", False)),
                    )
                    for h in (self.holidays or [])
                ),
                key=lambda h: h.holiday_date,
            )
        )
        return HolidayCalendar(
            jurisdiction_id=self.jurisdiction_id,
            year=self.year,
            holidays=parsed,
        )

    @staticmethod
    def holidays_payload(holidays: tuple[Holiday, ...]) -> list[dict[str, Any]]:
        return [
            {
                "date": h.holiday_date.isoformat(),
                "name": h.name,
                "type": h.holiday_type.value,
                "is_optional": h.is_optional,
            }
            for h in holidays
        ]
