"""
ORM model for the compliance domain-event outbox.

Every status transition, liability change, and notification trigger is
appended here in the same transaction as the entry mutation, so
downstream delivery channels can consume events without the engine
knowing about transports.  Rows are append-only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import TrackedBase, UUIDString


class ComplianceEventModel(TrackedBase):
    __tablename__ = "compliance_events"

    __table_args__ = (
        Index("ix_compliance_events_aggregate", "aggregate_id"),
        Index("ix_compliance_events_type", "event_type"),
    )

    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    aggregate_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    correlation_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
