"""
ORM models for pass runs, per-item results, and pass schedules.

Contract:
    PassRunModel, PassItemModel, and PassScheduleModel each expose
    ``to_dto()``.  Item rows are written by the worker that processed them,
    in the same commit as the partition's entry changes.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from compliance_batch.domain.types import (
    PassItemResult,
    PassItemStatus,
    PassRun,
    PassSchedule,
    PassStatus,
    ScheduleFrequency,
)
from compliance_kernel.db.base import TrackedBase, UUIDString
from compliance_kernel.db.types import as_aware_utc


class PassRunModel(TrackedBase):
    __tablename__ = "compliance_pass_runs"

    __table_args__ = (
        Index("ix_compliance_pass_runs_status", "status"),
        Index("ix_compliance_pass_runs_task_type", "task_type"),
    )

    task_type: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    parameters: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    succeeded_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> PassRun:
        return PassRun(
            pass_id=self.id,
            task_type=self.task_type,
            status=PassStatus(self.status),
            parameters=self.parameters or {},
            total_items=self.total_items,
            succeeded_items=self.succeeded_items,
            failed_items=self.failed_items,
            skipped_items=self.skipped_items,
            attempts=self.attempts,
            started_at=as_aware_utc(self.started_at),
            completed_at=as_aware_utc(self.completed_at),
            correlation_id=self.correlation_id,
            error_summary=self.error_summary,
        )


class PassItemModel(TrackedBase):
    __tablename__ = "compliance_pass_items"

    __table_args__ = (
        Index("ix_compliance_pass_items_run_status", "pass_run_id", "status"),
        Index("ix_compliance_pass_items_item_key", "item_key"),
    )

    pass_run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("compliance_pass_runs.id", ondelete="CASCADE"),
        nullable=False,
    )
    attempt: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    item_index: Mapped[int] = mapped_column(Integer, nullable=False)
    item_key: Mapped[str] = mapped_column(String(200), nullable=False)
    partition_key: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def to_dto(self) -> PassItemResult:
        return PassItemResult(
            item_index=self.item_index,
            item_key=self.item_key,
            partition_key=self.partition_key,
            status=PassItemStatus(self.status),
            error_code=self.error_code,
            error_message=self.error_message,
            result_data=self.result_data,
            duration_ms=self.duration_ms,
        )

    @classmethod
    def from_result(
        cls, result: PassItemResult, pass_run_id: UUID, attempt: int, created_by_id: UUID,
    ) -> PassItemModel:
        return cls(
            pass_run_id=pass_run_id,
            attempt=attempt,
            item_index=result.item_index,
            item_key=result.item_key,
            partition_key=result.partition_key,
            status=result.status.value,
            error_code=result.error_code,
            error_message=result.error_message,
            result_data=result.result_data,
            duration_ms=result.duration_ms,
            created_by_id=created_by_id,
        )


class PassScheduleModel(TrackedBase):
    """Recurring pass schedule polled by PassScheduler."""

    __tablename__ = "compliance_pass_schedules"

    __table_args__ = (
        Index("ix_compliance_pass_schedules_active", "is_active"),
        Index("ix_compliance_pass_schedules_next_run", "next_run_at"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    task_type: Mapped[str] = mapped_column(String(200), nullable=False)
    frequency: Mapped[str] = mapped_column(String(50), nullable=False)
    parameters: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_run_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def to_dto(self) -> PassSchedule:
        return PassSchedule(
            schedule_id=self.id,
            name=self.name,
            task_type=self.task_type,
            frequency=ScheduleFrequency(self.frequency),
            parameters=self.parameters or {},
            next_run_at=as_aware_utc(self.next_run_at),
            last_run_at=as_aware_utc(self.last_run_at),
            last_run_status=PassStatus(self.last_run_status) if self.last_run_status else None,
            is_active=self.is_active,
        )
