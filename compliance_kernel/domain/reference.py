"""
Reference-data access contract for the pure engines.

Responsibility:
    Engines need jurisdictions, holiday calendars, and override rows but
    must not touch the database.  ``ReferenceSource`` is the read-only
    protocol they depend on; ``ReferenceSelector`` implements it over
    SQLAlchemy, and ``InMemoryReferenceSource`` over plain DTOs (tests,
    config snapshots).

Architecture position:
    Kernel > Domain.  ZERO I/O in this module.
"""

from __future__ import annotations

from typing import Iterable, Protocol, runtime_checkable
from uuid import UUID

from compliance_kernel.domain.types import (
    HolidayCalendar,
    Jurisdiction,
    JurisdictionOverride,
)
from compliance_kernel.exceptions import ConfigurationError


@runtime_checkable
class ReferenceSource(Protocol):
    """Read-only lookups used by the holiday and override resolvers."""

    def get_jurisdiction(self, jurisdiction_id: UUID) -> Jurisdiction | None: ...

    def get_holiday_calendar(
        self, jurisdiction_id: UUID, year: int,
    ) -> HolidayCalendar | None: ...

    def list_overrides(
        self, jurisdiction_ids: tuple[UUID, ...],
    ) -> tuple[JurisdictionOverride, ...]: ...


def jurisdiction_chain(
    source: ReferenceSource, jurisdiction_id: UUID,
) -> tuple[Jurisdiction, ...]:
    """Return the jurisdiction and its ancestors, root first.

    Raises:
        ConfigurationError: if the jurisdiction or an ancestor is missing,
            or the parent links form a cycle.
    """
    chain: list[Jurisdiction] = []
    seen: set[UUID] = set()
    current_id: UUID | None = jurisdiction_id
    while current_id is not None:
        if current_id in seen:
            raise ConfigurationError(
                f"Jurisdiction hierarchy has a cycle at {current_id}",
                subject=str(current_id),
            )
        seen.add(current_id)
        node = source.get_jurisdiction(current_id)
        if node is None:
            raise ConfigurationError(
                f"Jurisdiction not found: {current_id}", subject=str(current_id),
            )
        chain.append(node)
        current_id = node.parent_id
    return tuple(reversed(chain))


class InMemoryReferenceSource:
    """ReferenceSource backed by DTO collections."""

    def __init__(
        self,
        jurisdictions: Iterable[Jurisdiction] = (),
        calendars: Iterable[HolidayCalendar] = (),
        overrides: Iterable[JurisdictionOverride] = (),
    ):
        self._jurisdictions = {j.jurisdiction_id: j for j in jurisdictions}
        self._calendars = {(c.jurisdiction_id, c.year): c for c in calendars}
        self._overrides = tuple(overrides)

    def get_jurisdiction(self, jurisdiction_id: UUID) -> Jurisdiction | None:
        return self._jurisdictions.get(jurisdiction_id)

    def get_holiday_calendar(
        self, jurisdiction_id: UUID, year: int,
    ) -> HolidayCalendar | None:
        return self._calendars.get((jurisdiction_id, year))

    def list_overrides(
        self, jurisdiction_ids: tuple[UUID, ...],
    ) -> tuple[JurisdictionOverride, ...]:
        wanted = set(jurisdiction_ids)
        return tuple(o for o in self._overrides if o.jurisdiction_id in wanted)
