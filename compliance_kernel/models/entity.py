"""
ORM models for client business entities and their blueprint subscriptions.

The engine treats entities as read-only input (turnover, entity type,
jurisdiction).  A subscription is the (client, entity, blueprint) pairing
the calendar generator materializes entries for.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import TrackedBase, UUIDString
from compliance_kernel.domain.types import BusinessEntity, ServiceSubscription


class BusinessEntityModel(TrackedBase):
    """A client's legal entity (company, LLP, proprietorship, ...)."""

    __tablename__ = "business_entities"

    __table_args__ = (
        Index("ix_business_entities_client", "client_id"),
    )

    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    jurisdiction_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("jurisdictions.id"), nullable=False,
    )
    annual_turnover: Mapped[Decimal | None] = mapped_column(nullable=True)
    registration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    attributes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def to_dto(self) -> BusinessEntity:
        return BusinessEntity(
            entity_id=self.id,
            client_id=self.client_id,
            name=self.name,
            entity_type=self.entity_type,
            jurisdiction_id=self.jurisdiction_id,
            annual_turnover=self.annual_turnover,
            registration_date=self.registration_date,
            attributes=dict(self.attributes or {}),
        )


class ServiceSubscriptionModel(TrackedBase):
    """Client entity enrolled in a blueprint from ``start_date``."""

    __tablename__ = "service_subscriptions"

    __table_args__ = (
        Index("ix_service_subscriptions_client", "client_id", "is_active"),
    )

    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("business_entities.id"), nullable=False,
    )
    blueprint_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("blueprints.id"), nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> ServiceSubscription:
        return ServiceSubscription(
            subscription_id=self.id,
            client_id=self.client_id,
            entity_id=self.entity_id,
            blueprint_id=self.blueprint_id,
            start_date=self.start_date,
            end_date=self.end_date,
            is_active=self.is_active,
        )
