from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from kit_delivery.domain.cep_zones.models import ZoneKind, ZoneStatus
from kit_delivery.infra.db import Base


class CepZone(Base):
    __tablename__ = "cep_zones"
    __table_args__ = (
        Index("ix_cep_zones_status_priority", "status", "priority"),
        sa.CheckConstraint("priority > 0", name="ck_cep_zones_priority_positive"),
        sa.CheckConstraint("price >= 0", name="ck_cep_zones_price_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500))
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default=ZoneKind.SPECIFIC.value)
    ranges: Mapped[list[dict[str, str]]] = mapped_column(JSON, nullable=False, default=list)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ZoneStatus.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    event_prices: Mapped[list["EventCepZonePrice"]] = relationship(
        "EventCepZonePrice",
        back_populates="zone",
        order_by="EventCepZonePrice.id",
    )

    @property
    def active(self) -> bool:
        return self.status == ZoneStatus.ACTIVE.value


class EventCepZonePrice(Base):
    __tablename__ = "event_cep_zone_prices"
    __table_args__ = (
        Index("ix_event_cep_zone_prices_event_id", "event_id"),
        sa.UniqueConstraint("event_id", "zone_id", name="uq_event_cep_zone_prices_event_zone"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(Integer, nullable=False)
    zone_id: Mapped[int] = mapped_column(
        ForeignKey("cep_zones.id", ondelete="CASCADE"), nullable=False
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ZoneStatus.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    zone: Mapped[CepZone] = relationship("CepZone", back_populates="event_prices")

    @property
    def active(self) -> bool:
        return self.status == ZoneStatus.ACTIVE.value
