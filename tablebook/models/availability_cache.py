from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tablebook.db.base import Base
from tablebook.models._mixins import utcnow


class AvailabilityCacheEntry(Base):
    """Disposable materialization of computed slots. Deleted, never updated."""

    __tablename__ = "availability_cache"
    __table_args__ = (
        UniqueConstraint("venue_id", "service_id", "cache_date", "party_size", name="uq_availability_cache_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    venue_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    service_id: Mapped[str] = mapped_column(String(36), nullable=False)
    cache_date: Mapped[date] = mapped_column(Date, nullable=False)
    party_size: Mapped[int] = mapped_column(Integer, nullable=False)

    slots: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # ["18:00", "18:15", ...]
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class AvailabilityCacheGeneration(Base):
    """Per venue-day counter bumped by every invalidation.

    A cache write carries the generation its computation started from and is
    dropped if the counter has moved on since.
    """

    __tablename__ = "availability_cache_generations"
    __table_args__ = (UniqueConstraint("venue_id", "cache_date", name="uq_availability_cache_generation"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    venue_id: Mapped[str] = mapped_column(String(36), nullable=False)
    cache_date: Mapped[date] = mapped_column(Date, nullable=False)
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
