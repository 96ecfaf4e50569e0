from __future__ import annotations

import uuid
from datetime import date, datetime, time

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Time
from sqlalchemy.orm import Mapped, mapped_column

from tablebook.db.base import Base
from tablebook.models._mixins import utcnow


class BookingLock(Base):
    """Short-lived advisory hold on a (venue, date, start time) slot."""

    __tablename__ = "booking_locks"
    __table_args__ = (Index("ix_booking_locks_slot", "venue_id", "booking_date", "start_time"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    lock_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    venue_id: Mapped[str] = mapped_column(String(36), ForeignKey("venues.id"), nullable=False)
    service_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("services.id"), nullable=True)
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    party_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    client_hash: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    locked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
