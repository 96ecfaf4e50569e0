from __future__ import annotations

import uuid
from datetime import date, time

from sqlalchemy import Boolean, Date, ForeignKey, Integer, JSON, String, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tablebook.db.base import Base
from tablebook.models._mixins import TimestampMixin


class Service(Base, TimestampMixin):
    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    venue_id: Mapped[str] = mapped_column(String(36), ForeignKey("venues.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    online_bookable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    min_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=50)

    # [{"minGuests": 1, "maxGuests": 4, "durationMinutes": 90}, ...]
    duration_rules: Mapped[list | None] = mapped_column(JSON, nullable=True)
    requires_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    windows: Mapped[list["BookingWindow"]] = relationship(
        "BookingWindow", back_populates="service", cascade="all, delete-orphan"
    )


class BookingWindow(Base, TimestampMixin):
    __tablename__ = "booking_windows"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    service_id: Mapped[str] = mapped_column(String(36), ForeignKey("services.id"), nullable=False, index=True)

    # ["tue", "wed"] or [1, 2] (Monday = 0)
    days: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    max_per_slot: Mapped[int | None] = mapped_column(Integer, nullable=True)

    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # [{"start": "2025-12-24", "end": "2025-12-26", "reason": "Holidays"}]
    blackout_periods: Mapped[list | None] = mapped_column(JSON, nullable=True)

    service: Mapped[Service] = relationship("Service", back_populates="windows")
