from __future__ import annotations

import uuid
from datetime import date, datetime, time

from sqlalchemy import DDL, Boolean, Date, DateTime, ForeignKey, Integer, String, Text, Time, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tablebook.db.base import Base
from tablebook.models._mixins import TimestampMixin


class Reservation(Base, TimestampMixin):
    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    reference: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)  # BK-YYYY-NNNNNN

    venue_id: Mapped[str] = mapped_column(String(36), ForeignKey("venues.id"), nullable=False, index=True)
    service_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("services.id"), nullable=True, index=True)

    # Exactly one of resource_id / group_id for allocated bookings, neither for unassigned walk-ins
    resource_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("resources.id"), nullable=True)
    group_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("resource_groups.id"), nullable=True)

    booking_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=120)
    party_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="confirmed", index=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="online")  # online/walk_in/staff

    guest_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    phone: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    external_customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    allocations: Mapped[list["ReservationAllocation"]] = relationship(
        "ReservationAllocation", back_populates="reservation", cascade="all, delete-orphan"
    )


class ReservationAllocation(Base):
    """One row per table a reservation holds.

    start_at/end_at are naive venue-local timestamps. The no-overlap rule for
    occupying rows on the same table is enforced by the database.
    """

    __tablename__ = "reservation_allocations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    reservation_id: Mapped[str] = mapped_column(String(36), ForeignKey("reservations.id"), nullable=False, index=True)
    resource_id: Mapped[str] = mapped_column(String(36), ForeignKey("resources.id"), nullable=False, index=True)

    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    occupying: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    reservation: Mapped[Reservation] = relationship("Reservation", back_populates="allocations")


NO_OVERLAP_CONSTRAINT = "reservation_allocations_no_overlap"

_allocations = ReservationAllocation.__table__

event.listen(
    _allocations,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    _allocations,
    "after_create",
    DDL(
        f"""
        ALTER TABLE reservation_allocations
        ADD CONSTRAINT {NO_OVERLAP_CONSTRAINT}
        EXCLUDE USING gist (
            resource_id WITH =,
            tsrange(start_at, end_at, '[)') WITH &&
        )
        WHERE (occupying)
        """
    ).execute_if(dialect="postgresql"),
)

# SQLite has no exclusion constraints; triggers abort with SQLITE_CONSTRAINT instead.
_SQLITE_OVERLAP_GUARD = """
CREATE TRIGGER IF NOT EXISTS {name}
BEFORE {op} ON reservation_allocations
WHEN NEW.occupying
BEGIN
    SELECT RAISE(ABORT, '{constraint}')
    WHERE EXISTS (
        SELECT 1 FROM reservation_allocations AS other
        WHERE other.resource_id = NEW.resource_id
          AND other.occupying
          AND other.id != NEW.id
          AND other.start_at < NEW.end_at
          AND other.end_at > NEW.start_at
    );
END
"""

for _op in ("INSERT", "UPDATE"):
    event.listen(
        _allocations,
        "after_create",
        DDL(
            _SQLITE_OVERLAP_GUARD.format(
                name=f"{NO_OVERLAP_CONSTRAINT}_{_op.lower()}", op=_op, constraint=NO_OVERLAP_CONSTRAINT
            )
        ).execute_if(dialect="sqlite"),
    )
