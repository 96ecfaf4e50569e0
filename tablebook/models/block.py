from __future__ import annotations

import uuid
from datetime import date, time

from sqlalchemy import Date, ForeignKey, JSON, String, Time
from sqlalchemy.orm import Mapped, mapped_column

from tablebook.db.base import Base
from tablebook.models._mixins import TimestampMixin


class Block(Base, TimestampMixin):
    __tablename__ = "blocks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    venue_id: Mapped[str] = mapped_column(String(36), ForeignKey("venues.id"), nullable=False, index=True)
    block_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    # None or [] blocks the whole venue
    resource_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    reason: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    created_by: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    @property
    def is_venue_wide(self) -> bool:
        return not self.resource_ids
