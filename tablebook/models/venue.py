from __future__ import annotations

import uuid

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from tablebook.db.base import Base
from tablebook.models._mixins import TimestampMixin


class Venue(Base, TimestampMixin):
    __tablename__ = "venues"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    slug: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    approval_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending/approved/rejected
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    @property
    def is_approved(self) -> bool:
        return self.approval_status == "approved"
