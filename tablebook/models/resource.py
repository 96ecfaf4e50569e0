from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from tablebook.db.base import Base
from tablebook.models._mixins import TimestampMixin


class Resource(Base, TimestampMixin):
    """A physical table."""

    __tablename__ = "resources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    venue_id: Mapped[str] = mapped_column(String(36), ForeignKey("venues.id"), nullable=False, index=True)
    label: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    bookable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ResourceGroup(Base, TimestampMixin):
    """Pre-approved combination of tables bookable as one unit."""

    __tablename__ = "resource_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    venue_id: Mapped[str] = mapped_column(String(36), ForeignKey("venues.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    member_resource_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    min_party_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_party_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
