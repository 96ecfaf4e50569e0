from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tablebook.db.base import Base
from tablebook.models._mixins import TimestampMixin, utcnow


class PosWebhookEvent(Base, TimestampMixin):
    """Raw inbound point-of-sale event, stored once per provider event id."""

    __tablename__ = "pos_webhook_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    location_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    object_id: Mapped[str] = mapped_column(String(128), nullable=False, default="")  # order or payment id

    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    signature_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="received")
    outcome: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    error: Mapped[str] = mapped_column(Text, nullable=False, default="")
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class EventQueueItem(Base):
    __tablename__ = "event_queue"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    webhook_event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pos_webhook_events.id"), nullable=False, unique=True
    )

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class OrderLink(Base, TimestampMixin):
    """Association between a point-of-sale order and a reservation."""

    __tablename__ = "order_links"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    reservation_id: Mapped[str] = mapped_column(String(36), ForeignKey("reservations.id"), nullable=False, index=True)

    link_method: Mapped[str] = mapped_column(String(32), nullable=False)  # customer_id/booking_code/auto_walk_in/manual
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


class ManualReview(Base, TimestampMixin):
    __tablename__ = "manual_reviews"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    webhook_event_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("pos_webhook_events.id"), nullable=True)
    order_id: Mapped[str] = mapped_column(String(128), nullable=False, default="")

    reason: Mapped[str] = mapped_column(String(64), nullable=False)  # processing_failed/no_venue_mapping
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")  # open/resolved/dismissed
    resolution: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    resolved_by: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PosLocationMap(Base, TimestampMixin):
    __tablename__ = "pos_location_map"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    location_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    venue_id: Mapped[str] = mapped_column(String(36), ForeignKey("venues.id"), nullable=False)


class PosDeviceMap(Base, TimestampMixin):
    """Maps a till/device (order source) to a default table."""

    __tablename__ = "pos_device_map"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    venue_id: Mapped[str] = mapped_column(String(36), ForeignKey("venues.id"), nullable=False, index=True)
    device_id: Mapped[str] = mapped_column(String(128), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("resources.id"), nullable=True)
