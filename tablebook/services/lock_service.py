"""
Short-lived slot holds used during checkout.

A lock is advisory: it tells other guests the time is being booked but does not
stop a direct commit. Releases are compare-and-set on released_at so a guest
release, a commit and the reaper can race without overwriting each other.
"""
from __future__ import annotations

import logging
import secrets
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from tablebook.core.config import get_settings
from tablebook.core.errors import LockExpired, NotFound, SlotLocked, SlotUnavailable
from tablebook.models._mixins import as_utc
from tablebook.models.booking_lock import BookingLock
from tablebook.services import cache_service
from tablebook.services.allocation_service import format_hhmm, to_minutes
from tablebook.services.availability_service import (
    check_party_size,
    closest_starts,
    get_bookable_service,
    get_bookable_venue,
    slots_for_date,
)
from tablebook.services.duration import resolve_duration

logger = logging.getLogger(__name__)

RELEASE_REASONS = {
    "released",
    "created",
    "expired",
    "error",
    "payment_succeeded",
    "payment_failed",
    "admin_force",
}


def _now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(tz=ZoneInfo("UTC"))


def _active_lock_for_slot(db: Session, *, venue_id: str, day: date, start_time: time, now: datetime) -> BookingLock | None:
    return db.execute(
        select(BookingLock)
        .where(
            BookingLock.venue_id == venue_id,
            BookingLock.booking_date == day,
            BookingLock.start_time == start_time,
            BookingLock.released_at.is_(None),
            BookingLock.expires_at > now,
        )
        .limit(1)
    ).scalar_one_or_none()


def acquire_lock(
    db: Session,
    *,
    venue_slug: str,
    service_id: str,
    day: date,
    start_time: time,
    party_size: int,
    client_hash: str = "",
    now: datetime | None = None,
) -> BookingLock:
    """Hold a slot for one guest after re-checking it against live availability."""
    settings = get_settings()
    now = _now(now)

    venue = get_bookable_venue(db, venue_slug)
    service = get_bookable_service(db, venue, service_id)
    check_party_size(service, party_size)

    duration = resolve_duration(service.duration_rules, party_size, settings.default_duration_minutes)
    start_minute = to_minutes(start_time)
    starts = slots_for_date(
        db, venue=venue, service=service, day=day, party_size=party_size, duration_minutes=duration, now=now
    )

    if _active_lock_for_slot(db, venue_id=venue.id, day=day, start_time=start_time, now=now) is not None:
        raise SlotLocked(alternatives=closest_starts(starts, start_minute, settings.alternatives_limit))

    if start_minute not in starts:
        raise SlotUnavailable(alternatives=closest_starts(starts, start_minute, settings.alternatives_limit))

    lock = BookingLock(
        lock_token=secrets.token_urlsafe(24),
        venue_id=venue.id,
        service_id=service.id,
        booking_date=day,
        start_time=start_time,
        party_size=party_size,
        client_hash=client_hash,
        locked_at=now,
        expires_at=now + timedelta(minutes=settings.lock_hold_minutes),
    )
    db.add(lock)
    db.commit()
    db.refresh(lock)

    cache_service.invalidate(db, venue_id=venue.id, day=day)
    logger.info("lock acquired venue=%s date=%s time=%s party=%s", venue.id, day, format_hhmm(start_minute), party_size)
    return lock


def release_lock(db: Session, *, token: str, reason: str = "released", now: datetime | None = None) -> bool:
    """Mark a lock released. Returns False when it was missing or already released."""
    now = _now(now)
    if reason not in RELEASE_REASONS:
        reason = "released"

    lock = db.execute(select(BookingLock).where(BookingLock.lock_token == token)).scalar_one_or_none()
    if lock is None:
        return False

    result = db.execute(
        update(BookingLock)
        .where(BookingLock.id == lock.id, BookingLock.released_at.is_(None))
        .values(released_at=now, reason=reason)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if not result.rowcount:
        logger.debug("lock %s already released", lock.id)
        return False

    cache_service.invalidate(db, venue_id=lock.venue_id, day=lock.booking_date)
    logger.info("lock released id=%s reason=%s", lock.id, reason)
    return True


def validate_lock(
    db: Session,
    *,
    token: str,
    venue_id: str,
    day: date,
    start_time: time,
    now: datetime | None = None,
) -> BookingLock:
    """Return the lock if it matches the slot, is unreleased and has not expired."""
    now = _now(now)
    lock = db.execute(
        select(BookingLock).where(
            BookingLock.lock_token == token,
            BookingLock.venue_id == venue_id,
            BookingLock.booking_date == day,
            BookingLock.start_time == start_time,
            BookingLock.released_at.is_(None),
            BookingLock.expires_at > now,
        )
    ).scalar_one_or_none()
    if lock is None:
        raise LockExpired()
    return lock


def extend_lock(db: Session, *, token: str, now: datetime | None = None) -> BookingLock:
    """Push expiry out by a short step, never past the original hold period."""
    settings = get_settings()
    now = _now(now)

    lock = db.execute(select(BookingLock).where(BookingLock.lock_token == token)).scalar_one_or_none()
    if lock is None or lock.released_at is not None:
        raise NotFound("Lock not found")
    if as_utc(lock.expires_at) <= now:
        raise LockExpired()

    cap = as_utc(lock.locked_at) + timedelta(minutes=settings.lock_hold_minutes)
    lock.expires_at = min(now + timedelta(seconds=settings.lock_extend_seconds), cap)
    db.commit()
    db.refresh(lock)
    return lock


def list_active_locks(db: Session, *, venue_id: str | None = None, now: datetime | None = None) -> list[BookingLock]:
    now = _now(now)
    q = select(BookingLock).where(BookingLock.released_at.is_(None), BookingLock.expires_at > now)
    if venue_id:
        q = q.where(BookingLock.venue_id == venue_id)
    return list(db.execute(q.order_by(BookingLock.expires_at)).scalars().all())


def reap_expired_locks(db: Session, *, now: datetime | None = None) -> int:
    """Release every lock past its expiry and drop the cache entries it touched."""
    now = _now(now)
    expired = db.execute(
        select(BookingLock).where(BookingLock.released_at.is_(None), BookingLock.expires_at < now)
    ).scalars().all()

    touched: set[tuple[str, date]] = set()
    reaped = 0
    for lock in expired:
        result = db.execute(
            update(BookingLock)
            .where(BookingLock.id == lock.id, BookingLock.released_at.is_(None))
            .values(released_at=now, reason="expired")
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            reaped += 1
            touched.add((lock.venue_id, lock.booking_date))
    db.commit()

    for venue_id, day in touched:
        cache_service.invalidate(db, venue_id=venue_id, day=day)

    logger.info("lock reaper released %s expired locks", reaped)
    return reaped
