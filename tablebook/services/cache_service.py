"""
Disposable per-day slot lists.

Entries are deleted, never updated. Every table in a venue feeds every
service's slots, and a seating can run past midnight, so an invalidation
drops all services for the day and its neighbours. A per venue-day
generation counter stops a slow reader from writing back a list computed
before a concurrent invalidation.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tablebook.core.config import get_settings
from tablebook.models.availability_cache import AvailabilityCacheEntry, AvailabilityCacheGeneration
from tablebook.models._mixins import as_utc

logger = logging.getLogger(__name__)


def affected_days(day: date) -> list[date]:
    """Days whose slot lists can see a change on ``day``."""
    return [day - timedelta(days=1), day, day + timedelta(days=1)]


def _generation_row(db: Session, *, venue_id: str, day: date, for_update: bool = False):
    q = select(AvailabilityCacheGeneration).where(
        AvailabilityCacheGeneration.venue_id == venue_id,
        AvailabilityCacheGeneration.cache_date == day,
    )
    if for_update:
        q = q.with_for_update()
    # another session may have bumped it since we last loaded the row
    return db.execute(q.execution_options(populate_existing=True)).scalar_one_or_none()


def current_generation(db: Session, *, venue_id: str, day: date) -> int:
    """Read (creating if needed) the generation a computation starts from."""
    if not get_settings().availability_cache_enabled:
        return 0
    row = _generation_row(db, venue_id=venue_id, day=day)
    if row is not None:
        return row.generation

    db.add(AvailabilityCacheGeneration(venue_id=venue_id, cache_date=day, generation=0))
    try:
        db.commit()
    except IntegrityError:
        # another reader created it first
        db.rollback()
    return _generation_row(db, venue_id=venue_id, day=day).generation


def get_cached_slots(
    db: Session,
    *,
    venue_id: str,
    service_id: str,
    day: date,
    party_size: int,
    now: datetime | None = None,
) -> AvailabilityCacheEntry | None:
    settings = get_settings()
    if not settings.availability_cache_enabled:
        return None
    if now is None:
        now = datetime.now(tz=ZoneInfo("UTC"))

    entry = db.execute(
        select(AvailabilityCacheEntry).where(
            AvailabilityCacheEntry.venue_id == venue_id,
            AvailabilityCacheEntry.service_id == service_id,
            AvailabilityCacheEntry.cache_date == day,
            AvailabilityCacheEntry.party_size == party_size,
        )
    ).scalar_one_or_none()
    if entry is None:
        return None
    if now - as_utc(entry.created_at) > timedelta(seconds=settings.availability_cache_ttl_seconds):
        return None
    return entry


def put_cached_slots(
    db: Session,
    *,
    venue_id: str,
    service_id: str,
    day: date,
    party_size: int,
    slots: list[str],
    duration_minutes: int,
    generation: int,
    now: datetime | None = None,
) -> bool:
    """Store a slot list computed at ``generation``. Returns False when it was dropped.

    The generation row is locked for the write, so an invalidation either
    lands first (and the stale list is dropped) or waits and deletes it.
    """
    if not get_settings().availability_cache_enabled:
        return False
    if now is None:
        now = datetime.now(tz=ZoneInfo("UTC"))

    marker = _generation_row(db, venue_id=venue_id, day=day, for_update=True)
    if marker is None or marker.generation != generation:
        db.rollback()
        logger.debug("availability cache write skipped, invalidated meanwhile venue=%s date=%s", venue_id, day)
        return False

    db.execute(
        delete(AvailabilityCacheEntry).where(
            AvailabilityCacheEntry.venue_id == venue_id,
            AvailabilityCacheEntry.service_id == service_id,
            AvailabilityCacheEntry.cache_date == day,
            AvailabilityCacheEntry.party_size == party_size,
        )
    )
    db.add(
        AvailabilityCacheEntry(
            venue_id=venue_id,
            service_id=service_id,
            cache_date=day,
            party_size=party_size,
            slots=list(slots),
            duration_minutes=duration_minutes,
            created_at=now,
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug("availability cache write lost race venue=%s service=%s date=%s", venue_id, service_id, day)
        return False
    return True


def invalidate(db: Session, *, venue_id: str, day: date) -> int:
    """Drop every cached entry that may depend on ``day`` and bump the generations.

    Call after the change itself is committed.
    """
    days = affected_days(day)
    db.execute(
        update(AvailabilityCacheGeneration)
        .where(AvailabilityCacheGeneration.venue_id == venue_id, AvailabilityCacheGeneration.cache_date.in_(days))
        .values(generation=AvailabilityCacheGeneration.generation + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(
        delete(AvailabilityCacheEntry).where(
            AvailabilityCacheEntry.venue_id == venue_id,
            AvailabilityCacheEntry.cache_date.in_(days),
        )
    )
    db.commit()
    count = result.rowcount or 0
    if count:
        logger.debug("invalidated %s availability cache entries venue=%s around %s", count, venue_id, day)
    return count
