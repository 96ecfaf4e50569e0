"""
Fixed-window rate limiting backed by the database so every worker process
shares the same counters.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tablebook.core.config import get_settings
from tablebook.core.errors import RateLimited
from tablebook.models.rate_limit import RateLimitBucket

logger = logging.getLogger(__name__)


def _window_start(now: datetime, window_seconds: int) -> datetime:
    epoch = int(now.timestamp())
    return datetime.fromtimestamp(epoch - epoch % window_seconds, tz=ZoneInfo("UTC"))


def hit(
    db: Session,
    *,
    key: str,
    window_seconds: int,
    now: datetime | None = None,
) -> int:
    """Count one request against key; returns the count in the current window."""
    if now is None:
        now = datetime.now(tz=ZoneInfo("UTC"))
    window_start = _window_start(now, window_seconds)

    result = db.execute(
        update(RateLimitBucket)
        .where(RateLimitBucket.bucket_key == key, RateLimitBucket.window_start == window_start)
        .values(count=RateLimitBucket.count + 1)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        db.add(
            RateLimitBucket(
                bucket_key=key,
                window_start=window_start,
                expires_at=window_start + timedelta(seconds=window_seconds),
                count=1,
            )
        )
        try:
            db.commit()
            return 1
        except IntegrityError:
            # another worker opened the window first
            db.rollback()
            db.execute(
                update(RateLimitBucket)
                .where(RateLimitBucket.bucket_key == key, RateLimitBucket.window_start == window_start)
                .values(count=RateLimitBucket.count + 1)
                .execution_options(synchronize_session=False)
            )
    db.commit()

    count = db.execute(
        select(RateLimitBucket.count).where(
            RateLimitBucket.bucket_key == key, RateLimitBucket.window_start == window_start
        )
    ).scalar_one()
    return count


def enforce(
    db: Session,
    *,
    key: str,
    limit: int,
    window_seconds: int,
    now: datetime | None = None,
) -> None:
    if not get_settings().rate_limit_enabled:
        return
    count = hit(db, key=key, window_seconds=window_seconds, now=now)
    if count > limit:
        logger.warning("rate limit exceeded key=%s count=%s limit=%s", key, count, limit)
        raise RateLimited()


def enforce_availability_limit(db: Session, *, client_hash: str, venue_slug: str, now: datetime | None = None) -> None:
    settings = get_settings()
    enforce(
        db,
        key=f"availability:{client_hash}:{venue_slug}",
        limit=settings.availability_rate_limit,
        window_seconds=settings.availability_rate_window_seconds,
        now=now,
    )


def enforce_booking_limit(db: Session, *, client_hash: str, now: datetime | None = None) -> None:
    settings = get_settings()
    enforce(
        db,
        key=f"booking:{client_hash}",
        limit=settings.booking_rate_limit,
        window_seconds=settings.booking_rate_window_seconds,
        now=now,
    )


def purge_expired(db: Session, *, now: datetime | None = None) -> int:
    if now is None:
        now = datetime.now(tz=ZoneInfo("UTC"))
    result = db.execute(delete(RateLimitBucket).where(RateLimitBucket.expires_at <= now))
    db.commit()
    return result.rowcount or 0
