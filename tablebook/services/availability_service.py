from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from tablebook.core.config import get_settings
from tablebook.core.errors import InvalidInput, ServiceNotFound, VenueNotFound
from tablebook.models.service import BookingWindow, Service
from tablebook.models.venue import Venue
from tablebook.services import cache_service
from tablebook.services.allocation_service import (
    allocate,
    format_hhmm,
    load_day_snapshot,
    to_minutes,
)
from tablebook.services.duration import resolve_duration

logger = logging.getLogger(__name__)

WEEKDAY_CODES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


@dataclass(frozen=True)
class ByDate:
    day: date

    def days(self) -> list[date]:
        return [self.day]


@dataclass(frozen=True)
class ByMonth:
    year: int
    month: int

    def days(self) -> list[date]:
        _, last = calendar.monthrange(self.year, self.month)
        return [date(self.year, self.month, d) for d in range(1, last + 1)]

    @classmethod
    def parse(cls, value: str) -> "ByMonth":
        try:
            year_s, month_s = value.split("-")
            year, month = int(year_s), int(month_s)
        except ValueError:
            raise InvalidInput("month must look like YYYY-MM")
        if not 1 <= month <= 12:
            raise InvalidInput("month must look like YYYY-MM")
        return cls(year=year, month=month)


AvailabilityQuery = Union[ByDate, ByMonth]


@dataclass
class AvailabilityResult:
    venue_id: str
    service_id: str
    party_size: int
    duration_minutes: int
    slots_by_date: dict[date, list[str]] = field(default_factory=dict)


def get_bookable_venue(db: Session, slug: str) -> Venue:
    venue = db.execute(select(Venue).where(Venue.slug == slug)).scalar_one_or_none()
    if venue is None or not venue.is_approved:
        raise VenueNotFound()
    return venue


def get_bookable_service(db: Session, venue: Venue, service_id: str) -> Service:
    service = db.get(Service, service_id)
    if service is None or service.venue_id != venue.id or not service.active or not service.online_bookable:
        raise ServiceNotFound("Service not found or not available for online booking")
    return service


def check_party_size(service: Service, party_size: int) -> None:
    settings = get_settings()
    if party_size < 1 or party_size > settings.max_party_size:
        raise InvalidInput(f"Party size must be between 1 and {settings.max_party_size}")
    if party_size < service.min_guests or party_size > service.max_guests:
        raise InvalidInput(f"This service requires between {service.min_guests} and {service.max_guests} guests")


def _weekday_matches(days: list | None, day: date) -> bool:
    wd = day.weekday()
    for d in days or []:
        if isinstance(d, int) and not isinstance(d, bool):
            if d == wd:
                return True
        elif isinstance(d, str) and d.strip().lower()[:3] == WEEKDAY_CODES[wd]:
            return True
    return False


def in_blackout(window: BookingWindow, day: date) -> bool:
    for period in window.blackout_periods or []:
        if not isinstance(period, dict):
            continue
        try:
            start = date.fromisoformat(str(period.get("start") or period.get("start_date")))
            end = date.fromisoformat(str(period.get("end") or period.get("end_date") or start))
        except ValueError:
            continue
        if start <= day <= end:
            return True
    return False


def windows_for_date(windows: list[BookingWindow], day: date) -> list[BookingWindow]:
    """Windows open on this date: weekday matches, inside the date range, no blackout."""
    open_windows = []
    for w in windows:
        if not _weekday_matches(w.days, day):
            continue
        if w.start_date and day < w.start_date:
            continue
        if w.end_date and day > w.end_date:
            continue
        if in_blackout(w, day):
            continue
        open_windows.append(w)
    return open_windows


def candidate_starts(window: BookingWindow, duration_minutes: int, step: int) -> range:
    """Start minutes from window open to (close - duration) inclusive."""
    start = to_minutes(window.start_time)
    last = to_minutes(window.end_time) - duration_minutes
    return range(start, last + 1, step)


def slots_for_date(
    db: Session,
    *,
    venue: Venue,
    service: Service,
    day: date,
    party_size: int,
    duration_minutes: int,
    exclude_lock_token: str | None = None,
    now: datetime | None = None,
) -> list[int]:
    """Bookable start minutes for one date, chronological and de-duplicated."""
    settings = get_settings()
    windows = windows_for_date(list(service.windows), day)
    if not windows:
        return []

    snapshot = load_day_snapshot(db, venue_id=venue.id, day=day, exclude_lock_token=exclude_lock_token, now=now)

    bookable: set[int] = set()
    for w in windows:
        for start in candidate_starts(w, duration_minutes, settings.slot_step_minutes):
            if start in bookable:
                continue
            if w.max_per_slot is not None and snapshot.service_starts[(service.id, start)] >= w.max_per_slot:
                continue
            if allocate(snapshot, start, duration_minutes, party_size).ok:
                bookable.add(start)
    return sorted(bookable)


def compute_availability(
    db: Session,
    *,
    venue_slug: str,
    service_id: str,
    party_size: int,
    query: AvailabilityQuery,
    now: datetime | None = None,
) -> AvailabilityResult:
    venue = get_bookable_venue(db, venue_slug)
    service = get_bookable_service(db, venue, service_id)
    check_party_size(service, party_size)

    settings = get_settings()
    duration = resolve_duration(service.duration_rules, party_size, settings.default_duration_minutes)
    result = AvailabilityResult(
        venue_id=venue.id, service_id=service.id, party_size=party_size, duration_minutes=duration
    )

    for day in query.days():
        cached = cache_service.get_cached_slots(
            db, venue_id=venue.id, service_id=service.id, day=day, party_size=party_size, now=now
        )
        if cached is not None and cached.duration_minutes == duration:
            result.slots_by_date[day] = list(cached.slots)
            continue

        generation = cache_service.current_generation(db, venue_id=venue.id, day=day)
        slots = [format_hhmm(m) for m in slots_for_date(
            db, venue=venue, service=service, day=day, party_size=party_size, duration_minutes=duration, now=now
        )]
        result.slots_by_date[day] = slots
        cache_service.put_cached_slots(
            db,
            venue_id=venue.id,
            service_id=service.id,
            day=day,
            party_size=party_size,
            slots=slots,
            duration_minutes=duration,
            generation=generation,
            now=now,
        )

    logger.debug(
        "availability venue=%s service=%s party=%s days=%s",
        venue.id, service.id, party_size, len(result.slots_by_date),
    )
    return result


def closest_starts(starts: list[int], start_minute: int, limit: int) -> list[str]:
    others = sorted((s for s in starts if s != start_minute), key=lambda s: (abs(s - start_minute), s))
    return [format_hhmm(s) for s in others[:limit]]
