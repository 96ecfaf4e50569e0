"""
Table allocation for a single (date, start, duration, party size) request.

Two passes, tightest fit first: the smallest free table that seats the party,
then the join group with the smallest max party size whose members are all free.
No backtracking across several bookings is attempted.

Times inside a day are handled as minutes from the venue's local midnight so a
seating that runs past midnight simply ends above 1440.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from tablebook.core.config import get_settings
from tablebook.core.state_machine import OCCUPYING_STATUSES
from tablebook.models.block import Block
from tablebook.models.booking_lock import BookingLock
from tablebook.models.reservation import Reservation, ReservationAllocation
from tablebook.models.resource import Resource, ResourceGroup
from tablebook.models.service import Service
from tablebook.services.duration import resolve_duration

MINUTES_PER_DAY = 24 * 60


def to_minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def from_minutes(minutes: int) -> time:
    minutes = minutes % MINUTES_PER_DAY
    return time(minutes // 60, minutes % 60)


def format_hhmm(minutes: int) -> str:
    return from_minutes(minutes).strftime("%H:%M")


def overlaps(start: int, end: int, other_start: int, other_end: int) -> bool:
    # half-open intervals; touching endpoints do not conflict
    return start < other_end and end > other_start


def local_datetime(day: date, minutes: int) -> datetime:
    return datetime.combine(day, time(0, 0)) + timedelta(minutes=minutes)


@dataclass(frozen=True)
class TableInfo:
    id: str
    capacity: int


@dataclass(frozen=True)
class GroupInfo:
    id: str
    member_ids: tuple[str, ...]
    min_party_size: int
    max_party_size: int


@dataclass(frozen=True)
class Busy:
    resource_id: str
    start: int
    end: int


@dataclass(frozen=True)
class BlockWindow:
    resource_ids: frozenset[str] | None  # None is venue-wide
    start: int
    end: int


@dataclass(frozen=True)
class Hold:
    """Another guest's active lock, treated as holding a table."""

    party_size: int
    start: int
    end: int


@dataclass
class DaySnapshot:
    venue_id: str
    day: date
    tables: list[TableInfo] = field(default_factory=list)
    groups: list[GroupInfo] = field(default_factory=list)
    busy: list[Busy] = field(default_factory=list)
    blocks: list[BlockWindow] = field(default_factory=list)
    holds: list[Hold] = field(default_factory=list)
    # (service_id, start minute) -> occupying reservations starting then
    service_starts: Counter = field(default_factory=Counter)


@dataclass
class Allocation:
    resource_id: str | None = None
    group_id: str | None = None
    member_resource_ids: tuple[str, ...] = ()
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.resource_id is not None or self.group_id is not None

    @property
    def resource_ids(self) -> list[str]:
        if self.resource_id is not None:
            return [self.resource_id]
        return list(self.member_resource_ids)


def _tightest_table(tables: list[TableInfo], unavailable: set[str], party_size: int) -> TableInfo | None:
    best: TableInfo | None = None
    for t in tables:
        if t.id in unavailable or t.capacity < party_size:
            continue
        if best is None or t.capacity < best.capacity:
            best = t
    return best


def _tightest_group(
    groups: list[GroupInfo], unavailable: set[str], known_ids: set[str], party_size: int
) -> GroupInfo | None:
    best: GroupInfo | None = None
    for g in groups:
        if not (g.min_party_size <= party_size <= g.max_party_size):
            continue
        if not g.member_ids:
            continue
        if any(m in unavailable or m not in known_ids for m in g.member_ids):
            continue
        if best is None or g.max_party_size < best.max_party_size:
            best = g
    return best


def _pick(snapshot: DaySnapshot, unavailable: set[str], party_size: int) -> Allocation:
    table = _tightest_table(snapshot.tables, unavailable, party_size)
    if table is not None:
        return Allocation(resource_id=table.id)

    known_ids = {t.id for t in snapshot.tables}
    group = _tightest_group(snapshot.groups, unavailable, known_ids, party_size)
    if group is not None:
        return Allocation(group_id=group.id, member_resource_ids=group.member_ids)

    return Allocation(reason=f"No table or table combination is free for {party_size} guests at this time")


def allocate(snapshot: DaySnapshot, start: int, duration: int, party_size: int) -> Allocation:
    end = start + duration
    unavailable: set[str] = set()

    for b in snapshot.blocks:
        if not overlaps(start, end, b.start, b.end):
            continue
        if b.resource_ids is None:
            return Allocation(reason="The venue is closed at this time")
        unavailable.update(b.resource_ids)

    for busy in snapshot.busy:
        if overlaps(start, end, busy.start, busy.end):
            unavailable.add(busy.resource_id)

    for hold in sorted(snapshot.holds, key=lambda h: h.start):
        if not overlaps(start, end, hold.start, hold.end):
            continue
        held = _pick(snapshot, unavailable, hold.party_size)
        unavailable.update(held.resource_ids)

    return _pick(snapshot, unavailable, party_size)


def _block_window(block: Block, offset: int) -> BlockWindow:
    ids = frozenset(block.resource_ids) if block.resource_ids else None
    start = to_minutes(block.start_time) + offset
    end = to_minutes(block.end_time) + offset
    if end <= start:
        end += MINUTES_PER_DAY
    return BlockWindow(resource_ids=ids, start=start, end=end)


def _minutes_since(day: date, dt: datetime) -> int:
    return int((dt.replace(tzinfo=None) - datetime.combine(day, time(0, 0))).total_seconds() // 60)


def load_day_snapshot(
    db: Session,
    *,
    venue_id: str,
    day: date,
    exclude_lock_token: str | None = None,
    now: datetime | None = None,
) -> DaySnapshot:
    """Load tables, groups, occupying allocations and blocks for a venue day."""
    settings = get_settings()
    snapshot = DaySnapshot(venue_id=venue_id, day=day)

    tables = db.execute(
        select(Resource)
        .where(Resource.venue_id == venue_id, Resource.bookable == True, Resource.active == True)
        .order_by(Resource.id)
    ).scalars().all()
    snapshot.tables = [TableInfo(id=t.id, capacity=t.capacity) for t in tables]

    groups = db.execute(
        select(ResourceGroup).where(ResourceGroup.venue_id == venue_id).order_by(ResourceGroup.id)
    ).scalars().all()
    snapshot.groups = [
        GroupInfo(
            id=g.id,
            member_ids=tuple(g.member_resource_ids or ()),
            min_party_size=g.min_party_size,
            max_party_size=g.max_party_size,
        )
        for g in groups
    ]

    # Seatings from the previous evening may run into this day; ours may run into the next.
    range_start = datetime.combine(day - timedelta(days=1), time(0, 0))
    range_end = datetime.combine(day + timedelta(days=2), time(0, 0))
    rows = db.execute(
        select(ReservationAllocation.resource_id, ReservationAllocation.start_at, ReservationAllocation.end_at)
        .join(Reservation, Reservation.id == ReservationAllocation.reservation_id)
        .where(
            Reservation.venue_id == venue_id,
            ReservationAllocation.occupying == True,
            ReservationAllocation.start_at < range_end,
            ReservationAllocation.end_at > range_start,
        )
    ).all()
    snapshot.busy = [Busy(resource_id=r, start=_minutes_since(day, s), end=_minutes_since(day, e)) for r, s, e in rows]

    occupying = [s.value for s in OCCUPYING_STATUSES]
    starts = db.execute(
        select(Reservation.service_id, Reservation.start_time).where(
            Reservation.venue_id == venue_id,
            Reservation.booking_date == day,
            Reservation.status.in_(occupying),
        )
    ).all()
    snapshot.service_starts = Counter((sid, to_minutes(st)) for sid, st in starts)

    # yesterday's overnight blocks reach into this morning
    offsets = {day - timedelta(days=1): -MINUTES_PER_DAY, day: 0, day + timedelta(days=1): MINUTES_PER_DAY}
    blocks = db.execute(
        select(Block).where(Block.venue_id == venue_id, Block.block_date.in_(list(offsets)))
    ).scalars().all()
    snapshot.blocks = [_block_window(b, offsets[b.block_date]) for b in blocks]

    if settings.honor_foreign_locks:
        snapshot.holds = _load_holds(db, venue_id=venue_id, day=day, exclude_lock_token=exclude_lock_token, now=now)

    return snapshot


def _load_holds(
    db: Session, *, venue_id: str, day: date, exclude_lock_token: str | None, now: datetime | None
) -> list[Hold]:
    if now is None:
        now = datetime.now(tz=ZoneInfo("UTC"))

    q = select(BookingLock).where(
        BookingLock.venue_id == venue_id,
        BookingLock.booking_date == day,
        BookingLock.released_at.is_(None),
        BookingLock.expires_at > now,
    )
    if exclude_lock_token:
        q = q.where(BookingLock.lock_token != exclude_lock_token)
    locks = db.execute(q).scalars().all()

    rules_by_service: dict[str | None, list | None] = {}
    holds: list[Hold] = []
    for lock in locks:
        if lock.service_id not in rules_by_service:
            service = db.get(Service, lock.service_id) if lock.service_id else None
            rules_by_service[lock.service_id] = service.duration_rules if service else None
        duration = resolve_duration(
            rules_by_service[lock.service_id], lock.party_size, get_settings().default_duration_minutes
        )
        start = to_minutes(lock.start_time)
        holds.append(Hold(party_size=lock.party_size, start=start, end=start + duration))
    return holds


def find_available_resource(
    db: Session,
    *,
    venue_id: str,
    day: date,
    start_time: time,
    duration_minutes: int,
    party_size: int,
    exclude_lock_token: str | None = None,
    now: datetime | None = None,
) -> Allocation:
    snapshot = load_day_snapshot(db, venue_id=venue_id, day=day, exclude_lock_token=exclude_lock_token, now=now)
    return allocate(snapshot, to_minutes(start_time), duration_minutes, party_size)
