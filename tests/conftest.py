import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["POS_WEBHOOK_SECRET"] = ""

import itertools
from datetime import date, datetime, time, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import tablebook.models  # noqa: F401
from tablebook.core.deps import get_db
from tablebook.core.security import create_access_token
from tablebook.db.base import Base
from tablebook.main import app
from tablebook.models.block import Block
from tablebook.models.pos import PosDeviceMap, PosLocationMap
from tablebook.models.reservation import Reservation, ReservationAllocation
from tablebook.models.resource import Resource, ResourceGroup
from tablebook.models.service import BookingWindow, Service
from tablebook.models.venue import Venue
from tablebook.services.allocation_service import local_datetime, to_minutes

# 2026-01-06 is a Tuesday
TUESDAY = date(2026, 1, 6)
NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

DEFAULT_RULES = [
    {"minGuests": 1, "maxGuests": 4, "durationMinutes": 90},
    {"minGuests": 5, "maxGuests": 50, "durationMinutes": 120},
]

_refs = itertools.count(100000)


class Factory:
    """Small builders for the rows most tests need."""

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def venue(self, slug="the-anchor", approval_status="approved", timezone="Europe/London"):
        return self._save(Venue(slug=slug, name=slug.title(), approval_status=approval_status, timezone=timezone))

    def service(
        self,
        venue,
        *,
        days=("tue",),
        start=time(18, 0),
        end=time(21, 30),
        duration_rules=None,
        requires_payment=False,
        max_per_slot=None,
        blackout_periods=None,
        title="Dinner",
        **kwargs,
    ):
        service = Service(
            venue_id=venue.id,
            title=title,
            duration_rules=DEFAULT_RULES if duration_rules is None else duration_rules,
            requires_payment=requires_payment,
            **kwargs,
        )
        service.windows = [
            BookingWindow(
                days=list(days),
                start_time=start,
                end_time=end,
                max_per_slot=max_per_slot,
                blackout_periods=blackout_periods,
            )
        ]
        return self._save(service)

    def table(self, venue, capacity, label=None, **kwargs):
        return self._save(Resource(venue_id=venue.id, label=label or f"T{capacity}", capacity=capacity, **kwargs))

    def group(self, venue, members, min_party_size, max_party_size, name="Join"):
        return self._save(
            ResourceGroup(
                venue_id=venue.id,
                name=name,
                member_resource_ids=[m.id for m in members],
                min_party_size=min_party_size,
                max_party_size=max_party_size,
            )
        )

    def block(self, venue, day, start, end, resources=None, reason="Private event"):
        return self._save(
            Block(
                venue_id=venue.id,
                block_date=day,
                start_time=start,
                end_time=end,
                resource_ids=[r.id for r in resources] if resources else None,
                reason=reason,
            )
        )

    def reservation(
        self,
        venue,
        tables,
        *,
        day=TUESDAY,
        start=time(19, 0),
        duration=90,
        party_size=2,
        status="confirmed",
        service=None,
        external_customer_id=None,
        reference=None,
    ):
        if not isinstance(tables, (list, tuple)):
            tables = [tables]
        start_minute = to_minutes(start)
        r = Reservation(
            reference=reference or f"BK-{day.year}-{next(_refs):06d}",
            venue_id=venue.id,
            service_id=service.id if service else None,
            resource_id=tables[0].id if len(tables) == 1 else None,
            booking_date=day,
            start_time=start,
            end_time=(datetime.combine(day, start) + timedelta(minutes=duration)).time(),
            duration_minutes=duration,
            party_size=party_size,
            status=status,
            guest_name="Ada Guest",
            email="ada@example.com",
            external_customer_id=external_customer_id,
        )
        occupying = status in ("pending_payment", "confirmed", "seated")
        r.allocations = [
            ReservationAllocation(
                resource_id=t.id,
                start_at=local_datetime(day, start_minute),
                end_at=local_datetime(day, start_minute + duration),
                occupying=occupying,
            )
            for t in tables
        ]
        return self._save(r)

    def location_map(self, venue, location_id="LOC-1"):
        return self._save(PosLocationMap(location_id=location_id, venue_id=venue.id))

    def device_map(self, venue, device_id, table):
        return self._save(PosDeviceMap(venue_id=venue.id, device_id=device_id, resource_id=table.id))


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make(db):
    return Factory(db)


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def staff_headers():
    token = create_access_token("staff-1", "staff")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def dinner(make):
    """Approved venue, a Tuesday 18:00-21:30 dinner service and one four-top."""
    venue = make.venue()
    service = make.service(venue)
    table = make.table(venue, 4, label="T1")
    return venue, service, table
