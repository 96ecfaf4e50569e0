from datetime import date, datetime, time, timedelta, timezone

import pytest
from sqlalchemy import select

from tablebook.core.errors import (
    Forbidden,
    InvalidInput,
    InvalidStateTransition,
    LockExpired,
    SlotConflict,
    VenueNotFound,
)
from tablebook.core.state_machine import ReservationStatus
from tablebook.models.audit_log import AuditLog
from tablebook.models.availability_cache import AvailabilityCacheEntry
from tablebook.models.booking_lock import BookingLock
from tablebook.models.reservation import ReservationAllocation
from tablebook.services.availability_service import ByDate, compute_availability
from tablebook.services.lock_service import acquire_lock
from tablebook.services.reservation_service import (
    apply_payment_outcome,
    cancel_reservation,
    commit_booking,
    create_walk_in,
    expire_pending_payments,
    generate_reference,
    transition_reservation,
)

TUESDAY = date(2026, 1, 6)
NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def book(db, venue, service, start=time(19, 0), party_size=2, **kwargs):
    kwargs.setdefault("now", NOW)
    return commit_booking(
        db,
        venue_slug=venue.slug,
        service_id=service.id,
        day=TUESDAY,
        start_time=start,
        party_size=party_size,
        guest_name="Ada Guest",
        email="ada@example.com",
        **kwargs,
    )


def test_reference_format():
    assert generate_reference(2026).startswith("BK-2026-")
    assert len(generate_reference(2026)) == len("BK-2026-000000")


def test_commit_allocates_tightest_table(db, make, dinner):
    venue, service, four_top = dinner
    make.table(venue, 8)

    r = book(db, venue, service)
    assert r.status == "confirmed"
    assert r.resource_id == four_top.id
    assert r.duration_minutes == 90
    assert r.end_time == time(20, 30)
    assert [a.resource_id for a in r.allocations] == [four_top.id]
    assert r.allocations[0].start_at == datetime(2026, 1, 6, 19, 0)


def test_commit_with_lock_releases_it(db, dinner):
    venue, service, _ = dinner
    lock = acquire_lock(
        db, venue_slug=venue.slug, service_id=service.id, day=TUESDAY, start_time=time(19, 0), party_size=2, now=NOW
    )
    book(db, venue, service, lock_token=lock.lock_token)

    db.expire_all()
    stored = db.get(BookingLock, lock.id)
    assert stored.released_at is not None
    assert stored.reason == "created"


def test_expired_lock_rejects_commit_and_is_released(db, dinner):
    venue, service, _ = dinner
    lock = acquire_lock(
        db, venue_slug=venue.slug, service_id=service.id, day=TUESDAY, start_time=time(19, 0), party_size=2, now=NOW
    )
    with pytest.raises(LockExpired):
        book(db, venue, service, lock_token=lock.lock_token, now=NOW + timedelta(minutes=6))

    db.expire_all()
    assert db.get(BookingLock, lock.id).reason == "error"


def test_lock_for_another_time_is_rejected(db, dinner):
    venue, service, _ = dinner
    lock = acquire_lock(
        db, venue_slug=venue.slug, service_id=service.id, day=TUESDAY, start_time=time(19, 0), party_size=2, now=NOW
    )
    with pytest.raises(LockExpired):
        book(db, venue, service, start=time(18, 0), lock_token=lock.lock_token)


def test_second_overlapping_commit_conflicts(db, dinner):
    venue, service, _ = dinner
    book(db, venue, service)
    with pytest.raises(SlotConflict) as exc:
        book(db, venue, service, start=time(19, 30))
    assert exc.value.code == "slot_conflict"
    assert db.query(ReservationAllocation).count() == 1


def test_back_to_back_bookings_share_a_table(db, dinner):
    venue, service, table = dinner
    first = book(db, venue, service, start=time(18, 0))
    second = book(db, venue, service, start=time(19, 30))
    assert first.resource_id == second.resource_id == table.id


def test_time_outside_the_window_conflicts(db, dinner):
    venue, service, _ = dinner
    with pytest.raises(SlotConflict):
        book(db, venue, service, start=time(20, 15))
    with pytest.raises(SlotConflict):
        book(db, venue, service, start=time(19, 10))


def test_group_booking_writes_one_allocation_per_member(db, make):
    venue = make.venue()
    a = make.table(venue, 6, label="A")
    b = make.table(venue, 6, label="B")
    group = make.group(venue, [a, b], 7, 12)
    service = make.service(venue)

    r = book(db, venue, service, party_size=10)
    assert r.group_id == group.id
    assert r.resource_id is None
    assert sorted(x.resource_id for x in r.allocations) == sorted([a.id, b.id])


def test_rejections(db, make, dinner):
    venue, service, _ = dinner
    with pytest.raises(InvalidInput):
        book(db, venue, service, party_size=0)
    with pytest.raises(InvalidInput):
        commit_booking(
            db,
            venue_slug=venue.slug,
            service_id=service.id,
            day=TUESDAY,
            start_time=time(19, 0),
            party_size=2,
            guest_name="   ",
            email="ada@example.com",
            now=NOW,
        )

    pending = make.venue(slug="not-yet", approval_status="pending")
    with pytest.raises(Forbidden):
        book(db, pending, service)

    with pytest.raises(VenueNotFound):
        commit_booking(
            db,
            venue_slug="nowhere",
            service_id=service.id,
            day=TUESDAY,
            start_time=time(19, 0),
            party_size=2,
            guest_name="Ada",
            email="ada@example.com",
            now=NOW,
        )


def test_commit_drops_cached_day(db, dinner):
    venue, service, _ = dinner
    before = compute_availability(
        db, venue_slug=venue.slug, service_id=service.id, party_size=2, query=ByDate(TUESDAY), now=NOW
    )
    assert "19:00" in before.slots_by_date[TUESDAY]

    book(db, venue, service)
    assert db.query(AvailabilityCacheEntry).count() == 0

    after = compute_availability(
        db, venue_slug=venue.slug, service_id=service.id, party_size=2, query=ByDate(TUESDAY), now=NOW
    )
    assert "19:00" not in after.slots_by_date[TUESDAY]


def test_paid_service_starts_pending_payment(db, make):
    venue = make.venue()
    make.table(venue, 4)
    service = make.service(venue, requires_payment=True)

    r = book(db, venue, service)
    assert r.status == "pending_payment"

    r = apply_payment_outcome(db, reference=r.reference, succeeded=True, now=NOW)
    assert r.status == "confirmed"


def test_failed_payment_frees_the_table(db, make):
    venue = make.venue()
    make.table(venue, 4)
    service = make.service(venue, requires_payment=True)

    lock = acquire_lock(
        db, venue_slug=venue.slug, service_id=service.id, day=TUESDAY, start_time=time(19, 0), party_size=2, now=NOW
    )
    r = book(db, venue, service)
    r = apply_payment_outcome(db, reference=r.reference, succeeded=False, lock_token=lock.lock_token, now=NOW)

    assert r.status == "incomplete"
    assert all(not a.occupying for a in r.allocations)
    db.expire_all()
    assert db.get(BookingLock, lock.id).reason == "payment_failed"

    again = book(db, venue, service)
    assert again.status == "pending_payment"


def test_cancel_is_idempotent_and_frees_table(db, dinner):
    venue, service, _ = dinner
    r = book(db, venue, service)
    cancel_reservation(db, reservation=r, now=NOW)
    cancel_reservation(db, reservation=r, now=NOW)
    assert r.status == "cancelled"
    assert r.cancelled_at is not None
    assert book(db, venue, service).status == "confirmed"


def test_illegal_transition(db, dinner):
    venue, service, _ = dinner
    r = book(db, venue, service)
    transition_reservation(db, reservation=r, to_status=ReservationStatus.SEATED, now=NOW)
    transition_reservation(db, reservation=r, to_status=ReservationStatus.FINISHED, now=NOW)
    with pytest.raises(InvalidStateTransition):
        transition_reservation(db, reservation=r, to_status=ReservationStatus.CONFIRMED, now=NOW)


def test_payment_timeout_marks_stale_bookings_incomplete(db, make):
    venue = make.venue()
    make.table(venue, 4)
    service = make.service(venue, requires_payment=True)
    r = book(db, venue, service)

    now = datetime.now(tz=timezone.utc)
    assert expire_pending_payments(db, now=now) == 0
    assert expire_pending_payments(db, now=now + timedelta(minutes=31)) == 1

    db.refresh(r)
    assert r.status == "incomplete"
    audit = db.execute(select(AuditLog).where(AuditLog.action_type == "RESERVATION_PAYMENT_TIMEOUT")).scalar_one()
    assert audit.actor == "system"
    assert audit.target_id == r.reference


def test_walk_in_falls_back_to_unassigned(db, dinner):
    venue, _, table = dinner
    seated = create_walk_in(db, venue_id=venue.id, day=TUESDAY, start_time=time(19, 0), resource_id=table.id, now=NOW)
    assert seated.status == "seated"
    assert seated.source == "walk_in"
    assert seated.resource_id == table.id

    overflow = create_walk_in(db, venue_id=venue.id, day=TUESDAY, start_time=time(19, 30), resource_id=table.id, now=NOW)
    assert overflow.resource_id is None
    assert overflow.allocations == []
