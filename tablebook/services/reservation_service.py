from __future__ import annotations

import logging
import secrets
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tablebook.core.config import get_settings
from tablebook.core.errors import Forbidden, InvalidInput, LockExpired, NotFound, SlotConflict, VenueNotFound
from tablebook.core.state_machine import ReservationStateMachine, ReservationStatus
from tablebook.models.reservation import Reservation, ReservationAllocation
from tablebook.models.venue import Venue
from tablebook.services import cache_service
from tablebook.services.allocation_service import (
    Allocation,
    find_available_resource,
    from_minutes,
    local_datetime,
    to_minutes,
)
from tablebook.services.audit_service import write_audit_log
from tablebook.services.availability_service import (
    candidate_starts,
    check_party_size,
    get_bookable_service,
    windows_for_date,
)
from tablebook.services.duration import resolve_duration
from tablebook.services.lock_service import release_lock, validate_lock

logger = logging.getLogger(__name__)


def generate_reference(year: int) -> str:
    return f"BK-{year:04d}-{secrets.randbelow(1_000_000):06d}"


def _unique_reference(db: Session, year: int) -> str:
    reference = generate_reference(year)
    # Avoid collisions
    for _ in range(5):
        exists = db.execute(select(Reservation.id).where(Reservation.reference == reference)).first()
        if not exists:
            break
        reference = generate_reference(year)
    return reference


def _build_allocations(allocation: Allocation, day: date, start_minute: int, duration: int) -> list[ReservationAllocation]:
    return [
        ReservationAllocation(
            resource_id=resource_id,
            start_at=local_datetime(day, start_minute),
            end_at=local_datetime(day, start_minute + duration),
            occupying=True,
        )
        for resource_id in allocation.resource_ids
    ]


def _release_and_invalidate(
    db: Session,
    *,
    lock_token: str | None,
    succeeded: bool,
    venue_id: str | None,
    day: date,
    now: datetime,
) -> None:
    try:
        if lock_token:
            release_lock(db, token=lock_token, reason="created" if succeeded else "error", now=now)
        if venue_id:
            cache_service.invalidate(db, venue_id=venue_id, day=day)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("commit cleanup failed venue=%s date=%s", venue_id, day)


def commit_booking(
    db: Session,
    *,
    venue_slug: str,
    service_id: str,
    day: date,
    start_time: time,
    party_size: int,
    guest_name: str,
    email: str,
    phone: str = "",
    notes: str = "",
    lock_token: str | None = None,
    now: datetime | None = None,
) -> Reservation:
    """Turn a held (or unheld) slot into a durable reservation.

    The lock, if presented, is released and the cache entry for the date is
    dropped on every exit path. The storage-level no-overlap constraint is the
    final arbiter: a violation at insert is reported as slot_conflict.
    """
    settings = get_settings()
    if now is None:
        now = datetime.now(tz=ZoneInfo("UTC"))

    if not 1 <= party_size <= settings.max_party_size:
        raise InvalidInput(f"Party size must be between 1 and {settings.max_party_size}")
    if not guest_name.strip():
        raise InvalidInput("Guest name is required")

    venue = db.execute(select(Venue).where(Venue.slug == venue_slug)).scalar_one_or_none()
    venue_id = venue.id if venue else None

    succeeded = False
    try:
        if lock_token:
            if venue is None:
                raise LockExpired()
            validate_lock(db, token=lock_token, venue_id=venue.id, day=day, start_time=start_time, now=now)

        if venue is None:
            raise VenueNotFound()
        if not venue.is_approved:
            raise Forbidden()

        service = get_bookable_service(db, venue, service_id)
        check_party_size(service, party_size)

        duration = resolve_duration(service.duration_rules, party_size, settings.default_duration_minutes)
        start_minute = to_minutes(start_time)

        open_windows = [
            w for w in windows_for_date(list(service.windows), day)
            if start_minute in candidate_starts(w, duration, settings.slot_step_minutes)
        ]
        if not open_windows:
            raise SlotConflict("That time is not open for booking.")

        allocation = find_available_resource(
            db,
            venue_id=venue.id,
            day=day,
            start_time=start_time,
            duration_minutes=duration,
            party_size=party_size,
            exclude_lock_token=lock_token,
            now=now,
        )
        if not allocation.ok:
            raise SlotConflict()

        status = ReservationStatus.PENDING_PAYMENT if service.requires_payment else ReservationStatus.CONFIRMED
        reservation = Reservation(
            reference=_unique_reference(db, now.year),
            venue_id=venue.id,
            service_id=service.id,
            resource_id=allocation.resource_id,
            group_id=allocation.group_id,
            booking_date=day,
            start_time=start_time,
            end_time=from_minutes(start_minute + duration),
            duration_minutes=duration,
            party_size=party_size,
            status=status.value,
            source="online",
            guest_name=guest_name.strip(),
            email=email,
            phone=phone,
            notes=notes,
            status_changed_at=now,
        )
        reservation.allocations = _build_allocations(allocation, day, start_minute, duration)
        db.add(reservation)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info("no-overlap constraint rejected booking venue=%s date=%s time=%s", venue.id, day, start_time)
            raise SlotConflict()

        db.refresh(reservation)
        succeeded = True
        logger.info("reservation created ref=%s venue=%s status=%s", reservation.reference, venue.id, status.value)
        return reservation
    finally:
        if not succeeded:
            db.rollback()
        _release_and_invalidate(
            db,
            lock_token=lock_token,
            succeeded=succeeded,
            venue_id=venue_id,
            day=day,
            now=now,
        )


def transition_reservation(
    db: Session,
    *,
    reservation: Reservation,
    to_status: ReservationStatus,
    now: datetime | None = None,
) -> Reservation:
    """Move a reservation to a new status and keep its table holds in step."""
    if now is None:
        now = datetime.now(tz=ZoneInfo("UTC"))

    ReservationStateMachine.validate_transition(ReservationStatus(reservation.status), to_status)
    occupying = ReservationStateMachine.is_occupying(to_status)

    reservation.status = to_status.value
    reservation.status_changed_at = now
    if to_status == ReservationStatus.CANCELLED:
        reservation.cancelled_at = now
    for alloc in reservation.allocations:
        alloc.occupying = occupying
    db.commit()

    cache_service.invalidate(db, venue_id=reservation.venue_id, day=reservation.booking_date)
    return reservation


def get_reservation_by_reference(db: Session, reference: str) -> Reservation:
    reservation = db.execute(select(Reservation).where(Reservation.reference == reference)).scalar_one_or_none()
    if reservation is None:
        raise NotFound("Reservation not found")
    return reservation


def cancel_reservation(db: Session, *, reservation: Reservation, now: datetime | None = None) -> Reservation:
    if reservation.status == ReservationStatus.CANCELLED.value:
        return reservation
    return transition_reservation(db, reservation=reservation, to_status=ReservationStatus.CANCELLED, now=now)


def apply_payment_outcome(
    db: Session,
    *,
    reference: str,
    succeeded: bool,
    lock_token: str | None = None,
    now: datetime | None = None,
) -> Reservation:
    """Hook for the external payment flow: settle a pending_payment reservation."""
    reservation = get_reservation_by_reference(db, reference)
    target = ReservationStatus.CONFIRMED if succeeded else ReservationStatus.INCOMPLETE

    try:
        if reservation.status != target.value:
            transition_reservation(db, reservation=reservation, to_status=target, now=now)
    finally:
        if lock_token:
            release_lock(db, token=lock_token, reason="payment_succeeded" if succeeded else "payment_failed", now=now)

    logger.info("payment outcome ref=%s succeeded=%s status=%s", reference, succeeded, reservation.status)
    return reservation


def expire_pending_payments(db: Session, *, now: datetime | None = None) -> int:
    """Mark pending_payment reservations older than the payment timeout incomplete."""
    settings = get_settings()
    if now is None:
        now = datetime.now(tz=ZoneInfo("UTC"))
    cutoff = now - timedelta(minutes=settings.payment_timeout_minutes)

    targets = db.execute(
        select(Reservation).where(
            Reservation.status == ReservationStatus.PENDING_PAYMENT.value,
            Reservation.created_at <= cutoff,
        )
    ).scalars().all()

    for r in targets:
        transition_reservation(db, reservation=r, to_status=ReservationStatus.INCOMPLETE, now=now)
        write_audit_log(
            db,
            actor="system",
            action_type="RESERVATION_PAYMENT_TIMEOUT",
            target_type="reservation",
            target_id=r.reference,
            summary="Pending payment timed out",
        )

    if targets:
        logger.info("payment timeout marked %s reservations incomplete", len(targets))
    return len(targets)


def create_walk_in(
    db: Session,
    *,
    venue_id: str,
    day: date,
    start_time: time,
    resource_id: str | None = None,
    party_size: int = 1,
    external_customer_id: str | None = None,
    notes: str = "",
    now: datetime | None = None,
) -> Reservation:
    """Seated reservation for an unannounced guest, on a table when one is free."""
    settings = get_settings()
    if now is None:
        now = datetime.now(tz=ZoneInfo("UTC"))
    duration = settings.default_duration_minutes
    start_minute = to_minutes(start_time)

    def build(table_id: str | None) -> Reservation:
        r = Reservation(
            reference=_unique_reference(db, now.year),
            venue_id=venue_id,
            service_id=None,
            resource_id=table_id,
            booking_date=day,
            start_time=start_time,
            end_time=from_minutes(start_minute + duration),
            duration_minutes=duration,
            party_size=party_size,
            status=ReservationStatus.SEATED.value,
            source="walk_in",
            guest_name="Walk-in",
            external_customer_id=external_customer_id,
            notes=notes,
            status_changed_at=now,
        )
        if table_id:
            r.allocations = _build_allocations(Allocation(resource_id=table_id), day, start_minute, duration)
        return r

    reservation = build(resource_id)
    db.add(reservation)
    try:
        db.commit()
    except IntegrityError:
        # table already taken at this time
        db.rollback()
        reservation = build(None)
        db.add(reservation)
        db.commit()

    db.refresh(reservation)
    cache_service.invalidate(db, venue_id=venue_id, day=day)
    return reservation
