from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from tablebook.core.deps import get_client_hash, get_db
from tablebook.core.errors import InvalidInput, request_id_of
from tablebook.schemas.availability import AvailabilityOut
from tablebook.schemas.booking import BookingCreate, BookingCreated, BookingOut
from tablebook.schemas.lock import LockAcquireRequest, LockOut, LockReleaseRequest, LockTokenRequest
from tablebook.services.audit_service import write_audit_log
from tablebook.services.availability_service import ByDate, ByMonth, compute_availability
from tablebook.services.lock_service import acquire_lock, extend_lock, release_lock
from tablebook.services.rate_limit_service import enforce_availability_limit, enforce_booking_limit
from tablebook.services.reservation_service import commit_booking

router = APIRouter()


@router.get("/venues/{venue_slug}/availability", response_model=AvailabilityOut)
def availability(
    venue_slug: str,
    request: Request,
    service_id: str,
    party_size: int = Query(ge=1),
    date_: date | None = Query(default=None, alias="date"),
    month: str | None = Query(default=None, pattern=r"^\d{4}-\d{2}$"),
    db: Session = Depends(get_db),
    client_hash: str = Depends(get_client_hash),
):
    if (date_ is None) == (month is None):
        raise InvalidInput("Provide exactly one of date or month")
    query = ByDate(date_) if date_ is not None else ByMonth.parse(month)

    enforce_availability_limit(db, client_hash=client_hash, venue_slug=venue_slug)

    result = compute_availability(
        db, venue_slug=venue_slug, service_id=service_id, party_size=party_size, query=query
    )
    return AvailabilityOut(
        venue_id=result.venue_id,
        service_id=result.service_id,
        party_size=result.party_size,
        duration_minutes=result.duration_minutes,
        slots_by_date={d.isoformat(): slots for d, slots in result.slots_by_date.items()},
        request_id=request_id_of(request),
    )


@router.post("/locks", response_model=LockOut, status_code=201)
def create_lock(
    payload: LockAcquireRequest,
    request: Request,
    db: Session = Depends(get_db),
    client_hash: str = Depends(get_client_hash),
):
    lock = acquire_lock(
        db,
        venue_slug=payload.venue_slug,
        service_id=payload.service_id,
        day=payload.date,
        start_time=payload.time,
        party_size=payload.party_size,
        client_hash=client_hash,
    )
    return LockOut(lock_token=lock.lock_token, expires_at=lock.expires_at, request_id=request_id_of(request))


@router.post("/locks/extend", response_model=LockOut)
def extend(payload: LockTokenRequest, request: Request, db: Session = Depends(get_db)):
    lock = extend_lock(db, token=payload.lock_token)
    return LockOut(lock_token=lock.lock_token, expires_at=lock.expires_at, request_id=request_id_of(request))


@router.post("/locks/release")
def release(payload: LockReleaseRequest, request: Request, db: Session = Depends(get_db)):
    released = release_lock(db, token=payload.lock_token, reason=payload.reason)
    return {"ok": True, "released": released, "request_id": request_id_of(request)}


@router.post("/bookings", response_model=BookingCreated, status_code=201)
def create_booking(
    payload: BookingCreate,
    request: Request,
    db: Session = Depends(get_db),
    client_hash: str = Depends(get_client_hash),
):
    enforce_booking_limit(db, client_hash=client_hash)

    r = commit_booking(
        db,
        venue_slug=payload.venue_slug,
        service_id=payload.service_id,
        day=payload.date,
        start_time=payload.time,
        party_size=payload.party_size,
        guest_name=payload.guest_name,
        email=str(payload.email),
        phone=payload.phone,
        notes=payload.notes,
        lock_token=payload.lock_token,
    )

    write_audit_log(
        db,
        actor="guest",
        action_type="PUBLIC_BOOKING_CREATE",
        target_type="reservation",
        target_id=r.reference,
        summary="Public booking created",
        diff_json={"reference": r.reference, "venue_id": r.venue_id, "status": r.status},
        request=request,
    )

    return BookingCreated(
        booking=BookingOut(
            id=r.id,
            reference=r.reference,
            guest_name=r.guest_name,
            party_size=r.party_size,
            date=r.booking_date,
            time=r.start_time.strftime("%H:%M"),
            status=r.status,
        ),
        request_id=request_id_of(request),
    )
