from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from tablebook.core.deps import StaffPrincipal, get_db, require_staff
from tablebook.core.errors import request_id_of
from tablebook.schemas.booking import ReservationStatusOut
from tablebook.services.audit_service import write_audit_log
from tablebook.services.reservation_service import cancel_reservation, expire_pending_payments, get_reservation_by_reference

router = APIRouter()


@router.post("/{reference}/cancel", response_model=ReservationStatusOut)
def cancel(
    reference: str,
    request: Request,
    db: Session = Depends(get_db),
    staff: StaffPrincipal = Depends(require_staff),
):
    r = get_reservation_by_reference(db, reference)
    cancel_reservation(db, reservation=r)
    write_audit_log(
        db,
        actor=staff.id,
        action_type="RESERVATION_CANCEL",
        target_type="reservation",
        target_id=r.reference,
        summary="Reservation cancelled",
        request=request,
    )
    return ReservationStatusOut(reference=r.reference, status=r.status, request_id=request_id_of(request))


@router.post("/expire-pending")
def expire_pending(request: Request, db: Session = Depends(get_db), staff: StaffPrincipal = Depends(require_staff)):
    count = expire_pending_payments(db)
    return {"ok": True, "expired": count, "request_id": request_id_of(request)}
