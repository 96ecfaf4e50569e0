from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from tablebook.core.deps import StaffPrincipal, get_db, require_staff
from tablebook.core.errors import request_id_of
from tablebook.schemas.booking import PaymentOutcomeIn, ReservationStatusOut
from tablebook.services.audit_service import write_audit_log
from tablebook.services.reconciliation_service import receive_event
from tablebook.services.reservation_service import apply_payment_outcome

router = APIRouter()


@router.post("/pos")
async def pos_webhook(request: Request, db: Session = Depends(get_db)):
    # The provider redelivers anything that is not a 2xx, so duplicates still answer 200.
    raw_body = await request.body()
    event, created = receive_event(
        db,
        raw_body=raw_body,
        signature=request.headers.get("x-square-hmacsha256-signature"),
    )
    return {
        "ok": True,
        "event_id": event.event_id,
        "duplicate": not created,
        "status": event.status,
        "request_id": request_id_of(request),
    }


@router.post("/payments", response_model=ReservationStatusOut)
def payment_outcome(
    payload: PaymentOutcomeIn,
    request: Request,
    db: Session = Depends(get_db),
    staff: StaffPrincipal = Depends(require_staff),
):
    r = apply_payment_outcome(
        db, reference=payload.reference, succeeded=payload.succeeded, lock_token=payload.lock_token
    )
    write_audit_log(
        db,
        actor=staff.id,
        action_type="PAYMENT_OUTCOME",
        target_type="reservation",
        target_id=r.reference,
        summary="Payment succeeded" if payload.succeeded else "Payment failed",
        diff_json={"status": r.status},
        request=request,
    )
    return ReservationStatusOut(reference=r.reference, status=r.status, request_id=request_id_of(request))
