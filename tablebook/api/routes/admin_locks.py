from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from tablebook.core.deps import StaffPrincipal, get_db, require_staff
from tablebook.core.errors import request_id_of
from tablebook.schemas.lock import ActiveLockOut, LockTokenRequest
from tablebook.services.audit_service import write_audit_log
from tablebook.services.lock_service import list_active_locks, reap_expired_locks, release_lock

router = APIRouter()


@router.get("", response_model=list[ActiveLockOut])
def list_locks(
    venue_id: str | None = None,
    db: Session = Depends(get_db),
    staff: StaffPrincipal = Depends(require_staff),
):
    return list_active_locks(db, venue_id=venue_id)


@router.post("/release")
def force_release(
    payload: LockTokenRequest,
    request: Request,
    db: Session = Depends(get_db),
    staff: StaffPrincipal = Depends(require_staff),
):
    released = release_lock(db, token=payload.lock_token, reason="admin_force")
    if released:
        write_audit_log(
            db,
            actor=staff.id,
            action_type="LOCK_FORCE_RELEASE",
            target_type="lock",
            target_id=payload.lock_token[:12],
            summary="Force-released slot lock",
            request=request,
        )
    return {"ok": True, "released": released, "request_id": request_id_of(request)}


@router.post("/reap")
def reap(request: Request, db: Session = Depends(get_db), staff: StaffPrincipal = Depends(require_staff)):
    count = reap_expired_locks(db)
    return {"ok": True, "expired": count, "request_id": request_id_of(request)}
