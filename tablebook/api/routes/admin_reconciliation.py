from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from tablebook.core.deps import StaffPrincipal, get_db, require_staff
from tablebook.schemas.reconciliation import DrainOut, ReviewOut, ReviewResolve
from tablebook.services.audit_service import write_audit_log
from tablebook.services.reconciliation_service import drain_queue, list_reviews, resolve_review

router = APIRouter()


@router.post("/drain", response_model=DrainOut)
def drain(db: Session = Depends(get_db), staff: StaffPrincipal = Depends(require_staff)):
    result = drain_queue(db)
    return DrainOut(processed=result.processed, retried=result.retried, escalated=result.escalated)


@router.get("/reviews", response_model=list[ReviewOut])
def reviews(status: str = "open", db: Session = Depends(get_db), staff: StaffPrincipal = Depends(require_staff)):
    return list_reviews(db, status=status)


@router.post("/reviews/{review_id}/resolve", response_model=ReviewOut)
def resolve(
    review_id: str,
    payload: ReviewResolve,
    request: Request,
    db: Session = Depends(get_db),
    staff: StaffPrincipal = Depends(require_staff),
):
    review = resolve_review(
        db,
        review_id=review_id,
        resolved_by=staff.id,
        resolution=payload.resolution,
        reservation_reference=payload.reservation_reference,
        dismiss=payload.dismiss,
    )
    write_audit_log(
        db,
        actor=staff.id,
        action_type="REVIEW_RESOLVE",
        target_type="manual_review",
        target_id=review.id,
        summary=f"Review {review.status}",
        diff_json={"reservation_reference": payload.reservation_reference},
        request=request,
    )
    return review
