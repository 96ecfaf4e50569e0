from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from tablebook.core.deps import StaffPrincipal, get_db, require_staff
from tablebook.core.errors import InvalidInput, NotFound, VenueNotFound
from tablebook.models.block import Block
from tablebook.models.venue import Venue
from tablebook.schemas.block import BlockCreate, BlockOut
from tablebook.services import cache_service
from tablebook.services.audit_service import write_audit_log

router = APIRouter()


@router.get("", response_model=list[BlockOut])
def list_blocks(
    venue_id: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    db: Session = Depends(get_db),
    staff: StaffPrincipal = Depends(require_staff),
):
    q = select(Block).order_by(Block.block_date, Block.start_time)
    if venue_id:
        q = q.where(Block.venue_id == venue_id)
    if from_date:
        q = q.where(Block.block_date >= from_date)
    if to_date:
        q = q.where(Block.block_date <= to_date)
    return db.execute(q.limit(1000)).scalars().all()


@router.post("", response_model=BlockOut, status_code=201)
def create_block(
    payload: BlockCreate,
    request: Request,
    db: Session = Depends(get_db),
    staff: StaffPrincipal = Depends(require_staff),
):
    # end before start runs past midnight
    if payload.start_time == payload.end_time:
        raise InvalidInput("Invalid time range")
    if db.get(Venue, payload.venue_id) is None:
        raise VenueNotFound()

    b = Block(
        venue_id=payload.venue_id,
        block_date=payload.block_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        resource_ids=payload.resource_ids or None,
        reason=payload.reason,
        created_by=staff.id,
    )
    db.add(b)
    db.commit()
    db.refresh(b)

    cache_service.invalidate(db, venue_id=b.venue_id, day=b.block_date)
    write_audit_log(
        db,
        actor=staff.id,
        action_type="BLOCK_CREATE",
        target_type="block",
        target_id=b.id,
        summary="Created block",
        diff_json={"date": str(b.block_date), "venue_wide": b.is_venue_wide},
        request=request,
    )
    return b


@router.delete("/{block_id}")
def delete_block(
    block_id: str,
    request: Request,
    db: Session = Depends(get_db),
    staff: StaffPrincipal = Depends(require_staff),
):
    b = db.get(Block, block_id)
    if not b:
        raise NotFound()
    venue_id, day = b.venue_id, b.block_date
    db.delete(b)
    db.commit()

    cache_service.invalidate(db, venue_id=venue_id, day=day)
    write_audit_log(db, actor=staff.id, action_type="BLOCK_DELETE", target_type="block", target_id=block_id, summary="Deleted block", request=request)
    return {"ok": True}
