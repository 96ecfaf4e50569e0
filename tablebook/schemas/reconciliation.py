from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class DrainOut(BaseModel):
    ok: bool = True
    processed: int
    retried: int
    escalated: int


class ReviewOut(BaseModel):
    id: str
    webhook_event_id: str | None
    order_id: str
    reason: str
    confidence: float | None
    snapshot: dict
    status: str
    resolution: str
    created_at: datetime

    class Config:
        from_attributes = True


class ReviewResolve(BaseModel):
    resolution: str = Field(default="", max_length=255)
    reservation_reference: str | None = Field(default=None, pattern=r"^BK-\d{4}-\d{6}$")
    dismiss: bool = False
