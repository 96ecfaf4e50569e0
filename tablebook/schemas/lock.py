from __future__ import annotations

import datetime as dt
from typing import Literal

from pydantic import BaseModel, Field


class LockAcquireRequest(BaseModel):
    venue_slug: str = Field(min_length=1, max_length=128)
    service_id: str = Field(min_length=1, max_length=36)
    date: dt.date
    time: dt.time
    party_size: int = Field(ge=1)


class LockTokenRequest(BaseModel):
    lock_token: str = Field(min_length=1, max_length=64)


class LockReleaseRequest(LockTokenRequest):
    reason: Literal["released", "error", "payment_succeeded", "payment_failed"] = "released"


class LockOut(BaseModel):
    ok: bool = True
    lock_token: str
    expires_at: dt.datetime
    request_id: str = ""


class ActiveLockOut(BaseModel):
    id: str
    venue_id: str
    service_id: str | None
    booking_date: dt.date
    start_time: dt.time
    party_size: int
    locked_at: dt.datetime
    expires_at: dt.datetime

    class Config:
        from_attributes = True
