from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, EmailStr, Field


class BookingCreate(BaseModel):
    venue_slug: str = Field(min_length=1, max_length=128)
    service_id: str = Field(min_length=1, max_length=36)
    date: dt.date
    time: dt.time
    party_size: int = Field(ge=1)

    guest_name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    phone: str = Field(default="", max_length=32)
    notes: str = Field(default="", max_length=2000)

    lock_token: str | None = Field(default=None, max_length=64)


class BookingOut(BaseModel):
    id: str
    reference: str
    guest_name: str
    party_size: int
    date: dt.date
    time: str
    status: str


class BookingCreated(BaseModel):
    ok: bool = True
    booking: BookingOut
    request_id: str = ""


class PaymentOutcomeIn(BaseModel):
    reference: str = Field(pattern=r"^BK-\d{4}-\d{6}$")
    succeeded: bool
    lock_token: str | None = Field(default=None, max_length=64)


class ReservationStatusOut(BaseModel):
    ok: bool = True
    reference: str
    status: str
    request_id: str = ""
