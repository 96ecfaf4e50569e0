from __future__ import annotations

from pydantic import BaseModel


class AvailabilityOut(BaseModel):
    ok: bool = True
    venue_id: str
    service_id: str
    party_size: int
    duration_minutes: int
    slots_by_date: dict[str, list[str]]
    request_id: str = ""
