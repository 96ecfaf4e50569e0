from __future__ import annotations

from datetime import date, time

from pydantic import BaseModel, Field


class BlockCreate(BaseModel):
    venue_id: str
    block_date: date
    start_time: time
    end_time: time
    resource_ids: list[str] | None = None  # None or [] blocks the whole venue
    reason: str = Field(default="", max_length=255)


class BlockOut(BaseModel):
    id: str
    venue_id: str
    block_date: date
    start_time: time
    end_time: time
    resource_ids: list[str] | None
    reason: str

    class Config:
        from_attributes = True
