# clinic/modules/doctors/schemas.py
from __future__ import annotations

import datetime as dt
from datetime import time
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class TimeSlotIn(BaseModel):
    start_time: time = Field(..., description="Local time of day, e.g. 09:00")
    end_time: time = Field(..., description="Local time of day, e.g. 09:30")

    @field_validator("start_time", "end_time")
    @classmethod
    def _local_window(cls, v, info):
        if v.tzinfo is not None:
            raise ValueError("times must be local, without a UTC offset")
        start = info.data.get("start_time")
        if info.field_name == "end_time" and start is not None and v <= start:
            raise ValueError("end_time must be after start_time")
        return v


def _check_no_overlap(slots: List[TimeSlotIn]) -> List[TimeSlotIn]:
    ordered = sorted(slots, key=lambda s: s.start_time)
    for prev, cur in zip(ordered, ordered[1:]):
        if cur.start_time < prev.end_time:
            raise ValueError(
                f"time slots overlap: {prev.start_time:%H:%M}-{prev.end_time:%H:%M} "
                f"and {cur.start_time:%H:%M}-{cur.end_time:%H:%M}"
            )
    return ordered


class AvailabilityCreate(BaseModel):
    date: dt.date
    time_slots: List[TimeSlotIn] = Field(..., min_length=1)

    @field_validator("time_slots")
    @classmethod
    def _no_overlap(cls, v):
        return _check_no_overlap(v)


class AvailabilityReplace(BaseModel):
    time_slots: List[TimeSlotIn] = Field(..., min_length=1)

    @field_validator("time_slots")
    @classmethod
    def _no_overlap(cls, v):
        return _check_no_overlap(v)


class TimeSlotPublic(BaseModel):
    id: UUID
    slot_index: int
    start_time: time
    end_time: time
    is_booked: bool
    booked_by: Optional[UUID] = None

    class Config:
        from_attributes = True


class AvailabilityDatePublic(BaseModel):
    doctor_id: UUID
    date: dt.date
    time_slots: List[TimeSlotPublic]
