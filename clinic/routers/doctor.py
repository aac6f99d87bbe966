# clinic/routers/doctor.py
from __future__ import annotations

import datetime as dt
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.core.config import settings
from clinic.core.permission import Capability, require_capability
from clinic.db.sql import get_session
from clinic.dependencies import get_current_user
from clinic.modules.doctors import service as svc
from clinic.modules.doctors.schemas import (
    AvailabilityCreate,
    AvailabilityDatePublic,
    AvailabilityReplace,
)
from clinic.modules.users.models import User

router = APIRouter(prefix=settings.API_PREFIX, tags=["doctor-availability"])

manage_availability = require_capability(Capability.MANAGE_AVAILABILITY)


@router.post(
    "/doctor/availability",
    response_model=AvailabilityDatePublic,
    status_code=status.HTTP_201_CREATED,
    summary="Publish the time slots of one date",
)
async def availability_add(
    payload: AvailabilityCreate,
    db: AsyncSession = Depends(get_session),
    doctor: User = Depends(manage_availability),
):
    return await svc.add_availability_date(db, doctor, payload)


@router.get(
    "/doctor/availability",
    response_model=List[AvailabilityDatePublic],
    summary="List own published dates and slots",
)
async def availability_list_own(
    from_date: Optional[dt.date] = Query(None),
    db: AsyncSession = Depends(get_session),
    doctor: User = Depends(manage_availability),
):
    return await svc.list_own_availability(db, doctor, from_date)


@router.put(
    "/doctor/availability/{on}",
    response_model=AvailabilityDatePublic,
    summary="Replace the slots of a date (only while none is booked)",
)
async def availability_replace(
    on: dt.date,
    payload: AvailabilityReplace,
    db: AsyncSession = Depends(get_session),
    doctor: User = Depends(manage_availability),
):
    return await svc.replace_availability_date(db, doctor, on, payload)


@router.delete(
    "/doctor/availability/{on}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a date (only while none of its slots is booked)",
)
async def availability_delete(
    on: dt.date,
    db: AsyncSession = Depends(get_session),
    doctor: User = Depends(manage_availability),
):
    await svc.delete_availability_date(db, doctor, on)
    return None


# Any signed-in user can browse a doctor's open slots
@router.get(
    "/availability/doctor/{doctor_id}",
    response_model=List[AvailabilityDatePublic],
    summary="Open slots of a doctor from a date onward",
)
async def availability_open_slots(
    doctor_id: UUID,
    from_date: Optional[dt.date] = Query(None),
    db: AsyncSession = Depends(get_session),
    _: User = Depends(get_current_user),
):
    return await svc.list_open_slots(db, doctor_id, from_date)
