# clinic/modules/doctors/service.py
from __future__ import annotations

import logging
from datetime import date
from itertools import groupby
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from clinic.core.errors import Conflict, NotFound, ValidationFailed
from clinic.modules.doctors import repository as repo
from clinic.modules.doctors.models import AvailabilitySlot
from clinic.modules.doctors.schemas import (
    AvailabilityCreate,
    AvailabilityDatePublic,
    AvailabilityReplace,
    TimeSlotIn,
    TimeSlotPublic,
)
from clinic.modules.log import write_audit_log
from clinic.modules.users.models import User
from clinic.modules.users.repository import get_active_doctor

logger = logging.getLogger(__name__)


class AvailabilityDateExists(Conflict):
    default_code = "availability_date_exists"
    default_message = "Availability for this date already exists; edit it instead"


class AvailabilityDateNotFound(NotFound):
    default_code = "availability_date_not_found"
    default_message = "No availability is published for this date"


class SlotsAlreadyBooked(Conflict):
    default_code = "slots_booked"
    default_message = "This date has booked slots and cannot be changed or removed"


class DoctorNotFound(NotFound):
    default_code = "doctor_not_found"
    default_message = "Doctor not found"


def today() -> date:
    return date.today()


def group_by_date(doctor_id: UUID, slots: Sequence[AvailabilitySlot]) -> List[AvailabilityDatePublic]:
    return [
        AvailabilityDatePublic(
            doctor_id=doctor_id,
            date=day,
            time_slots=[TimeSlotPublic.model_validate(s) for s in day_slots],
        )
        for day, day_slots in groupby(slots, key=lambda s: s.available_date)
    ]


def _windows(slots: List[TimeSlotIn]):
    return [(s.start_time, s.end_time) for s in slots]


async def add_availability_date(
    session: AsyncSession, doctor: User, payload: AvailabilityCreate
) -> AvailabilityDatePublic:
    if payload.date < today():
        raise ValidationFailed("date_in_past", "Availability cannot be added for a past date")
    if await repo.date_exists(session, doctor_id=doctor.id, on=payload.date):
        raise AvailabilityDateExists()

    slots = await repo.add_slots(
        session, doctor_id=doctor.id, on=payload.date, windows=_windows(payload.time_slots)
    )
    await write_audit_log(
        session, doctor.id, "ADD_AVAILABILITY", f"{payload.date} ({len(slots)} slots)"
    )
    logger.info("Doctor %s published %d slots on %s", doctor.id, len(slots), payload.date)
    return group_by_date(doctor.id, slots)[0]


async def replace_availability_date(
    session: AsyncSession, doctor: User, on: date, payload: AvailabilityReplace
) -> AvailabilityDatePublic:
    if not await repo.date_exists(session, doctor_id=doctor.id, on=on):
        raise AvailabilityDateNotFound()
    if await repo.any_booked(session, doctor_id=doctor.id, on=on):
        raise SlotsAlreadyBooked()

    await repo.delete_date(session, doctor_id=doctor.id, on=on)
    slots = await repo.add_slots(
        session, doctor_id=doctor.id, on=on, windows=_windows(payload.time_slots)
    )
    await write_audit_log(session, doctor.id, "REPLACE_AVAILABILITY", f"{on} ({len(slots)} slots)")
    return group_by_date(doctor.id, slots)[0]


async def delete_availability_date(session: AsyncSession, doctor: User, on: date) -> None:
    if not await repo.date_exists(session, doctor_id=doctor.id, on=on):
        raise AvailabilityDateNotFound()
    # A booked slot is referenced by an appointment; deleting would orphan it
    if await repo.any_booked(session, doctor_id=doctor.id, on=on):
        raise SlotsAlreadyBooked()

    deleted = await repo.delete_date(session, doctor_id=doctor.id, on=on)
    await write_audit_log(session, doctor.id, "DELETE_AVAILABILITY", f"{on} ({deleted} slots)")


async def list_own_availability(
    session: AsyncSession, doctor: User, from_date: Optional[date] = None
) -> List[AvailabilityDatePublic]:
    slots = await repo.list_slots(session, doctor_id=doctor.id, from_date=from_date)
    return group_by_date(doctor.id, slots)


async def list_open_slots(
    session: AsyncSession, doctor_id: UUID, from_date: Optional[date] = None
) -> List[AvailabilityDatePublic]:
    """Unbooked slots of a doctor, from `from_date` (default: today) onward."""
    if not await get_active_doctor(session, doctor_id):
        raise DoctorNotFound()
    slots = await repo.list_slots(
        session,
        doctor_id=doctor_id,
        from_date=from_date or today(),
        only_open=True,
    )
    return group_by_date(doctor_id, slots)
