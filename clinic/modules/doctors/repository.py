# clinic/modules/doctors/repository.py
from __future__ import annotations

from datetime import date, time
from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.modules.doctors.models import AvailabilitySlot


async def list_slots(
    db: AsyncSession,
    *,
    doctor_id: UUID,
    on: Optional[date] = None,
    from_date: Optional[date] = None,
    only_open: bool = False,
) -> Sequence[AvailabilitySlot]:
    stmt = select(AvailabilitySlot).where(AvailabilitySlot.doctor_id == doctor_id)
    if on is not None:
        stmt = stmt.where(AvailabilitySlot.available_date == on)
    if from_date is not None:
        stmt = stmt.where(AvailabilitySlot.available_date >= from_date)
    if only_open:
        stmt = stmt.where(AvailabilitySlot.is_booked.is_(False))
    stmt = stmt.order_by(AvailabilitySlot.available_date, AvailabilitySlot.slot_index)
    rows = await db.execute(stmt)
    return rows.scalars().all()


async def date_exists(db: AsyncSession, *, doctor_id: UUID, on: date) -> bool:
    stmt = select(
        exists().where(
            AvailabilitySlot.doctor_id == doctor_id,
            AvailabilitySlot.available_date == on,
        )
    )
    return bool((await db.execute(stmt)).scalar())


async def any_booked(db: AsyncSession, *, doctor_id: UUID, on: date) -> bool:
    stmt = select(
        exists().where(
            AvailabilitySlot.doctor_id == doctor_id,
            AvailabilitySlot.available_date == on,
            AvailabilitySlot.is_booked.is_(True),
        )
    )
    return bool((await db.execute(stmt)).scalar())


async def add_slots(
    db: AsyncSession,
    *,
    doctor_id: UUID,
    on: date,
    windows: Iterable[tuple[time, time]],
) -> list[AvailabilitySlot]:
    slots = [
        AvailabilitySlot(
            doctor_id=doctor_id,
            available_date=on,
            slot_index=index,
            start_time=start,
            end_time=end,
            is_booked=False,
        )
        for index, (start, end) in enumerate(windows)
    ]
    db.add_all(slots)
    await db.flush()
    return slots


async def delete_date(db: AsyncSession, *, doctor_id: UUID, on: date) -> int:
    """Delete every *unbooked* slot of a date. Returns deleted row count."""
    res = await db.execute(
        delete(AvailabilitySlot)
        .where(
            AvailabilitySlot.doctor_id == doctor_id,
            AvailabilitySlot.available_date == on,
            AvailabilitySlot.is_booked.is_(False),
        )
        .execution_options(synchronize_session=False)
    )
    return res.rowcount or 0  # type: ignore


async def find_slot(
    db: AsyncSession,
    *,
    doctor_id: UUID,
    on: date,
    start_time: time,
    end_time: time,
) -> Optional[AvailabilitySlot]:
    stmt = select(AvailabilitySlot).where(
        AvailabilitySlot.doctor_id == doctor_id,
        AvailabilitySlot.available_date == on,
        AvailabilitySlot.start_time == start_time,
        AvailabilitySlot.end_time == end_time,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def claim_slot(db: AsyncSession, *, slot_id: UUID, patient_id: UUID) -> bool:
    """
    Atomically flip is_booked false -> true. Returns False when another
    booking got there first.
    """
    res = await db.execute(
        update(AvailabilitySlot)
        .where(AvailabilitySlot.id == slot_id, AvailabilitySlot.is_booked.is_(False))
        .values(is_booked=True, booked_by=patient_id)
        .execution_options(synchronize_session=False)
    )
    return (res.rowcount or 0) == 1  # type: ignore


async def release_slot(db: AsyncSession, *, slot_id: UUID) -> bool:
    res = await db.execute(
        update(AvailabilitySlot)
        .where(AvailabilitySlot.id == slot_id, AvailabilitySlot.is_booked.is_(True))
        .values(is_booked=False, booked_by=None)
        .execution_options(synchronize_session=False)
    )
    return (res.rowcount or 0) == 1  # type: ignore
