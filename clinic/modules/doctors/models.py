# clinic/modules/doctors/models.py
from __future__ import annotations

import uuid
from datetime import date, time
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Time,
    UniqueConstraint,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column

from clinic.db.base import Base, UUIDPKMixin, TimestampMixin, ReprMixin


class AvailabilitySlot(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    One bookable window of a doctor on a given date. One row = one slot;
    the rows sharing (doctor_id, available_date) form that date's entry.
    """

    __tablename__ = "availability_slots"

    doctor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    available_date: Mapped[date] = mapped_column(Date, nullable=False)
    slot_index: Mapped[int] = mapped_column(Integer, nullable=False)

    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    is_booked: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    booked_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_slot_time_order"),
        CheckConstraint("slot_index >= 0", name="ck_slot_index_positive"),
        UniqueConstraint(
            "doctor_id", "available_date", "slot_index",
            name="uq_slot_doctor_day_index",
        ),
        UniqueConstraint(
            "doctor_id", "available_date", "start_time",
            name="uq_slot_doctor_day_start",
        ),
        # Open-slot lookups: doctor, day, free/booked
        Index("ix_slot_doctor_date_booked", "doctor_id", "available_date", "is_booked"),
    )
