# clinic/modules/appointments/models.py
from __future__ import annotations

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum as PyEnum
from typing import FrozenSet, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import Mapped, mapped_column

from clinic.db.base import Base, UUIDPKMixin, TimestampMixin, ReprMixin


class ApptStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def next_states(self) -> FrozenSet["ApptStatus"]:
        return _APPT_TRANSITIONS[self]

    def can_transition_to(self, target: "ApptStatus") -> bool:
        return target in self.next_states

    @property
    def is_terminal(self) -> bool:
        return not _APPT_TRANSITIONS[self]

    @property
    def holds_slot(self) -> bool:
        return self in (ApptStatus.PENDING, ApptStatus.APPROVED, ApptStatus.COMPLETED)


_APPT_TRANSITIONS = {
    ApptStatus.PENDING: frozenset({ApptStatus.APPROVED, ApptStatus.REJECTED}),
    ApptStatus.APPROVED: frozenset({ApptStatus.COMPLETED, ApptStatus.CANCELLED}),
    ApptStatus.REJECTED: frozenset(),
    ApptStatus.COMPLETED: frozenset(),
    ApptStatus.CANCELLED: frozenset(),
}


class Appointment(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    A consultation request between a patient and a doctor for one slot.
    """

    __tablename__ = "appointments"

    patient_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    slot_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("availability_slots.id", ondelete="SET NULL"),
        nullable=True,
    )

    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ApptStatus.PENDING.value,
        server_default=ApptStatus.PENDING.value,
    )

    request_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Set once, at approval
    consultation_fee: Mapped[Optional[Decimal]] = mapped_column(nullable=True)
    approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    approved_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    @property
    def status_enum(self) -> ApptStatus:
        return ApptStatus(self.status)

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_appt_time_order"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'completed', 'cancelled')",
            name="ck_appt_status_valid",
        ),
        CheckConstraint(
            "consultation_fee IS NULL OR consultation_fee >= 0",
            name="ck_appt_fee_positive",
        ),
        Index("ix_appt_doctor_date_start", "doctor_id", "appointment_date", "start_time"),
        Index("ix_appt_patient_date", "patient_id", "appointment_date"),
        Index("ix_appt_status_date", "status", "appointment_date"),
    )
