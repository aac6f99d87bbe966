# clinic/modules/appointments/schemas.py
from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class AppointmentCreateRequest(BaseModel):
    """
    Payload to book an appointment.
    - patient_id is taken from current_user (role patient), never from the client.
    - The window must match one of the doctor's published slots.
    """
    doctor_id: UUID
    appointment_date: date
    start_time: time
    end_time: time
    request_message: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("start_time", "end_time")
    @classmethod
    def _local_window(cls, v, info):
        if v.tzinfo is not None:
            raise ValueError("times must be local, without a UTC offset")
        start = info.data.get("start_time")
        if info.field_name == "end_time" and start is not None and v <= start:
            raise ValueError("end_time must be after start_time")
        return v


class AppointmentApproveRequest(BaseModel):
    consultation_fee: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    notes: Optional[str] = Field(default=None, max_length=1000)


class AppointmentRejectRequest(BaseModel):
    rejection_reason: Optional[str] = Field(default=None, max_length=1000)


class AppointmentCancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class AppointmentPublic(BaseModel):
    """
    DTO returns a detailed appointment.
    """
    id: UUID
    patient_id: UUID
    doctor_id: UUID
    slot_id: Optional[UUID] = None
    appointment_date: date
    start_time: time
    end_time: time
    status: str
    request_message: Optional[str] = None
    rejection_reason: Optional[str] = None
    consultation_fee: Optional[Decimal] = None
    approval_notes: Optional[str] = None
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AppointmentListItem(BaseModel):
    """
    Used for lists
    """
    id: UUID
    patient_id: UUID
    doctor_id: UUID
    appointment_date: date
    start_time: time
    end_time: time
    status: str
    consultation_fee: Optional[Decimal] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AppointmentListPage(BaseModel):
    """
    Page the appointments list (with pagination).
    """
    items: List[AppointmentListItem]
    total: int
    limit: int
    offset: int
    has_next: bool
