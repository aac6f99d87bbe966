# clinic/routers/appointments.py
from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.core.config import settings
from clinic.core.permission import Capability, require_capability
from clinic.db.sql import get_session
from clinic.dependencies import get_current_user
from clinic.modules.appointments.models import ApptStatus
from clinic.modules.appointments.schemas import (
    AppointmentApproveRequest,
    AppointmentCancelRequest,
    AppointmentCreateRequest,
    AppointmentListPage,
    AppointmentPublic,
    AppointmentRejectRequest,
)
from clinic.modules.appointments.service import (
    approve_appointment_svc,
    cancel_appointment_svc,
    complete_appointment_svc,
    create_appointment_svc,
    delete_appointment_svc,
    get_appointment_svc,
    list_all_appointments_svc,
    list_doctor_requests_svc,
    list_my_appointments_svc,
    reject_appointment_svc,
)
from clinic.modules.notifications.service import NotificationEvent, notify
from clinic.modules.users.models import User
from clinic.modules.users.schemas import DoctorPublic
from clinic.modules.users.service import list_bookable_doctors

router = APIRouter(prefix=settings.API_PREFIX, tags=["appointments"])


@router.post(
    "/appointments",
    response_model=AppointmentPublic,
    status_code=status.HTTP_201_CREATED,
    summary="Book a published slot (transactional execution)",
)
async def appointments_create(
    payload: AppointmentCreateRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.BOOK_APPOINTMENT)),
):
    appt = await create_appointment_svc(session, payload, current_user)
    notify(
        background_tasks, NotificationEvent.APPOINTMENT_BOOKED, appt.doctor_id,
        appointment_id=str(appt.id), date=str(appt.appointment_date), start=str(appt.start_time),
    )
    return appt


@router.get(
    "/appointments/my",
    response_model=AppointmentListPage,
    summary="Retrieve current user's appointments",
)
async def appointments_my(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await list_my_appointments_svc(session, current_user, limit, offset)


@router.get(
    "/appointments/doctor-requests",
    response_model=AppointmentListPage,
    summary="Doctor's request queue for one status",
)
async def appointments_doctor_requests(
    status_filter: ApptStatus = Query(ApptStatus.PENDING, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.REVIEW_APPOINTMENT)),
):
    return await list_doctor_requests_svc(session, current_user, status_filter, limit, offset)


@router.get(
    "/appointments/doctor-appointments",
    response_model=AppointmentListPage,
    summary="All appointments of the current doctor",
)
async def appointments_doctor_all(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.REVIEW_APPOINTMENT)),
):
    return await list_my_appointments_svc(session, current_user, limit, offset)


@router.get(
    "/appointments/available-doctors",
    response_model=List[DoctorPublic],
    summary="Active doctors a patient can book",
)
async def appointments_available_doctors(
    session: AsyncSession = Depends(get_session),
    _: User = Depends(get_current_user),
):
    return await list_bookable_doctors(session)


@router.get(
    "/appointments/admin/all",
    response_model=AppointmentListPage,
    summary="Every appointment, optionally filtered by status",
)
async def appointments_admin_all(
    status_filter: Optional[ApptStatus] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    _: User = Depends(require_capability(Capability.MODERATE)),
):
    return await list_all_appointments_svc(session, status_filter, limit, offset)


@router.delete(
    "/appointments/admin/{appointment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Hard-delete an appointment and its payments (moderation)",
)
async def appointments_admin_delete(
    appointment_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.MODERATE)),
):
    await delete_appointment_svc(session, appointment_id, current_user)
    return None


@router.get(
    "/appointments/{appointment_id}",
    response_model=AppointmentPublic,
    summary="Appointment detail (owner or admin)",
)
async def appointments_detail(
    appointment_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await get_appointment_svc(session, appointment_id, current_user)


@router.put(
    "/appointments/{appointment_id}/approve",
    response_model=AppointmentPublic,
    summary="Doctor approves a pending request and sets the fee",
)
async def appointments_approve(
    appointment_id: UUID,
    payload: AppointmentApproveRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.REVIEW_APPOINTMENT)),
):
    appt = await approve_appointment_svc(session, appointment_id, payload, current_user)
    notify(
        background_tasks, NotificationEvent.APPOINTMENT_APPROVED, appt.patient_id,
        appointment_id=str(appt.id), fee=str(appt.consultation_fee),
    )
    return appt


@router.put(
    "/appointments/{appointment_id}/reject",
    response_model=AppointmentPublic,
    summary="Doctor rejects a pending request",
)
async def appointments_reject(
    appointment_id: UUID,
    payload: AppointmentRejectRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.REVIEW_APPOINTMENT)),
):
    appt = await reject_appointment_svc(session, appointment_id, payload, current_user)
    notify(
        background_tasks, NotificationEvent.APPOINTMENT_REJECTED, appt.patient_id,
        appointment_id=str(appt.id), reason=appt.rejection_reason,
    )
    return appt


@router.put(
    "/appointments/{appointment_id}/complete",
    response_model=AppointmentPublic,
    summary="Doctor marks a paid, approved appointment as done",
)
async def appointments_complete(
    appointment_id: UUID,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.REVIEW_APPOINTMENT)),
):
    appt = await complete_appointment_svc(session, appointment_id, current_user)
    notify(
        background_tasks, NotificationEvent.APPOINTMENT_COMPLETED, appt.patient_id,
        appointment_id=str(appt.id),
    )
    return appt


@router.put(
    "/appointments/{appointment_id}/cancel",
    response_model=AppointmentPublic,
    summary="Patient or doctor cancels an approved appointment",
)
async def appointments_cancel(
    appointment_id: UUID,
    background_tasks: BackgroundTasks,
    payload: Optional[AppointmentCancelRequest] = None,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.CANCEL_APPOINTMENT)),
):
    reason = payload.reason if payload else None
    appt = await cancel_appointment_svc(session, appointment_id, current_user, reason)
    other = appt.doctor_id if current_user.id == appt.patient_id else appt.patient_id
    notify(
        background_tasks, NotificationEvent.APPOINTMENT_CANCELLED, other,
        appointment_id=str(appt.id), reason=reason,
    )
    return appt
