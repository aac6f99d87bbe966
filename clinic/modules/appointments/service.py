# clinic/modules/appointments/service.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.core.errors import Conflict, Forbidden, InvalidState, NotFound, ValidationFailed
from clinic.modules.appointments.models import Appointment, ApptStatus
from clinic.modules.appointments.schemas import (
    AppointmentApproveRequest,
    AppointmentCreateRequest,
    AppointmentListItem,
    AppointmentListPage,
    AppointmentPublic,
    AppointmentRejectRequest,
)
from clinic.modules.doctors import repository as slots_repo
from clinic.modules.doctors.service import DoctorNotFound
from clinic.modules.log import write_audit_log
from clinic.modules.payments.models import Payment, PaymentStatus
from clinic.modules.transitions import transition
from clinic.modules.users.models import User, UserRole
from clinic.modules.users.repository import get_active_doctor

logger = logging.getLogger(__name__)


# Custom errors; the app-level handler maps them to HTTP
class AppointmentNotFound(NotFound):
    default_code = "appointment_not_found"
    default_message = "Appointment not found"


class AppointmentForbidden(Forbidden):
    default_code = "not_owner"
    default_message = "You can only act on your own appointments"


class SlotNotFound(NotFound):
    default_code = "slot_not_found"
    default_message = "The doctor has not published this time slot"


class SlotAlreadyBooked(Conflict):
    default_code = "slot_already_booked"
    default_message = "This appointment slot is already booked"


class PaymentRequired(InvalidState):
    default_code = "payment_required"
    default_message = "The consultation must be paid before it can be completed"


def _now() -> datetime:
    return datetime.now()


def _to_public(appt: Appointment) -> AppointmentPublic:
    return AppointmentPublic.model_validate(appt)


def _to_list_item(appt: Appointment) -> AppointmentListItem:
    return AppointmentListItem.model_validate(appt)


async def get_appointment_or_404(session: AsyncSession, appointment_id: UUID) -> Appointment:
    appt = await session.get(Appointment, appointment_id)
    if not appt:
        raise AppointmentNotFound()
    return appt


def ensure_doctor_owns(appt: Appointment, user: User) -> None:
    if user.role != UserRole.DOCTOR.value or appt.doctor_id != user.id:
        raise AppointmentForbidden()


def ensure_patient_owns(appt: Appointment, user: User) -> None:
    if user.role != UserRole.PATIENT.value or appt.patient_id != user.id:
        raise AppointmentForbidden()


async def release_slot_of(session: AsyncSession, appt: Appointment) -> None:
    if appt.slot_id is not None:
        await slots_repo.release_slot(session, slot_id=appt.slot_id)


# CREATE
async def create_appointment_svc(
    session: AsyncSession,
    payload: AppointmentCreateRequest,
    current_user: User,
) -> AppointmentPublic:
    """
    Book one of a doctor's published slots.

    The slot is claimed with a conditional update in the same transaction
    as the insert; if anything after the claim fails, the request session
    rolls both back.
    """
    if current_user.role != UserRole.PATIENT.value:
        raise AppointmentForbidden("only_patients_can_book", "Only patients can book appointments")

    if datetime.combine(payload.appointment_date, payload.start_time) <= _now():
        raise ValidationFailed("date_in_past", "Appointments can only be booked in the future")

    doctor = await get_active_doctor(session, payload.doctor_id)
    if not doctor:
        raise DoctorNotFound()

    slot = await slots_repo.find_slot(
        session,
        doctor_id=doctor.id,
        on=payload.appointment_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
    )
    if not slot:
        raise SlotNotFound()
    if not await slots_repo.claim_slot(session, slot_id=slot.id, patient_id=current_user.id):
        raise SlotAlreadyBooked()

    appt = Appointment(
        patient_id=current_user.id,
        doctor_id=doctor.id,
        slot_id=slot.id,
        appointment_date=payload.appointment_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        request_message=(payload.request_message or "").strip() or None,
        status=ApptStatus.PENDING.value,
    )
    session.add(appt)
    await session.flush()
    await session.refresh(appt)

    await write_audit_log(
        session, current_user.id, "CREATE_APPOINTMENT",
        f"appointment={appt.id} doctor={doctor.id} {appt.appointment_date} {appt.start_time}",
    )
    return _to_public(appt)


# APPROVE
async def approve_appointment_svc(
    session: AsyncSession,
    appointment_id: UUID,
    payload: AppointmentApproveRequest,
    current_user: User,
) -> AppointmentPublic:
    appt = await get_appointment_or_404(session, appointment_id)
    ensure_doctor_owns(appt, current_user)

    await transition(
        session,
        appt,
        ApptStatus.APPROVED,
        consultation_fee=payload.consultation_fee,
        approval_notes=(payload.notes or "").strip() or None,
        approved_at=_now(),
    )
    await write_audit_log(
        session, current_user.id, "APPROVE_APPOINTMENT",
        f"appointment={appt.id} fee={payload.consultation_fee}",
    )
    return _to_public(appt)


# REJECT
async def reject_appointment_svc(
    session: AsyncSession,
    appointment_id: UUID,
    payload: AppointmentRejectRequest,
    current_user: User,
) -> AppointmentPublic:
    appt = await get_appointment_or_404(session, appointment_id)
    ensure_doctor_owns(appt, current_user)

    await transition(
        session,
        appt,
        ApptStatus.REJECTED,
        rejection_reason=(payload.rejection_reason or "").strip() or None,
    )
    await release_slot_of(session, appt)
    await write_audit_log(session, current_user.id, "REJECT_APPOINTMENT", f"appointment={appt.id}")
    return _to_public(appt)


# COMPLETE
async def complete_appointment_svc(
    session: AsyncSession,
    appointment_id: UUID,
    current_user: User,
) -> AppointmentPublic:
    """
    Doctor marks the visit done. Only approved appointments whose
    consultation has been paid can be completed.
    """
    appt = await get_appointment_or_404(session, appointment_id)
    ensure_doctor_owns(appt, current_user)

    if appt.status_enum is ApptStatus.APPROVED:
        paid = await session.execute(
            select(Payment.id).where(
                Payment.appointment_id == appt.id,
                Payment.status == PaymentStatus.PAID.value,
            )
        )
        if paid.first() is None:
            raise PaymentRequired()

    await transition(session, appt, ApptStatus.COMPLETED, completed_at=_now())
    await write_audit_log(session, current_user.id, "COMPLETE_APPOINTMENT", f"appointment={appt.id}")
    return _to_public(appt)


# CANCEL
async def cancel_appointment_svc(
    session: AsyncSession,
    appointment_id: UUID,
    current_user: User,
    reason: Optional[str] = None,
) -> AppointmentPublic:
    """
    Patient or doctor cancels an approved appointment:
    - only the appointment's own patient or doctor may cancel
    - the slot is released
    - a payment still awaiting clinic confirmation is cancelled with it
    """
    appt = await get_appointment_or_404(session, appointment_id)
    if current_user.id not in (appt.patient_id, appt.doctor_id):
        raise AppointmentForbidden()

    await transition(
        session,
        appt,
        ApptStatus.CANCELLED,
        cancelled_at=_now(),
        cancelled_by=current_user.id,
    )
    await release_slot_of(session, appt)
    await session.execute(
        update(Payment)
        .where(
            Payment.appointment_id == appt.id,
            Payment.status == PaymentStatus.PENDING.value,
        )
        .values(status=PaymentStatus.CANCELLED.value, last_modified_by=current_user.id)
        .execution_options(synchronize_session=False)
    )
    await write_audit_log(
        session, current_user.id, "CANCEL_APPOINTMENT",
        f"appointment={appt.id} reason={(reason or '').strip()}",
    )
    return _to_public(appt)


# ADMIN DELETE (moderation)
async def delete_appointment_svc(
    session: AsyncSession,
    appointment_id: UUID,
    current_user: User,
) -> None:
    appt = await get_appointment_or_404(session, appointment_id)
    if appt.status_enum.holds_slot:
        await release_slot_of(session, appt)
    await session.execute(
        delete(Payment)
        .where(Payment.appointment_id == appt.id)
        .execution_options(synchronize_session=False)
    )
    await session.delete(appt)
    await session.flush()
    await write_audit_log(session, current_user.id, "DELETE_APPOINTMENT", f"appointment={appointment_id}")
    logger.info("Admin %s deleted appointment %s", current_user.id, appointment_id)


# READS
async def get_appointment_svc(
    session: AsyncSession,
    appointment_id: UUID,
    current_user: User,
) -> AppointmentPublic:
    appt = await get_appointment_or_404(session, appointment_id)
    if current_user.role != UserRole.ADMIN.value and current_user.id not in (
        appt.patient_id,
        appt.doctor_id,
    ):
        raise AppointmentForbidden()
    return _to_public(appt)


async def _page(
    session: AsyncSession,
    cond,
    order_by: list,
    limit: int,
    offset: int,
) -> AppointmentListPage:
    total_stmt = select(func.count()).select_from(Appointment).where(cond)
    total = (await session.execute(total_stmt)).scalar_one()

    stmt = select(Appointment).where(cond).order_by(*order_by).limit(limit).offset(offset)
    rows: List[Appointment] = list((await session.execute(stmt)).scalars().all())
    return AppointmentListPage(
        items=[_to_list_item(a) for a in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_next=offset + limit < total,
    )


async def list_my_appointments_svc(
    session: AsyncSession,
    current_user: User,
    limit: int,
    offset: int,
) -> AppointmentListPage:
    """
    Appointments of the current user:
    - patient => appointments where user is patient
    - doctor => appointments where user is doctor
    - admin => all
    """
    if current_user.role == UserRole.PATIENT.value:
        cond = Appointment.patient_id == current_user.id
    elif current_user.role == UserRole.DOCTOR.value:
        cond = Appointment.doctor_id == current_user.id
    else:
        cond = true()
    return await _page(
        session,
        cond,
        [Appointment.appointment_date.desc(), Appointment.start_time.desc()],
        limit,
        offset,
    )


async def list_doctor_requests_svc(
    session: AsyncSession,
    current_user: User,
    status: ApptStatus,
    limit: int,
    offset: int,
) -> AppointmentListPage:
    """The doctor's queue for one status (pending by default), newest first."""
    cond = (Appointment.doctor_id == current_user.id) & (Appointment.status == status.value)
    return await _page(session, cond, [Appointment.created_at.desc()], limit, offset)


async def list_all_appointments_svc(
    session: AsyncSession,
    status: Optional[ApptStatus],
    limit: int,
    offset: int,
) -> AppointmentListPage:
    cond = Appointment.status == status.value if status else true()
    return await _page(session, cond, [Appointment.created_at.desc()], limit, offset)
