# clinic/modules/payments/service.py
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.core.config import settings
from clinic.core.errors import Conflict, Forbidden, InvalidState, NotFound
from clinic.modules.appointments.models import Appointment, ApptStatus
from clinic.modules.appointments.service import (
    ensure_patient_owns,
    get_appointment_or_404,
    release_slot_of,
)
from clinic.modules.log import write_audit_log
from clinic.modules.payments.gateway import SimulatedGateway, gateway, new_invoice_number
from clinic.modules.payments.models import Payment, PaymentMethod, PaymentStatus
from clinic.modules.payments.schemas import (
    DoctorEarnings,
    InvoiceSummary,
    PaymentListPage,
    PaymentProcessRequest,
    PaymentPublic,
    PaymentStatusUpdate,
    RefundDecision,
    RefundRequest,
    StatusAggregate,
)
from clinic.modules.payments.statistics import to_money
from clinic.modules.transitions import transition
from clinic.modules.users.models import User, UserRole

logger = logging.getLogger(__name__)


class PaymentNotFound(NotFound):
    default_code = "payment_not_found"
    default_message = "Payment not found"


class PaymentForbidden(Forbidden):
    default_code = "not_owner"
    default_message = "You can only act on your own payments"


class AppointmentNotApproved(InvalidState):
    default_code = "appointment_not_approved"
    default_message = "Only approved appointments can be paid"


class PaymentAlreadyExists(Conflict):
    default_code = "payment_exists"
    default_message = "This appointment already has an active payment"


class NotClinicVisit(InvalidState):
    default_code = "not_clinic_visit"
    default_message = "Only clinic-visit payments need doctor confirmation"


class RefundNotRequested(InvalidState):
    default_code = "refund_not_requested"
    default_message = "This payment has no pending refund request"


class InvoiceUnavailable(InvalidState):
    default_code = "invoice_unavailable"
    default_message = "Invoices are issued for paid or refunded payments only"


def _now() -> datetime:
    return datetime.now()


def _to_public(p: Payment) -> PaymentPublic:
    return PaymentPublic.model_validate(p)


async def get_payment_or_404(session: AsyncSession, payment_id: UUID) -> Payment:
    p = await session.get(Payment, payment_id)
    if not p:
        raise PaymentNotFound()
    return p


def _ensure_can_view(p: Payment, user: User) -> None:
    if user.role == UserRole.ADMIN.value:
        return
    if user.id not in (p.patient_id, p.doctor_id):
        raise PaymentForbidden()


async def _active_payment(session: AsyncSession, appointment_id: UUID) -> Optional[Payment]:
    stmt = select(Payment).where(
        Payment.appointment_id == appointment_id,
        Payment.status.not_in([PaymentStatus.FAILED.value, PaymentStatus.CANCELLED.value]),
    )
    return (await session.execute(stmt)).scalars().first()


# PROCESS
async def process_payment_svc(
    session: AsyncSession,
    payload: PaymentProcessRequest,
    current_user: User,
    charger: Optional[SimulatedGateway] = None,
) -> PaymentPublic:
    """
    Patient pays the consultation fee of an approved appointment.

    Steps:
    - ownership and `approved` status of the appointment
    - no other active payment for it (also enforced by a partial unique index)
    - amount is the fee fixed at approval
    - card/wallet settle as `paid`; clinic_visit stays `pending`
    """
    appt = await get_appointment_or_404(session, payload.appointment_id)
    ensure_patient_owns(appt, current_user)

    if appt.status_enum is not ApptStatus.APPROVED or appt.consultation_fee is None:
        raise AppointmentNotApproved()
    if await _active_payment(session, appt.id):
        raise PaymentAlreadyExists()

    result = await (charger or gateway).charge(payload.payment_method, appt.consultation_fee)

    payment = Payment(
        appointment_id=appt.id,
        patient_id=appt.patient_id,
        doctor_id=appt.doctor_id,
        amount=appt.consultation_fee,
        currency=settings.CURRENCY,
        payment_method=payload.payment_method.value,
        status=result.status.value,
        transaction_id=result.transaction_id,
        invoice_number=new_invoice_number(),
        transaction_date=result.transaction_date,
        phone_number=payload.phone_number,
        card_last_four=payload.card_last_four,
        description=f"Consultation on {appt.appointment_date} {appt.start_time:%H:%M}",
        last_modified_by=current_user.id,
    )
    session.add(payment)
    try:
        await session.flush()
    except IntegrityError as exc:
        # Lost a race against a concurrent payment for the same appointment
        raise PaymentAlreadyExists() from exc
    await session.refresh(payment)

    await write_audit_log(
        session, current_user.id, "PROCESS_PAYMENT",
        f"payment={payment.id} appointment={appt.id} {payment.payment_method} "
        f"{payment.amount} {payment.status}",
    )
    return _to_public(payment)


# CONFIRM (clinic visit)
async def confirm_payment_svc(
    session: AsyncSession,
    payment_id: UUID,
    current_user: User,
) -> PaymentPublic:
    p = await get_payment_or_404(session, payment_id)
    if current_user.role != UserRole.DOCTOR.value or p.doctor_id != current_user.id:
        raise PaymentForbidden()
    if p.method_enum is not PaymentMethod.CLINIC_VISIT:
        raise NotClinicVisit()

    now = _now()
    await transition(
        session,
        p,
        PaymentStatus.PAID,
        confirmed_by=current_user.id,
        confirmed_at=now,
        transaction_date=now,
        last_modified_by=current_user.id,
    )
    await write_audit_log(session, current_user.id, "CONFIRM_PAYMENT", f"payment={p.id}")
    return _to_public(p)


# REFUND REQUEST
async def request_refund_svc(
    session: AsyncSession,
    payment_id: UUID,
    payload: RefundRequest,
    current_user: User,
) -> PaymentPublic:
    p = await get_payment_or_404(session, payment_id)
    if current_user.role != UserRole.PATIENT.value or p.patient_id != current_user.id:
        raise PaymentForbidden()

    await transition(
        session,
        p,
        PaymentStatus.REFUND_REQUESTED,
        refund_reason=payload.reason,
        refund_requested_at=_now(),
        last_modified_by=current_user.id,
    )
    await write_audit_log(session, current_user.id, "REQUEST_REFUND", f"payment={p.id}")
    return _to_public(p)


async def _apply_refund(
    session: AsyncSession, p: Payment, admin: User, admin_notes: Optional[str]
) -> None:
    """
    refund_requested -> refunded for the full amount. An appointment still
    waiting for its visit is cancelled and its slot released.
    """
    now = _now()
    await transition(
        session,
        p,
        PaymentStatus.REFUNDED,
        refund_amount=p.amount,
        refund_processed_at=now,
        refund_processed_by=admin.id,
        admin_notes=admin_notes,
        last_modified_by=admin.id,
    )

    appt = await session.get(Appointment, p.appointment_id)
    if appt is not None and appt.status_enum is ApptStatus.APPROVED:
        await transition(
            session, appt, ApptStatus.CANCELLED, cancelled_at=now, cancelled_by=admin.id
        )
        await release_slot_of(session, appt)


# PROCESS REFUND (admin)
async def process_refund_svc(
    session: AsyncSession,
    payment_id: UUID,
    decision: RefundDecision,
    current_user: User,
) -> PaymentPublic:
    p = await get_payment_or_404(session, payment_id)
    if p.status_enum is not PaymentStatus.REFUND_REQUESTED:
        raise RefundNotRequested()

    notes = (decision.admin_notes or "").strip() or None
    if decision.approved:
        await _apply_refund(session, p, current_user, notes)
    else:
        # refund_reason stays on the record for audit
        await transition(
            session,
            p,
            PaymentStatus.PAID,
            admin_notes=notes,
            refund_processed_at=_now(),
            refund_processed_by=current_user.id,
            last_modified_by=current_user.id,
        )

    await write_audit_log(
        session, current_user.id, "PROCESS_REFUND",
        f"payment={p.id} {'approved' if decision.approved else 'rejected'}",
    )
    return _to_public(p)


# STATUS OVERRIDE (admin)
async def override_status_svc(
    session: AsyncSession,
    payment_id: UUID,
    payload: PaymentStatusUpdate,
    current_user: User,
) -> PaymentPublic:
    """Admin moves a payment along any edge of the status graph."""
    p = await get_payment_or_404(session, payment_id)
    notes = (payload.admin_notes or "").strip() or None
    previous = p.status

    if payload.status is PaymentStatus.REFUNDED:
        await _apply_refund(session, p, current_user, notes)
    else:
        values = {"last_modified_by": current_user.id}
        if notes is not None:
            values["admin_notes"] = notes
        if payload.status is PaymentStatus.PAID and p.transaction_date is None:
            values["transaction_date"] = _now()
        await transition(session, p, payload.status, **values)

    await write_audit_log(
        session, current_user.id, "UPDATE_PAYMENT_STATUS",
        f"payment={p.id} {previous} -> {p.status}",
    )
    return _to_public(p)


# READS
async def get_payment_svc(session: AsyncSession, payment_id: UUID, current_user: User) -> PaymentPublic:
    p = await get_payment_or_404(session, payment_id)
    _ensure_can_view(p, current_user)
    return _to_public(p)


async def get_payment_for_appointment_svc(
    session: AsyncSession, appointment_id: UUID, current_user: User
) -> PaymentPublic:
    """The active payment of an appointment, or its latest one if none is active."""
    appt = await get_appointment_or_404(session, appointment_id)
    if current_user.role != UserRole.ADMIN.value and current_user.id not in (
        appt.patient_id,
        appt.doctor_id,
    ):
        raise PaymentForbidden()

    p = await _active_payment(session, appt.id)
    if p is None:
        stmt = (
            select(Payment)
            .where(Payment.appointment_id == appt.id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        p = (await session.execute(stmt)).scalars().first()
    if p is None:
        raise PaymentNotFound()
    return _to_public(p)


async def patient_history_svc(session: AsyncSession, current_user: User) -> List[PaymentPublic]:
    stmt = (
        select(Payment)
        .where(Payment.patient_id == current_user.id)
        .order_by(Payment.created_at.desc())
    )
    return [_to_public(p) for p in (await session.execute(stmt)).scalars().all()]


async def doctor_earnings_svc(session: AsyncSession, current_user: User) -> DoctorEarnings:
    stmt = (
        select(Payment)
        .where(
            Payment.doctor_id == current_user.id,
            Payment.status.in_([PaymentStatus.PAID.value, PaymentStatus.REFUND_REQUESTED.value]),
        )
        .order_by(Payment.created_at.desc())
    )
    payments = list((await session.execute(stmt)).scalars().all())

    total_earnings = sum(
        (p.amount for p in payments if p.status == PaymentStatus.PAID.value),
        Decimal("0.00"),
    )
    refunded = (
        await session.execute(
            select(func.sum(Payment.refund_amount)).where(
                Payment.doctor_id == current_user.id,
                Payment.status == PaymentStatus.REFUNDED.value,
            )
        )
    ).scalar_one()

    return DoctorEarnings(
        total_earnings=to_money(total_earnings),
        total_refunded=to_money(refunded),
        payment_count=len(payments),
        payments=[_to_public(p) for p in payments],
    )


async def doctor_pending_clinic_svc(session: AsyncSession, current_user: User) -> List[PaymentPublic]:
    stmt = (
        select(Payment)
        .where(
            Payment.doctor_id == current_user.id,
            Payment.payment_method == PaymentMethod.CLINIC_VISIT.value,
            Payment.status == PaymentStatus.PENDING.value,
        )
        .order_by(Payment.created_at.asc())
    )
    return [_to_public(p) for p in (await session.execute(stmt)).scalars().all()]


async def refund_requests_svc(session: AsyncSession) -> List[PaymentPublic]:
    stmt = (
        select(Payment)
        .where(Payment.status == PaymentStatus.REFUND_REQUESTED.value)
        .order_by(Payment.refund_requested_at.asc())
    )
    return [_to_public(p) for p in (await session.execute(stmt)).scalars().all()]


async def list_payments_admin_svc(
    session: AsyncSession,
    *,
    status: Optional[PaymentStatus],
    date_from: Optional[date],
    date_to: Optional[date],
    limit: int,
    offset: int,
) -> PaymentListPage:
    conds = []
    if status is not None:
        conds.append(Payment.status == status.value)
    if date_from is not None:
        conds.append(Payment.created_at >= datetime.combine(date_from, time.min))
    if date_to is not None:
        conds.append(Payment.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    total = (
        await session.execute(select(func.count()).select_from(Payment).where(*conds))
    ).scalar_one()
    rows = (
        await session.execute(
            select(Payment)
            .where(*conds)
            .order_by(Payment.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()

    agg_rows = (
        await session.execute(
            select(Payment.status, func.count(Payment.id), func.sum(Payment.amount))
            .where(*conds)
            .group_by(Payment.status)
        )
    ).all()

    return PaymentListPage(
        items=[_to_public(p) for p in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_next=offset + limit < total,
        by_status={s: StatusAggregate(count=int(c), total=to_money(t)) for s, c, t in agg_rows},
    )


async def invoice_svc(session: AsyncSession, payment_id: UUID, current_user: User) -> InvoiceSummary:
    p = await get_payment_or_404(session, payment_id)
    _ensure_can_view(p, current_user)
    if p.status_enum not in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
        raise InvoiceUnavailable()

    patient = await session.get(User, p.patient_id)
    doctor = await session.get(User, p.doctor_id)
    appt = await session.get(Appointment, p.appointment_id)

    return InvoiceSummary(
        invoice_number=p.invoice_number,
        transaction_id=p.transaction_id,
        issued_at=p.transaction_date or p.created_at,
        status=p.status,
        patient_name=patient.full_name if patient else "",
        patient_email=patient.email if patient else "",
        doctor_name=doctor.full_name if doctor else "",
        doctor_specialization=doctor.specialization if doctor else None,
        appointment_date=appt.appointment_date.isoformat() if appt else "",
        appointment_time=f"{appt.start_time:%H:%M} - {appt.end_time:%H:%M}" if appt else "",
        payment_method=p.payment_method,
        amount=p.amount,
        refund_amount=p.refund_amount,
        currency=p.currency,
    )
