# clinic/routers/payments.py
from __future__ import annotations

import datetime as dt
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.core.config import settings
from clinic.core.permission import Capability, require_capability
from clinic.db.sql import get_session
from clinic.dependencies import get_current_user
from clinic.modules.notifications.service import NotificationEvent, notify
from clinic.modules.payments import service as svc
from clinic.modules.payments.models import PaymentStatus
from clinic.modules.payments.schemas import (
    DoctorEarnings,
    InvoiceSummary,
    PaymentListPage,
    PaymentProcessRequest,
    PaymentPublic,
    PaymentStatistics,
    PaymentStatusUpdate,
    RefundDecision,
    RefundRequest,
)
from clinic.modules.payments.statistics import payment_statistics
from clinic.modules.users.models import User

router = APIRouter(prefix=f"{settings.API_PREFIX}/payments", tags=["payments"])


@router.post(
    "/process",
    response_model=PaymentPublic,
    status_code=status.HTTP_201_CREATED,
    summary="Pay for an approved appointment",
)
async def payments_process(
    payload: PaymentProcessRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.PAY)),
):
    payment = await svc.process_payment_svc(session, payload, current_user)
    ctx = {
        "payment_id": str(payment.id),
        "amount": str(payment.amount),
        "currency": payment.currency,
        "invoice_number": payment.invoice_number,
    }
    if payment.status == PaymentStatus.PAID.value:
        notify(background_tasks, NotificationEvent.PAYMENT_RECEIVED, payment.patient_id, **ctx)
        notify(background_tasks, NotificationEvent.PAYMENT_RECEIVED, payment.doctor_id, **ctx)
    else:
        notify(background_tasks, NotificationEvent.PAYMENT_PENDING_CONFIRMATION, payment.doctor_id, **ctx)
    return payment


@router.get(
    "/patient/history",
    response_model=List[PaymentPublic],
    summary="Payments made by the current patient",
)
async def payments_patient_history(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.PAY)),
):
    return await svc.patient_history_svc(session, current_user)


@router.get(
    "/doctor/earnings",
    response_model=DoctorEarnings,
    summary="Paid and refund-requested payments of the current doctor",
)
async def payments_doctor_earnings(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.VIEW_EARNINGS)),
):
    return await svc.doctor_earnings_svc(session, current_user)


@router.get(
    "/doctor/pending-clinic",
    response_model=List[PaymentPublic],
    summary="Clinic-visit payments awaiting the current doctor's confirmation",
)
async def payments_doctor_pending_clinic(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.CONFIRM_CLINIC_PAYMENT)),
):
    return await svc.doctor_pending_clinic_svc(session, current_user)


# Admin
@router.get(
    "/admin/statistics",
    response_model=PaymentStatistics,
    summary="Counts and sums grouped by status and method",
)
async def payments_admin_statistics(
    session: AsyncSession = Depends(get_session),
    _: User = Depends(require_capability(Capability.VIEW_STATISTICS)),
):
    return await payment_statistics(session)


@router.get(
    "/admin/all",
    response_model=PaymentListPage,
    summary="All payments with status/date filters",
)
async def payments_admin_all(
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    date_from: Optional[dt.date] = Query(None),
    date_to: Optional[dt.date] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    _: User = Depends(require_capability(Capability.VIEW_STATISTICS)),
):
    return await svc.list_payments_admin_svc(
        session,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/admin/refund-requests",
    response_model=List[PaymentPublic],
    summary="Refund requests waiting for a decision, oldest first",
)
async def payments_admin_refund_requests(
    session: AsyncSession = Depends(get_session),
    _: User = Depends(require_capability(Capability.ADJUDICATE_REFUND)),
):
    return await svc.refund_requests_svc(session)


@router.put(
    "/admin/{payment_id}/process-refund",
    response_model=PaymentPublic,
    summary="Approve or reject a refund request",
)
async def payments_admin_process_refund(
    payment_id: UUID,
    decision: RefundDecision,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.ADJUDICATE_REFUND)),
):
    payment = await svc.process_refund_svc(session, payment_id, decision, current_user)
    event = NotificationEvent.REFUND_APPROVED if decision.approved else NotificationEvent.REFUND_REJECTED
    notify(
        background_tasks, event, payment.patient_id,
        payment_id=str(payment.id), refund_amount=str(payment.refund_amount),
        admin_notes=payment.admin_notes,
    )
    return payment


@router.put(
    "/admin/{payment_id}/status",
    response_model=PaymentPublic,
    summary="Move a payment along an allowed status edge",
)
async def payments_admin_status(
    payment_id: UUID,
    payload: PaymentStatusUpdate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.OVERRIDE_PAYMENT_STATUS)),
):
    return await svc.override_status_svc(session, payment_id, payload, current_user)


@router.get(
    "/appointment/{appointment_id}",
    response_model=PaymentPublic,
    summary="Payment of an appointment",
)
async def payments_by_appointment(
    appointment_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await svc.get_payment_for_appointment_svc(session, appointment_id, current_user)


@router.get(
    "/{payment_id}",
    response_model=PaymentPublic,
    summary="Payment detail (patient, doctor or admin)",
)
async def payments_detail(
    payment_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await svc.get_payment_svc(session, payment_id, current_user)


@router.get(
    "/{payment_id}/invoice",
    response_model=InvoiceSummary,
    summary="Invoice summary of a paid or refunded payment",
)
async def payments_invoice(
    payment_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return await svc.invoice_svc(session, payment_id, current_user)


@router.put(
    "/{payment_id}/confirm",
    response_model=PaymentPublic,
    summary="Doctor confirms a clinic-visit payment was received",
)
async def payments_confirm(
    payment_id: UUID,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.CONFIRM_CLINIC_PAYMENT)),
):
    payment = await svc.confirm_payment_svc(session, payment_id, current_user)
    notify(
        background_tasks, NotificationEvent.PAYMENT_CONFIRMED, payment.patient_id,
        payment_id=str(payment.id), amount=str(payment.amount),
    )
    return payment


@router.post(
    "/{payment_id}/refund-request",
    response_model=PaymentPublic,
    summary="Patient asks for a refund of a paid payment",
)
async def payments_refund_request(
    payment_id: UUID,
    payload: RefundRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_capability(Capability.REQUEST_REFUND)),
):
    payment = await svc.request_refund_svc(session, payment_id, payload, current_user)
    notify(
        background_tasks, NotificationEvent.REFUND_REQUESTED, payment.doctor_id,
        payment_id=str(payment.id), reason=payment.refund_reason,
    )
    return payment
