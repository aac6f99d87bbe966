# tests/test_appointments.py
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import func, select

from clinic.modules.appointments.models import Appointment
from clinic.modules.doctors.models import AvailabilitySlot
from clinic.modules.users.models import AuditLog

from tests.helpers import (
    approve,
    approved_appointment,
    auth,
    book,
    future_day,
    paid_payment,
    publish,
)


async def _slot(session, doctor, start="09:00:00"):
    rows = (
        await session.execute(
            select(AvailabilitySlot).where(AvailabilitySlot.doctor_id == doctor.id)
        )
    ).scalars().all()
    return next(s for s in rows if s.start_time.isoformat() == start)


async def test_book_pending_and_claims_slot(client, session, patient, doctor):
    await publish(client, doctor)
    resp = await book(client, patient, doctor)
    assert resp.status_code == 201, resp.text
    appt = resp.json()
    assert appt["status"] == "pending"
    assert appt["consultation_fee"] is None
    assert appt["patient_id"] == str(patient.id)

    slot = await _slot(session, doctor)
    assert slot.is_booked
    assert slot.booked_by == patient.id
    assert appt["slot_id"] == str(slot.id)


async def test_double_booking_is_conflict_and_creates_nothing(client, session, patient, other_patient, doctor):
    await publish(client, doctor)
    assert (await book(client, patient, doctor)).status_code == 201

    resp = await book(client, other_patient, doctor)
    assert resp.status_code == 409
    assert resp.json()["detail"] == "slot_already_booked"

    count = (await session.execute(select(func.count()).select_from(Appointment))).scalar_one()
    assert count == 1


async def test_booking_unpublished_window_is_404(client, patient, doctor):
    await publish(client, doctor)
    resp = await book(client, patient, doctor, start="15:00:00", end="15:30:00")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "slot_not_found"


async def test_booking_in_the_past_is_rejected(client, patient, doctor):
    resp = await book(client, patient, doctor, on=date.today() - timedelta(days=1))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "date_in_past"


async def test_booking_with_utc_offset_is_422(client, session, patient, doctor):
    await publish(client, doctor)
    resp = await book(client, patient, doctor, start="09:00:00Z", end="09:30:00Z")
    assert resp.status_code == 422
    assert "UTC offset" in resp.text

    resp = await book(client, patient, doctor, end="09:30:00+05:00")
    assert resp.status_code == 422

    count = await session.scalar(select(func.count()).select_from(Appointment))
    assert count == 0


async def test_booking_unknown_doctor_is_404(client, patient, doctor):
    resp = await client.post(
        "/api/appointments",
        json={
            "doctor_id": str(uuid4()),
            "appointment_date": future_day().isoformat(),
            "start_time": "09:00:00",
            "end_time": "09:30:00",
        },
        headers=auth(patient),
    )
    assert resp.status_code == 404
    assert resp.json()["detail"] == "doctor_not_found"


async def test_doctor_cannot_book(client, doctor, other_doctor):
    await publish(client, other_doctor)
    resp = await book(client, doctor, other_doctor)
    assert resp.status_code == 403


async def test_approve_sets_fee_once(client, patient, doctor):
    appt = await approved_appointment(client, patient, doctor, fee="2000")
    assert appt["status"] == "approved"
    assert Decimal(appt["consultation_fee"]) == Decimal("2000")
    assert appt["approved_at"] is not None

    again = await client.put(
        f"/api/appointments/{appt['id']}/approve",
        json={"consultation_fee": "5000"},
        headers=auth(doctor),
    )
    assert again.status_code == 409
    assert again.json()["detail"] == "invalid_state"

    detail = await client.get(f"/api/appointments/{appt['id']}", headers=auth(patient))
    assert Decimal(detail.json()["consultation_fee"]) == Decimal("2000")


async def test_approve_rejects_negative_fee(client, patient, doctor):
    await publish(client, doctor)
    appt = (await book(client, patient, doctor)).json()
    resp = await client.put(
        f"/api/appointments/{appt['id']}/approve",
        json={"consultation_fee": "-1"},
        headers=auth(doctor),
    )
    assert resp.status_code == 422


async def test_only_owning_doctor_can_review(client, patient, doctor, other_doctor):
    await publish(client, doctor)
    appt = (await book(client, patient, doctor)).json()
    resp = await client.put(
        f"/api/appointments/{appt['id']}/approve",
        json={"consultation_fee": "100"},
        headers=auth(other_doctor),
    )
    assert resp.status_code == 403

    resp = await client.put(
        f"/api/appointments/{appt['id']}/approve",
        json={"consultation_fee": "100"},
        headers=auth(patient),
    )
    assert resp.status_code == 403


async def test_reject_frees_slot_for_rebooking(client, session, patient, other_patient, doctor):
    await publish(client, doctor)
    appt = (await book(client, patient, doctor)).json()

    resp = await client.put(
        f"/api/appointments/{appt['id']}/reject",
        json={"rejection_reason": "Fully booked that morning"},
        headers=auth(doctor),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "rejected"
    assert resp.json()["rejection_reason"] == "Fully booked that morning"

    slot = await _slot(session, doctor)
    assert not slot.is_booked

    assert (await book(client, other_patient, doctor)).status_code == 201


async def test_reject_after_approve_is_invalid(client, patient, doctor):
    appt = await approved_appointment(client, patient, doctor)
    resp = await client.put(
        f"/api/appointments/{appt['id']}/reject", json={}, headers=auth(doctor)
    )
    assert resp.status_code == 409


async def test_complete_requires_paid_payment(client, patient, doctor):
    appt = await approved_appointment(client, patient, doctor)
    resp = await client.put(f"/api/appointments/{appt['id']}/complete", headers=auth(doctor))
    assert resp.status_code == 409
    assert resp.json()["detail"] == "payment_required"


async def test_complete_after_payment(client, patient, doctor):
    appt, _ = await paid_payment(client, patient, doctor)
    resp = await client.put(f"/api/appointments/{appt['id']}/complete", headers=auth(doctor))
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"
    assert resp.json()["completed_at"] is not None


async def test_complete_pending_is_invalid(client, patient, doctor):
    await publish(client, doctor)
    appt = (await book(client, patient, doctor)).json()
    resp = await client.put(f"/api/appointments/{appt['id']}/complete", headers=auth(doctor))
    assert resp.status_code == 409
    assert resp.json()["detail"] == "invalid_state"


async def test_patient_cancel_frees_slot_and_cancels_pending_payment(client, session, patient, doctor):
    appt = await approved_appointment(client, patient, doctor)
    pay = await client.post(
        "/api/payments/process",
        json={"appointment_id": appt["id"], "payment_method": "clinic_visit"},
        headers=auth(patient),
    )
    assert pay.status_code == 201
    assert pay.json()["status"] == "pending"

    resp = await client.put(
        f"/api/appointments/{appt['id']}/cancel",
        json={"reason": "Travelling"},
        headers=auth(patient),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["cancelled_at"] is not None

    slot = await _slot(session, doctor)
    assert not slot.is_booked

    payment = await client.get(f"/api/payments/{pay.json()['id']}", headers=auth(patient))
    assert payment.json()["status"] == "cancelled"


async def test_cancel_pending_is_invalid(client, patient, doctor):
    await publish(client, doctor)
    appt = (await book(client, patient, doctor)).json()
    resp = await client.put(f"/api/appointments/{appt['id']}/cancel", headers=auth(patient))
    assert resp.status_code == 409


async def test_stranger_cannot_cancel(client, patient, other_patient, doctor):
    appt = await approved_appointment(client, patient, doctor)
    resp = await client.put(f"/api/appointments/{appt['id']}/cancel", headers=auth(other_patient))
    assert resp.status_code == 403


async def test_lists_are_scoped(client, patient, other_patient, doctor):
    await publish(client, doctor)
    mine = (await book(client, patient, doctor)).json()
    await book(client, other_patient, doctor, start="09:30:00", end="10:00:00")

    resp = await client.get("/api/appointments/my", headers=auth(patient))
    assert [a["id"] for a in resp.json()["items"]] == [mine["id"]]

    resp = await client.get("/api/appointments/doctor-requests", headers=auth(doctor))
    assert resp.json()["total"] == 2

    await approve(client, doctor, mine["id"])
    resp = await client.get(
        "/api/appointments/doctor-requests", params={"status": "approved"}, headers=auth(doctor)
    )
    assert [a["id"] for a in resp.json()["items"]] == [mine["id"]]

    resp = await client.get("/api/appointments/doctor-appointments", headers=auth(doctor))
    assert resp.json()["total"] == 2

    resp = await client.get(f"/api/appointments/{mine['id']}", headers=auth(other_patient))
    assert resp.status_code == 403


async def test_available_doctors(client, patient, doctor, other_doctor):
    resp = await client.get("/api/appointments/available-doctors", headers=auth(patient))
    assert resp.status_code == 200
    assert {d["id"] for d in resp.json()} == {str(doctor.id), str(other_doctor.id)}


async def test_admin_list_and_delete(client, session, patient, doctor, admin):
    appt, _ = await paid_payment(client, patient, doctor)

    resp = await client.get(
        "/api/appointments/admin/all", params={"status": "approved"}, headers=auth(admin)
    )
    assert resp.status_code == 200
    assert resp.json()["total"] == 1

    resp = await client.get("/api/appointments/admin/all", headers=auth(patient))
    assert resp.status_code == 403

    resp = await client.delete(f"/api/appointments/admin/{appt['id']}", headers=auth(admin))
    assert resp.status_code == 204

    resp = await client.get(f"/api/appointments/{appt['id']}", headers=auth(admin))
    assert resp.status_code == 404
    resp = await client.get(f"/api/payments/appointment/{appt['id']}", headers=auth(admin))
    assert resp.status_code == 404

    slot = await _slot(session, doctor)
    assert not slot.is_booked


async def test_transitions_write_audit_rows(client, session, patient, doctor):
    await approved_appointment(client, patient, doctor)
    actions = (await session.execute(select(AuditLog.action))).scalars().all()
    assert "CREATE_APPOINTMENT" in actions
    assert "APPROVE_APPOINTMENT" in actions
    assert any(a.startswith("PUT /api/appointments/") and a.endswith("COMMIT") for a in actions)


async def test_failed_request_rolls_back_and_is_audited(client, session, patient, other_patient, doctor):
    await publish(client, doctor)
    await book(client, patient, doctor)
    await book(client, other_patient, doctor)

    actions = (await session.execute(select(AuditLog.action))).scalars().all()
    assert actions.count("CREATE_APPOINTMENT") == 1
    assert "POST /api/appointments ROLLBACK" in actions
