# tests/test_payments.py
import re
from decimal import Decimal

from tests.helpers import (
    approved_appointment,
    auth,
    book,
    paid_payment,
    pay,
    publish,
)


async def test_card_payment_settles_instantly(client, patient, doctor):
    appt = await approved_appointment(client, patient, doctor, fee="2000")
    resp = await pay(client, patient, appt["id"], card_last_four="4242")
    assert resp.status_code == 201, resp.text
    p = resp.json()
    assert p["status"] == "paid"
    assert Decimal(p["amount"]) == Decimal(appt["consultation_fee"])
    assert p["currency"] == "PKR"
    assert p["card_last_four"] == "4242"
    assert p["transaction_date"] is not None
    assert re.fullmatch(r"TXN-\d+-[A-Z0-9]{9}", p["transaction_id"])
    assert re.fullmatch(r"INV-\d{6}-[A-Z0-9]{6}", p["invoice_number"])


async def test_wallet_requires_valid_phone(client, patient, doctor):
    appt = await approved_appointment(client, patient, doctor)
    resp = await pay(client, patient, appt["id"], method="easypaisa")
    assert resp.status_code == 422

    resp = await pay(client, patient, appt["id"], method="jazzcash", phone_number="0412345678")
    assert resp.status_code == 422

    resp = await pay(client, patient, appt["id"], method="jazzcash", phone_number="0300-1234567")
    assert resp.status_code == 201
    assert resp.json()["phone_number"] == "03001234567"
    assert resp.json()["status"] == "paid"


async def test_cannot_pay_pending_appointment(client, patient, doctor):
    await publish(client, doctor)
    appt = (await book(client, patient, doctor)).json()
    resp = await pay(client, patient, appt["id"])
    assert resp.status_code == 409
    assert resp.json()["detail"] == "appointment_not_approved"


async def test_cannot_pay_someone_elses_appointment(client, patient, other_patient, doctor):
    appt = await approved_appointment(client, patient, doctor)
    resp = await pay(client, other_patient, appt["id"])
    assert resp.status_code == 403


async def test_second_payment_is_conflict(client, patient, doctor):
    appt, _ = await paid_payment(client, patient, doctor)
    resp = await pay(client, patient, appt["id"], method="debit_card")
    assert resp.status_code == 409
    assert resp.json()["detail"] == "payment_exists"


async def test_clinic_visit_confirmation(client, patient, doctor, other_doctor):
    appt = await approved_appointment(client, patient, doctor)
    p = (await pay(client, patient, appt["id"], method="clinic_visit")).json()
    assert p["status"] == "pending"
    assert p["transaction_date"] is None

    queue = await client.get("/api/payments/doctor/pending-clinic", headers=auth(doctor))
    assert [q["id"] for q in queue.json()] == [p["id"]]

    resp = await client.put(f"/api/payments/{p['id']}/confirm", headers=auth(other_doctor))
    assert resp.status_code == 403

    resp = await client.put(f"/api/payments/{p['id']}/confirm", headers=auth(doctor))
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "paid"
    assert body["confirmed_by"] == str(doctor.id)
    assert body["confirmed_at"] is not None
    assert body["transaction_date"] is not None

    again = await client.put(f"/api/payments/{p['id']}/confirm", headers=auth(doctor))
    assert again.status_code == 409


async def test_confirm_card_payment_is_invalid(client, patient, doctor):
    _, p = await paid_payment(client, patient, doctor)
    resp = await client.put(f"/api/payments/{p['id']}/confirm", headers=auth(doctor))
    assert resp.status_code == 409
    assert resp.json()["detail"] == "not_clinic_visit"


async def test_refund_request_requires_paid(client, patient, doctor):
    appt = await approved_appointment(client, patient, doctor)
    p = (await pay(client, patient, appt["id"], method="clinic_visit")).json()
    resp = await client.post(
        f"/api/payments/{p['id']}/refund-request",
        json={"reason": "Changed my mind"},
        headers=auth(patient),
    )
    assert resp.status_code == 409


async def test_refund_request_needs_reason(client, patient, doctor):
    _, p = await paid_payment(client, patient, doctor)
    resp = await client.post(
        f"/api/payments/{p['id']}/refund-request", json={"reason": "   "}, headers=auth(patient)
    )
    assert resp.status_code == 422


async def test_full_lifecycle_with_refund(client, session, patient, doctor, admin):
    appt, p = await paid_payment(client, patient, doctor, fee="2000")
    assert p["status"] == "paid"
    assert Decimal(p["amount"]) == Decimal("2000")

    resp = await client.post(
        f"/api/payments/{p['id']}/refund-request",
        json={"reason": "schedule conflict"},
        headers=auth(patient),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "refund_requested"
    assert resp.json()["refund_requested_at"] is not None

    again = await client.post(
        f"/api/payments/{p['id']}/refund-request",
        json={"reason": "schedule conflict"},
        headers=auth(patient),
    )
    assert again.status_code == 409

    queue = await client.get("/api/payments/admin/refund-requests", headers=auth(admin))
    assert [q["id"] for q in queue.json()] == [p["id"]]

    resp = await client.put(
        f"/api/payments/admin/{p['id']}/process-refund",
        json={"approved": True, "admin_notes": "Approved per policy"},
        headers=auth(admin),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "refunded"
    assert Decimal(body["refund_amount"]) == Decimal("2000")
    assert body["refund_processed_at"] is not None
    assert body["refund_processed_by"] == str(admin.id)

    # The unattended appointment is cancelled and its slot freed
    detail = await client.get(f"/api/appointments/{appt['id']}", headers=auth(patient))
    assert detail.json()["status"] == "cancelled"
    rebook = await book(client, patient, doctor)
    assert rebook.status_code == 201

    # Refunded is terminal
    resp = await client.post(
        f"/api/payments/{p['id']}/refund-request",
        json={"reason": "again"},
        headers=auth(patient),
    )
    assert resp.status_code == 409


async def test_rejected_refund_returns_to_paid(client, patient, doctor, admin):
    _, p = await paid_payment(client, patient, doctor)
    await client.post(
        f"/api/payments/{p['id']}/refund-request",
        json={"reason": "schedule conflict"},
        headers=auth(patient),
    )
    resp = await client.put(
        f"/api/payments/admin/{p['id']}/process-refund",
        json={"approved": False, "admin_notes": "Visit already took place"},
        headers=auth(admin),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "paid"
    assert body["refund_reason"] == "schedule conflict"
    assert body["admin_notes"] == "Visit already took place"
    assert body["refund_amount"] is None


async def test_process_refund_without_request_is_invalid(client, patient, doctor, admin):
    _, p = await paid_payment(client, patient, doctor)
    resp = await client.put(
        f"/api/payments/admin/{p['id']}/process-refund",
        json={"approved": True},
        headers=auth(admin),
    )
    assert resp.status_code == 409
    assert resp.json()["detail"] == "refund_not_requested"


async def test_patient_cannot_process_refund(client, patient, doctor):
    _, p = await paid_payment(client, patient, doctor)
    resp = await client.put(
        f"/api/payments/admin/{p['id']}/process-refund",
        json={"approved": True},
        headers=auth(patient),
    )
    assert resp.status_code == 403


async def test_admin_status_override_follows_graph(client, patient, doctor, admin):
    appt = await approved_appointment(client, patient, doctor)
    p = (await pay(client, patient, appt["id"], method="clinic_visit")).json()

    resp = await client.put(
        f"/api/payments/admin/{p['id']}/status",
        json={"status": "refunded"},
        headers=auth(admin),
    )
    assert resp.status_code == 409

    resp = await client.put(
        f"/api/payments/admin/{p['id']}/status",
        json={"status": "failed", "admin_notes": "Patient never showed up"},
        headers=auth(admin),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "failed"

    # A failed payment no longer blocks a new attempt
    retry = await pay(client, patient, appt["id"])
    assert retry.status_code == 201
    assert retry.json()["status"] == "paid"


async def test_reads_and_invoice(client, patient, other_patient, doctor, admin):
    appt, p = await paid_payment(client, patient, doctor, fee="1500")

    history = await client.get("/api/payments/patient/history", headers=auth(patient))
    assert [h["id"] for h in history.json()] == [p["id"]]

    by_appt = await client.get(f"/api/payments/appointment/{appt['id']}", headers=auth(doctor))
    assert by_appt.json()["id"] == p["id"]

    forbidden = await client.get(f"/api/payments/{p['id']}", headers=auth(other_patient))
    assert forbidden.status_code == 403

    earnings = await client.get("/api/payments/doctor/earnings", headers=auth(doctor))
    assert earnings.status_code == 200
    assert Decimal(earnings.json()["total_earnings"]) == Decimal("1500")
    assert earnings.json()["payment_count"] == 1

    invoice = await client.get(f"/api/payments/{p['id']}/invoice", headers=auth(patient))
    assert invoice.status_code == 200
    inv = invoice.json()
    assert inv["invoice_number"] == p["invoice_number"]
    assert inv["doctor_name"] == "Hina Raza"
    assert inv["doctor_specialization"] == "Cardiology"
    assert inv["appointment_time"] == "09:00 - 09:30"

    page = await client.get(
        "/api/payments/admin/all", params={"status": "paid"}, headers=auth(admin)
    )
    assert page.status_code == 200
    assert page.json()["total"] == 1
    assert page.json()["by_status"]["paid"]["count"] == 1


async def test_invoice_unavailable_for_pending(client, patient, doctor):
    appt = await approved_appointment(client, patient, doctor)
    p = (await pay(client, patient, appt["id"], method="clinic_visit")).json()
    resp = await client.get(f"/api/payments/{p['id']}/invoice", headers=auth(patient))
    assert resp.status_code == 409
    assert resp.json()["detail"] == "invoice_unavailable"
