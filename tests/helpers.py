# tests/helpers.py
from datetime import date, timedelta

from clinic.core.security import create_access_token

SLOTS = [
    {"start_time": "09:00:00", "end_time": "09:30:00"},
    {"start_time": "09:30:00", "end_time": "10:00:00"},
]


def auth(user) -> dict:
    token = create_access_token(subject=str(user.id), role=user.role, email=user.email)
    return {"Authorization": f"Bearer {token}"}


def future_day(days: int = 7) -> date:
    return date.today() + timedelta(days=days)


async def publish(client, doctor, on=None, slots=None):
    on = on or future_day()
    resp = await client.post(
        "/api/doctor/availability",
        json={"date": on.isoformat(), "time_slots": slots or SLOTS},
        headers=auth(doctor),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def book(client, patient, doctor, on=None, start="09:00:00", end="09:30:00"):
    on = on or future_day()
    return await client.post(
        "/api/appointments",
        json={
            "doctor_id": str(doctor.id),
            "appointment_date": on.isoformat(),
            "start_time": start,
            "end_time": end,
            "request_message": "Follow-up visit",
        },
        headers=auth(patient),
    )


async def approve(client, doctor, appointment_id, fee="2000.00"):
    resp = await client.put(
        f"/api/appointments/{appointment_id}/approve",
        json={"consultation_fee": fee},
        headers=auth(doctor),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


async def approved_appointment(client, patient, doctor, fee="2000.00", start="09:00:00", end="09:30:00", publish_slots=True):
    """Publish the default slots, book one and approve it."""
    if publish_slots:
        await publish(client, doctor)
    resp = await book(client, patient, doctor, start=start, end=end)
    assert resp.status_code == 201, resp.text
    return await approve(client, doctor, resp.json()["id"], fee)


async def pay(client, patient, appointment_id, method="credit_card", **extra):
    return await client.post(
        "/api/payments/process",
        json={"appointment_id": appointment_id, "payment_method": method, **extra},
        headers=auth(patient),
    )


async def paid_payment(client, patient, doctor, fee="2000.00", method="credit_card", **extra):
    appt = await approved_appointment(client, patient, doctor, fee=fee)
    resp = await pay(client, patient, appt["id"], method=method, **extra)
    assert resp.status_code == 201, resp.text
    return appt, resp.json()
