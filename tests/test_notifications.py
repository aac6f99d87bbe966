# tests/test_notifications.py
import logging
from uuid import uuid4

import pytest

from clinic.modules.notifications.service import (
    LoggingChannel,
    Notification,
    NotificationDispatcher,
    NotificationEvent,
    dispatcher,
)

from tests.helpers import auth, book, publish


class Recorder:
    name = "recorder"

    def __init__(self):
        self.sent = []

    async def send(self, notification):
        self.sent.append(notification)


class Broken:
    name = "broken"

    async def send(self, notification):
        raise RuntimeError("smtp down")


@pytest.fixture
def recorder():
    rec = Recorder()
    dispatcher.register(rec)
    yield rec
    dispatcher.unregister(rec)


@pytest.fixture
def broken():
    channel = Broken()
    dispatcher.register(channel)
    yield channel
    dispatcher.unregister(channel)


async def test_dispatch_survives_failing_channel(caplog):
    rec = Recorder()
    d = NotificationDispatcher([Broken(), rec, LoggingChannel()])
    n = Notification(NotificationEvent.APPOINTMENT_BOOKED, uuid4(), {"appointment_id": "x"})

    with caplog.at_level(logging.INFO):
        delivered = await d.dispatch(n)

    assert delivered == 2
    assert rec.sent == [n]
    assert "failed on channel broken" in caplog.text


async def test_booking_notifies_doctor(client, recorder, patient, doctor):
    await publish(client, doctor)
    resp = await book(client, patient, doctor)
    assert resp.status_code == 201

    assert [(n.event, n.recipient_id) for n in recorder.sent] == [
        (NotificationEvent.APPOINTMENT_BOOKED, doctor.id)
    ]
    assert recorder.sent[0].context["appointment_id"] == resp.json()["id"]


async def test_failing_channel_does_not_change_response(client, broken, recorder, patient, doctor):
    await publish(client, doctor)
    resp = await book(client, patient, doctor)
    assert resp.status_code == 201
    assert resp.json()["status"] == "pending"
    assert len(recorder.sent) == 1

    detail = await client.get(f"/api/appointments/{resp.json()['id']}", headers=auth(patient))
    assert detail.json()["status"] == "pending"


async def test_rejected_transition_sends_nothing(client, recorder, patient, doctor):
    await publish(client, doctor)
    appt = (await book(client, patient, doctor)).json()
    recorder.sent.clear()

    resp = await client.put(f"/api/appointments/{appt['id']}/complete", headers=auth(doctor))
    assert resp.status_code == 409
    assert recorder.sent == []


async def test_disabled_notifications(client, recorder, patient, doctor, monkeypatch):
    from clinic.core.config import settings

    monkeypatch.setattr(settings, "NOTIFICATIONS_ENABLED", False)
    await publish(client, doctor)
    assert (await book(client, patient, doctor)).status_code == 201
    assert recorder.sent == []
