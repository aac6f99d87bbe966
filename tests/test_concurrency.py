# tests/test_concurrency.py
from uuid import UUID

import pytest
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import StaticPool

from clinic.core.errors import InvalidState
from clinic.db.sql import AsyncSessionLocal, engine, make_engine
from clinic.modules.appointments.models import Appointment, ApptStatus
from clinic.modules.payments import service as payments_service
from clinic.modules.payments.models import Payment
from clinic.modules.transitions import transition

from tests.helpers import approve, auth, book, paid_payment, pay, publish


async def test_only_memory_databases_share_one_connection(tmp_path):
    assert isinstance(engine.pool, StaticPool)
    file_engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'clinic.db'}")
    assert not isinstance(file_engine.pool, StaticPool)


async def test_file_database_rollback_keeps_other_sessions_work(tmp_path):
    file_engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'clinic.db'}")
    sessions = async_sessionmaker(file_engine, expire_on_commit=False)
    try:
        async with file_engine.begin() as conn:
            await conn.execute(
                text("CREATE TABLE slots (id INTEGER PRIMARY KEY, is_booked BOOLEAN NOT NULL)")
            )
            await conn.execute(text("INSERT INTO slots (id, is_booked) VALUES (1, 0)"))

        async with sessions() as claimer, sessions() as failing:
            await claimer.execute(text("UPDATE slots SET is_booked = 1 WHERE id = 1"))
            await failing.execute(text("SELECT is_booked FROM slots WHERE id = 1"))
            await failing.rollback()
            await claimer.commit()

        async with sessions() as reader:
            booked = await reader.scalar(text("SELECT is_booked FROM slots WHERE id = 1"))
        assert booked == 1
    finally:
        await file_engine.dispose()


async def test_transition_on_stale_record_is_rejected(client, patient, doctor):
    await publish(client, doctor)
    appt = (await book(client, patient, doctor)).json()

    async with AsyncSessionLocal() as stale_session:
        stale = await stale_session.get(Appointment, UUID(appt["id"]))
        assert stale.status_enum is ApptStatus.PENDING

        # Another request moves it first
        await approve(client, doctor, appt["id"])

        with pytest.raises(InvalidState) as err:
            await transition(stale_session, stale, ApptStatus.REJECTED)
        assert err.value.code == "concurrent_update"

    detail = await client.get(f"/api/appointments/{appt['id']}", headers=auth(patient))
    assert detail.json()["status"] == "approved"


async def test_racing_payment_hits_unique_index(client, session, patient, doctor, monkeypatch):
    appt, first = await paid_payment(client, patient, doctor)

    async def no_active_payment(session, appointment_id):
        return None

    monkeypatch.setattr(payments_service, "_active_payment", no_active_payment)

    resp = await pay(client, patient, appt["id"], method="debit_card")
    assert resp.status_code == 409
    assert resp.json()["detail"] == "payment_exists"

    rows = (
        await session.execute(
            select(Payment.id).where(Payment.appointment_id == UUID(appt["id"]))
        )
    ).scalars().all()
    assert [str(r) for r in rows] == [first["id"]]
    total = await session.scalar(select(func.count()).select_from(Payment))
    assert total == 1
