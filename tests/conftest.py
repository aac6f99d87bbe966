# tests/conftest.py
import os

# Must be set before the app (and its engine) is imported
os.environ["SQL_DSN"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx
import pytest

from clinic.core.security import hash_password
from clinic.db.sql import AsyncSessionLocal, engine, init_db
from clinic.main import app
from clinic.modules.users import repository as users_repo

PASSWORD = "Passw0rd123"


@pytest.fixture(autouse=True)
async def database():
    await init_db(drop=True)
    yield
    await engine.dispose()


@pytest.fixture
async def session():
    async with AsyncSessionLocal() as s:
        yield s


@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _make_user(role: str, email: str, first: str, last: str, **extra):
    async with AsyncSessionLocal() as s:
        user = await users_repo.create_user(
            s,
            email=email,
            password_hash=hash_password(PASSWORD),
            first_name=first,
            last_name=last,
            role=role,
            **extra,
        )
        await s.commit()
        return user


@pytest.fixture
async def patient():
    return await _make_user("patient", "pat@example.com", "Ali", "Khan")


@pytest.fixture
async def other_patient():
    return await _make_user("patient", "sara@example.com", "Sara", "Ahmed")


@pytest.fixture
async def doctor():
    return await _make_user("doctor", "doc@example.com", "Hina", "Raza", specialization="Cardiology")


@pytest.fixture
async def other_doctor():
    return await _make_user("doctor", "doc2@example.com", "Omar", "Malik", specialization="Dermatology")


@pytest.fixture
async def admin():
    return await _make_user("admin", "admin@example.com", "Clinic", "Admin")
