# clinic/modules/users/repository.py
from __future__ import annotations

from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.modules.users.models import User, UserRole


class EmailAlreadyExistsError(Exception):
    """Raised when trying to insert a user with an email that already exists."""


class InvalidUserDataError(Exception):
    """Raised when DB-level constraints fail (e.g., bad CHECK constraints)."""


async def get_by_id(session: AsyncSession, user_id: UUID) -> Optional[User]:
    """
    Returns a User by primary key or None if not found.
    """
    return await session.get(User, user_id)


async def get_by_email(session: AsyncSession, email: str) -> Optional[User]:
    """
    Returns a User by email (normalized to lowercase) or None.
    """
    email = email.strip().lower()
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def get_active_doctor(session: AsyncSession, doctor_id: UUID) -> Optional[User]:
    stmt = select(User).where(
        User.id == doctor_id,
        User.role == UserRole.DOCTOR.value,
        User.is_active.is_(True),
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def list_active_doctors(session: AsyncSession) -> Sequence[User]:
    stmt = (
        select(User)
        .where(User.role == UserRole.DOCTOR.value, User.is_active.is_(True))
        .order_by(User.last_name, User.first_name, User.id)
    )
    return (await session.execute(stmt)).scalars().all()


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    password_hash: str,
    first_name: str,
    last_name: str,
    phone: Optional[str] = None,
    role: UserRole | str = UserRole.PATIENT,
    specialization: Optional[str] = None,
    is_active: bool = True,
    email_verified: bool = False,
) -> User:
    """
    Inserts a new user row and returns the persisted ORM instance.

    Notes:
    - This function expects a *hashed* password (bcrypt); do NOT pass plain text.
    - Email is normalized to lowercase and must satisfy the DB CHECK constraint.
    - Uniqueness and CHECK violations are mapped to clean Python exceptions.
    """
    role_value = role.value if isinstance(role, UserRole) else str(role)

    user = User(
        email=email.strip().lower(),
        password_hash=password_hash,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        phone=phone,
        role=role_value,
        specialization=specialization if role_value == UserRole.DOCTOR.value else None,
        is_active=is_active,
        email_verified=email_verified,
    )

    session.add(user)
    try:
        # Flush to force INSERT and surface constraint violations here
        await session.flush()
    except IntegrityError as exc:
        message = str(exc.orig).lower() if exc.orig else str(exc).lower()

        if "uq_users_email" in message or "unique" in message:
            raise EmailAlreadyExistsError("Email already registered") from exc

        raise InvalidUserDataError("User data violates DB constraints") from exc

    await session.refresh(user)
    return user
