# clinic/modules/users/service.py
from __future__ import annotations

import logging
from typing import List
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from clinic.core.config import settings
from clinic.core.errors import Conflict, DomainError, NotFound, ValidationFailed
from clinic.core.security import (
    create_access_token,
    create_refresh_token,
    hash_password,
    verify_password,
)
from clinic.modules.users import repository as users_repo
from clinic.modules.users.models import User
from clinic.modules.users.schemas import (
    DoctorPublic,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    UserPublic,
)

logger = logging.getLogger(__name__)


class EmailAlreadyExists(Conflict):
    default_code = "email_already_exists"
    default_message = "An account with this email already exists"


class InvalidCredentials(DomainError):
    status_code = 401
    default_code = "invalid_credentials"
    default_message = "Email or password is incorrect"


class InactiveAccount(DomainError):
    status_code = 403
    default_code = "user_inactive"
    default_message = "This account has been deactivated"


def to_public(user: User) -> UserPublic:
    return UserPublic.model_validate(user)


async def register_user(session: AsyncSession, payload: RegisterRequest) -> UserPublic:
    """
    Business flow for user registration:
      1) Check email uniqueness.
      2) Hash password with bcrypt.
      3) Persist user.
      4) Return public DTO.
    """
    if await users_repo.get_by_email(session, payload.email):
        raise EmailAlreadyExists()

    try:
        user = await users_repo.create_user(
            session,
            email=payload.email,
            password_hash=hash_password(payload.password.get_secret_value()),
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
            role=payload.role.value,
            specialization=payload.specialization,
        )
    except users_repo.EmailAlreadyExistsError as exc:
        raise EmailAlreadyExists() from exc
    except users_repo.InvalidUserDataError as exc:
        raise ValidationFailed("invalid_user_data", str(exc)) from exc

    logger.info("Registered %s account %s", user.role, user.id)
    return to_public(user)


def issue_tokens(user: User) -> LoginResponse:
    return LoginResponse(
        access_token=create_access_token(
            subject=str(user.id), role=user.role, email=user.email
        ),
        expires_in=settings.ACCESS_EXPIRES_MIN * 60,
        refresh_token=create_refresh_token(subject=str(user.id)),
    )


async def login_user(session: AsyncSession, payload: LoginRequest) -> LoginResponse:
    """
    1) Fetch user by email
    2) Verify bcrypt password
    3) Issue access + refresh tokens
    """
    user = await users_repo.get_by_email(session, payload.email)
    if not user or not verify_password(payload.password.get_secret_value(), user.password_hash):
        raise InvalidCredentials()
    if not user.is_active:
        raise InactiveAccount()
    return issue_tokens(user)


async def refresh_access(session: AsyncSession, user_id: UUID, refresh_token: str) -> LoginResponse:
    user = await users_repo.get_by_id(session, user_id)
    if not user:
        raise NotFound("user_not_found", "The account for this token no longer exists")
    if not user.is_active:
        raise InactiveAccount()
    return LoginResponse(
        access_token=create_access_token(
            subject=str(user.id), role=user.role, email=user.email
        ),
        expires_in=settings.ACCESS_EXPIRES_MIN * 60,
        refresh_token=refresh_token,
    )


async def list_bookable_doctors(session: AsyncSession) -> List[DoctorPublic]:
    doctors = await users_repo.list_active_doctors(session)
    return [DoctorPublic.model_validate(d) for d in doctors]
