# clinic/db/sql.py
from __future__ import annotations

import logging
import uuid
from typing import Any, AsyncIterator

from fastapi import Request
from sqlalchemy import insert, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from clinic.core.config import settings
from clinic.core.security import InvalidTokenError, decode_access_token
from clinic.db.base import Base
from clinic.modules.users.models import AuditLog

logger = logging.getLogger(__name__)

# Reads are not audited
_AUDITED_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def _is_memory_sqlite(dsn: str) -> bool:
    return ":memory:" in dsn or dsn.rstrip("/").endswith(":")


def make_engine(dsn: str) -> AsyncEngine:
    kwargs: dict[str, Any] = {"echo": settings.DB_ECHO}
    if dsn.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if _is_memory_sqlite(dsn):
            # One shared connection so the database survives across sessions
            kwargs["poolclass"] = StaticPool
    else:
        kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
            pool_timeout=settings.DB_POOL_TIMEOUT,
        )
    return create_async_engine(dsn, **kwargs)


engine = make_engine(settings.SQL_DSN)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
    class_=AsyncSession,
)


def _audit_user_id(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if not header.lower().startswith("bearer "):
        return None
    try:
        return decode_access_token(header.split(" ", 1)[1].strip()).get("sub")
    except InvalidTokenError:
        return None


async def _write_request_audit(
    session: AsyncSession, user_id: str | None, action: str, details: str
) -> None:
    await session.execute(
        insert(AuditLog).values(
            user_id=uuid.UUID(user_id) if user_id else None,
            action=action,
            details=details[:1000],
        )
    )
    await session.commit()


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """
    Provide a DB session for each request.
    Commits on success, rolls back on any error, and writes an audit row
    for state-changing requests either way.
    """
    audited = request.method in _AUDITED_METHODS
    action = f"{request.method} {request.url.path}"

    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            if audited:
                await _write_request_audit(
                    session, _audit_user_id(request), f"{action} ROLLBACK", str(exc)
                )
            raise
        else:
            if audited:
                await _write_request_audit(
                    session,
                    _audit_user_id(request),
                    f"{action} COMMIT",
                    "Operation completed successfully",
                )


async def ping_db() -> bool:
    async with AsyncSessionLocal() as session:
        await session.execute(text("SELECT 1"))
        return True


async def init_db(drop: bool = False) -> None:
    """
    Create all tables (optionally dropping them first).
    """
    # Import every model module so that Base.metadata knows all tables
    from clinic.modules.appointments import models as _appointments  # noqa: F401
    from clinic.modules.doctors import models as _doctors  # noqa: F401
    from clinic.modules.payments import models as _payments  # noqa: F401

    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready (%s)", "recreated" if drop else "create_all")
