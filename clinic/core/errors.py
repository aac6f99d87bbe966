# clinic/core/errors.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """
    Base for errors raised by the service layer.

    `code` is the machine-readable value returned in `detail`; `message`
    is the human-readable text shown by clients.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "bad_request"
    default_message: str = "The request could not be processed"

    def __init__(self, code: str | None = None, message: str | None = None):
        self.code = code or self.default_code
        self.message = message or self.default_message
        super().__init__(self.code)


class ValidationFailed(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_error"
    default_message = "Some fields are missing or malformed"


class Forbidden(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "forbidden"
    default_message = "You are not allowed to perform this action"


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"
    default_message = "The requested record does not exist"


class Conflict(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"
    default_message = "The request conflicts with the current state of the record"


class InvalidState(Conflict):
    """A transition was attempted from the wrong source state."""

    default_code = "invalid_state"
    default_message = "This action is not allowed in the record's current status"


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    logger.warning(
        "%s %s rejected: %s (%s)",
        request.method, request.url.path, exc.code, exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.code, "message": exc.message},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
