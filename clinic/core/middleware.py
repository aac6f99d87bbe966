# clinic/core/middleware.py
import logging
import re
from typing import Iterable, List, Optional, Set, Tuple

from starlette import status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from clinic.core.config import settings
from clinic.core.security import InvalidTokenError, decode_access_token

logger = logging.getLogger(__name__)


def _is_whitelisted(path: str, white: Iterable[re.Pattern[str]]) -> bool:
    return any(p.match(path) for p in white)


def default_anonymous_paths(prefix: str) -> List[re.Pattern[str]]:
    p = re.escape(prefix)
    return [
        re.compile(rf"^{p}/auth/(register|login|token|refresh)$"),
        re.compile(rf"^{p}/health(/db)?$"),
        re.compile(r"^/$"),
        re.compile(r"^/docs"),
        re.compile(r"^/redoc$"),
        re.compile(r"^/openapi\.json$"),
    ]


def default_role_rules(prefix: str) -> List[Tuple[re.Pattern[str], Set[str]]]:
    p = re.escape(prefix)
    return [
        (re.compile(rf"^{p}/payments/admin/"), {"admin"}),
        (re.compile(rf"^{p}/appointments/admin/"), {"admin"}),
        (re.compile(rf"^{p}/doctor/"), {"doctor"}),
    ]


class RequireAuthMiddleware(BaseHTTPMiddleware):
    """
    Global auth gate:
      - Non-whitelisted paths must carry a Bearer access token.
      - Token is decoded via security.decode_access_token (HS256 + SECRET).
      - On success, attaches a small user context to request.state.user.
      - Coarse RBAC by path prefix (role_rules).
      - Ownership and per-transition checks stay in the service layer.
    """

    def __init__(
        self,
        app,
        *,
        allow_anonymous: Optional[List[re.Pattern[str]]] = None,
        role_rules: Optional[List[Tuple[re.Pattern[str], Set[str]]]] = None,
    ):
        super().__init__(app)
        self.allow_anonymous = allow_anonymous or default_anonymous_paths(settings.API_PREFIX)
        self.role_rules = role_rules if role_rules is not None else default_role_rules(settings.API_PREFIX)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if request.method == "OPTIONS" or _is_whitelisted(path, self.allow_anonymous):
            return await call_next(request)

        auth = request.headers.get("authorization") or ""
        if not auth.lower().startswith("bearer "):
            return JSONResponse(
                {"detail": "not_authenticated", "message": "Missing or invalid Authorization header"},
                status_code=status.HTTP_401_UNAUTHORIZED,
            )
        token = auth.split(" ", 1)[1].strip()

        try:
            payload = decode_access_token(token)
        except InvalidTokenError as exc:
            logger.info("Rejected token on %s: %s", path, exc)
            return JSONResponse(
                {"detail": "invalid_token", "message": "Invalid or expired token"},
                status_code=status.HTTP_401_UNAUTHORIZED,
            )

        role = payload["role"]
        request.state.user = {
            "sub": payload.get("sub"),
            "role": role,
            "email": payload.get("email"),
            "jti": payload.get("jti"),
        }

        for pattern, allowed in self.role_rules:
            if pattern.match(path) and role not in allowed:
                return JSONResponse(
                    {"detail": "forbidden_role", "message": "Your role cannot access this area"},
                    status_code=status.HTTP_403_FORBIDDEN,
                )

        return await call_next(request)
