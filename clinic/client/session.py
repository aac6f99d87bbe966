# clinic/client/session.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class ClinicAPIError(Exception):
    """Non-2xx response from the clinic API."""

    def __init__(self, status_code: int, detail: Any, message: Optional[str] = None):
        self.status_code = status_code
        self.detail = detail
        self.message = message
        super().__init__(f"{status_code}: {detail}")


class ClinicSession:
    """
    Authenticated client for the clinic API.

    The session owns the bearer token: `login()` stores it together with
    the current user, `logout()` drops both, and a request hook adds the
    Authorization header to every outgoing call while logged in. An
    expired access token is refreshed once with the refresh token.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_prefix: str = "/api",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.api_prefix = api_prefix.rstrip("/")
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.user: Optional[Dict[str, Any]] = None
        self._client = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=timeout,
            event_hooks={"request": [self._inject_token]},
        )

    async def __aenter__(self) -> "ClinicSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    @property
    def role(self) -> Optional[str]:
        return self.user.get("role") if self.user else None

    async def _inject_token(self, request: httpx.Request) -> None:
        if self.access_token and "Authorization" not in request.headers:
            request.headers["Authorization"] = f"Bearer {self.access_token}"

    def _url(self, path: str) -> str:
        return f"{self.api_prefix}/{path.lstrip('/')}"

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
        except ValueError:
            body = {"detail": response.text}
        detail = body.get("detail") if isinstance(body, dict) else body
        message = body.get("message") if isinstance(body, dict) else None
        raise ClinicAPIError(response.status_code, detail, message)

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        resp = await self._client.post(
            self._url("/auth/login"), json={"email": email, "password": password}
        )
        self._raise_for_status(resp)
        tokens = resp.json()
        self.access_token = tokens["access_token"]
        self.refresh_token = tokens.get("refresh_token")

        me = await self._client.get(self._url("/auth/me"))
        self._raise_for_status(me)
        self.user = me.json()
        logger.info("Logged in as %s (%s)", self.user.get("email"), self.role)
        return self.user

    def logout(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.user = None

    async def refresh(self) -> bool:
        if not self.refresh_token:
            return False
        resp = await self._client.post(
            self._url("/auth/refresh"), json={"refresh_token": self.refresh_token}
        )
        if not resp.is_success:
            logger.warning("Token refresh failed with %s; logging out", resp.status_code)
            self.logout()
            return False
        self.access_token = resp.json()["access_token"]
        return True

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and return the decoded JSON body (None for 204)."""
        resp = await self._client.request(method, self._url(path), **kwargs)
        if resp.status_code == 401 and self.refresh_token and await self.refresh():
            resp = await self._client.request(method, self._url(path), **kwargs)
        self._raise_for_status(resp)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> Any:
        return await self.request("PUT", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, **kwargs)
