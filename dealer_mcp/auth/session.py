"""Process-wide login session.

:class:`SessionManager` is the only owner of the token and user.  The cookie
jar and the JSON file are copies written from it after every change; they are
read back only by :meth:`SessionManager.restore` at startup.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from datetime import timedelta
from http.cookies import CookieError, SimpleCookie
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dealer_mcp.auth.tokens import decode_claims, token_valid
from dealer_mcp.data.store import AuthBackend
from dealer_mcp.errors import DealerError, RecordStoreError, ValidationError

if TYPE_CHECKING:
    from dealer_mcp.config import DealerSettings

logger = logging.getLogger(__name__)

AUTH_COOKIE_NAMES = ("pb_auth", "pocketbase_auth")
DEFAULT_SESSION_TTL = timedelta(days=7)
DEFAULT_REFRESH_INTERVAL_SECONDS = 5 * 60


def _public_user(record: dict[str, Any] | None) -> dict[str, Any] | None:
    if not record:
        return None
    return {
        "id": record.get("id"),
        "email": record.get("email", ""),
        "name": record.get("name", ""),
    }


class SessionCookieJar:
    """Renders the auth cookies as ``Set-Cookie`` values and parses them back."""

    def __init__(self, *, secure: bool = False, ttl: timedelta = DEFAULT_SESSION_TTL) -> None:
        self.secure = secure
        self.ttl = ttl
        self._cookie = SimpleCookie()

    def write(self, token: str) -> list[str]:
        cookie = SimpleCookie()
        for name in AUTH_COOKIE_NAMES:
            cookie[name] = token
            morsel = cookie[name]
            morsel["path"] = "/"
            morsel["max-age"] = str(int(self.ttl.total_seconds()))
            morsel["samesite"] = "Strict"
            if self.secure:
                morsel["secure"] = True
        self._cookie = cookie
        return self.headers()

    def clear(self) -> list[str]:
        cookie = SimpleCookie()
        for name in AUTH_COOKIE_NAMES:
            cookie[name] = ""
            cookie[name]["path"] = "/"
            cookie[name]["max-age"] = "0"
        self._cookie = cookie
        return self.headers()

    def headers(self) -> list[str]:
        """``Set-Cookie`` header values for the current cookies."""
        return [morsel.OutputString() for morsel in self._cookie.values()]

    def load(self, header: str) -> None:
        """Load a ``Cookie`` request header (e.g. forwarded from a browser)."""
        cookie = SimpleCookie()
        try:
            cookie.load(header)
        except CookieError as exc:
            logger.warning("Ignoring malformed cookie header: %s", exc)
            return
        self._cookie = cookie

    def read(self) -> str | None:
        for name in AUTH_COOKIE_NAMES:
            morsel = self._cookie.get(name)
            if morsel is not None and morsel.value and morsel.get("max-age") != "0":
                return morsel.value
        return None


class SessionFileStorage:
    """JSON file holding ``{token, user, expires_at}``; expired entries are purged on read."""

    def __init__(self, path: str | os.PathLike[str], *, ttl: timedelta = DEFAULT_SESSION_TTL) -> None:
        self.path = Path(path)
        self.ttl = ttl

    def write(self, token: str, user: dict[str, Any] | None) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "token": token,
            "user": user,
            "expires_at": time.time() + self.ttl.total_seconds(),
        }
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def read(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Discarding unreadable session file %s: %s", self.path, exc)
            self.clear()
            return None
        if not isinstance(data, dict) or time.time() >= float(data.get("expires_at") or 0):
            self.clear()
            return None
        return data

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class SessionManager:
    """Single authority for the logged-in user and token."""

    def __init__(
        self,
        backend: AuthBackend,
        *,
        storage: SessionFileStorage | None = None,
        cookies: SessionCookieJar | None = None,
    ) -> None:
        self._backend = backend
        self.storage = storage
        self.cookies = cookies
        self._token: str | None = None
        self._user: dict[str, Any] | None = None
        self._refresh_task: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, backend: AuthBackend, settings: DealerSettings) -> SessionManager:
        ttl = timedelta(days=settings.session_ttl_days)
        return cls(
            backend,
            storage=SessionFileStorage(settings.session_file, ttl=ttl),
            cookies=SessionCookieJar(secure=settings.cookie_secure, ttl=ttl),
        )

    @property
    def token(self) -> str | None:
        return self._token if self.is_logged_in() else None

    def _apply(self, token: str, record: dict[str, Any] | None) -> None:
        self._token = token
        self._user = _public_user(record)
        if self.storage is not None:
            self.storage.write(token, self._user)
        if self.cookies is not None:
            self.cookies.write(token)

    def _drop(self) -> None:
        self._token = None
        self._user = None
        if self.storage is not None:
            self.storage.clear()
        if self.cookies is not None:
            self.cookies.clear()

    async def login(self, email: str, password: str) -> dict[str, Any]:
        """Authenticate and return ``{"token", "user"}``."""
        email = (email or "").strip()
        if not email:
            raise ValidationError("email", "Email is required")
        if not password:
            raise ValidationError("password", "Password is required")
        result = await self._backend.auth_with_password(email, password)
        self._apply(result["token"], result.get("record"))
        logger.info("Logged in as %s", email)
        return {"token": self._token, "user": self._user}

    def logout(self) -> None:
        if self._user is not None:
            logger.info("Logged out %s", self._user.get("email"))
        self._drop()

    def is_logged_in(self) -> bool:
        return token_valid(self._token)

    def current_user(self) -> dict[str, Any] | None:
        return dict(self._user) if self._user and self.is_logged_in() else None

    def restore(self) -> bool:
        """Re-establish a session from storage, falling back to the cookie."""
        if self.storage is not None:
            data = self.storage.read()
            if data and token_valid(data.get("token")):
                self._apply(data["token"], data.get("user"))
                logger.debug("Session restored from %s", self.storage.path)
                return True
        if self.cookies is not None:
            token = self.cookies.read()
            if token and token_valid(token):
                self._apply(token, {"id": (decode_claims(token) or {}).get("id")})
                logger.debug("Session restored from cookie")
                return True
        self._drop()
        return False

    async def refresh(self) -> bool:
        """Renew the token with the backend.  Returns ``False`` (and logs out) when rejected."""
        if not self.is_logged_in():
            self._drop()
            return False
        try:
            result = await self._backend.auth_refresh(self._token or "")
        except RecordStoreError as exc:
            if exc.status in (401, 403, 404):
                logger.warning("Session refresh rejected (%s); logging out", exc.status)
                self._drop()
                return False
            raise
        self._apply(result["token"], result.get("record") or self._user)
        logger.debug("Session refreshed")
        return True

    def start_auto_refresh(
        self, interval: float = DEFAULT_REFRESH_INTERVAL_SECONDS
    ) -> asyncio.Task:
        """Periodically revalidate the session until :meth:`close`."""
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._refresh_loop(interval))
        return self._refresh_task

    async def _refresh_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if not self._token:
                continue
            try:
                await self.refresh()
            except DealerError as exc:
                logger.warning("Session refresh failed: %s", exc)

    async def close(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
