"""Tests for the login session, its cookie and file caches, and token helpers."""

from __future__ import annotations

import json
import time

import pytest

from dealer_mcp.auth.session import SessionCookieJar, SessionFileStorage, SessionManager
from dealer_mcp.auth.tokens import decode_claims, encode_token, is_expired, token_valid, verify_token
from dealer_mcp.data.seed import DEMO_ADMIN_EMAIL, DEMO_ADMIN_PASSWORD
from dealer_mcp.data.store import InMemoryRecordStore
from dealer_mcp.errors import RecordStoreError, ValidationError


def _token(exp_offset: float = 3600, **claims) -> str:
    return encode_token({"id": "admin-user-id", "exp": int(time.time() + exp_offset), **claims}, "s")


@pytest.fixture()
def session(store: InMemoryRecordStore, tmp_path) -> SessionManager:
    return SessionManager(
        store,
        storage=SessionFileStorage(tmp_path / "auth.json"),
        cookies=SessionCookieJar(),
    )


class TestTokens:
    def test_round_trip_claims(self):
        token = _token()
        assert decode_claims(token)["id"] == "admin-user-id"
        assert verify_token(token, "s") is not None
        assert verify_token(token, "other") is None

    def test_expiry(self):
        assert not token_valid(_token(-1))
        assert token_valid(_token())
        assert is_expired({"exp": 10}, now=10)
        assert is_expired({})

    def test_garbage(self):
        assert decode_claims("not-a-jwt") is None
        assert not token_valid(None)


class TestCookieJar:
    def test_write_sets_both_cookies(self):
        jar = SessionCookieJar(secure=True)
        headers = jar.write("tok")
        assert len(headers) == 2
        assert all("SameSite=Strict" in h and "Secure" in h for h in headers)
        assert headers[0].startswith("pb_auth=tok")
        assert jar.read() == "tok"

    def test_clear(self):
        jar = SessionCookieJar()
        jar.write("tok")
        jar.clear()
        assert jar.read() is None

    def test_load_request_header(self):
        jar = SessionCookieJar()
        jar.load("theme=dark; pocketbase_auth=abc")
        assert jar.read() == "abc"


class TestFileStorage:
    def test_write_read(self, tmp_path):
        storage = SessionFileStorage(tmp_path / "s.json")
        storage.write("tok", {"id": "u"})
        assert storage.read()["token"] == "tok"

    def test_expired_entry_purged(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text(json.dumps({"token": "tok", "expires_at": time.time() - 1}))
        assert SessionFileStorage(path).read() is None
        assert not path.exists()

    def test_corrupt_file_purged(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text("{nope")
        assert SessionFileStorage(path).read() is None
        assert not path.exists()


class TestSessionManager:
    async def test_login_writes_caches(self, session: SessionManager):
        result = await session.login(DEMO_ADMIN_EMAIL, DEMO_ADMIN_PASSWORD)
        assert result["user"] == {
            "id": "admin-user-id",
            "email": DEMO_ADMIN_EMAIL,
            "name": "Admin Showroom",
        }
        assert session.is_logged_in()
        assert session.token == result["token"]
        assert session.storage.read()["token"] == result["token"]
        assert session.cookies.read() == result["token"]

    async def test_login_validates_before_network(self, session: SessionManager):
        with pytest.raises(ValidationError, match="Email"):
            await session.login("  ", "x")
        with pytest.raises(ValidationError, match="Password"):
            await session.login(DEMO_ADMIN_EMAIL, "")

    async def test_bad_credentials(self, session: SessionManager):
        with pytest.raises(RecordStoreError):
            await session.login(DEMO_ADMIN_EMAIL, "nope")
        assert not session.is_logged_in()

    async def test_logout_clears_everything(self, session: SessionManager):
        await session.login(DEMO_ADMIN_EMAIL, DEMO_ADMIN_PASSWORD)
        session.logout()
        assert session.current_user() is None
        assert session.token is None
        assert session.storage.read() is None
        assert session.cookies.read() is None

    async def test_restore_from_file(self, store, session: SessionManager):
        await session.login(DEMO_ADMIN_EMAIL, DEMO_ADMIN_PASSWORD)
        fresh = SessionManager(store, storage=session.storage, cookies=SessionCookieJar())
        assert fresh.restore()
        assert fresh.current_user()["email"] == DEMO_ADMIN_EMAIL

    def test_restore_from_cookie(self, store, tmp_path):
        jar = SessionCookieJar()
        jar.load(f"pb_auth={_token()}")
        manager = SessionManager(store, storage=SessionFileStorage(tmp_path / "x.json"), cookies=jar)
        assert manager.restore()
        assert manager.current_user()["id"] == "admin-user-id"

    def test_restore_expired_cookie(self, store):
        jar = SessionCookieJar()
        jar.load(f"pb_auth={_token(-60)}")
        manager = SessionManager(store, cookies=jar)
        assert not manager.restore()
        assert not manager.is_logged_in()

    async def test_refresh(self, session: SessionManager):
        await session.login(DEMO_ADMIN_EMAIL, DEMO_ADMIN_PASSWORD)
        assert await session.refresh()
        assert session.is_logged_in()

    async def test_refresh_rejected_logs_out(self, store, tmp_path):
        manager = SessionManager(store, storage=SessionFileStorage(tmp_path / "x.json"))
        manager._apply(_token(), {"id": "admin-user-id"})
        assert not await manager.refresh()
        assert manager.current_user() is None

    async def test_auto_refresh_task(self, session: SessionManager):
        await session.login(DEMO_ADMIN_EMAIL, DEMO_ADMIN_PASSWORD)
        task = session.start_auto_refresh(interval=0.01)
        assert session.start_auto_refresh(interval=0.01) is task
        await session.close()
        assert task.cancelled()
