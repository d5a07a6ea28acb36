"""Async PocketBase REST client implementing the RecordStore protocol."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

import aiohttp

from dealer_mcp.constants import USERS
from dealer_mcp.data.store import ChangeHandler, FileUpload, Unsubscribe
from dealer_mcp.errors import NotFoundError, RecordStoreError

logger = logging.getLogger(__name__)

FULL_LIST_BATCH = 500
_DEFAULT_TIMEOUT_SECONDS = 12.0
_REALTIME_RECONNECT_SECONDS = 3.0

TokenProvider = Callable[[], "str | None"]


@dataclass(frozen=True)
class SSEEvent:
    name: str
    data: str
    id: str = ""


class SSEParser:
    """Incremental ``text/event-stream`` parser fed one line at a time."""

    def __init__(self) -> None:
        self._name = ""
        self._data: list[str] = []
        self._id = ""

    def feed(self, line: str) -> SSEEvent | None:
        if line == "":
            if not self._data and not self._name:
                return None
            event = SSEEvent(name=self._name or "message", data="\n".join(self._data), id=self._id)
            self._name, self._data, self._id = "", [], ""
            return event
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._name = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            self._id = value
        return None


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _has_upload(payload: dict[str, Any]) -> bool:
    for value in payload.values():
        if isinstance(value, FileUpload):
            return True
        if isinstance(value, (list, tuple)) and any(isinstance(v, FileUpload) for v in value):
            return True
    return False


def build_form(payload: dict[str, Any]) -> aiohttp.FormData:
    """Encode a payload with file uploads as multipart form data."""
    form = aiohttp.FormData()
    for key, value in payload.items():
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if isinstance(item, FileUpload):
                form.add_field(
                    key, item.content, filename=item.filename, content_type=item.content_type
                )
            else:
                form.add_field(key, _form_value(item))
    return form


class PocketBaseClient:
    """Async client for a PocketBase deployment.

    Usable as an async context manager, or long-lived with an explicit
    :meth:`close`.  The auth token is read from ``token_provider`` on every
    request so the session manager stays the single authority.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token_provider: TokenProvider | None = None,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.base_url = base_url.strip().rstrip("/")
        self.token_provider = token_provider
        self.session: aiohttp.ClientSession | None = None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._handlers: dict[str, list[ChangeHandler]] = {}
        self._client_id: str | None = None
        self._realtime_task: asyncio.Task | None = None

    async def __aenter__(self) -> PocketBaseClient:
        self._ensure_session()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if not self.base_url:
            raise RecordStoreError(
                "DEALER_POCKETBASE_URL is not configured.",
                code="MISSING_BASE_URL",
            )
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
        return self.session

    async def close(self) -> None:
        task, self._realtime_task = self._realtime_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._handlers.clear()
        self._client_id = None
        if self.session is not None:
            await self.session.close()
            self.session = None

    def _headers(self) -> dict[str, str]:
        token = self.token_provider() if self.token_provider else None
        return {"Authorization": token} if token else {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        session = self._ensure_session()
        url = f"{self.base_url}{path}"
        clean_params = {k: str(v) for k, v in (params or {}).items() if v not in (None, "")}

        kwargs: dict[str, Any] = {
            "params": clean_params or None,
            "headers": {**self._headers(), **(headers or {})},
            "timeout": self._timeout,
        }
        if body is not None:
            if _has_upload(body):
                kwargs["data"] = build_form(body)
            else:
                kwargs["json"] = body

        try:
            async with session.request(method, url, **kwargs) as resp:
                raw_text = await resp.text()
                payload: Any
                if raw_text:
                    try:
                        payload = json.loads(raw_text)
                    except json.JSONDecodeError:
                        payload = {"raw": raw_text}
                else:
                    payload = {}

                if resp.status >= 400:
                    message = f"PocketBase request failed with HTTP {resp.status}."
                    if isinstance(payload, dict):
                        message = str(payload.get("message") or message)
                    raise RecordStoreError(
                        message,
                        code="HTTP_ERROR",
                        status=resp.status,
                        details=payload if isinstance(payload, dict) else {"response": payload},
                    )
                return payload
        except RecordStoreError:
            raise
        except TimeoutError as exc:
            raise RecordStoreError(
                "PocketBase request timed out.",
                code="TIMEOUT",
                details={"path": path, "params": clean_params},
            ) from exc
        except aiohttp.ClientError as exc:
            logger.error("PocketBase client error (%s %s): %s", method, path, exc)
            raise RecordStoreError(
                "PocketBase request failed due to a network/client error.",
                code="NETWORK_ERROR",
                details={"path": path, "params": clean_params, "error": str(exc)},
            ) from exc

    @staticmethod
    def _records_path(collection: str, record_id: str | None = None) -> str:
        path = f"/api/collections/{collection}/records"
        return f"{path}/{record_id}" if record_id else path

    # ── Reads ──────────────────────────────────────────────────────

    async def query(
        self,
        collection: str,
        *,
        filter: str | None = None,
        sort: str | None = None,
        expand: str | None = None,
        page: int | None = None,
        per_page: int | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"filter": filter, "sort": sort, "expand": expand}
        if per_page is not None:
            data = await self._request(
                "GET",
                self._records_path(collection),
                params={**params, "page": page or 1, "perPage": per_page, "skipTotal": 1},
            )
            return list(data.get("items", []))

        items: list[dict[str, Any]] = []
        current = 1
        while True:
            data = await self._request(
                "GET",
                self._records_path(collection),
                params={**params, "page": current, "perPage": FULL_LIST_BATCH, "skipTotal": 1},
            )
            batch = list(data.get("items", []))
            items.extend(batch)
            if len(batch) < FULL_LIST_BATCH:
                return items
            current += 1

    async def count(self, collection: str, *, filter: str | None = None) -> int:
        data = await self._request(
            "GET",
            self._records_path(collection),
            params={"filter": filter, "page": 1, "perPage": 1, "fields": "id"},
        )
        return int(data.get("totalItems", 0))

    async def find_first(
        self, collection: str, filter: str, *, expand: str | None = None
    ) -> dict[str, Any] | None:
        items = await self.query(collection, filter=filter, expand=expand, page=1, per_page=1)
        return items[0] if items else None

    async def get_one(
        self, collection: str, record_id: str, *, expand: str | None = None
    ) -> dict[str, Any]:
        try:
            return await self._request(
                "GET", self._records_path(collection, record_id), params={"expand": expand}
            )
        except RecordStoreError as exc:
            if exc.is_not_found:
                raise NotFoundError(collection, record_id) from exc
            raise

    # ── Writes ─────────────────────────────────────────────────────

    async def create(self, collection: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", self._records_path(collection), body=payload)

    async def update(
        self, collection: str, record_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        try:
            return await self._request(
                "PATCH", self._records_path(collection, record_id), body=payload
            )
        except RecordStoreError as exc:
            if exc.is_not_found:
                raise NotFoundError(collection, record_id) from exc
            raise

    async def delete(self, collection: str, record_id: str) -> None:
        try:
            await self._request("DELETE", self._records_path(collection, record_id))
        except RecordStoreError as exc:
            if exc.is_not_found:
                raise NotFoundError(collection, record_id) from exc
            raise

    def file_url(self, record: dict[str, Any], filename: str) -> str:
        if not filename or not record.get("id"):
            return ""
        collection = record.get("collectionId") or record.get("collectionName") or ""
        return f"{self.base_url}/api/files/{collection}/{record['id']}/{filename}"

    # ── Auth ───────────────────────────────────────────────────────

    async def auth_with_password(self, identity: str, password: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/api/collections/{USERS}/auth-with-password",
            body={"identity": identity, "password": password},
        )

    async def auth_refresh(self, token: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/api/collections/{USERS}/auth-refresh",
            headers={"Authorization": token},
        )

    # ── Realtime ───────────────────────────────────────────────────

    async def subscribe(self, collection: str, handler: ChangeHandler) -> Unsubscribe:
        self._ensure_session()
        first_for_collection = not self._handlers.get(collection)
        self._handlers.setdefault(collection, []).append(handler)
        if self._realtime_task is None or self._realtime_task.done():
            self._realtime_task = asyncio.create_task(self._realtime_loop())
        elif first_for_collection and self._client_id:
            await self._sync_subscriptions()

        async def _unsubscribe() -> None:
            handlers = self._handlers.get(collection, [])
            if handler not in handlers:
                return
            handlers.remove(handler)
            if not handlers:
                self._handlers.pop(collection, None)
            if not self._handlers:
                await self._stop_realtime()
            elif collection not in self._handlers and self._client_id:
                await self._sync_subscriptions()

        return _unsubscribe

    async def _stop_realtime(self) -> None:
        task, self._realtime_task = self._realtime_task, None
        self._client_id = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Realtime connection closed")

    async def _sync_subscriptions(self) -> None:
        if not self._client_id:
            return
        await self._request(
            "POST",
            "/api/realtime",
            body={
                "clientId": self._client_id,
                "subscriptions": [f"{name}/*" for name in self._handlers],
            },
        )

    async def _dispatch(self, event: SSEEvent) -> None:
        try:
            data = json.loads(event.data) if event.data else {}
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed realtime event %s", event.name)
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object realtime payload for %s", event.name)
            return
        if event.name == "PB_CONNECT":
            self._client_id = data.get("clientId") or event.id
            logger.info("Realtime connected (client %s)", self._client_id)
            await self._sync_subscriptions()
            return
        collection = event.name.split("/", 1)[0]
        for handler in list(self._handlers.get(collection, [])):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Realtime handler for %s failed", collection)

    async def _realtime_loop(self) -> None:
        session = self._ensure_session()
        url = f"{self.base_url}/api/realtime"
        while self._handlers:
            parser = SSEParser()
            try:
                async with session.get(
                    url,
                    headers={**self._headers(), "Accept": "text/event-stream"},
                    timeout=aiohttp.ClientTimeout(total=None, sock_read=None),
                ) as resp:
                    if resp.status >= 400:
                        raise RecordStoreError(
                            f"Realtime connection failed with HTTP {resp.status}.",
                            code="HTTP_ERROR",
                            status=resp.status,
                        )
                    async for raw in resp.content:
                        event = parser.feed(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
                        if event is not None:
                            await self._dispatch(event)
            except (aiohttp.ClientError, RecordStoreError) as exc:
                logger.warning("Realtime connection lost: %s", exc)
            except Exception as exc:
                logger.error("Realtime stream failed, reconnecting: %s", exc)
            self._client_id = None
            if self._handlers:
                await asyncio.sleep(_REALTIME_RECONNECT_SECONDS)
