"""RecordStore protocol and the in-memory implementation used for development and tests."""

from __future__ import annotations

import copy
import inspect
import logging
import os
import re
import secrets
import string
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import (
    Any,
    Awaitable,
    Callable,
    Protocol,
    runtime_checkable,
)

from werkzeug.security import check_password_hash, generate_password_hash

from dealer_mcp.auth.tokens import encode_token, verify_token
from dealer_mcp.constants import RELATIONS, USERS
from dealer_mcp.data.filter_expr import compile_filter
from dealer_mcp.errors import NotFoundError, RecordStoreError

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[dict[str, Any]], Any]
Unsubscribe = Callable[[], Awaitable[None]]

ID_ALPHABET = string.ascii_lowercase + string.digits
ID_LENGTH = 15
# Fields the store owns; ignored in payloads.
SYSTEM_FIELDS = frozenset({"id", "created", "updated", "expand", "collectionName", "collectionId"})
_HIDDEN_FIELDS = frozenset({"password_hash"})
_SAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9_]+")
DEFAULT_TOKEN_TTL = timedelta(days=7)


@dataclass(frozen=True)
class FileUpload:
    """A new file attached to a record payload."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@runtime_checkable
class RecordStore(Protocol):
    """Minimal interface for the hosted record store."""

    async def query(
        self,
        collection: str,
        *,
        filter: str | None = None,
        sort: str | None = None,
        expand: str | None = None,
        page: int | None = None,
        per_page: int | None = None,
    ) -> list[dict[str, Any]]: ...
    async def count(self, collection: str, *, filter: str | None = None) -> int: ...
    async def find_first(
        self, collection: str, filter: str, *, expand: str | None = None
    ) -> dict[str, Any] | None: ...
    async def get_one(
        self, collection: str, record_id: str, *, expand: str | None = None
    ) -> dict[str, Any]: ...
    async def create(self, collection: str, payload: dict[str, Any]) -> dict[str, Any]: ...
    async def update(
        self, collection: str, record_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]: ...
    async def delete(self, collection: str, record_id: str) -> None: ...
    async def subscribe(self, collection: str, handler: ChangeHandler) -> Unsubscribe: ...
    def file_url(self, record: dict[str, Any], filename: str) -> str: ...


@runtime_checkable
class AuthBackend(Protocol):
    """Password auth against the store's users collection."""

    async def auth_with_password(self, identity: str, password: str) -> dict[str, Any]: ...
    async def auth_refresh(self, token: str) -> dict[str, Any]: ...


def new_record_id() -> str:
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))


@dataclass
class FileChanges:
    """File bytes a payload adds or drops, keyed by ``(collection, record_id, name)``."""

    added: dict[tuple[str, str, str], bytes] = field(default_factory=dict)
    removed: list[tuple[str, str, str]] = field(default_factory=list)


def unique_filename(original: str) -> str:
    """``Front View.JPG`` -> ``front_view_k3j9d0a1bq.jpg``."""
    stem, ext = os.path.splitext(original)
    safe = _SAFE_FILENAME_RE.sub("_", stem.strip().lower()).strip("_") or "file"
    suffix = "".join(secrets.choice(ID_ALPHABET) for _ in range(10))
    return f"{safe}_{suffix}{ext.lower()}"


def parse_expand(expand: str | None) -> dict[str, dict]:
    """``"model.brand,model.body_type"`` -> ``{"model": {"brand": {}, "body_type": {}}}``."""
    tree: dict[str, dict] = {}
    for raw in (expand or "").split(","):
        path = raw.strip()
        if not path:
            continue
        node = tree
        for part in path.split("."):
            node = node.setdefault(part, {})
    return tree


def parse_sort(sort: str | None) -> list[tuple[str, bool]]:
    """``"-created,name"`` -> ``[("created", True), ("name", False)]``."""
    keys: list[tuple[str, bool]] = []
    for raw in (sort or "").split(","):
        field = raw.strip()
        if not field:
            continue
        if field[0] in "+-":
            keys.append((field[1:], field[0] == "-"))
        else:
            keys.append((field, False))
    return keys


def _sort_key(value: Any) -> tuple[int, Any]:
    if value is None or value == "":
        return (0, "")
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (1, float(value))
    return (2, str(value))


def _timestamp(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


class InMemoryRecordStore:
    """Process-local record store with relation traversal, files and change feeds."""

    def __init__(
        self,
        *,
        relations: dict[str, dict[str, str]] | None = None,
        base_url: str = "http://memory.local",
        token_secret: str | None = None,
        token_ttl: timedelta = DEFAULT_TOKEN_TTL,
    ) -> None:
        self._lock = threading.RLock()
        self._relations = relations if relations is not None else RELATIONS
        self._records: dict[str, dict[str, dict[str, Any]]] = {}
        self._files: dict[tuple[str, str, str], bytes] = {}
        self._subscribers: dict[str, list[ChangeHandler]] = {}
        self._last_stamp: datetime | None = None
        self._token_secret = token_secret or secrets.token_hex(16)
        self._token_ttl = token_ttl
        self.base_url = base_url.rstrip("/")

    # ── Internals ──────────────────────────────────────────────────

    def _now(self) -> datetime:
        # Strictly increasing so "-created" ordering is deterministic.
        moment = datetime.now(timezone.utc)
        moment = moment.replace(microsecond=(moment.microsecond // 1000) * 1000)
        if self._last_stamp is not None and moment <= self._last_stamp:
            moment = self._last_stamp + timedelta(milliseconds=1)
        self._last_stamp = moment
        return moment

    def _table(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._records.setdefault(collection, {})

    def _public(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        out = {k: copy.deepcopy(v) for k, v in record.items() if k not in _HIDDEN_FIELDS}
        out["collectionName"] = collection
        return out

    def _resolver(self, collection: str) -> Callable[[dict[str, Any], str], Any]:
        def _resolve(record: dict[str, Any], path: str) -> Any:
            return self._resolve_path(collection, record, path.split("."))

        return _resolve

    def _resolve_path(self, collection: str, record: dict[str, Any], parts: list[str]) -> Any:
        head, rest = parts[0], parts[1:]
        value = record.get(head)
        if not rest:
            return value
        target = self._relations.get(collection, {}).get(head)
        if target is None or not value:
            return None
        if isinstance(value, list):
            resolved = []
            for ref in value:
                linked = self._table(target).get(ref)
                if linked is not None:
                    resolved.append(self._resolve_path(target, linked, rest))
            return resolved
        linked = self._table(target).get(value)
        if linked is None:
            return None
        return self._resolve_path(target, linked, rest)

    def _expand(self, collection: str, record: dict[str, Any], tree: dict[str, dict]) -> None:
        for field, subtree in tree.items():
            target = self._relations.get(collection, {}).get(field)
            value = record.get(field)
            if target is None or not value:
                continue
            if isinstance(value, list):
                children = []
                for ref in value:
                    linked = self._table(target).get(ref)
                    if linked is not None:
                        child = self._public(target, linked)
                        self._expand(target, child, subtree)
                        children.append(child)
                record.setdefault("expand", {})[field] = children
                continue
            linked = self._table(target).get(value)
            if linked is None:
                continue
            child = self._public(target, linked)
            self._expand(target, child, subtree)
            record.setdefault("expand", {})[field] = child

    def _render(
        self, collection: str, record: dict[str, Any], expand: str | None
    ) -> dict[str, Any]:
        out = self._public(collection, record)
        tree = parse_expand(expand)
        if tree:
            self._expand(collection, out, tree)
        return out

    def _matching(self, collection: str, filter: str | None) -> list[dict[str, Any]]:
        predicate = compile_filter(filter)
        resolve = self._resolver(collection)
        return [r for r in self._table(collection).values() if predicate(r, resolve)]

    def _commit_files(self, changes: FileChanges) -> None:
        for key in changes.removed:
            self._files.pop(key, None)
        self._files.update(changes.added)

    def _coerce_value(
        self, collection: str, record_id: str, value: Any, changes: FileChanges
    ) -> Any:
        if isinstance(value, FileUpload):
            name = unique_filename(value.filename)
            changes.added[(collection, record_id, name)] = value.content
            return name
        if isinstance(value, (list, tuple)):
            return [self._coerce_value(collection, record_id, v, changes) for v in value]
        return value

    def _apply_payload(
        self, collection: str, record: dict[str, Any], payload: dict[str, Any]
    ) -> FileChanges:
        """Apply ``payload`` to ``record`` and return the file changes it implies.

        Nothing touches stored file bytes until the caller commits the changes.
        """
        record_id = record["id"]
        changes = FileChanges()
        for key, raw in payload.items():
            if key in SYSTEM_FIELDS:
                continue
            if collection == USERS and key in {"password", "passwordConfirm"}:
                if key == "password" and raw:
                    record["password_hash"] = generate_password_hash(str(raw))
                continue
            if key.endswith("+"):
                field = key[:-1]
                additions = raw if isinstance(raw, (list, tuple)) else [raw]
                current = list(record.get(field) or [])
                current.extend(self._coerce_value(collection, record_id, list(additions), changes))
                record[field] = current
                continue
            if key.endswith("-"):
                field = key[:-1]
                removals = set(raw if isinstance(raw, (list, tuple)) else [raw])
                current = list(record.get(field) or [])
                changes.removed.extend(
                    (collection, record_id, v) for v in current if v in removals
                )
                record[field] = [v for v in current if v not in removals]
                continue
            previous = record.get(key)
            value = self._coerce_value(collection, record_id, raw, changes)
            if isinstance(previous, list) and any(isinstance(v, FileUpload) for v in _as_list(raw)):
                changes.removed.extend(
                    (collection, record_id, v) for v in previous if v not in value
                )
            record[key] = value
        return changes

    def _check_relations(self, collection: str, record: dict[str, Any]) -> None:
        errors: dict[str, Any] = {}
        for field, target in self._relations.get(collection, {}).items():
            value = record.get(field)
            refs = value if isinstance(value, list) else [value]
            for ref in refs:
                if ref and ref not in self._table(target):
                    errors[field] = {
                        "code": "validation_missing_rel_records",
                        "message": "Failed to find all relation records with the provided ids.",
                    }
        if errors:
            raise RecordStoreError(
                "Failed to save record.",
                code="HTTP_ERROR",
                status=400,
                details={"data": errors},
            )

    async def _notify(self, collection: str, action: str, record: dict[str, Any]) -> None:
        event = {"action": action, "record": record}
        for handler in list(self._subscribers.get(collection, [])):
            try:
                result = handler(copy.deepcopy(event))
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Change handler for %s failed", collection)

    # ── Seeding ────────────────────────────────────────────────────

    def load_records(self, collection: str, records: list[dict[str, Any]]) -> None:
        """Bulk-insert records keeping their ids.  No change events are emitted."""
        with self._lock:
            table = self._table(collection)
            for payload in records:
                record_id = str(payload.get("id") or new_record_id())
                stamp = _timestamp(self._now())
                record: dict[str, Any] = {
                    "id": record_id,
                    "created": payload.get("created") or stamp,
                    "updated": stamp,
                }
                self._commit_files(self._apply_payload(collection, record, payload))
                table[record_id] = record

    def record_count(self, collection: str | None = None) -> int:
        with self._lock:
            if collection is not None:
                return len(self._table(collection))
            return sum(len(t) for t in self._records.values())

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
        with self._lock:
            rows = self._matching(collection, filter)
            resolve = self._resolver(collection)
            for field, descending in reversed(parse_sort(sort)):
                rows.sort(key=lambda r, f=field: _sort_key(resolve(r, f)), reverse=descending)
            if per_page is not None:
                start = (max(page or 1, 1) - 1) * per_page
                rows = rows[start:start + per_page]
            return [self._render(collection, r, expand) for r in rows]

    async def count(self, collection: str, *, filter: str | None = None) -> int:
        with self._lock:
            return len(self._matching(collection, filter))

    async def find_first(
        self, collection: str, filter: str, *, expand: str | None = None
    ) -> dict[str, Any] | None:
        with self._lock:
            rows = self._matching(collection, filter)
            return self._render(collection, rows[0], expand) if rows else None

    async def get_one(
        self, collection: str, record_id: str, *, expand: str | None = None
    ) -> dict[str, Any]:
        with self._lock:
            record = self._table(collection).get(record_id)
            if record is None:
                raise NotFoundError(collection, record_id)
            return self._render(collection, record, expand)

    # ── Writes ─────────────────────────────────────────────────────

    async def create(self, collection: str, payload: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            record_id = str(payload.get("id") or new_record_id())
            table = self._table(collection)
            if record_id in table:
                raise RecordStoreError(
                    "Failed to create record.",
                    code="HTTP_ERROR",
                    status=400,
                    details={"data": {"id": {"code": "validation_invalid_id"}}},
                )
            stamp = _timestamp(self._now())
            record: dict[str, Any] = {"id": record_id, "created": stamp, "updated": stamp}
            changes = self._apply_payload(collection, record, payload)
            self._check_relations(collection, record)
            self._commit_files(changes)
            table[record_id] = record
            rendered = self._public(collection, record)
        logger.debug("Created %s/%s", collection, record_id)
        await self._notify(collection, "create", rendered)
        return rendered

    async def update(
        self, collection: str, record_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        with self._lock:
            existing = self._table(collection).get(record_id)
            if existing is None:
                raise NotFoundError(collection, record_id)
            candidate = copy.deepcopy(existing)
            changes = self._apply_payload(collection, candidate, payload)
            self._check_relations(collection, candidate)
            self._commit_files(changes)
            candidate["updated"] = _timestamp(self._now())
            self._table(collection)[record_id] = candidate
            rendered = self._public(collection, candidate)
        await self._notify(collection, "update", rendered)
        return rendered

    async def delete(self, collection: str, record_id: str) -> None:
        with self._lock:
            record = self._table(collection).pop(record_id, None)
            if record is None:
                raise NotFoundError(collection, record_id)
            for key in [k for k in self._files if k[0] == collection and k[1] == record_id]:
                del self._files[key]
            rendered = self._public(collection, record)
        await self._notify(collection, "delete", rendered)

    # ── Realtime ───────────────────────────────────────────────────

    async def subscribe(self, collection: str, handler: ChangeHandler) -> Unsubscribe:
        with self._lock:
            self._subscribers.setdefault(collection, []).append(handler)

        async def _unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers.get(collection, [])
                if handler in handlers:
                    handlers.remove(handler)

        return _unsubscribe

    def subscriber_count(self, collection: str) -> int:
        with self._lock:
            return len(self._subscribers.get(collection, []))

    # ── Files ──────────────────────────────────────────────────────

    def file_url(self, record: dict[str, Any], filename: str) -> str:
        if not filename or not record.get("id"):
            return ""
        collection = record.get("collectionName") or record.get("collectionId") or ""
        return f"{self.base_url}/api/files/{collection}/{record['id']}/{filename}"

    def read_file(self, collection: str, record_id: str, filename: str) -> bytes | None:
        with self._lock:
            return self._files.get((collection, record_id, filename))

    # ── Auth ───────────────────────────────────────────────────────

    def _issue(self, user: dict[str, Any]) -> dict[str, Any]:
        exp = int(time.time() + self._token_ttl.total_seconds())
        token = encode_token(
            {"id": user["id"], "type": "auth", "collectionId": USERS, "exp": exp},
            self._token_secret,
        )
        return {"token": token, "record": self._public(USERS, user)}

    async def auth_with_password(self, identity: str, password: str) -> dict[str, Any]:
        with self._lock:
            for user in self._table(USERS).values():
                if str(user.get("email", "")).lower() == identity.strip().lower() and (
                    check_password_hash(user.get("password_hash") or "", password)
                ):
                    return self._issue(user)
        raise RecordStoreError(
            "Failed to authenticate.", code="HTTP_ERROR", status=400
        )

    async def auth_refresh(self, token: str) -> dict[str, Any]:
        claims = verify_token(token, self._token_secret)
        with self._lock:
            user = self._table(USERS).get(str(claims.get("id"))) if claims else None
            if user is None:
                raise RecordStoreError(
                    "The request requires valid record authorization token.",
                    code="HTTP_ERROR",
                    status=401,
                )
            return self._issue(user)


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]
