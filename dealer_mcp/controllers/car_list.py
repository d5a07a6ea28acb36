"""Car listing state: debounced search, request cancellation and realtime refresh."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping

from dealer_mcp.config import get_settings
from dealer_mcp.constants import CARS
from dealer_mcp.controllers.debounce import Debouncer, RequestToken, RequestTracker
from dealer_mcp.data.query import DEFAULT_SEARCH_FIELDS, CarFilters, CarQuery, build_car_query
from dealer_mcp.data.store import RecordStore, Unsubscribe
from dealer_mcp.errors import DealerError, user_message

logger = logging.getLogger(__name__)

LOAD_FAILED_MESSAGE = "Failed to load cars."


class CarListController:
    """Owns the visible car list and keeps it in sync with search and filter input.

    Only the newest request may write ``cars``; results of superseded or
    cancelled requests are dropped.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        debounce_seconds: float | None = None,
        realtime: bool = True,
        search_fields: tuple[str, ...] = DEFAULT_SEARCH_FIELDS,
        sort: str | None = None,
        on_change: Callable[[CarListController], None] | None = None,
    ) -> None:
        self._store = store
        self._realtime = realtime
        self._search_fields = search_fields
        self._sort = sort
        self._on_change = on_change
        if debounce_seconds is None:
            debounce_seconds = get_settings().search_debounce_seconds
        self._debouncer = Debouncer(debounce_seconds, self._dispatch)
        self._tracker = RequestTracker()
        self._inflight: asyncio.Task | None = None
        self._unsubscribe: Unsubscribe | None = None
        self._closed = False

        self.search = ""
        self.filters = CarFilters()
        self.cars: list[dict[str, Any]] = []
        self.loading = False
        self.error: str | None = None
        self.last_query: CarQuery | None = None

    async def __aenter__(self) -> CarListController:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> bool:
        """True while a debounced refresh is waiting or a request is in flight."""
        return self._debouncer.pending or (
            self._inflight is not None and not self._inflight.done()
        )

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("CarListController is closed")

    # ── Input ──────────────────────────────────────────────────────

    def set_search(self, text: str | None) -> None:
        self._ensure_open()
        self.search = text or ""
        self._debouncer.trigger()

    def set_filters(
        self, filters: CarFilters | Mapping[str, Any] | None = None, **changes: Any
    ) -> None:
        """Replace the filters (``filters``) and/or change individual fields (``changes``)."""
        self._ensure_open()
        if filters is not None:
            base = filters if isinstance(filters, CarFilters) else CarFilters.from_mapping(filters)
        else:
            base = self.filters
        if changes:
            base = base.merged(changes)
        self.filters = base
        self._debouncer.trigger()

    def reset(self) -> None:
        self._ensure_open()
        self.search = ""
        self.filters = CarFilters()
        self._debouncer.trigger()

    # ── Loading ────────────────────────────────────────────────────

    def _dispatch(self) -> asyncio.Task | None:
        """Cancel whatever is in flight and start a request for the current state."""
        if self._closed:
            return None
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        token = self._tracker.issue()
        try:
            query = build_car_query(
                self.search, self.filters, sort=self._sort, search_fields=self._search_fields
            )
        except DealerError as exc:
            self._inflight = None
            self._fail(token, exc)
            return None
        self.loading = True
        self._inflight = asyncio.create_task(self._load(token, query))
        return self._inflight

    async def _load(self, token: RequestToken, query: CarQuery) -> None:
        try:
            cars = await self._store.query(CARS, **query.as_options())
        except DealerError as exc:
            self._fail(token, exc)
            return
        except Exception as exc:
            logger.exception("Unexpected error loading cars")
            self._fail(token, exc)
            return
        if not self._tracker.is_current(token):
            logger.debug("Discarding stale car list response (%r)", token)
            return
        self.cars = cars
        self.error = None
        self.loading = False
        self.last_query = query
        self._emit()

    def _fail(self, token: RequestToken, exc: Exception) -> None:
        if not self._tracker.is_current(token):
            return
        logger.error("Car list query failed: %s", exc)
        self.error = user_message(exc, LOAD_FAILED_MESSAGE)
        self.loading = False
        self._emit()

    def _emit(self) -> None:
        if self._on_change is not None:
            self._on_change(self)

    async def refresh(self) -> list[dict[str, Any]]:
        """Query immediately (skipping the debounce) and return the applied list."""
        self._ensure_open()
        self._debouncer.cancel()
        task = self._dispatch()
        if task is not None:
            await asyncio.wait({task})
        return self.cars

    async def wait_idle(self) -> None:
        """Wait for a pending debounce and the request it starts to settle."""
        while self._debouncer.pending:
            await asyncio.sleep(max(self._debouncer.delay / 4, 0.001))
        task = self._inflight
        if task is not None and not task.done():
            await asyncio.wait({task})

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self) -> None:
        """Initial load, then subscribe to remote car changes when realtime is on."""
        self._ensure_open()
        await self.refresh()
        if self._realtime and self._unsubscribe is None:
            self._unsubscribe = await self._store.subscribe(CARS, self._on_remote_change)
            logger.info("Subscribed to %s changes", CARS)

    def _on_remote_change(self, event: dict[str, Any]) -> None:
        if self._closed:
            return
        record = event.get("record") or {}
        logger.debug("Remote %s on car %s; re-running query", event.get("action"), record.get("id"))
        self._dispatch()

    async def close(self) -> None:
        """Tear down the timer, the in-flight request and the subscription.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._debouncer.cancel()
        self._tracker.invalidate()
        task, self._inflight = self._inflight, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        self.loading = False
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            await unsubscribe()
            logger.info("Unsubscribed from %s changes", CARS)

