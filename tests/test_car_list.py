"""Tests for debounced search, stale-response handling and realtime refresh of the car list."""

from __future__ import annotations

import asyncio

import pytest

from dealer_mcp.constants import CARS
from dealer_mcp.controllers.car_list import CarListController
from dealer_mcp.controllers.debounce import Debouncer, RequestTracker
from dealer_mcp.data.seed import seed_demo_data
from dealer_mcp.data.store import InMemoryRecordStore
from dealer_mcp.errors import RecordStoreError


class RecordingStore(InMemoryRecordStore):
    """Seeded store that records every car filter it is asked for.

    Queries whose filter mentions ``hold_on`` wait for ``gate`` before answering.
    """

    def __init__(self, hold_on: str | None = None) -> None:
        super().__init__()
        seed_demo_data(self)
        self.hold_on = hold_on
        self.gate = asyncio.Event()
        self.filters: list[str | None] = []

    async def query(self, collection, **options):
        if collection == CARS:
            self.filters.append(options.get("filter"))
            if self.hold_on and self.hold_on in (options.get("filter") or ""):
                await self.gate.wait()
        return await super().query(collection, **options)


class BrokenStore(InMemoryRecordStore):
    async def query(self, collection, **options):
        raise RecordStoreError("Something went wrong.", code="HTTP_ERROR", status=500)


class ExplodingStore(InMemoryRecordStore):
    async def query(self, collection, **options):
        raise RuntimeError("connection pool exhausted")


def _ids(controller: CarListController) -> set[str]:
    return {car["id"] for car in controller.cars}


# ── Primitives ─────────────────────────────────────────────────


class TestDebouncer:
    async def test_burst_collapses_to_one_call(self):
        calls = []
        debouncer = Debouncer(0.02, lambda: calls.append(1))
        for _ in range(3):
            debouncer.trigger()
        assert debouncer.pending
        await asyncio.sleep(0.08)
        assert calls == [1]
        assert not debouncer.pending

    async def test_flush_and_cancel(self):
        calls = []
        debouncer = Debouncer(10, lambda: calls.append(1))
        assert debouncer.flush() is False
        debouncer.trigger()
        assert debouncer.flush() is True
        debouncer.trigger()
        debouncer.cancel()
        assert calls == [1]

    def test_negative_delay(self):
        with pytest.raises(ValueError):
            Debouncer(-1, lambda: None)


class TestRequestTracker:
    def test_new_token_cancels_previous(self):
        tracker = RequestTracker()
        first = tracker.issue()
        second = tracker.issue()
        assert first.cancelled
        assert not tracker.is_current(first)
        assert tracker.is_current(second)

    def test_invalidate(self):
        tracker = RequestTracker()
        token = tracker.issue()
        tracker.invalidate()
        assert token.cancelled
        assert tracker.current is None


# ── Controller ─────────────────────────────────────────────────


class TestCarListController:
    async def test_start_loads_everything(self):
        store = RecordingStore()
        async with CarListController(store, realtime=False) as controller:
            assert len(controller.cars) == 10
            assert controller.cars[0]["id"] == "car-ertiga-2020"
            assert controller.loading is False
            assert controller.error is None

    async def test_typing_burst_issues_one_query(self):
        store = RecordingStore()
        controller = CarListController(store, debounce_seconds=0.03, realtime=False)
        for text in ("a", "av", "ava"):
            controller.set_search(text)
        await controller.wait_idle()
        assert store.filters == ['model.name ~ "ava"']
        assert _ids(controller) == {"car-avanza-2019", "car-avanza-2022"}
        await controller.close()

    async def test_stale_response_is_discarded(self):
        store = RecordingStore(hold_on="brio")
        controller = CarListController(store, debounce_seconds=0.01, realtime=False)
        controller.set_search("brio")
        await asyncio.sleep(0.05)
        assert controller.loading

        controller.set_search("civic")
        await controller.wait_idle()
        store.gate.set()
        await asyncio.sleep(0.01)
        assert _ids(controller) == {"car-civic-2018"}
        assert controller.last_query.filter == 'model.name ~ "civic"'
        await controller.close()

    async def test_filters_merge(self):
        store = RecordingStore()
        controller = CarListController(store, debounce_seconds=0, realtime=False)
        controller.set_filters(brand="honda-id")
        controller.set_filters(transmission="Manual")
        await controller.wait_idle()
        assert _ids(controller) == {"car-brio-2017"}
        assert controller.filters.brand == "honda-id"
        await controller.close()

    async def test_reset_clears_state(self):
        store = RecordingStore()
        controller = CarListController(store, debounce_seconds=0, realtime=False)
        controller.set_search("civic")
        controller.set_filters({"soldStatus": "sold"})
        await controller.wait_idle()
        assert controller.cars == []
        controller.reset()
        await controller.wait_idle()
        assert len(controller.cars) == 10
        await controller.close()

    async def test_query_error_sets_message(self):
        controller = CarListController(BrokenStore(), realtime=False)
        await controller.refresh()
        assert controller.error == "Failed to load cars. Something went wrong."
        assert controller.loading is False
        await controller.close()

    async def test_unexpected_error_clears_loading(self):
        controller = CarListController(ExplodingStore(), realtime=False)
        await controller.refresh()
        assert controller.loading is False
        assert controller.error == "Failed to load cars."
        assert controller._inflight.exception() is None
        await controller.close()

    async def test_invalid_filter_sets_message_without_query(self):
        store = RecordingStore()
        controller = CarListController(store, debounce_seconds=0, realtime=False)
        controller.set_filters(sold_status="reserved")
        await controller.wait_idle()
        assert "sold_status" in controller.error
        assert store.filters == []
        await controller.close()

    async def test_on_change_callback(self):
        seen = []
        controller = CarListController(
            RecordingStore(), realtime=False, on_change=lambda c: seen.append(len(c.cars))
        )
        await controller.refresh()
        assert seen == [10]
        await controller.close()

    async def test_debounce_defaults_to_settings(self):
        controller = CarListController(RecordingStore(), realtime=False)
        assert controller._debouncer.delay == 0.3
        await controller.close()


class TestRealtime:
    async def test_remote_change_requeries(self):
        store = RecordingStore()
        controller = CarListController(store, debounce_seconds=0)
        controller.set_filters(sold_status="available")
        await controller.start()
        assert len(controller.cars) == 8

        await store.update(CARS, "car-hrv-2021", {"is_sold": True})
        await controller.wait_idle()
        assert len(controller.cars) == 7
        assert "car-hrv-2021" not in _ids(controller)
        await controller.close()

    async def test_close_unsubscribes_and_rejects_input(self):
        store = RecordingStore()
        controller = CarListController(store)
        await controller.start()
        assert store.subscriber_count(CARS) == 1

        await controller.close()
        await controller.close()
        assert controller.closed
        assert store.subscriber_count(CARS) == 0
        with pytest.raises(RuntimeError):
            controller.set_search("avanza")

    async def test_close_cancels_inflight_request(self):
        store = RecordingStore(hold_on="brio")
        controller = CarListController(store, debounce_seconds=0, realtime=False)
        controller.set_search("brio")
        await asyncio.sleep(0.02)
        await controller.close()
        store.gate.set()
        await asyncio.sleep(0.01)
        assert controller.cars == []
        assert controller.loading is False
