"""Unit tests for the RecordStore protocol and InMemoryRecordStore."""

from __future__ import annotations

import pytest

from dealer_mcp.auth.tokens import decode_claims
from dealer_mcp.constants import BRANDS, CAR_EXPAND, CARS, MODELS, SALES, USERS
from dealer_mcp.data.seed import DEMO_ADMIN_EMAIL, DEMO_ADMIN_PASSWORD
from dealer_mcp.data.store import (
    AuthBackend,
    FileUpload,
    InMemoryRecordStore,
    RecordStore,
    parse_expand,
    parse_sort,
    unique_filename,
)
from dealer_mcp.errors import NotFoundError, RecordStoreError

# ── Protocol compliance ────────────────────────────────────────


class TestProtocolCompliance:
    def test_memory_store_satisfies_protocols(self, store: InMemoryRecordStore):
        assert isinstance(store, RecordStore)
        assert isinstance(store, AuthBackend)


# ── Helpers ────────────────────────────────────────────────────


class TestHelpers:
    def test_parse_expand(self):
        assert parse_expand("model.brand,model.body_type, created_by") == {
            "model": {"brand": {}, "body_type": {}},
            "created_by": {},
        }

    def test_parse_sort(self):
        assert parse_sort("-created, name,+year") == [
            ("created", True),
            ("name", False),
            ("year", False),
        ]

    def test_unique_filename(self):
        name = unique_filename("Front View.JPG")
        assert name.startswith("front_view_")
        assert name.endswith(".jpg")
        assert len(name) == len("front_view_") + 10 + len(".jpg")


# ── Reads ──────────────────────────────────────────────────────


class TestReads:
    async def test_seeded_counts(self, store: InMemoryRecordStore):
        assert store.record_count(CARS) == 10
        assert await store.count(SALES) == 3

    async def test_default_order_newest_first(self, store: InMemoryRecordStore):
        cars = await store.query(CARS, sort="-created")
        assert cars[0]["id"] == "car-ertiga-2020"
        assert cars[-1]["id"] == "car-avanza-2019"

    async def test_filter_through_relation(self, store: InMemoryRecordStore):
        cars = await store.query(CARS, filter='model.brand = "honda-id"')
        assert {c["id"] for c in cars} == {"car-civic-2018", "car-hrv-2021", "car-brio-2017"}

    async def test_sort_by_related_field(self, store: InMemoryRecordStore):
        models = await store.query(MODELS, sort="name")
        assert [m["name"] for m in models][:2] == ["Avanza", "Brio"]

    async def test_paging(self, store: InMemoryRecordStore):
        page = await store.query(CARS, sort="sell_price", page=2, per_page=3)
        assert [c["id"] for c in page] == ["car-avanza-2022", "car-xpander-2022", "car-hrv-2021"]

    async def test_expand(self, store: InMemoryRecordStore):
        car = await store.get_one(CARS, "car-avanza-2019", expand=CAR_EXPAND)
        model = car["expand"]["model"]
        assert model["name"] == "Avanza"
        assert model["expand"]["brand"]["name"] == "Toyota"
        assert model["expand"]["body_type"]["name"] == "MPV"

    async def test_get_one_missing(self, store: InMemoryRecordStore):
        with pytest.raises(NotFoundError, match="Car with ID nope not found"):
            await store.get_one(CARS, "nope")

    async def test_find_first(self, store: InMemoryRecordStore):
        brand = await store.find_first(BRANDS, 'name = "Honda"')
        assert brand is not None and brand["id"] == "honda-id"
        assert await store.find_first(BRANDS, 'name = "honda"') is None

    async def test_password_hash_never_returned(self, store: InMemoryRecordStore):
        user = await store.get_one(USERS, "admin-user-id")
        assert "password_hash" not in user
        assert user["collectionName"] == USERS


# ── Writes ─────────────────────────────────────────────────────


class TestWrites:
    async def test_create_sets_system_fields(self, store: InMemoryRecordStore):
        record = await store.create(BRANDS, {"name": "Daihatsu", "created": "ignored"})
        assert len(record["id"]) == 15
        assert record["created"] != "ignored"
        assert record["created"] == record["updated"]

    async def test_create_rejects_missing_relation(self, store: InMemoryRecordStore):
        with pytest.raises(RecordStoreError) as info:
            await store.create(CARS, {"model": "ghost-model"})
        assert info.value.status == 400
        assert "model" in info.value.details["data"]

    async def test_update_is_partial(self, store: InMemoryRecordStore):
        updated = await store.update(CARS, "car-brio-2017", {"mileage": 92000})
        assert updated["mileage"] == 92000
        assert updated["year"] == 2017

    async def test_failed_update_leaves_record(self, store: InMemoryRecordStore):
        with pytest.raises(RecordStoreError):
            await store.update(CARS, "car-brio-2017", {"model": "ghost-model"})
        car = await store.get_one(CARS, "car-brio-2017")
        assert car["model"] == "brio-id"

    async def test_failed_update_keeps_image_bytes(self, store: InMemoryRecordStore):
        car = await store.update(CARS, "car-hrv-2021", {"images": [FileUpload("a.jpg", b"a")]})
        name = car["images"][0]
        with pytest.raises(RecordStoreError):
            await store.update(CARS, "car-hrv-2021", {"images-": [name], "model": "ghost-model"})
        car = await store.get_one(CARS, "car-hrv-2021")
        assert car["images"] == [name]
        assert store.read_file(CARS, "car-hrv-2021", name) == b"a"

    async def test_rejected_create_stores_no_files(self, store: InMemoryRecordStore):
        before = len(store._files)
        with pytest.raises(RecordStoreError):
            await store.create(
                CARS, {"model": "ghost-model", "images": [FileUpload("a.jpg", b"a")]}
            )
        assert len(store._files) == before

    async def test_delete(self, store: InMemoryRecordStore):
        await store.delete(CARS, "car-brio-2017")
        with pytest.raises(NotFoundError):
            await store.delete(CARS, "car-brio-2017")


class TestFiles:
    async def test_upload_add_and_remove(self, store: InMemoryRecordStore):
        car = await store.update(
            CARS, "car-hrv-2021", {"images": [FileUpload("front.jpg", b"1", "image/jpeg")]}
        )
        first = car["images"][0]
        assert store.read_file(CARS, "car-hrv-2021", first) == b"1"

        car = await store.update(
            CARS,
            "car-hrv-2021",
            {"images-": [first], "images+": [FileUpload("back.png", b"2", "image/png")]},
        )
        assert first not in car["images"]
        assert len(car["images"]) == 1
        assert store.read_file(CARS, "car-hrv-2021", first) is None

    def test_file_url(self, store: InMemoryRecordStore):
        record = {"id": "abc", "collectionName": CARS}
        assert store.file_url(record, "x.jpg") == "http://memory.local/api/files/cars/abc/x.jpg"
        assert store.file_url(record, "") == ""


# ── Realtime ───────────────────────────────────────────────────


class TestRealtime:
    async def test_subscribers_receive_events(self, store: InMemoryRecordStore):
        events = []
        unsubscribe = await store.subscribe(CARS, events.append)
        await store.update(CARS, "car-brio-2017", {"mileage": 1})
        await store.delete(CARS, "car-brio-2017")
        assert [e["action"] for e in events] == ["update", "delete"]
        assert events[0]["record"]["id"] == "car-brio-2017"

        await unsubscribe()
        assert store.subscriber_count(CARS) == 0

    async def test_async_and_failing_handlers(self, store: InMemoryRecordStore):
        seen = []

        async def good(event):
            seen.append(event["action"])

        def bad(event):
            raise RuntimeError("boom")

        await store.subscribe(CARS, bad)
        await store.subscribe(CARS, good)
        await store.create(CARS, {"model": "civic-id", "year": 2020})
        assert seen == ["create"]

    async def test_other_collections_not_notified(self, store: InMemoryRecordStore):
        events = []
        await store.subscribe(SALES, events.append)
        await store.update(CARS, "car-brio-2017", {"mileage": 1})
        assert events == []


# ── Auth ───────────────────────────────────────────────────────


class TestAuth:
    async def test_password_login(self, store: InMemoryRecordStore):
        result = await store.auth_with_password(DEMO_ADMIN_EMAIL.upper(), DEMO_ADMIN_PASSWORD)
        assert result["record"]["id"] == "admin-user-id"
        assert decode_claims(result["token"])["id"] == "admin-user-id"

    async def test_wrong_password(self, store: InMemoryRecordStore):
        with pytest.raises(RecordStoreError, match="Failed to authenticate"):
            await store.auth_with_password(DEMO_ADMIN_EMAIL, "wrong")

    async def test_passwords_are_salted(self):
        store = InMemoryRecordStore()
        store.load_records(
            USERS,
            [
                {"id": "u1", "email": "a@b.c", "password": "secret"},
                {"id": "u2", "email": "d@e.f", "password": "secret"},
            ],
        )
        first = store._table(USERS)["u1"]["password_hash"]
        second = store._table(USERS)["u2"]["password_hash"]
        assert first != second
        assert "secret" not in first
        assert (await store.auth_with_password("d@e.f", "secret"))["record"]["id"] == "u2"

    async def test_refresh(self, store: InMemoryRecordStore):
        login = await store.auth_with_password(DEMO_ADMIN_EMAIL, DEMO_ADMIN_PASSWORD)
        refreshed = await store.auth_refresh(login["token"])
        assert refreshed["record"]["email"] == DEMO_ADMIN_EMAIL

    async def test_refresh_rejects_foreign_token(self, store: InMemoryRecordStore):
        other = InMemoryRecordStore()
        other.load_records(USERS, [{"id": "admin-user-id", "email": "a@b.c", "password": "pw"}])
        foreign = await other.auth_with_password("a@b.c", "pw")
        with pytest.raises(RecordStoreError) as info:
            await store.auth_refresh(foreign["token"])
        assert info.value.status == 401
