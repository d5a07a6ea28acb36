"""Tests for the car create/edit form: dirty check, images, validation and submit."""

from __future__ import annotations

from datetime import date

import pytest

from dealer_mcp.constants import BRANDS, CARS, MODELS
from dealer_mcp.controllers.car_form import CarFormController
from dealer_mcp.data.references import ById, ByName
from dealer_mcp.data.store import InMemoryRecordStore
from dealer_mcp.errors import ValidationError


def _today() -> date:
    return date(2025, 6, 1)


def _fill(form: CarFormController, **overrides) -> None:
    values = {
        "year": 2021,
        "condition": 90,
        "transmission": "Automatic",
        "mileage": 15000,
        "buy_price": 200_000_000,
        "sell_price": 230_000_000,
        "description": "Mulus",
    }
    values.update(overrides)
    for name, value in values.items():
        form.set_field(name, value)


@pytest.fixture()
def form(store: InMemoryRecordStore) -> CarFormController:
    return CarFormController(store, today=_today)


class TestOpen:
    def test_create_defaults(self, form: CarFormController):
        form.open_create()
        assert form.mode == "create"
        assert form.values["year"] == 2025
        assert form.values["transmission"] == "Automatic"
        assert form.can_submit

    async def test_edit_populates_fields(self, form: CarFormController):
        await form.open_edit("car-civic-2018")
        assert form.mode == "edit"
        assert form.values["mileage"] == 72000
        assert form.brand == ById("honda-id")
        assert form.body_type == ById("sedan-id")
        assert form.model == ById("civic-id")
        assert [m["name"] for m in form.models] == ["Brio", "Civic", "HR-V"]
        assert not form.is_dirty
        assert not form.can_submit


class TestDirtyCheck:
    async def test_changing_mileage_enables_submit(self, form: CarFormController):
        await form.open_edit("car-civic-2018")
        form.set_field("mileage", 73000)
        assert form.is_dirty
        assert form.can_submit

    async def test_reverting_clears_dirty(self, form: CarFormController):
        await form.open_edit("car-civic-2018")
        form.set_field("mileage", 73000)
        form.set_field("mileage", "72000")
        assert not form.is_dirty

    async def test_unchanged_edit_cannot_submit(self, form: CarFormController):
        await form.open_edit("car-civic-2018")
        with pytest.raises(ValidationError, match="No changes to save"):
            await form.submit()

    async def test_unknown_field(self, form: CarFormController):
        form.open_create()
        with pytest.raises(ValidationError):
            form.set_field("color", "red")


class TestBrandSelection:
    async def test_brand_change_clears_model_and_loads_models(self, form: CarFormController):
        await form.open_edit("car-civic-2018")
        await form.select_brand(ById("mitsubishi-id"))
        assert form.model is None
        assert [m["name"] for m in form.models] == ["Pajero Sport", "Xpander"]

    async def test_new_brand_has_no_models(self, form: CarFormController):
        form.open_create()
        await form.select_brand(ByName("Wuling"))
        assert form.models == []
        assert form.models_loading is False


class TestImages:
    async def _with_images(self, store: InMemoryRecordStore, form: CarFormController):
        form.open_create()
        await form.select_brand(ById("honda-id"))
        form.select_model(ById("brio-id"))
        _fill(form)
        form.attach_image("a.jpg", b"a")
        form.attach_image("b.jpg", b"b")
        result = await form.submit()
        return result.record

    async def test_create_uploads_in_order(self, store, form: CarFormController):
        record = await self._with_images(store, form)
        assert len(record["images"]) == 2
        assert record["images"][0].startswith("a_")
        assert record["images"][1].startswith("b_")

    async def test_attachment_preview_revoked_on_remove(self, form: CarFormController):
        form.open_create()
        attachment = form.attach_image("front.png", b"x")
        assert attachment.content_type == "image/png"
        assert attachment.preview_url.startswith("blob:")
        form.remove_attachment(0)
        assert attachment.revoked
        assert form.attachments == []

    async def test_edit_removes_and_adds(self, store, form: CarFormController):
        record = await self._with_images(store, form)
        first, second = record["images"]

        edit = CarFormController(store, today=_today)
        await edit.open_edit(record["id"])
        edit.remove_existing_image(first)
        edit.attach_image("c.jpg", b"c")
        assert edit.kept_images() == [second]
        payload = edit.build_payload(edit.validate(), "brio-id")
        assert payload["images-"] == [first]
        assert [u.filename for u in payload["images+"]] == ["c.jpg"]

        result = await edit.submit()
        assert result.record["images"][0] == second
        assert result.record["images"][1].startswith("c_")
        assert store.read_file(CARS, record["id"], first) is None

    async def test_remove_then_restore_is_clean(self, store, form: CarFormController):
        record = await self._with_images(store, form)
        edit = CarFormController(store, today=_today)
        await edit.open_edit(record["id"])
        edit.remove_existing_image(record["images"][0])
        assert edit.is_dirty
        edit.restore_existing_image(record["images"][0])
        assert not edit.is_dirty

    async def test_close_revokes_previews(self, form: CarFormController):
        form.open_create()
        attachment = form.attach_image("a.jpg", b"a")
        form.close()
        assert attachment.revoked


class TestValidation:
    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"year": 1899}, "year"),
            ({"year": 2026}, "year"),
            ({"year": None}, "year"),
            ({"condition": 101}, "condition"),
            ({"transmission": "CVT"}, "transmission"),
            ({"mileage": -1}, "mileage"),
            ({"sell_price": ""}, "sell_price"),
        ],
    )
    async def test_field_rules(self, form: CarFormController, overrides, field):
        form.open_create()
        await form.select_brand(ById("honda-id"))
        form.select_model(ById("brio-id"))
        _fill(form, **overrides)
        with pytest.raises(ValidationError) as info:
            await form.submit()
        assert info.value.field == field
        assert form.error

    async def test_legacy_transmission_normalized(self, form: CarFormController):
        form.open_create()
        await form.select_brand(ById("honda-id"))
        form.select_model(ById("brio-id"))
        _fill(form, transmission="MT")
        assert form.validate()["transmission"] == "Manual"

    async def test_missing_model(self, form: CarFormController):
        form.open_create()
        await form.select_brand(ById("honda-id"))
        _fill(form)
        with pytest.raises(ValidationError, match="Model is required"):
            await form.submit()


class TestSubmit:
    async def test_create_with_new_references(self, store, form: CarFormController):
        form.open_create()
        await form.select_brand(ByName("Wuling"))
        form.select_body_type(ByName("Crossover"))
        form.select_model(ByName("Alvez", {"seats": 5, "cc": 1485, "bags": 2}))
        _fill(form)
        result = await form.submit()

        assert result.created
        assert result.references.created == ("brand", "body_type", "model")
        car = await store.get_one(CARS, result.record["id"])
        assert car["is_sold"] is False
        assert car["model"] == result.references.model_id
        assert store.record_count(BRANDS) == 5
        # The form now edits what was saved.
        assert form.mode == "edit"
        assert form.model == ById(result.references.model_id)
        assert not form.is_dirty

    async def test_update(self, store, form: CarFormController):
        await form.open_edit("car-civic-2018")
        form.set_field("mileage", 73000)
        result = await form.submit()
        assert not result.created
        assert (await store.get_one(CARS, "car-civic-2018"))["mileage"] == 73000
        assert store.record_count(MODELS) == 9
