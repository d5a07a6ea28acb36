"""Dashboard car tools: reference catalogs and create/update/delete through the car form."""

from __future__ import annotations

import base64
import binascii
from typing import Any

from dealer_mcp.controllers.car_form import CarFormController
from dealer_mcp.data.inventory import delete_car, describe_car, get_car, get_store
from dealer_mcp.data.references import list_body_types, list_brands, list_models, make_reference
from dealer_mcp.errors import ValidationError
from dealer_mcp.tools.responses import build_response


def _decode_images(images: list[dict[str, Any]] | None) -> list[tuple[str, bytes, str | None]]:
    decoded: list[tuple[str, bytes, str | None]] = []
    for index, item in enumerate(images or []):
        filename = str(item.get("filename") or "").strip()
        if not filename:
            raise ValidationError("images", f"Image #{index + 1} needs a filename")
        try:
            content = base64.b64decode(str(item.get("content_base64") or ""), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError(
                "images", f"Image {filename!r} is not valid base64"
            ) from exc
        decoded.append((filename, content, item.get("content_type")))
    return decoded


def _model_attributes(seats: Any, cc: Any, bags: Any) -> dict[str, Any]:
    return {k: v for k, v in (("seats", seats), ("cc", cc), ("bags", bags)) if v is not None}


async def _saved_response(tool_name: str, result: Any) -> str:
    car = await get_car(result.record["id"])
    return build_response(
        tool_name,
        {
            "car": describe_car(car),
            "references": result.references.to_dict(),
        },
    )


# ── Catalog ─────────────────────────────────────────────────────────


async def list_brands_impl() -> str:
    brands = await list_brands(get_store())
    return build_response(
        "list_brands", {"brands": [{"id": b["id"], "name": b.get("name")} for b in brands]}
    )


async def list_body_types_impl() -> str:
    body_types = await list_body_types(get_store())
    return build_response(
        "list_body_types",
        {"body_types": [{"id": b["id"], "name": b.get("name")} for b in body_types]},
    )


async def list_models_impl(brand_id: str | None = None) -> str:
    models = await list_models(get_store(), brand_id or None)
    return build_response(
        "list_models",
        {
            "brand_id": brand_id or None,
            "models": [
                {
                    "id": m["id"],
                    "name": m.get("name"),
                    "brand": ((m.get("expand") or {}).get("brand") or {}).get("name"),
                    "body_type": ((m.get("expand") or {}).get("body_type") or {}).get("name"),
                    "seats": m.get("seats"),
                    "cc": m.get("cc"),
                    "bags": m.get("bags"),
                }
                for m in models
            ],
        },
    )


# ── Mutations ───────────────────────────────────────────────────────


async def create_car_impl(
    *,
    brand_id: str | None = None,
    brand_name: str | None = None,
    body_type_id: str | None = None,
    body_type_name: str | None = None,
    model_id: str | None = None,
    model_name: str | None = None,
    seats: int | None = None,
    cc: int | None = None,
    bags: int | None = None,
    year: int | None = None,
    condition: float | None = None,
    transmission: str | None = None,
    mileage: float | None = None,
    buy_price: float | None = None,
    sell_price: float | None = None,
    description: str = "",
    images: list[dict[str, Any]] | None = None,
) -> str:
    """Create a car, creating its brand/body type/model by name when needed."""
    uploads = _decode_images(images)
    form = CarFormController(get_store())
    try:
        form.open_create()

        brand = make_reference(id=brand_id, name=brand_name)
        await form.select_brand(brand)
        form.select_body_type(make_reference(id=body_type_id, name=body_type_name))
        form.select_model(
            make_reference(
                id=model_id, name=model_name, attributes=_model_attributes(seats, cc, bags)
            )
        )
        for name, value in (
            ("year", year),
            ("condition", condition),
            ("transmission", transmission),
            ("mileage", mileage),
            ("buy_price", buy_price),
            ("sell_price", sell_price),
            ("description", description),
        ):
            if value is not None:
                form.set_field(name, value)
        for filename, content, content_type in uploads:
            form.attach_image(filename, content, content_type)

        result = await form.submit()
        return await _saved_response("create_car", result)
    finally:
        form.close()


async def update_car_impl(
    car_id: str,
    *,
    brand_id: str | None = None,
    brand_name: str | None = None,
    body_type_id: str | None = None,
    body_type_name: str | None = None,
    model_id: str | None = None,
    model_name: str | None = None,
    seats: int | None = None,
    cc: int | None = None,
    bags: int | None = None,
    year: int | None = None,
    condition: float | None = None,
    transmission: str | None = None,
    mileage: float | None = None,
    buy_price: float | None = None,
    sell_price: float | None = None,
    description: str | None = None,
    add_images: list[dict[str, Any]] | None = None,
    remove_images: list[str] | None = None,
) -> str:
    """Patch a car.  Only the arguments provided are changed."""
    if not car_id.strip():
        return "Error: car_id is required."
    uploads = _decode_images(add_images)
    form = CarFormController(get_store())
    try:
        await form.open_edit(car_id.strip())

        brand = make_reference(id=brand_id, name=brand_name)
        if brand is not None and brand != form.brand:
            await form.select_brand(brand)
        body_type = make_reference(id=body_type_id, name=body_type_name)
        if body_type is not None:
            form.select_body_type(body_type)
        model = make_reference(
            id=model_id, name=model_name, attributes=_model_attributes(seats, cc, bags)
        )
        if model is not None:
            form.select_model(model)
        elif brand is not None and form.model is None:
            return "Error: choose a model for the new brand (model_id or model_name)."

        for name, value in (
            ("year", year),
            ("condition", condition),
            ("transmission", transmission),
            ("mileage", mileage),
            ("buy_price", buy_price),
            ("sell_price", sell_price),
            ("description", description),
        ):
            if value is not None:
                form.set_field(name, value)
        for filename in remove_images or []:
            form.remove_existing_image(filename)
        for filename, content, content_type in uploads:
            form.attach_image(filename, content, content_type)

        if not form.can_submit:
            return "No changes to save."
        result = await form.submit()
        return await _saved_response("update_car", result)
    finally:
        form.close()


async def delete_car_impl(car_id: str) -> str:
    if not car_id.strip():
        return "Error: car_id is required."
    await delete_car(car_id.strip())
    return f"Car {car_id.strip()} deleted."

