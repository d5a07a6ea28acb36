"""Find-or-create resolution of the Brand, BodyType and Model a Car refers to.

A reference is either an id picked from a dropdown (trusted as-is) or a free
text name that is looked up by exact, case-sensitive match and created when
absent.  The three steps run brand -> body type -> model without a
transaction: if a later step fails the earlier records stay, and the raised
:class:`ReferenceCreationError` says which ids were already resolved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from dealer_mcp.constants import BODY_TYPES, BRANDS, MODEL_EXPAND, MODELS
from dealer_mcp.data.store import RecordStore
from dealer_mcp.errors import DealerError, ReferenceCreationError, ValidationError
from dealer_mcp.normalization import escape_filter_value, normalize_name, parse_int

logger = logging.getLogger(__name__)

MODEL_ATTRIBUTES = ("seats", "cc", "bags")


@dataclass(frozen=True)
class ById:
    id: str


@dataclass(frozen=True)
class ByName:
    name: str
    attributes: Mapping[str, Any] = field(default_factory=dict)


Reference = Union[ById, ByName]


@dataclass(frozen=True)
class ResolvedReferences:
    brand_id: str
    body_type_id: str | None
    model_id: str
    created_model: dict[str, Any] | None = None
    created: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "brand_id": self.brand_id,
            "body_type_id": self.body_type_id,
            "model_id": self.model_id,
            "created_model": self.created_model,
            "created": list(self.created),
        }


def make_reference(
    *,
    id: str | None = None,
    name: str | None = None,
    attributes: Mapping[str, Any] | None = None,
) -> Reference | None:
    """Build a reference from loose tool/form input.  An id wins over a name."""
    ref_id = normalize_name(id)
    if ref_id:
        return ById(ref_id)
    ref_name = normalize_name(name)
    if ref_name:
        return ByName(ref_name, dict(attributes or {}))
    return None


def _is_missing(ref: Reference | None) -> bool:
    if ref is None:
        return True
    if isinstance(ref, ById):
        return not ref.id.strip()
    return not normalize_name(ref.name)


def _model_attributes(ref: ByName) -> dict[str, int]:
    attrs: dict[str, int] = {}
    for key in MODEL_ATTRIBUTES:
        raw = ref.attributes.get(key)
        if raw is None or raw == "":
            continue
        value = parse_int(raw)
        if value is None or value < 0:
            raise ValidationError(key, f"Model {key} must be a non-negative number")
        attrs[key] = value
    return attrs


def validate_references(
    brand: Reference | None,
    body_type: Reference | None,
    model: Reference | None,
) -> None:
    """Reject missing references before any store call."""
    if _is_missing(brand):
        raise ValidationError("brand", "Brand is required")
    if _is_missing(model):
        raise ValidationError("model", "Model is required")
    if isinstance(model, ByName) and _is_missing(body_type):
        raise ValidationError("body_type", "Body type is required to create a new model")
    if isinstance(model, ByName):
        _model_attributes(model)


async def find_or_create(
    store: RecordStore,
    collection: str,
    name: str,
    extra: Mapping[str, Any] | None = None,
) -> tuple[str, dict[str, Any] | None]:
    """Return ``(id, created_record)``; ``created_record`` is ``None`` when reused."""
    existing = await store.find_first(collection, f'name = "{escape_filter_value(name)}"')
    if existing is not None:
        return existing["id"], None
    record = await store.create(collection, {"name": name, **dict(extra or {})})
    logger.info("Created %s %r (%s)", collection, name, record["id"])
    return record["id"], record


async def resolve_references(
    store: RecordStore,
    *,
    brand: Reference | None,
    body_type: Reference | None,
    model: Reference | None,
) -> ResolvedReferences:
    """Ensure brand, body type and model exist and return their ids."""
    validate_references(brand, body_type, model)

    completed: dict[str, str] = {}
    created: list[str] = []

    def _failed(entity: str, exc: DealerError) -> ReferenceCreationError:
        logger.error(
            "Reference resolution failed at %s after %s: %s", entity, completed or "nothing", exc
        )
        return ReferenceCreationError(
            entity, exc, completed=completed, created=tuple(created)
        )

    if isinstance(brand, ById):
        brand_id = brand.id.strip()
    else:
        try:
            brand_id, new_brand = await find_or_create(store, BRANDS, normalize_name(brand.name))
        except ValidationError:
            raise
        except DealerError as exc:
            raise _failed("brand", exc) from exc
        if new_brand is not None:
            created.append("brand")
    completed["brand"] = brand_id

    body_type_id: str | None = None
    if isinstance(body_type, ById) and body_type.id.strip():
        body_type_id = body_type.id.strip()
    elif isinstance(body_type, ByName) and normalize_name(body_type.name):
        try:
            body_type_id, new_body = await find_or_create(
                store, BODY_TYPES, normalize_name(body_type.name)
            )
        except ValidationError:
            raise
        except DealerError as exc:
            raise _failed("body_type", exc) from exc
        if new_body is not None:
            created.append("body_type")
    if body_type_id is not None:
        completed["body_type"] = body_type_id

    created_model: dict[str, Any] | None = None
    if isinstance(model, ById):
        model_id = model.id.strip()
    else:
        extra = {"brand": brand_id, "body_type": body_type_id, **_model_attributes(model)}
        try:
            model_id, created_model = await find_or_create(
                store, MODELS, normalize_name(model.name), extra
            )
        except ValidationError:
            raise
        except DealerError as exc:
            raise _failed("model", exc) from exc
        if created_model is not None:
            created.append("model")

    return ResolvedReferences(
        brand_id=brand_id,
        body_type_id=body_type_id,
        model_id=model_id,
        created_model=created_model,
        created=tuple(created),
    )


# ── Catalog ─────────────────────────────────────────────────────────


async def list_brands(store: RecordStore) -> list[dict[str, Any]]:
    return await store.query(BRANDS, sort="name")


async def list_body_types(store: RecordStore) -> list[dict[str, Any]]:
    return await store.query(BODY_TYPES, sort="name")


async def list_models(store: RecordStore, brand_id: str | None = None) -> list[dict[str, Any]]:
    """Models sorted by name, optionally scoped to one brand."""
    flt = f'brand = "{escape_filter_value(brand_id)}"' if brand_id else None
    return await store.query(MODELS, filter=flt, sort="name", expand=MODEL_EXPAND)
