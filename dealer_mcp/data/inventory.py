"""Car inventory facade: delegates to the configured RecordStore backend.

Tools and controllers import ``get_store`` and the helpers below rather than
talking to a backend directly, so tests can swap in a seeded in-memory store
with :func:`set_store`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping

from dealer_mcp.clients.pocketbase import PocketBaseClient
from dealer_mcp.config import get_settings
from dealer_mcp.constants import CAR_EXPAND, CARS
from dealer_mcp.data.query import DEFAULT_SEARCH_FIELDS, CarFilters, build_car_query
from dealer_mcp.data.store import InMemoryRecordStore, RecordStore
from dealer_mcp.formatting import format_idr

if TYPE_CHECKING:
    from dealer_mcp.auth.session import SessionManager

logger = logging.getLogger(__name__)

_store: RecordStore | None = None
_session: SessionManager | None = None


def _current_token() -> str | None:
    return _session.token if _session is not None else None


def get_store() -> RecordStore:
    """Return the active RecordStore singleton, creating (and seeding) it if needed."""
    global _store  # noqa: PLW0603
    if _store is None:
        settings = get_settings()
        if settings.store_backend == "pocketbase":
            _store = PocketBaseClient(
                settings.pocketbase_url,
                token_provider=_current_token,
                timeout=settings.request_timeout_seconds,
            )
        else:
            from dealer_mcp.data.seed import seed_demo_data

            store = InMemoryRecordStore()
            seed_demo_data(store)
            _store = store
        logger.info("Using %s record store", settings.store_backend)
    return _store


def set_store(store: RecordStore | None) -> None:
    """Inject a store instance for testing.  Also drops the session bound to the old store."""
    global _store, _session  # noqa: PLW0603
    _store = store
    _session = None


def get_session_manager() -> SessionManager:
    """Return the process-wide session authority, restoring any persisted session."""
    global _session  # noqa: PLW0603
    if _session is None:
        from dealer_mcp.auth.session import SessionManager

        settings = get_settings()
        _session = SessionManager.from_settings(get_store(), settings)  # type: ignore[arg-type]
        _session.restore()
    return _session


def set_session_manager(session: SessionManager | None) -> None:
    global _session  # noqa: PLW0603
    _session = session


# ── Public helpers ─────────────────────────────────────────────────


async def get_cars(
    search: str | None = None,
    filters: CarFilters | Mapping[str, Any] | None = None,
    *,
    sort: str | None = None,
    search_fields: tuple[str, ...] = DEFAULT_SEARCH_FIELDS,
) -> list[dict[str, Any]]:
    """Cars matching the search text and filters, with model/brand/body type expanded."""
    query = build_car_query(search, filters, sort=sort, search_fields=search_fields)
    return await get_store().query(CARS, **query.as_options())


async def get_car(car_id: str) -> dict[str, Any]:
    """One car, expanded.  Raises ``NotFoundError`` when the id is unknown."""
    return await get_store().get_one(CARS, car_id, expand=CAR_EXPAND)


async def create_car(payload: dict[str, Any]) -> dict[str, Any]:
    return await get_store().create(CARS, payload)


async def update_car(car_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    return await get_store().update(CARS, car_id, payload)


async def delete_car(car_id: str) -> None:
    await get_store().delete(CARS, car_id)
    logger.info("Deleted car %s", car_id)


async def get_available_cars() -> list[dict[str, Any]]:
    """Unsold cars for the new-sale selector, newest first."""
    return await get_store().query(
        CARS, filter="is_sold = false", sort="-created", expand=CAR_EXPAND
    )


def get_image_urls(car: dict[str, Any]) -> list[str]:
    store = get_store()
    return [store.file_url(car, name) for name in car.get("images") or [] if name]


def describe_car(car: dict[str, Any]) -> dict[str, Any]:
    """Flatten a Car with its derived brand and body type (both reached through Model)."""
    model = (car.get("expand") or {}).get("model") or {}
    related = model.get("expand") or {}
    brand = related.get("brand") or {}
    body_type = related.get("body_type") or {}
    sell_price = car.get("sell_price")
    return {
        "id": car.get("id"),
        "brand": brand.get("name", ""),
        "brand_id": model.get("brand") or brand.get("id"),
        "model": model.get("name", ""),
        "model_id": car.get("model"),
        "body_type": body_type.get("name", ""),
        "body_type_id": model.get("body_type") or body_type.get("id"),
        "seats": model.get("seats"),
        "cc": model.get("cc"),
        "bags": model.get("bags"),
        "year": car.get("year"),
        "transmission": car.get("transmission"),
        "mileage": car.get("mileage"),
        "condition": car.get("condition"),
        "buy_price": car.get("buy_price"),
        "sell_price": sell_price,
        "price_label": format_idr(sell_price) if isinstance(sell_price, (int, float)) else "",
        "is_sold": bool(car.get("is_sold")),
        "description": car.get("description", ""),
        "images": get_image_urls(car),
        "created": car.get("created"),
        "updated": car.get("updated"),
    }
