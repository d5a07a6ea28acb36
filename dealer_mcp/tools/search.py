"""Storefront tools: car search, details and the available-for-sale list."""

from __future__ import annotations

from typing import Any

from dealer_mcp.constants import PRICE_PRESETS
from dealer_mcp.data.inventory import describe_car, get_available_cars, get_car, get_cars
from dealer_mcp.data.query import BRAND_SEARCH_FIELDS, DEFAULT_SEARCH_FIELDS, CarFilters
from dealer_mcp.formatting import format_idr
from dealer_mcp.tools.responses import build_response

MAX_LIMIT = 50


async def search_cars_impl(
    *,
    search: str | None = None,
    brand: str | None = None,
    body_type: str | None = None,
    transmission: str | None = None,
    min_price: float | None = None,
    max_price: float | None = None,
    sold_status: str | None = None,
    sort: str | None = None,
    match_brand_name: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> str:
    """Search cars by model name (optionally brand name) and structured filters."""
    if limit <= 0:
        return "Please provide a positive limit."
    if limit > MAX_LIMIT:
        return f"Please use a limit of {MAX_LIMIT} or fewer results per request."
    if offset < 0:
        return "Please provide an offset greater than or equal to 0."

    filters = CarFilters(
        brand=brand,
        body_type=body_type,
        transmission=transmission,
        min_price=min_price,
        max_price=max_price,
        sold_status=sold_status,
    )
    cars = await get_cars(
        search,
        filters,
        sort=sort,
        search_fields=BRAND_SEARCH_FIELDS if match_brand_name else DEFAULT_SEARCH_FIELDS,
    )
    window = cars[offset:offset + limit]
    data: dict[str, Any] = {
        "total_matches": len(cars),
        "showing": len(window),
        "offset": offset,
        "limit": limit,
        "search": search or "",
        "filters": {k: v for k, v in filters.to_dict().items() if v not in (None, "")},
        "cars": [describe_car(car) for car in window],
    }
    return build_response("search_cars", data)


async def get_car_details_impl(car_id: str) -> str:
    if not car_id.strip():
        return "Error: car_id is required."
    car = await get_car(car_id.strip())
    return build_response("get_car_details", {"car": describe_car(car)})


async def list_available_cars_impl() -> str:
    """Unsold cars, as offered by the new-sale form."""
    cars = await get_available_cars()
    return build_response(
        "list_available_cars",
        {"count": len(cars), "cars": [describe_car(car) for car in cars]},
    )


def list_price_presets_impl() -> str:
    """Upper-bound price choices for the storefront filter, ready to pass as ``max_price``."""
    presets = [
        {"label": label, "max_price": bound, "price_label": format_idr(bound)}
        for label, bound in PRICE_PRESETS
    ]
    return build_response("list_price_presets", {"presets": presets})
