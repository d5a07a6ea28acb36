"""Dealer Dashboard MCP server: FastMCP entry point for the storefront and dashboard tools."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from mcp.server.fastmcp import FastMCP

from dealer_mcp.clients.pocketbase import PocketBaseClient
from dealer_mcp.config import get_settings
from dealer_mcp.data.inventory import get_session_manager, get_store
from dealer_mcp.errors import DealerError
from dealer_mcp.tools.auth import ensure_logged_in, get_session_impl, login_impl, logout_impl
from dealer_mcp.tools.cars import (
    create_car_impl,
    delete_car_impl,
    list_body_types_impl,
    list_brands_impl,
    list_models_impl,
    update_car_impl,
)
from dealer_mcp.tools.responses import describe_error, log_and_return_tool_error
from dealer_mcp.tools.sales import (
    cancel_sale_impl,
    delete_sale_impl,
    get_sales_summary_impl,
    list_sales_impl,
    record_sale_impl,
)
from dealer_mcp.tools.search import (
    get_car_details_impl,
    list_available_cars_impl,
    list_price_presets_impl,
    search_cars_impl,
)

# Load .env from project root (no extra dependency)
_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
if _ENV_FILE.is_file():
    for line in _ENV_FILE.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            os.environ.setdefault(k.strip(), v.strip())

logger = logging.getLogger(__name__)


@asynccontextmanager
async def dealer_lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Revalidate the dashboard session periodically while the server runs."""
    session = get_session_manager()
    session.start_auto_refresh(get_settings().session_refresh_seconds)
    try:
        yield
    finally:
        await session.close()
        store = get_store()
        if isinstance(store, PocketBaseClient):
            await store.close()


mcp = FastMCP("Dealer Dashboard", lifespan=dealer_lifespan)

_RETRY_SUFFIX = "Please try again in a moment."


# ── Storefront ──────────────────────────────────────────────────────


@mcp.tool()
async def search_cars(
    search: str = "",
    brand: str = "",
    body_type: str = "",
    transmission: str = "",
    min_price: float | None = None,
    max_price: float | None = None,
    sold_status: str = "",
    sort: str = "",
    match_brand_name: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> str:
    """Search cars by model name and filters.

    brand/body_type take record ids; "all" or empty means no constraint.
    A single price bound is treated as an upper bound (sell_price <= bound);
    give both min_price and max_price for a closed range. list_price_presets
    gives the storefront's max_price choices.
    """
    try:
        return await search_cars_impl(
            search=search or None,
            brand=brand or None,
            body_type=body_type or None,
            transmission=transmission or None,
            min_price=min_price,
            max_price=max_price,
            sold_status=sold_status or None,
            sort=sort or None,
            match_brand_name=match_brand_name,
            limit=limit,
            offset=offset,
        )
    except DealerError as exc:
        return describe_error(tool_name="search_cars", exc=exc, default="Failed to load cars.")
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="search_cars",
            exc=exc,
            user_message=f"I am having trouble searching cars right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
async def get_car_details(car_id: str) -> str:
    """Full details for one car, including brand, model, body type and image URLs."""
    try:
        return await get_car_details_impl(car_id)
    except DealerError as exc:
        return describe_error(
            tool_name="get_car_details", exc=exc, default="Failed to load the car."
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="get_car_details",
            exc=exc,
            user_message=f"I am having trouble loading that car right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
async def list_brands() -> str:
    """All brands, sorted by name."""
    try:
        return await list_brands_impl()
    except DealerError as exc:
        return describe_error(tool_name="list_brands", exc=exc, default="Failed to load brands.")
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="list_brands",
            exc=exc,
            user_message=f"I am having trouble loading brands right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
async def list_body_types() -> str:
    """All body types, sorted by name."""
    try:
        return await list_body_types_impl()
    except DealerError as exc:
        return describe_error(
            tool_name="list_body_types", exc=exc, default="Failed to load body types."
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="list_body_types",
            exc=exc,
            user_message=f"I am having trouble loading body types right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
async def list_models(brand_id: str = "") -> str:
    """Models sorted by name, optionally only those of one brand."""
    try:
        return await list_models_impl(brand_id or None)
    except DealerError as exc:
        return describe_error(tool_name="list_models", exc=exc, default="Failed to load models.")
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="list_models",
            exc=exc,
            user_message=f"I am having trouble loading models right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
async def list_available_cars() -> str:
    """Unsold cars that can be picked for a new sale."""
    try:
        return await list_available_cars_impl()
    except DealerError as exc:
        return describe_error(
            tool_name="list_available_cars", exc=exc, default="Failed to load cars."
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="list_available_cars",
            exc=exc,
            user_message=f"I am having trouble loading available cars right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
def list_price_presets() -> str:
    """Price ceilings offered by the storefront filter; pass one as max_price to search_cars."""
    try:
        return list_price_presets_impl()
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="list_price_presets",
            exc=exc,
            user_message=f"I am having trouble loading price presets right now. {_RETRY_SUFFIX}",
        )


# ── Dashboard: cars ─────────────────────────────────────────────────


@mcp.tool()
async def create_car(
    year: int,
    condition: float,
    transmission: str,
    mileage: float,
    buy_price: float,
    sell_price: float,
    brand_id: str = "",
    brand_name: str = "",
    body_type_id: str = "",
    body_type_name: str = "",
    model_id: str = "",
    model_name: str = "",
    seats: int | None = None,
    cc: int | None = None,
    bags: int | None = None,
    description: str = "",
    images: list[dict[str, Any]] | None = None,
) -> str:
    """Add a car to inventory (login required).

    Give each of brand/body type/model either as an id or as a name; names that
    do not exist yet are created.  A new model needs a body type.  images is a
    list of {"filename", "content_base64", "content_type"} objects.
    """
    try:
        ensure_logged_in("add cars")
        return await create_car_impl(
            brand_id=brand_id or None,
            brand_name=brand_name or None,
            body_type_id=body_type_id or None,
            body_type_name=body_type_name or None,
            model_id=model_id or None,
            model_name=model_name or None,
            seats=seats,
            cc=cc,
            bags=bags,
            year=year,
            condition=condition,
            transmission=transmission,
            mileage=mileage,
            buy_price=buy_price,
            sell_price=sell_price,
            description=description,
            images=images,
        )
    except DealerError as exc:
        return describe_error(tool_name="create_car", exc=exc, default="Failed to save car.")
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="create_car",
            exc=exc,
            user_message=f"I am having trouble saving that car right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
async def update_car(
    car_id: str,
    brand_id: str = "",
    brand_name: str = "",
    body_type_id: str = "",
    body_type_name: str = "",
    model_id: str = "",
    model_name: str = "",
    seats: int | None = None,
    cc: int | None = None,
    bags: int | None = None,
    year: int | None = None,
    condition: float | None = None,
    transmission: str = "",
    mileage: float | None = None,
    buy_price: float | None = None,
    sell_price: float | None = None,
    description: str | None = None,
    add_images: list[dict[str, Any]] | None = None,
    remove_images: list[str] | None = None,
) -> str:
    """Edit a car (login required).  Only the fields given are changed.

    Changing the brand requires choosing a model as well.
    """
    try:
        ensure_logged_in("edit cars")
        return await update_car_impl(
            car_id,
            brand_id=brand_id or None,
            brand_name=brand_name or None,
            body_type_id=body_type_id or None,
            body_type_name=body_type_name or None,
            model_id=model_id or None,
            model_name=model_name or None,
            seats=seats,
            cc=cc,
            bags=bags,
            year=year,
            condition=condition,
            transmission=transmission or None,
            mileage=mileage,
            buy_price=buy_price,
            sell_price=sell_price,
            description=description,
            add_images=add_images,
            remove_images=remove_images,
        )
    except DealerError as exc:
        return describe_error(tool_name="update_car", exc=exc, default="Failed to save car.")
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="update_car",
            exc=exc,
            user_message=f"I am having trouble saving that car right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
async def delete_car(car_id: str) -> str:
    """Remove a car from inventory (login required)."""
    try:
        ensure_logged_in("delete cars")
        return await delete_car_impl(car_id)
    except DealerError as exc:
        return describe_error(tool_name="delete_car", exc=exc, default="Failed to delete car.")
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="delete_car",
            exc=exc,
            user_message=f"I am having trouble deleting that car right now. {_RETRY_SUFFIX}",
        )


# ── Dashboard: sales ────────────────────────────────────────────────


@mcp.tool()
async def list_sales(
    search: str = "",
    status: str = "",
    payment_method: str = "",
    date_from: str = "",
    date_to: str = "",
    sort_field: str = "",
    sort_direction: str = "desc",
) -> str:
    """Sales table (login required).  search matches customer name or sale id; newest first."""
    try:
        ensure_logged_in("view sales")
        return await list_sales_impl(
            search=search or None,
            status=status or None,
            payment_method=payment_method or None,
            date_from=date_from or None,
            date_to=date_to or None,
            sort_field=sort_field or None,
            sort_direction=sort_direction,
        )
    except DealerError as exc:
        return describe_error(tool_name="list_sales", exc=exc, default="Failed to load sales.")
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="list_sales",
            exc=exc,
            user_message=f"I am having trouble loading sales right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
async def record_sale(
    car_id: str,
    customer_name: str,
    price: float,
    payment_method: str,
    status: str = "completed",
    description: str = "",
) -> str:
    """Record a sale (login required).  The car is marked sold unless status is cancelled.

    payment_method: Cash, Credit, Transfer or Other.
    """
    try:
        user_id = ensure_logged_in("record sales")
        return await record_sale_impl(
            car_id=car_id,
            customer_name=customer_name,
            price=price,
            payment_method=payment_method,
            status=status,
            description=description,
            created_by=user_id,
        )
    except DealerError as exc:
        return describe_error(tool_name="record_sale", exc=exc, default="Failed to record sale.")
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="record_sale",
            exc=exc,
            user_message=f"I am having trouble recording that sale right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
async def cancel_sale(sale_id: str) -> str:
    """Cancel a sale and put its car back on sale (login required)."""
    try:
        ensure_logged_in("cancel sales")
        return await cancel_sale_impl(sale_id)
    except DealerError as exc:
        return describe_error(tool_name="cancel_sale", exc=exc, default="Failed to cancel sale.")
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="cancel_sale",
            exc=exc,
            user_message=f"I am having trouble cancelling that sale right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
async def delete_sale(sale_id: str) -> str:
    """Delete a sale record (login required).  The car's sold flag is left as is."""
    try:
        ensure_logged_in("delete sales")
        return await delete_sale_impl(sale_id)
    except DealerError as exc:
        return describe_error(tool_name="delete_sale", exc=exc, default="Failed to delete sale.")
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="delete_sale",
            exc=exc,
            user_message=f"I am having trouble deleting that sale right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
async def get_sales_summary(mode: str = "query") -> str:
    """Total, completed, pending and cancelled counts plus revenue from completed sales."""
    try:
        ensure_logged_in("view the sales summary")
        return await get_sales_summary_impl(mode)
    except DealerError as exc:
        return describe_error(
            tool_name="get_sales_summary", exc=exc, default="Failed to load the sales summary."
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="get_sales_summary",
            exc=exc,
            user_message=f"I am having trouble loading the sales summary right now. {_RETRY_SUFFIX}",
        )


# ── Session ─────────────────────────────────────────────────────────


@mcp.tool()
async def login(email: str, password: str) -> str:
    """Log in to the dashboard with email and password."""
    try:
        return await login_impl(email, password)
    except DealerError as exc:
        return describe_error(tool_name="login", exc=exc, default="Login failed.")
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="login",
            exc=exc,
            user_message=f"I am having trouble logging in right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
def logout() -> str:
    """End the dashboard session."""
    try:
        return logout_impl()
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="logout",
            exc=exc,
            user_message=f"I am having trouble logging out right now. {_RETRY_SUFFIX}",
        )


@mcp.tool()
def get_session() -> str:
    """Whether a dashboard session is active, and for whom."""
    try:
        return get_session_impl()
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="get_session",
            exc=exc,
            user_message=f"I am having trouble reading the session right now. {_RETRY_SUFFIX}",
        )


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("DEALER_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp.run()


if __name__ == "__main__":
    main()
