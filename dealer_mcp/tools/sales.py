"""Dashboard sales tools: listing, recording, cancelling and the summary card."""

from __future__ import annotations

from typing import Any

from dealer_mcp.data import sales as sales_data
from dealer_mcp.data.inventory import get_store
from dealer_mcp.data.query import SalesFilter, SalesSort
from dealer_mcp.formatting import format_idr
from dealer_mcp.tools.responses import build_response


def _describe_sale(sale: dict[str, Any]) -> dict[str, Any]:
    expand = sale.get("expand") or {}
    car = expand.get("car") or {}
    model = (car.get("expand") or {}).get("model") or {}
    seller = expand.get("created_by") or {}
    price = sale.get("price")
    return {
        "id": sale.get("id"),
        "date": sale.get("date"),
        "customer_name": sale.get("customer_name"),
        "car_id": sale.get("car"),
        "car_name": " ".join(str(p) for p in (model.get("name"), car.get("year")) if p),
        "price": price,
        "price_label": format_idr(price) if isinstance(price, (int, float)) else "",
        "payment_method": sale.get("payment_method"),
        "status": sale.get("status"),
        "description": sale.get("description", ""),
        "created_by": seller.get("name") or seller.get("email") or sale.get("created_by"),
    }


async def list_sales_impl(
    *,
    search: str | None = None,
    status: str | None = None,
    payment_method: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    sort_field: str | None = None,
    sort_direction: str = "desc",
) -> str:
    filters = SalesFilter(
        search=search,
        status=status,
        payment_method=payment_method,
        date_from=date_from,
        date_to=date_to,
    )
    sort = SalesSort(sort_field, sort_direction) if sort_field else None
    records = await sales_data.get_sales(get_store(), filters, sort)
    return build_response(
        "list_sales",
        {"count": len(records), "sales": [_describe_sale(r) for r in records]},
    )


async def record_sale_impl(
    *,
    car_id: str,
    customer_name: str,
    price: float,
    payment_method: str,
    status: str = "completed",
    description: str = "",
    created_by: str | None = None,
) -> str:
    """Record a sale; the car is marked as sold unless the sale is cancelled."""
    store = get_store()
    sale = await sales_data.create_sale(
        store,
        customer_name=customer_name,
        car_id=car_id,
        price=price,
        payment_method=payment_method,
        status=status,
        description=description,
        created_by=created_by,
    )
    full = await sales_data.get_sale(store, sale["id"])
    return build_response("record_sale", {"sale": _describe_sale(full)})


async def cancel_sale_impl(sale_id: str) -> str:
    if not sale_id.strip():
        return "Error: sale_id is required."
    store = get_store()
    await sales_data.cancel_sale(store, sale_id.strip())
    full = await sales_data.get_sale(store, sale_id.strip())
    return build_response("cancel_sale", {"sale": _describe_sale(full)})


async def delete_sale_impl(sale_id: str) -> str:
    if not sale_id.strip():
        return "Error: sale_id is required."
    await sales_data.delete_sale(get_store(), sale_id.strip())
    return f"Sale {sale_id.strip()} deleted."


async def get_sales_summary_impl(mode: str = "query") -> str:
    summary = await sales_data.get_sales_summary(get_store(), mode=mode)
    data = summary.to_dict()
    data["total_revenue_label"] = format_idr(summary.total_revenue)
    return build_response("get_sales_summary", data)
