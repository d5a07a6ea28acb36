"""Sales records: listing, summary counters and the sale lifecycle.

Creating a sale flags its car as sold and cancelling it clears the flag. The
two writes are independent store calls; there is no transaction around them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from dealer_mcp.constants import (
    CARS,
    PAYMENT_METHODS,
    SALE_CANCELLED,
    SALE_COMPLETED,
    SALE_EXPAND,
    SALE_PENDING,
    SALE_STATUSES,
    SALES,
)
from dealer_mcp.data.query import SalesFilter, SalesSort, build_sales_query
from dealer_mcp.data.store import RecordStore
from dealer_mcp.errors import DealerError, NotFoundError, RecordStoreError, ValidationError
from dealer_mcp.normalization import as_number, normalize_name, parse_price

logger = logging.getLogger(__name__)

SUMMARY_MODES = ("query", "reduce")
_UPDATABLE_FIELDS = frozenset(
    {"customer_name", "price", "payment_method", "status", "description", "date"}
)


@dataclass(frozen=True)
class SalesSummary:
    total_sales: int = 0
    completed_sales: int = 0
    pending_sales: int = 0
    cancelled_sales: int = 0
    total_revenue: float = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_sales": self.total_sales,
            "completed_sales": self.completed_sales,
            "pending_sales": self.pending_sales,
            "cancelled_sales": self.cancelled_sales,
            "total_revenue": as_number(self.total_revenue),
        }


def _price_of(record: Mapping[str, Any]) -> float:
    return parse_price(record.get("price")) or 0.0


def summarize_sales(records: Iterable[Mapping[str, Any]]) -> SalesSummary:
    """Reduce a list of sales.  Revenue only counts completed sales."""
    total = completed = pending = cancelled = 0
    revenue = 0.0
    for record in records:
        total += 1
        status = record.get("status")
        if status == SALE_COMPLETED:
            completed += 1
            revenue += _price_of(record)
        elif status == SALE_PENDING:
            pending += 1
        elif status == SALE_CANCELLED:
            cancelled += 1
    return SalesSummary(
        total_sales=total,
        completed_sales=completed,
        pending_sales=pending,
        cancelled_sales=cancelled,
        total_revenue=revenue,
    )


async def get_sales_summary(store: RecordStore, *, mode: str = "query") -> SalesSummary:
    """Summary counters, either via count queries (``query``) or a full-list reduce."""
    if mode not in SUMMARY_MODES:
        raise ValidationError("mode", f"mode must be one of: {', '.join(SUMMARY_MODES)}")
    if mode == "reduce":
        return summarize_sales(await store.query(SALES))

    total = await store.count(SALES)
    pending = await store.count(SALES, filter=f'status = "{SALE_PENDING}"')
    cancelled = await store.count(SALES, filter=f'status = "{SALE_CANCELLED}"')
    completed_records = await store.query(SALES, filter=f'status = "{SALE_COMPLETED}"')
    return SalesSummary(
        total_sales=total,
        completed_sales=len(completed_records),
        pending_sales=pending,
        cancelled_sales=cancelled,
        total_revenue=sum(_price_of(r) for r in completed_records),
    )


# ── Listing ─────────────────────────────────────────────────────────


async def get_sales(
    store: RecordStore,
    filters: SalesFilter | Mapping[str, Any] | None = None,
    sort: SalesSort | None = None,
) -> list[dict[str, Any]]:
    query = build_sales_query(filters, sort)
    return await store.query(SALES, **query.as_options())


async def get_sale(store: RecordStore, sale_id: str) -> dict[str, Any]:
    return await store.get_one(SALES, sale_id, expand=SALE_EXPAND)


# ── Lifecycle ───────────────────────────────────────────────────────


def _validate_price(value: Any) -> float:
    price = parse_price(value)
    if price is None:
        raise ValidationError("price", "Price is required")
    if price < 0:
        raise ValidationError("price", "Price must be zero or more")
    return price


def _validate_status(value: Any) -> str:
    status = normalize_name(value).lower()
    if status not in SALE_STATUSES:
        raise ValidationError(
            "status", f"status must be one of: {', '.join(sorted(SALE_STATUSES))}"
        )
    return status


def _validate_payment_method(value: Any) -> str:
    method = normalize_name(value)
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            "payment_method",
            f"payment_method must be one of: {', '.join(sorted(PAYMENT_METHODS))}",
        )
    return method


def _now_stamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%d %H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


async def create_sale(
    store: RecordStore,
    *,
    customer_name: str,
    car_id: str,
    price: Any,
    payment_method: str,
    status: str = SALE_COMPLETED,
    description: str = "",
    created_by: str | None = None,
    date: str | None = None,
) -> dict[str, Any]:
    """Record a sale and flag its car as sold.

    The car must exist and must not already be sold.  A sale created as
    ``cancelled`` leaves the car untouched.
    """
    name = normalize_name(customer_name)
    if not name:
        raise ValidationError("customer_name", "Customer name is required")
    car_id = normalize_name(car_id)
    if not car_id:
        raise ValidationError("car", "Car is required")
    amount = _validate_price(price)
    method = _validate_payment_method(payment_method)
    sale_status = _validate_status(status)

    car = await store.get_one(CARS, car_id)
    if car.get("is_sold"):
        raise ValidationError("car", f"Car with ID {car_id} is already sold")

    payload: dict[str, Any] = {
        "customer_name": name,
        "car": car_id,
        "price": as_number(amount),
        "payment_method": method,
        "status": sale_status,
        "description": description or "",
        "date": date or _now_stamp(),
    }
    if created_by:
        payload["created_by"] = created_by
    sale = await store.create(SALES, payload)
    logger.info("Recorded sale %s for car %s (%s)", sale["id"], car_id, sale_status)

    if sale_status != SALE_CANCELLED:
        try:
            await store.update(CARS, car_id, {"is_sold": True})
        except DealerError as exc:
            logger.error(
                "Sale %s recorded but car %s could not be marked sold: %s",
                sale["id"], car_id, exc,
            )
            raise RecordStoreError(
                f"Sale {sale['id']} was recorded but the car could not be marked as sold.",
                code="PARTIAL_WRITE",
                details={"sale_id": sale["id"], "car_id": car_id, "error": str(exc)},
            ) from exc
    return sale


async def update_sale(
    store: RecordStore, sale_id: str, changes: Mapping[str, Any]
) -> dict[str, Any]:
    """Patch editable sale fields.  The car's sold flag is not touched here."""
    unknown = sorted(set(changes) - _UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(unknown[0], f"Cannot update sale field {unknown[0]!r}")
    payload: dict[str, Any] = {}
    for key, value in changes.items():
        if key == "customer_name":
            name = normalize_name(value)
            if not name:
                raise ValidationError("customer_name", "Customer name is required")
            payload[key] = name
        elif key == "price":
            payload[key] = as_number(_validate_price(value))
        elif key == "payment_method":
            payload[key] = _validate_payment_method(value)
        elif key == "status":
            payload[key] = _validate_status(value)
        else:
            payload[key] = value
    if not payload:
        raise ValidationError("changes", "No changes supplied")
    return await store.update(SALES, sale_id, payload)


async def delete_sale(store: RecordStore, sale_id: str) -> None:
    await store.delete(SALES, sale_id)
    logger.info("Deleted sale %s", sale_id)


async def cancel_sale(store: RecordStore, sale_id: str) -> dict[str, Any]:
    """Mark a sale cancelled and put its car back on sale.  Idempotent."""
    sale = await store.get_one(SALES, sale_id)
    if sale.get("status") == SALE_CANCELLED:
        return sale

    updated = await store.update(SALES, sale_id, {"status": SALE_CANCELLED})
    car_id = sale.get("car")
    if car_id:
        try:
            await store.update(CARS, car_id, {"is_sold": False})
        except NotFoundError:
            logger.warning("Sale %s cancelled; car %s no longer exists", sale_id, car_id)
    logger.info("Cancelled sale %s", sale_id)
    return updated
