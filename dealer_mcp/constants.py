"""Shared constants used across multiple modules.

Single source of truth for collection names, relation wiring and the enum-like
values the dashboard forms accept.
"""

from __future__ import annotations

CARS = "cars"
MODELS = "model"
BRANDS = "brand"
BODY_TYPES = "body_type"
SALES = "sales"
USERS = "users"

# field -> target collection, per collection.
RELATIONS: dict[str, dict[str, str]] = {
    CARS: {"model": MODELS},
    MODELS: {"brand": BRANDS, "body_type": BODY_TYPES},
    SALES: {"car": CARS, "created_by": USERS},
}

CAR_EXPAND = "model.brand,model.body_type"
MODEL_EXPAND = "brand,body_type"
SALE_EXPAND = "car.model,created_by"

# Select-box value meaning "no constraint".
ALL = "all"

TRANSMISSIONS: frozenset[str] = frozenset({"Automatic", "Manual"})
TRANSMISSION_ALIASES: dict[str, str] = {
    "at": "Automatic",
    "automatic": "Automatic",
    "mt": "Manual",
    "manual": "Manual",
}

# Upper-bound presets offered by the price select.
PRICE_PRESETS: tuple[tuple[str, int], ...] = (
    ("< Rp 100 Juta", 100_000_000),
    ("< Rp 200 Juta", 200_000_000),
    ("< Rp 500 Juta", 500_000_000),
    ("< Rp 1 Milyar", 1_000_000_000),
)

SOLD_STATUSES: frozenset[str] = frozenset({"available", "sold"})

SALE_COMPLETED = "completed"
SALE_PENDING = "pending"
SALE_CANCELLED = "cancelled"
SALE_STATUSES: frozenset[str] = frozenset({SALE_COMPLETED, SALE_PENDING, SALE_CANCELLED})

PAYMENT_METHODS: frozenset[str] = frozenset({"Cash", "Credit", "Transfer", "Other"})

MIN_CAR_YEAR = 1900
