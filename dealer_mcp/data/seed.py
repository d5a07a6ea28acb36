"""Demo showroom data for the in-memory backend."""

from __future__ import annotations

from typing import Any

from dealer_mcp.constants import BODY_TYPES, BRANDS, CARS, MODELS, SALES, USERS
from dealer_mcp.data.store import InMemoryRecordStore

DEMO_ADMIN_EMAIL = "admin@dealer.local"
DEMO_ADMIN_PASSWORD = "admin12345"

_BRANDS = [
    {"id": "toyota-id", "name": "Toyota"},
    {"id": "honda-id", "name": "Honda"},
    {"id": "mitsubishi-id", "name": "Mitsubishi"},
    {"id": "suzuki-id", "name": "Suzuki"},
]

_BODY_TYPES = [
    {"id": "mpv-id", "name": "MPV"},
    {"id": "suv-id", "name": "SUV"},
    {"id": "sedan-id", "name": "Sedan"},
    {"id": "hatchback-id", "name": "Hatchback"},
]

# (id, name, brand, body_type, seats, cc, bags)
_MODELS = [
    ("avanza-id", "Avanza", "toyota-id", "mpv-id", 7, 1496, 2),
    ("innova-id", "Innova Zenix", "toyota-id", "mpv-id", 7, 1987, 3),
    ("fortuner-id", "Fortuner", "toyota-id", "suv-id", 7, 2393, 3),
    ("civic-id", "Civic", "honda-id", "sedan-id", 5, 1498, 2),
    ("hrv-id", "HR-V", "honda-id", "suv-id", 5, 1498, 2),
    ("brio-id", "Brio", "honda-id", "hatchback-id", 5, 1199, 1),
    ("pajero-id", "Pajero Sport", "mitsubishi-id", "suv-id", 7, 2442, 3),
    ("xpander-id", "Xpander", "mitsubishi-id", "mpv-id", 7, 1499, 2),
    ("ertiga-id", "Ertiga", "suzuki-id", "mpv-id", 7, 1462, 2),
]

# (id, model, year, transmission, mileage, condition, buy_price, sell_price, is_sold, description)
_CARS = [
    ("car-avanza-2019", "avanza-id", 2019, "Manual", 68000, 82, 135_000_000, 158_000_000, False,
     "Satu tangan dari baru, servis rutin di bengkel resmi."),
    ("car-avanza-2022", "avanza-id", 2022, "Automatic", 21000, 94, 198_000_000, 225_000_000, False,
     "Tipe G CVT, ban baru, kaca film 3M."),
    ("car-innova-2023", "innova-id", 2023, "Automatic", 12000, 97, 455_000_000, 498_000_000, False,
     "Hybrid, garansi pabrik masih aktif."),
    ("car-fortuner-2020", "fortuner-id", 2020, "Automatic", 54000, 88, 410_000_000, 455_000_000, True,
     "VRZ 4x2 diesel, interior kulit."),
    ("car-civic-2018", "civic-id", 2018, "Automatic", 72000, 80, 280_000_000, 315_000_000, False,
     "Turbo, velg racing original."),
    ("car-hrv-2021", "hrv-id", 2021, "Automatic", 33000, 91, 265_000_000, 299_000_000, False,
     "Prestige, sunroof, Honda Sensing."),
    ("car-brio-2017", "brio-id", 2017, "Manual", 91000, 74, 88_000_000, 99_500_000, True,
     "Satya E, irit dan lincah untuk dalam kota."),
    ("car-pajero-2019", "pajero-id", 2019, "Automatic", 80000, 83, 380_000_000, 425_000_000, False,
     "Dakar 4x2, pajak panjang."),
    ("car-xpander-2022", "xpander-id", 2022, "Manual", 25000, 93, 205_000_000, 229_000_000, False,
     "Exceed, kamera mundur."),
    ("car-ertiga-2020", "ertiga-id", 2020, "Automatic", 47000, 86, 150_000_000, 172_000_000, False,
     "GX AT, kabin luas."),
]

_USERS = [
    {
        "id": "admin-user-id",
        "email": DEMO_ADMIN_EMAIL,
        "name": "Admin Showroom",
        "password": DEMO_ADMIN_PASSWORD,
        "verified": True,
    },
]

_SALES = [
    {
        "id": "sale-fortuner",
        "customer_name": "Budi Santoso",
        "car": "car-fortuner-2020",
        "price": 450_000_000,
        "payment_method": "Transfer",
        "status": "completed",
        "description": "Termasuk balik nama.",
        "created_by": "admin-user-id",
        "date": "2025-01-14 09:30:00.000Z",
    },
    {
        "id": "sale-brio",
        "customer_name": "Siti Rahayu",
        "car": "car-brio-2017",
        "price": 97_000_000,
        "payment_method": "Credit",
        "status": "pending",
        "description": "Menunggu persetujuan leasing.",
        "created_by": "admin-user-id",
        "date": "2025-02-03 13:00:00.000Z",
    },
    {
        "id": "sale-civic",
        "customer_name": "Andi Wijaya",
        "car": "car-civic-2018",
        "price": 310_000_000,
        "payment_method": "Cash",
        "status": "cancelled",
        "description": "Pembeli membatalkan.",
        "created_by": "admin-user-id",
        "date": "2025-02-10 10:15:00.000Z",
    },
]


def _car_records() -> list[dict[str, Any]]:
    return [
        {
            "id": car_id,
            "model": model,
            "year": year,
            "transmission": transmission,
            "mileage": mileage,
            "condition": condition,
            "buy_price": buy_price,
            "sell_price": sell_price,
            "is_sold": is_sold,
            "description": description,
            "images": [],
        }
        for (
            car_id, model, year, transmission, mileage, condition,
            buy_price, sell_price, is_sold, description,
        ) in _CARS
    ]


def seed_demo_data(store: InMemoryRecordStore) -> None:
    """Load brands, body types, models, cars, one admin user and a few sales."""
    store.load_records(BRANDS, _BRANDS)
    store.load_records(BODY_TYPES, _BODY_TYPES)
    store.load_records(
        MODELS,
        [
            {
                "id": model_id,
                "name": name,
                "brand": brand,
                "body_type": body_type,
                "seats": seats,
                "cc": cc,
                "bags": bags,
            }
            for model_id, name, brand, body_type, seats, cc, bags in _MODELS
        ],
    )
    store.load_records(CARS, _car_records())
    store.load_records(USERS, _USERS)
    store.load_records(SALES, _SALES)
