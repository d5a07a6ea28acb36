"""Predicate builders for the car listing and the sales table.

Pure functions: they turn UI filter state into the record store's filter
strings and perform no I/O.  Rejected predicates are the store's business; the
only sanitisation applied here is quote escaping.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Union

from dealer_mcp.constants import (
    CAR_EXPAND,
    PAYMENT_METHODS,
    SALE_EXPAND,
    SALE_STATUSES,
    SOLD_STATUSES,
)
from dealer_mcp.errors import ValidationError
from dealer_mcp.normalization import (
    as_number,
    escape_filter_value,
    is_unset,
    normalize_transmission,
    parse_price,
)

DEFAULT_CAR_SORT = "-created"
DEFAULT_SALES_SORT = "-date"
DEFAULT_SEARCH_FIELDS: tuple[str, ...] = ("model.name",)
BRAND_SEARCH_FIELDS: tuple[str, ...] = ("model.name", "model.brand.name")

_SORT_RE = re.compile(r"^[+-]?[A-Za-z_][A-Za-z0-9_.]*(,[+-]?[A-Za-z_][A-Za-z0-9_.]*)*$")
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def render_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(as_number(value))
    return f'"{escape_filter_value(str(value))}"'


@dataclass(frozen=True)
class Clause:
    field: str
    op: str
    value: Any

    def render(self) -> str:
        return f"{self.field} {self.op} {render_value(self.value)}"


@dataclass(frozen=True)
class AnyOf:
    """OR-group of clauses; the only place ``||`` appears in built predicates."""

    clauses: tuple[Clause, ...]

    def render(self) -> str:
        return "(" + " || ".join(c.render() for c in self.clauses) + ")"


Condition = Union[Clause, AnyOf]


@dataclass(frozen=True)
class RecordQuery:
    """A conjunction of conditions plus sort and expand options."""

    conditions: tuple[Condition, ...] = ()
    sort: str = ""
    expand: str = ""

    @property
    def filter(self) -> str | None:
        if not self.conditions:
            return None
        return " && ".join(c.render() for c in self.conditions)

    def as_options(self) -> dict[str, Any]:
        return {"filter": self.filter, "sort": self.sort or None, "expand": self.expand or None}


class CarQuery(RecordQuery):
    pass


class SalesQuery(RecordQuery):
    pass


def _validate_sort(sort: str, field_name: str = "sort") -> str:
    cleaned = sort.replace(" ", "")
    if not _SORT_RE.match(cleaned):
        raise ValidationError(field_name, f"Invalid sort expression: {sort!r}")
    return cleaned


def _text_condition(term: str, search_fields: tuple[str, ...]) -> Condition:
    if len(search_fields) == 1:
        return Clause(search_fields[0], "~", term)
    return AnyOf(tuple(Clause(f, "~", term) for f in search_fields))


# ── Cars ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CarFilters:
    """Sparse filter state of the car listing.  Unset and ``"all"`` mean no constraint."""

    brand: str | None = None
    body_type: str | None = None
    transmission: str | None = None
    min_price: Any = None
    max_price: Any = None
    sold_status: str | None = None

    _ALIASES = {
        "bodyType": "body_type",
        "minPrice": "min_price",
        "maxPrice": "max_price",
        "soldStatus": "sold_status",
    }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> CarFilters:
        """Accept both ``snake_case`` and the UI's ``camelCase`` keys; unknown keys are ignored."""
        return cls().merged(data or {})

    def merged(self, changes: Mapping[str, Any]) -> CarFilters:
        """Apply a partial update given in either key style."""
        known = {f.name for f in fields(self)}
        updates: dict[str, Any] = {}
        for key, value in changes.items():
            name = self._ALIASES.get(key, key)
            if name in known:
                updates[name] = value
        return replace(self, **updates)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @property
    def is_empty(self) -> bool:
        return all(is_unset(getattr(self, f.name)) for f in fields(self))


def _price_bound(value: Any, field_name: str) -> float | None:
    if is_unset(value):
        return None
    parsed = parse_price(value)
    if parsed is None:
        raise ValidationError(field_name, f"{field_name} must be a number, got {value!r}")
    return parsed


def build_car_query(
    search: str | None = None,
    filters: CarFilters | Mapping[str, Any] | None = None,
    *,
    sort: str | None = None,
    search_fields: tuple[str, ...] = DEFAULT_SEARCH_FIELDS,
) -> CarQuery:
    """Translate search text and filter state into a car predicate.

    Example::

        >>> build_car_query(
        ...     "avanza",
        ...     {"brand": "toyota-id", "transmission": "Automatic", "minPrice": 200000000},
        ... ).filter
        'model.name ~ "avanza" && model.brand = "toyota-id" && transmission = "Automatic" && sell_price <= 200000000'
    """
    if not isinstance(filters, CarFilters):
        filters = CarFilters.from_mapping(filters)
    if not search_fields:
        raise ValidationError("search_fields", "At least one search field is required")

    conditions: list[Condition] = []
    for term in (search or "").split():
        conditions.append(_text_condition(term, search_fields))

    if not is_unset(filters.brand):
        conditions.append(Clause("model.brand", "=", str(filters.brand).strip()))
    if not is_unset(filters.body_type):
        conditions.append(Clause("model.body_type", "=", str(filters.body_type).strip()))
    if not is_unset(filters.transmission):
        conditions.append(
            Clause("transmission", "=", normalize_transmission(str(filters.transmission)))
        )

    low = _price_bound(filters.min_price, "min_price")
    high = _price_bound(filters.max_price, "max_price")
    if low is not None and high is not None:
        conditions.append(Clause("sell_price", ">=", low))
        conditions.append(Clause("sell_price", "<=", high))
    elif low is not None or high is not None:
        # The single price control is an upper-bound preset.
        conditions.append(Clause("sell_price", "<=", low if low is not None else high))

    if not is_unset(filters.sold_status):
        status = str(filters.sold_status).strip().lower()
        if status not in SOLD_STATUSES:
            raise ValidationError(
                "sold_status", f"sold_status must be one of: {', '.join(sorted(SOLD_STATUSES))}"
            )
        conditions.append(Clause("is_sold", "=", status == "sold"))

    return CarQuery(
        conditions=tuple(conditions),
        sort=_validate_sort(sort) if sort else DEFAULT_CAR_SORT,
        expand=CAR_EXPAND,
    )


# ── Sales ───────────────────────────────────────────────────────────

SALES_SORT_FIELDS = frozenset(
    {"date", "customer_name", "price", "status", "payment_method", "created"}
)


@dataclass(frozen=True)
class SalesFilter:
    search: str | None = None
    status: str | None = None
    payment_method: str | None = None
    date_from: str | None = None
    date_to: str | None = None

    _ALIASES = {"paymentMethod": "payment_method", "dateFrom": "date_from", "dateTo": "date_to"}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> SalesFilter:
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            name = cls._ALIASES.get(key, key)
            if name in known:
                values[name] = value
        return cls(**values)


@dataclass(frozen=True)
class SalesSort:
    field: str = "date"
    direction: str = "desc"

    def render(self) -> str:
        if self.field not in SALES_SORT_FIELDS:
            raise ValidationError(
                "sort", f"Cannot sort sales by {self.field!r}"
            )
        if self.direction not in {"asc", "desc"}:
            raise ValidationError("sort", "Sort direction must be 'asc' or 'desc'")
        return f"{'-' if self.direction == 'desc' else ''}{self.field}"


def _date_bound(value: str, *, end_of_day: bool) -> str:
    value = value.strip()
    if _DATE_ONLY_RE.match(value):
        return f"{value} 23:59:59.999Z" if end_of_day else f"{value} 00:00:00.000Z"
    return value


def build_sales_query(
    filters: SalesFilter | Mapping[str, Any] | None = None,
    sort: SalesSort | None = None,
) -> SalesQuery:
    """Sales table predicate.  Search matches customer name or sale id."""
    if not isinstance(filters, SalesFilter):
        filters = SalesFilter.from_mapping(filters)

    conditions: list[Condition] = []
    search = (filters.search or "").strip()
    if search:
        conditions.append(
            AnyOf((Clause("customer_name", "~", search), Clause("id", "~", search)))
        )
    if not is_unset(filters.status):
        status = str(filters.status).strip().lower()
        if status not in SALE_STATUSES:
            raise ValidationError(
                "status", f"status must be one of: {', '.join(sorted(SALE_STATUSES))}"
            )
        conditions.append(Clause("status", "=", status))
    if not is_unset(filters.payment_method):
        method = str(filters.payment_method).strip()
        if method not in PAYMENT_METHODS:
            raise ValidationError(
                "payment_method",
                f"payment_method must be one of: {', '.join(sorted(PAYMENT_METHODS))}",
            )
        conditions.append(Clause("payment_method", "=", method))
    if not is_unset(filters.date_from):
        conditions.append(Clause("date", ">=", _date_bound(str(filters.date_from), end_of_day=False)))
    if not is_unset(filters.date_to):
        conditions.append(Clause("date", "<=", _date_bound(str(filters.date_to), end_of_day=True)))

    return SalesQuery(
        conditions=tuple(conditions),
        sort=sort.render() if sort else DEFAULT_SALES_SORT,
        expand=SALE_EXPAND,
    )
