"""Shared canonical normalization functions for dashboard input.

Single source of truth, imported by the query builder, the reference
resolver, the car form and the sales module.
"""

from __future__ import annotations

from typing import Any

from dealer_mcp.constants import ALL, TRANSMISSION_ALIASES


def clean_numeric_string(raw: str) -> str:
    """Keep only digits, ``'.'``, and ``'-'``."""
    return "".join(c for c in raw if c.isdigit() or c in {".", "-"})


def parse_price(value: Any) -> float | None:
    """Best-effort price parsing.  Returns ``None`` for unparseable input."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        cleaned = clean_numeric_string(stripped)
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def parse_int(value: Any) -> int | None:
    """Best-effort integer parsing.  Returns ``None`` for unparseable input."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        parsed = parse_price(stripped)
        if parsed is None:
            return None
        return int(parsed)
    return None


def as_number(value: float | None) -> int | float | None:
    """Collapse whole floats to ``int`` so rendered predicates read ``200000000``."""
    if value is None:
        return None
    if float(value).is_integer():
        return int(value)
    return value


def is_unset(value: Any) -> bool:
    """True for ``None``, blank strings and the ``"all"`` select sentinel."""
    if value is None:
        return True
    if isinstance(value, str):
        stripped = value.strip()
        return not stripped or stripped.lower() == ALL
    return False


def normalize_transmission(raw: str | None) -> str:
    """Map legacy ``AT``/``MT`` codes and casing variants to canonical values.

    Returns ``""`` for empty input; unknown values pass through stripped.
    """
    if not raw:
        return ""
    stripped = raw.strip()
    return TRANSMISSION_ALIASES.get(stripped.lower(), stripped)


def normalize_name(raw: Any) -> str:
    """Trim a free-text reference name.  Case is preserved (lookups are exact)."""
    if raw is None:
        return ""
    return str(raw).strip()


def escape_filter_value(raw: str) -> str:
    """Escape backslashes and double quotes for a double-quoted predicate literal."""
    return raw.replace("\\", "\\\\").replace('"', '\\"')
