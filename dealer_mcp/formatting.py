"""Rupiah display formatting for prices."""

from __future__ import annotations

_BILLION = 1_000_000_000
_MILLION = 1_000_000


def _id_number(value: float, max_decimals: int) -> str:
    """Format with Indonesian separators: ``.`` for thousands, ``,`` for decimals."""
    rounded = round(value, max_decimals)
    if float(rounded).is_integer():
        text = f"{int(rounded):,}"
    else:
        text = f"{rounded:,.{max_decimals}f}".rstrip("0").rstrip(".")
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def format_idr(price: float) -> str:
    """Render a price as ``Rp 1,5 Milyar`` / ``Rp 250 Juta`` / ``Rp 95.000``."""
    if price >= _BILLION:
        return f"Rp {_id_number(price / _BILLION, 1)} Milyar"
    if price >= _MILLION:
        return f"Rp {_id_number(price / _MILLION, 1)} Juta"
    return f"Rp {_id_number(price, 3)}"
