"""Runtime settings for the dealer dashboard, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dealer_mcp.errors import ValidationError

STORE_BACKENDS = ("memory", "pocketbase")

_DEFAULT_SESSION_FILE = str(Path.home() / ".dealer_mcp" / "session.json")


@dataclass(frozen=True)
class DealerSettings:
    store_backend: str = "memory"
    pocketbase_url: str = ""
    search_debounce_seconds: float = 0.3
    session_ttl_days: int = 7
    session_file: str = _DEFAULT_SESSION_FILE
    cookie_secure: bool = False
    require_auth: bool = True
    request_timeout_seconds: float = 12.0
    session_refresh_seconds: float = 300.0


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValidationError(name, f"{name} must be a number, got {raw!r}") from exc


_settings: DealerSettings | None = None


def get_settings() -> DealerSettings:
    """Return the process-wide settings, loading them from the environment once."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def set_settings(settings: DealerSettings | None) -> None:
    """Inject settings for testing; ``None`` forces a reload on next access."""
    global _settings  # noqa: PLW0603
    _settings = settings


def load_settings() -> DealerSettings:
    """Build settings from ``DEALER_*`` environment variables."""
    backend = os.environ.get("DEALER_STORE_BACKEND", "memory").strip().lower() or "memory"
    if backend not in STORE_BACKENDS:
        raise ValidationError(
            "DEALER_STORE_BACKEND",
            f"DEALER_STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, got {backend!r}",
        )

    pocketbase_url = os.environ.get("DEALER_POCKETBASE_URL", "").strip().rstrip("/")
    if backend == "pocketbase" and not pocketbase_url:
        raise ValidationError(
            "DEALER_POCKETBASE_URL",
            "DEALER_POCKETBASE_URL is not defined in environment variables",
        )

    debounce_ms = _env_float("DEALER_SEARCH_DEBOUNCE_MS", 300.0)
    if debounce_ms < 0:
        raise ValidationError(
            "DEALER_SEARCH_DEBOUNCE_MS", "DEALER_SEARCH_DEBOUNCE_MS must be >= 0"
        )

    return DealerSettings(
        store_backend=backend,
        pocketbase_url=pocketbase_url,
        search_debounce_seconds=debounce_ms / 1000.0,
        session_ttl_days=int(_env_float("DEALER_SESSION_TTL_DAYS", 7)),
        session_file=os.environ.get("DEALER_SESSION_FILE", "").strip() or _DEFAULT_SESSION_FILE,
        cookie_secure=_env_bool("DEALER_COOKIE_SECURE", False),
        require_auth=_env_bool("DEALER_REQUIRE_AUTH", True),
        request_timeout_seconds=_env_float("DEALER_REQUEST_TIMEOUT", 12.0),
        session_refresh_seconds=_env_float("DEALER_SESSION_REFRESH_SECONDS", 300.0),
    )
