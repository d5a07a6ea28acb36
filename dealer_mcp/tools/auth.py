"""Session tools and the login gate for dashboard mutations."""

from __future__ import annotations

from dealer_mcp.config import get_settings
from dealer_mcp.data.inventory import get_session_manager
from dealer_mcp.errors import AuthenticationError
from dealer_mcp.tools.responses import build_response


def ensure_logged_in(action: str) -> str | None:
    """Raise unless a session is active (when auth is required).  Returns the user id."""
    session = get_session_manager()
    user = session.current_user()
    if get_settings().require_auth and user is None:
        raise AuthenticationError(f"Please log in to {action}.")
    return user.get("id") if user else None


async def login_impl(email: str, password: str) -> str:
    result = await get_session_manager().login(email, password)
    return build_response("login", {"logged_in": True, "user": result["user"]})


def logout_impl() -> str:
    get_session_manager().logout()
    return "Logged out."


def get_session_impl() -> str:
    session = get_session_manager()
    return build_response(
        "get_session",
        {"logged_in": session.is_logged_in(), "user": session.current_user()},
    )
