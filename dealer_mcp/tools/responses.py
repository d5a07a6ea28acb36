"""Shared response helpers for tool implementations."""

from __future__ import annotations

import json
import logging
from typing import Any

from dealer_mcp.errors import DealerError, user_message

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def build_response(tool_name: str, data: dict[str, Any]) -> str:
    payload = {
        "_tool": tool_name,
        "_meta": {"schema_version": SCHEMA_VERSION},
        "data": data,
    }
    return json.dumps(payload, indent=2, default=str)


def describe_error(*, tool_name: str, exc: DealerError, default: str) -> str:
    """User-facing text for a domain error.  Logged at warning level."""
    logger.warning("%s failed: %s", tool_name, exc)
    return user_message(exc, default)


def log_and_return_tool_error(*, tool_name: str, exc: BaseException, user_message: str) -> str:
    """Log an unexpected failure with its traceback and return only ``user_message``."""
    logger.error("Unhandled error in tool %s", tool_name, exc_info=exc)
    return user_message
