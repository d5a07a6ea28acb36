"""Shared external API clients."""

from dealer_mcp.clients.pocketbase import PocketBaseClient, SSEEvent, SSEParser, build_form

__all__ = [
    "PocketBaseClient",
    "SSEEvent",
    "SSEParser",
    "build_form",
]
