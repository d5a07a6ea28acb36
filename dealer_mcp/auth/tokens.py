"""JWT-shaped auth tokens: HS256 signing for the in-memory backend, claim decoding for sessions."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any

_HEADER = {"alg": "HS256", "typ": "JWT"}


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def encode_token(claims: dict[str, Any], secret: str) -> str:
    header = _b64encode(json.dumps(_HEADER, separators=(",", ":")).encode())
    payload = _b64encode(json.dumps(claims, separators=(",", ":")).encode())
    signing_input = f"{header}.{payload}".encode()
    signature = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
    return f"{header}.{payload}.{_b64encode(signature)}"


def decode_claims(token: str) -> dict[str, Any] | None:
    """Return the unverified payload of a JWT, or ``None`` if it is not one."""
    parts = token.split(".") if token else []
    if len(parts) != 3:
        return None
    try:
        claims = json.loads(_b64decode(parts[1]))
    except (ValueError, UnicodeDecodeError):
        return None
    return claims if isinstance(claims, dict) else None


def verify_token(token: str, secret: str) -> dict[str, Any] | None:
    """Check signature and expiry; returns the claims when both hold."""
    parts = token.split(".") if token else []
    if len(parts) != 3:
        return None
    signing_input = f"{parts[0]}.{parts[1]}".encode()
    expected = _b64encode(hmac.new(secret.encode(), signing_input, hashlib.sha256).digest())
    if not hmac.compare_digest(expected, parts[2]):
        return None
    claims = decode_claims(token)
    if claims is None or is_expired(claims):
        return None
    return claims


def is_expired(claims: dict[str, Any], *, now: float | None = None) -> bool:
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return True
    return (now if now is not None else time.time()) >= exp


def token_valid(token: str | None, *, now: float | None = None) -> bool:
    """True when ``token`` decodes and its ``exp`` claim is still in the future."""
    if not token:
        return False
    claims = decode_claims(token)
    return claims is not None and not is_expired(claims, now=now)
