"""Opaque continuation tokens for keyset pagination."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from app.exceptions import InvalidCursor


def encode_cursor(position: dict[str, Any]) -> str:
    raw = json.dumps(position, separators=(",", ":"), sort_keys=True).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def decode_cursor(token: str) -> dict[str, Any]:
    padded = token + "=" * (-len(token) % 4)
    try:
        position = json.loads(base64.urlsafe_b64decode(padded.encode()))
    except (binascii.Error, ValueError, UnicodeDecodeError) as e:
        raise InvalidCursor(f"Invalid cursor: {token!r}") from e
    if not isinstance(position, dict):
        raise InvalidCursor(f"Invalid cursor: {token!r}")
    return position
