"""Opaque pagination cursors for the preview listing."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime

from imagevault.errors import InvalidInput

# Encoded cursors are well under this; longer tokens are rejected before decoding.
MAX_CURSOR_LENGTH = 512


@dataclass(frozen=True)
class Cursor:
    """Sort key of the last row on a previous page."""

    created_at: datetime
    id: str


def encode_cursor(cursor: Cursor) -> str:
    payload = json.dumps(
        {"createdAt": cursor.created_at.isoformat(), "id": str(cursor.id)},
        separators=(",", ":"),
    )
    token = base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")
    return token.rstrip("=")


def decode_cursor(token: str) -> Cursor:
    """Reverse ``encode_cursor``; every malformed token raises ``InvalidInput``."""
    raw = str(token or "").strip()
    if not raw:
        raise InvalidInput("Cursor must not be empty")
    if len(raw) > MAX_CURSOR_LENGTH:
        raise InvalidInput("Cursor is too long")

    padded = raw + "=" * (-len(raw) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("ascii"))
        data = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError, RecursionError) as exc:
        raise InvalidInput("Cursor is not a valid token") from exc

    if not isinstance(data, dict):
        raise InvalidInput("Cursor payload must be an object")

    created_raw = data.get("createdAt")
    cursor_id = data.get("id")
    if not isinstance(created_raw, str) or not created_raw:
        raise InvalidInput("Cursor is missing createdAt")
    if not isinstance(cursor_id, str) or not cursor_id:
        raise InvalidInput("Cursor is missing id")

    try:
        created_at = datetime.fromisoformat(created_raw)
    except ValueError as exc:
        raise InvalidInput("Cursor createdAt is not an ISO-8601 timestamp") from exc

    return Cursor(created_at=created_at, id=cursor_id)
