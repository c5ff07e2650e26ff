"""Room identifiers and their short display codes.

A room is keyed by a long opaque hex id (bytes32 style, ``0x`` + 64 hex).
Players type the short form: its first 3 bytes as 6 upper-case hex chars.
Many long ids share a short code, so going back needs the active-room index.
"""

from __future__ import annotations

import re
import secrets
from typing import Iterable, Optional

SHORT_CODE_LENGTH = 6

_SHORT_CODE_RE = re.compile(r"^[0-9A-Fa-f]{6}$")


def new_room_id() -> str:
    return "0x" + secrets.token_hex(32)


def _strip_prefix(room_id: str) -> str:
    return room_id[2:] if room_id.lower().startswith("0x") else room_id


def encode_room_id(full_room_id: str) -> str:
    """'0x0090b8d8...' -> '0090B8'"""
    if not full_room_id:
        return ""
    return _strip_prefix(full_room_id)[:SHORT_CODE_LENGTH].upper()


def verify_room_id(short_room_id: str, full_room_id: str) -> bool:
    if not short_room_id or not full_room_id:
        return False
    return encode_room_id(full_room_id) == short_room_id.upper()


def is_valid_short_room_id(short_room_id: str) -> bool:
    return bool(short_room_id) and bool(_SHORT_CODE_RE.match(short_room_id))


def is_full_room_id(room_id: str) -> bool:
    return len(room_id) > 10


def find_full_room_id(short_room_id: str, candidates: Iterable[str]) -> Optional[str]:
    """First candidate whose short code matches, or None."""
    if not short_room_id:
        return None
    normalized = short_room_id.upper()
    for room_id in candidates:
        if room_id and encode_room_id(room_id) == normalized:
            return room_id
    return None


def format_room_id_display(room_id: str) -> str:
    if not room_id:
        return "Unknown Room"
    short = encode_room_id(room_id) if is_full_room_id(room_id) else room_id.upper()
    return f"Room #{short}"
