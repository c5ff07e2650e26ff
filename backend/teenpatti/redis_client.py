"""Redis client wrapper: the shared registry of live rooms."""

from __future__ import annotations

import json
import os
import time
from typing import Any, Optional

import redis.asyncio as redis

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

_pool: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    global _pool
    if _pool is None:
        _pool = redis.from_url(REDIS_URL, decode_responses=True)
    return _pool


def _room_key(room_id: str) -> str:
    return f"room:{room_id}"


def _players_key(room_id: str) -> str:
    return f"room:{room_id}:players"


def _player_key(room_id: str, player_id: str) -> str:
    return f"room:{room_id}:player:{player_id}"


def _engine_key(room_id: str) -> str:
    return f"room:{room_id}:engine"


def _activity_key(room_id: str) -> str:
    return f"room:{room_id}:last_activity"


def _payouts_key(room_id: str) -> str:
    return f"room:{room_id}:payouts"


def _short_code_key(short_code: str) -> str:
    return f"roomcode:{short_code.upper()}"


async def store_room(room_id: str, data: dict[str, Any]) -> None:
    r = await get_redis()
    await r.set(_room_key(room_id), json.dumps(data))


async def load_room(room_id: str) -> Optional[dict[str, Any]]:
    r = await get_redis()
    raw = await r.get(_room_key(room_id))
    if raw is None:
        return None
    return json.loads(raw)


async def store_player(room_id: str, player_id: str, data: dict[str, Any]) -> None:
    r = await get_redis()
    await r.set(_player_key(room_id, player_id), json.dumps(data))
    await r.sadd(_players_key(room_id), player_id)


async def load_player(room_id: str, player_id: str) -> Optional[dict[str, Any]]:
    r = await get_redis()
    raw = await r.get(_player_key(room_id, player_id))
    if raw is None:
        return None
    return json.loads(raw)


async def load_all_players(room_id: str) -> list[dict[str, Any]]:
    r = await get_redis()
    player_ids = await r.smembers(_players_key(room_id))
    players = []
    for pid in player_ids:
        data = await load_player(room_id, pid)
        if data:
            players.append(data)
    return players


async def remove_player(room_id: str, player_id: str) -> None:
    """Remove a player from a room."""
    r = await get_redis()
    await r.delete(_player_key(room_id, player_id))
    await r.srem(_players_key(room_id), player_id)


async def store_engine(room_id: str, data: dict[str, Any]) -> None:
    r = await get_redis()
    await r.set(_engine_key(room_id), json.dumps(data))


async def load_engine(room_id: str) -> Optional[dict[str, Any]]:
    r = await get_redis()
    raw = await r.get(_engine_key(room_id))
    if raw is None:
        return None
    return json.loads(raw)


async def index_short_code(short_code: str, room_id: str) -> None:
    r = await get_redis()
    await r.sadd(_short_code_key(short_code), room_id)


async def lookup_short_code(short_code: str) -> list[str]:
    """All live room ids sharing *short_code*."""
    r = await get_redis()
    return sorted(await r.smembers(_short_code_key(short_code)))


async def push_payout(room_id: str, instruction: dict[str, Any]) -> None:
    """Append a payout instruction to the room's settlement outbox."""
    r = await get_redis()
    await r.rpush(_payouts_key(room_id), json.dumps(instruction))


async def load_payouts(room_id: str) -> list[dict[str, Any]]:
    r = await get_redis()
    return [json.loads(raw) for raw in await r.lrange(_payouts_key(room_id), 0, -1)]


async def touch_activity(room_id: str) -> None:
    """Update the last-activity timestamp for a room (Unix epoch seconds)."""
    r = await get_redis()
    await r.set(_activity_key(room_id), str(time.time()))


async def get_last_activity(room_id: str) -> float | None:
    """Return the last-activity timestamp for a room, or None."""
    r = await get_redis()
    raw = await r.get(_activity_key(room_id))
    if raw is None:
        return None
    return float(raw)


async def list_all_room_ids() -> list[str]:
    """Return all room ids currently stored in Redis."""
    r = await get_redis()
    room_ids: set[str] = set()
    async for key in r.scan_iter(match="room:*", count=200):
        # Keys look like room:0xabc..., room:0xabc...:players, etc.
        parts = key.split(":")
        if len(parts) >= 2:
            room_ids.add(parts[1])
    return list(room_ids)


async def delete_room(room_id: str, short_code: str) -> None:
    """Clean up all keys for a room."""
    r = await get_redis()
    player_ids = await r.smembers(_players_key(room_id))
    keys = [
        _room_key(room_id),
        _players_key(room_id),
        _engine_key(room_id),
        _activity_key(room_id),
        _payouts_key(room_id),
    ]
    for pid in player_ids:
        keys.append(_player_key(room_id, pid))
    await r.delete(*keys)
    await r.srem(_short_code_key(short_code), room_id)


async def close() -> None:
    global _pool
    if _pool is not None:
        await _pool.aclose()
        _pool = None
