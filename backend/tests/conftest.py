"""Shared fixtures: an in-memory stand-in for the Redis room registry."""

from __future__ import annotations

import asyncio
import json
import time
from contextlib import ExitStack
from typing import Any, Optional
from unittest.mock import AsyncMock, patch

import pytest

from teenpatti import game_manager

REGISTRY_FUNCTIONS = (
    "store_room",
    "load_room",
    "store_player",
    "load_player",
    "load_all_players",
    "remove_player",
    "store_engine",
    "load_engine",
    "index_short_code",
    "lookup_short_code",
    "push_payout",
    "load_payouts",
    "touch_activity",
    "get_last_activity",
    "list_all_room_ids",
    "delete_room",
)


def _copy(data: Any) -> Any:
    # Same round trip the real client does
    return json.loads(json.dumps(data))


class FakeRegistry:
    """Dict-backed registry with the same async API as teenpatti.redis_client."""

    def __init__(self) -> None:
        self.rooms: dict[str, dict] = {}
        self.players: dict[str, dict[str, dict]] = {}
        self.engines: dict[str, dict] = {}
        self.codes: dict[str, set[str]] = {}
        self.payouts: dict[str, list[dict]] = {}
        self.activity: dict[str, float] = {}

    async def store_room(self, room_id: str, data: dict) -> None:
        self.rooms[room_id] = _copy(data)

    async def load_room(self, room_id: str) -> Optional[dict]:
        data = self.rooms.get(room_id)
        return _copy(data) if data is not None else None

    async def store_player(self, room_id: str, player_id: str, data: dict) -> None:
        self.players.setdefault(room_id, {})[player_id] = _copy(data)

    async def load_player(self, room_id: str, player_id: str) -> Optional[dict]:
        data = self.players.get(room_id, {}).get(player_id)
        return _copy(data) if data is not None else None

    async def load_all_players(self, room_id: str) -> list[dict]:
        return [_copy(p) for p in self.players.get(room_id, {}).values()]

    async def remove_player(self, room_id: str, player_id: str) -> None:
        self.players.get(room_id, {}).pop(player_id, None)

    async def store_engine(self, room_id: str, data: dict) -> None:
        self.engines[room_id] = _copy(data)

    async def load_engine(self, room_id: str) -> Optional[dict]:
        # Yield so concurrent callers interleave here
        await asyncio.sleep(0)
        data = self.engines.get(room_id)
        return _copy(data) if data is not None else None

    async def index_short_code(self, short_code: str, room_id: str) -> None:
        self.codes.setdefault(short_code.upper(), set()).add(room_id)

    async def lookup_short_code(self, short_code: str) -> list[str]:
        return sorted(self.codes.get(short_code.upper(), set()))

    async def push_payout(self, room_id: str, instruction: dict) -> None:
        self.payouts.setdefault(room_id, []).append(_copy(instruction))

    async def load_payouts(self, room_id: str) -> list[dict]:
        return _copy(self.payouts.get(room_id, []))

    async def touch_activity(self, room_id: str) -> None:
        self.activity[room_id] = time.time()

    async def get_last_activity(self, room_id: str) -> Optional[float]:
        return self.activity.get(room_id)

    async def list_all_room_ids(self) -> list[str]:
        ids = set(self.rooms) | set(self.engines) | set(self.players) | set(self.activity)
        return sorted(ids)

    async def delete_room(self, room_id: str, short_code: str) -> None:
        for store in (self.rooms, self.players, self.engines, self.payouts, self.activity):
            store.pop(room_id, None)
        self.codes.get(short_code.upper(), set()).discard(room_id)


@pytest.fixture
def registry():
    """Patch every registry call with an AsyncMock backed by FakeRegistry."""
    fake = FakeRegistry()
    with ExitStack() as stack:
        for name in REGISTRY_FUNCTIONS:
            stack.enter_context(
                patch(
                    f"teenpatti.redis_client.{name}",
                    new=AsyncMock(side_effect=getattr(fake, name)),
                )
            )
        yield fake
    game_manager._locks.clear()
