"""Stale room cleanup — background task that removes abandoned rooms from Redis.

A room is stale when nothing has happened in it (joins, deals, actions) for
STALE_THRESHOLD seconds.  Rooms sitting in the lobby get a shorter window
than rooms with a round still open, since an open round holds chips in the pot.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Any

from teenpatti import game_manager, redis_client
from teenpatti.engine import GameEngine, RoomState

logger = logging.getLogger(__name__)

# How often the cleanup loop runs (seconds).  Default: every 30 minutes.
CLEANUP_INTERVAL: float = float(os.getenv("CLEANUP_INTERVAL", 30 * 60))

# Inactivity threshold for a room waiting in the lobby (seconds).
STALE_THRESHOLD: float = 24 * 60 * 60  # 24 hours

# Inactivity threshold for a room abandoned mid-round (seconds).
IN_ROUND_THRESHOLD: float = 72 * 60 * 60  # 72 hours


def _round_open(engine_data: dict[str, Any] | None) -> bool:
    if engine_data is None:
        return False
    return engine_data.get("state") == RoomState.IN_ROUND.value


async def cleanup_stale_rooms() -> dict[str, list[str]]:
    """Scan all rooms in Redis and delete stale ones.

    Returns a dict with 'deleted' (room ids removed) and 'kept' (room ids
    that were checked but retained).
    """
    now = time.time()
    room_ids = await redis_client.list_all_room_ids()
    deleted: list[str] = []
    kept: list[str] = []

    for room_id in room_ids:
        try:
            room_data = await redis_client.load_room(room_id)
            if room_data is None:
                # Orphaned sub-keys with no room record
                await redis_client.delete_room(room_id, "")
                game_manager._drop_lock(room_id)
                deleted.append(room_id)
                continue

            last_activity = await redis_client.get_last_activity(room_id)
            if last_activity is None:
                await redis_client.touch_activity(room_id)
                kept.append(room_id)
                continue

            engine_data = await redis_client.load_engine(room_id)
            in_round = _round_open(engine_data)
            threshold = IN_ROUND_THRESHOLD if in_round else STALE_THRESHOLD
            empty = engine_data is not None and not engine_data.get("players")

            age = now - last_activity
            if empty or age >= threshold:
                if in_round:
                    logger.warning(
                        "Room %s abandoned mid-round with pot=%d",
                        room_id,
                        GameEngine.from_dict(engine_data).pot,
                    )
                await redis_client.delete_room(room_id, room_data["short_code"])
                game_manager._drop_lock(room_id)
                logger.info(
                    "Cleaned up room %s (age=%.1fh, in_round=%s)",
                    room_id,
                    age / 3600,
                    in_round,
                )
                deleted.append(room_id)
            else:
                kept.append(room_id)
        except Exception:
            logger.exception("Error checking room %s for cleanup", room_id)
            kept.append(room_id)

    return {"deleted": deleted, "kept": kept}


class RoomCleaner:
    """Background asyncio task that periodically removes stale rooms."""

    def __init__(self) -> None:
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
            logger.info("Room cleaner started (interval=%ds)", int(CLEANUP_INTERVAL))

    def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("Room cleaner stopped")

    async def _loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(CLEANUP_INTERVAL)
                try:
                    result = await cleanup_stale_rooms()
                    if result["deleted"]:
                        logger.info(
                            "Cleanup pass: deleted %d room(s): %s",
                            len(result["deleted"]),
                            ", ".join(result["deleted"]),
                        )
                    else:
                        logger.debug("Cleanup pass: nothing to delete")
                except Exception:
                    logger.exception("Cleanup pass failed")
        except asyncio.CancelledError:
            pass


# Singleton
room_cleaner = RoomCleaner()
