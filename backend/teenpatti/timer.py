"""Turn timer — background task that auto-packs players who exceed their turn timeout."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Optional

from teenpatti import game_manager, redis_client
from teenpatti.engine import Action, GameEngine
from teenpatti.exceptions import InvariantViolation
from teenpatti.game_manager import _get_lock

if TYPE_CHECKING:
    from teenpatti.ws_manager import ConnectionManager

logger = logging.getLogger(__name__)

# How often the timer loop checks for expired deadlines (seconds)
TICK_INTERVAL = 1.0


class TurnTimer:
    """Tracks per-room turn deadlines using a single asyncio background loop."""

    def __init__(self) -> None:
        self._task: asyncio.Task | None = None
        # room_id -> deadline (Unix timestamp)
        self._deadlines: dict[str, float] = {}
        self._manager: ConnectionManager | None = None

    def set_manager(self, manager: "ConnectionManager") -> None:
        """Inject the WebSocket connection manager (avoids circular import)."""
        self._manager = manager

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
            logger.info("Turn timer started")

    def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("Turn timer stopped")

    def set_deadline(self, room_id: str, deadline: float | None) -> None:
        """Register (or clear) the turn deadline for a room."""
        if deadline is None or deadline <= 0:
            self._deadlines.pop(room_id, None)
        else:
            self._deadlines[room_id] = deadline

    def clear(self, room_id: str) -> None:
        self._deadlines.pop(room_id, None)

    def get_deadline(self, room_id: str) -> Optional[float]:
        return self._deadlines.get(room_id)

    async def _loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(TICK_INTERVAL)
                await self.check_expired(time.time())
        except asyncio.CancelledError:
            pass

    async def check_expired(self, now: float) -> list[str]:
        """Handle every deadline at or before *now*. Returns the rooms handled."""
        expired = [rid for rid, dl in list(self._deadlines.items()) if now >= dl]
        for room_id in expired:
            self._deadlines.pop(room_id, None)
            try:
                await self._handle_timeout(room_id)
            except Exception:
                logger.exception("Timer error for room %s", room_id)
        return expired

    async def _handle_timeout(self, room_id: str) -> None:
        """Pack the current player whose turn expired."""
        engine: GameEngine | None = None
        summary: Optional[dict[str, Any]] = None

        async with _get_lock(room_id):
            engine_data = await redis_client.load_engine(room_id)
            if engine_data is None:
                return

            eng = GameEngine.from_dict(engine_data)
            if not eng.game_started or eng.action_deadline is None:
                return

            if time.time() < eng.action_deadline:
                # Player acted in time and a fresh deadline was set
                self._deadlines[room_id] = eng.action_deadline
                return

            try:
                player = eng.current_player
            except InvariantViolation:
                eng.abort_round("turn index out of range")
                await game_manager._save_engine(room_id, eng)
                return

            logger.info(
                "Auto-pack: room=%s player=%s (%s) timed out",
                room_id,
                player.player_id,
                player.name,
            )
            eng.process_action(player.player_id, Action.FOLD)
            summary = await game_manager._settle_if_decided(room_id, eng)
            await game_manager._save_engine(room_id, eng)

            if eng.game_started and eng.action_deadline:
                self._deadlines[room_id] = eng.action_deadline

            engine = eng

        if engine is not None:
            await self._broadcast(room_id, engine, summary)

    async def _broadcast(
        self, room_id: str, engine: GameEngine, summary: Optional[dict[str, Any]]
    ) -> None:
        """Send per-player views after an auto-pack."""
        if self._manager is None:
            return

        if summary is not None:
            await self._manager.broadcast_to_all(
                room_id, json.dumps({"type": "round_result", "data": summary})
            )

        for pid in self._manager.get_connected_player_ids(room_id):
            view = engine.get_player_view(pid)
            msg = json.dumps({"type": "game_state", "data": view})
            await self._manager.send_to_player(room_id, pid, msg)


# Singleton
turn_timer = TurnTimer()
