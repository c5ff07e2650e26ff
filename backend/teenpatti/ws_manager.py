"""WebSocket connection manager with heartbeat and reconnection support."""

from __future__ import annotations

import json
import logging
import time
from typing import Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ClientConnection:
    """Wraps a single seated player's WebSocket with metadata."""

    __slots__ = ("ws", "player_id", "session_id", "connected_at", "last_pong")

    def __init__(self, ws: WebSocket, player_id: str, session_id: str) -> None:
        self.ws = ws
        self.player_id = player_id
        self.session_id = session_id
        self.connected_at = time.time()
        self.last_pong = time.time()

    async def send(self, text: str) -> bool:
        """Send text, returning False on failure."""
        try:
            await self.ws.send_text(text)
            return True
        except Exception:
            return False


class ConnectionManager:
    """Manages WebSocket connections per room with heartbeat support."""

    # Seconds a client may go without answering a ping
    HEARTBEAT_TIMEOUT = 30

    def __init__(self) -> None:
        # room_id -> {player_id -> ClientConnection}
        self._players: dict[str, dict[str, ClientConnection]] = {}

    async def connect(
        self, room_id: str, player_id: str, ws: WebSocket, session_id: str
    ) -> ClientConnection:
        await ws.accept()
        conn = ClientConnection(ws, player_id, session_id)

        room = self._players.setdefault(room_id, {})
        # Close previous connection for this player (stale tab)
        old = room.get(player_id)
        if old is not None:
            try:
                await old.ws.close(code=4001, reason="Replaced by new connection")
            except Exception:
                logger.debug("Closing replaced socket failed", exc_info=True)
        room[player_id] = conn

        logger.info("WS connect: room=%s player=%s", room_id, player_id)
        return conn

    def disconnect(
        self, room_id: str, player_id: str, conn: Optional[ClientConnection] = None
    ) -> None:
        """Remove a player connection.

        If conn is given, only remove if it matches (avoids removing a newer
        connection).
        """
        room = self._players.get(room_id)
        if room is None:
            return
        existing = room.get(player_id)
        if existing is not None and (conn is None or existing is conn):
            del room[player_id]
            if not room:
                del self._players[room_id]
            logger.info("WS disconnect: room=%s player=%s", room_id, player_id)

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def record_pong(self, room_id: str, player_id: str) -> None:
        conn = self._get_player_conn(room_id, player_id)
        if conn:
            conn.last_pong = time.time()

    def is_stale(self, conn: ClientConnection) -> bool:
        return (time.time() - conn.last_pong) > self.HEARTBEAT_TIMEOUT

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_to_player(self, room_id: str, player_id: str, message: str) -> None:
        conn = self._get_player_conn(room_id, player_id)
        if conn:
            if not await conn.send(message):
                self.disconnect(room_id, player_id, conn)

    async def broadcast_to_all(self, room_id: str, message: str) -> None:
        """Send a message to every seated player in a room."""
        stale: list[str] = []
        for pid, conn in list(self._players.get(room_id, {}).items()):
            if not await conn.send(message):
                stale.append(pid)
        for pid in stale:
            self.disconnect(room_id, pid)

    async def send_ping(self, conn: ClientConnection) -> bool:
        return await conn.send(json.dumps({"type": "ping", "ts": time.time()}))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_connected_player_ids(self, room_id: str) -> set[str]:
        return set(self._players.get(room_id, {}))

    def get_connection_info(self, room_id: str) -> dict:
        return {
            "type": "connection_info",
            "connected_players": sorted(self.get_connected_player_ids(room_id)),
        }

    def _get_player_conn(self, room_id: str, player_id: str) -> Optional[ClientConnection]:
        return self._players.get(room_id, {}).get(player_id)


manager = ConnectionManager()
