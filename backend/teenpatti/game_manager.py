"""Room manager — business logic for lobby and gameplay operations.

Every room lives in Redis as a serialized GameEngine.  Mutations follow
load -> mutate -> save under a per-room lock, so each room sees one
action at a time while different rooms proceed independently.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import uuid
from collections import defaultdict
from typing import Any, Optional

from teenpatti import redis_client, room_codes, settlement
from teenpatti.engine import Action, GameEngine, Player
from teenpatti.exceptions import InvariantViolation, RoundInProgressError
from teenpatti.models import (
    CreateRoomRequest,
    JoinRoomRequest,
    PlayerInfo,
    RoomInfo,
    RoomSettings,
)

logger = logging.getLogger(__name__)

# room_id -> lock serialising that room's mutations
_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

# Attempts at finding a room id whose short code is unused
_MAX_ID_ATTEMPTS = 20


def _get_lock(room_id: str) -> asyncio.Lock:
    return _locks[room_id]


def _drop_lock(room_id: str) -> None:
    _locks.pop(room_id, None)


def _hash_pin(pin: str) -> str:
    return hashlib.sha256(pin.encode()).hexdigest()


def _verify_pin(pin: str, pin_hash: str) -> bool:
    return _hash_pin(pin) == pin_hash


async def resolve_room_id(code: str) -> str:
    """Accept a full room id or its 6-character code; return the full id."""
    code = code.strip()
    if room_codes.is_full_room_id(code):
        if await redis_client.load_room(code.lower()) is None:
            raise ValueError("Room not found")
        return code.lower()

    if not room_codes.is_valid_short_room_id(code):
        raise ValueError("Room not found")

    matches = [
        room_id
        for room_id in await redis_client.lookup_short_code(code)
        if room_codes.verify_room_id(code, room_id)
    ]
    if not matches:
        raise ValueError("Room not found")
    if len(matches) > 1:
        raise ValueError("Room code is ambiguous; use the full room id")
    return matches[0]


async def _new_room_id() -> str:
    for _ in range(_MAX_ID_ATTEMPTS):
        room_id = room_codes.new_room_id()
        short = room_codes.encode_room_id(room_id)
        if not await redis_client.lookup_short_code(short):
            return room_id
    raise RuntimeError("Could not allocate an unused room code")


async def create_room(req: CreateRoomRequest) -> tuple[str, str, RoomInfo]:
    """Create a new room and return (room_id, player_id, room_info)."""
    room_id = await _new_room_id()
    short_code = room_codes.encode_room_id(room_id)
    player_id = str(uuid.uuid4())

    room_data = {
        "room_id": room_id,
        "short_code": short_code,
        "creator_id": player_id,
        "settings": {
            "starting_chips": req.starting_chips,
            "min_bet": req.min_bet,
            "max_players": req.max_players,
            "turn_timeout": req.turn_timeout,
            "requires_buy_in_lock": req.requires_buy_in_lock,
        },
    }

    player_data = {
        "id": player_id,
        "name": req.creator_name,
        "pin_hash": _hash_pin(req.creator_pin),
        "connected": False,
        "is_creator": True,
        "buy_in_locked": False,
    }

    engine = GameEngine(
        room_id=room_id,
        min_bet=req.min_bet,
        max_players=req.max_players,
        turn_timeout=req.turn_timeout,
    )
    engine.add_player(Player(player_id, req.creator_name, req.starting_chips))

    await redis_client.store_room(room_id, room_data)
    await redis_client.store_player(room_id, player_id, player_data)
    await redis_client.store_engine(room_id, engine.to_dict())
    await redis_client.index_short_code(short_code, room_id)
    await redis_client.touch_activity(room_id)

    logger.info("Room %s created by %s", room_codes.format_room_id_display(room_id), player_id)
    info = await _build_room_info(room_id, room_data, engine)
    return room_id, player_id, info


async def join_room(code: str, req: JoinRoomRequest) -> tuple[str, str, RoomInfo]:
    """Join (or rejoin) a room. Returns (room_id, player_id, room_info)."""
    room_id = await resolve_room_id(code)

    async with _get_lock(room_id):
        room_data = await _load_room(room_id)
        engine = await _load_engine(room_id)
        players = await redis_client.load_all_players(room_id)

        # Same name + PIN is a reconnect
        for p in players:
            if p["name"].lower() == req.player_name.lower():
                if _verify_pin(req.player_pin, p["pin_hash"]):
                    seat = engine.get_player(p["id"])
                    if seat is None or seat.left_room:
                        raise RoundInProgressError(
                            "You left this round; rejoin once it has finished"
                        )
                    info = await _build_room_info(room_id, room_data, engine)
                    return room_id, p["id"], info
                raise ValueError("Name already taken (wrong PIN)")

        player_id = str(uuid.uuid4())
        engine.add_player(
            Player(player_id, req.player_name, room_data["settings"]["starting_chips"])
        )

        await redis_client.store_player(
            room_id,
            player_id,
            {
                "id": player_id,
                "name": req.player_name,
                "pin_hash": _hash_pin(req.player_pin),
                "connected": False,
                "is_creator": False,
                "buy_in_locked": False,
            },
        )
        await _save_engine(room_id, engine)
        await redis_client.touch_activity(room_id)

        info = await _build_room_info(room_id, room_data, engine)
    return room_id, player_id, info


async def leave_room(
    code: str, player_id: str, pin: str
) -> tuple[Optional[RoomInfo], Optional[dict[str, Any]]]:
    """Leave a room. Mid-round this packs the player first.

    Returns (room_info, round_summary); room_info is None once the last
    player has left and the room is torn down.
    """
    room_id = await resolve_room_id(code)
    await verify_player(room_id, player_id, pin)

    async with _get_lock(room_id):
        room_data = await _load_room(room_id)
        engine = await _load_engine(room_id)

        if not engine.remove_player(player_id):
            raise ValueError("Player not seated")

        summary = await _settle_if_decided(room_id, engine)

        # Seat is gone now unless the round is still running
        if engine.get_player(player_id) is None:
            await redis_client.remove_player(room_id, player_id)

        if not engine.players:
            await redis_client.delete_room(room_id, room_data["short_code"])
            _drop_lock(room_id)
            logger.info("Room %s closed (empty)", room_id)
            return None, summary

        if room_data["creator_id"] == player_id:
            await _transfer_creator(room_id, room_data, engine)

        await _save_engine(room_id, engine)
        await redis_client.touch_activity(room_id)
        info = await _build_room_info(room_id, room_data, engine)
    return info, summary


async def _transfer_creator(
    room_id: str, room_data: dict[str, Any], engine: GameEngine
) -> None:
    successor = next((p for p in engine.players if not p.left_room), None)
    if successor is None:
        return
    room_data["creator_id"] = successor.player_id
    await redis_client.store_room(room_id, room_data)
    record = await redis_client.load_player(room_id, successor.player_id)
    if record:
        record["is_creator"] = True
        await redis_client.store_player(room_id, successor.player_id, record)


async def confirm_buy_in(code: str, player_id: str, pin: str) -> RoomInfo:
    """Record that the escrow has locked this player's buy-in."""
    room_id = await resolve_room_id(code)
    player_data = await verify_player(room_id, player_id, pin)

    async with _get_lock(room_id):
        player_data["buy_in_locked"] = True
        await redis_client.store_player(room_id, player_id, player_data)
        room_data = await _load_room(room_id)
        engine = await _load_engine(room_id)
        return await _build_room_info(room_id, room_data, engine)


async def start_round(code: str, player_id: str, pin: str) -> RoomInfo:
    """Deal a round (creator only, min 2 players)."""
    room_id = await resolve_room_id(code)
    await verify_player(room_id, player_id, pin)

    async with _get_lock(room_id):
        room_data = await _load_room(room_id)
        if room_data["creator_id"] != player_id:
            raise ValueError("Only the room creator can start a round")

        engine = await _load_engine(room_id)
        if engine.game_started:
            raise ValueError("Round is already in progress")

        if room_data["settings"].get("requires_buy_in_lock"):
            players = await redis_client.load_all_players(room_id)
            unlocked = [p["name"] for p in players if not p.get("buy_in_locked")]
            if unlocked:
                raise ValueError(f"Buy-in not locked for: {', '.join(sorted(unlocked))}")

        if not engine.start_round():
            raise ValueError(f"Need at least {engine.min_players} players to start")

        await _save_engine(room_id, engine)
        await redis_client.touch_activity(room_id)
        return await _build_room_info(room_id, room_data, engine)


async def process_action(
    code: str, player_id: str, pin: str, action: str, amount: int = 0
) -> dict[str, Any]:
    """Apply a player's action and settle the round if it is decided."""
    room_id = await resolve_room_id(code)
    await verify_player(room_id, player_id, pin)

    async with _get_lock(room_id):
        engine = await _load_engine(room_id)
        try:
            result = engine.process_action(player_id, action, amount)
        except ValueError as e:
            logger.debug("Rejected %s by %s in %s: %s", action, player_id, room_id, e)
            raise
        except InvariantViolation:
            # The engine has already refunded and reset the round
            await _save_engine(room_id, engine)
            raise
        result["round_result"] = await _settle_if_decided(room_id, engine)
        await _save_engine(room_id, engine)
        await redis_client.touch_activity(room_id)
    return result


async def see_cards(code: str, player_id: str, pin: str) -> dict[str, Any]:
    return await process_action(code, player_id, pin, Action.SEE.value)


async def force_showdown(code: str, player_id: str, pin: str) -> dict[str, Any]:
    """Compare the remaining hands now (creator only)."""
    room_id = await resolve_room_id(code)
    await verify_player(room_id, player_id, pin)

    async with _get_lock(room_id):
        room_data = await _load_room(room_id)
        if room_data["creator_id"] != player_id:
            raise ValueError("Only the room creator can call a showdown")

        engine = await _load_engine(room_id)
        departed = _departed_ids(engine)
        summary = engine.showdown()
        await _record_settlement(room_id, summary)
        await _forget_players(room_id, departed)
        await _save_engine(room_id, engine)
        await redis_client.touch_activity(room_id)
    return summary


async def _settle_if_decided(
    room_id: str, engine: GameEngine
) -> Optional[dict[str, Any]]:
    """End the round once at most one unpacked player remains."""
    if not engine.game_started:
        return None

    departed = _departed_ids(engine)
    winner = engine.check_winner()
    if winner is not None:
        summary = engine.end_round(winner.player_id)
    elif not engine.active_players():
        summary = engine.end_round(None)
    else:
        return None

    await _record_settlement(room_id, summary)
    await _forget_players(room_id, departed)
    return summary


def _departed_ids(engine: GameEngine) -> list[str]:
    return [p.player_id for p in engine.players if p.left_room]


async def _forget_players(room_id: str, player_ids: list[str]) -> None:
    for pid in player_ids:
        await redis_client.remove_player(room_id, pid)


async def _record_settlement(room_id: str, summary: dict[str, Any]) -> None:
    instruction = settlement.build_payout_instruction(summary)
    await redis_client.push_payout(room_id, instruction)
    logger.info(
        "Payout queued for %s hand %d: pot=%d rake=%d",
        room_id,
        summary["hand_number"],
        instruction["pot"],
        instruction["rake"],
    )


async def get_room_info(code: str) -> Optional[RoomInfo]:
    """Get the lobby view of a room, or None if it does not exist."""
    try:
        room_id = await resolve_room_id(code)
    except ValueError:
        return None
    room_data = await redis_client.load_room(room_id)
    engine_data = await redis_client.load_engine(room_id)
    if room_data is None or engine_data is None:
        return None
    return await _build_room_info(room_id, room_data, GameEngine.from_dict(engine_data))


async def set_player_connected(
    room_id: str, player_id: str, connected: bool, session_id: Optional[str] = None
) -> None:
    """Update the player's connection flag and bind their transport session."""
    player_data = await redis_client.load_player(room_id, player_id)
    if player_data:
        player_data["connected"] = connected
        await redis_client.store_player(room_id, player_id, player_data)

    async with _get_lock(room_id):
        engine_data = await redis_client.load_engine(room_id)
        if engine_data is None:
            return
        engine = GameEngine.from_dict(engine_data)
        p = engine.get_player(player_id)
        if p is None:
            return
        p.session_id = session_id if connected else None
        await _save_engine(room_id, engine)


async def _build_room_info(
    room_id: str, room_data: dict, engine: GameEngine
) -> RoomInfo:
    """Construct a RoomInfo in seat order from Redis data and the engine."""
    records = {p["id"]: p for p in await redis_client.load_all_players(room_id)}

    players = []
    for seat in engine.players:
        rec = records.get(seat.player_id, {})
        players.append(
            PlayerInfo(
                id=seat.player_id,
                name=seat.name,
                connected=rec.get("connected", False),
                is_creator=seat.player_id == room_data["creator_id"],
                buy_in_locked=rec.get("buy_in_locked", False),
            )
        )

    return RoomInfo(
        room_id=room_id,
        short_code=room_data["short_code"],
        status=engine.state,
        settings=RoomSettings(**room_data["settings"]),
        players=players,
        creator_id=room_data["creator_id"],
    )


# ------------------------------------------------------------------
# Engine Operations
# ------------------------------------------------------------------


async def _load_room(room_id: str) -> dict[str, Any]:
    room_data = await redis_client.load_room(room_id)
    if room_data is None:
        raise ValueError("Room not found")
    return room_data


async def _load_engine(room_id: str) -> GameEngine:
    """Load game engine from Redis."""
    engine_data = await redis_client.load_engine(room_id)
    if engine_data is None:
        raise ValueError("Game engine not found")
    return GameEngine.from_dict(engine_data)


async def _save_engine(room_id: str, engine: GameEngine) -> None:
    """Persist game engine to Redis."""
    await redis_client.store_engine(room_id, engine.to_dict())


async def verify_player(room_id: str, player_id: str, pin: str) -> dict[str, Any]:
    """Verify a player's PIN for authenticated actions."""
    player_data = await redis_client.load_player(room_id, player_id)
    if player_data is None:
        raise ValueError("Player not found")
    if not _verify_pin(pin, player_data["pin_hash"]):
        raise ValueError("Invalid PIN")
    return player_data


async def get_engine_state(code: str, player_id: str, pin: str) -> dict[str, Any]:
    """Get the game engine state for a specific player, after checking their PIN."""
    room_id = await resolve_room_id(code)
    await verify_player(room_id, player_id, pin)
    return await get_player_view(room_id, player_id)


async def get_player_view(room_id: str, player_id: str) -> dict[str, Any]:
    """View for a socket that already authenticated as *player_id*."""
    engine = await _load_engine(room_id)
    return engine.get_player_view(player_id)
