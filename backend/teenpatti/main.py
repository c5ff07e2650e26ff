"""FastAPI application: REST + WebSocket endpoints for Teen Patti rooms."""

import asyncio
import hmac
import json
import logging
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import (
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from teenpatti import game_manager, redis_client
from teenpatti.cleanup import cleanup_stale_rooms, room_cleaner
from teenpatti.exceptions import InvariantViolation
from teenpatti.models import (
    ActionRequest,
    ActionResponse,
    CreateRoomRequest,
    CreateRoomResponse,
    JoinRoomRequest,
    JoinRoomResponse,
    PlayerAuthRequest,
    RoomInfo,
)
from teenpatti.timer import turn_timer
from teenpatti.ws_manager import ClientConnection, manager

logger = logging.getLogger(__name__)

# Seconds between server pings on each socket
HEARTBEAT_INTERVAL = 10


@asynccontextmanager
async def lifespan(app: FastAPI):
    turn_timer.set_manager(manager)
    turn_timer.start()
    room_cleaner.start()
    yield
    room_cleaner.stop()
    turn_timer.stop()
    await redis_client.close()


app = FastAPI(title="Teen Patti Room API", lifespan=lifespan)

# ---------- Rate Limiting ----------

_rate_limit_enabled = os.getenv("RATE_LIMIT_ENABLED", "1") != "0"

limiter = Limiter(
    key_func=get_remote_address,
    enabled=_rate_limit_enabled,
)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Please slow down."},
    )


@app.exception_handler(InvariantViolation)
async def _invariant_handler(request: Request, exc: InvariantViolation):
    logger.error("Round invariant violated on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": f"Round aborted: {exc}"},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------- Admin Auth ----------

ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")


async def verify_admin(authorization: str | None = Header(None)):
    """Validate the admin password from the Authorization header."""
    if not ADMIN_PASSWORD:
        raise HTTPException(
            status_code=503,
            detail="Admin not configured. Set ADMIN_PASSWORD env var.",
        )
    expected = f"Bearer {ADMIN_PASSWORD}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Invalid admin password")


# ---------- Lobby endpoints ----------


@app.post("/api/rooms", response_model=CreateRoomResponse)
@limiter.limit("5/minute")
async def create_room(request: Request, req: CreateRoomRequest):
    room_id, player_id, info = await game_manager.create_room(req)
    return CreateRoomResponse(
        room_id=room_id, short_code=info.short_code, player_id=player_id, room=info
    )


@app.post("/api/rooms/{code}/join", response_model=JoinRoomResponse)
@limiter.limit("10/minute")
async def join_room(request: Request, code: str, req: JoinRoomRequest):
    try:
        room_id, player_id, info = await game_manager.join_room(code, req)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    # Existing players see the new joiner
    await _broadcast(info)
    return JoinRoomResponse(room_id=room_id, player_id=player_id, room=info)


@app.get("/api/rooms/{code}", response_model=RoomInfo)
@limiter.limit("30/minute")
async def get_room(request: Request, code: str):
    info = await game_manager.get_room_info(code)
    if info is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return info


@app.post("/api/rooms/{code}/leave")
@limiter.limit("10/minute")
async def leave_room(request: Request, code: str, req: PlayerAuthRequest):
    """Leave the room; mid-round this packs the player's hand."""
    try:
        room_id = await game_manager.resolve_room_id(code)
        info, summary = await game_manager.leave_room(room_id, req.player_id, req.pin)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await _broadcast_round_result(room_id, summary)
    if info is None:
        turn_timer.clear(room_id)
        return {"ok": True, "room": None, "round_result": summary}

    await _broadcast(info)
    await _broadcast_engine_state(room_id)
    await _sync_timer(room_id)
    return {"ok": True, "room": info, "round_result": summary}


@app.post("/api/rooms/{code}/buy_in", response_model=RoomInfo)
@limiter.limit("10/minute")
async def confirm_buy_in(request: Request, code: str, req: PlayerAuthRequest):
    """Mark this player's escrow buy-in as locked."""
    try:
        info = await game_manager.confirm_buy_in(code, req.player_id, req.pin)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await _broadcast(info)
    return info


@app.post("/api/rooms/{code}/start", response_model=RoomInfo)
@limiter.limit("10/minute")
async def start_round(request: Request, code: str, req: PlayerAuthRequest):
    try:
        info = await game_manager.start_round(code, req.player_id, req.pin)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await _broadcast(info)
    await _broadcast_engine_state(info.room_id)
    await _sync_timer(info.room_id)
    return info


# ---------- Round endpoints ----------


@app.post("/api/rooms/{code}/state")
@limiter.limit("30/minute")
async def get_engine_state(request: Request, code: str, req: PlayerAuthRequest):
    """The room as seen by one player (their own cards only once seen)."""
    try:
        return await game_manager.get_engine_state(code, req.player_id, req.pin)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/rooms/{code}/action", response_model=ActionResponse)
@limiter.limit("30/minute")
async def room_action(request: Request, code: str, req: ActionRequest):
    """Apply pack/fold, see or chaal/bet for the player whose turn it is."""
    try:
        room_id = await game_manager.resolve_room_id(code)
        result = await game_manager.process_action(
            room_id, req.player_id, req.pin, req.action, req.amount
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InvariantViolation:
        await _broadcast_engine_state(room_id)
        turn_timer.clear(room_id)
        raise

    await _after_round_change(room_id, result["round_result"])
    return ActionResponse(
        action=result["action"],
        amount=result["amount"],
        round_result=result["round_result"],
    )


@app.post("/api/rooms/{code}/see", response_model=ActionResponse)
@limiter.limit("30/minute")
async def see_cards(request: Request, code: str, req: PlayerAuthRequest):
    try:
        room_id = await game_manager.resolve_room_id(code)
        result = await game_manager.see_cards(room_id, req.player_id, req.pin)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await _broadcast_engine_state(room_id)
    return ActionResponse(action=result["action"], amount=0)


@app.post("/api/rooms/{code}/showdown")
@limiter.limit("10/minute")
async def showdown(request: Request, code: str, req: PlayerAuthRequest):
    """Reveal and compare every unpacked hand (creator only)."""
    try:
        room_id = await game_manager.resolve_room_id(code)
        summary = await game_manager.force_showdown(room_id, req.player_id, req.pin)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await _after_round_change(room_id, summary)
    return summary


# ---------- Admin ----------


@app.post("/api/admin/cleanup")
@limiter.limit("10/minute")
async def admin_cleanup(request: Request, _=Depends(verify_admin)):
    """Manually trigger stale-room cleanup. Returns deleted and kept room ids."""
    return await cleanup_stale_rooms()


@app.get("/api/admin/rooms/{code}/payouts")
@limiter.limit("30/minute")
async def admin_payouts(request: Request, code: str, _=Depends(verify_admin)):
    """Payout instructions queued for the ledger, oldest first."""
    try:
        room_id = await game_manager.resolve_room_id(code)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"room_id": room_id, "payouts": await redis_client.load_payouts(room_id)}


# ---------- WebSocket ----------


@app.websocket("/ws/{code}/{player_id}")
async def websocket_endpoint(ws: WebSocket, code: str, player_id: str, pin: str = ""):
    info = await game_manager.get_room_info(code)
    if info is None:
        await ws.close(code=4004, reason="Room not found")
        return
    if player_id not in {p.id for p in info.players}:
        await ws.close(code=4003, reason="Not seated in this room")
        return
    try:
        await game_manager.verify_player(info.room_id, player_id, pin)
    except ValueError:
        await ws.close(code=4003, reason="Invalid PIN")
        return

    room_id = info.room_id
    session_id = uuid.uuid4().hex
    conn = await manager.connect(room_id, player_id, ws, session_id)
    await game_manager.set_player_connected(room_id, player_id, True, session_id)

    # Current state immediately on connect (reconnect support)
    try:
        fresh = await game_manager.get_room_info(room_id)
        if fresh:
            await conn.send(_room_message(fresh))
            view = await game_manager.get_player_view(room_id, player_id)
            await conn.send(json.dumps({"type": "game_state", "data": view}))
        await _broadcast_connection_info(room_id)
    except Exception:
        logger.debug("Error sending initial state to %s in %s", player_id, room_id, exc_info=True)

    heartbeat = asyncio.create_task(_heartbeat(conn))
    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = json.loads(raw)
                if msg.get("type", "") == "pong":
                    manager.record_pong(room_id, player_id)
            except (json.JSONDecodeError, AttributeError):
                logger.debug("Malformed message from %s in %s", player_id, room_id)
    except WebSocketDisconnect:
        pass
    finally:
        heartbeat.cancel()
        manager.disconnect(room_id, player_id, conn)
        await game_manager.set_player_connected(room_id, player_id, False)
        try:
            fresh = await game_manager.get_room_info(room_id)
            if fresh:
                await _broadcast(fresh)
            await _broadcast_connection_info(room_id)
        except Exception:
            logger.debug("Error broadcasting disconnect for %s in %s", player_id, room_id, exc_info=True)


# ---------- Helpers ----------


async def _heartbeat(conn: ClientConnection) -> None:
    """Ping the socket periodically; close it once pongs stop arriving."""
    try:
        while True:
            await asyncio.sleep(HEARTBEAT_INTERVAL)
            if manager.is_stale(conn):
                logger.info("WS heartbeat timeout: player=%s", conn.player_id)
                await conn.ws.close(code=4000, reason="Heartbeat timeout")
                return
            if not await manager.send_ping(conn):
                return
    except asyncio.CancelledError:
        pass


def _room_message(info: RoomInfo) -> str:
    return json.dumps({"type": "room_state", "data": info.model_dump(mode="json")})


async def _broadcast(info: RoomInfo) -> None:
    """Broadcast lobby state to all connected clients."""
    await manager.broadcast_to_all(info.room_id, _room_message(info))


async def _broadcast_engine_state(room_id: str) -> None:
    """Send each connected player their own view of the room."""
    for pid in manager.get_connected_player_ids(room_id):
        try:
            view = await game_manager.get_player_view(room_id, pid)
            msg = json.dumps({"type": "game_state", "data": view})
            await manager.send_to_player(room_id, pid, msg)
        except Exception:
            logger.debug("Failed to send engine state to %s in %s", pid, room_id, exc_info=True)


async def _broadcast_round_result(room_id: str, summary) -> None:
    if summary is None:
        return
    await manager.broadcast_to_all(
        room_id, json.dumps({"type": "round_result", "data": summary})
    )


async def _broadcast_connection_info(room_id: str) -> None:
    """Send connection info (who's online) to all clients."""
    info = manager.get_connection_info(room_id)
    await manager.broadcast_to_all(room_id, json.dumps(info))


async def _after_round_change(room_id: str, summary) -> None:
    await _broadcast_round_result(room_id, summary)
    if summary is not None:
        info = await game_manager.get_room_info(room_id)
        if info:
            await _broadcast(info)
    await _broadcast_engine_state(room_id)
    await _sync_timer(room_id)


async def _sync_timer(room_id: str) -> None:
    """Update the turn timer with the current engine's deadline."""
    try:
        engine_data = await redis_client.load_engine(room_id)
        if engine_data and engine_data.get("action_deadline"):
            turn_timer.set_deadline(room_id, engine_data["action_deadline"])
        else:
            turn_timer.clear(room_id)
    except Exception:
        logger.warning("Failed to sync timer for room %s", room_id, exc_info=True)
